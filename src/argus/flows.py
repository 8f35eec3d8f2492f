"""Flow store: the single current self-service flow and its provider operations."""

from __future__ import annotations

from typing import Any, Mapping

import msgspec
from msgspec import structs

from .exceptions import FlowStateError, ProviderResponseError
from .models import Flow, FlowKind, TerminalResult
from .provider import IdentityProviderClient
from .serialization import convert


def decode_flow(kind: FlowKind | None, payload: Any) -> Flow:
    """Decode a provider flow document and tag it with ``kind``."""

    try:
        flow = convert(payload, Flow)
    except msgspec.ValidationError as exc:
        raise ProviderResponseError(200, payload) from exc
    if kind is not None and flow.kind is not kind:
        flow = structs.replace(flow, kind=kind)
    return flow


def is_flow_document(payload: Any) -> bool:
    return isinstance(payload, Mapping) and "ui" in payload and "id" in payload


class FlowStore:
    """Hold the current flow and drive create/fetch/submit against the provider.

    The store never interprets failures; provider errors propagate unchanged so
    the classifier can map them.
    """

    def __init__(self, provider: IdentityProviderClient) -> None:
        self.provider = provider
        self._current: Flow | None = None

    @property
    def current(self) -> Flow | None:
        return self._current

    def adopt(self, flow: Flow) -> Flow:
        """Make ``flow`` the current flow, replacing any previous one."""

        self._current = flow
        return flow

    def discard(self) -> None:
        self._current = None

    async def create_flow(
        self,
        kind: FlowKind,
        *,
        refresh: bool = False,
        requested_aal: str | None = None,
        return_to: str | None = None,
    ) -> Flow:
        params: dict[str, str] = {}
        if refresh:
            params["refresh"] = "true"
        if requested_aal:
            params["aal"] = requested_aal
        if return_to:
            params["return_to"] = return_to
        payload = await self.provider.create_flow(kind, params or None)
        return self.adopt(decode_flow(kind, payload))

    async def fetch_flow(self, kind: FlowKind, flow_id: str) -> Flow:
        payload = await self.provider.get_flow(kind, flow_id)
        return self.adopt(decode_flow(kind, payload))

    async def submit_flow(self, flow: Flow, method: str, payload: Mapping[str, Any]) -> Flow | TerminalResult:
        """Post ``payload`` for ``method`` with the CSRF token read from ``flow`` now."""

        if flow.kind is None:
            raise FlowStateError("unknown_flow_kind")
        body = {**payload, "method": method, "csrf_token": flow.csrf_token}
        response = await self.provider.update_flow(flow.kind, flow.id, body)
        if is_flow_document(response):
            return self.adopt(decode_flow(flow.kind, response))
        try:
            result = convert(response if response is not None else {}, TerminalResult)
        except msgspec.ValidationError as exc:
            raise ProviderResponseError(200, response) from exc
        self.discard()
        return result


__all__ = ["FlowStore", "decode_flow", "is_flow_document"]
