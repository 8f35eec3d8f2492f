"""HTTP client for the self-service identity provider's public API."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx
import msgspec

from .config import ProviderConfig
from .exceptions import ProviderResponseError, ProviderTransportError
from .models import FlowKind
from .serialization import json_decode, json_encode

logger = logging.getLogger(__name__)

_JSON_HEADERS = {"accept": "application/json"}


class IdentityProviderClient:
    """Thin async wrapper over the provider's browser self-service endpoints.

    Cookies set by the provider (CSRF cookie, session cookie) live in the
    underlying :class:`httpx.AsyncClient` cookie jar.
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._owns_client = client is None
        self._http = client or httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            headers=_JSON_HEADERS,
            timeout=config.timeout,
            transport=transport,
        )

    async def create_flow(self, kind: FlowKind, params: Mapping[str, str] | None = None) -> Any:
        return await self._request("GET", f"/self-service/{kind.value}/browser", params=params)

    async def get_flow(self, kind: FlowKind, flow_id: str) -> Any:
        return await self._request("GET", f"/self-service/{kind.value}/flows", params={"id": flow_id})

    async def update_flow(self, kind: FlowKind, flow_id: str, body: Mapping[str, Any]) -> Any:
        return await self._request("POST", f"/self-service/{kind.value}", params={"flow": flow_id}, body=body)

    async def to_session(self) -> Any | None:
        """Return the current session document or ``None`` when signed out."""

        try:
            return await self._request("GET", "/sessions/whoami")
        except ProviderResponseError as exc:
            if exc.status == 401:
                return None
            raise

    async def create_logout_flow(self, return_to: str | None = None) -> Any:
        params = {"return_to": return_to} if return_to else None
        return await self._request("GET", "/self-service/logout/browser", params=params)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Mapping[str, Any] | None = None,
    ) -> Any:
        headers = dict(_JSON_HEADERS)
        content: bytes | None = None
        if body is not None:
            content = json_encode(dict(body))
            headers["content-type"] = "application/json"
        try:
            response = await self._http.request(method, path, params=params, content=content, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Identity provider request %s %s failed: %s", method, path, exc)
            raise ProviderTransportError(f"{method} {path} failed") from exc
        payload = _decode_payload(response)
        if not response.is_success:
            raise ProviderResponseError(response.status_code, payload)
        return payload


def _decode_payload(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return json_decode(response.content)
    except msgspec.DecodeError:
        return None


__all__ = ["IdentityProviderClient"]
