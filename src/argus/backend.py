"""Client for the application backend's user-facing endpoints."""

from __future__ import annotations

from typing import Any, Mapping

import httpx
import msgspec

from .config import BackendConfig
from .exceptions import BackendError
from .models import CurrentUser, InvitationDetails
from .serialization import convert, json_decode


class BackendClient:
    """Fetch membership data that the identity provider does not hold."""

    def __init__(
        self,
        config: BackendConfig,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._owns_client = client is None
        self._http = client or httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            headers={"accept": "application/json"},
            timeout=config.timeout,
            transport=transport,
        )

    async def current_user(self) -> CurrentUser:
        payload = await self._get(self.config.me_path)
        return self._convert(payload, CurrentUser)

    async def validate_invitation(self, token: str) -> InvitationDetails:
        payload = await self._get(self.config.invitation_validate_path, params={"token": token})
        return self._convert(payload, InvitationDetails)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _get(self, path: str, *, params: Mapping[str, str] | None = None) -> Any:
        try:
            response = await self._http.get(path, params=params)
        except httpx.HTTPError as exc:
            raise BackendError(None, str(exc)) from exc
        payload: Any = None
        if response.content:
            try:
                payload = json_decode(response.content)
            except msgspec.DecodeError:
                payload = None
        if not response.is_success:
            raise BackendError(response.status_code, payload)
        return payload

    @staticmethod
    def _convert(payload: Any, type_: type[Any]) -> Any:
        try:
            return convert(payload if payload is not None else {}, type_)
        except msgspec.ValidationError as exc:
            raise BackendError(200, payload) from exc


__all__ = ["BackendClient"]
