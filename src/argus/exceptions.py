"""Error types raised by Argus components."""

from __future__ import annotations

from typing import Any


class ArgusError(Exception):
    """Base error type."""


class ProviderResponseError(ArgusError):
    """Raised when the identity provider answers with a non-2xx status."""

    def __init__(self, status: int, payload: Any) -> None:
        super().__init__(status, payload)
        self.status = status
        self.payload = payload

    def __str__(self) -> str:
        return f"identity provider responded with status {self.status}"


class ProviderTransportError(ArgusError):
    """Raised when the identity provider cannot be reached."""


class BackendError(ArgusError):
    """Raised when the application backend rejects a request or is unreachable."""

    def __init__(self, status: int | None, payload: Any = None) -> None:
        super().__init__(status, payload)
        self.status = status
        self.payload = payload

    def __str__(self) -> str:
        if self.status is None:
            return "backend unreachable"
        return f"backend responded with status {self.status}"


class MissingFieldError(ArgusError, LookupError):
    """Raised when a flow does not expose an expected UI field."""

    def __init__(self, group: str, name: str) -> None:
        super().__init__(f"flow has no field '{name}' in group '{group}'")
        self.group = group
        self.name = name


class FlowStateError(ArgusError):
    """Raised when an action is attempted in a state that does not allow it."""

    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


__all__ = [
    "ArgusError",
    "BackendError",
    "FlowStateError",
    "MissingFieldError",
    "ProviderResponseError",
    "ProviderTransportError",
]
