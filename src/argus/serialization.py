from __future__ import annotations

from typing import Any, Protocol, TypeVar, cast

import msgspec

T = TypeVar("T")


class _JSONModule(Protocol):
    def encode(self, obj: Any) -> bytes: ...

    def decode(self, data: bytes) -> Any: ...


_json = cast(_JSONModule, getattr(msgspec, "json"))


def json_encode(value: Any) -> bytes:
    """Serialize ``value`` to JSON bytes using msgspec."""

    return _json.encode(value)


def json_decode(data: bytes) -> Any:
    """Deserialize JSON ``data`` into native Python values."""

    return _json.decode(data)


def convert(value: Any, type_: type[T]) -> T:
    """Convert decoded JSON ``value`` into ``type_``."""

    return msgspec.convert(value, type_)


__all__ = ["convert", "json_decode", "json_encode"]
