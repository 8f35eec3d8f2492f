"""Browser navigation and address bar helpers."""

from __future__ import annotations

from enum import Enum
from typing import Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from msgspec import Struct

FLOW_PARAM = "flow"
AAL_PARAM = "aal"
RETURN_TO_PARAM = "return_to"
REFRESH_PARAM = "refresh"


class NavigationKind(str, Enum):
    FULL = "full"
    SOFT = "soft"


class Navigation(Struct, frozen=True):
    """A request to move the browser.

    ``FULL`` reloads the document (leaving the application for external
    targets), ``SOFT`` is an in-application route change.
    """

    url: str
    kind: NavigationKind = NavigationKind.SOFT
    replace: bool = True


class Browser(Protocol):
    """Sink for navigations performed by the orchestrator."""

    def navigate(self, navigation: Navigation) -> None:  # pragma: no cover - protocol
        ...


def full(url: str) -> Navigation:
    return Navigation(url=url, kind=NavigationKind.FULL, replace=False)


def soft(url: str, *, replace: bool = True) -> Navigation:
    return Navigation(url=url, kind=NavigationKind.SOFT, replace=replace)


def with_query(url: str, **params: str | None) -> str:
    """Return ``url`` with ``params`` merged into its query string; ``None`` removes a key."""

    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    for key, value in params.items():
        if value is None:
            query.pop(key, None)
        else:
            query[key] = value
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def query_param(url: str, name: str) -> str | None:
    value = dict(parse_qsl(urlsplit(url).query, keep_blank_values=True)).get(name)
    return value or None


def flow_id_from_url(url: str) -> str | None:
    """Read the ``?flow=<id>`` parameter a reload or provider redirect carries."""

    return query_param(url, FLOW_PARAM)


def flow_url(path: str, flow_id: str) -> str:
    return with_query(path, **{FLOW_PARAM: flow_id})


def login_entry_url(
    login_url: str,
    *,
    aal: str | None = None,
    return_to: str | None = None,
    refresh: bool = False,
) -> str:
    return with_query(
        login_url,
        **{
            AAL_PARAM: aal,
            RETURN_TO_PARAM: return_to,
            REFRESH_PARAM: "true" if refresh else None,
        },
    )


__all__ = [
    "Browser",
    "Navigation",
    "NavigationKind",
    "flow_id_from_url",
    "flow_url",
    "full",
    "login_entry_url",
    "query_param",
    "soft",
    "with_query",
]
