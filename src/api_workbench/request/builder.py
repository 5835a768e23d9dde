"""Request builder: turns a BoundRequest into a RequestDescriptor."""

from urllib.parse import quote, urlsplit

from api_workbench.errors import InvalidBaseUrl
from api_workbench.log import get_logger
from api_workbench.request.models import (
    BoundRequest,
    Pair,
    RequestDescriptor,
    RequestOverrides,
)

logger = get_logger(__name__)


def build_request(
    bound: BoundRequest,
    base_url: str,
    overrides: RequestOverrides | None = None,
) -> RequestDescriptor:
    """Compose base URL, bound parameters and overrides into a request.

    Query parameters keep the operation's declared order. Headers are
    merged case-insensitively with the last writer winning, so ad hoc
    override headers beat anything the document declares.
    """
    overrides = overrides or RequestOverrides()
    auth = overrides.auth

    query = list(bound.query)
    cookies = list(bound.cookies)
    if auth is not None and auth.location == "query":
        query.append((auth.name, auth.value))
    if auth is not None and auth.location == "cookie":
        cookies.append((auth.name, auth.value))
    query.extend(overrides.query)

    url = _join(validate_base_url(base_url), bound.path)
    if query:
        url += "?" + "&".join(f"{quote(k, safe='')}={quote(v, safe=',')}" for k, v in query)

    headers = HeaderMerger()
    headers.extend(bound.headers)
    if bound.content_type is not None:
        headers.set("Content-Type", bound.content_type)
    if cookies:
        headers.set("Cookie", "; ".join(f"{k}={v}" for k, v in cookies))
    if auth is not None and auth.location == "header":
        headers.set(auth.name, auth.value)
    headers.extend(overrides.headers)

    descriptor = RequestDescriptor(
        method=bound.method,
        url=url,
        headers=headers.items(),
        body=bound.body,
        content_type=headers.get("Content-Type"),
        operation=bound.operation,
    )
    logger.debug("request_built", method=descriptor.method, url=descriptor.url)
    return descriptor


def validate_base_url(base_url: str) -> str:
    """Return ``base_url`` without a trailing slash, or raise InvalidBaseUrl."""
    if not isinstance(base_url, str) or not base_url.strip():
        raise InvalidBaseUrl(str(base_url), "empty")
    base_url = base_url.strip()
    if "{" in base_url or "}" in base_url:
        raise InvalidBaseUrl(base_url, "contains unresolved template variables")
    try:
        parts = urlsplit(base_url)
        parts.port  # raises ValueError on a bad port
    except ValueError as e:
        raise InvalidBaseUrl(base_url, str(e)) from e
    if parts.scheme not in ("http", "https"):
        raise InvalidBaseUrl(base_url, "scheme must be http or https")
    if not parts.hostname:
        raise InvalidBaseUrl(base_url, "missing host")
    if parts.query or parts.fragment:
        raise InvalidBaseUrl(base_url, "must not carry a query string or fragment")
    return base_url.rstrip("/")


def _join(base: str, path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    return base + path


class HeaderMerger:
    """Case-insensitive header collection, last write wins.

    Keys keep their first insertion position and the casing of the most
    recent writer.
    """

    def __init__(self):
        self._entries: dict[str, Pair] = {}

    def set(self, name: str, value: str) -> None:
        self._entries[name.lower()] = (name, value)

    def extend(self, pairs) -> None:
        for name, value in pairs:
            self.set(name, value)

    def get(self, name: str) -> str | None:
        entry = self._entries.get(name.lower())
        return entry[1] if entry else None

    def items(self) -> tuple[Pair, ...]:
        return tuple(self._entries.values())
