"""Per-request values and static policy for the proxy."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional
from urllib.parse import ParseResult, urlparse

import requests

from hlsproxy.errors import ProxyError


class ContentKind(Enum):
    """How an upstream body is handled."""
    PLAYLIST = "playlist"
    OPAQUE = "opaque"

    @classmethod
    def classify(cls, target_path: str, content_type: str | None) -> "ContentKind":
        """Playlist when the path ends in .m3u8 or the content type mentions mpegurl."""
        if target_path.lower().endswith(".m3u8"):
            return cls.PLAYLIST
        if content_type and "mpegurl" in content_type.lower():
            return cls.PLAYLIST
        return cls.OPAQUE


@dataclass(frozen=True)
class HeaderPolicy:
    """Process-wide header rules."""
    cors_headers: tuple[tuple[str, str], ...]
    passthrough: frozenset[str]
    excluded: frozenset[str]
    excluded_prefixes: tuple[str, ...] = ("access-control-",)

    def is_excluded(self, name: str) -> bool:
        low = name.lower()
        return low in self.excluded or low.startswith(self.excluded_prefixes)


DEFAULT_POLICY = HeaderPolicy(
    cors_headers=(
        ("Access-Control-Allow-Origin", "*"),
        ("Access-Control-Allow-Methods", "GET, POST, PUT, DELETE, OPTIONS, HEAD"),
        ("Access-Control-Allow-Headers", "Content-Type, Authorization, Range"),
        ("Access-Control-Expose-Headers", "Content-Length, Content-Range"),
        ("Access-Control-Max-Age", "86400"),
    ),
    passthrough=frozenset({"range", "accept", "accept-language"}),
    excluded=frozenset({"content-encoding", "transfer-encoding", "connection", "keep-alive"}),
)


def url_origin(parsed: ParseResult) -> str:
    """scheme://host[:port] with default ports dropped, like a browser origin."""
    scheme = parsed.scheme.lower()
    host = parsed.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    port = parsed.port
    if port is None or (scheme, port) in (("http", 80), ("https", 443)):
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


@dataclass
class ProxyRequest:
    """Inbound request as seen by the orchestrator."""
    method: str
    headers: dict[str, str]
    target: str
    body: Optional[bytes] = None

    @property
    def sends_body(self) -> bool:
        return self.method.upper() not in ("GET", "HEAD")


@dataclass
class ProxyResponse:
    """Response handed to the transport after header filtering."""
    status: int
    reason: str
    headers: dict[str, str]
    body: str | Iterable[bytes] = b""
    kind: ContentKind = ContentKind.OPAQUE
    on_close: Optional[Callable[[], None]] = None

    @property
    def status_line(self) -> str | int:
        if self.reason:
            return f"{self.status} {self.reason}"
        return self.status


@dataclass(frozen=True)
class PlaylistContext:
    """Base origin and directory that playlist references resolve against."""
    base_origin: str
    base_path: str
    proxy_origin: str

    @classmethod
    def from_url(cls, base_url: str, proxy_origin: str) -> "PlaylistContext":
        parsed = urlparse(base_url)
        path = parsed.path or "/"
        return cls(
            base_origin=url_origin(parsed),
            base_path=path[: path.rfind("/") + 1],
            proxy_origin=proxy_origin.rstrip("/"),
        )


@dataclass
class FetchResult:
    """Outcome of the upstream fetch: a response or a typed error, never both."""
    response: Optional[requests.Response] = None
    error: Optional[ProxyError] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and self.response is not None
