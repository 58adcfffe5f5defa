"""Target URL validation and loop prevention."""

import re
from urllib.parse import ParseResult, urlparse

from hlsproxy.errors import InvalidFormat, LoopDetected, MissingParameter
from hlsproxy.models import url_origin

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
# Characters a browser URL parser refuses in a host
_BAD_HOST_RE = re.compile(r"[\s\x00-\x1f\x7f<>\\^|]")


def _same_origin(target: ParseResult, proxy_origin: str) -> bool:
    """True when target points at the proxy's own scheme, host and port."""
    if not proxy_origin:
        return False
    try:
        return url_origin(target) == url_origin(urlparse(proxy_origin))
    except ValueError:
        return False


def validate_target(raw: str | None, proxy_origin: str) -> ParseResult:
    """Return the parsed target URL or raise a 400-class ProxyError."""
    if not raw:
        raise MissingParameter()

    proxy_origin = proxy_origin.rstrip("/")
    if proxy_origin and raw.startswith(proxy_origin):
        raise LoopDetected()

    if not _SCHEME_RE.match(raw):
        raise InvalidFormat("Invalid target URL")

    try:
        parsed = urlparse(raw)
        # .port raises ValueError for out-of-range or non-numeric ports
        parsed.port
    except ValueError:
        raise InvalidFormat("Invalid URL format")
    if not parsed.hostname or _BAD_HOST_RE.search(parsed.hostname):
        raise InvalidFormat("Invalid URL format")

    if _same_origin(parsed, proxy_origin):
        raise LoopDetected()

    return parsed
