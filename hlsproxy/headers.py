"""Request and response header translation."""

from typing import Iterable, Mapping
from urllib.parse import ParseResult

from requests.structures import CaseInsensitiveDict

from hlsproxy.models import DEFAULT_POLICY, ContentKind, HeaderPolicy, url_origin

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"


def _items(headers: Mapping[str, str] | Iterable[tuple[str, str]]):
    if hasattr(headers, "items"):
        return headers.items()
    return headers


def cors_headers(extra: Mapping[str, str] | None = None, policy: HeaderPolicy = DEFAULT_POLICY) -> dict[str, str]:
    """The fixed CORS header set, optionally merged under extra headers."""
    headers = dict(extra or {})
    headers.update(policy.cors_headers)
    return headers


def build_upstream_headers(
    inbound: Mapping[str, str] | Iterable[tuple[str, str]],
    target: ParseResult,
    policy: HeaderPolicy = DEFAULT_POLICY,
) -> CaseInsensitiveDict:
    """Headers sent to the origin.

    Referer, Origin and User-Agent are spoofed to look like a browser on the
    target site. Only the allow-listed client headers are copied across.
    """
    origin = url_origin(target)
    headers = CaseInsensitiveDict()
    headers["Referer"] = origin + "/"
    headers["Origin"] = origin
    headers["User-Agent"] = USER_AGENT

    for name, value in _items(inbound):
        if name.lower() in policy.passthrough and value:
            headers["-".join(p.capitalize() for p in name.split("-"))] = value

    if "Accept" not in headers:
        headers["Accept"] = "*/*"
    return headers


def build_downstream_headers(
    origin_headers: Mapping[str, str] | Iterable[tuple[str, str]],
    kind: ContentKind = ContentKind.OPAQUE,
    policy: HeaderPolicy = DEFAULT_POLICY,
) -> CaseInsensitiveDict:
    """Headers sent back to the client.

    The CORS set is applied after filtering so the origin can never override it.
    """
    headers = CaseInsensitiveDict()
    encoded = False
    for name, value in _items(origin_headers):
        if name.lower() == "content-encoding" and value.strip().lower() != "identity":
            encoded = True
        if policy.is_excluded(name):
            continue
        headers[name] = value

    # requests decodes gzip/deflate bodies, so the origin length no longer matches
    if encoded:
        headers.pop("Content-Length", None)

    if kind is ContentKind.PLAYLIST:
        headers["Content-Type"] = PLAYLIST_CONTENT_TYPE
        headers.pop("Content-Length", None)

    for name, value in policy.cors_headers:
        headers[name] = value
    return headers
