"""HLS playlist rewriting.

Every media line and every ``URI="..."`` attribute in a playlist is replaced
with a URL that routes back through the proxy, so the player fetches
segments, variant playlists and keys via the same origin-spoofing path.
"""

import re
from urllib.parse import quote

from hlsproxy.models import PlaylistContext

# Characters encodeURIComponent leaves alone, on top of quote()'s defaults
_COMPONENT_SAFE = "!~*'()"
_URI_ATTR_RE = re.compile(r'URI="([^"]+)"')


def encode_component(value: str) -> str:
    return quote(value, safe=_COMPONENT_SAFE)


def make_proxy_url(proxy_origin: str, absolute_url: str) -> str:
    """Build the proxy URL that fetches absolute_url."""
    return f"{proxy_origin.rstrip('/')}/?url={encode_component(absolute_url)}"


def resolve_url(reference: str, base_origin: str, base_path: str) -> str:
    """Resolve a playlist reference against the playlist's origin and directory.

    Only the four shapes found in playlists are handled; ``../`` segments are
    kept as-is.
    """
    if reference.startswith("http://") or reference.startswith("https://"):
        return reference
    if reference.startswith("//"):
        return "https:" + reference
    if reference.startswith("/"):
        return base_origin + reference
    return base_origin + base_path + reference


def _rewrite_line(line: str, ctx: PlaylistContext) -> str:
    stripped = line.strip()

    if not stripped or stripped.startswith("#"):
        if 'URI="' not in stripped:
            return line

        def replace_uri(match):
            resolved = resolve_url(match.group(1), ctx.base_origin, ctx.base_path)
            return f'URI="{make_proxy_url(ctx.proxy_origin, resolved)}"'

        return _URI_ATTR_RE.sub(replace_uri, line)

    resolved = resolve_url(stripped, ctx.base_origin, ctx.base_path)
    return make_proxy_url(ctx.proxy_origin, resolved)


def rewrite_playlist(content: str, base_url: str, proxy_origin: str) -> str:
    """Rewrite playlist text fetched from base_url to route through proxy_origin."""
    ctx = PlaylistContext.from_url(base_url, proxy_origin)
    return "\n".join(_rewrite_line(line, ctx) for line in content.split("\n"))
