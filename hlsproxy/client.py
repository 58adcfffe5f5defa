"""Helpers for talking to a running proxy."""

import time
from dataclasses import dataclass

import httpx

from hlsproxy.playlist import make_proxy_url


def get_proxy_url(proxy_origin: str, target_url: str) -> str:
    """Generate the proxied URL for target_url; the target is returned as-is without a proxy."""
    if not proxy_origin:
        return target_url
    return make_proxy_url(proxy_origin, target_url)


@dataclass
class HealthStatus:
    """Result of a /health probe."""
    origin: str
    healthy: bool
    status_code: int | None = None
    elapsed_ms: float | None = None
    error: str | None = None


async def check_health(proxy_origin: str, timeout: float = 5.0,
                       transport: httpx.AsyncBaseTransport | None = None) -> HealthStatus:
    """Probe GET /health on a running proxy."""
    origin = proxy_origin.rstrip("/")
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        started = time.monotonic()
        try:
            res = await client.get(f"{origin}/health")
        except httpx.HTTPError as e:
            return HealthStatus(origin=origin, healthy=False, error=str(e) or e.__class__.__name__)
        elapsed = time.monotonic() - started

    return HealthStatus(
        origin=origin,
        healthy=res.status_code == 200 and res.text.strip() == "OK",
        status_code=res.status_code,
        elapsed_ms=elapsed * 1000,
    )
