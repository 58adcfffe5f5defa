"""Proxy error types and their HTTP status codes."""


class ProxyError(Exception):
    """Base class for failures reported to the client as a JSON error body."""
    status = 502
    message = "Proxy Error"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message}


class MissingParameter(ProxyError):
    status = 400
    message = "Missing url parameter"


class InvalidFormat(ProxyError):
    status = 400
    message = "Invalid target URL"


class LoopDetected(ProxyError):
    status = 400
    message = "Loop detected: self-fetch blocked"


class Unauthorized(ProxyError):
    status = 403
    message = "Unauthorized"


class UpstreamTimeout(ProxyError):
    status = 502

    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(f"Request timeout ({seconds:g}s)")


class UpstreamError(ProxyError):
    status = 502

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Proxy Error: {detail}")


class RewriteFailure(ProxyError):
    status = 502

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Proxy M3U8 Error: {detail}")


class ConfigError(Exception):
    """Raised when a configuration value cannot be parsed."""
