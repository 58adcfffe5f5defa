"""hlsproxy - CORS reverse proxy with HLS playlist rewriting."""

__version__ = "0.3.0"
