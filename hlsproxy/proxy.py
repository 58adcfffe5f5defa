"""Flask-based CORS proxy server with HLS playlist rewriting."""

import hmac
import json
import logging
import threading
from urllib.parse import urlparse

import requests
from flask import Blueprint, Flask, Response, current_app, render_template_string, request, stream_with_context
from flask_cors import CORS
from werkzeug.serving import make_server

from hlsproxy.config import Config
from hlsproxy.errors import MissingParameter, ProxyError, RewriteFailure, Unauthorized, UpstreamError, UpstreamTimeout
from hlsproxy.fetcher import Deadline, create_session, disable_tls_warnings, fetch_upstream, is_timeout
from hlsproxy.headers import build_downstream_headers, build_upstream_headers, cors_headers
from hlsproxy.models import DEFAULT_POLICY, ContentKind, ProxyRequest, ProxyResponse
from hlsproxy.playlist import rewrite_playlist
from hlsproxy.validator import validate_target

logger = logging.getLogger(__name__)

METHODS = ["GET", "POST", "PUT", "DELETE", "HEAD", "OPTIONS"]
CONFIG_KEY = "HLSPROXY"
SESSION_KEY = "hlsproxy.session"

HELP_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>CORS Proxy</title>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
               max-width: 700px; margin: 50px auto; padding: 20px; line-height: 1.6;
               background: #1a1a2e; color: #eee; }
        code, pre { background: #16213e; padding: 3px 8px; border-radius: 4px; }
    </style>
</head>
<body>
    <h1>CORS Proxy</h1>
    <p>Relays video streams and API calls that the browser cannot fetch directly.</p>
    <h2>Usage</h2>
    <pre>{{ origin }}/?url=https://example.com/video.m3u8</pre>
    <ul>
        <li>HLS (m3u8) playlists are rewritten so segments and keys also go through the proxy</li>
        <li>Range requests for seeking</li>
        <li>CORS headers on every response</li>
        <li>Upstream timeout: {{ timeout }}s</li>
    </ul>
    <p>Health check: <code>{{ origin }}/health</code></p>
</body>
</html>"""

bp = Blueprint("proxy", __name__)


class PassthroughResponse(Response):
    """Relayed upstream reply; no Content-Type is invented when the origin sent none."""
    default_mimetype = None


def _config() -> Config:
    return current_app.config[CONFIG_KEY]


def _proxy_origin(config: Config) -> str:
    """Origin this proxy is reached on, used for loop checks and rewritten URLs."""
    if config.public_origin:
        return config.public_origin.rstrip("/")
    return request.host_url.rstrip("/")


def _check_authorization(password: str) -> None:
    if not password:
        return
    supplied = request.headers.get("Authorization", "")
    if not hmac.compare_digest(supplied.encode(), f"Bearer {password}".encode()):
        raise Unauthorized()


def _iter_upstream(upstream: requests.Response, chunk_size: int):
    """Yield upstream body chunks; a failure mid-stream ends the body."""
    try:
        for chunk in upstream.iter_content(chunk_size=chunk_size):
            if chunk:
                yield chunk
    except requests.exceptions.RequestException as e:
        logger.warning("Upstream stream interrupted for %s: %s", upstream.url, e)
    finally:
        upstream.close()


def _read_playlist(upstream: requests.Response, config: Config, deadline: Deadline) -> str:
    limit = config.max_playlist_bytes
    body = bytearray()
    try:
        for chunk in upstream.iter_content(chunk_size=64 * 1024):
            body.extend(chunk)
            if len(body) > limit:
                raise RewriteFailure(f"playlist larger than {limit} bytes")
    except requests.exceptions.RequestException as e:
        if deadline.expired or is_timeout(e):
            logger.warning("Playlist body timed out after %gs: %s", config.timeout, upstream.url)
            raise UpstreamTimeout(config.timeout)
        raise UpstreamError(str(e) or e.__class__.__name__)
    finally:
        upstream.close()

    # A cut connection can look like a short but complete body
    if deadline.expired:
        raise UpstreamTimeout(config.timeout)

    try:
        return body.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise RewriteFailure(f"cannot decode playlist: {e}")


def _build_response(proxy_request: ProxyRequest, upstream: requests.Response,
                    proxy_origin: str, config: Config, deadline: Deadline) -> ProxyResponse:
    kind = ContentKind.classify(
        urlparse(proxy_request.target).path,
        upstream.headers.get("Content-Type"),
    )

    if kind is ContentKind.PLAYLIST and 200 <= upstream.status_code < 300:
        text = _read_playlist(upstream, config, deadline)
        try:
            rewritten = rewrite_playlist(text, upstream.url or proxy_request.target, proxy_origin)
        except Exception as e:
            logger.exception("Playlist rewrite failed for %s", proxy_request.target)
            raise RewriteFailure(str(e))
        return ProxyResponse(
            status=upstream.status_code,
            reason=upstream.reason or "",
            headers=build_downstream_headers(upstream.headers.items(), ContentKind.PLAYLIST),
            body=rewritten,
            kind=ContentKind.PLAYLIST,
        )

    return ProxyResponse(
        status=upstream.status_code,
        reason=upstream.reason or "",
        headers=build_downstream_headers(upstream.headers.items()),
        body=_iter_upstream(upstream, config.chunk_size),
        on_close=upstream.close,
    )


def proxy_request(proxy_req: ProxyRequest, proxy_origin: str, config: Config,
                  session: requests.Session) -> ProxyResponse:
    """Fetch the target and translate the reply. Raises ProxyError on proxy-side failures.

    One deadline covers the request and, for playlists, the buffered body.
    Streamed bodies are bounded per read only.
    """
    target = validate_target(proxy_req.target, proxy_origin)
    upstream_headers = build_upstream_headers(proxy_req.headers, target)

    with Deadline(config.timeout) as deadline:
        result = fetch_upstream(session, proxy_req, upstream_headers, config.timeout,
                                verify=config.verify_tls, deadline=deadline)
        if result.error is not None:
            raise result.error

        upstream = result.response
        try:
            return _build_response(proxy_req, upstream, proxy_origin, config, deadline)
        except ProxyError:
            upstream.close()
            raise
        except Exception as e:
            upstream.close()
            logger.exception("Failed to build response for %s", proxy_req.target)
            raise UpstreamError(str(e))


@bp.route("/", defaults={"path": ""}, methods=METHODS)
@bp.route("/<path:path>", methods=METHODS)
def handle(path):
    if request.method == "OPTIONS":
        return Response(status=204, headers=cors_headers())

    if request.path == "/health":
        return Response("OK", status=200, headers=cors_headers(), mimetype="text/plain")

    config = _config()
    if "url" not in request.args:
        if request.method not in ("GET", "HEAD"):
            raise MissingParameter()
        page = render_template_string(HELP_PAGE, origin=_proxy_origin(config), timeout=f"{config.timeout:g}")
        return Response(page, status=200, headers=cors_headers({"Content-Type": "text/html; charset=utf-8"}))

    _check_authorization(config.password)

    proxy_req = ProxyRequest(
        method=request.method,
        headers={k: v for k, v in request.headers.items() if k.lower() in DEFAULT_POLICY.passthrough},
        target=request.args.get("url", ""),
    )
    if proxy_req.sends_body:
        proxy_req.body = request.get_data()

    logger.info("%s %s", proxy_req.method, proxy_req.target)
    try:
        result = proxy_request(proxy_req, _proxy_origin(config), config, current_app.extensions[SESSION_KEY])
    except ProxyError:
        raise
    except Exception as e:
        logger.exception("Unexpected proxy failure for %s", proxy_req.target)
        raise UpstreamError(str(e))

    if isinstance(result.body, str):
        return Response(result.body, status=result.status_line, headers=list(result.headers.items()))

    response = PassthroughResponse(stream_with_context(result.body), status=result.status_line,
                                   headers=list(result.headers.items()))
    # HEAD responses never start the body generator
    if result.on_close is not None:
        response.call_on_close(result.on_close)
    return response


def handle_proxy_error(error: ProxyError):
    logger.debug("Responding %s: %s", error.status, error.message)
    body = json.dumps(error.to_dict(), ensure_ascii=False)
    return Response(body, status=error.status,
                    headers=cors_headers({"Content-Type": "application/json; charset=utf-8"}))


def create_app(config: Config | None = None, session: requests.Session | None = None) -> Flask:
    """Build the proxy application."""
    config = config or Config()
    app = Flask(__name__)
    app.config[CONFIG_KEY] = config
    app.extensions[SESSION_KEY] = session or create_session()

    # Responses built here carry the full CORS set already; this covers
    # framework-generated ones such as 405.
    policy = dict(DEFAULT_POLICY.cors_headers)
    CORS(
        app,
        origins="*",
        methods=policy["Access-Control-Allow-Methods"],
        allow_headers=policy["Access-Control-Allow-Headers"].split(", "),
        expose_headers=policy["Access-Control-Expose-Headers"].split(", "),
        max_age=int(policy["Access-Control-Max-Age"]),
    )

    if not config.verify_tls:
        disable_tls_warnings()

    app.register_blueprint(bp)
    app.register_error_handler(ProxyError, handle_proxy_error)
    return app


class ProxyServer:
    """Threaded WSGI server hosting the proxy app."""

    def __init__(self, config: Config | None = None, app: Flask | None = None):
        self.config = config or Config()
        self.app = app or create_app(self.config)
        self.port = 0
        self.server_thread = None
        self._server = None

    @property
    def origin(self) -> str:
        host = self.config.host
        if host in ("0.0.0.0", "::", ""):
            host = "127.0.0.1"
        return f"http://{host}:{self.port}"

    def _bind(self):
        self._server = make_server(self.config.host, self.config.port, self.app, threaded=True)
        self.port = self._server.server_port

    def start(self) -> int:
        """Start serving in a daemon thread; port 0 picks a free port."""
        self._bind()
        self.server_thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self.server_thread.start()
        logger.info("Proxy server started on %s", self.origin)
        return self.port

    def serve_forever(self) -> None:
        """Serve in the calling thread until interrupted."""
        self._bind()
        logger.info("Proxy server running on %s", self.origin)
        try:
            self._server.serve_forever()
        finally:
            self._server.server_close()

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self.server_thread is not None:
            self.server_thread.join(timeout=5)
        self._server = None
        self.server_thread = None
