"""Upstream fetch with a hard time bound."""

import logging
import socket
import threading
import time

import requests
import urllib3
from requests.structures import CaseInsensitiveDict
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.exceptions import ReadTimeoutError

from hlsproxy.errors import UpstreamError, UpstreamTimeout
from hlsproxy.models import FetchResult, ProxyRequest

logger = logging.getLogger(__name__)

_local = threading.local()


def _shutdown(conn) -> None:
    sock = getattr(conn, "sock", None)
    if not isinstance(sock, socket.socket):
        return
    try:
        # Plain socket shutdown, also for TLS sockets, so a blocked read returns EOF
        socket.socket.shutdown(sock, socket.SHUT_RDWR)
    except OSError as e:
        logger.debug("Upstream socket already closed: %s", e)


class Deadline:
    """Wall-clock bound on one upstream exchange.

    Connections checked out or opened by this thread while the deadline is
    active are recorded. When it expires their sockets are shut down, which
    ends any pending connect, header or body read.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.expired = False
        self._conns = []
        self._lock = threading.Lock()
        self._timer = threading.Timer(seconds, self._expire)
        self._timer.daemon = True
        self._previous = None

    def __enter__(self):
        self._previous = getattr(_local, "deadline", None)
        _local.deadline = self
        self._timer.start()
        return self

    def __exit__(self, *exc):
        self._timer.cancel()
        _local.deadline = self._previous
        return False

    def watch(self, conn) -> None:
        with self._lock:
            if not self.expired:
                if conn not in self._conns:
                    self._conns.append(conn)
                return
        _shutdown(conn)

    def _expire(self) -> None:
        with self._lock:
            self.expired = True
            conns, self._conns = self._conns, []
        logger.debug("Upstream deadline of %gs expired, closing %d connection(s)", self.seconds, len(conns))
        for conn in conns:
            _shutdown(conn)


def _watch(conn) -> None:
    deadline = getattr(_local, "deadline", None)
    if deadline is not None:
        deadline.watch(conn)


class _WatchedHTTPConnection(HTTPConnection):
    def connect(self):
        super().connect()
        _watch(self)


class _WatchedHTTPSConnection(HTTPSConnection):
    def connect(self):
        super().connect()
        _watch(self)


class _WatchedHTTPConnectionPool(HTTPConnectionPool):
    ConnectionCls = _WatchedHTTPConnection

    def _get_conn(self, timeout=None):
        conn = super()._get_conn(timeout)
        _watch(conn)
        return conn


class _WatchedHTTPSConnectionPool(HTTPSConnectionPool):
    ConnectionCls = _WatchedHTTPSConnection

    def _get_conn(self, timeout=None):
        conn = super()._get_conn(timeout)
        _watch(conn)
        return conn


class DeadlineAdapter(requests.adapters.HTTPAdapter):
    """HTTPAdapter whose connections can be cut by an active Deadline."""

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            "http": _WatchedHTTPConnectionPool,
            "https": _WatchedHTTPSConnectionPool,
        }


def create_session(pool_maxsize: int = 100) -> requests.Session:
    """Pooled session shared by all request threads."""
    session = requests.Session()
    # Only headers built by the translator go upstream
    session.headers = CaseInsensitiveDict()
    adapter = DeadlineAdapter(pool_connections=20, pool_maxsize=pool_maxsize)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def disable_tls_warnings() -> None:
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


def is_timeout(error: requests.exceptions.RequestException) -> bool:
    """True for connect/read timeouts, including ones raised while reading a body."""
    if isinstance(error, requests.exceptions.Timeout):
        return True
    # iter_content wraps a body read timeout in a plain ConnectionError
    return any(isinstance(arg, ReadTimeoutError) for arg in error.args)


def fetch_upstream(
    session: requests.Session,
    proxy_request: ProxyRequest,
    headers: CaseInsensitiveDict,
    timeout: float,
    verify: bool = True,
    deadline: Deadline | None = None,
) -> FetchResult:
    """Issue the outbound request and return its outcome.

    The body is not read here; the caller streams or buffers it. Without a
    deadline from the caller, one covering just the request is armed here.
    """
    if deadline is None:
        with Deadline(timeout) as own:
            return fetch_upstream(session, proxy_request, headers, timeout, verify, deadline=own)

    started = time.monotonic()
    try:
        response = session.request(
            proxy_request.method,
            proxy_request.target,
            headers=headers,
            data=proxy_request.body if proxy_request.sends_body else None,
            stream=True,
            timeout=timeout,
            allow_redirects=True,
            verify=verify,
        )
    except requests.exceptions.RequestException as e:
        elapsed = time.monotonic() - started
        if deadline.expired or is_timeout(e):
            logger.warning("Upstream timed out after %gs: %s", timeout, proxy_request.target)
            return FetchResult(error=UpstreamTimeout(timeout), elapsed=elapsed)
        logger.warning("Upstream request failed for %s: %s", proxy_request.target, e)
        return FetchResult(error=UpstreamError(str(e) or e.__class__.__name__), elapsed=elapsed)

    return FetchResult(response=response, elapsed=time.monotonic() - started)
