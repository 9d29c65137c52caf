"""One-shot loopback listener that captures an OAuth2 authorization code."""

from __future__ import annotations

import logging
import queue
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlsplit

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
DEFAULT_TIMEOUT_SECONDS = 120.0
POLL_INTERVAL_SECONDS = 0.2

SUCCESS_PAGE = (
    b"<html><head><title>Authorization received</title></head>"
    b"<body><p>Authorization received. You can close this window.</p></body></html>"
)


def extract_code(request_line: str) -> str | None:
    """Return the ``code`` query parameter of an HTTP request line, if any."""
    parts = request_line.split()
    if len(parts) < 2:
        return None
    values = parse_qs(urlsplit(parts[1]).query).get("code")
    return values[0] if values and values[0] else None


class _CallbackHandler(BaseHTTPRequestHandler):
    """Answers any request with the fixed page and records the request line."""

    server: _CallbackServer

    def _answer(self, with_body: bool = True) -> None:
        self.server.captured_line = self.requestline
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(SUCCESS_PAGE)))
        self.send_header("Connection", "close")
        self.end_headers()
        if with_body:
            self.wfile.write(SUCCESS_PAGE)

    def do_GET(self) -> None:  # noqa: N802
        self._answer()

    def do_POST(self) -> None:  # noqa: N802
        self._answer()

    def do_HEAD(self) -> None:  # noqa: N802
        self._answer(with_body=False)

    def log_message(self, format: str, *args: object) -> None:
        logger.debug("Callback request: " + format, *args)


class _CallbackServer(HTTPServer):
    allow_reuse_address = True
    captured_line: str | None = None
    served = False

    def finish_request(self, request, client_address) -> None:
        try:
            super().finish_request(request, client_address)
        finally:
            self.served = True


class AuthorizationListener:
    """Single-use HTTP listener bound to the redirect URI's loopback port.

    The accept-and-parse work runs on a background thread, which hands the
    result to ``wait_for_code`` over a one-slot queue. Exactly one request is
    served, with or without a code. The socket is always closed when
    ``wait_for_code`` returns, so the same port can be bound again.

    Usage:
        >>> with AuthorizationListener(port=8765) as listener:
        ...     code = listener.wait_for_code()
    """

    def __init__(
        self,
        port: int,
        host: str = LOOPBACK_HOST,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._host = host
        self._port = port
        self._timeout = timeout
        self._server: _CallbackServer | None = None
        self._worker: threading.Thread | None = None
        self._handoff: queue.Queue[str | None] = queue.Queue(maxsize=1)
        self._stop = threading.Event()

    @classmethod
    def from_redirect_uri(
        cls, redirect_uri: str, timeout: float = DEFAULT_TIMEOUT_SECONDS
    ) -> AuthorizationListener:
        """Build a listener on the port named by ``redirect_uri``."""
        parts = urlsplit(redirect_uri)
        port = parts.port or (443 if parts.scheme == "https" else 80)
        return cls(port=port, timeout=timeout)

    @property
    def port(self) -> int:
        """Bound port (the real one when constructed with port 0)."""
        if self._server is not None:
            return self._server.server_address[1]
        return self._port

    @property
    def is_listening(self) -> bool:
        return self._server is not None

    def start(self) -> None:
        """Bind the socket and start the background worker."""
        if self._server is not None or self._stop.is_set():
            raise RuntimeError("Listener is single-use and was already started")
        self._server = _CallbackServer((self._host, self._port), _CallbackHandler)
        self._server.timeout = POLL_INTERVAL_SECONDS
        self._worker = threading.Thread(
            target=self._serve_one,
            args=(self._server,),
            name=f"oauth-callback-{self.port}",
            daemon=True,
        )
        self._worker.start()
        logger.info("Waiting for authorization callback on %s:%d", self._host, self.port)

    def _serve_one(self, server: _CallbackServer) -> None:
        code: str | None = None
        try:
            while not self._stop.is_set() and not server.served:
                server.handle_request()
            if server.captured_line is not None:
                code = extract_code(server.captured_line)
        except (OSError, ValueError) as e:
            if not self._stop.is_set():
                logger.warning("Authorization listener failed: %s", e)
        finally:
            if not self._stop.is_set():
                self._handoff.put_nowait(code)

    def wait_for_code(self) -> str | None:
        """Block until a request arrives or the timeout expires.

        Returns:
            The authorization code, or None on timeout or a request without one.
        """
        if self._server is None:
            self.start()
        try:
            code = self._handoff.get(timeout=self._timeout)
        except queue.Empty:
            logger.warning("No authorization callback within %.0fs", self._timeout)
            code = None
        finally:
            self.close()
        return code

    def close(self) -> None:
        """Stop the worker and release the port. Safe to call repeatedly."""
        self._stop.set()
        worker, self._worker = self._worker, None
        server, self._server = self._server, None
        if worker is not None:
            worker.join(timeout=POLL_INTERVAL_SECONDS * 5)
        if server is not None:
            server.server_close()
            logger.debug("Authorization listener on port %d closed", server.server_address[1])

    def __enter__(self) -> AuthorizationListener:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
