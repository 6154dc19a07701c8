"""
=============================================================================
HTTP SERVER
=============================================================================

A threaded HTTP/1.1 server that feeds requests to an Application.

    main thread                          worker threads (ThreadPoolExecutor)
    ───────────                          ───────────────────────────────────
    accept() ──► Connection ──submit──►  read_request()
        ▲                                parse  ──► 400 / 413 / 505 and close
        │                                app.handle(request)
        └── 1s accept timeout so          send response
            shutdown is noticed           keep-alive? loop : close

The application is synchronous. Concurrency comes from one worker thread
per active connection, bounded by server.max_workers; every request still
runs start to finish on a single thread.

=============================================================================
SHUTDOWN
=============================================================================

SIGINT / SIGTERM (or shutdown() from another thread):

    1. stop accepting and close the listening socket
    2. let in-flight requests finish (executor.shutdown(wait=True))
    3. workers notice _running == False and close their keep-alive sockets

=============================================================================
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional, Tuple
import logging
import signal
import socket
import threading

from .config import ServerConfig
from .core.connection import Connection, ConnectionState
from .http.request import HTTPParseError, RequestParser
from .http.response import HTTPResponse, ResponseBuilder

logger = logging.getLogger(__name__)


class HTTPServer:
    """
    Args:
        app: Anything with handle(request) -> HTTPResponse
        config: Network and worker settings

    Example:
        server = HTTPServer(app, ServerConfig(port=0))
        server.start()                      # bind + listen, returns
        threading.Thread(target=server.serve_forever, daemon=True).start()
        ...
        server.shutdown()
    """

    def __init__(self, app: Any, config: Optional[ServerConfig] = None):
        self.app = app
        self.config = config or ServerConfig()
        self.config.validate()
        self._parser = RequestParser(max_request_size=self.config.max_request_size)
        self._socket: Optional[socket.socket] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._running = False
        self._stopped = threading.Event()
        self._original_handlers: Dict[int, Any] = {}

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); useful when port 0 was requested."""
        if self._socket is None:
            return self.config.host, self.config.port
        return self._socket.getsockname()[:2]

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Bind and listen without blocking."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(1.0)
        sock.bind((self.config.host, self.config.port))
        sock.listen(self.config.backlog)

        self._socket = sock
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="portfolion-worker",
        )
        self._running = True
        self._stopped.clear()
        host, port = self.address
        logger.info("Listening on http://%s:%d (%d workers)", host, port, self.config.max_workers)

    def serve_forever(self) -> None:
        """Accept connections until shutdown() is called."""
        if self._socket is None:
            self.start()
        try:
            while self._running:
                try:
                    client_socket, client_address = self._socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._running:
                        logger.error("Accept error: %s", e)
                    break

                conn = Connection(
                    socket=client_socket,
                    address=client_address,
                    buffer_size=self.config.buffer_size,
                    timeout=self.config.timeout,
                    keep_alive_timeout=self.config.keep_alive_timeout,
                    max_request_size=self.config.max_request_size,
                )
                logger.debug("[%s] Accepted %s:%d", conn.id, client_address[0], client_address[1])
                self._executor.submit(self._process_connection, conn)
        finally:
            self._cleanup()

    def run(self) -> None:
        """start() + serve_forever() with SIGINT/SIGTERM wired to shutdown()."""
        self.start()
        self._setup_signals()
        try:
            self.serve_forever()
        finally:
            self._restore_signals()

    def shutdown(self) -> None:
        """Stop accepting; in-flight requests are allowed to finish. Idempotent."""
        if self._running:
            logger.info("Shutting down server...")
        self._running = False

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        return self._stopped.wait(timeout)

    def _cleanup(self) -> None:
        self._running = False
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._stopped.set()
        logger.info("Server stopped")

    def _setup_signals(self) -> None:
        def shutdown_handler(signum, frame):
            logger.info("Received %s, initiating shutdown...", signal.Signals(signum).name)
            self.shutdown()

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def _restore_signals(self) -> None:
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    # =========================================================================
    # REQUEST HANDLING (worker threads)
    # =========================================================================

    def _process_connection(self, conn: Connection) -> None:
        """The keep-alive loop for one client."""
        with conn:
            while self._running:
                try:
                    raw_request = conn.read_request()
                    if raw_request is None:
                        break
                    request = self._parser.parse(raw_request, conn.address)
                except HTTPParseError as e:
                    logger.info("[%s] Bad request from %s: %s", conn.id, conn.client_ip, e.message)
                    self._send_error(conn, e.status_code, e.message)
                    break
                except TimeoutError:
                    self._send_error(conn, 408, "Request timeout")
                    break

                conn.state = ConnectionState.PROCESSING
                try:
                    response = self.app.handle(request)
                except Exception:
                    logger.exception("[%s] Application error", conn.id)
                    response = ResponseBuilder().status(500).json({"error": "Internal Server Error"}).build()

                keep_alive = self._running and self.config.keep_alive and request.is_keep_alive
                if keep_alive:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
                else:
                    response.set_header("Connection", "close")

                if not conn.send_response(self._serialize(response, request.method)):
                    break
                if not keep_alive:
                    break
                conn.set_keep_alive()

    def _serialize(self, response: HTTPResponse, method: str) -> bytes:
        data = response.to_bytes(self.config.server_name)
        if method == "HEAD" and response.body:
            # Same headers (Content-Length included) as GET, no body
            data = data[:-len(response.body)]
        return data

    def _send_error(self, conn: Connection, status: int, message: str) -> None:
        response = (ResponseBuilder()
            .status(status)
            .json({"error": message, "code": status})
            .header("Connection", "close")
            .build())
        conn.send_response(response.to_bytes(self.config.server_name))
