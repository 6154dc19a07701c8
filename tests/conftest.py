"""
pytest configuration and fixtures.
"""

import re
import socket
import threading
from typing import Generator

import pytest

from portfolion.application import Application
from portfolion.cache.memory import MemoryStore
from portfolion.config import Config, ServerConfig
from portfolion.http.request import HTTPRequest
from portfolion.http.response import HTTPResponse, ResponseBuilder
from portfolion.server import HTTPServer
from portfolion.testing import TestClient
from taskapp.main import create_app


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /api/tasks?status=pending&page=2 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = b'{"title": "Buy milk", "status": "pending"}'
    return (
        b"POST /api/tasks HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/json\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def config() -> Config:
    """Framework config for tests: debug on, generous limits."""
    config = Config()
    config.set("app.env", "testing")
    config.set("app.debug", True)
    return config


@pytest.fixture
def app(config: Config) -> Application:
    return create_app(config)


@pytest.fixture
def client(app: Application) -> TestClient:
    return TestClient(app)


CSRF_FIELD = re.compile(r'name="_token" value="([^"]+)"')


def fetch_csrf_token(client: TestClient, path: str = "/tasks/create") -> str:
    """Load a form page and pull the CSRF token out of it."""
    response = client.get(path)
    match = CSRF_FIELD.search(response.text)
    assert match, f"no CSRF token on {path}"
    return match.group(1)


@pytest.fixture
def csrf_token(client: TestClient):
    """csrf_token(path="/tasks/create", using=None) -> token from a form page."""
    def fetch(path: str = "/tasks/create", using: TestClient = None) -> str:
        return fetch_csrf_token(using or client, path)
    return fetch


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestServer:
    """Runs an HTTPServer in a background thread."""

    __test__ = False

    def __init__(self, server: HTTPServer):
        self.server = server
        self._thread: threading.Thread = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self) -> None:
        self.server.start()
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def test_server(free_port: int) -> Generator[TestServer, None, None]:
    """A real server on a free port with a couple of routes."""
    app = Application()

    @app.get("/test")
    def test_route(request: HTTPRequest) -> HTTPResponse:
        return ResponseBuilder().json({"status": "ok"}).build()

    @app.post("/echo")
    def echo_route(request: HTTPRequest) -> HTTPResponse:
        return ResponseBuilder().json({"received": request.json}).build()

    server = HTTPServer(app, ServerConfig(
        host="127.0.0.1",
        port=free_port,
        max_workers=4,
        timeout=5.0,
        keep_alive_timeout=1.0,
    ))
    running = TestServer(server)
    running.start()

    yield running

    running.stop()
