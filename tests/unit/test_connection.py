"""
Unit tests for Connection framing over a socket pair.
"""

import socket
from typing import Generator, Tuple

import pytest

from portfolion.core.connection import Connection, ConnectionState
from portfolion.http.request import HTTPParseError


@pytest.fixture
def pair() -> Generator[Tuple[socket.socket, socket.socket], None, None]:
    server_side, client_side = socket.socketpair()
    yield server_side, client_side
    for sock in (server_side, client_side):
        try:
            sock.close()
        except OSError:
            pass


def make_connection(sock: socket.socket, **options) -> Connection:
    options.setdefault("timeout", 2.0)
    return Connection(socket=sock, address=("127.0.0.1", 50000), **options)


class TestReadRequest:
    """Buffering until a complete message is held."""

    def test_simple_get(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)
        client_side.sendall(b"GET / HTTP/1.1\r\nHost: x\r\n\r\n")

        assert conn.read_request() == b"GET / HTTP/1.1\r\nHost: x\r\n\r\n"
        assert conn.requests_handled == 1

    def test_body_split_across_sends(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)
        client_side.sendall(b"POST /tasks HTTP/1.1\r\nContent-Length: 10\r\n\r\nhello")
        client_side.sendall(b"world")

        assert conn.read_request().endswith(b"\r\n\r\nhelloworld")

    def test_pipelined_requests_are_split(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)
        client_side.sendall(
            b"POST /a HTTP/1.1\r\nContent-Length: 2\r\n\r\nhi"
            b"GET /b HTTP/1.1\r\n\r\n"
        )

        first = conn.read_request()
        second = conn.read_request()

        assert first.startswith(b"POST /a") and first.endswith(b"hi")
        assert second == b"GET /b HTTP/1.1\r\n\r\n"
        assert conn.requests_handled == 2

    def test_client_closed_returns_none(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)
        client_side.close()

        assert conn.read_request() is None

    def test_oversized_request_is_413(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side, max_request_size=64)
        client_side.sendall(b"GET /" + b"a" * 100 + b" HTTP/1.1\r\n")

        with pytest.raises(HTTPParseError) as exc_info:
            conn.read_request()
        assert exc_info.value.status_code == 413

    def test_first_request_timeout(self, pair):
        server_side, _ = pair
        conn = make_connection(server_side, timeout=0.1)

        with pytest.raises(TimeoutError):
            conn.read_request()

    def test_idle_keep_alive_returns_none(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side, keep_alive_timeout=0.1)
        client_side.sendall(b"GET / HTTP/1.1\r\n\r\n")
        conn.read_request()

        assert conn.read_request() is None


class TestSendAndClose:
    def test_send_response(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        assert conn.send_response(b"HTTP/1.1 204 No Content\r\n\r\n") is True
        assert client_side.recv(1024) == b"HTTP/1.1 204 No Content\r\n\r\n"
        assert conn.state == ConnectionState.WRITING

    def test_close_is_idempotent(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)
        client_side.close()

        conn.close()
        conn.close()
        assert conn.state == ConnectionState.CLOSED

    def test_context_manager_closes(self, pair):
        server_side, client_side = pair
        client_side.close()

        with make_connection(server_side) as conn:
            pass
        assert conn.state == ConnectionState.CLOSED
