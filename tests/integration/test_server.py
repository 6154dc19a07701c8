"""
Integration tests for the socket server.

A real HTTPServer runs on a free port in a background thread (see the
test_server fixture); requests go over TCP.
"""

import http.client
import json
import socket


def connect(test_server) -> http.client.HTTPConnection:
    return http.client.HTTPConnection("127.0.0.1", test_server.port, timeout=5)


def raw_exchange(test_server, payload: bytes) -> bytes:
    with socket.create_connection(("127.0.0.1", test_server.port), timeout=5) as sock:
        sock.sendall(payload)
        chunks = []
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)


class TestServerRequests:
    """End-to-end requests over a socket."""

    def test_get(self, test_server):
        conn = connect(test_server)
        conn.request("GET", "/test")
        response = conn.getresponse()

        assert response.status == 200
        assert json.loads(response.read()) == {"status": "ok"}
        assert response.getheader("Server") == "Portfolion/1.0"
        assert response.getheader("Date")
        conn.close()

    def test_post_echo(self, test_server):
        conn = connect(test_server)
        body = json.dumps({"title": "Buy milk"})
        conn.request("POST", "/echo", body=body, headers={"Content-Type": "application/json"})
        response = conn.getresponse()

        assert response.status == 200
        assert json.loads(response.read()) == {"received": {"title": "Buy milk"}}
        conn.close()

    def test_keep_alive_reuses_connection(self, test_server):
        conn = connect(test_server)

        for _ in range(3):
            conn.request("GET", "/test")
            response = conn.getresponse()
            assert response.status == 200
            assert response.getheader("Connection") == "keep-alive"
            response.read()
        conn.close()

    def test_connection_close_honoured(self, test_server):
        raw = raw_exchange(test_server, b"GET /test HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")

        assert raw.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"Connection: close\r\n" in raw

    def test_head_has_no_body(self, test_server):
        raw = raw_exchange(test_server, b"HEAD /test HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")
        head, _, body = raw.partition(b"\r\n\r\n")

        assert head.startswith(b"HTTP/1.1 200 OK")
        assert b"Content-Length: 16" in head
        assert body == b""

    def test_not_found(self, test_server):
        conn = connect(test_server)
        conn.request("GET", "/missing", headers={"Accept": "application/json"})
        response = conn.getresponse()

        assert response.status == 404
        assert json.loads(response.read())["code"] == 404
        conn.close()

    def test_malformed_request_gets_400(self, test_server):
        raw = raw_exchange(test_server, b"NONSENSE\r\n\r\n")

        assert raw.startswith(b"HTTP/1.1 400 Bad Request\r\n")
        assert b"Connection: close" in raw

    def test_unsupported_version_gets_505(self, test_server):
        raw = raw_exchange(test_server, b"GET /test HTTP/3.0\r\nHost: x\r\n\r\n")
        assert raw.startswith(b"HTTP/1.1 505 ")

    def test_concurrent_clients(self, test_server):
        connections = [connect(test_server) for _ in range(4)]
        for conn in connections:
            conn.request("GET", "/test")
        statuses = [conn.getresponse().status for conn in connections]

        assert statuses == [200, 200, 200, 200]
        for conn in connections:
            conn.close()
