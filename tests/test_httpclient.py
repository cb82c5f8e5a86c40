import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from awgupdater.httpclient import HttpError, Session


class _Handler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def do_GET(self):
        server = self.server
        server.requests.append(
            (self.path, {key.lower(): value for key, value in self.headers.items()})
        )
        body = server.routes.get(self.path)
        if body is None:
            self.send_response(404)
            self.send_header("Content-Length", "0")
            self.end_headers()
            return
        self.send_response(200)
        if self.path in server.no_length:
            self.send_header("Connection", "close")
            self.end_headers()
            self.wfile.write(body)
            self.close_connection = True
            return
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.routes = {}
    httpd.requests = []
    httpd.no_length = set()
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield httpd
    httpd.shutdown()
    httpd.server_close()


def _connect(server, user_agent="HTTP Test Suite/1.0"):
    session = Session(user_agent, timeout=10)
    return session, session.connect("127.0.0.1", server.server_address[1], False)


def test_response_length_and_body(server):
    server.routes["/ip"] = b"192.0.2.1\n"
    _, connection = _connect(server)
    with connection.get("/ip", True) as response:
        assert response.status == 200
        assert response.length() == 10
        assert response.read() == b"192.0.2.1\n"


def test_large_download_reads_announced_length(server):
    payload = bytes(range(256)) * 800
    server.routes["/big.bin"] = payload
    _, connection = _connect(server)
    response = connection.get("/big.bin", False)
    length = response.length()
    received = b"".join(response)
    response.close()
    assert length == len(payload)
    assert len(received) == length
    assert received == payload


def test_read_in_chunks_ends_with_empty_bytes(server):
    server.routes["/data"] = b"abcdef"
    _, connection = _connect(server)
    with connection.get("/data") as response:
        assert response.read(0) == b""
        parts = []
        while chunk := response.read(4):
            parts.append(chunk)
        assert b"".join(parts) == b"abcdef"
        assert response.read(4) == b""


def test_refresh_sends_no_cache_headers(server):
    server.routes["/x"] = b"x"
    _, connection = _connect(server)
    connection.get("/x", True).close()
    connection.get("/x", False).close()
    first, second = server.requests[0][1], server.requests[1][1]
    assert first["cache-control"] == "no-cache"
    assert first["pragma"] == "no-cache"
    assert "cache-control" not in second


def test_user_agent_is_sent(server):
    server.routes["/ua"] = b"ok"
    _, connection = _connect(server, "AmneziaWG/1.0.2 (Windows 10.0.19045; amd64)")
    connection.get("/ua").close()
    assert server.requests[0][1]["user-agent"] == "AmneziaWG/1.0.2 (Windows 10.0.19045; amd64)"


def test_missing_content_length_raises(server):
    server.routes["/stream"] = b"streamed"
    server.no_length.add("/stream")
    _, connection = _connect(server)
    with connection.get("/stream") as response:
        with pytest.raises(HttpError, match="Content-Length"):
            response.length()
        assert response.read() == b"streamed"


def test_status_is_reported_for_missing_path(server):
    _, connection = _connect(server)
    with connection.get("/missing") as response:
        assert response.status == 404
        assert response.length() == 0


def test_connection_refused_raises_http_error():
    probe = socket.socket()
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    session = Session("test", timeout=5)
    connection = session.connect("127.0.0.1", port, False)
    with pytest.raises(HttpError):
        connection.get("/")


def test_closed_session_refuses_connect_and_get(server):
    session, connection = _connect(server)
    session.close()
    with pytest.raises(HttpError, match="Session is closed"):
        session.connect("127.0.0.1", 80, False)
    with pytest.raises(HttpError, match="Session is closed"):
        connection.get("/")


def test_closed_connection_closes_responses(server):
    server.routes["/a"] = b"a"
    _, connection = _connect(server)
    response = connection.get("/a")
    connection.close()
    assert response.closed is True
    with pytest.raises(HttpError, match="Response is closed"):
        response.read()
    with pytest.raises(HttpError, match="Connection is closed"):
        connection.get("/a")


def test_default_ports():
    session = Session("test")
    assert session.connect("example.com", 0, True).port == 443
    assert session.connect("example.com", 0, False).port == 80


def test_invalid_port_raises():
    with pytest.raises(HttpError, match="Invalid port"):
        Session("test").connect("example.com", 70000, True)