import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import httpx
import pytest

from mtgproxy.network.base import Dialer, NetworkError
from mtgproxy.network.default import DefaultDialer
from mtgproxy.network.network import Network

CONN = object()


class _Handler(BaseHTTPRequestHandler):
    def _reply(self, payload):
        data = json.dumps(payload).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def do_GET(self):
        self._reply(
            {"path": self.path, "user_agent": self.headers.get_all("User-Agent")}
        )

    def do_POST(self):
        length = int(self.headers["Content-Length"])
        self._reply({"body": self.rfile.read(length).decode()})

    def log_message(self, *args):
        pass


@pytest.fixture
def http_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


class FakeDialer(Dialer):
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def dial(self, network, address):
        self.calls.append((network, address))
        if self.error is not None:
            raise self.error
        return CONN


def test_local_http_request(http_server):
    ntw = Network(DefaultDialer(0, 0), "itsme", "1.1.1.1", 0)
    with ntw.make_http_client(None) as client:
        resp = client.get(f"http://{http_server}/headers")

    assert resp.status_code == 200
    assert resp.json()["user_agent"] == ["itsme"]
    assert resp.json()["path"] == "/headers"


def test_post_body(http_server):
    ntw = Network(DefaultDialer(0, 0), "itsme", "1.1.1.1", 0)
    with ntw.make_http_client(None) as client:
        resp = client.post(f"http://{http_server}/post", content=b"hello")

    assert resp.json() == {"body": "hello"}


def test_custom_dial_func(http_server):
    base = DefaultDialer(0, 0)
    seen = []

    def dial(network, address):
        seen.append((network, address))
        return base.dial(network, address)

    ntw = Network(base, "itsme", "1.1.1.1", 0)
    with ntw.make_http_client(dial) as client:
        resp = client.get(f"http://{http_server}/get?a=1")

    assert resp.json()["path"] == "/get?a=1"
    assert seen == [("tcp", http_server)]


def test_http_client_connect_error():
    ntw = Network(FakeDialer(NetworkError("boom")), "itsme", "1.1.1.1", 0)
    with ntw.make_http_client(None) as client:
        with pytest.raises(httpx.ConnectError):
            client.get("http://127.0.0.1:1/")


def test_incorrect_timeout():
    with pytest.raises(ValueError):
        Network(DefaultDialer(0, 0), "itsme", "1.1.1.1", -1.0)


def test_incorrect_doh_hostname():
    with pytest.raises(ValueError):
        Network(DefaultDialer(0, 0), "itsme", "doh.com", 0)


def test_default_http_timeout():
    ntw = Network(FakeDialer(), "itsme", "1.1.1.1", 0)
    assert ntw.http_timeout > 0


def test_dial_ip_address_passes_through():
    fake = FakeDialer()
    ntw = Network(fake, "itsme", "1.1.1.1", 0)

    assert ntw.dial("tcp6", "[::1]:443") is CONN
    assert ntw.dial("tcp", "127.0.0.1:80") is CONN
    assert fake.calls == [("tcp6", "[::1]:443"), ("tcp", "127.0.0.1:80")]


def test_dial_failure_is_wrapped():
    fake = FakeDialer(NetworkError("refused"))
    ntw = Network(fake, "itsme", "1.1.1.1", 0)

    with pytest.raises(NetworkError, match="cannot dial to tcp:127.0.0.1:1"):
        ntw.dial("tcp", "127.0.0.1:1")
    assert fake.calls == [("tcp", "127.0.0.1:1")]


def test_dial_unknown_protocol_for_hostname():
    fake = FakeDialer()
    ntw = Network(fake, "itsme", "1.1.1.1", 0)

    with pytest.raises(NetworkError, match="cannot resolve dns names"):
        ntw.dial("udp", "example.com:53")
    assert fake.calls == []