"""Shared fixtures: a scripted fake console for the TCP control port."""
from __future__ import annotations

import base64
import socket
import threading
from typing import List, Optional, Tuple

import pytest

from ps4rp.control import Endpoint, RegistrationCredential

RP_KEY_HEX = "8e6a3c2b5d9f104c7a1b2e3d4f506172"
NONCE_HEX = "a1b2c3d4e5f60718293a4b5c6d7e8f90"
REGISTRATION_KEY = "3f2a1b0c"


def http_response(status: str = "200 OK", headers: Tuple[Tuple[str, str], ...] = ()) -> bytes:
    lines = [f"HTTP/1.1 {status}"]
    lines.extend(f"{name}: {value}" for name, value in headers)
    return ("\r\n".join(lines) + "\r\n\r\n").encode("ascii")


def session_ok(nonce: bytes = bytes.fromhex(NONCE_HEX)) -> bytes:
    return http_response(headers=(("RP-Nonce", base64.b64encode(nonce).decode("ascii")),))


def read_request(conn: socket.socket) -> str:
    data = b""
    while b"\r\n\r\n" not in data:
        chunk = conn.recv(4096)
        if not chunk:
            break
        data += chunk
    return data.decode("utf-8")


def request_headers(request: str) -> dict:
    headers = {}
    for line in request.split("\r\n")[1:]:
        name, sep, value = line.partition(": ")
        if sep:
            headers[name] = value
    return headers


class FakeControlServer:
    """Accepts one connection per scripted response.

    A response marked ``keep_open`` leaves the connection open as
    :attr:`control_conn` so tests can drive the ping/pong exchange.
    """

    def __init__(self, responses: List[Tuple[bytes, bool]]) -> None:
        self.responses = responses
        self.requests: List[str] = []
        self.control_conn: Optional[socket.socket] = None
        self.control_ready = threading.Event()
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.listener.bind(("127.0.0.1", 0))
        self.listener.listen(4)
        self.listener.settimeout(10.0)
        self.port = self.listener.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        for response, keep_open in self.responses:
            try:
                conn, _ = self.listener.accept()
            except OSError:
                return
            self.requests.append(read_request(conn))
            conn.sendall(response)
            if keep_open:
                self.control_conn = conn
                self.control_ready.set()
            else:
                conn.close()

    def close(self) -> None:
        self.listener.close()
        if self.control_conn is not None:
            self.control_conn.close()


def dead_udp_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def credential() -> RegistrationCredential:
    return RegistrationCredential.from_hex(RP_KEY_HEX, REGISTRATION_KEY)


@pytest.fixture
def fake_console():
    servers: List[FakeControlServer] = []

    def start(responses: List[Tuple[bytes, bool]]) -> Tuple[FakeControlServer, Endpoint]:
        server = FakeControlServer(responses)
        servers.append(server)
        endpoint = Endpoint("127.0.0.1", control_port=server.port, stream_port=dead_udp_port())
        return server, endpoint

    yield start
    for server in servers:
        server.close()
