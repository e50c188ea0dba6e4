"""HTTP-style session and control requests on the console's TCP port."""
from __future__ import annotations

import base64
import binascii
import logging
import socket
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from .crypto import SessionContext, derive_control_session
from .util import concat, hexlify, unhexlify

RP_CONTROL_PORT = 9295
RP_REMOTE_PLAY_PORT = 9296
# Opened by the official client, purpose unknown; never used here.
RP_UNKNOWN_PORT = 9297

SESSION_PATH = "/sce/rp/session"
CONTROL_PATH = "/sce/rp/session/ctrl"

RP_VERSION = "8.0"
USER_AGENT = "remoteplay Windows"
CONTROLLER_TYPE = "3"
CLIENT_TYPE = "11"
CON_PATH = "1"
OS_TYPE = "Win10.0.0"

RESPONSE_BUFFER_SIZE = 8192

REGISTRATION_KEY_PADDING = bytes(8)
DID_PREFIX = bytes([0x00, 0x18, 0x00, 0x00, 0x00, 0x07, 0x00, 0x00, 0x80])
DID_PADDING = b"0" * 7
OS_TYPE_PADDING = bytes(1)


class ConnectionFailed(Exception):
    """Raised when the TCP phase of a connection attempt fails."""


@dataclass(frozen=True)
class Endpoint:
    host: str
    control_port: int = RP_CONTROL_PORT
    stream_port: int = RP_REMOTE_PLAY_PORT
    unknown_port: int = RP_UNKNOWN_PORT

    @property
    def control_address(self) -> Tuple[str, int]:
        return self.host, self.control_port

    @property
    def stream_address(self) -> Tuple[str, int]:
        return self.host, self.stream_port


@dataclass(frozen=True)
class RegistrationCredential:
    """Secrets obtained from pairing: ``rp_key`` and the registration token."""

    rp_key: bytes
    registration_key: str

    @classmethod
    def from_hex(cls, rp_key: str, registration_key: str) -> "RegistrationCredential":
        return cls(rp_key=unhexlify(rp_key), registration_key=registration_key)


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def build_request(path: str, headers: Iterable[Tuple[str, str]]) -> bytes:
    lines = [f"GET {path} HTTP/1.1"]
    lines.extend(f"{name}: {value}" for name, value in headers)
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


def parse_status_code(response: str) -> Optional[int]:
    status_line = response.split("\r\n", 1)[0]
    parts = status_line.split()
    if len(parts) < 2 or not parts[0].startswith("HTTP/"):
        return None
    try:
        return int(parts[1])
    except ValueError:
        return None


class ResponseHeaders(dict):
    """Header mapping with case-insensitive ``get``."""

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:  # type: ignore[override]
        return super().get(name.lower(), default)


def split_headers(response: str) -> ResponseHeaders:
    headers = ResponseHeaders()
    head = response.split("\r\n\r\n", 1)[0]
    for line in head.split("\r\n")[1:]:
        name, sep, value = line.partition(":")
        if not sep:
            continue
        headers[name.strip().lower()] = value.strip()
    return headers


def _encrypt_header(session: SessionContext, data: bytes) -> str:
    return base64.b64encode(session.encrypt(data, 0)).decode("ascii")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class ControlClient:
    """Runs the two TCP requests that authenticate a Remote Play session."""

    def __init__(self, *, connect_timeout: float = 10.0, buffer_size: int = RESPONSE_BUFFER_SIZE) -> None:
        self.connect_timeout = connect_timeout
        self.buffer_size = buffer_size

    def _open(self, endpoint: Endpoint) -> socket.socket:
        try:
            sock = socket.create_connection(endpoint.control_address, timeout=self.connect_timeout)
        except OSError as exc:
            raise ConnectionFailed(f"Could not connect to {endpoint.host}:{endpoint.control_port}: {exc}") from exc
        return sock

    def _exchange(self, sock: socket.socket, request: bytes, path: str) -> Dict[str, str]:
        try:
            sock.sendall(request)
            data = sock.recv(self.buffer_size)
        except OSError as exc:
            raise ConnectionFailed(f"Socket error during {path}: {exc}") from exc
        if not data:
            raise ConnectionFailed(f"Connection closed before {path} response")
        response = data.decode("ascii", errors="replace")
        status = parse_status_code(response)
        if status != 200:
            raise ConnectionFailed(f"{path} answered with status {status}")
        logging.info('"%s" response:\n%s', path, response.strip())
        return split_headers(response)

    def request_session(self, endpoint: Endpoint, credential: RegistrationCredential) -> str:
        """Ask the console for a session and return its base64 ``RP-Nonce``."""

        request = build_request(
            SESSION_PATH,
            [
                ("HOST", endpoint.host),
                ("User-Agent", USER_AGENT),
                ("Connection", "close"),
                ("Content-Length", "0"),
                ("RP-Registkey", credential.registration_key),
                ("RP-Version", RP_VERSION),
            ],
        )
        sock = self._open(endpoint)
        try:
            headers = self._exchange(sock, request, SESSION_PATH)
        finally:
            sock.close()
        nonce = headers.get("RP-Nonce")
        if not nonce:
            raise ConnectionFailed(f"{SESSION_PATH} response is missing RP-Nonce")
        return nonce

    def request_control(
        self, nonce: str, endpoint: Endpoint, credential: RegistrationCredential
    ) -> Tuple[socket.socket, SessionContext]:
        """Authenticate the control connection.

        On success the connected socket is returned and belongs to the
        caller; on failure it is closed and :class:`ConnectionFailed` raised.
        """

        try:
            nonce_bytes = base64.b64decode(nonce, validate=True)
            registration_key = unhexlify(credential.registration_key)
        except (binascii.Error, ValueError) as exc:
            raise ConnectionFailed(f"Invalid session material: {exc}") from exc
        logging.info('RP-Nonce from "%s" response: %s', SESSION_PATH, hexlify(nonce_bytes))

        try:
            session = derive_control_session(credential.rp_key, nonce_bytes)
        except ValueError as exc:
            raise ConnectionFailed(f"Cannot derive control session: {exc}") from exc
        logging.info("Control AES key: %s", hexlify(session.key))
        logging.info("Control AES nonce: %s", hexlify(session.nonce))

        auth = _encrypt_header(session, concat(registration_key, REGISTRATION_KEY_PADDING))
        did = _encrypt_header(session, concat(DID_PREFIX, uuid.uuid4().bytes, DID_PADDING))
        os_type = _encrypt_header(session, concat(OS_TYPE.encode("utf-8"), OS_TYPE_PADDING))

        request = build_request(
            CONTROL_PATH,
            [
                ("HOST", f"{endpoint.host}:{endpoint.control_port}"),
                ("User-Agent", USER_AGENT),
                ("Connection", "keep-alive"),
                ("Content-Length", "0"),
                ("RP-Auth", auth),
                ("RP-Version", RP_VERSION),
                ("RP-Did", did),
                ("RP-ControllerType", CONTROLLER_TYPE),
                ("RP-ClientType", CLIENT_TYPE),
                ("RP-OSType", os_type),
                ("RP-ConPath", CON_PATH),
            ],
        )
        sock = self._open(endpoint)
        try:
            self._exchange(sock, request, CONTROL_PATH)
        except BaseException:
            sock.close()
            raise
        sock.settimeout(None)
        logging.info("TCP connection to %s established", endpoint.host)
        return sock, session
