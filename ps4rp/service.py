"""Connection service tying the TCP, keepalive and UDP phases together."""
from __future__ import annotations

import logging
import queue
import socket
import threading
from dataclasses import dataclass
from typing import Iterator, Optional

from .control import (
    RESPONSE_BUFFER_SIZE,
    ConnectionFailed,
    ControlClient,
    Endpoint,
    RegistrationCredential,
)
from .crypto import SessionContext
from .handshake import ACK_ROUNDS, RECEIVE_TIMEOUT, RETRIES, HandshakeOutcome, UdpHandshake
from .keepalive import PING_PONG_TIMEOUT, KeepaliveSupervisor, close_socket

EVENT_CONNECTED = "connected"
EVENT_DISCONNECTED = "disconnected"
EVENT_CONNECTION_ERROR = "connection_error"
EVENT_HANDSHAKE_FAILED = "handshake_failed"


@dataclass
class ServiceConfig:
    connect_timeout: float = 10.0
    response_buffer_size: int = RESPONSE_BUFFER_SIZE
    keepalive_timeout: float = PING_PONG_TIMEOUT
    udp_receive_timeout: float = RECEIVE_TIMEOUT
    udp_retries: int = RETRIES
    ack_rounds: int = ACK_ROUNDS
    # Off by default: an abandoned UDP handshake stays silent.
    report_handshake_failure: bool = False


@dataclass(frozen=True)
class ConnectionEvent:
    kind: str
    reason: str = ""


class EventChannel:
    """Thread-safe queue of :class:`ConnectionEvent` for one or more attempts."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[ConnectionEvent]" = queue.Queue()

    def post(self, kind: str, reason: str = "") -> None:
        self._queue.put(ConnectionEvent(kind, reason))

    def get(self, timeout: Optional[float] = None) -> Optional[ConnectionEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> Iterator[ConnectionEvent]:
        while True:
            try:
                yield self._queue.get_nowait()
            except queue.Empty:
                return


class PS4ConnectionService:
    """Establishes an authenticated Remote Play session with a console.

    Only one attempt runs at a time: the connect worker, :meth:`close` and
    :meth:`dispose` all hold the same lock.  Outcomes are posted to the
    :class:`EventChannel` passed to (or returned by) :meth:`connect`.
    Informational trace lines (nonce, keys, ECDH values) are not events:
    they go to the standard :mod:`logging` tree, so callers wanting them
    attach a :class:`logging.Handler`.
    """

    def __init__(self, config: Optional[ServiceConfig] = None) -> None:
        self.config = config or ServiceConfig()
        self._lock = threading.Lock()
        self._keepalive: Optional[KeepaliveSupervisor] = None
        self._session: Optional[SessionContext] = None
        self._worker: Optional[threading.Thread] = None
        self.last_outcome: Optional[HandshakeOutcome] = None

    # ------------------------------------------------------------------
    def connect(
        self,
        endpoint: Endpoint,
        credential: RegistrationCredential,
        events: Optional[EventChannel] = None,
    ) -> EventChannel:
        channel = events or EventChannel()
        worker = threading.Thread(
            target=self._connect_locked,
            args=(endpoint, credential, channel),
            name="ps4rp-connect",
            daemon=True,
        )
        self._worker = worker
        worker.start()
        return channel

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the most recent connect attempt has finished."""

        worker = self._worker
        if worker is not None:
            worker.join(timeout=timeout)

    def close(self) -> None:
        with self._lock:
            self._stop_keepalive()

    def dispose(self) -> None:
        with self._lock:
            self._stop_keepalive()
            self._session = None

    def __enter__(self) -> "PS4ConnectionService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()

    @property
    def connected(self) -> bool:
        keepalive = self._keepalive
        return keepalive is not None and keepalive.running

    # ------------------------------------------------------------------
    def _stop_keepalive(self) -> None:
        keepalive = self._keepalive
        self._keepalive = None
        if keepalive is not None:
            keepalive.stop()

    def _connect_locked(
        self, endpoint: Endpoint, credential: RegistrationCredential, events: EventChannel
    ) -> None:
        with self._lock:
            try:
                self._connect(endpoint, credential, events)
            except ConnectionFailed as exc:
                logging.error("Connection to %s failed: %s", endpoint.host, exc)
                events.post(EVENT_CONNECTION_ERROR, str(exc))
            except Exception as exc:
                logging.exception("Unexpected error while connecting to %s", endpoint.host)
                events.post(EVENT_CONNECTION_ERROR, f"{type(exc).__name__}: {exc}")

    def _connect(self, endpoint: Endpoint, credential: RegistrationCredential, events: EventChannel) -> None:
        # A previous session on this instance is replaced.
        self._stop_keepalive()
        self._session = None

        client = ControlClient(
            connect_timeout=self.config.connect_timeout,
            buffer_size=self.config.response_buffer_size,
        )
        nonce = client.request_session(endpoint, credential)
        control_socket, session = client.request_control(nonce, endpoint, credential)
        self._session = session

        def on_disconnect(reason: str) -> None:
            events.post(EVENT_DISCONNECTED, reason)

        keepalive = KeepaliveSupervisor(
            control_socket,
            on_disconnect=on_disconnect,
            timeout=self.config.keepalive_timeout,
        )
        self._keepalive = keepalive
        keepalive.start()
        events.post(EVENT_CONNECTED)

        outcome = self._open_stream_channel(endpoint, session)
        self.last_outcome = outcome
        if not outcome.completed:
            logging.warning("UDP handshake stopped at step %s", outcome.failed_step)
            if self.config.report_handshake_failure:
                events.post(
                    EVENT_HANDSHAKE_FAILED,
                    f"UDP handshake gave up at step {outcome.failed_step}",
                )

    def _open_stream_channel(self, endpoint: Endpoint, session: SessionContext) -> HandshakeOutcome:
        udp = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            udp.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            udp.connect(endpoint.stream_address)
            handshake = UdpHandshake(
                udp,
                session,
                retries=self.config.udp_retries,
                receive_timeout=self.config.udp_receive_timeout,
                ack_rounds=self.config.ack_rounds,
            )
            return handshake.run()
        finally:
            close_socket(udp)
