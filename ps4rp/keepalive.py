"""Ping/pong supervisor for the authenticated TCP control connection."""
from __future__ import annotations

import logging
import socket
import threading
import time
from typing import Callable, Optional

STATUS_PACKET = bytes.fromhex("0000000001FE0000")

PING_PONG_TIMEOUT = 30.0
RECEIVE_BUFFER_SIZE = 1024
CLOSE_DELAY = 0.25

STATE_IDLE = "idle"
STATE_ARMED = "armed"
STATE_CLOSED = "closed"

REASON_CLOSED = "PS4 disconnected. Ping Pong socket got closed."
REASON_SOCKET_EXCEPTION = "PS4 disconnected. Ping Pong socket exception."
REASON_TIMEOUT = "PS4 disconnected. Ping Pong timeout occurred."

DisconnectHandler = Callable[[str], None]


class KeepaliveSupervisor:
    """Answers every console ping and tears the socket down on silence.

    The supervisor owns the socket it is given.  Each successful read
    re-arms the deadline; a timeout, a socket fault, or the console closing
    the connection ends the loop and reports the cause once through
    ``on_disconnect``.  :meth:`stop` closes the socket without reporting.
    """

    def __init__(
        self,
        sock: socket.socket,
        *,
        on_disconnect: Optional[DisconnectHandler] = None,
        timeout: float = PING_PONG_TIMEOUT,
        buffer_size: int = RECEIVE_BUFFER_SIZE,
        close_delay: float = CLOSE_DELAY,
    ) -> None:
        self.socket = sock
        self.timeout = timeout
        self.buffer_size = buffer_size
        self.close_delay = close_delay
        self.state = STATE_IDLE
        self.pings = 0
        self._on_disconnect = on_disconnect
        self._stopping = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._thread is not None or self.state == STATE_CLOSED:
            return
        self.state = STATE_ARMED
        self._thread = threading.Thread(target=self._run, name="ps4rp-keepalive", daemon=True)
        self._thread.start()

    def stop(self, *, timeout: float = 1.0) -> None:
        self._stopping.set()
        self._teardown(None)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    def _run(self) -> None:
        try:
            self.socket.settimeout(self.timeout)
        except OSError:
            self._teardown(REASON_SOCKET_EXCEPTION)
            return
        while not self._stopping.is_set():
            try:
                data = self.socket.recv(self.buffer_size)
            except socket.timeout:
                self._teardown(REASON_TIMEOUT)
                return
            except OSError:
                self._teardown(REASON_SOCKET_EXCEPTION)
                return
            if self._stopping.is_set():
                return
            if not data:
                time.sleep(self.close_delay)
                self._teardown(REASON_CLOSED)
                return
            self.pings += 1
            logging.debug("Ping received (%d bytes), sending status", len(data))
            try:
                self.socket.sendall(STATUS_PACKET)
            except OSError:
                self._teardown(REASON_SOCKET_EXCEPTION)
                return

    def _teardown(self, reason: Optional[str]) -> None:
        with self._lock:
            if self.state == STATE_CLOSED:
                return
            self.state = STATE_CLOSED
            close_socket(self.socket)
        if reason is None or self._stopping.is_set():
            return
        logging.warning(reason)
        if self._on_disconnect is not None:
            try:
                self._on_disconnect(reason)
            except Exception:
                logging.exception("Disconnect handler failed")


def close_socket(sock: Optional[socket.socket]) -> None:
    """Shut down and close *sock*; closing twice is harmless."""

    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    try:
        sock.close()
    except OSError:
        pass
