"""UDP handshake that opens the Remote Play streaming channel.

The exchange is a fixed sequence of control frames:

1. INIT, answered by one frame carrying the console's tag and cookie.
2. COOKIE echo, answered by one acknowledgement.
3. DATA with the "big" payload (launch spec, ECDH public key and its
   signature), answered by an acknowledgement and the console's "bang".
4. DATA_ACK for the bang, answered by the stream/resolution info.
5. DATA_ACK for the stream info (sent once).
6. DATA announcing the audio format (sent once).
7. DATA acknowledging the stream info, answered by three frames, each of
   which is acknowledged in three rounds.

Frames that expect an answer are resent up to ``retries`` times.  When a
step runs out of attempts the handshake stops and reports it only through
the returned :class:`HandshakeOutcome`.
"""
from __future__ import annotations

import base64
import logging
import queue
import secrets
import socket
import threading
import time
from dataclasses import dataclass
from typing import Optional

from .crypto import (
    SessionContext,
    derive_shared_secret,
    generate_ecdh_keypair,
    generate_handshake_key,
    hmac_sha256,
)
from .messages import (
    BigPayload,
    LaunchSpecification,
    StreamInfoPayload,
    TakionMessage,
    TakionMessagePayloadType,
)
from .takion import (
    CHUNK_TYPE_COOKIE,
    CHUNK_TYPE_DATA,
    CHUNK_TYPE_DATA_ACK,
    CHUNK_TYPE_INIT,
    DATA_TYPE_PROTOBUF,
    ControlMessage,
    ControlResult,
    extract_payload,
)
from .util import bytes_to_int, concat, hexlify, int_to_bytes, random_key

# ---------------------------------------------------------------------------
# Constants (values required by the console; meaning partly unconfirmed)
# ---------------------------------------------------------------------------

MAX_UDP_PACKET_SIZE = 65_000
RETRIES = 5
RECEIVE_TIMEOUT = 5.5
ACK_ROUNDS = 3

INIT_TAG = 18467
A_RWND = 102400
INIT_SUFFIX = bytes.fromhex("0064006400004823")

# Offsets into the INIT answer tail used to rebuild the cookie echo.
COOKIE_VALUE_OFFSET = 8
COOKIE_TAIL_OFFSET = 28

DATA_FLAGS = 0x01
DATA_RECEIVER_ID = 65536
STREAM_INFO_RECEIVER_ID = 589824
STREAM_INFO_KEY_POS = 16
STREAM_INFO_ACK_KEY_POS = 32

CLIENT_VERSION = 9
ENCRYPTED_KEY_PLACEHOLDER = bytes(4)
SESSION_KEY_RANDOM_LENGTH = 64
LAUNCH_SESSION_ID = "sessionId123"

AUDIO_HEADER = bytes.fromhex("120e01100000bb80000001e000000001")
STREAM_INFO_ACK = bytes.fromhex("00080e")
DATA_ACK_TAIL = bytes(4)


class HandshakeError(Exception):
    """Raised when the console answers with something the handshake cannot use."""


@dataclass
class HandshakeOutcome:
    completed: bool
    failed_step: Optional[int] = None
    shared_secret: bytes = b""
    stream_info: Optional[StreamInfoPayload] = None


def _random_gmac() -> int:
    return secrets.randbits(31)


def _data_frame(message: TakionMessage, **fields) -> ControlMessage:
    return ControlMessage.build(
        chunk_type=CHUNK_TYPE_DATA,
        chunk_flags=DATA_FLAGS,
        tail=bytes([DATA_TYPE_PROTOBUF]) + bytes(message),
        **fields,
    )


def _data_ack(*, tag_remote: int, func_incr: int, gmac: int = 0, key_pos: int = 0) -> ControlMessage:
    return ControlMessage.build(
        chunk_type=CHUNK_TYPE_DATA_ACK,
        tag_remote=tag_remote,
        gmac=gmac,
        key_pos=key_pos,
        func_incr=func_incr,
        receiver_id=A_RWND,
        tail=DATA_ACK_TAIL,
    )


def encrypt_launch_spec(session: SessionContext, launch_spec: bytes) -> str:
    """Mask the launch spec with keystream block 0 and base64 it."""

    keystream = session.keystream(len(launch_spec), 0)
    masked = bytes(a ^ b for a, b in zip(launch_spec, keystream))
    return base64.b64encode(masked).decode("ascii")


class UdpHandshake:
    """Drives the control-channel handshake over a connected UDP socket."""

    def __init__(
        self,
        sock: socket.socket,
        session: SessionContext,
        *,
        retries: int = RETRIES,
        receive_timeout: float = RECEIVE_TIMEOUT,
        ack_rounds: int = ACK_ROUNDS,
    ) -> None:
        self.socket = sock
        self.session = session
        self.retries = retries
        self.receive_timeout = receive_timeout
        self.ack_rounds = ack_rounds
        self.frames_sent = 0
        self.socket.settimeout(receive_timeout)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def wait_for_control_messages(self, expected: int, info: str) -> ControlResult:
        messages = []
        try:
            while len(messages) < expected:
                data = self.socket.recv(MAX_UDP_PACKET_SIZE)
                message = ControlMessage.deserialize(data)
                if message is None:
                    logging.debug("%s: skipping %d byte non-control datagram", info, len(data))
                    continue
                logging.info("Received: %s_%d", info, len(messages))
                messages.append(message)
        except OSError as exc:
            logging.debug("%s: receive ended: %s", info, exc)
            return ControlResult(False)
        return ControlResult(True, messages)

    def _send(self, data: bytes) -> None:
        self.frames_sent += 1
        try:
            self.socket.send(data)
        except OSError as exc:
            logging.warning("Exception occurred while sending udp packet: %s", exc)

    def _exchange(self, frame: ControlMessage, expected: int, info: str) -> Optional[ControlResult]:
        data = frame.serialize()
        for attempt in range(1, self.retries + 1):
            results: "queue.Queue[ControlResult]" = queue.Queue(maxsize=1)
            waiter = threading.Thread(
                target=lambda: results.put(self.wait_for_control_messages(expected, info)),
                daemon=True,
            )
            # The waiter starts first so a fast answer is never missed.
            waiter.start()
            self._send(data)
            result = results.get()
            if result.was_successful:
                return result
            logging.info("%s: no answer (attempt %d/%d)", info, attempt, self.retries)
        logging.warning("%s: giving up after %d attempts", info, self.retries)
        return None

    def _parse(self, control: ControlMessage, info: str) -> TakionMessage:
        try:
            return TakionMessage().parse(extract_payload(control))
        except Exception as exc:
            raise HandshakeError(f"Malformed {info} payload") from exc

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------
    @staticmethod
    def init_frame() -> ControlMessage:
        return ControlMessage.build(
            chunk_type=CHUNK_TYPE_INIT,
            func_incr=INIT_TAG,
            receiver_id=A_RWND,
            tail=INIT_SUFFIX,
        )

    @staticmethod
    def cookie_frame(answer: ControlMessage) -> ControlMessage:
        tail = answer.unparsed_payload
        if len(tail) < COOKIE_TAIL_OFFSET:
            raise HandshakeError(f"INIT answer too short ({len(tail)} bytes)")
        value = bytes_to_int(tail[COOKIE_VALUE_OFFSET : COOKIE_VALUE_OFFSET + 4])
        tag = int_to_bytes(answer.func_incr)
        return ControlMessage.build(
            chunk_type=CHUNK_TYPE_COOKIE,
            tag_remote=answer.func_incr,
            func_incr=value,
            receiver_id=answer.receiver_id,
            tail=concat(tag, int_to_bytes(A_RWND), tag, tail[COOKIE_TAIL_OFFSET:]),
        )

    def big_frame(self, answer: ControlMessage, handshake_key: bytes, public_key: bytes) -> ControlMessage:
        signature = hmac_sha256(handshake_key, public_key)
        session_key = str(int(time.time())) + random_key(SESSION_KEY_RANDOM_LENGTH)
        launch_spec = LaunchSpecification.standard(LAUNCH_SESSION_ID, handshake_key)
        big = BigPayload(
            client_version=CLIENT_VERSION,
            session_key=session_key,
            launch_spec=encrypt_launch_spec(self.session, launch_spec.serialize().encode("utf-8")),
            encrypted_key=ENCRYPTED_KEY_PLACEHOLDER,
            ecdh_pub_key=public_key,
            ecdh_sig=signature,
        )
        logging.info("Sending big payload:")
        logging.info("ECDH pubkey: %s", hexlify(big.ecdh_pub_key))
        logging.info("ECDH sig: %s", hexlify(big.ecdh_sig))
        logging.info("Session key: %s", big.session_key)
        return _data_frame(
            TakionMessage(type=TakionMessagePayloadType.BIG, big_payload=big),
            tag_remote=answer.func_incr,
            func_incr=INIT_TAG,
            receiver_id=DATA_RECEIVER_ID,
        )

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------
    def run(self) -> HandshakeOutcome:
        result = self._exchange(self.init_frame(), 1, "Packet1")
        if result is None:
            return HandshakeOutcome(False, failed_step=1)
        answer1 = result.control_messages[0]

        if self._exchange(self.cookie_frame(answer1), 1, "Packet2") is None:
            return HandshakeOutcome(False, failed_step=2)

        handshake_key = generate_handshake_key()
        private_key, public_key = generate_ecdh_keypair()
        result = self._exchange(self.big_frame(answer1, handshake_key, public_key), 2, "Packet3")
        if result is None:
            return HandshakeOutcome(False, failed_step=3)
        bang_control = result.control_messages[1]
        bang = self._parse(bang_control, "bang").bang_payload
        logging.info("Received bang payload:")
        logging.info("ECDH pubkey: %s", hexlify(bang.ecdh_pub_key))
        logging.info("ECDH sig: %s", hexlify(bang.ecdh_sig))
        logging.info("Session key: %s", bang.session_key)
        try:
            shared_secret = derive_shared_secret(private_key, bang.ecdh_pub_key)
        except ValueError as exc:
            raise HandshakeError("Console sent an unusable ECDH public key") from exc
        logging.info("Shared secret: %s", hexlify(shared_secret))

        ack = _data_ack(tag_remote=bang_control.func_incr, func_incr=bang_control.func_incr)
        result = self._exchange(ack, 1, "Packet4")
        if result is None:
            return HandshakeOutcome(False, failed_step=4, shared_secret=shared_secret)
        stream_control = result.control_messages[0]
        stream_info = self._parse(stream_control, "stream info").stream_info_payload
        for resolution in stream_info.resolution:
            logging.info("Stream resolution: %dx%d", resolution.width, resolution.height)

        self._send(
            _data_ack(
                tag_remote=bang_control.func_incr,
                gmac=_random_gmac(),
                func_incr=stream_control.func_incr,
            ).serialize()
        )

        audio_frame = _data_frame(
            TakionMessage(stream_info_payload=StreamInfoPayload(audio_header=AUDIO_HEADER)),
            tag_remote=bang_control.func_incr,
            gmac=_random_gmac(),
            key_pos=STREAM_INFO_KEY_POS,
            func_incr=stream_control.receiver_id + 1,
            receiver_id=STREAM_INFO_RECEIVER_ID,
        )
        self._send(audio_frame.serialize())

        finish = ControlMessage.build(
            chunk_type=CHUNK_TYPE_DATA,
            chunk_flags=DATA_FLAGS,
            tag_remote=bang_control.func_incr,
            gmac=_random_gmac(),
            key_pos=STREAM_INFO_ACK_KEY_POS,
            func_incr=stream_control.receiver_id + 2,
            receiver_id=STREAM_INFO_RECEIVER_ID,
            tail=STREAM_INFO_ACK,
        )
        result = self._exchange(finish, 3, "Packet7")
        if result is None:
            return HandshakeOutcome(
                False, failed_step=7, shared_secret=shared_secret, stream_info=stream_info
            )

        for _ in range(self.ack_rounds):
            for message in result.control_messages:
                if message.chunk_type != CHUNK_TYPE_DATA:
                    continue
                self._send(
                    _data_ack(
                        tag_remote=audio_frame.receiver_id,
                        gmac=_random_gmac(),
                        key_pos=message.key_pos,
                        func_incr=message.func_incr,
                    ).serialize()
                )
        logging.info("Stream parameters negotiated")
        return HandshakeOutcome(True, shared_secret=shared_secret, stream_info=stream_info)
