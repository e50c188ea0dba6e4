"""Control message framing for the Remote Play UDP channel.

Every frame on the streaming-control port starts with a fixed 17 byte
header followed by a chunk payload:

* ``base_type`` (1 byte) - frame discriminator, always ``0`` for control
  frames.  Anything else is not a control frame and is skipped.
* ``tag_remote``, ``gmac``, ``key_pos`` (4 bytes each).
* ``chunk_type`` and ``chunk_flags`` (1 byte each).
* ``payload_size`` (2 bytes) - the chunk length, i.e. the 4 chunk header
  bytes plus the payload.

The first eight payload bytes hold the function identifier and the peer
identifier that later frames echo back; whatever follows is kept as an
opaque tail.  All integers are big-endian.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import List, Optional

from .util import bytes_to_int, int_to_bytes

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BASE_TYPE_CONTROL = 0x00

CHUNK_TYPE_DATA = 0x00
CHUNK_TYPE_INIT = 0x01
CHUNK_TYPE_DATA_ACK = 0x03
CHUNK_TYPE_COOKIE = 0x0A

HEADER_FORMAT = struct.Struct("!BIIIBBH")
HEADER_SIZE = HEADER_FORMAT.size  # 17
CHUNK_HEADER_SIZE = 4  # chunk_type + chunk_flags + payload_size
IDENTIFIER_SIZE = 8  # func_incr + receiver_id

# Data chunks prefix their protobuf body with a single data-type byte.
DATA_TYPE_PROTOBUF = 0x00


class ProtocolError(Exception):
    """Raised when a control message cannot be encoded or is malformed."""


@dataclass
class ControlMessage:
    base_type: int = BASE_TYPE_CONTROL
    tag_remote: int = 0
    gmac: int = 0
    key_pos: int = 0
    chunk_type: int = 0
    chunk_flags: int = 0
    payload_size: int = CHUNK_HEADER_SIZE
    payload: bytes = b""

    @classmethod
    def build(
        cls,
        *,
        chunk_type: int,
        chunk_flags: int = 0,
        func_incr: int,
        receiver_id: int,
        tail: bytes = b"",
        tag_remote: int = 0,
        gmac: int = 0,
        key_pos: int = 0,
    ) -> "ControlMessage":
        """Create a frame whose declared length matches its payload."""

        payload = int_to_bytes(func_incr) + int_to_bytes(receiver_id) + bytes(tail)
        return cls(
            base_type=BASE_TYPE_CONTROL,
            tag_remote=tag_remote & 0xFFFFFFFF,
            gmac=gmac & 0xFFFFFFFF,
            key_pos=key_pos & 0xFFFFFFFF,
            chunk_type=chunk_type,
            chunk_flags=chunk_flags,
            payload_size=CHUNK_HEADER_SIZE + len(payload),
            payload=payload,
        )

    # ------------------------------------------------------------------
    # Payload views
    # ------------------------------------------------------------------
    @property
    def func_incr(self) -> int:
        return bytes_to_int(self.payload[0:4])

    @property
    def receiver_id(self) -> int:
        return bytes_to_int(self.payload[4:8])

    @property
    def unparsed_payload(self) -> bytes:
        return self.payload[IDENTIFIER_SIZE:]

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------
    def serialize(self) -> bytes:
        try:
            header = HEADER_FORMAT.pack(
                self.base_type,
                self.tag_remote,
                self.gmac,
                self.key_pos,
                self.chunk_type,
                self.chunk_flags,
                self.payload_size,
            )
        except struct.error as exc:
            raise ProtocolError(f"Control message field out of range: {exc}") from exc
        return header + bytes(self.payload)

    @classmethod
    def deserialize(cls, data: bytes) -> Optional["ControlMessage"]:
        """Parse a frame, returning ``None`` if *data* is not a control frame."""

        if len(data) < HEADER_SIZE or data[0] != BASE_TYPE_CONTROL:
            return None
        (
            base_type,
            tag_remote,
            gmac,
            key_pos,
            chunk_type,
            chunk_flags,
            payload_size,
        ) = HEADER_FORMAT.unpack_from(data)
        return cls(
            base_type=base_type,
            tag_remote=tag_remote,
            gmac=gmac,
            key_pos=key_pos,
            chunk_type=chunk_type,
            chunk_flags=chunk_flags,
            payload_size=payload_size,
            payload=bytes(data[HEADER_SIZE:]),
        )

    def __bytes__(self) -> bytes:
        return self.serialize()


@dataclass
class ControlResult:
    was_successful: bool
    control_messages: List[ControlMessage] = field(default_factory=list)


def extract_payload(message: ControlMessage) -> bytes:
    """Return the protobuf body carried by a data chunk."""

    tail = message.unparsed_payload
    if tail[:1] == bytes([DATA_TYPE_PROTOBUF]):
        return tail[1:]
    return tail
