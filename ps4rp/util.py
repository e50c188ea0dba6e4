"""Byte and hex helpers shared by the codec and the handshake."""
from __future__ import annotations

import binascii
import secrets
import string

_KEY_ALPHABET = string.ascii_letters + string.digits


def concat(*parts: bytes) -> bytes:
    return b"".join(bytes(part) for part in parts)


def hexlify(data: bytes) -> str:
    return binascii.hexlify(bytes(data)).decode("ascii")


def unhexlify(text: str) -> bytes:
    """Decode a hex string, tolerating case and surrounding whitespace."""

    try:
        return binascii.unhexlify(text.strip())
    except binascii.Error as exc:
        raise ValueError(f"Invalid hex string: {text!r}") from exc


def int_to_bytes(value: int, size: int = 4) -> bytes:
    mask = (1 << (8 * size)) - 1
    return (value & mask).to_bytes(size, "big")


def bytes_to_int(data: bytes) -> int:
    return int.from_bytes(data, "big")


def random_key(length: int) -> str:
    return "".join(secrets.choice(_KEY_ALPHABET) for _ in range(length))
