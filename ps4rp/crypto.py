"""Cryptographic helpers and session management for Remote Play."""
from __future__ import annotations

import os
from typing import Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes


KEY_SIZE = 16
BLOCK_SIZE = 16
HANDSHAKE_KEY_SIZE = 16

ECDH_CURVE = ec.SECP256K1

# Fixed derivation tables, required by the console byte for byte.
_NONCE_XOR = bytes.fromhex("0149879b65398b394b3a8d48c30aef51")
_KEY_XOR = bytes.fromhex("e1ec9c3addbd0885fc0e1d789032c004")
_NONCE_SUB = 0x27
_KEY_ADD = 0x34


# ---------------------------------------------------------------------------
# Control session
# ---------------------------------------------------------------------------


def _check_size(name: str, value: bytes) -> None:
    if len(value) != KEY_SIZE:
        raise ValueError(f"{name} must be {KEY_SIZE} bytes, got {len(value)}")


def derive_control_key(rp_key: bytes, nonce: bytes) -> bytes:
    """Derive the AES key of the control session from ``rp_key`` and the nonce."""

    _check_size("rp_key", rp_key)
    _check_size("nonce", nonce)
    key = bytearray(KEY_SIZE)
    for i in range(KEY_SIZE):
        value = (rp_key[i] - i + _KEY_ADD) & 0xFF
        key[i] = value ^ _KEY_XOR[i] ^ nonce[i]
    return bytes(key)


def derive_control_nonce(nonce: bytes) -> bytes:
    """Derive the initial AES-CTR counter block from the server nonce."""

    _check_size("nonce", nonce)
    counter = bytearray(KEY_SIZE)
    for i in range(KEY_SIZE):
        value = (nonce[i] - i - _NONCE_SUB) & 0xFF
        counter[i] = value ^ _NONCE_XOR[i]
    return bytes(counter)


class SessionContext:
    """AES-CTR keystream bound to one connection attempt.

    ``block_offset`` selects the keystream block encryption starts from, so
    the same offset always regenerates the same keystream.  Encryption and
    decryption are the same operation.
    """

    def __init__(self, key: bytes, nonce: bytes) -> None:
        if len(key) not in {16, 24, 32}:
            raise ValueError("AES key must be 128, 192, or 256 bits long")
        if len(nonce) != BLOCK_SIZE:
            raise ValueError("Counter block must be 16 bytes")
        self.key = bytes(key)
        self.nonce = bytes(nonce)

    def _counter_block(self, block_offset: int) -> bytes:
        if block_offset < 0:
            raise ValueError("block_offset must not be negative")
        value = (int.from_bytes(self.nonce, "big") + block_offset) % (1 << 128)
        return value.to_bytes(BLOCK_SIZE, "big")

    def encrypt(self, data: bytes, block_offset: int = 0) -> bytes:
        cipher = Cipher(algorithms.AES(self.key), modes.CTR(self._counter_block(block_offset)))
        encryptor = cipher.encryptor()
        return encryptor.update(bytes(data)) + encryptor.finalize()

    decrypt = encrypt

    def keystream(self, length: int, block_offset: int = 0) -> bytes:
        return self.encrypt(bytes(length), block_offset)


def derive_control_session(rp_key: bytes, nonce: bytes) -> SessionContext:
    return SessionContext(derive_control_key(rp_key, nonce), derive_control_nonce(nonce))


# ---------------------------------------------------------------------------
# ECDH key agreement
# ---------------------------------------------------------------------------


def generate_ecdh_keypair() -> Tuple[ec.EllipticCurvePrivateKey, bytes]:
    private_key = ec.generate_private_key(ECDH_CURVE())
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    return private_key, public_bytes


def derive_shared_secret(private_key: ec.EllipticCurvePrivateKey, peer_public_bytes: bytes) -> bytes:
    try:
        peer_key = ec.EllipticCurvePublicKey.from_encoded_point(ECDH_CURVE(), bytes(peer_public_bytes))
    except ValueError as exc:
        raise ValueError("Invalid ECDH public key") from exc
    return private_key.exchange(ec.ECDH(), peer_key)


def hmac_sha256(key: bytes, data: bytes) -> bytes:
    h = crypto_hmac.HMAC(key, hashes.SHA256())
    h.update(data)
    return h.finalize()


def generate_handshake_key() -> bytes:
    return os.urandom(HANDSHAKE_KEY_SIZE)
