import pytest

from ps4rp.util import bytes_to_int, concat, hexlify, int_to_bytes, random_key, unhexlify


def test_hex_helpers():
    assert hexlify(b"\x00\x01\xfe") == "0001fe"
    assert unhexlify(" 0000000001FE0000\n") == bytes.fromhex("0000000001fe0000")
    with pytest.raises(ValueError):
        unhexlify("abc")


def test_integer_helpers_are_big_endian():
    assert int_to_bytes(102400) == b"\x00\x01\x90\x00"
    assert int_to_bytes(0x1_0000_0001) == b"\x00\x00\x00\x01"
    assert int_to_bytes(0x4823, 2) == b"\x48\x23"
    assert bytes_to_int(b"\x00\x00\x48\x23") == 18467


def test_concat_and_random_key():
    assert concat(b"ab", bytearray(b"c"), b"") == b"abc"
    key = random_key(64)
    assert len(key) == 64 and key.isalnum()
