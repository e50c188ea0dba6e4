import pytest

from ps4rp.takion import (
    CHUNK_TYPE_DATA,
    CHUNK_TYPE_INIT,
    HEADER_SIZE,
    ControlMessage,
    ProtocolError,
    extract_payload,
)


def test_header_is_seventeen_bytes():
    assert HEADER_SIZE == 17


def test_round_trip_preserves_every_field():
    messages = [
        ControlMessage(),
        ControlMessage(0, 0xFFFFFFFF, 1, 2, 0xFF, 0x7F, 0xFFFF, b""),
        ControlMessage(0, 18467, 123456, 32, 3, 0, 16, bytes(range(12))),
        ControlMessage.build(chunk_type=CHUNK_TYPE_INIT, func_incr=18467, receiver_id=102400),
    ]
    for message in messages:
        assert ControlMessage.deserialize(message.serialize()) == message


def test_short_buffer_is_not_a_frame():
    for size in range(HEADER_SIZE):
        assert ControlMessage.deserialize(bytes(size)) is None


def test_wrong_discriminator_is_not_a_frame():
    data = bytearray(ControlMessage.build(chunk_type=0, func_incr=1, receiver_id=2).serialize())
    data[0] = 0x02
    assert ControlMessage.deserialize(bytes(data)) is None


def test_bare_header_decodes_with_empty_payload():
    data = bytes.fromhex("00" "00004823" "0000002a" "00000010" "03" "01" "000c")
    assert len(data) == 17
    message = ControlMessage.deserialize(data)
    assert message is not None
    assert message.base_type == 0
    assert message.tag_remote == 18467
    assert message.gmac == 42
    assert message.key_pos == 16
    assert message.chunk_type == 3
    assert message.chunk_flags == 1
    assert message.payload_size == 12
    assert message.payload == b""
    assert message.unparsed_payload == b""


def test_build_declares_serialized_chunk_length():
    suffix = bytes.fromhex("0064006400004823")
    message = ControlMessage.build(
        chunk_type=CHUNK_TYPE_INIT, func_incr=18467, receiver_id=102400, tail=suffix
    )
    wire = message.serialize()
    assert message.payload_size == 20
    assert len(wire) == HEADER_SIZE - 4 + message.payload_size
    assert wire.hex() == (
        "00" "00000000" "00000000" "00000000" "01" "00" "0014"
        "00004823" "00019000" "0064006400004823"
    )
    assert message.func_incr == 18467
    assert message.receiver_id == 102400
    assert message.unparsed_payload == suffix


def test_serialize_rejects_out_of_range_fields():
    with pytest.raises(ProtocolError):
        ControlMessage(chunk_type=256).serialize()
    with pytest.raises(ProtocolError):
        ControlMessage(tag_remote=-1).serialize()


def test_extract_payload_strips_data_type_byte():
    message = ControlMessage.build(
        chunk_type=CHUNK_TYPE_DATA, func_incr=1, receiver_id=65536, tail=b"\x00\x08\x01"
    )
    assert extract_payload(message) == b"\x08\x01"
