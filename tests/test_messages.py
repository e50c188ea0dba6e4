import base64
import json

from ps4rp.messages import (
    BangPayload,
    BigPayload,
    LaunchSpecification,
    StreamInfoPayload,
    TakionMessage,
    TakionMessagePayloadType,
)

AUDIO_HEADER = bytes.fromhex("120e01100000bb80000001e000000001")


def test_stream_info_encoding_is_twenty_bytes():
    message = TakionMessage(stream_info_payload=StreamInfoPayload(audio_header=AUDIO_HEADER))
    encoded = bytes(message)
    assert encoded == bytes.fromhex("3212" "1210") + AUDIO_HEADER
    assert len(encoded) == 20


def test_bang_payload_parses_from_wire_bytes():
    message = TakionMessage().parse(bytes.fromhex("0801" "1a07" "0801" "1a03616263"))
    assert message.type == TakionMessagePayloadType.BANG
    assert message.bang_payload.version_accepted is True
    assert message.bang_payload.session_key == "abc"
    assert message.bang_payload.ecdh_pub_key == b""


def test_big_payload_round_trip():
    big = BigPayload(
        client_version=9,
        session_key="1700000000abc",
        launch_spec="c3BlYw==",
        encrypted_key=bytes(4),
        ecdh_pub_key=b"\x04" + bytes(64),
        ecdh_sig=bytes(range(32)),
    )
    parsed = TakionMessage().parse(bytes(TakionMessage(big_payload=big))).big_payload
    assert parsed.client_version == 9
    assert parsed.session_key == "1700000000abc"
    assert parsed.encrypted_key == bytes(4)
    assert parsed.ecdh_pub_key == b"\x04" + bytes(64)
    assert parsed.ecdh_sig == bytes(range(32))


def test_bang_payload_keeps_signature_bytes():
    bang = BangPayload(version_accepted=True, ecdh_pub_key=b"\x04\x01", ecdh_sig=b"\xaa" * 32)
    message = TakionMessage(type=TakionMessagePayloadType.BANG, bang_payload=bang)
    parsed = TakionMessage().parse(bytes(message))
    assert parsed.bang_payload.ecdh_sig == b"\xaa" * 32


def test_launch_specification_carries_handshake_key():
    key = bytes(range(16))
    spec = LaunchSpecification.standard("sessionId123", key)
    document = json.loads(spec.serialize())
    assert document["sessionId"] == "sessionId123"
    assert base64.b64decode(document["handshakeKey"]) == key
    assert document["streamResolutions"][0]["resolution"] == {"width": 1280, "height": 720}
    assert " " not in spec.serialize()
