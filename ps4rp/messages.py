"""Structured payloads carried inside control message data chunks.

The console speaks protocol-buffers on the data chunks of the control
channel.  Only the messages needed to reach "stream parameters
negotiated" are declared here.
"""
from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import List

import betterproto


class TakionMessagePayloadType(betterproto.Enum):
    BIG = 0
    BANG = 1
    STREAMINFO = 9
    STREAMINFOACK = 10


@dataclass(eq=False, repr=False)
class BigPayload(betterproto.Message):
    client_version: int = betterproto.uint32_field(1)
    session_key: str = betterproto.string_field(2)
    launch_spec: str = betterproto.string_field(3)
    # Opaque placeholder, always four zero bytes.
    encrypted_key: bytes = betterproto.bytes_field(4)
    ecdh_pub_key: bytes = betterproto.bytes_field(5)
    ecdh_sig: bytes = betterproto.bytes_field(6)


@dataclass(eq=False, repr=False)
class BangPayload(betterproto.Message):
    version_accepted: bool = betterproto.bool_field(1)
    encrypted_key_accepted: bool = betterproto.bool_field(2)
    session_key: str = betterproto.string_field(3)
    ecdh_pub_key: bytes = betterproto.bytes_field(4)
    ecdh_sig: bytes = betterproto.bytes_field(5)


@dataclass(eq=False, repr=False)
class ResolutionPayload(betterproto.Message):
    width: int = betterproto.uint32_field(1)
    height: int = betterproto.uint32_field(2)
    video_header: bytes = betterproto.bytes_field(3)


@dataclass(eq=False, repr=False)
class StreamInfoPayload(betterproto.Message):
    resolution: List["ResolutionPayload"] = betterproto.message_field(1)
    audio_header: bytes = betterproto.bytes_field(2)
    start_timeout: int = betterproto.uint32_field(3)


@dataclass(eq=False, repr=False)
class TakionMessage(betterproto.Message):
    type: "TakionMessagePayloadType" = betterproto.enum_field(1)
    big_payload: "BigPayload" = betterproto.message_field(2)
    bang_payload: "BangPayload" = betterproto.message_field(3)
    stream_info_payload: "StreamInfoPayload" = betterproto.message_field(6)


# ---------------------------------------------------------------------------
# Launch specification
# ---------------------------------------------------------------------------


@dataclass
class LaunchSpecification:
    """JSON document describing the stream the client asks for."""

    session_id: str
    handshake_key: bytes
    width: int = 1280
    height: int = 720
    max_fps: int = 30
    bandwidth_kbps: int = 10000
    mtu: int = 1454
    rtt: int = 21
    ports: List[int] = field(default_factory=lambda: [53, 2053])

    @classmethod
    def standard(cls, session_id: str, handshake_key: bytes) -> "LaunchSpecification":
        return cls(session_id=session_id, handshake_key=handshake_key)

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "streamResolutions": [
                {
                    "resolution": {"width": self.width, "height": self.height},
                    "maxFps": self.max_fps,
                    "score": 10,
                }
            ],
            "network": {
                "bwKbpsSent": self.bandwidth_kbps,
                "bwLoss": 0.001,
                "mtu": self.mtu,
                "rtt": self.rtt,
                "ports": list(self.ports),
            },
            "slotId": 1,
            "appSpecification": {
                "minFps": 30,
                "minBandwidth": 0,
                "extTitleId": "ps3",
                "version": 1,
                "timeLimit": 1,
                "startTimeout": 100,
                "afkTimeout": 100,
                "afkTimeoutDisconnect": 100,
            },
            "konan": {
                "ps3AccessToken": "accessToken",
                "ps3RefreshToken": "refreshToken",
            },
            "requestGameSpecification": {
                "model": "bravia_tv",
                "platform": "android",
                "audioChannels": "5.1",
                "language": "sp",
                "acceptButton": "X",
                "connectedControllers": ["xinput", "ds3", "ds4"],
                "yuvCoefficient": "bt601",
                "videoEncoderProfile": "hw4.1",
                "audioEncoderProfile": "audio1",
            },
            "userProfile": {
                "onlineId": "psnId",
                "npId": "npId",
                "region": "US",
                "languagesUsed": ["en", "jp"],
            },
            "handshakeKey": base64.b64encode(self.handshake_key).decode("ascii"),
        }

    def serialize(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))
