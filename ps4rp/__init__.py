"""PS4 Remote Play session establishment."""

from .control import ConnectionFailed, ControlClient, Endpoint, RegistrationCredential
from .crypto import SessionContext, derive_control_session
from .handshake import HandshakeError, HandshakeOutcome, UdpHandshake
from .keepalive import KeepaliveSupervisor
from .service import ConnectionEvent, EventChannel, PS4ConnectionService, ServiceConfig
from .takion import ControlMessage, ControlResult

__all__ = [
    "ConnectionEvent",
    "ConnectionFailed",
    "ControlClient",
    "ControlMessage",
    "ControlResult",
    "Endpoint",
    "EventChannel",
    "HandshakeError",
    "HandshakeOutcome",
    "KeepaliveSupervisor",
    "PS4ConnectionService",
    "RegistrationCredential",
    "ServiceConfig",
    "SessionContext",
    "UdpHandshake",
    "derive_control_session",
]
