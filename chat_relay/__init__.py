from chat_relay.errors import HandshakeError, RelayError, ResourceReleaseError, TransportError
from chat_relay.registry import Registry
from chat_relay.session import Session, SessionState

__all__ = [
    "HandshakeError",
    "RelayError",
    "Registry",
    "ResourceReleaseError",
    "Session",
    "SessionState",
    "TransportError",
]
