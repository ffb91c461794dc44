class RelayError(Exception):
    """Base class for relay failures"""


class HandshakeError(RelayError):
    """The peer did not deliver a usable display name"""


class TransportError(RelayError):
    """Read or write failure on an established session"""


class ResourceReleaseError(RelayError):
    """Failure while closing a session's streams (logged, never raised)"""
