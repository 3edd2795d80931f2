"""NAT hole punching exceptions."""


class PunchError(Exception):
    """Base exception for hole punching errors."""


class MalformedMessageError(PunchError):
    """Datagram payload is not exactly one byte."""

    def __init__(self, length: int):
        super().__init__(f"Expected 1-byte handshake message, got {length} bytes")
        self.length = length


class UnknownStateError(PunchError, ValueError):
    """Handshake byte outside of the known state values."""

    def __init__(self, value: int):
        super().__init__(f"Unknown handshake state value: {value}")
        self.value = value


class TransportError(PunchError):
    """Underlying datagram socket failed."""
