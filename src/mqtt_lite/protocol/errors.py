"""
Exception Hierarchy for the MQTT client.

State errors (wrong connection state), connection errors (transport and
broker refusal), payload errors (sizes and malformed bodies) and protocol
errors (framing and acknowledgement correlation).
"""
from typing import Optional


class MQTTError(Exception):
    """Base exception for all MQTT-related errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# --- Client state ---

class MQTTStateError(MQTTError):
    """Operation not permitted in the current connection state."""


class AlreadyConnected(MQTTStateError):
    pass


class NotConnected(MQTTStateError):
    pass


class ClientDestroyed(NotConnected):
    """The client was destroyed and accepts no further operations."""


# --- Connection / transport ---

class MQTTConnectionError(MQTTError):
    """Connection-level error (network, broker refusal)."""


class ConnectionFailed(MQTTConnectionError):
    pass


class ConnectionRefused(MQTTConnectionError):
    """The broker answered CONNECT with a non-zero CONNACK return code."""

    def __init__(self, reason: str, return_code: Optional[int] = None):
        self.reason = reason
        self.return_code = return_code
        super().__init__(f"Connection refused: {reason}")


class TransportSendFailed(MQTTConnectionError):
    pass


class TransportReceiveFailed(MQTTConnectionError):
    pass


# --- Payloads ---

class MQTTPayloadError(MQTTError):
    """Payload too large, malformed, or invalid data."""


class PayloadTooLarge(MQTTPayloadError):
    pass


class InvalidPacketBody(MQTTPayloadError):
    pass


# --- Protocol ---

class MQTTProtocolError(MQTTError):
    """Protocol violation detected while reading the broker's packets."""


class UnknownPacketType(MQTTProtocolError):
    pass


class MessageLengthMismatch(MQTTProtocolError):
    pass


class NoOutstandingRequest(MQTTProtocolError):
    pass


class UnexpectedAckKind(MQTTProtocolError):
    pass


class TopicCountMismatch(MQTTProtocolError):
    pass
