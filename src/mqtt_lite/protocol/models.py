"""
Data Models and Constants of the MQTT 3.1 Wire Protocol.

Defines the enumerations and small value objects shared by the
codec and the client:
- `PacketType`, the control packet kinds (high nibble of header byte 1).
- `ControlPacket`, one decoded packet (type, flags and body).
- `Will`, the last will and testament carried by CONNECT.
- `RequestKind`, the kind of an outstanding SUBSCRIBE/UNSUBSCRIBE.
"""
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional

PROTOCOL_NAME = "MQIsdp"
PROTOCOL_VERSION = 0x03

DEFAULT_BROKER_HOSTNAME = "localhost"
DEFAULT_PORT = 1883
KEEP_ALIVE_TIME = 60  # seconds (maximum is 65535)
MAX_KEEP_ALIVE_TIME = 0xFFFF
MAX_PAYLOAD_LENGTH = 16383
MAX_CLIENT_ID_LENGTH = 23
MAX_MESSAGE_ID = 0xFFFF

# CONNECT flags byte
CONNECT_FLAG_CLEAN_SESSION = 0x02
CONNECT_FLAG_WILL = 0x04

# CONNACK return code used as the index
CONNACK_REFUSAL_REASONS = {
    1: "Unacceptable protocol version",
    2: "Identifier rejected",
    3: "Server unavailable",
    4: "Bad user name or password",
    5: "Not authorized",
}
UNKNOWN_REFUSAL_REASON = "Unknown return code"


class PacketType(IntEnum):
    RESERVED = 0x00
    CONNECT = 0x01
    CONNACK = 0x02
    PUBLISH = 0x03
    PUBACK = 0x04
    PUBREC = 0x05
    PUBREL = 0x06
    PUBCOMP = 0x07
    SUBSCRIBE = 0x08
    SUBACK = 0x09
    UNSUBSCRIBE = 0x0A
    UNSUBACK = 0x0B
    PINGREQ = 0x0C
    PINGRESP = 0x0D
    DISCONNECT = 0x0E
    RESERVED_HIGH = 0x0F


class RequestKind(str, Enum):
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"


@dataclass(frozen=True)
class ControlPacket:
    """
    One control packet as split out of the received byte stream.
    `body` is everything after the fixed header (variable header + payload).
    """
    packet_type: PacketType
    qos: int = 0
    dup: bool = False
    retain: bool = False
    body: bytes = b""

    @classmethod
    def from_header_byte(cls, header: int, body: bytes) -> "ControlPacket":
        """Splits header byte 1 into type and DUP/QOS/RETAIN flags."""
        return cls(
            packet_type=PacketType(header >> 4),
            qos=(header >> 1) & 0x03,
            dup=bool(header & 0x08),
            retain=bool(header & 0x01),
            body=body,
        )


@dataclass(frozen=True, kw_only=True)
class Will:
    """Last will and testament, published by the broker if we drop off."""
    topic: str
    message: bytes = b""
    qos: int = 0
    retain: bool = False

    def __post_init__(self):
        if self.qos not in (0, 1, 2):
            raise ValueError(f"Will QOS must be 0, 1 or 2, not {self.qos}")


@dataclass(frozen=True)
class Message:
    """A PUBLISH delivered by the broker."""
    topic: str
    payload: bytes
    qos: int = 0
    retain: bool = False
    message_id: Optional[int] = field(default=None, compare=False)
