"""
MQTT 3.1 Packet Codec.

This module is responsible for:
- The fixed header: packet type in the high nibble of byte 1, followed by
  the remaining length as a base-128 integer with a continuation bit.
- 16-bit big-endian integers and length-prefixed UTF-8 fields.
- Building the bodies of the packets this client sends
  (CONNECT, PUBLISH, SUBSCRIBE, UNSUBSCRIBE).
- Splitting a received buffer into whole packets and parsing PUBLISH bodies.

Everything here is pure: no sockets, no client state.
"""
import logging
import struct
from typing import Iterable, Iterator, Optional, Tuple, Union

from mqtt_lite.protocol.errors import InvalidPacketBody, MessageLengthMismatch, PayloadTooLarge
from mqtt_lite.protocol.models import (
    CONNECT_FLAG_CLEAN_SESSION,
    CONNECT_FLAG_WILL,
    MAX_PAYLOAD_LENGTH,
    PROTOCOL_NAME,
    PROTOCOL_VERSION,
    ControlPacket,
    Message,
    PacketType,
    Will,
)

logger = logging.getLogger(__name__)

MAX_REMAINING_LENGTH = 128 ** 4 - 1  # 268435455, four length bytes
MAX_UTF8_LENGTH = 0xFFFF

_UINT16 = struct.Struct(">H")

BytesLike = Union[bytes, bytearray, str]


def _to_bytes(value: BytesLike) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


# --- Remaining length ---

def encode_remaining_length(length: int) -> bytes:
    """
    Encodes `length` as the MQTT variable-length integer:
    seven bits per byte, least significant group first,
    high bit set on every byte except the last.
    """
    if length < 0 or length > MAX_REMAINING_LENGTH:
        raise ValueError(f"Remaining length {length} outside 0..{MAX_REMAINING_LENGTH}")

    encoded = bytearray()
    while True:
        digit = length % 128
        length //= 128
        if length > 0:
            digit |= 0x80
        encoded.append(digit)
        if length == 0:
            return bytes(encoded)


def decode_fixed_header(buffer: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    Reads the fixed header starting at `offset`.

    Returns (fixed_header_length, remaining_length), where the header length
    counts the type byte plus every remaining-length byte consumed.
    """
    fixed_header_length = 1  # the type/flags byte
    remaining_length = 0
    multiplier = 1

    while True:
        position = offset + fixed_header_length
        if position >= len(buffer):
            raise MessageLengthMismatch(
                f"Fixed header truncated at byte {position} of {len(buffer)}"
            )
        if fixed_header_length > 4:
            raise InvalidPacketBody("Remaining length uses more than four bytes")

        digit = buffer[position]
        remaining_length += (digit & 0x7F) * multiplier
        multiplier *= 128
        fixed_header_length += 1
        if not digit & 0x80:
            break

    logger.debug(f"Fixed header length {fixed_header_length}, remaining length {remaining_length}")
    return fixed_header_length, remaining_length


# --- Field encodings ---

def encode_uint16(value: int) -> bytes:
    return _UINT16.pack(value)


def decode_uint16(buffer: bytes, offset: int = 0) -> int:
    if offset + 2 > len(buffer):
        raise InvalidPacketBody(f"Expected a 16-bit integer at offset {offset}")
    return _UINT16.unpack_from(buffer, offset)[0]


def encode_utf8(value: BytesLike) -> bytes:
    """2-byte big-endian length prefix followed by the raw bytes."""
    raw = _to_bytes(value)
    if len(raw) > MAX_UTF8_LENGTH:
        raise PayloadTooLarge(
            f"String field length = {len(raw)} exceeds maximum of {MAX_UTF8_LENGTH}"
        )
    return encode_uint16(len(raw)) + raw


def decode_utf8(buffer: bytes, offset: int = 0) -> Tuple[bytes, int]:
    """Returns the raw field bytes and the offset just past the field."""
    length = decode_uint16(buffer, offset)
    start = offset + 2
    end = start + length
    if end > len(buffer):
        raise InvalidPacketBody(
            f"String field of length {length} overruns body of {len(buffer)} bytes"
        )
    return bytes(buffer[start:end]), end


# --- Packets ---

def encode_packet(packet_type: PacketType, payload: Optional[BytesLike] = None,
                  variable_header: bytes = b"") -> bytes:
    """
    Frames a control packet: header byte 1 (type in the high nibble, flags
    zero), remaining length, variable header, payload.
    Only `payload` is subject to MAX_PAYLOAD_LENGTH.
    """
    raw_payload = b"" if payload is None else _to_bytes(payload)
    if len(raw_payload) > MAX_PAYLOAD_LENGTH:
        raise PayloadTooLarge(
            f"Payload length = {len(raw_payload)} exceeds maximum of {MAX_PAYLOAD_LENGTH}"
        )

    body = bytes(variable_header) + raw_payload
    return bytes([int(packet_type) << 4]) + encode_remaining_length(len(body)) + body


def build_connect_body(client_id: str, keep_alive: int, will: Optional[Will] = None) -> bytes:
    """
    CONNECT variable header and payload:
    protocol name, version, connect flags, keep-alive, client identifier
    and, when a will is given, will topic and will message.
    """
    flags = CONNECT_FLAG_CLEAN_SESSION
    if will is not None:
        flags |= CONNECT_FLAG_WILL | (will.qos << 3) | (int(will.retain) << 5)

    body = encode_utf8(PROTOCOL_NAME)
    body += bytes([PROTOCOL_VERSION, flags])
    body += encode_uint16(keep_alive)
    body += encode_utf8(client_id)
    if will is not None:
        body += encode_utf8(will.topic)
        body += encode_utf8(will.message)
    return body


def build_subscribe_body(message_id: int, topics: Iterable[str]) -> bytes:
    body = encode_uint16(message_id)
    for topic in topics:
        body += encode_utf8(topic) + bytes([0])  # requested QOS 0
    return body


def build_unsubscribe_body(message_id: int, topics: Iterable[str]) -> bytes:
    body = encode_uint16(message_id)
    for topic in topics:
        body += encode_utf8(topic)
    return body


def parse_publish_body(body: bytes, qos: int = 0, retain: bool = False) -> Message:
    """
    Topic name, then a message identifier only when QOS > 0,
    then the application payload.
    """
    if len(body) < 3:
        raise InvalidPacketBody(f"Invalid PUBLISH length: {len(body)}")

    raw_topic, index = decode_utf8(body)
    message_id = None
    if qos > 0:
        message_id = decode_uint16(body, index)
        index += 2

    try:
        topic = raw_topic.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidPacketBody(f"PUBLISH topic is not valid UTF-8: {e}") from e

    return Message(topic=topic, payload=bytes(body[index:]), qos=qos,
                   retain=retain, message_id=message_id)


def split_packets(buffer: bytes) -> Iterator[ControlPacket]:
    """
    Yields every whole packet in `buffer`, in order.

    Raises MessageLengthMismatch once the whole packets are exhausted if
    bytes remain that do not form a complete packet (a packet split across
    reads). Those bytes are dropped.
    """
    offset = 0
    while offset < len(buffer):
        header_length, remaining_length = decode_fixed_header(buffer, offset)
        end = offset + header_length + remaining_length
        if end > len(buffer):
            raise MessageLengthMismatch(
                f"Message length mismatch: packet ends at {end}, buffer holds {len(buffer)}"
            )
        body = bytes(buffer[offset + header_length:end])
        yield ControlPacket.from_header_byte(buffer[offset], body)
        offset = end
