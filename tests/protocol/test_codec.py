import pytest

from mqtt_lite.protocol.codec import (
    build_connect_body,
    build_subscribe_body,
    build_unsubscribe_body,
    decode_fixed_header,
    decode_uint16,
    decode_utf8,
    encode_packet,
    encode_remaining_length,
    encode_uint16,
    encode_utf8,
    parse_publish_body,
    split_packets,
)
from mqtt_lite.protocol.errors import InvalidPacketBody, MessageLengthMismatch, PayloadTooLarge
from mqtt_lite.protocol.models import MAX_PAYLOAD_LENGTH, ControlPacket, PacketType, Will

"""
Packet Codec Tests.
Fixed header and remaining-length framing, field encodings, and the bodies
of the packets the client builds and parses.
"""


# --- Remaining length ---

@pytest.mark.parametrize("length, encoded", [
    (0, b"\x00"),
    (127, b"\x7f"),
    (128, b"\x80\x01"),
    (16383, b"\xff\x7f"),
    (16384, b"\x80\x80\x01"),
    (128 ** 4 - 1, b"\xff\xff\xff\x7f"),
])
def test_remaining_length_uses_base_128_continuation_bytes(length, encoded):
    assert encode_remaining_length(length) == encoded

    header_length, remaining_length = decode_fixed_header(b"\x30" + encoded)
    assert header_length == 1 + len(encoded)
    assert remaining_length == length


@pytest.mark.parametrize("length", [-1, 128 ** 4])
def test_remaining_length_out_of_range(length):
    with pytest.raises(ValueError):
        encode_remaining_length(length)


def test_decode_fixed_header_at_offset():
    buffer = b"\xc0\x00" + b"\x30\x05"
    assert decode_fixed_header(buffer, 2) == (2, 5)


def test_decode_fixed_header_truncated_length():
    with pytest.raises(MessageLengthMismatch):
        decode_fixed_header(b"\x30\x80")


def test_decode_fixed_header_rejects_five_length_bytes():
    with pytest.raises(InvalidPacketBody):
        decode_fixed_header(b"\x30\xff\xff\xff\xff\x01")


# --- Fields ---

def test_uint16_is_big_endian():
    assert encode_uint16(0x1234) == b"\x12\x34"
    assert decode_uint16(b"\x00\x12\x34", 1) == 0x1234


def test_decode_uint16_needs_two_bytes():
    with pytest.raises(InvalidPacketBody):
        decode_uint16(b"\x01")


def test_encode_utf8_prefixes_length():
    assert encode_utf8("MQIsdp") == b"\x00\x06MQIsdp"
    assert encode_utf8(b"x" * 300)[:2] == b"\x01\x2c"
    assert encode_utf8("") == b"\x00\x00"


def test_utf8_field_handles_maximum_length():
    raw = bytes(range(256)) * 255 + b"z" * 255  # 65535 bytes
    encoded = encode_utf8(raw)

    assert encoded[:2] == b"\xff\xff"
    assert decode_utf8(encoded) == (raw, 65537)


def test_utf8_field_too_long():
    with pytest.raises(PayloadTooLarge):
        encode_utf8(b"x" * 65536)


def test_decode_utf8_overrun():
    with pytest.raises(InvalidPacketBody):
        decode_utf8(b"\x00\x05abc")


# --- Packets ---

def test_encode_packet_without_payload():
    assert encode_packet(PacketType.PINGREQ) == b"\xc0\x00"
    assert encode_packet(PacketType.PINGRESP) == b"\xd0\x00"
    assert encode_packet(PacketType.DISCONNECT) == b"\xe0\x00"


def test_encode_publish_packet():
    packet = encode_packet(PacketType.PUBLISH, b"hi", variable_header=encode_utf8("a/b"))
    assert packet == b"\x30\x07\x00\x03a/bhi"


def test_encode_packet_payload_limit():
    packet = encode_packet(PacketType.PUBLISH, b"p" * MAX_PAYLOAD_LENGTH)
    assert packet[:3] == b"\x30\xff\x7f"
    assert len(packet) == 3 + MAX_PAYLOAD_LENGTH

    with pytest.raises(PayloadTooLarge):
        encode_packet(PacketType.PUBLISH, b"p" * (MAX_PAYLOAD_LENGTH + 1))


def test_connect_body_without_will():
    body = build_connect_body("abc", 60)
    assert body == b"\x00\x06MQIsdp" + b"\x03" + b"\x02" + b"\x00\x3c" + b"\x00\x03abc"


def test_connect_body_with_will():
    will = Will(topic="w", message=b"bye", qos=1, retain=True)
    body = build_connect_body("abc", 300, will)

    # clean session | will flag | will QOS 1 | will retain
    assert body[9] == 0x02 | 0x04 | 0x08 | 0x20
    assert body[10:12] == b"\x01\x2c"
    assert body.endswith(b"\x00\x03abc" + b"\x00\x01w" + b"\x00\x03bye")


def test_will_rejects_invalid_qos():
    with pytest.raises(ValueError):
        Will(topic="w", qos=3)


def test_subscribe_body_requests_qos_0_per_topic():
    body = build_subscribe_body(1, ["a/b", "c/d"])
    assert body == b"\x00\x01" + b"\x00\x03a/b\x00" + b"\x00\x03c/d\x00"


def test_unsubscribe_body():
    assert build_unsubscribe_body(0x0102, ["a/b"]) == b"\x01\x02\x00\x03a/b"


def test_parse_publish_body_qos_0():
    message = parse_publish_body(b"\x00\x01xhello")
    assert message.topic == "x"
    assert message.payload == b"hello"
    assert message.message_id is None


def test_parse_publish_body_qos_1_skips_message_id():
    message = parse_publish_body(b"\x00\x01x\x00\x07hello", qos=1)
    assert message.message_id == 7
    assert message.payload == b"hello"


@pytest.mark.parametrize("body", [b"\x00\x01", b"\x00\x09abc"])
def test_parse_publish_body_malformed(body):
    with pytest.raises(InvalidPacketBody):
        parse_publish_body(body)


# --- Framing ---

def test_header_byte_flags():
    packet = ControlPacket.from_header_byte(0x3B, b"")
    assert packet.packet_type is PacketType.PUBLISH
    assert packet.dup is True
    assert packet.qos == 1
    assert packet.retain is True


def test_split_back_to_back_packets():
    buffer = b"\x30\x04\x00\x01xA" + b"\xd0\x00" + b"\x30\x05\x00\x01yBC"
    packets = list(split_packets(buffer))

    assert [p.packet_type for p in packets] == [PacketType.PUBLISH, PacketType.PINGRESP, PacketType.PUBLISH]
    assert packets[0].body == b"\x00\x01xA"
    assert packets[1].body == b""
    assert packets[2].body == b"\x00\x01yBC"


def test_split_packets_reports_partial_trailing_packet():
    packets = split_packets(b"\xd0\x00" + b"\x30\x09\x00\x01x")

    assert next(packets).packet_type is PacketType.PINGRESP
    with pytest.raises(MessageLengthMismatch):
        next(packets)
