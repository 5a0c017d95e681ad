"""
MQTT 3.1 Client Connection.

This module provides:
- The connection state machine (connect, disconnect, destroy).
- Keep-alive: a PINGREQ whenever the connection has been idle for the
  keep-alive interval.
- The dispatch loop `Client.poll()`, which drains the transport, splits the
  received bytes into packets and routes each one to its handler.
- Publish, subscribe and unsubscribe, with SUBACK/UNSUBACK correlation.

Only QOS 0 is supported. The client is single-threaded: every method must be
called from the same thread, `poll()` more often than the keep-alive interval.
"""
import logging
import time
from typing import Callable, Dict, Iterable, Mapping, Optional, Union

from mqtt_lite.client.correlation import CorrelationTable, OutstandingRequest
from mqtt_lite.client.transport import SocketTransport, Transport
from mqtt_lite.protocol.codec import (
    build_connect_body,
    build_subscribe_body,
    build_unsubscribe_body,
    decode_uint16,
    encode_packet,
    encode_utf8,
    parse_publish_body,
    split_packets,
)
from mqtt_lite.protocol.errors import (
    AlreadyConnected,
    ClientDestroyed,
    ConnectionFailed,
    ConnectionRefused,
    InvalidPacketBody,
    MQTTConnectionError,
    MQTTPayloadError,
    MQTTProtocolError,
    NotConnected,
    TopicCountMismatch,
    TransportReceiveFailed,
    TransportSendFailed,
    UnknownPacketType,
)
from mqtt_lite.protocol.models import (
    CONNACK_REFUSAL_REASONS,
    DEFAULT_BROKER_HOSTNAME,
    DEFAULT_PORT,
    KEEP_ALIVE_TIME,
    MAX_CLIENT_ID_LENGTH,
    MAX_KEEP_ALIVE_TIME,
    UNKNOWN_REFUSAL_REASON,
    ControlPacket,
    PacketType,
    RequestKind,
    Will,
)

logger = logging.getLogger(__name__)

# Protocol errors found while handling received packets terminate the client?
ERROR_TERMINATE = False

MessageCallback = Callable[[str, bytes], None]
Topics = Union[str, Iterable[str]]


class Client:
    hostname: str
    port: int
    callback: Optional[MessageCallback]
    transport: Transport
    keep_alive: int
    client_id: Optional[str]
    connected: bool
    destroyed: bool
    last_activity: float
    _outstanding: CorrelationTable
    _handlers: Dict[PacketType, Callable[[ControlPacket], None]]

    """
    One logical connection to an MQTT broker.
    """
    def __init__(self, hostname: str = DEFAULT_BROKER_HOSTNAME, port: int = DEFAULT_PORT,
                 callback: Optional[MessageCallback] = None, *,
                 transport: Optional[Transport] = None,
                 keep_alive: int = KEEP_ALIVE_TIME,
                 error_terminate: Optional[bool] = None,
                 clock: Callable[[], float] = time.monotonic):
        if not 0 < keep_alive <= MAX_KEEP_ALIVE_TIME:
            raise ValueError(f"Keep-alive must be 1..{MAX_KEEP_ALIVE_TIME} seconds, not {keep_alive}")

        self.hostname = hostname
        self.port = port or DEFAULT_PORT
        self.callback = callback
        self.transport = transport if transport is not None else SocketTransport()
        self.keep_alive = keep_alive
        self.clock = clock
        self._error_terminate = error_terminate

        self.client_id = None
        self.connected = False
        self.destroyed = False
        self.last_activity = 0.0
        self._outstanding = CorrelationTable()

        self._handlers = {
            PacketType.CONNACK: self._handle_connack,
            PacketType.PUBLISH: self._handle_publish,
            PacketType.PUBACK: self._handle_puback,
            PacketType.SUBACK: self._handle_suback,
            PacketType.UNSUBACK: self._handle_unsuback,
            PacketType.PINGREQ: self._handle_pingreq,
            PacketType.PINGRESP: self._handle_pingresp,
        }

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.destroy()

    def __repr__(self):
        state = "destroyed" if self.destroyed else "connected" if self.connected else "disconnected"
        return f"<Client {self.client_id or '?'} {self.hostname}:{self.port} {state}>"

    @property
    def error_terminate(self) -> bool:
        if self._error_terminate is None:
            return ERROR_TERMINATE
        return self._error_terminate

    @property
    def outstanding(self) -> Mapping[int, OutstandingRequest]:
        """Read-only view of the requests still waiting for an acknowledgement."""
        return self._outstanding.pending

    # --- Connection state ---

    def connect(self, identifier: str, will: Optional[Will] = None) -> None:
        """
        Opens the transport and sends CONNECT (clean session, optional will).
        The broker's CONNACK is handled later by `poll()`.
        """
        self._check_not_destroyed("connect")
        if self.connected:
            raise AlreadyConnected("Already connected")

        logger.debug(f"Connecting to {self.hostname}:{self.port} as {identifier}")
        if len(identifier) > MAX_CLIENT_ID_LENGTH:
            logger.warning(f"Client identifier '{identifier}' is longer than {MAX_CLIENT_ID_LENGTH} characters")

        try:
            self.transport.open(self.hostname, self.port)
        except OSError as e:
            raise ConnectionFailed(f"Couldn't open MQTT broker connection to {self.hostname}:{self.port}: {e}") from e

        self.client_id = identifier
        self.connected = True
        try:
            self._write(PacketType.CONNECT, build_connect_body(identifier, self.keep_alive, will))
        except MQTTPayloadError:
            self._drop_transport()
            raise

    def disconnect(self) -> None:
        """Sends DISCONNECT and closes the transport."""
        if not self.connected:
            if self.destroyed:
                raise ClientDestroyed("Client has been destroyed")
            raise NotConnected("Already disconnected")

        logger.debug("Disconnecting")
        try:
            self._write(PacketType.DISCONNECT)
        finally:
            self._drop_transport()

    def destroy(self) -> None:
        """
        Disconnects if needed and releases the callback and outstanding requests.
        Safe to call repeatedly; the client accepts nothing but `destroy()` afterwards.
        """
        if self.destroyed:
            return
        logger.debug("Destroying client")
        # Set first: a failing DISCONNECT below calls back into destroy().
        self.destroyed = True

        if self.connected:
            try:
                self.disconnect()
            except MQTTConnectionError as e:
                logger.warning(f"Disconnect during destroy failed: {e}")

        self.callback = None
        self._outstanding.clear()

    def ping_response(self) -> None:
        self._check_connected("ping_response")
        self._write(PacketType.PINGRESP)

    # --- Publish / subscribe ---

    def publish(self, topic: str, payload: Union[bytes, str] = b"") -> None:
        self._check_connected("publish")
        logger.debug(f"Publishing on {topic}")
        self._write(PacketType.PUBLISH, payload, variable_header=encode_utf8(topic))

    def subscribe(self, topics: Topics) -> int:
        """
        Sends SUBSCRIBE (requested QOS 0) for every topic filter.
        Returns the message identifier the SUBACK will carry.
        """
        self._check_connected("subscribe")
        topics = self._topic_list(topics)
        message_id = self._outstanding.next_message_id()
        for topic in topics:
            logger.debug(f"Subscribing to {topic}")

        self._write(PacketType.SUBSCRIBE, build_subscribe_body(message_id, topics))
        self._outstanding.add(message_id, RequestKind.SUBSCRIBE, topics)
        return message_id

    def unsubscribe(self, topics: Topics) -> int:
        self._check_connected("unsubscribe")
        topics = self._topic_list(topics)
        message_id = self._outstanding.next_message_id()
        for topic in topics:
            logger.debug(f"Unsubscribing from {topic}")

        self._write(PacketType.UNSUBSCRIBE, build_unsubscribe_body(message_id, topics))
        self._outstanding.add(message_id, RequestKind.UNSUBSCRIBE, topics)
        return message_id

    # --- Dispatch loop ---

    def poll(self) -> None:
        """
        Services the connection; must be called more often than the keep-alive.

        Sends a PINGREQ when due, then reads whatever the transport has ready
        and handles every whole packet in it. Transport errors destroy the
        client and are raised. Protocol errors are raised (after destroying
        the client) when `error_terminate` is set, logged otherwise.
        """
        self._check_connected("poll")

        if self.clock() > self.last_activity + self.keep_alive:
            logger.debug("Keep-alive due, sending PINGREQ")
            self._write(PacketType.PINGREQ)

        try:
            if not self.transport.poll_readable():
                return
            buffer = self.transport.receive()
        except OSError as e:
            self._abort()
            raise TransportReceiveFailed(f"Receive failed: {e}") from e

        if not buffer:
            self._abort()
            raise TransportReceiveFailed("Connection closed by broker")

        packets = split_packets(buffer)
        while self.connected:
            try:
                packet = next(packets, None)
            except (MQTTProtocolError, MQTTPayloadError) as e:
                self._handle_error(e)
                break
            if packet is None:
                break

            try:
                self._dispatch(packet)
            except ConnectionRefused:
                self.destroy()
                raise
            except (MQTTProtocolError, MQTTPayloadError) as e:
                self._handle_error(e)

    def _dispatch(self, packet: ControlPacket) -> None:
        logger.debug(f"Received {packet.packet_type.name} ({len(packet.body)} bytes, QOS {packet.qos})")
        handler = self._handlers.get(packet.packet_type)
        if handler is None:
            raise UnknownPacketType(f"Unknown message type: {packet.packet_type.name} ({int(packet.packet_type)})")
        handler(packet)

    def _handle_error(self, error: Exception) -> None:
        if self.error_terminate:
            self.destroy()
            raise error
        logger.error(f"{type(error).__name__}: {error}")

    # --- Packet handlers ---

    def _handle_connack(self, packet: ControlPacket) -> None:
        if len(packet.body) != 2:
            raise InvalidPacketBody(f"Invalid CONNACK length: {len(packet.body)}")

        return_code = packet.body[1]
        if return_code != 0:
            reason = CONNACK_REFUSAL_REASONS.get(return_code, UNKNOWN_REFUSAL_REASON)
            raise ConnectionRefused(reason, return_code)
        logger.info(f"Connection to {self.hostname}:{self.port} accepted")

    def _handle_publish(self, packet: ControlPacket) -> None:
        message = parse_publish_body(packet.body, packet.qos, packet.retain)
        if self.callback is not None:
            self.callback(message.topic, message.payload)

    def _handle_puback(self, packet: ControlPacket) -> None:
        logger.warning("PUBACK received -- unimplemented --")

    def _handle_suback(self, packet: ControlPacket) -> None:
        if len(packet.body) < 3:
            raise InvalidPacketBody(f"Invalid SUBACK length: {len(packet.body)}")

        message_id = decode_uint16(packet.body)
        request = self._outstanding.acknowledge(message_id, RequestKind.SUBSCRIBE)
        # Granted QOS values are not checked, only their count.
        granted = len(packet.body) - 2
        if granted != len(request.topics):
            raise TopicCountMismatch(
                f"SUBACK {message_id} granted {granted} topics, expected {len(request.topics)}"
            )

    def _handle_unsuback(self, packet: ControlPacket) -> None:
        if len(packet.body) != 2:
            raise InvalidPacketBody(f"Invalid UNSUBACK length: {len(packet.body)}")

        message_id = decode_uint16(packet.body)
        self._outstanding.acknowledge(message_id, RequestKind.UNSUBSCRIBE)

    def _handle_pingreq(self, packet: ControlPacket) -> None:
        self.ping_response()

    def _handle_pingresp(self, packet: ControlPacket) -> None:
        if len(packet.body) != 0:
            raise InvalidPacketBody(f"Invalid PINGRESP length: {len(packet.body)}")

    # --- Internals ---

    def _write(self, packet_type: PacketType, payload=None, variable_header: bytes = b"") -> None:
        """Frames and sends one packet. A send failure destroys the client."""
        message = encode_packet(packet_type, payload, variable_header)
        logger.debug(f"Sending {packet_type.name} ({len(message)} bytes)")
        try:
            self.transport.send(message)
        except OSError as e:
            self._abort()
            raise TransportSendFailed(f"Send of {packet_type.name} failed: {e}") from e
        self.last_activity = self.clock()

    def _abort(self) -> None:
        """Transport is unusable: close it without a DISCONNECT and destroy."""
        self._drop_transport()
        self.destroy()

    def _drop_transport(self) -> None:
        self.connected = False
        try:
            self.transport.close()
        except OSError as e:
            logger.warning(f"Closing transport failed: {e}")

    def _check_not_destroyed(self, operation: str) -> None:
        if self.destroyed:
            raise ClientDestroyed(f"{operation}(): client has been destroyed")

    def _check_connected(self, operation: str) -> None:
        self._check_not_destroyed(operation)
        if not self.connected:
            raise NotConnected(f"{operation}(): Not connected")

    @staticmethod
    def _topic_list(topics: Topics) -> list:
        if isinstance(topics, str):
            topics = [topics]
        topics = list(topics)
        if not topics:
            raise ValueError("At least one topic is required")
        for topic in topics:
            if not isinstance(topic, str):
                raise TypeError(f"Topic must be a str, got {type(topic).__name__}")
        return topics


def create(hostname: str = DEFAULT_BROKER_HOSTNAME, port: int = DEFAULT_PORT,
           callback: Optional[MessageCallback] = None, **kwargs) -> Client:
    """Creates a disconnected client for the broker at hostname:port."""
    return Client(hostname, port, callback, **kwargs)
