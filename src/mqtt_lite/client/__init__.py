"""
Client-side components: the connection state machine and dispatch loop,
the acknowledgement correlation table and the byte-stream transport.
"""
from mqtt_lite.client.connection import Client, create
from mqtt_lite.client.transport import SocketTransport, Transport

__all__ = ["Client", "create", "SocketTransport", "Transport"]
