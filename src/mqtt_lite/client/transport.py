"""
Byte-Stream Transport.

The client only talks to the network through the `Transport` interface:
open, send, a non-blocking readability poll, receive and close.
`SocketTransport` is the default TCP implementation; tests substitute an
in-memory one.
"""
import logging
import select
import socket
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)

RECEIVE_BUFFER_SIZE = 65536


class Transport(ABC):
    """
    Interface consumed by `Client`. Implementations raise `OSError`
    (or a subclass) on failure; the client maps those onto its own errors.
    """

    @abstractmethod
    def open(self, host: str, port: int) -> None:
        ...

    @abstractmethod
    def send(self, data: bytes) -> None:
        ...

    @abstractmethod
    def poll_readable(self) -> bool:
        ...

    @abstractmethod
    def receive(self) -> bytes:
        """Returns the bytes currently available. Empty means the peer closed."""
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class SocketTransport(Transport):
    sock: Optional[socket.socket]
    connect_timeout: Optional[float]

    def __init__(self, connect_timeout: Optional[float] = None):
        self.sock = None
        self.connect_timeout = connect_timeout

    def open(self, host: str, port: int) -> None:
        logger.debug(f"Opening TCP connection to {host}:{port}")
        self.sock = socket.create_connection((host, port), timeout=self.connect_timeout)
        # Blocking sends; receives only happen after select() reports data.
        self.sock.settimeout(None)

    def send(self, data: bytes) -> None:
        if self.sock is None:
            raise OSError("Transport is not open")
        self.sock.sendall(data)

    def poll_readable(self) -> bool:
        if self.sock is None:
            return False
        readable, _, _ = select.select([self.sock], [], [], 0)
        return bool(readable)

    def receive(self) -> bytes:
        if self.sock is None:
            raise OSError("Transport is not open")
        return self.sock.recv(RECEIVE_BUFFER_SIZE)

    def close(self) -> None:
        if self.sock is not None:
            try:
                self.sock.close()
            finally:
                self.sock = None
