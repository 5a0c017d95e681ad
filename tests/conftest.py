"""
Pytest Configuration and Fixtures for the mqtt_lite project.

Provides an in-memory transport and a hand-driven clock so the client can
be exercised without a broker or real time passing.
"""
import logging
import sys
from collections import deque

import pytest

from mqtt_lite.client.connection import Client
from mqtt_lite.client.transport import Transport


class FakeTransport(Transport):
    """
    Records everything sent and hands out queued chunks on `receive()`.
    Set `fail_open`, `fail_send` or `fail_receive` to make the next call raise.
    """
    def __init__(self):
        self.opened_with = None
        self.is_open = False
        self.sent = []
        self.incoming = deque()
        self.close_count = 0
        self.fail_open = False
        self.fail_send = False
        self.fail_receive = False

    def open(self, host, port):
        if self.fail_open:
            raise ConnectionRefusedError(111, "Connection refused")
        self.opened_with = (host, port)
        self.is_open = True

    def send(self, data):
        if self.fail_send:
            raise BrokenPipeError(32, "Broken pipe")
        self.sent.append(bytes(data))

    def poll_readable(self):
        return bool(self.incoming) or self.fail_receive

    def receive(self):
        if self.fail_receive:
            raise ConnectionResetError(104, "Connection reset by peer")
        return self.incoming.popleft()

    def close(self):
        self.close_count += 1
        self.is_open = False

    def feed(self, *chunks):
        self.incoming.extend(bytes(chunk) for chunk in chunks)


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """
    Configures the Python logging framework globally for all tests,
    since tests bypass main.py.
    """
    formatter = logging.Formatter(fmt="%(levelname)-8s %(message)s - %(funcName)s:%(lineno)d ")
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def received():
    """Collects (topic, payload) pairs delivered to the message callback."""
    return []


@pytest.fixture
def client(transport, clock, received):
    """A disconnected client wired to the fake transport and clock."""
    return Client("broker.test", 1883, lambda topic, payload: received.append((topic, payload)),
                  transport=transport, clock=clock)


@pytest.fixture
def connected_client(client, transport):
    """A connected client with the CONNECT packet already cleared from `transport.sent`."""
    client.connect("test-client")
    transport.sent.clear()
    return client
