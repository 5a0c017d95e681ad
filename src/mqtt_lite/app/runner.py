"""
Asyncio driver for a Client.

The Client is synchronous and single-threaded. `ClientRunner` owns it inside
one asyncio task which:
- Calls `Client.poll()` every `poll_interval` seconds.
- Sends publish requests that other coroutines put on its queue, so callers
  never touch the Client concurrently.

Threads must hand requests over with
`loop.call_soon_threadsafe(runner.publish, topic, payload)`.
"""
import asyncio
import logging
from typing import Optional, Union

from mqtt_lite.client.connection import Client
from mqtt_lite.protocol.errors import MQTTError, MQTTPayloadError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.1  # seconds


class ClientRunner:
    client: Client
    poll_interval: float
    publish_queue: asyncio.Queue
    error: Optional[Exception]
    _main_task: Optional[asyncio.Task]

    def __init__(self, client: Client, poll_interval: float = DEFAULT_POLL_INTERVAL,
                 publish_queue: Optional[asyncio.Queue] = None):
        if poll_interval <= 0 or poll_interval >= client.keep_alive:
            raise ValueError(f"Poll interval must be between 0 and the keep-alive ({client.keep_alive}s)")
        self.client = client
        self.poll_interval = poll_interval
        self.publish_queue = publish_queue if publish_queue is not None else asyncio.Queue()
        self.error = None
        self._main_task = None

    @property
    def running(self) -> bool:
        return self._main_task is not None and not self._main_task.done()

    async def start(self):
        """
        Launches the poll loop in the background. The client must be connected.
        """
        if self.running:
            logger.warning("Attempted to start the runner, but it is already running.")
            return
        logger.info(f"Starting poll loop for {self.client!r} every {self.poll_interval}s")
        self._main_task = asyncio.create_task(self._main_loop())

    async def halt(self):
        """
        Cancels the poll loop, leaving the client to the caller.
        """
        if self._main_task:
            logger.info("Stopping poll loop...")
            self._main_task.cancel()
            try:
                await self._main_task
            except asyncio.CancelledError:
                logger.info("Poll loop stopped.")
            except Exception as e:
                logger.error(f"Error while stopping poll loop: {e}")

    async def stop(self):
        """
        Cancels the poll loop and destroys the client (sending DISCONNECT if still connected).
        """
        await self.halt()
        self.client.destroy()

    async def wait(self):
        """Returns when the poll loop has ended, by `stop()` or by a terminal error."""
        if self._main_task:
            await asyncio.wait({self._main_task})

    def publish(self, topic: str, payload: Union[bytes, str] = b""):
        """Queues a publish for the poll loop. Must be called on the event loop thread."""
        logger.debug(f"Request to publish on {topic}")
        self.publish_queue.put_nowait((topic, payload))

    async def _main_loop(self):
        """
        Alternates polling with sending queued publishes, polling at least
        every `poll_interval` even while publishes keep arriving.
        A terminal client error, or an exception raised by the message callback,
        ends the loop and destroys the client; there is no reconnection.
        """
        loop = asyncio.get_running_loop()
        next_poll = loop.time()
        try:
            while True:
                timeout = max(0.0, next_poll - loop.time())
                try:
                    topic, payload = await asyncio.wait_for(self.publish_queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    self.client.poll()
                    next_poll = loop.time() + self.poll_interval
                    continue

                try:
                    self.client.publish(topic, payload)
                except MQTTPayloadError as e:
                    logger.error(f"Dropped publish on {topic}: {e}")
                finally:
                    self.publish_queue.task_done()
        except MQTTError as e:
            logger.error(f"MQTT connection lost: {e}")
            self.error = e
            self.client.destroy()
        except Exception as e:
            logger.error(f"Poll loop failed: {type(e).__name__}: {e}")
            self.error = e
            self.client.destroy()
