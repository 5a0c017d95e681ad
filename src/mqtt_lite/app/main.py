"""
Main entry point for the mqtt_lite test client.

This module is responsible for:
- Loading the YAML configuration and setting up logging.
- Connecting a Client (with optional last will) and subscribing to one topic.
- Publishing a test message on another topic every `publish_interval` seconds.
- Stopping when the message "quit" arrives, on SIGINT/SIGTERM, or when the
  connection fails; unsubscribing and destroying the client on the way out.
"""
import asyncio
import logging
import signal
import sys
from typing import Any, Dict

from mqtt_lite.app.config_loader import client_options, load_config, will_from_config
from mqtt_lite.app.runner import DEFAULT_POLL_INTERVAL, ClientRunner
from mqtt_lite.client.connection import create
from mqtt_lite.protocol.errors import MQTTError

DEFAULT_CLIENT_ID = "mqtt_lite"
DEFAULT_SUBSCRIBE_TOPIC = "test/2"
DEFAULT_PUBLISH_TOPIC = "test/1"
QUIT_PAYLOAD = b"quit"


def setup_logging(debug: bool = False):
    """Root logging for the client process; `debug` also shows per-packet traces."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s [%(levelname)-8s] %(name)s.%(funcName)s: %(message)s'
    )

logger = logging.getLogger(__name__)


async def publish_test_messages(runner: ClientRunner, topic: str, interval: float):
    """Background task publishing a test message every `interval` seconds."""
    logger.info(f"Publishing test messages on {topic} every {interval}s.")
    try:
        while True:
            runner.publish(topic, "*** mqtt_lite test message ***")
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("Test message loop stopped.")


async def shutdown(runner: ClientRunner, subscribe_topic: str):
    """Graceful shutdown: halt polling, unsubscribe, then destroy (DISCONNECT)."""
    await runner.halt()
    client = runner.client
    if client.connected:
        try:
            client.unsubscribe([subscribe_topic])
        except MQTTError as e:
            logger.error(f"Unsubscribe during shutdown failed: {e}")
    client.destroy()


async def main_application_runner(config_path: str = "config.yaml") -> int:
    setup_logging()
    logger.info("Starting mqtt_lite test client...")

    config: Dict[str, Any] = load_config(config_path)
    if config.get('debug', False):
        logging.getLogger().setLevel(logging.DEBUG)

    topics = config.get('topics', {}) or {}
    subscribe_topic = topics.get('subscribe', DEFAULT_SUBSCRIBE_TOPIC)
    publish_topic = topics.get('publish', DEFAULT_PUBLISH_TOPIC)
    client_id = (config.get('mqtt', {}) or {}).get('client_id', DEFAULT_CLIENT_ID)

    quit_requested = asyncio.Event()

    def on_message(topic: str, payload: bytes):
        logger.info(f"{topic}: {payload.decode('utf-8', errors='replace')}")
        if payload == QUIT_PAYLOAD:
            quit_requested.set()

    client = create(callback=on_message, **client_options(config))
    try:
        client.connect(client_id, will=will_from_config(config))
        client.publish(publish_topic, "*** mqtt_lite test start ***")
        client.subscribe([subscribe_topic])
    except MQTTError as e:
        logger.error(f"Could not start MQTT session: {e}")
        client.destroy()
        return 1

    runner = ClientRunner(client, poll_interval=float(config.get('poll_interval', DEFAULT_POLL_INTERVAL)))
    await runner.start()
    publisher_task = asyncio.create_task(
        publish_test_messages(runner, publish_topic, float(config.get('publish_interval', 1.0)))
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, quit_requested.set)

    logger.info("Client is running. Publish 'quit' on the subscribed topic or press Ctrl+C to exit.")

    quit_task = asyncio.create_task(quit_requested.wait())
    runner_task = asyncio.create_task(runner.wait())
    await asyncio.wait({quit_task, runner_task}, return_when=asyncio.FIRST_COMPLETED)

    for task in (publisher_task, quit_task, runner_task):
        task.cancel()
    await asyncio.gather(publisher_task, quit_task, runner_task, return_exceptions=True)

    await shutdown(runner, subscribe_topic)
    return 1 if runner.error is not None else 0


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    config_path = argv[0] if argv else "config.yaml"
    try:
        return asyncio.run(main_application_runner(config_path))
    except KeyboardInterrupt:
        # Handled by the signal handler, but good to catch here just in case.
        return 0


if __name__ == "__main__":
    sys.exit(main())
