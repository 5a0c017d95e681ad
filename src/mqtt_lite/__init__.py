"""
mqtt_lite

A small, single-threaded MQTT 3.1 client: connect to a broker, publish,
subscribe and receive messages through a callback, with keep-alive pings
maintained by a caller-driven `poll()` loop.
"""
__version__ = "0.1.0"
