"""
Application layer: YAML configuration, the asyncio driver for a Client
and the command-line entry point.
"""
