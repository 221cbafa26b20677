"""TCP and UDP building blocks: endpoints, stream I/O, sync and async clients, demo servers and a message service."""

__version__ = "0.1.0"

__all__ = [
    "endpoints",
    "streamio",
    "clients",
    "async_ops",
    "async_client",
    "servers",
    "tmsg",
]