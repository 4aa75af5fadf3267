"""thinkrelay: websocket relay for local reasoning models."""

__version__ = "0.1.0"
