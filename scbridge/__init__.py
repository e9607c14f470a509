"""Bridge between a long-running sclang process and many WebSocket viewers."""

__version__ = "0.1.0"
