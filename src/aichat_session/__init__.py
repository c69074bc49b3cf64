"""Client core for driving an AI coding assistant backend over WebSocket."""

__version__ = "0.1.0"
