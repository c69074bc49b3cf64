"""Environment-driven settings for the backend endpoints and timeouts."""

import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_WS_URL = "ws://localhost:8765/ws"
DEFAULT_API_URL = "http://localhost:8765"
DEFAULT_HISTORY_TIMEOUT = 30.0
DEFAULT_RECONNECT_DELAY = 1.0

MAX_MESSAGE_LENGTH = 50_000


def get_ws_url() -> str:
    """Return the WebSocket URL of the backend."""
    return os.environ.get("AICHAT_SESSION_WS_URL") or DEFAULT_WS_URL


def get_api_url() -> str:
    """Return the base URL of the backend's HTTP API."""
    return (os.environ.get("AICHAT_SESSION_API_URL") or DEFAULT_API_URL).rstrip("/")


def get_history_timeout() -> float:
    """Return how long a history load may stay in flight, in seconds."""
    return _float_env("AICHAT_SESSION_HISTORY_TIMEOUT", DEFAULT_HISTORY_TIMEOUT)


def get_reconnect_delay() -> float:
    """Return the initial WebSocket reconnect delay, in seconds."""
    return _float_env("AICHAT_SESSION_RECONNECT_DELAY", DEFAULT_RECONNECT_DELAY)


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r", name, raw)
        return default
    return value
