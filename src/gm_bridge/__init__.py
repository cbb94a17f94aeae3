"""GM Bridge - TCP debug bridge between a running game and developer tools.

A small thread-based server that:
- Accepts a single TCP connection from the game on port 7777
- Exchanges NUL-terminated UTF-8 messages with it
- Goes back to listening whenever the game disconnects
- Hands messages to the host process through non-blocking queues

It is a debugging channel, not a general-purpose or high-throughput transport.
"""

from gm_bridge.bridge import Bridge
from gm_bridge.config import BridgeConfig
from gm_bridge.errors import (
    BridgeError,
    BridgeNotRunningError,
    BridgeStartupError,
    BridgeWorkerError,
    ErrorAction,
    FramingError,
    ProtocolViolationError,
    TransportError,
    fail_fast,
    reconnect_on_session_errors,
)

__version__ = "0.1.0"

__all__ = [
    "Bridge",
    "BridgeConfig",
    "BridgeError",
    "BridgeNotRunningError",
    "BridgeStartupError",
    "BridgeWorkerError",
    "ErrorAction",
    "FramingError",
    "ProtocolViolationError",
    "TransportError",
    "fail_fast",
    "reconnect_on_session_errors",
]
