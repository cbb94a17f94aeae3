"""Bridge error taxonomy and worker error policies.

The worker never decides on its own whether an unexpected condition ends
the bridge. It wraps the condition in one of the exceptions below and asks
the ErrorPolicy supplied by whoever created the bridge.
"""

from __future__ import annotations

import enum
from collections.abc import Callable


class BridgeError(Exception):
    """Base class for all bridge errors."""


class BridgeStartupError(BridgeError):
    """The listening socket could not be bound."""


class ProtocolViolationError(BridgeError):
    """The peer sent bytes that break the framing contract."""


class FramingError(BridgeError, ValueError):
    """An outbound message cannot be framed."""


class TransportError(BridgeError):
    """Unexpected OS-level socket failure."""


class BridgeNotRunningError(BridgeError):
    """The handle was used before start() or after shutdown()."""


class BridgeWorkerError(BridgeError):
    """The worker thread stopped because of a fatal error."""


class ErrorAction(enum.Enum):
    """What the worker does after an error."""

    FATAL = "fatal"
    RECONNECT = "reconnect"


ErrorPolicy = Callable[[BridgeError], ErrorAction]


def fail_fast(error: BridgeError) -> ErrorAction:
    """Treat every unexpected error as fatal."""
    return ErrorAction.FATAL


def reconnect_on_session_errors(error: BridgeError) -> ErrorAction:
    """Drop the session on protocol or transport errors, keep serving.

    Startup errors stay fatal: without a listening socket there is nothing
    to reconnect to.
    """
    if isinstance(error, (ProtocolViolationError, TransportError)):
        return ErrorAction.RECONNECT
    return ErrorAction.FATAL
