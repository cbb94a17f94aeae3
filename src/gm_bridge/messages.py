"""Commands and events exchanged between the handle and the worker.

Commands flow handle -> worker, events flow worker -> handle. Each travels
through its own FIFO queue; neither side ever shares mutable state.
"""

from __future__ import annotations

from dataclasses import dataclass

PeerAddress = tuple[str, int]


# ==============================================================================
# Commands (handle -> worker)
# ==============================================================================


@dataclass(frozen=True)
class SendMessage:
    """Write one framed message to the connected peer."""

    text: str


@dataclass(frozen=True)
class Terminate:
    """Close the transport and stop the worker."""


Command = SendMessage | Terminate


# ==============================================================================
# Events (worker -> handle)
# ==============================================================================


@dataclass(frozen=True)
class MessageReceived:
    """A non-heartbeat message arrived from the peer."""

    text: str


@dataclass(frozen=True)
class PeerConnected:
    """A peer was accepted; the worker is now in the connected state."""

    peer: PeerAddress | None = None


@dataclass(frozen=True)
class PeerDisconnected:
    """The peer went away; the worker is listening again."""

    peer: PeerAddress | None = None


Event = MessageReceived | PeerConnected | PeerDisconnected
