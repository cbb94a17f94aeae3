"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import socket
import struct
import time
from collections.abc import Callable, Generator

import pytest

from gm_bridge.bridge import Bridge
from gm_bridge.config import BridgeConfig

# Generous upper bound for anything that crosses the worker thread
TIMEOUT = 5.0


# ==============================================================================
# Helper Functions
# ==============================================================================


def wait_until(
    predicate: Callable[[], bool], timeout: float = TIMEOUT, interval: float = 0.01
) -> bool:
    """Poll predicate until it returns True or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def collect_messages(
    bridge: Bridge, count: int, timeout: float = TIMEOUT
) -> list[str]:
    """Drain the bridge until at least count messages arrived."""
    messages: list[str] = []

    def enough() -> bool:
        messages.extend(bridge.drain_incoming())
        return len(messages) >= count

    wait_until(enough, timeout)
    return messages


def ipv6_loopback_available() -> bool:
    """Check that ::1 can actually be bound here."""
    if not socket.has_ipv6:
        return False
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_STREAM) as sock:
            sock.bind(("::1", 0))
    except OSError:
        return False
    return True


def wait_for_connected(
    bridge: Bridge, expected: bool, timeout: float = TIMEOUT
) -> list[str]:
    """Drain the bridge until is_connected matches expected.

    Returns:
        Messages drained along the way
    """
    messages: list[str] = []

    def matches() -> bool:
        messages.extend(bridge.drain_incoming())
        return bridge.is_connected is expected

    assert wait_until(matches, timeout), f"is_connected never became {expected}"
    return messages


class Peer:
    """Blocking TCP client playing the part of the game."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self._buffer = bytearray()

    @classmethod
    def connect(cls, address: tuple[str, int], timeout: float = TIMEOUT) -> Peer:
        """Connect, retrying while the bridge is between listeners."""
        deadline = time.monotonic() + timeout
        while True:
            try:
                sock = socket.create_connection(address, timeout=timeout)
            except ConnectionRefusedError:
                if time.monotonic() >= deadline:
                    raise
                time.sleep(0.01)
                continue
            return cls(sock)

    def send(self, data: bytes) -> None:
        self.sock.sendall(data)

    def read_frames(self, count: int, timeout: float = TIMEOUT) -> list[bytes]:
        """Read until count NUL-terminated frames arrived."""
        self.sock.settimeout(timeout)
        frames: list[bytes] = []
        while len(frames) < count:
            while b"\x00" in self._buffer and len(frames) < count:
                end = self._buffer.index(b"\x00")
                frames.append(bytes(self._buffer[:end]))
                del self._buffer[: end + 1]
            if len(frames) >= count:
                break
            chunk = self.sock.recv(4096)
            if not chunk:
                raise ConnectionError(f"closed after {len(frames)} frame(s)")
            self._buffer.extend(chunk)
        return frames

    def read_until_closed(self, timeout: float = TIMEOUT) -> bytes:
        """Read everything until the bridge closes the connection."""
        self.sock.settimeout(timeout)
        data = bytearray(self._buffer)
        self._buffer.clear()
        while True:
            try:
                chunk = self.sock.recv(4096)
            except ConnectionResetError:
                break
            if not chunk:
                break
            data.extend(chunk)
        return bytes(data)

    def wait_closed(self, timeout: float = TIMEOUT) -> bool:
        """Check the bridge hung up on us (EOF or reset)."""
        self.sock.settimeout(timeout)
        try:
            while self.sock.recv(4096):
                pass
        except ConnectionResetError:
            return True
        except TimeoutError:
            return False
        return True

    def close(self) -> None:
        self.sock.close()

    def reset(self) -> None:
        """Abort the connection with a RST instead of a FIN."""
        self.sock.setsockopt(
            socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0)
        )
        self.sock.close()


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def bridge_config() -> BridgeConfig:
    """Config bound to a free loopback port with fast worker timing."""
    return BridgeConfig(
        host="127.0.0.1",
        port=0,
        accept_timeout=0.02,
        poll_interval=0.002,
    )


@pytest.fixture
def bridge(bridge_config: BridgeConfig) -> Generator[Bridge, None, None]:
    """A started bridge, shut down after the test if still running."""
    instance = Bridge(config=bridge_config).start()
    yield instance
    if instance.is_running:
        instance.shutdown(timeout=TIMEOUT)


@pytest.fixture
def peers() -> Generator[list[Peer], None, None]:
    """Tracks peers opened by a test so they are always closed."""
    opened: list[Peer] = []
    yield opened
    for peer in opened:
        peer.close()


@pytest.fixture
def connect(
    bridge: Bridge, peers: list[Peer]
) -> Callable[[], Peer]:
    """Factory connecting a new peer to the bridge fixture."""

    def factory() -> Peer:
        peer = Peer.connect(bridge.address)
        peers.append(peer)
        return peer

    return factory
