"""Protocol constants and message framing for the bridge.

Handles:
- Protocol constants (host, port, reserved tokens, buffer sizes)
- NUL-terminated UTF-8 message framing
- Outbound message validation
"""

from __future__ import annotations

from collections.abc import Iterator

from gm_bridge.errors import FramingError, ProtocolViolationError

# =============================================================================
# Protocol Constants
# =============================================================================

# Default listen address for the game connection
DEFAULT_HOST: str = "127.0.0.1"
DEFAULT_PORT: int = 7777

# Wire delimiter terminating every message
FRAME_DELIMITER: bytes = b"\x00"

# Reserved tokens
HEARTBEAT_TOKEN: str = "ping"
FAREWELL_TOKEN: str = "kill"

# Buffer sizes
READ_CHUNK_SIZE: int = 1024
MAX_FRAME_SIZE: int = 1 * 1024 * 1024  # 1 MB max single frame

# Worker timing
DEFAULT_ACCEPT_TIMEOUT: float = 0.1  # seconds
DEFAULT_POLL_INTERVAL: float = 0.005  # seconds


# =============================================================================
# Outbound Framing
# =============================================================================


def coerce_message(message: str | bytes) -> str:
    """Turn an outbound message into text that can be framed.

    Bytes are decoded as UTF-8, which is how data arrives from the
    foreign-function side of the host.

    Args:
        message: The message as text or UTF-8 bytes

    Returns:
        The message text

    Raises:
        FramingError: If the bytes are not UTF-8, the value is neither str
            nor bytes, or the text contains the NUL delimiter
    """
    if isinstance(message, (bytes, bytearray, memoryview)):
        try:
            text = bytes(message).decode("utf-8")
        except UnicodeDecodeError as e:
            raise FramingError(f"Message is not valid UTF-8: {e}") from e
    elif isinstance(message, str):
        text = message
    else:
        raise FramingError(
            f"Message must be str or bytes, got {type(message).__name__}"
        )

    if "\x00" in text:
        raise FramingError("Message contains a NUL byte, which would split the frame")
    return text


def encode_frame(text: str) -> bytes:
    """Encode a message for the wire.

    Args:
        text: The message text (must not contain NUL)

    Returns:
        The UTF-8 bytes followed by a single NUL delimiter
    """
    return text.encode("utf-8") + FRAME_DELIMITER


def is_heartbeat(text: str, heartbeat: str = HEARTBEAT_TOKEN) -> bool:
    """Check whether a decoded frame is the liveness probe."""
    return text == heartbeat


# =============================================================================
# Inbound Framing
# =============================================================================


class FrameDecoder:
    """Reassembles NUL-terminated frames from raw socket reads.

    Bytes are buffered (not text) so multi-byte UTF-8 sequences split
    across reads decode correctly. A single read may carry several frames,
    and a frame may span several reads. Empty frames produced by trailing
    NUL padding are skipped.

    Attributes:
        max_frame_size: Largest frame accepted, in bytes, excluding the NUL
    """

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE) -> None:
        self.max_frame_size = max_frame_size
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet terminated by a NUL."""
        return len(self._buffer)

    def feed(self, data: bytes) -> Iterator[str]:
        """Add bytes from the socket and yield every completed frame.

        Frames are yielded as they are cut from the buffer, so frames that
        precede a bad one in the same read are still delivered.

        Args:
            data: Raw bytes read from the peer

        Yields:
            Decoded frames in arrival order

        Raises:
            ProtocolViolationError: If a frame is not valid UTF-8 or exceeds
                max_frame_size
        """
        self._buffer.extend(data)

        while True:
            try:
                end = self._buffer.index(FRAME_DELIMITER)
            except ValueError:
                break

            frame_bytes = bytes(self._buffer[:end])
            del self._buffer[: end + 1]

            if not frame_bytes:
                # NUL padding
                continue

            self._check_size(len(frame_bytes))
            yield self._decode(frame_bytes)

        # Unterminated tail must not grow without bound either
        self._check_size(len(self._buffer))

    def flush(self) -> str | None:
        """Drop and return any unterminated tail.

        Called when the session ends so the leftover can be logged rather
        than glued onto the next peer's first frame.

        Returns:
            The tail decoded leniently, or None if nothing was buffered
        """
        if not self._buffer:
            return None
        tail = bytes(self._buffer).decode("utf-8", errors="replace")
        self._buffer.clear()
        return tail

    def _check_size(self, size: int) -> None:
        if size > self.max_frame_size:
            self._buffer.clear()
            raise ProtocolViolationError(
                f"Frame length exceeded {self.max_frame_size} bytes"
            )

    @staticmethod
    def _decode(frame_bytes: bytes) -> str:
        try:
            return frame_bytes.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolViolationError(f"Frame is not valid UTF-8: {e}") from e
