"""Bridge worker that owns the socket.

The worker runs on its own thread and is the only code that ever touches
the listening socket or the peer connection. It talks to the rest of the
process through two queues: commands in, events out.

Lifecycle:
    LISTENING -> accept a single peer (the listener is closed while connected)
    CONNECTED -> per pass: read what the peer sent, then drain queued commands
    TERMINATED -> send the farewell, close the transport, return

A dropped peer sends the worker back to LISTENING on the same address, so a
single disconnect never ends the bridge.
"""

from __future__ import annotations

import contextlib
import enum
import logging
import queue
import select
import socket
from collections.abc import Iterator

from gm_bridge.config import BridgeConfig
from gm_bridge.errors import (
    BridgeError,
    BridgeStartupError,
    ErrorAction,
    ErrorPolicy,
    ProtocolViolationError,
    TransportError,
)
from gm_bridge.messages import (
    Command,
    Event,
    MessageReceived,
    PeerAddress,
    PeerConnected,
    PeerDisconnected,
    SendMessage,
    Terminate,
)
from gm_bridge.protocol import FrameDecoder, encode_frame, is_heartbeat

logger = logging.getLogger(__name__)

# OS errors meaning the peer went away rather than something being broken
SESSION_LOST_ERRORS = (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)


class ServerState(enum.Enum):
    """Worker connection state."""

    LISTENING = "listening"
    CONNECTED = "connected"
    TERMINATED = "terminated"


class BridgeServer:
    """Single-connection TCP worker driven by a command queue.

    Call bind() from the creating thread so address problems surface
    immediately, then hand run() to a thread. After that only the worker
    thread may use this object, apart from reading state and failure.

    Attributes:
        failure: The exception that stopped the worker, if any
    """

    def __init__(
        self,
        config: BridgeConfig,
        commands: queue.Queue[Command],
        events: queue.Queue[Event],
        error_policy: ErrorPolicy | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            config: Bridge settings (address, buffer sizes, timing, tokens)
            commands: Queue the worker consumes commands from
            events: Queue the worker publishes events to
            error_policy: Decides whether an error ends the worker or only
                the session (default: from config.reconnect_on_error)
        """
        self._config = config
        self._commands = commands
        self._events = events
        self._error_policy = (
            error_policy if error_policy is not None else config.error_policy
        )

        self._state = ServerState.LISTENING
        self._address: PeerAddress = config.address
        self._listener: socket.socket | None = None
        self._conn: socket.socket | None = None
        self._peer: PeerAddress | None = None
        self._decoder = FrameDecoder(config.max_frame_size)
        self.failure: BaseException | None = None

    @property
    def state(self) -> ServerState:
        """Current connection state."""
        return self._state

    @property
    def address(self) -> PeerAddress:
        """The bound (host, port); meaningful after bind()."""
        return self._address

    def bind(self) -> PeerAddress:
        """Open the listening socket.

        The resolved address is remembered so every later session rebinds
        the same port, even when the configured port was 0.

        Returns:
            The bound (host, port)

        Raises:
            BridgeStartupError: If the address cannot be bound
        """
        self._listener = self._open_listener(self._address)
        self._address = self._listener.getsockname()[:2]
        return self._address

    def run(self) -> None:
        """Worker thread entry point. Returns when terminated or failed."""
        try:
            while self._state is not ServerState.TERMINATED:
                if self._state is ServerState.LISTENING:
                    self._listen()
                else:
                    self._pump()
        except BridgeError as e:
            self.failure = e
            logger.error("Bridge worker stopped: %s", e, exc_info=True)
        except Exception as e:
            self.failure = e
            logger.exception("Bridge worker failed with unexpected error: %s", e)
        finally:
            self._state = ServerState.TERMINATED
            self._close_transport()
            logger.info("Bridge worker exited")

    # ==========================================================================
    # Listening
    # ==========================================================================

    def _open_listener(self, address: PeerAddress) -> socket.socket:
        host, port = address
        try:
            family = socket.getaddrinfo(
                host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
            )[0][0]
            # create_server sets SO_REUSEADDR on POSIX so the port can be
            # rebound right after a session closes
            listener = socket.create_server((host, port), family=family)
        except OSError as e:
            raise BridgeStartupError(
                f"Could not listen on {host}:{port}: {e}"
            ) from e
        listener.settimeout(self._config.accept_timeout)
        return listener

    def _listen(self) -> None:
        """Wait for a peer while staying responsive to Terminate."""
        if self._listener is None:
            self._listener = self._open_listener(self._address)
        logger.info("Listening for peer on %s:%d", *self._address)

        while True:
            if self._discard_stale_commands():
                return
            try:
                conn, peer = self._listener.accept()
            except TimeoutError:
                continue
            except OSError as e:
                raise BridgeStartupError(f"Accept failed: {e}") from e
            break

        # One connection at a time: stop listening for the session
        self._close_listener()

        conn.setblocking(True)
        with contextlib.suppress(OSError):
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        self._conn = conn
        self._peer = peer[:2]
        self._state = ServerState.CONNECTED
        logger.info("Peer connected from %s:%d", *self._peer)

        # Anything queued before now was meant for an earlier session.
        # Flushed before announcing the peer so sends issued after the
        # handle sees PeerConnected always reach it.
        self._discard_stale_commands()
        self._events.put(PeerConnected(self._peer))

    def _discard_stale_commands(self) -> bool:
        """Drop queued messages, stopping at a Terminate.

        Returns:
            True if a Terminate was found (state is now TERMINATED)
        """
        dropped = 0
        terminated = False
        while True:
            try:
                command = self._commands.get_nowait()
            except queue.Empty:
                break
            if isinstance(command, Terminate):
                terminated = True
                break
            dropped += 1

        if dropped:
            logger.debug("Discarded %d stale message(s)", dropped)
        if terminated:
            logger.info("Terminate received")
            self._state = ServerState.TERMINATED
        return terminated

    # ==========================================================================
    # Connected
    # ==========================================================================

    def _pump(self) -> None:
        """One connected pass: inbound first, then outbound."""
        self._read_pass()
        if self._state is ServerState.CONNECTED:
            self._write_pass()

    def _read_pass(self) -> None:
        conn = self._conn
        if conn is None:
            return

        readable, _, _ = select.select([conn], [], [], self._config.poll_interval)
        if not readable:
            return

        try:
            data = conn.recv(self._config.read_size)
        except (BlockingIOError, InterruptedError):
            return
        except SESSION_LOST_ERRORS as e:
            logger.info("Connection lost: %s", e)
            self._disconnect()
            return
        except OSError as e:
            self._handle_error(self._transport_error("Read failed", e))
            return

        if not data:
            self._disconnect()
            return

        try:
            for text in self._frames(data):
                self._events.put(MessageReceived(text))
        except ProtocolViolationError as e:
            self._handle_error(e)

    def _frames(self, data: bytes) -> Iterator[str]:
        for text in self._decoder.feed(data):
            if is_heartbeat(text, self._config.heartbeat):
                logger.debug("Heartbeat from %s", self._peer)
                continue
            logger.debug("Received: %r", text)
            yield text

    def _write_pass(self) -> None:
        """Send every command queued right now, without waiting for more."""
        while self._state is ServerState.CONNECTED:
            try:
                command = self._commands.get_nowait()
            except queue.Empty:
                return

            if isinstance(command, Terminate):
                logger.info("Terminate received")
                self._state = ServerState.TERMINATED
                return

            if isinstance(command, SendMessage):
                self._send_frame(command.text)

    def _send_frame(self, text: str) -> None:
        conn = self._conn
        if conn is None:
            return
        try:
            conn.sendall(encode_frame(text))
        except SESSION_LOST_ERRORS as e:
            logger.info("Connection lost while sending: %s", e)
            self._disconnect()
            return
        except OSError as e:
            self._handle_error(self._transport_error("Write failed", e))
            return
        logger.debug("Sent: %r", text)

    # ==========================================================================
    # Session end and errors
    # ==========================================================================

    def _disconnect(self) -> None:
        """End the session and go back to listening."""
        peer = self._peer
        tail = self._decoder.flush()
        if tail is not None:
            logger.warning("Discarding unterminated data from peer: %r", tail[:200])

        self._close_connection()
        self._state = ServerState.LISTENING
        logger.info("Peer disconnected")
        self._events.put(PeerDisconnected(peer))

    def _handle_error(self, error: BridgeError) -> None:
        if self._error_policy(error) is ErrorAction.RECONNECT:
            logger.warning("Dropping session after error: %s", error)
            self._disconnect()
            return
        raise error

    @staticmethod
    def _transport_error(context: str, cause: OSError) -> TransportError:
        error = TransportError(f"{context}: {cause}")
        error.__cause__ = cause
        return error

    def _close_connection(self) -> None:
        conn, self._conn, self._peer = self._conn, None, None
        if conn is None:
            return
        with contextlib.suppress(OSError):
            conn.shutdown(socket.SHUT_RDWR)
        conn.close()

    def _close_listener(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.close()

    def _close_transport(self) -> None:
        """Orderly close on the way out: farewell, then sockets."""
        if self._conn is not None and self._config.farewell and self.failure is None:
            try:
                self._conn.sendall(encode_frame(self._config.farewell))
            except OSError as e:
                logger.warning("Could not send farewell to peer: %s", e)
        self._close_connection()
        self._close_listener()
