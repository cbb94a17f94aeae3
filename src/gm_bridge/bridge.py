"""Foreground handle for the debug bridge.

The rest of the process holds a Bridge and never touches the socket, the
worker thread or the queues directly. Every method here is non-blocking
except start(), wait_for_first_connection() and shutdown().

Usage:
    bridge = Bridge(port=7777).start()
    bridge.wait_for_first_connection()
    bridge.send("step")
    for message in bridge.drain_incoming():
        ...
    bridge.shutdown()
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from collections.abc import Iterator
from types import TracebackType

from gm_bridge.config import BridgeConfig
from gm_bridge.errors import (
    BridgeNotRunningError,
    BridgeWorkerError,
    ErrorPolicy,
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
from gm_bridge.protocol import coerce_message
from gm_bridge.server import BridgeServer

logger = logging.getLogger(__name__)

# How often wait_for_first_connection() checks that the worker is alive
_WAIT_SLICE = 0.1


class Bridge:
    """Handle to a background bridge worker.

    The connection flag is a mirror of the worker's state, updated only when
    this handle observes PeerConnected / PeerDisconnected events. It can lag
    the worker by one drain.

    Only one thread should consume events (drain_incoming() and
    wait_for_first_connection()); send() is safe from any thread.

    Dropping a started Bridge without shutdown() leaves the worker listening
    until the interpreter exits (it is a daemon thread).
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        *,
        config: BridgeConfig | None = None,
        error_policy: ErrorPolicy | None = None,
    ) -> None:
        """Initialize the handle. Nothing is bound until start().

        Args:
            host: Address to listen on (overrides config.host)
            port: Port to listen on, 0 for any free port (overrides config.port)
            config: Bridge settings (default: BridgeConfig() from environment)
            error_policy: Worker error policy (default: from config)

        Raises:
            ValidationError: If host or port is not a valid setting
        """
        cfg = config if config is not None else BridgeConfig()
        overrides: dict[str, object] = {}
        if host is not None:
            overrides["host"] = host
        if port is not None:
            overrides["port"] = port
        if overrides:
            cfg = BridgeConfig.model_validate({**cfg.model_dump(), **overrides})
        self._config = cfg
        self._error_policy = error_policy

        self._commands: queue.Queue[Command] = queue.Queue()
        self._events: queue.Queue[Event] = queue.Queue()
        # Events read ahead by wait_for_first_connection()
        self._backlog: deque[Event] = deque()
        self._connected = False

        self._server: BridgeServer | None = None
        self._thread: threading.Thread | None = None
        self._stopped = False

    def __enter__(self) -> Bridge:
        return self.start()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown()

    @property
    def config(self) -> BridgeConfig:
        """Settings this bridge was created with."""
        return self._config

    @property
    def address(self) -> PeerAddress:
        """The bound (host, port).

        Raises:
            BridgeNotRunningError: If start() has not been called
        """
        if self._server is None:
            raise BridgeNotRunningError("Bridge has not been started")
        return self._server.address

    @property
    def is_connected(self) -> bool:
        """Last observed connection state."""
        return self._connected

    @property
    def is_running(self) -> bool:
        """Check if the worker thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def failure(self) -> BaseException | None:
        """The error that stopped the worker, or None."""
        if self._server is None:
            return None
        return self._server.failure

    def start(self) -> Bridge:
        """Bind the listening socket and start the worker thread.

        Binding happens on the calling thread so a bad address raises here
        rather than inside the worker.

        Returns:
            self, so Bridge(...).start() can be assigned directly

        Raises:
            BridgeStartupError: If the address cannot be bound
            BridgeNotRunningError: If the bridge was already shut down
        """
        if self._stopped:
            raise BridgeNotRunningError("Bridge has been shut down and cannot restart")
        if self._thread is not None:
            return self

        server = BridgeServer(
            self._config,
            self._commands,
            self._events,
            error_policy=self._error_policy,
        )
        host, port = server.bind()

        self._server = server
        self._thread = threading.Thread(
            target=server.run,
            name=f"gm-bridge-{port}",
            daemon=True,
        )
        self._thread.start()
        logger.info("Bridge started on %s:%d", host, port)
        return self

    def send(self, message: str | bytes) -> None:
        """Queue a message for the peer. Never blocks.

        Messages queued while no peer is connected are discarded when the
        next peer connects, not delivered to it.

        Args:
            message: Text, or UTF-8 bytes, without NUL characters

        Raises:
            FramingError: If the message cannot be framed
            BridgeNotRunningError: If the bridge is not started or shut down
            BridgeWorkerError: If the worker has died
        """
        self._check_running()
        self._commands.put(SendMessage(coerce_message(message)))

    def drain_incoming(self) -> Iterator[str]:
        """Yield every message received so far, without waiting for more.

        Connection events are consumed here to update is_connected and are
        not yielded. An empty iteration means nothing new arrived. Messages
        read before shutdown() remain drainable afterwards.

        Yields:
            Message texts in arrival order
        """
        for event in self._drain_events():
            if isinstance(event, MessageReceived):
                yield event.text

    def wait_for_first_connection(self, timeout: float | None = None) -> bool:
        """Block until a peer connects.

        Intended for startup synchronization. Events other than the
        connection that arrive while waiting stay queued for drain_incoming().

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            True once connected, False if the timeout expired

        Raises:
            BridgeNotRunningError: If the bridge was never started
            BridgeWorkerError: If the worker died while waiting
        """
        if self._thread is None:
            raise BridgeNotRunningError("Bridge has not been started")
        if self._connected:
            return True

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            wait = _WAIT_SLICE
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                wait = min(wait, remaining)

            try:
                event = self._events.get(timeout=wait)
            except queue.Empty:
                if not self._thread.is_alive():
                    self._raise_worker_failure()
                    return False
                continue

            if isinstance(event, PeerConnected):
                self._observe(event)
                return True
            self._backlog.append(event)

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop the worker and wait for its thread to exit.

        Commands queued before this call are sent first. Calling shutdown()
        again is a no-op.

        Args:
            timeout: Seconds to wait for the worker, or None to wait forever

        Raises:
            BridgeNotRunningError: If the bridge was never started
            BridgeWorkerError: If the worker had died from a fatal error
        """
        if self._thread is None:
            raise BridgeNotRunningError("Bridge has not been started")
        if self._stopped:
            logger.debug("Bridge already shut down")
            return

        self._stopped = True
        self._commands.put(Terminate())
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Bridge worker did not exit within %ss", timeout)
        else:
            logger.info("Bridge shut down")

        self._raise_worker_failure()

    def _drain_events(self) -> Iterator[Event]:
        while self._backlog:
            event = self._backlog.popleft()
            self._observe(event)
            yield event

        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return
            self._observe(event)
            yield event

    def _observe(self, event: Event) -> None:
        if isinstance(event, PeerConnected):
            self._connected = True
        elif isinstance(event, PeerDisconnected):
            self._connected = False

    def _check_running(self) -> None:
        if self._thread is None:
            raise BridgeNotRunningError("Bridge has not been started")
        if self._stopped:
            raise BridgeNotRunningError("Bridge has been shut down")
        self._raise_worker_failure()

    def _raise_worker_failure(self) -> None:
        failure = self.failure
        if failure is not None:
            raise BridgeWorkerError(f"Bridge worker failed: {failure}") from failure
