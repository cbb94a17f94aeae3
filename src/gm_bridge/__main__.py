"""Interactive console for the debug bridge.

Listens for the game, forwards each stdin line to it as a message and
prints every message it sends back on stdout. Connection changes and logs
go to stderr so stdout carries only peer messages.

Usage:
    python -m gm_bridge

Environment Variables:
    GM_BRIDGE_HOST: Address to listen on (default: 127.0.0.1)
    GM_BRIDGE_PORT: Port to listen on (default: 7777)
    GM_BRIDGE_LOG_LEVEL: Logging level (default: INFO)
    See gm_bridge.config for the full list.
"""

from __future__ import annotations

import logging
import queue
import sys
import threading
from typing import TextIO

from pydantic import ValidationError

from gm_bridge import __version__
from gm_bridge.bridge import Bridge
from gm_bridge.config import BridgeConfig
from gm_bridge.errors import BridgeError

logger = logging.getLogger(__name__)

# Seconds the console waits for a stdin line before polling the bridge
CONSOLE_TICK = 0.05


class StdinLineReader:
    """Reads lines from a text stream on a daemon thread.

    Lines land in a queue so the console loop never blocks on input.
    None is queued once the stream hits EOF.
    """

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self.lines: queue.Queue[str | None] = queue.Queue()
        self._thread: threading.Thread | None = None

    def _reader_thread(self) -> None:
        try:
            for line in self._stream:
                self.lines.put(line.rstrip("\r\n"))
            logger.info("stdin EOF received")
        except (OSError, ValueError) as e:
            logger.error("stdin reader stopped: %s", e, exc_info=True)
        finally:
            self.lines.put(None)

    def start(self) -> None:
        """Start the background reader thread."""
        self._thread = threading.Thread(
            target=self._reader_thread, name="gm-bridge-stdin", daemon=True
        )
        self._thread.start()


def run_console(
    bridge: Bridge,
    lines: queue.Queue[str | None],
    out: TextIO,
    err: TextIO,
    tick: float = CONSOLE_TICK,
) -> int:
    """Pump messages between a line queue and a started bridge.

    Returns when the line queue yields None (EOF). Empty lines are skipped.

    Args:
        bridge: A started Bridge
        lines: Queue of input lines, None marking the end of input
        out: Stream that receives peer messages, one per line
        err: Stream that receives connection notices
        tick: Seconds to wait for input between bridge polls

    Returns:
        Exit code (0 for success, 1 if the bridge failed)
    """
    was_connected = bridge.is_connected

    while True:
        for message in bridge.drain_incoming():
            print(message, file=out, flush=True)

        if bridge.is_connected != was_connected:
            was_connected = bridge.is_connected
            notice = "connected" if was_connected else "disconnected"
            print(f"[bridge] peer {notice}", file=err, flush=True)

        if bridge.failure is not None:
            print(f"Error: {bridge.failure}", file=err)
            return 1

        try:
            line = lines.get(timeout=tick)
        except queue.Empty:
            continue

        if line is None:
            return 0
        if not line:
            continue

        try:
            bridge.send(line)
        except BridgeError as e:
            print(f"Error: {e}", file=err)
            if bridge.failure is not None:
                return 1


def main() -> int:
    """Main entry point."""
    try:
        config = BridgeConfig()
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    config.setup_logging()

    print(f"GM Bridge v{__version__}", file=sys.stderr)
    print("Configuration:", file=sys.stderr)
    for key, value in config.to_dict().items():
        print(f"  {key}: {value}", file=sys.stderr)

    bridge = Bridge(config=config)
    try:
        bridge.start()
    except BridgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    host, port = bridge.address
    print(f"Waiting for peer on {host}:{port}", file=sys.stderr)

    reader = StdinLineReader(sys.stdin)
    reader.start()

    exit_code = 0
    try:
        exit_code = run_console(bridge, reader.lines, sys.stdout, sys.stderr)
    except KeyboardInterrupt:
        pass
    finally:
        try:
            bridge.shutdown()
        except BridgeError as e:
            logger.error("Bridge shutdown reported: %s", e)
            exit_code = 1

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
