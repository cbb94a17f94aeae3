"""Configuration management for the GameMaker debug bridge.

This module provides centralized configuration with support for:
- Environment variables (primary)
- Sensible defaults for all settings
- Type validation via Pydantic
- Easy testing through config overrides

Environment Variables:
    GM_BRIDGE_HOST: Address to listen on (default: 127.0.0.1)
    GM_BRIDGE_PORT: Port to listen on, 0 for an ephemeral port (default: 7777)
    GM_BRIDGE_READ_SIZE: Bytes read from the socket per pass (default: 1024)
    GM_BRIDGE_MAX_FRAME_SIZE: Largest accepted inbound frame (default: 1 MiB)
    GM_BRIDGE_ACCEPT_TIMEOUT: Seconds per accept attempt (default: 0.1)
    GM_BRIDGE_POLL_INTERVAL: Seconds to wait for data per pass (default: 0.005)
    GM_BRIDGE_HEARTBEAT: Reserved liveness token (default: ping)
    GM_BRIDGE_FAREWELL: Token sent on shutdown, empty to disable (default: kill)
    GM_BRIDGE_RECONNECT_ON_ERROR: Drop the session instead of stopping on
        protocol/transport errors (default: false)
    GM_BRIDGE_LOG_LEVEL: Logging level (default: INFO)

Usage:
    from gm_bridge.config import BridgeConfig

    config = BridgeConfig()
    bridge = Bridge(config=config).start()

    # For testing, create a custom config
    test_config = BridgeConfig(port=0, farewell="")
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gm_bridge.errors import ErrorPolicy, fail_fast, reconnect_on_session_errors
from gm_bridge.protocol import (
    DEFAULT_ACCEPT_TIMEOUT,
    DEFAULT_HOST,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_PORT,
    FAREWELL_TOKEN,
    HEARTBEAT_TOKEN,
    MAX_FRAME_SIZE,
    READ_CHUNK_SIZE,
)


class BridgeConfig(BaseSettings):
    """Bridge configuration with environment variable support.

    All settings can be overridden via environment variables prefixed with
    GM_BRIDGE_. For example, GM_BRIDGE_PORT=8888 sets port to 8888.

    Attributes:
        host: Address the listening socket binds to
        port: Port the listening socket binds to (0 picks a free port)
        read_size: Maximum bytes read from the peer per loop pass
        max_frame_size: Largest inbound frame accepted, in bytes
        accept_timeout: Seconds each accept attempt waits before checking
            for a terminate command
        poll_interval: Seconds each connected pass waits for inbound data
        heartbeat: Token the peer sends to probe liveness; never surfaced
        farewell: Token sent to the peer on orderly termination
        reconnect_on_error: Treat protocol/transport errors as session loss
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    model_config = SettingsConfigDict(
        env_prefix="GM_BRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Network configuration
    host: str = Field(
        default=DEFAULT_HOST,
        description="Address the listening socket binds to",
    )
    port: int = Field(
        default=DEFAULT_PORT,
        ge=0,
        le=65535,
        description="Port the listening socket binds to (0 for ephemeral)",
    )

    # Framing configuration
    read_size: int = Field(
        default=READ_CHUNK_SIZE,
        ge=1,
        description="Maximum bytes read from the peer per loop pass",
    )
    max_frame_size: int = Field(
        default=MAX_FRAME_SIZE,
        ge=1,
        description="Largest inbound frame accepted, in bytes",
    )
    heartbeat: str = Field(
        default=HEARTBEAT_TOKEN,
        description="Reserved liveness token, never surfaced as a message",
    )
    farewell: str = Field(
        default=FAREWELL_TOKEN,
        description="Token sent to the peer on shutdown (empty disables it)",
    )

    # Worker timing
    accept_timeout: float = Field(
        default=DEFAULT_ACCEPT_TIMEOUT,
        gt=0,
        description="Seconds per accept attempt before checking for terminate",
    )
    poll_interval: float = Field(
        default=DEFAULT_POLL_INTERVAL,
        ge=0,
        description="Seconds each connected pass waits for inbound data",
    )

    # Error handling
    reconnect_on_error: bool = Field(
        default=False,
        description="Drop the session instead of stopping on protocol/transport errors",
    )

    # Logging configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Normalize log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    @model_validator(mode="after")
    def validate_tokens(self) -> BridgeConfig:
        """Reserved tokens must be sendable as a single frame."""
        if not self.heartbeat:
            raise ValueError("heartbeat must not be empty")
        for name in ("heartbeat", "farewell"):
            if "\x00" in getattr(self, name):
                raise ValueError(f"{name} must not contain a NUL byte")
        return self

    @property
    def address(self) -> tuple[str, int]:
        """The (host, port) pair to bind."""
        return (self.host, self.port)

    @property
    def error_policy(self) -> ErrorPolicy:
        """The worker error policy selected by reconnect_on_error."""
        if self.reconnect_on_error:
            return reconnect_on_session_errors
        return fail_fast

    def setup_logging(self) -> None:
        """Configure logging based on config settings."""
        # Log to stderr so stdout is reserved for peer messages
        logging.basicConfig(
            level=getattr(logging, self.log_level, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            stream=sys.stderr,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for logging/debugging.

        Returns:
            Dictionary of all config values
        """
        return {
            "host": self.host,
            "port": self.port,
            "read_size": self.read_size,
            "max_frame_size": self.max_frame_size,
            "accept_timeout": self.accept_timeout,
            "poll_interval": self.poll_interval,
            "heartbeat": self.heartbeat,
            "farewell": self.farewell,
            "reconnect_on_error": self.reconnect_on_error,
            "log_level": self.log_level,
        }

