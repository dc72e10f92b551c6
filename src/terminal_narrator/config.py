"""
Terminal Narrator Configuration
===============================

This module handles configuration loading for the terminal narrator.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    NARRATOR_SERVER_URL          -> server.base_url
    NARRATOR_STREAM_MODE         -> stream.mode
    NARRATOR_MAX_RECONNECT       -> stream.max_reconnect_attempts
    NARRATOR_PING_INTERVAL       -> stream.ping_interval_seconds
    NARRATOR_USERNAME            -> auth.username
    NARRATOR_PASSWORD            -> auth.password
    NARRATOR_SESSION_ID          -> session.initial_id
    NARRATOR_CHAR_THRESHOLD      -> accumulator.char_threshold
    NARRATOR_TIME_THRESHOLD      -> accumulator.time_threshold_seconds
    NARRATOR_API_PORT            -> api.port
    NARRATOR_LOG_LEVEL           -> logging.level
    PORT                         -> api.port (container platforms)

Example:
    from terminal_narrator.config import settings

    print(settings.server.base_url)
    print(settings.accumulator.char_threshold)
"""

import os
import logging
from pathlib import Path
from typing import Literal, Optional
from urllib.parse import urlsplit, urlunsplit

import yaml
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class AgentConfig(BaseModel):
    """Service identification configuration."""

    name: str = Field(default="terminal-narrator", description="Service name")
    version: str = Field(default="v0.1.0", description="Service version")


class ServerConfig(BaseModel):
    """Terminal server location."""

    base_url: str = Field(
        default="http://localhost:4020",
        description="HTTP base URL of the terminal server",
    )
    buffers_path: str = Field(
        default="/buffers",
        description="WebSocket path of the snapshot stream",
    )
    api_prefix: str = Field(default="/api", description="REST API prefix")

    @property
    def api_url(self) -> str:
        return self.base_url.rstrip("/") + self.api_prefix

    @property
    def websocket_url(self) -> str:
        """Stream endpoint derived from the HTTP base URL (http -> ws)."""
        parts = urlsplit(self.base_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        return urlunsplit((scheme, parts.netloc, self.buffers_path, "", ""))


class StreamConfig(BaseModel):
    """Snapshot stream and reconnection configuration."""

    mode: Literal["websocket", "poll"] = Field(
        default="websocket",
        description="Transport: push over WebSocket or HTTP polling",
    )
    ping_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Interval between health-check pings",
    )
    health_grace_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Time to wait for pong or data after a ping",
    )
    backoff_base_seconds: float = Field(
        default=0.5,
        gt=0,
        description="Delay before the first reconnect attempt",
    )
    backoff_max_seconds: float = Field(
        default=8.0,
        gt=0,
        description="Upper bound of the exponential delay",
    )
    backoff_jitter_ratio: float = Field(
        default=0.25,
        ge=0,
        le=1.0,
        description="Jitter as a fraction of the delay",
    )
    max_reconnect_attempts: int = Field(
        default=10,
        ge=0,
        description="Maximum reconnection attempts (0 = unlimited)",
    )
    open_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="WebSocket opening handshake timeout",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for HTTP requests (auth, polling)",
    )
    poll_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Delay between polls in poll mode",
    )
    max_queue_size: int = Field(
        default=50,
        ge=1,
        description="Maximum size of the snapshot event buffer",
    )


class AuthConfig(BaseModel):
    """Bearer token lifecycle configuration."""

    token_ttl_seconds: float = Field(
        default=24 * 60 * 60,
        gt=0,
        description="Token validity from issuance",
    )
    rejection_window_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Two auth rejections inside this window invalidate auth",
    )
    username: Optional[str] = Field(default=None, description="Login user")
    password: Optional[str] = Field(default=None, description="Login password")


class SessionConfig(BaseModel):
    """Terminal session selection."""

    initial_id: Optional[str] = Field(
        default=None,
        description="Session to subscribe to on startup",
    )
    auto_connect: bool = Field(
        default=True,
        description="Connect the stream when the service starts",
    )


class AccumulatorConfig(BaseModel):
    """Change accumulator thresholds."""

    char_threshold: int = Field(
        default=100,
        ge=1,
        description="Pending changed characters that force a flush",
    )
    time_threshold_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Age of the oldest pending change that forces a flush",
    )
    max_chunk_size: int = Field(
        default=500,
        ge=1,
        description="Maximum characters per flushed chunk",
    )
    tick_interval_seconds: float = Field(
        default=0.25,
        gt=0,
        description="How often the time path is evaluated without new snapshots",
    )


class DecodeConfig(BaseModel):
    """Decode failure handling."""

    escalation_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Continuous failure streak that signals an incompatible server",
    )
    summary_interval_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Minimum interval between decode failure summaries",
    )


class NarrationConfig(BaseModel):
    """Narration sink configuration."""

    history_size: int = Field(
        default=100,
        ge=1,
        description="Flush events kept for GET /narration",
    )


class ApiConfig(BaseModel):
    """HTTP API bind configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8010, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the terminal narrator.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    agent: AgentConfig = Field(default_factory=AgentConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    accumulator: AccumulatorConfig = Field(default_factory=AccumulatorConfig)
    decode: DecodeConfig = Field(default_factory=DecodeConfig)
    narration: NarrationConfig = Field(default_factory=NarrationConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        if env_path := os.environ.get("NARRATOR_CONFIG"):
            config_path = env_path
        else:
            search_paths = [
                Path("config.yaml"),
                Path("config.yml"),
                Path(__file__).parent.parent.parent / "config.yaml",
            ]
            for path in search_paths:
                if path.exists():
                    config_path = str(path)
                    break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Server
    if env_url := os.environ.get("NARRATOR_SERVER_URL"):
        config_data.setdefault("server", {})["base_url"] = env_url

    # Stream
    if env_mode := os.environ.get("NARRATOR_STREAM_MODE"):
        config_data.setdefault("stream", {})["mode"] = env_mode
    if env_attempts := os.environ.get("NARRATOR_MAX_RECONNECT"):
        config_data.setdefault("stream", {})["max_reconnect_attempts"] = int(env_attempts)
    if env_ping := os.environ.get("NARRATOR_PING_INTERVAL"):
        config_data.setdefault("stream", {})["ping_interval_seconds"] = float(env_ping)

    # Auth
    if env_user := os.environ.get("NARRATOR_USERNAME"):
        config_data.setdefault("auth", {})["username"] = env_user
    if env_password := os.environ.get("NARRATOR_PASSWORD"):
        config_data.setdefault("auth", {})["password"] = env_password

    # Session
    if env_session := os.environ.get("NARRATOR_SESSION_ID"):
        config_data.setdefault("session", {})["initial_id"] = env_session

    # Accumulator
    if env_chars := os.environ.get("NARRATOR_CHAR_THRESHOLD"):
        config_data.setdefault("accumulator", {})["char_threshold"] = int(env_chars)
    if env_time := os.environ.get("NARRATOR_TIME_THRESHOLD"):
        config_data.setdefault("accumulator", {})["time_threshold_seconds"] = float(env_time)

    # API (container platforms use PORT)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("api", {})["port"] = int(env_port)
    elif env_port := os.environ.get("NARRATOR_API_PORT"):
        config_data.setdefault("api", {})["port"] = int(env_port)

    # Logging
    if env_log := os.environ.get("NARRATOR_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Loaded on import; logging is configured by the entry point
settings = load_config()
