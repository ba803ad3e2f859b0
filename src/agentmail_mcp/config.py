"""
Configuration loaded from the environment (and an optional .env file).
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

DEFAULT_PORT = 8080
DEFAULT_BASE_URL = "https://api.agentmail.to/v0"


class ConfigError(ValueError):
    """Raised when the environment does not describe a usable server."""


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class TransportSettings:
    """Limits of the HTTP transport. Durations are in seconds."""
    max_sessions: int = 1000
    session_timeout: float = 30 * 60
    cleanup_interval: float = 5 * 60
    rate_limit_window: float = 60
    rate_limit_max_requests: int = 100
    json_response: bool = False

    @classmethod
    def from_env(cls) -> "TransportSettings":
        """Build settings, letting MCP_* variables override the defaults."""
        defaults = cls()
        return cls(
            max_sessions=_env_int("MCP_MAX_SESSIONS", defaults.max_sessions),
            session_timeout=_env_int("MCP_SESSION_TIMEOUT", int(defaults.session_timeout)),
            cleanup_interval=_env_int("MCP_CLEANUP_INTERVAL", int(defaults.cleanup_interval)),
            rate_limit_window=_env_int("MCP_RATE_LIMIT_WINDOW", int(defaults.rate_limit_window)),
            rate_limit_max_requests=_env_int("MCP_RATE_LIMIT_MAX", defaults.rate_limit_max_requests),
            json_response=_env_bool("MCP_JSON_RESPONSE", defaults.json_response),
        )


@dataclass
class Config:
    """Server configuration."""
    api_key: str
    port: int = DEFAULT_PORT
    is_production: bool = False
    base_url: str = DEFAULT_BASE_URL
    transport: TransportSettings = field(default_factory=TransportSettings)

    @property
    def bind_host(self) -> str:
        """Listen on all interfaces only in production."""
        return "0.0.0.0" if self.is_production else "localhost"


def load_config(port: Optional[int] = None) -> Config:
    """
    Load configuration from the environment.

    Args:
        port: Port given on the command line; overrides PORT when set

    Returns:
        Populated Config

    Raises:
        ConfigError: AGENTMAIL_API_KEY is missing or a numeric variable is malformed
    """
    load_dotenv()

    api_key = os.getenv("AGENTMAIL_API_KEY")
    if not api_key or api_key.strip() == "":
        raise ConfigError("AGENTMAIL_API_KEY environment variable is required")

    if port is None:
        port = _env_int("PORT", DEFAULT_PORT)

    environment = os.getenv("ENVIRONMENT") or os.getenv("NODE_ENV") or ""

    return Config(
        api_key=api_key.strip(),
        port=port,
        is_production=environment.strip().lower() == "production",
        base_url=os.getenv("AGENTMAIL_BASE_URL", DEFAULT_BASE_URL),
        transport=TransportSettings.from_env(),
    )
