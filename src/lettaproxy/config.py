"""Proxy configuration.

The target API server is resolved once at startup, in this order:

1. LETTA_API_SERVER environment variable
2. --api-server flag (also saved to the config file for next time)
3. Saved config file (~/letta-api-server.json)
4. DEFAULT_API_SERVER
"""

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_API_SERVER = "http://localhost:8283/v1"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8284

ENV_VAR = "LETTA_API_SERVER"
CONFIG_FILE_NAME = "letta-api-server.json"


@dataclass(frozen=True)
class ProxyConfig:
    """Settings shared read-only by every request."""

    target_base: str  # scheme://host:port/prefix, never with a trailing slash
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    upstream_timeout: float | None = None  # None waits forever
    follow_upload_redirects: bool = True

    def __post_init__(self):
        object.__setattr__(self, "target_base", self.target_base.rstrip("/"))
        if not self.host:
            object.__setattr__(self, "host", DEFAULT_HOST)
        if not self.port:
            object.__setattr__(self, "port", DEFAULT_PORT)


def get_config_path() -> Path | None:
    """Where the --api-server value is remembered between runs."""
    try:
        return Path.home() / CONFIG_FILE_NAME
    except RuntimeError as e:
        logger.error(f"Error getting home directory: {e}")
        return None


def load_saved_api_server(config_path: Path | None) -> str | None:
    """Read the saved API server URL, or None if there isn't a usable one."""
    if config_path is None:
        return None

    try:
        data = config_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.error(f"Error reading config file: {e}")
        return None

    try:
        config = json.loads(data)
    except json.JSONDecodeError as e:
        logger.error(f"Error parsing config file: {e}")
        return None

    if not isinstance(config, dict):
        logger.error(f"Error parsing config file: expected an object, got {type(config).__name__}")
        return None

    return config.get("api_server") or None


def save_api_server(config_path: Path | None, api_server: str) -> None:
    """Remember the API server URL for future runs. Failures are only logged."""
    if config_path is None:
        return

    data = json.dumps({"api_server": api_server}, indent=4)
    try:
        config_path.write_text(data, encoding="utf-8")
    except OSError as e:
        logger.error(f"Error writing config file: {e}")


def resolve_target_url(
    api_server: str | None = None,
    environ: Mapping[str, str] | None = None,
    config_path: Path | None = None,
) -> str:
    """Pick the target API server URL from the available sources."""
    if environ is None:
        environ = os.environ

    env_url = environ.get(ENV_VAR)
    if env_url:
        return env_url.rstrip("/")

    if api_server:
        api_server = api_server.rstrip("/")
        save_api_server(config_path, api_server)
        return api_server

    saved = load_saved_api_server(config_path)
    if saved:
        return saved.rstrip("/")

    return DEFAULT_API_SERVER


def load_config(
    api_server: str | None = None,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    upstream_timeout: float | None = None,
    environ: Mapping[str, str] | None = None,
    config_path: Path | None = None,
) -> ProxyConfig:
    """Build the process-wide ProxyConfig."""
    if config_path is None:
        config_path = get_config_path()

    return ProxyConfig(
        target_base=resolve_target_url(api_server, environ=environ, config_path=config_path),
        host=host,
        port=port,
        upstream_timeout=upstream_timeout,
    )
