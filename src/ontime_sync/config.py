"""Application configuration loader (TOML file + environment)."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from ontime_sync.engine import EngineConfig

logger = logging.getLogger(__name__)

# Standard location for the default config file
_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "default.toml"


@dataclass
class AppConfig:
    """Top-level application configuration."""

    engine: EngineConfig = field(default_factory=EngineConfig)

    # Web relay
    web_enabled: bool = True
    web_host: str = "127.0.0.1"
    web_port: int = 8000


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file and return the parsed dict."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _apply_section(target: object, data: dict[str, Any]) -> None:
    for key, value in data.items():
        if isinstance(value, dict):
            continue
        if not hasattr(target, key):
            logger.warning("Unknown config key %s.%s ignored", type(target).__name__, key)
            continue
        if isinstance(getattr(target, key), tuple) and isinstance(value, list):
            value = tuple(value)
        setattr(target, key, value)


def _apply_defaults_to_config(config: AppConfig, defaults: dict[str, Any]) -> None:
    """Apply values from a TOML dict onto an AppConfig.

    Only sets values that are present in the TOML; dataclass defaults
    remain for any keys not specified.
    """
    engine = config.engine

    # Server
    _apply_section(engine.server, defaults.get("server", {}))

    # Transport (reconnect policy is a nested table)
    transport_data = defaults.get("transport", {})
    _apply_section(engine.transport, transport_data)
    _apply_section(engine.transport.reconnect, transport_data.get("reconnect", {}))

    # Poller
    _apply_section(engine.poller, defaults.get("poller", {}))

    # Web
    web_data = defaults.get("web", {})
    if "enabled" in web_data:
        config.web_enabled = bool(web_data["enabled"])
    if "host" in web_data:
        config.web_host = web_data["host"]
    if "port" in web_data:
        config.web_port = int(web_data["port"])


def load_app_config(config_path: str | Path | None = None) -> AppConfig:
    """Build an AppConfig from a TOML file and environment variables.

    Loading order (later wins):
      1. Dataclass defaults
      2. config/default.toml, or *config_path* when given
      3. Environment variables

    CLI flags are applied on top by the caller.
    """
    config = AppConfig()

    # 1. TOML file. An explicit path must exist; the default one may not.
    if config_path is not None:
        _apply_defaults_to_config(config, _load_toml(Path(config_path)))
        logger.debug("Loaded config from %s", config_path)
    elif _DEFAULT_CONFIG_PATH.is_file():
        try:
            _apply_defaults_to_config(config, _load_toml(_DEFAULT_CONFIG_PATH))
            logger.debug("Loaded default config from %s", _DEFAULT_CONFIG_PATH)
        except Exception as exc:
            logger.warning("Failed to load default config %s: %s", _DEFAULT_CONFIG_PATH, exc)

    # 2. Environment variables override the file
    server = config.engine.server
    server.base_url = os.environ.get("ONTIME_URL", server.base_url)
    server.ws_url = os.environ.get("ONTIME_WS_URL", server.ws_url)
    config.web_host = os.environ.get("ONTIME_SYNC_HOST", config.web_host)
    config.web_port = int(os.environ.get("ONTIME_SYNC_PORT", str(config.web_port)))

    return config
