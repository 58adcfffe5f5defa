"""Configuration management for hlsproxy."""

import json
import logging
import os
from dataclasses import dataclass, asdict, fields, replace
from pathlib import Path
from typing import Any

from hlsproxy.errors import ConfigError

logger = logging.getLogger(__name__)

# env var -> Config field
ENV_VARS = {
    "HOST": "host",
    "PORT": "port",
    "PROXY_PASSWORD": "password",
    "PROXY_TIMEOUT": "timeout",
    "PROXY_PUBLIC_ORIGIN": "public_origin",
    "PROXY_CHUNK_SIZE": "chunk_size",
    "PROXY_MAX_PLAYLIST_BYTES": "max_playlist_bytes",
    "PROXY_VERIFY_TLS": "verify_tls",
    "LOG_LEVEL": "log_level",
}


def get_config_dir() -> Path:
    """Get config directory path."""
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home()))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / "hlsproxy"


@dataclass
class Config:
    """Proxy server configuration."""
    host: str = "0.0.0.0"
    port: int = 8080
    password: str = ""
    timeout: float = 20.0
    public_origin: str = ""
    chunk_size: int = 128 * 1024
    max_playlist_bytes: int = 10 * 1024 * 1024
    verify_tls: bool = True
    log_level: str = "INFO"

    def with_overrides(self, **overrides: Any) -> "Config":
        """Copy with non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _coerce(name: str, raw: Any) -> Any:
    """Convert a raw file/env value to the type of the Config field."""
    kind = {f.name: f.type for f in fields(Config)}[name]
    try:
        if kind in (bool, "bool"):
            if isinstance(raw, bool):
                return raw
            value = str(raw).strip().lower()
            if value in ("1", "true", "yes", "on"):
                return True
            if value in ("0", "false", "no", "off"):
                return False
            raise ValueError(raw)
        if kind in (int, "int"):
            return int(raw)
        if kind in (float, "float"):
            return float(raw)
        return str(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid value for {name}: {raw!r}")


def _load_file(config_file: Path) -> dict[str, Any]:
    if not config_file.exists():
        return {}
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Failed to load config %s: %s", config_file, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: expected a JSON object", config_file)
        return {}
    known = {f.name for f in fields(Config)}
    return {k: v for k, v in data.items() if k in known}


def load_config(config_file: Path | None = None, environ: dict[str, str] | None = None) -> Config:
    """Load configuration: defaults, then the JSON file, then the environment."""
    if config_file is None:
        config_file = get_config_dir() / "config.json"
    if environ is None:
        environ = dict(os.environ)

    values: dict[str, Any] = {}
    for name, raw in _load_file(config_file).items():
        values[name] = _coerce(name, raw)
    for env_name, name in ENV_VARS.items():
        if environ.get(env_name, "") != "":
            values[name] = _coerce(name, environ[env_name])

    config = Config(**values)
    if config.timeout <= 0:
        raise ConfigError(f"Invalid value for timeout: {config.timeout!r}")
    return config


def save_config(config: Config, config_file: Path | None = None) -> Path:
    """Save configuration to file."""
    if config_file is None:
        config_file = get_config_dir() / "config.json"
    config_file.parent.mkdir(parents=True, exist_ok=True)

    with open(config_file, "w", encoding="utf-8") as f:
        json.dump(asdict(config), f, indent=2)
    return config_file

