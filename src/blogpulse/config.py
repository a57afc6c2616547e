"""Configuration module with layered override: CLI > env > config file > defaults."""

from __future__ import annotations

import os
import sys
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from platformdirs import user_config_path


@dataclass
class Config:
    """Application configuration."""

    # Server
    host: str = "127.0.0.1"
    port: int = 5000
    cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173"

    # Feeds
    seed_path: str = "blogs.toml"
    fetch_timeout: float = 15.0
    user_agent: str = "blogpulse/0.1.0 (+https://example.local)"

    # Runtime
    debug: bool = False

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


def default_config_path() -> Path:
    """Get the default user config file path (~/.blogpulse/config.toml)."""
    return Path.home() / ".blogpulse" / "config.toml"


def platform_default_config_path() -> Path:
    """Get the platformdirs config file path (fallback)."""
    return user_config_path("blogpulse", ensure_exists=False) / "config.toml"


def _discover_default_config_path(*, emit_warnings: bool = False) -> Path | None:
    """Discover default config path with priority: home path > platformdirs."""
    home_path = default_config_path()
    platform_path = platform_default_config_path()

    home_exists = home_path.exists()
    platform_exists = platform_path.exists()

    if home_exists and platform_exists:
        if emit_warnings:
            print(
                "Warning: Multiple config files found. "
                f"Using {home_path} (preferred) over {platform_path}.",
                file=sys.stderr,
            )
        return home_path

    if home_exists:
        return home_path
    if platform_exists:
        return platform_path
    return None


def resolve_config_path(
    cli_config_path: str | None = None,
    *,
    emit_warnings: bool = False,
) -> Path | None:
    """Resolve active config file path: CLI > BLOGPULSE_CONFIG > defaults."""
    if cli_config_path:
        return Path(cli_config_path)
    if env_path := os.getenv("BLOGPULSE_CONFIG"):
        return Path(env_path)
    return _discover_default_config_path(emit_warnings=emit_warnings)


_SECTIONS = {
    "server": {
        "host": "host",
        "port": "port",
        "cors_origins": "cors_origins",
    },
    "feeds": {
        "seed": "seed_path",
        "timeout": "fetch_timeout",
        "user_agent": "user_agent",
    },
    "runtime": {
        "debug": "debug",
    },
}


def _normalize_toml_config(raw: dict[str, Any]) -> dict[str, Any]:
    """Normalize flat and sectioned TOML config into Config field keys."""
    normalized: dict[str, Any] = {}

    for key, value in raw.items():
        if not isinstance(value, dict):
            normalized[key] = value

    for section, mapping in _SECTIONS.items():
        values = raw.get(section)
        if not isinstance(values, dict):
            continue
        for src_key, dst_key in mapping.items():
            if src_key in values:
                normalized[dst_key] = values[src_key]

    # Lists are accepted for origins in the file
    if isinstance(normalized.get("cors_origins"), list):
        normalized["cors_origins"] = ",".join(normalized["cors_origins"])

    return normalized


def _load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from a TOML file."""
    if not path.exists():
        return {}
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    return _normalize_toml_config(raw)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with type coercion."""
    val = os.getenv(key)
    if val is None:
        return default
    if isinstance(default, bool):
        return val.lower() in ("1", "true", "yes")
    if isinstance(default, int):
        try:
            return int(val)
        except ValueError:
            return default
    if isinstance(default, float):
        try:
            return float(val)
        except ValueError:
            return default
    return val


ENV_MAPPING = {
    "BLOGPULSE_HOST": "host",
    "BLOGPULSE_PORT": "port",
    "BLOGPULSE_CORS_ORIGINS": "cors_origins",
    "BLOGPULSE_SEED_PATH": "seed_path",
    "BLOGPULSE_FETCH_TIMEOUT": "fetch_timeout",
    "BLOGPULSE_USER_AGENT": "user_agent",
    "BLOGPULSE_DEBUG": "debug",
    "DEBUG": "debug",
}


def load_config(
    cli_config_path: str | None = None,
    config_mode: str = "merge",
    cli_overrides: dict[str, Any] | None = None,
) -> Config:
    """
    Load configuration with layered override: CLI > env > config file > defaults.

    Args:
        cli_config_path: Explicit config file path from CLI
        config_mode: 'merge' (overlay on defaults) or 'override' (ignore env)
        cli_overrides: Additional CLI argument overrides

    Returns:
        Merged Config instance
    """
    config_path = resolve_config_path(
        cli_config_path=cli_config_path,
        emit_warnings=True,
    )

    cfg = Config()
    if config_path and config_path.exists():
        for key, val in _load_toml_config(config_path).items():
            if hasattr(cfg, key):
                setattr(cfg, key, val)

    # In override mode the file is authoritative over the environment
    if not (config_mode == "override" and config_path and config_path.exists()):
        for env_key, attr_name in ENV_MAPPING.items():
            if os.getenv(env_key) is not None:
                setattr(cfg, attr_name, _get_env(env_key, getattr(cfg, attr_name)))

    if cli_overrides:
        for key, val in cli_overrides.items():
            if val is not None and hasattr(cfg, key):
                setattr(cfg, key, val)

    return cfg


# Global config instance (lazy loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the global config instance, loading it if necessary."""
    global _config
    if _config is None:
        load_dotenv()
        _config = load_config()
    return _config


def set_config(cfg: Config | None) -> None:
    """Set the global config instance (useful for testing or CLI override)."""
    global _config
    _config = cfg
