"""Configuration loading for the Fadecandy client."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for older interpreters
    import tomli as tomllib  # type: ignore


CONFIG_ENV_PREFIX = "FADECANDY_"
CONFIG_VERSION = 1
MIN_SUPPORTED_CONFIG_VERSION = 1

DEFAULT_SERVER_URL = "ws://127.0.0.1:7890"
DEFAULT_TIMEOUT = 4.0
DEFAULT_LISTEN: Tuple[str, int] = ("127.0.0.1", 7890)
DEFAULT_GAMMA = 2.5
DEFAULT_WHITEPOINT: Tuple[float, float, float] = (1.0, 1.0, 1.0)

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    server_url: str = DEFAULT_SERVER_URL
    request_timeout: float = DEFAULT_TIMEOUT
    listen_host: str = DEFAULT_LISTEN[0]
    listen_port: int = DEFAULT_LISTEN[1]
    verbose: bool = True
    gamma: float = DEFAULT_GAMMA
    whitepoint: Tuple[float, float, float] = DEFAULT_WHITEPOINT
    identify_interval: float = 0.5
    log_format: str = "plain"
    log_level: str = "INFO"
    connection_log_level: Optional[str] = None
    mapping_log_level: Optional[str] = None
    config_version: int = CONFIG_VERSION

    def __post_init__(self) -> None:
        _validate_config(self)

    @property
    def listen(self) -> Tuple[str, int]:
        return (self.listen_host, self.listen_port)

    def logging_dict(self) -> Dict[str, Any]:
        """Return a mapping suitable for structured logging."""

        return {
            "config_version": self.config_version,
            "server_url": self.server_url,
            "request_timeout": self.request_timeout,
            "listen": list(self.listen),
            "verbose": self.verbose,
            "gamma": self.gamma,
            "whitepoint": list(self.whitepoint),
            "identify_interval": self.identify_interval,
            "log_format": self.log_format,
            "log_level": self.log_level,
            "connection_log_level": self.connection_log_level,
            "mapping_log_level": self.mapping_log_level,
        }

    @classmethod
    def from_sources(
        cls,
        config_path: Optional[Path] = None,
        cli_overrides: Optional[Mapping[str, Any]] = None,
    ) -> "Config":
        """Load configuration from defaults, file, env, and CLI (in that order)."""

        file_config = _load_file_config(
            config_path
            or _coerce_optional_path(os.environ.get(f"{CONFIG_ENV_PREFIX}CONFIG"))
        )
        env_config = _load_env_config(CONFIG_ENV_PREFIX)

        config = cls()
        config = _apply_mapping(config, file_config)
        config = _apply_mapping(config, env_config)
        config = _apply_mapping(config, cli_overrides or {})
        return config


def _validate_config(config: Config) -> None:
    _validate_version(config.config_version)
    if not config.server_url.startswith(("ws://", "wss://")):
        raise ValueError(f"server_url must be a ws:// or wss:// URL; got {config.server_url}.")
    _validate_range("request_timeout", config.request_timeout, 0.01, 600.0)
    _validate_range("listen_port", config.listen_port, 1, 65535)
    _validate_range("identify_interval", config.identify_interval, 0.0, 60.0)
    if len(config.whitepoint) != 3:
        raise ValueError(f"whitepoint must have three components; got {config.whitepoint}.")
    if config.log_format not in {"plain", "json"}:
        raise ValueError(f"log_format must be 'plain' or 'json'; got {config.log_format}.")
    for field_name, value in (
        ("log_level", config.log_level),
        ("connection_log_level", config.connection_log_level),
        ("mapping_log_level", config.mapping_log_level),
    ):
        _validate_log_level_value(value, field_name)


def _validate_version(version: int) -> None:
    if version < MIN_SUPPORTED_CONFIG_VERSION:
        raise ValueError(
            f"Config version {version} is too old; minimum supported is {MIN_SUPPORTED_CONFIG_VERSION}."
        )
    if version > CONFIG_VERSION:
        raise ValueError(
            f"Config version {version} is newer than supported ({CONFIG_VERSION}); please upgrade the client."
        )


def _validate_range(name: str, value: float, minimum: float, maximum: float) -> None:
    if value < minimum or value > maximum:
        raise ValueError(f"{name} must be between {minimum} and {maximum}; got {value}.")


def _validate_log_level_value(value: Optional[str], name: str) -> None:
    if value is None:
        return
    if value.upper() not in _LOG_LEVELS:
        raise ValueError(f"{name} must be one of {sorted(_LOG_LEVELS)}; got {value}.")


def _load_file_config(path: Optional[Path]) -> Dict[str, Any]:
    if path is None:
        return {}
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("rb") as f:
        parsed = tomllib.load(f)
    if not isinstance(parsed, Mapping):
        raise ValueError("Configuration file must contain a TOML table.")
    return {k.replace("-", "_"): v for k, v in parsed.items()}


def _load_env_config(prefix: str) -> Dict[str, Any]:
    mapping: Dict[str, Any] = {}
    for field in Config.__dataclass_fields__:
        env_key = f"{prefix}{field}".upper()
        if env_key in os.environ:
            mapping[field] = os.environ[env_key]
    return mapping


def _apply_mapping(config: Config, overrides: Mapping[str, Any]) -> Config:
    data: MutableMapping[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        if key not in Config.__dataclass_fields__:
            raise ValueError(f"Unknown configuration key: {key}")
        if key in {"listen_port", "config_version"}:
            data[key] = int(value)
        elif key in {"request_timeout", "gamma", "identify_interval"}:
            data[key] = float(value)
        elif key == "verbose":
            data[key] = _coerce_bool(value)
        elif key == "whitepoint":
            data[key] = _coerce_whitepoint(value)
        elif key == "log_format":
            data[key] = str(value).lower()
        elif key in {"log_level", "connection_log_level", "mapping_log_level"}:
            data[key] = str(value).upper()
        else:
            data[key] = str(value)
    return replace(config, **data)


def _coerce_optional_path(value: Optional[str]) -> Optional[Path]:
    if not value:
        return None
    return Path(value).expanduser()


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce_whitepoint(value: Any) -> Tuple[float, float, float]:
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                value = json.loads(text)
            except json.JSONDecodeError as exc:
                raise ValueError(f"whitepoint is not valid JSON: {value}") from exc
        else:
            value = [part for part in text.split(",") if part.strip()]
    components = tuple(float(part) for part in value)
    if len(components) != 3:
        raise ValueError(f"whitepoint must have three components; got {value}.")
    return components  # type: ignore[return-value]


def load_config(
    config_path: Optional[Path] = None,
    cli_overrides: Optional[Mapping[str, Any]] = None,
) -> Config:
    """Public helper used by the entrypoint; errors are reported by the caller."""

    return Config.from_sources(config_path, cli_overrides)
