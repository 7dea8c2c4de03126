"""
Configuration management for the Human.Farm marketplace service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import yaml
from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from collections.abc import Callable

REDACTION_MARKER = "***REDACTED***"
_SENSITIVE_KEYS = frozenset({"jwt_secret", "admin_secret"})

SettingsT = TypeVar("SettingsT", bound=BaseModel)


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class AuthConfig(BaseModel):
    """Session token and admin access configuration."""

    model_config = ConfigDict(extra="forbid")
    jwt_secret: str
    token_ttl_seconds: int
    verification_ttl_seconds: int
    admin_secret: str | None = None


class TokenConfig(BaseModel):
    """A payment token accepted by the escrow contract."""

    model_config = ConfigDict(extra="forbid")
    symbol: str
    address: str
    decimals: int


class EscrowConfig(BaseModel):
    """On-chain escrow contract configuration."""

    model_config = ConfigDict(extra="forbid")
    contract_address: str
    chain_id: int
    chain_name: str
    rpc_url: str
    explorer_url: str
    default_token: str
    tokens: list[TokenConfig]


class ListingConfig(BaseModel):
    """Pagination limits for list endpoints."""

    model_config = ConfigDict(extra="forbid")
    default_limit: int
    max_limit: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    request: RequestConfig
    auth: AuthConfig
    escrow: EscrowConfig
    listing: ListingConfig


def resolve_config_path(env_var_name: str, default_filename: str) -> Path:
    """Return the path named by env_var_name, or default_filename in the working directory."""
    configured = os.environ.get(env_var_name)
    if configured:
        return Path(configured)
    return Path.cwd() / default_filename


def create_settings_loader(
    settings_cls: type[SettingsT],
    config_path_resolver: Callable[[], Path],
) -> tuple[Callable[[], SettingsT], Callable[[], None]]:
    """Build a cached settings getter and its cache-clearing companion."""

    @lru_cache(maxsize=1)
    def _load() -> SettingsT:
        config_path = config_path_resolver()
        if not config_path.exists():
            msg = f"Configuration file not found: {config_path}"
            raise FileNotFoundError(msg)
        raw = yaml.safe_load(config_path.read_text())
        if not isinstance(raw, dict):
            msg = f"Invalid config file: {config_path}"
            raise ValueError(msg)
        return settings_cls(**raw)

    def _clear() -> None:
        _load.cache_clear()

    return _load, _clear


def get_config_path() -> Path:
    """Determine configuration file path."""
    return resolve_config_path(
        env_var_name="CONFIG_PATH",
        default_filename="config.yaml",
    )


get_settings, clear_settings_cache = create_settings_loader(Settings, get_config_path)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTION_MARKER if key in _SENSITIVE_KEYS and item is not None else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    redacted: dict[str, Any] = _redact(get_settings().model_dump())
    return redacted
