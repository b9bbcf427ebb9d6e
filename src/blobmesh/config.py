"""Settings loading.

Settings live in ``~/.blobmesh/config.yaml`` (or the file named by
``BLOBMESH_CONFIG``). Environment variables override individual values so
CI and scripts need no file at all.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from .constants import (
    AUTH_SCHEME,
    BLOBMESH_DIR,
    COALESCE_TTL_SECONDS,
    CONFIG_FILE,
    CONNECT_TIMEOUT_SECONDS,
    REASON_HEADER,
    REQUEST_TIMEOUT_SECONDS,
    TOKEN_LIFETIME_SECONDS,
    TOKEN_SAFETY_MARGIN_SECONDS,
    TOKEN_SWEEP_INTERVAL_SECONDS,
)
from .endpoints import parse_endpoint_env
from .errors import ConfigError
from .retry import RetryOptions

logger = logging.getLogger(__name__)


class RetrySettings(BaseModel):
    """Retry behaviour for per-endpoint calls."""
    max_attempts: int = Field(3, ge=1)
    base_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(10.0, ge=0)
    backoff_factor: float = Field(2.0, ge=1)
    jitter: bool = True

    def to_options(self) -> RetryOptions:
        return RetryOptions(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            backoff_factor=self.backoff_factor,
            jitter=self.jitter,
        )


class Settings(BaseModel):
    """blobmesh configuration."""
    endpoints: List[str] = Field(default_factory=list)
    identity: Optional[str] = None
    identity_method: str = "default"
    signer_command: Optional[str] = None
    timeout: float = Field(REQUEST_TIMEOUT_SECONDS, gt=0)
    connect_timeout: float = Field(CONNECT_TIMEOUT_SECONDS, gt=0)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    token_lifetime: int = Field(TOKEN_LIFETIME_SECONDS, gt=0)
    token_safety_margin: float = Field(TOKEN_SAFETY_MARGIN_SECONDS, ge=0)
    token_sweep_interval: float = Field(TOKEN_SWEEP_INTERVAL_SECONDS, gt=0)
    coalesce_ttl: float = Field(COALESCE_TTL_SECONDS, gt=0)
    auth_scheme: str = AUTH_SCHEME
    reason_header: str = REASON_HEADER


def default_config_path() -> Path:
    """Path of the settings file, honouring ``BLOBMESH_CONFIG``."""
    override = os.environ.get("BLOBMESH_CONFIG")
    if override:
        return Path(override).expanduser()
    return Path.home() / BLOBMESH_DIR / CONFIG_FILE


def _apply_env(data: dict) -> dict:
    """Overlay environment variables on file values."""
    endpoints = os.environ.get("BLOBMESH_ENDPOINTS")
    if endpoints:
        data["endpoints"] = parse_endpoint_env(endpoints)

    for env_var, key in (
        ("BLOBMESH_IDENTITY", "identity"),
        ("BLOBMESH_IDENTITY_METHOD", "identity_method"),
        ("BLOBMESH_SIGNER", "signer_command"),
    ):
        value = os.environ.get(env_var)
        if value:
            data[key] = value

    timeout = os.environ.get("BLOBMESH_TIMEOUT")
    if timeout:
        try:
            data["timeout"] = float(timeout)
        except ValueError:
            raise ConfigError(f"BLOBMESH_TIMEOUT must be a number of seconds, got {timeout!r}")
    return data


def load_settings(path: Optional[Path] = None, apply_env: bool = True) -> Settings:
    """Load settings from YAML with environment overrides.

    A missing file yields defaults.

    Raises:
        ConfigError: If the file is not valid YAML or has invalid values
    """
    path = path or default_config_path()
    data: dict = {}
    if path.exists():
        try:
            loaded = yaml.safe_load(path.read_text())
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"{path} must contain a mapping, got {type(loaded).__name__}")
        data = loaded or {}
        logger.debug(f"Loaded settings from {path}")

    if apply_env:
        data = _apply_env(dict(data))

    try:
        return Settings.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid settings in {path}:\n{e}")


def save_settings(settings: Settings, path: Optional[Path] = None) -> Path:
    """Write settings to YAML, creating the directory if needed."""
    path = path or default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as f:
        yaml.safe_dump(settings.model_dump(exclude_none=True), f, sort_keys=False)
    return path
