"""
Runtime configuration.

Values are layered, later sources winning:
1. Defaults declared on NakesConfig
2. YAML file: $NAKES_CONFIG, else ./nakes.yaml when present
3. Environment variables (NAKES_LOCKFILE, NAKES_REGISTRY_URL, NAKES_FAN_OUT)
4. Explicit overrides (CLI flags)
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from nakes.core.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "NAKES_CONFIG"
DEFAULT_CONFIG_FILE = "nakes.yaml"

_ENV_OVERRIDES = {
    "NAKES_LOCKFILE": "lockfile",
    "NAKES_REGISTRY_URL": "registry_url",
    "NAKES_FAN_OUT": "fan_out",
}


class NakesConfig(BaseModel):
    """
    Settings shared by the CLI and the HTTP service.
    """

    lockfile: str = Field(
        default="nakes.lock",
        description="Path (or sqlite:/// / file: URI) of the lockfile.",
    )
    registry_url: str = Field(
        default="https://pypi.org/pypi",
        description="Registry base URL; metadata is read from <registry_url>/<name>/json.",
    )
    fan_out: int = Field(
        default=8,
        ge=1,
        description="Maximum number of sibling dependencies resolved concurrently.",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for a single registry request.",
    )
    retries: int = Field(
        default=2,
        ge=0,
        description="Extra attempts on registry transport failures (never on bad responses).",
    )


def _config_path() -> Optional[Path]:
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    default = Path.cwd() / DEFAULT_CONFIG_FILE
    if default.exists():
        return default
    return None


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return raw


def load_config(overrides: Optional[Dict[str, Any]] = None) -> NakesConfig:
    """
    Build the effective configuration.

    Args:
        overrides: Values taking precedence over every other source. Keys with a
            None value are ignored so unset CLI options fall through.

    Returns:
        The validated NakesConfig.
    """
    data: Dict[str, Any] = {}

    path = _config_path()
    if path is not None:
        logger.debug(f"Loading config from {path}")
        data.update(_read_config_file(path))

    for env_var, field_name in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            data[field_name] = value

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    try:
        return NakesConfig(**data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
