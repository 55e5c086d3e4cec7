import os
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field, ValidationError

CONFIG_DIR = Path.home() / ".deptree"
CONFIG_FILE = CONFIG_DIR / "config"
ENV_PREFIX = "DEPTREE_"


class FailurePolicy(str, Enum):
    """what to do when a transitive dependency cannot be resolved."""
    ABORT = "abort"
    ANNOTATE = "annotate"


class Settings(BaseModel):
    registry_url: str = "https://registry.npmjs.org"
    concurrency: int = Field(default=16, ge=1)
    retries: int = Field(default=2, ge=0)
    backoff: float = Field(default=0.5, ge=0)
    request_timeout: float = Field(default=30.0, gt=0)
    resolve_timeout: Optional[float] = Field(default=None, gt=0)
    failure_policy: FailurePolicy = FailurePolicy.ABORT
    cache_enabled: bool = False
    cache_dir: Path = CONFIG_DIR / "cache"
    # None trusts published metadata forever
    cache_max_age: Optional[float] = Field(default=None, gt=0)


def read_config(config_file: Path = CONFIG_FILE) -> Dict[str, str]:
    """read KEY=VALUE pairs from the config file; a missing or unreadable file is empty."""
    config = {}
    if not config_file.exists():
        return config

    try:
        with open(config_file, "r") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                config[key.strip()] = value.strip()
    except (IOError, PermissionError, OSError):
        # if we can't read the file, treat as not configured
        return {}
    return config


def set_config_value(key: str, value: str, config_file: Path = CONFIG_FILE):
    """set a value in the config file, preserving other config values."""
    key = key.strip().lower()
    if key not in Settings.model_fields:
        raise ValueError(f"unknown setting '{key}'")

    config = read_config(config_file)
    config[key] = value
    # refuse to write something that would not load back
    _build_settings(config)

    config_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(config_file, "w") as f:
            for k, v in config.items():
                f.write(f"{k}={v}\n")
    except (IOError, PermissionError, OSError) as e:
        raise RuntimeError(f"failed to write config file: {e}") from e


def _build_settings(values: Dict[str, str]) -> Settings:
    cleaned = {}
    for key, value in values.items():
        key = key.lower()
        if key not in Settings.model_fields:
            continue
        if value.lower() in ("", "none") and key in ("resolve_timeout", "cache_max_age"):
            continue
        cleaned[key] = value
    try:
        return Settings(**cleaned)
    except ValidationError as e:
        raise ValueError(f"invalid configuration: {e}") from e


def load_settings(config_file: Path = CONFIG_FILE, environ: Optional[Dict[str, str]] = None, **overrides) -> Settings:
    """
    build settings from the config file, then DEPTREE_* environment variables,
    then explicit overrides (None overrides are ignored).
    """
    environ = os.environ if environ is None else environ
    values = read_config(config_file)
    for name, value in environ.items():
        if name.startswith(ENV_PREFIX):
            values[name[len(ENV_PREFIX):].lower()] = value

    settings = _build_settings(values)
    updates = {k: v for k, v in overrides.items() if v is not None}
    if updates:
        settings = Settings(**{**settings.model_dump(), **updates})
    return settings
