from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from auth.errors import ConfigError

from .constants import LOGGER


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def get_env_str(key: str, default: str | None = None) -> str | None:
    raw = os.getenv(key, "").strip()
    return raw or default


def get_env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return is_truthy(raw)


def get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer value.")


def get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number.")


def load_env(path: str | Path | None = None) -> bool:
    env_path = Path(path) if path is not None else Path.cwd() / ".env"
    if not env_path.exists():
        return False
    return load_dotenv(env_path, override=False)


def require_env(*keys: str) -> dict[str, str]:
    missing = [key for key in keys if not os.getenv(key, "").strip()]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")
    return {key: os.environ[key].strip() for key in keys}


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("SPOTKIT_DEBUG"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.DEBUG)
    return debug_enabled
