from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from auth.token import Token

from .constants import (
    DEFAULT_API_BASE_URL,
    DEFAULT_AUTH_BASE_URL,
    DEFAULT_CACHE_PATH,
    DEFAULT_PAGINATION_CHUNKS,
)
from .env import get_env_bool, get_env_float, get_env_int, get_env_str, load_env

TokenCallback = Callable[[Token], None]


def _join_url(base_url: str, path: str) -> str:
    if path.startswith(("http://", "https://")):
        return path
    return base_url.rstrip("/") + "/" + path.lstrip("/")


@dataclass(frozen=True)
class Config:
    api_base_url: str = DEFAULT_API_BASE_URL
    auth_base_url: str = DEFAULT_AUTH_BASE_URL
    token_cache_path: Path = Path(DEFAULT_CACHE_PATH)
    # Persist every new token to ``token_cache_path``.
    token_cached: bool = False
    # Refresh expired tokens transparently before requests.
    token_refreshing: bool = True
    token_callback: TokenCallback | None = None
    pagination_chunks: int = DEFAULT_PAGINATION_CHUNKS
    max_retries: int = 2
    timeout: float = 30.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "token_cache_path", Path(self.token_cache_path))

    def api_url(self, path: str) -> str:
        return _join_url(self.api_base_url, path)

    def auth_url(self, path: str) -> str:
        return _join_url(self.auth_base_url, path)

    @classmethod
    def from_env(cls, **overrides) -> "Config":
        load_env()
        values = {
            "api_base_url": get_env_str("SPOTKIT_API_BASE_URL", DEFAULT_API_BASE_URL),
            "auth_base_url": get_env_str("SPOTKIT_AUTH_BASE_URL", DEFAULT_AUTH_BASE_URL),
            "token_cache_path": Path(
                get_env_str("SPOTKIT_TOKEN_CACHE_PATH", DEFAULT_CACHE_PATH)
            ),
            "token_cached": get_env_bool("SPOTKIT_TOKEN_CACHED", False),
            "token_refreshing": get_env_bool("SPOTKIT_TOKEN_REFRESHING", True),
            "pagination_chunks": get_env_int(
                "SPOTKIT_PAGINATION_CHUNKS", DEFAULT_PAGINATION_CHUNKS
            ),
            "max_retries": get_env_int("SPOTKIT_MAX_RETRIES", 2),
            "timeout": get_env_float("SPOTKIT_TIMEOUT", 30.0),
        }
        values.update(overrides)
        return cls(**values)
