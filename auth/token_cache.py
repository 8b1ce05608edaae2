from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from auth.errors import TokenCacheMissingError
from auth.token import Token


class TokenCache(ABC):
    @abstractmethod
    def load(self) -> Token | None:
        raise NotImplementedError

    @abstractmethod
    def save(self, token: Token) -> None:
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError


class MemoryTokenCache(TokenCache):
    def __init__(self, token: Token | None = None) -> None:
        self._token = token

    def load(self) -> Token | None:
        return self._token

    def save(self, token: Token) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


class FileTokenCache(TokenCache):
    """Single-token JSON file. A missing file reads as an empty cache."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> Token | None:
        try:
            return Token.from_cache(self.path)
        except TokenCacheMissingError:
            return None

    def save(self, token: Token) -> None:
        token.write_cache(self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
