from __future__ import annotations

import json
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from auth.credentials import join_scopes, parse_scopes
from auth.errors import (
    ProtocolRejection,
    TokenCacheCorruptError,
    TokenCacheMissingError,
    TokenCacheWriteError,
)

# Margin covering clock skew and the duration of an in-flight request.
EXPIRY_MARGIN_SECONDS = 10


@dataclass(frozen=True)
class Token:
    access_token: str
    expires_in: int
    expires_at: float
    scopes: frozenset[str] = field(default_factory=frozenset)
    refresh_token: str | None = None

    def is_expired(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current + EXPIRY_MARGIN_SECONDS >= self.expires_at

    @property
    def can_reauth(self) -> bool:
        return self.refresh_token is not None

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    @classmethod
    def from_payload(
        cls,
        payload: dict,
        *,
        previous_refresh_token: str | None = None,
        now: float | None = None,
    ) -> "Token":
        """Build a token from a token endpoint response body.

        ``previous_refresh_token`` is kept when the server doesn't rotate it.
        """
        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in")
        scope = payload.get("scope", "")
        refresh_token = payload.get("refresh_token") or previous_refresh_token

        if not isinstance(access_token, str) or not access_token:
            raise ProtocolRejection("invalid_response", "Token response missing access_token.")
        if isinstance(expires_in, bool) or not isinstance(expires_in, int):
            raise ProtocolRejection("invalid_response", "Token response missing expires_in.")
        if scope is None:
            scope = ""
        if not isinstance(scope, str):
            raise ProtocolRejection("invalid_response", "Token response scope must be a string.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ProtocolRejection("invalid_response", "Token response refresh_token must be a string.")

        issued_at = time.time() if now is None else now
        return cls(
            access_token=access_token,
            expires_in=expires_in,
            expires_at=issued_at + expires_in,
            scopes=parse_scopes(scope),
            refresh_token=refresh_token,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "expires_in": self.expires_in,
            "expires_at": self.expires_at,
            "scope": join_scopes(self.scopes),
            "refresh_token": self.refresh_token,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Token":
        access_token = raw.get("access_token")
        expires_in = raw.get("expires_in")
        expires_at = raw.get("expires_at")
        scope = raw.get("scope", "")
        refresh_token = raw.get("refresh_token")

        if not isinstance(access_token, str) or not access_token:
            raise ValueError("access_token must be a non-empty string")
        if isinstance(expires_in, bool) or not isinstance(expires_in, int):
            raise ValueError("expires_in must be an integer")
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            raise ValueError("expires_at must be a number")
        if not isinstance(scope, str):
            raise ValueError("scope must be a string")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ValueError("refresh_token must be a string")

        return cls(
            access_token=access_token,
            expires_in=expires_in,
            expires_at=float(expires_at),
            scopes=parse_scopes(scope),
            refresh_token=refresh_token,
        )

    @classmethod
    def from_cache(cls, path: str | Path) -> "Token":
        cache_path = Path(path)
        try:
            text = cache_path.read_text(encoding="utf-8")
        except FileNotFoundError as error:
            raise TokenCacheMissingError(cache_path) from error
        except OSError as error:
            raise TokenCacheCorruptError(cache_path, str(error)) from error

        try:
            raw = json.loads(text)
        except json.JSONDecodeError as error:
            raise TokenCacheCorruptError(cache_path, "malformed JSON") from error
        if not isinstance(raw, dict):
            raise TokenCacheCorruptError(cache_path, "expected top-level JSON object")

        try:
            return cls.from_dict(raw)
        except ValueError as error:
            raise TokenCacheCorruptError(cache_path, str(error)) from error

    def write_cache(self, path: str | Path) -> None:
        cache_path = Path(path)
        try:
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f"{cache_path.name}.",
                suffix=".tmp",
                dir=cache_path.parent,
            )
        except OSError as error:
            raise TokenCacheWriteError(cache_path) from error

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self.to_dict(), handle, indent=2, sort_keys=True)
            os.replace(tmp_path, cache_path)
        except OSError as error:
            raise TokenCacheWriteError(cache_path) from error
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def __repr__(self) -> str:
        return (
            f"Token(expires_at={self.expires_at!r}, scopes={sorted(self.scopes)!r}, "
            f"refreshable={self.can_reauth})"
        )
