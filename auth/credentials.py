from __future__ import annotations

import secrets
import string
from collections.abc import Iterable
from dataclasses import dataclass, field

from pydantic import AnyUrl, ValidationError

from auth.errors import ConfigError
from spotkit.constants import ENV_CLIENT_ID, ENV_CLIENT_SECRET, ENV_REDIRECT_URI
from spotkit.env import get_env_str, load_env, require_env

STATE_ALPHABET = string.ascii_letters + string.digits
STATE_LENGTH = 16


def generate_state(length: int = STATE_LENGTH) -> str:
    return "".join(secrets.choice(STATE_ALPHABET) for _ in range(length))


def parse_scopes(scopes: str | Iterable[str] | None) -> frozenset[str]:
    if scopes is None:
        return frozenset()
    if isinstance(scopes, str):
        scopes = scopes.split()
    return frozenset(scope.strip() for scope in scopes if scope and scope.strip())


def join_scopes(scopes: Iterable[str]) -> str:
    return " ".join(sorted(scopes))


@dataclass(frozen=True)
class Credentials:
    """Application identity. ``secret`` is ``None`` for PKCE-only clients."""

    id: str
    secret: str | None = None

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ConfigError("Client id must not be empty.")

    def require_secret(self) -> str:
        if not self.secret or not self.secret.strip():
            raise ConfigError("This authorization flow requires a client secret.")
        return self.secret

    @classmethod
    def from_env(cls) -> "Credentials":
        load_env()
        client_id = require_env(ENV_CLIENT_ID)[ENV_CLIENT_ID]
        return cls(id=client_id, secret=get_env_str(ENV_CLIENT_SECRET))

    def __repr__(self) -> str:
        secret = None if self.secret is None else "***"
        return f"Credentials(id={self.id!r}, secret={secret!r})"


@dataclass(frozen=True)
class OAuth:
    redirect_uri: str
    scopes: frozenset[str] = frozenset()
    state: str = field(default_factory=generate_state)

    def __post_init__(self) -> None:
        try:
            AnyUrl(self.redirect_uri)
        except ValidationError as error:
            raise ConfigError(f"Invalid redirect URI {self.redirect_uri!r}.") from error
        object.__setattr__(self, "scopes", parse_scopes(self.scopes))
        if not self.state:
            raise ConfigError("OAuth state must not be empty.")

    @classmethod
    def from_env(cls, scopes: str | Iterable[str] | None = None) -> "OAuth":
        load_env()
        redirect_uri = require_env(ENV_REDIRECT_URI)[ENV_REDIRECT_URI]
        return cls(redirect_uri=redirect_uri, scopes=parse_scopes(scopes))
