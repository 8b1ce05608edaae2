import pytest

from auth.credentials import Credentials, OAuth
from auth.token_cache import MemoryTokenCache
from spotkit.config import Config

from tests.spotify_helpers import REDIRECT_URI, FakeSpotify

SPOTKIT_ENV_KEYS = (
    "SPOTKIT_CLIENT_ID",
    "SPOTKIT_CLIENT_SECRET",
    "SPOTKIT_REDIRECT_URI",
    "SPOTKIT_DEBUG",
    "SPOTKIT_API_BASE_URL",
    "SPOTKIT_AUTH_BASE_URL",
    "SPOTKIT_TOKEN_CACHE_PATH",
    "SPOTKIT_TOKEN_CACHED",
    "SPOTKIT_TOKEN_REFRESHING",
    "SPOTKIT_PAGINATION_CHUNKS",
    "SPOTKIT_MAX_RETRIES",
    "SPOTKIT_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in SPOTKIT_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    # Keep load_env() away from a developer's real .env file.
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(id="client-id", secret="client-secret")


@pytest.fixture
def oauth() -> OAuth:
    return OAuth(
        redirect_uri=REDIRECT_URI,
        scopes={"user-read-private", "playlist-read-private"},
        state="state123",
    )


@pytest.fixture
def fake_spotify() -> FakeSpotify:
    return FakeSpotify()


@pytest.fixture
def memory_cache() -> MemoryTokenCache:
    return MemoryTokenCache()


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(token_cache_path=tmp_path / "token.json", max_retries=0)
