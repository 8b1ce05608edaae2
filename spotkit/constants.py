from __future__ import annotations

import logging

LOGGER = logging.getLogger("spotkit")
APP_VERSION = "0.1.0"

DEFAULT_API_BASE_URL = "https://api.spotify.com/v1/"
DEFAULT_AUTH_BASE_URL = "https://accounts.spotify.com/"
DEFAULT_CACHE_PATH = ".spotify_token_cache.json"
DEFAULT_PAGINATION_CHUNKS = 50

AUTHORIZE_PATH = "authorize"
TOKEN_PATH = "api/token"

ENV_CLIENT_ID = "SPOTKIT_CLIENT_ID"
ENV_CLIENT_SECRET = "SPOTKIT_CLIENT_SECRET"
ENV_REDIRECT_URI = "SPOTKIT_REDIRECT_URI"
