from __future__ import annotations

import asyncio
import webbrowser
from collections.abc import Callable
from typing import Any

import httpx

from auth import oauth2
from auth.errors import (
    CacheError,
    ConfigError,
    NotRefreshableError,
    ProtocolRejection,
    TransportFailure,
    UnauthorizedError,
)
from auth.flows import AuthFlow
from auth.oauth2 import TokenRequest
from auth.token import Token
from auth.token_cache import FileTokenCache, TokenCache

from .config import Config
from .constants import AUTHORIZE_PATH, LOGGER, TOKEN_PATH
from .http import (
    build_async_http_client,
    build_http_client,
    decode_body,
    raise_for_api_error,
)
from .locks import AsyncTokenGuard, TokenGuard
from .pagination import (
    AsyncCursorPaginator,
    AsyncPaginator,
    CursorPage,
    CursorPaginator,
    Page,
    Paginator,
    apaginate,
    apaginate_cursor,
    paginate,
    paginate_cursor,
)

REDIRECT_PROMPT = "Enter the URL you were redirected to: "


def _clean_params(params: dict[str, Any] | None) -> dict[str, Any] | None:
    if params is None:
        return None
    return {key: value for key, value in params.items() if value is not None}


class _ClientBase:
    """Token bookkeeping shared by the blocking and asyncio clients."""

    def __init__(
        self,
        flow: AuthFlow,
        *,
        config: Config | None = None,
        token_cache: TokenCache | None = None,
    ) -> None:
        self.flow = flow
        self.config = config or Config()
        if token_cache is None:
            token_cache = FileTokenCache(self.config.token_cache_path)
        self.token_cache = token_cache

    @property
    def token_url(self) -> str:
        return self.config.auth_url(TOKEN_PATH)

    def get_authorize_url(self, *args, **kwargs) -> str:
        builder = getattr(self.flow, "get_authorize_url", None)
        if builder is None:
            raise ConfigError("This authorization flow has no authorize URL.")
        kwargs.setdefault("authorize_url", self.config.auth_url(AUTHORIZE_PATH))
        return builder(*args, **kwargs)

    def _requested_scopes(self) -> frozenset[str]:
        oauth = self.flow.oauth
        return oauth.scopes if oauth is not None else frozenset()

    def _read_cache(self, allow_expired: bool) -> Token | None:
        token = self.token_cache.load()
        if token is None:
            LOGGER.info("No cached token")
            return None
        if not self._requested_scopes() <= token.scopes:
            LOGGER.info("Cached token doesn't cover the requested scopes")
            return None
        if not allow_expired and token.is_expired():
            LOGGER.info("Cached token is expired")
            return None
        LOGGER.info("Read token from cache")
        return token

    def _read_cache_or_none(self) -> Token | None:
        try:
            return self._read_cache(allow_expired=True)
        except CacheError as error:
            LOGGER.warning("Ignoring unusable token cache: %s", error)
            return None

    def _write_cache(self, token: Token | None) -> None:
        if not self.config.token_cached or token is None:
            return
        self.token_cache.save(token)
        LOGGER.info("Wrote token to cache")

    def _on_token_replaced(self, token: Token) -> None:
        # Runs inside the exclusive replacement, after the in-memory swap.
        if self.config.token_callback is not None:
            self.config.token_callback(token)
        self._write_cache(token)

    def _needs_reauth(self, token: Token | None) -> bool:
        if token is None:
            # App-only tokens can be obtained without user interaction.
            return not self.flow.interactive
        return token.is_expired()

    def _can_reauth(self, token: Token) -> bool:
        return not self.flow.interactive or token.can_reauth

    def _reauth_request(self, current: Token | None) -> TokenRequest:
        if current is None:
            return self.flow.token_request()
        return self.flow.reauth_request(current)

    def _refresh_request(self, current: Token | None) -> TokenRequest:
        if current is None:
            raise NotRefreshableError("No token to refresh. Request a token first.")
        return self.flow.refresh_request(current)

    def _settle_code_exchange(self) -> None:
        # Once the server has judged a code, its PKCE verifier is spent.
        discard = getattr(self.flow, "discard_verifier", None)
        if discard is not None:
            discard()

    def _require_interactive(self) -> None:
        if not self.flow.interactive:
            raise ConfigError("Interactive authorization needs an authorization code flow.")


class Spotify(_ClientBase):
    """Blocking Spotify Web API client, safe to share between threads."""

    def __init__(
        self,
        flow: AuthFlow,
        *,
        config: Config | None = None,
        token: Token | None = None,
        token_cache: TokenCache | None = None,
        http_client: httpx.Client | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(flow, config=config, token_cache=token_cache)
        self._guard = TokenGuard(token, on_replace=self._on_token_replaced)
        self._owns_http_client = http_client is None
        self.http_client = http_client or build_http_client(
            timeout=self.config.timeout,
            max_retries=self.config.max_retries,
            transport=transport,
        )

    def close(self) -> None:
        if self._owns_http_client:
            self.http_client.close()

    def __enter__(self) -> "Spotify":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def get_token(self) -> Token | None:
        return self._guard.get()

    def _exchange(self, request: TokenRequest) -> Token:
        return oauth2.exchange_token(self.http_client, self.token_url, request)

    def request_token(self, *args: str) -> Token:
        request = self.flow.token_request(*args)
        try:
            token = self._guard.replace(lambda _current: self._exchange(request))
        except ProtocolRejection:
            self._settle_code_exchange()
            raise
        self._settle_code_exchange()
        LOGGER.info("Obtained new access token")
        return token

    def request_token_with_cache(self, *args: str) -> Token:
        cached = self._read_cache_or_none()
        if cached is not None:
            if not cached.is_expired():
                self._guard.set(cached)
                return cached
            if cached.can_reauth:
                self._guard.set(cached)
                return self.refresh_token()
        return self.request_token(*args)

    def refresh_token(self) -> Token:
        token = self._guard.replace(
            lambda current: self._exchange(self._refresh_request(current))
        )
        LOGGER.info("Refreshed access token")
        return token

    def refresh_token_with_cache(self) -> Token:
        if self._guard.get() is None:
            cached = self.read_token_cache(allow_expired=True)
            if cached is None:
                raise NotRefreshableError("No cached token to refresh.")
            self._guard.set(cached)
        return self.refresh_token()

    def read_token_cache(self, allow_expired: bool = False) -> Token | None:
        return self._read_cache(allow_expired)

    def write_token_cache(self) -> None:
        self._write_cache(self._guard.get())

    def auto_reauth(self) -> Token | None:
        if not self.config.token_refreshing:
            return self._guard.get()
        return self._guard.replace(self._reauth, stale=self._needs_reauth)

    def _reauth(self, current: Token | None) -> Token:
        LOGGER.info("Access token expired, re-authenticating")
        return self._exchange(self._reauth_request(current))

    def prompt_for_token(
        self,
        code_or_url: str | None = None,
        *,
        opener: Callable[[str], Any] = webbrowser.open,
        reader: Callable[[str], str] = input,
    ) -> Token:
        self._require_interactive()
        cached = self._read_cache_or_none()
        if cached is not None:
            if not cached.is_expired():
                self._guard.set(cached)
                return cached
            if cached.can_reauth:
                self._guard.set(cached)
                return self.refresh_token()

        if code_or_url is None:
            url = self.get_authorize_url()
            if not opener(url):
                print(f"Please open this URL in your browser: {url}")
            code_or_url = reader(REDIRECT_PROMPT)
        return self.request_token(code_or_url)

    def _send_once(
        self,
        token: Token,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json: Any,
    ) -> httpx.Response:
        try:
            return self.http_client.request(
                method,
                self.config.api_url(path),
                params=_clean_params(params),
                json=json,
                headers=token.auth_headers(),
            )
        except httpx.TransportError as error:
            raise TransportFailure(f"{method} {path} failed: {error}") from error

    def send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        token = self.auto_reauth()
        if token is None:
            raise UnauthorizedError("No access token available. Request a token first.")

        response = self._send_once(token, method, path, params, json)
        if (
            response.status_code == 401
            and self.config.token_refreshing
            and self._can_reauth(token)
        ):
            LOGGER.info("Access token rejected, refreshing and retrying once")
            response.close()
            rejected = token
            token = self._guard.replace(self._reauth, stale=lambda current: current is rejected)
            response = self._send_once(token, method, path, params, json)

        raise_for_api_error(response)
        return decode_body(response)

    def get(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        return self.send("GET", path, params=params)

    def post(self, path: str, *, params: dict[str, Any] | None = None, json: Any = None) -> Any:
        return self.send("POST", path, params=params, json=json)

    def put(self, path: str, *, params: dict[str, Any] | None = None, json: Any = None) -> Any:
        return self.send("PUT", path, params=params, json=json)

    def delete(self, path: str, *, params: dict[str, Any] | None = None, json: Any = None) -> Any:
        return self.send("DELETE", path, params=params, json=json)

    def me(self) -> dict[str, Any]:
        return self.get("me")

    def track(self, track_id: str, market: str | None = None) -> dict[str, Any]:
        return self.get(f"tracks/{track_id}", params={"market": market})

    def current_user_playlists(self) -> Paginator[dict[str, Any]]:
        return paginate(self.current_user_playlists_manual, self.config.pagination_chunks)

    def current_user_playlists_manual(
        self, limit: int | None = None, offset: int | None = None
    ) -> Page[dict[str, Any]]:
        payload = self.get("me/playlists", params={"limit": limit, "offset": offset})
        return Page.from_payload(payload)

    def playlist_items(
        self,
        playlist_id: str,
        *,
        fields: str | None = None,
        market: str | None = None,
    ) -> Paginator[dict[str, Any]]:
        return paginate(
            lambda limit, offset: self.playlist_items_manual(
                playlist_id, fields=fields, market=market, limit=limit, offset=offset
            ),
            self.config.pagination_chunks,
        )

    def playlist_items_manual(
        self,
        playlist_id: str,
        *,
        fields: str | None = None,
        market: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[dict[str, Any]]:
        payload = self.get(
            f"playlists/{playlist_id}/tracks",
            params={"fields": fields, "market": market, "limit": limit, "offset": offset},
        )
        return Page.from_payload(payload)

    def current_user_saved_tracks(self, market: str | None = None) -> Paginator[dict[str, Any]]:
        return paginate(
            lambda limit, offset: self.current_user_saved_tracks_manual(
                market=market, limit=limit, offset=offset
            ),
            self.config.pagination_chunks,
        )

    def current_user_saved_tracks_manual(
        self,
        *,
        market: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[dict[str, Any]]:
        payload = self.get(
            "me/tracks",
            params={"market": market, "limit": limit, "offset": offset},
        )
        return Page.from_payload(payload)

    def current_user_followed_artists(self) -> CursorPaginator[dict[str, Any]]:
        return paginate_cursor(
            self.current_user_followed_artists_manual, self.config.pagination_chunks
        )

    def current_user_followed_artists_manual(
        self, limit: int | None = None, after: str | None = None
    ) -> CursorPage[dict[str, Any]]:
        payload = self.get(
            "me/following",
            params={"type": "artist", "limit": limit, "after": after},
        )
        return CursorPage.from_payload(payload["artists"])


class AsyncSpotify(_ClientBase):
    """asyncio Spotify Web API client, safe to share between tasks of one loop."""

    def __init__(
        self,
        flow: AuthFlow,
        *,
        config: Config | None = None,
        token: Token | None = None,
        token_cache: TokenCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(flow, config=config, token_cache=token_cache)
        self._guard = AsyncTokenGuard(token, on_replace=self._on_token_replaced)
        self._owns_http_client = http_client is None
        self.http_client = http_client or build_async_http_client(
            timeout=self.config.timeout,
            max_retries=self.config.max_retries,
            transport=transport,
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "AsyncSpotify":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def get_token(self) -> Token | None:
        return await self._guard.get()

    async def _exchange(self, request: TokenRequest) -> Token:
        return await oauth2.aexchange_token(self.http_client, self.token_url, request)

    async def request_token(self, *args: str) -> Token:
        request = self.flow.token_request(*args)

        async def fetch(_current: Token | None) -> Token:
            return await self._exchange(request)

        try:
            token = await self._guard.replace(fetch)
        except ProtocolRejection:
            self._settle_code_exchange()
            raise
        self._settle_code_exchange()
        LOGGER.info("Obtained new access token")
        return token

    async def request_token_with_cache(self, *args: str) -> Token:
        cached = self._read_cache_or_none()
        if cached is not None:
            if not cached.is_expired():
                await self._guard.set(cached)
                return cached
            if cached.can_reauth:
                await self._guard.set(cached)
                return await self.refresh_token()
        return await self.request_token(*args)

    async def _refresh(self, current: Token | None) -> Token:
        return await self._exchange(self._refresh_request(current))

    async def refresh_token(self) -> Token:
        token = await self._guard.replace(self._refresh)
        LOGGER.info("Refreshed access token")
        return token

    async def refresh_token_with_cache(self) -> Token:
        if await self._guard.get() is None:
            cached = self.read_token_cache(allow_expired=True)
            if cached is None:
                raise NotRefreshableError("No cached token to refresh.")
            await self._guard.set(cached)
        return await self.refresh_token()

    def read_token_cache(self, allow_expired: bool = False) -> Token | None:
        return self._read_cache(allow_expired)

    async def write_token_cache(self) -> None:
        self._write_cache(await self._guard.get())

    async def auto_reauth(self) -> Token | None:
        if not self.config.token_refreshing:
            return await self._guard.get()
        return await self._guard.replace(self._reauth, stale=self._needs_reauth)

    async def _reauth(self, current: Token | None) -> Token:
        LOGGER.info("Access token expired, re-authenticating")
        return await self._exchange(self._reauth_request(current))

    async def prompt_for_token(
        self,
        code_or_url: str | None = None,
        *,
        opener: Callable[[str], Any] = webbrowser.open,
        reader: Callable[[str], str] = input,
    ) -> Token:
        self._require_interactive()
        cached = self._read_cache_or_none()
        if cached is not None:
            if not cached.is_expired():
                await self._guard.set(cached)
                return cached
            if cached.can_reauth:
                await self._guard.set(cached)
                return await self.refresh_token()

        if code_or_url is None:
            url = self.get_authorize_url()
            if not await asyncio.to_thread(opener, url):
                print(f"Please open this URL in your browser: {url}")
            code_or_url = await asyncio.to_thread(reader, REDIRECT_PROMPT)
        return await self.request_token(code_or_url)

    async def _send_once(
        self,
        token: Token,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json: Any,
    ) -> httpx.Response:
        try:
            return await self.http_client.request(
                method,
                self.config.api_url(path),
                params=_clean_params(params),
                json=json,
                headers=token.auth_headers(),
            )
        except httpx.TransportError as error:
            raise TransportFailure(f"{method} {path} failed: {error}") from error

    async def send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        token = await self.auto_reauth()
        if token is None:
            raise UnauthorizedError("No access token available. Request a token first.")

        response = await self._send_once(token, method, path, params, json)
        if (
            response.status_code == 401
            and self.config.token_refreshing
            and self._can_reauth(token)
        ):
            LOGGER.info("Access token rejected, refreshing and retrying once")
            await response.aclose()
            rejected = token
            token = await self._guard.replace(
                self._reauth, stale=lambda current: current is rejected
            )
            response = await self._send_once(token, method, path, params, json)

        raise_for_api_error(response)
        return decode_body(response)

    async def get(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        return await self.send("GET", path, params=params)

    async def post(
        self, path: str, *, params: dict[str, Any] | None = None, json: Any = None
    ) -> Any:
        return await self.send("POST", path, params=params, json=json)

    async def put(
        self, path: str, *, params: dict[str, Any] | None = None, json: Any = None
    ) -> Any:
        return await self.send("PUT", path, params=params, json=json)

    async def delete(
        self, path: str, *, params: dict[str, Any] | None = None, json: Any = None
    ) -> Any:
        return await self.send("DELETE", path, params=params, json=json)

    async def me(self) -> dict[str, Any]:
        return await self.get("me")

    async def track(self, track_id: str, market: str | None = None) -> dict[str, Any]:
        return await self.get(f"tracks/{track_id}", params={"market": market})

    def current_user_playlists(self) -> AsyncPaginator[dict[str, Any]]:
        return apaginate(self.current_user_playlists_manual, self.config.pagination_chunks)

    async def current_user_playlists_manual(
        self, limit: int | None = None, offset: int | None = None
    ) -> Page[dict[str, Any]]:
        payload = await self.get("me/playlists", params={"limit": limit, "offset": offset})
        return Page.from_payload(payload)

    def playlist_items(
        self,
        playlist_id: str,
        *,
        fields: str | None = None,
        market: str | None = None,
    ) -> AsyncPaginator[dict[str, Any]]:
        return apaginate(
            lambda limit, offset: self.playlist_items_manual(
                playlist_id, fields=fields, market=market, limit=limit, offset=offset
            ),
            self.config.pagination_chunks,
        )

    async def playlist_items_manual(
        self,
        playlist_id: str,
        *,
        fields: str | None = None,
        market: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[dict[str, Any]]:
        payload = await self.get(
            f"playlists/{playlist_id}/tracks",
            params={"fields": fields, "market": market, "limit": limit, "offset": offset},
        )
        return Page.from_payload(payload)

    def current_user_saved_tracks(
        self, market: str | None = None
    ) -> AsyncPaginator[dict[str, Any]]:
        return apaginate(
            lambda limit, offset: self.current_user_saved_tracks_manual(
                market=market, limit=limit, offset=offset
            ),
            self.config.pagination_chunks,
        )

    async def current_user_saved_tracks_manual(
        self,
        *,
        market: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[dict[str, Any]]:
        payload = await self.get(
            "me/tracks",
            params={"market": market, "limit": limit, "offset": offset},
        )
        return Page.from_payload(payload)

    def current_user_followed_artists(self) -> AsyncCursorPaginator[dict[str, Any]]:
        return apaginate_cursor(
            self.current_user_followed_artists_manual, self.config.pagination_chunks
        )

    async def current_user_followed_artists_manual(
        self, limit: int | None = None, after: str | None = None
    ) -> CursorPage[dict[str, Any]]:
        payload = await self.get(
            "me/following",
            params={"type": "artist", "limit": limit, "after": after},
        )
        return CursorPage.from_payload(payload["artists"])
