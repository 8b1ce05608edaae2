"""Shared token cells.

The token is immutable, so readers only ever copy a reference and never hold
the lock while using it. Replacing the token is exclusive: while a
replacement is in flight new readers wait for it, and callers that want to
replace a stale token join the replacement already running instead of
starting their own.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable
from concurrent.futures import Future, wait

from auth.token import Token

Fetch = Callable[[Token | None], Token]
AsyncFetch = Callable[[Token | None], Awaitable[Token]]
StalePredicate = Callable[[Token | None], bool]
OnReplace = Callable[[Token], None]


class TokenGuard:
    def __init__(self, token: Token | None = None, on_replace: OnReplace | None = None) -> None:
        self._token = token
        self._lock = threading.Lock()
        self._inflight: Future | None = None
        self._on_replace = on_replace

    def get(self) -> Token | None:
        with self._lock:
            inflight = self._inflight
            token = self._token
        if inflight is None:
            return token
        wait([inflight])
        with self._lock:
            return self._token

    def replace(self, fetch: Fetch, *, stale: StalePredicate | None = None) -> Token:
        """Install the token returned by ``fetch``.

        With ``stale`` the replacement is coalesced: it only runs if
        ``stale(current)`` holds, and a caller arriving while another
        replacement is in flight gets that replacement's outcome.
        """
        while True:
            with self._lock:
                current = self._token
                inflight = self._inflight
                if inflight is None:
                    if stale is not None and not stale(current):
                        return current
                    inflight = self._inflight = Future()
                    break
            if stale is not None:
                return inflight.result()
            wait([inflight])

        try:
            token = fetch(current)
            with self._lock:
                self._token = token
            if self._on_replace is not None:
                self._on_replace(token)
        except BaseException as error:
            with self._lock:
                self._inflight = None
            inflight.set_exception(error)
            raise

        with self._lock:
            self._inflight = None
        inflight.set_result(token)
        return token

    def set(self, token: Token | None) -> None:
        """Install a token without a network exchange (no ``on_replace``)."""
        while True:
            with self._lock:
                if self._inflight is None:
                    self._token = token
                    return
                inflight = self._inflight
            wait([inflight])


class AsyncTokenGuard:
    def __init__(self, token: Token | None = None, on_replace: OnReplace | None = None) -> None:
        self._token = token
        self._inflight: asyncio.Task | None = None
        self._on_replace = on_replace

    async def get(self) -> Token | None:
        inflight = self._inflight
        if inflight is not None:
            await asyncio.wait({inflight})
        return self._token

    async def replace(self, fetch: AsyncFetch, *, stale: StalePredicate | None = None) -> Token:
        # No await between reading ``_inflight`` and spawning the task, so the
        # check-and-set is atomic on the event loop.
        while True:
            inflight = self._inflight
            if inflight is None:
                current = self._token
                if stale is not None and not stale(current):
                    return current
                inflight = asyncio.ensure_future(self._run(fetch, current))
                self._inflight = inflight
                inflight.add_done_callback(self._finished)
                # Shielded: a cancelled caller leaves the replacement running.
                return await asyncio.shield(inflight)
            if stale is not None:
                return await asyncio.shield(inflight)
            await asyncio.wait({inflight})

    async def set(self, token: Token | None) -> None:
        while self._inflight is not None:
            await asyncio.wait({self._inflight})
        self._token = token

    async def _run(self, fetch: AsyncFetch, current: Token | None) -> Token:
        try:
            token = await fetch(current)
            self._token = token
            if self._on_replace is not None:
                self._on_replace(token)
            return token
        finally:
            self._inflight = None

    def _finished(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Retrieved here so an outcome nobody awaited isn't reported as lost.
            task.exception()
