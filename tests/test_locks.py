import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from auth.errors import ProtocolRejection
from spotkit.locks import AsyncTokenGuard, TokenGuard

from tests.spotify_helpers import make_token


def _is_old(token) -> bool:
    return token is not None and token.access_token == "old"


class SlowFetch:
    def __init__(self, delay: float = 0.1, error: Exception | None = None) -> None:
        self.delay = delay
        self.error = error
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, current):
        with self._lock:
            self.calls += 1
        time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return make_token("new")


class AsyncSlowFetch(SlowFetch):
    async def __call__(self, current):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return make_token("new")


def test_get_returns_current_token() -> None:
    guard = TokenGuard(make_token("old"))

    assert guard.get().access_token == "old"
    assert TokenGuard().get() is None


def test_replace_skips_fresh_token() -> None:
    fetch = SlowFetch(delay=0)
    guard = TokenGuard(make_token("fresh"))

    assert guard.replace(fetch, stale=_is_old).access_token == "fresh"
    assert fetch.calls == 0


def test_concurrent_replacements_coalesce() -> None:
    fetch = SlowFetch()
    replaced = []
    guard = TokenGuard(make_token("old"), on_replace=replaced.append)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: guard.replace(fetch, stale=_is_old), range(8)))

    assert fetch.calls == 1
    assert len(replaced) == 1
    assert all(token is results[0] for token in results)
    assert guard.get() is results[0]


def test_failed_replacement_keeps_previous_token() -> None:
    fetch = SlowFetch(error=ProtocolRejection("invalid_grant"))
    old = make_token("old")
    guard = TokenGuard(old)

    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = [pool.submit(guard.replace, fetch, stale=_is_old) for _ in range(4)]
        errors = [future.exception() for future in futures]

    assert fetch.calls == 1
    assert all(isinstance(error, ProtocolRejection) for error in errors)
    assert guard.get() is old


def test_reader_waits_for_replacement() -> None:
    started = threading.Event()
    release = threading.Event()

    def fetch(current):
        started.set()
        release.wait(5)
        return make_token("new")

    guard = TokenGuard(make_token("old"))
    worker = threading.Thread(target=guard.replace, args=(fetch,))
    worker.start()
    started.wait(5)
    threading.Timer(0.05, release.set).start()

    assert guard.get().access_token == "new"
    worker.join()


def test_unconditional_replace_always_fetches() -> None:
    fetch = SlowFetch(delay=0)
    guard = TokenGuard(make_token("fresh"))

    guard.replace(fetch)
    guard.replace(fetch)

    assert fetch.calls == 2


def test_set_skips_on_replace() -> None:
    replaced = []
    guard = TokenGuard(on_replace=replaced.append)

    guard.set(make_token("cached"))

    assert guard.get().access_token == "cached"
    assert replaced == []


@pytest.mark.asyncio
async def test_async_concurrent_replacements_coalesce() -> None:
    fetch = AsyncSlowFetch(delay=0.05)
    replaced = []
    guard = AsyncTokenGuard(make_token("old"), on_replace=replaced.append)

    results = await asyncio.gather(*(guard.replace(fetch, stale=_is_old) for _ in range(10)))

    assert fetch.calls == 1
    assert len(replaced) == 1
    assert all(token is results[0] for token in results)
    assert await guard.get() is results[0]


@pytest.mark.asyncio
async def test_async_failed_replacement_keeps_previous_token() -> None:
    fetch = AsyncSlowFetch(delay=0.01, error=ProtocolRejection("invalid_grant"))
    old = make_token("old")
    guard = AsyncTokenGuard(old)

    results = await asyncio.gather(
        *(guard.replace(fetch, stale=_is_old) for _ in range(5)),
        return_exceptions=True,
    )

    assert fetch.calls == 1
    assert all(isinstance(result, ProtocolRejection) for result in results)
    assert await guard.get() is old


@pytest.mark.asyncio
async def test_async_cancelled_caller_does_not_cancel_refresh() -> None:
    fetch = AsyncSlowFetch(delay=0.05)
    guard = AsyncTokenGuard(make_token("old"))

    first = asyncio.create_task(guard.replace(fetch, stale=_is_old))
    await asyncio.sleep(0)
    second = asyncio.create_task(guard.replace(fetch, stale=_is_old))
    await asyncio.sleep(0)
    first.cancel()

    token = await second

    with pytest.raises(asyncio.CancelledError):
        await first
    assert token.access_token == "new"
    assert fetch.calls == 1
    assert (await guard.get()).access_token == "new"


@pytest.mark.asyncio
async def test_async_set_and_get() -> None:
    guard = AsyncTokenGuard()

    await guard.set(make_token("cached"))

    assert (await guard.get()).access_token == "cached"
