"""Automatic pagination over Spotify paging objects.

A paginator wraps a "fetch one page" callable and yields items across pages,
fetching lazily: one request per page boundary, only when the consumer asks
for the next item. A failed fetch is raised from ``__next__`` and ends the
traversal; nothing is retried here.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: list[T]
    next: str | None = None
    total: int | None = None
    limit: int | None = None
    offset: int | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Page[Any]":
        return cls(
            items=list(payload.get("items") or []),
            next=payload.get("next"),
            total=payload.get("total"),
            limit=payload.get("limit"),
            offset=payload.get("offset"),
        )


@dataclass
class CursorPage(Generic[T]):
    items: list[T]
    next: str | None = None
    total: int | None = None
    limit: int | None = None
    after: str | None = None
    before: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "CursorPage[Any]":
        cursors = payload.get("cursors") or {}
        return cls(
            items=list(payload.get("items") or []),
            next=payload.get("next"),
            total=payload.get("total"),
            limit=payload.get("limit"),
            after=cursors.get("after"),
            before=cursors.get("before"),
        )


PageFetch = Callable[[int, int], Page[T]]
CursorFetch = Callable[[int, str | None], CursorPage[T]]
AsyncPageFetch = Callable[[int, int], Awaitable[Page[T]]]
AsyncCursorFetch = Callable[[int, str | None], Awaitable[CursorPage[T]]]


@dataclass
class _Traversal:
    page_size: int
    buffer: list[Any] = field(default_factory=list)
    index: int = 0
    done: bool = False

    def take(self) -> tuple[bool, Any]:
        if self.index < len(self.buffer):
            item = self.buffer[self.index]
            self.index += 1
            return True, item
        return False, None

    def load(self, page: Page[Any] | CursorPage[Any], has_more: bool) -> None:
        self.buffer = page.items
        self.index = 0
        if len(page.items) < self.page_size or not has_more:
            self.done = True


def _offset_has_more(page: Page[Any], fetched: int) -> bool:
    if page.next is not None:
        return True
    # A ``fields`` filter can drop ``next``; ``total`` still bounds the traversal.
    return page.total is not None and fetched < page.total


def _cursor_has_more(page: CursorPage[Any]) -> bool:
    return page.next is not None and page.after is not None


def _check_page_size(page_size: int) -> int:
    if page_size <= 0:
        raise ValueError("page_size must be positive.")
    return page_size


class Paginator(Generic[T]):
    def __init__(self, fetch: PageFetch[T], page_size: int) -> None:
        self._fetch = fetch
        self._state = _Traversal(_check_page_size(page_size))
        self._offset = 0

    def __iter__(self) -> "Paginator[T]":
        return self

    def __next__(self) -> T:
        state = self._state
        while True:
            found, item = state.take()
            if found:
                return item
            if state.done:
                raise StopIteration
            try:
                page = self._fetch(state.page_size, self._offset)
            except BaseException:
                state.done = True
                raise
            self._offset += len(page.items)
            state.load(page, has_more=_offset_has_more(page, self._offset))


class CursorPaginator(Generic[T]):
    def __init__(self, fetch: CursorFetch[T], page_size: int) -> None:
        self._fetch = fetch
        self._state = _Traversal(_check_page_size(page_size))
        self._after: str | None = None

    def __iter__(self) -> "CursorPaginator[T]":
        return self

    def __next__(self) -> T:
        state = self._state
        while True:
            found, item = state.take()
            if found:
                return item
            if state.done:
                raise StopIteration
            try:
                page = self._fetch(state.page_size, self._after)
            except BaseException:
                state.done = True
                raise
            self._after = page.after
            state.load(page, has_more=_cursor_has_more(page))


class AsyncPaginator(Generic[T]):
    def __init__(self, fetch: AsyncPageFetch[T], page_size: int) -> None:
        self._fetch = fetch
        self._state = _Traversal(_check_page_size(page_size))
        self._offset = 0

    def __aiter__(self) -> "AsyncPaginator[T]":
        return self

    async def __anext__(self) -> T:
        state = self._state
        while True:
            found, item = state.take()
            if found:
                return item
            if state.done:
                raise StopAsyncIteration
            try:
                page = await self._fetch(state.page_size, self._offset)
            except BaseException:
                state.done = True
                raise
            self._offset += len(page.items)
            state.load(page, has_more=_offset_has_more(page, self._offset))


class AsyncCursorPaginator(Generic[T]):
    def __init__(self, fetch: AsyncCursorFetch[T], page_size: int) -> None:
        self._fetch = fetch
        self._state = _Traversal(_check_page_size(page_size))
        self._after: str | None = None

    def __aiter__(self) -> "AsyncCursorPaginator[T]":
        return self

    async def __anext__(self) -> T:
        state = self._state
        while True:
            found, item = state.take()
            if found:
                return item
            if state.done:
                raise StopAsyncIteration
            try:
                page = await self._fetch(state.page_size, self._after)
            except BaseException:
                state.done = True
                raise
            self._after = page.after
            state.load(page, has_more=_cursor_has_more(page))


def paginate(fetch: PageFetch[T], page_size: int) -> Paginator[T]:
    return Paginator(fetch, page_size)


def paginate_cursor(fetch: CursorFetch[T], page_size: int) -> CursorPaginator[T]:
    return CursorPaginator(fetch, page_size)


def apaginate(fetch: AsyncPageFetch[T], page_size: int) -> AsyncPaginator[T]:
    return AsyncPaginator(fetch, page_size)


def apaginate_cursor(fetch: AsyncCursorFetch[T], page_size: int) -> AsyncCursorPaginator[T]:
    return AsyncCursorPaginator(fetch, page_size)
