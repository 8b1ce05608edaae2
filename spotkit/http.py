from __future__ import annotations

import asyncio
import logging
import time

import httpx

from auth.errors import ApiError, RateLimitedError, UnauthorizedError

from .constants import APP_VERSION, LOGGER

USER_AGENT = f"spotkit/{APP_VERSION}"


def _retry_after_seconds(header: str | None) -> int | None:
    if header is None:
        return None
    try:
        return max(0, int(header))
    except ValueError:
        return None


def _copy_request(request: httpx.Request, body: bytes) -> httpx.Request:
    return httpx.Request(
        method=request.method,
        url=request.url,
        headers=request.headers,
        content=body,
        extensions=request.extensions,
    )


class _RetryPolicy:
    """429 is retried once after ``Retry-After``; 5xx with exponential backoff.

    Transport errors are not retried here: they surface to the caller.
    """

    def __init__(self, max_retries: int, logger: logging.Logger | None) -> None:
        self.max_retries = max(0, max_retries)
        self.logger = logger or LOGGER

    def wait_seconds(self, request: httpx.Request, response: httpx.Response, retries: int) -> int | None:
        if self.max_retries == 0:
            return None

        if response.status_code == 429 and retries < min(self.max_retries, 1):
            wait_seconds = _retry_after_seconds(response.headers.get("retry-after"))
            if wait_seconds is None:
                wait_seconds = 1
            self.logger.warning(
                "Retrying 429 after %ss (%s %s)",
                wait_seconds,
                request.method,
                request.url,
            )
            return wait_seconds

        if 500 <= response.status_code < 600 and retries < self.max_retries:
            backoff_seconds = 2**retries
            self.logger.warning(
                "Retrying %s after %ss (%s %s)",
                response.status_code,
                backoff_seconds,
                request.method,
                request.url,
            )
            return backoff_seconds

        return None


class RetryTransport(httpx.BaseTransport):
    def __init__(
        self,
        transport: httpx.BaseTransport,
        *,
        max_retries: int = 2,
        sleep=time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._policy = _RetryPolicy(max_retries, logger)
        self._sleep = sleep

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        body = request.read()
        retries = 0

        while True:
            response = self._transport.handle_request(_copy_request(request, body))
            wait_seconds = self._policy.wait_seconds(request, response, retries)
            if wait_seconds is None:
                return response
            response.close()
            self._sleep(wait_seconds)
            retries += 1

    def close(self) -> None:
        self._transport.close()


class AsyncRetryTransport(httpx.AsyncBaseTransport):
    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        max_retries: int = 2,
        sleep=asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._policy = _RetryPolicy(max_retries, logger)
        self._sleep = sleep

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = await request.aread()
        retries = 0

        while True:
            response = await self._transport.handle_async_request(_copy_request(request, body))
            wait_seconds = self._policy.wait_seconds(request, response, retries)
            if wait_seconds is None:
                return response
            await response.aclose()
            await self._sleep(wait_seconds)
            retries += 1

    async def aclose(self) -> None:
        await self._transport.aclose()


def _friendly_error_message(status_code: int, wait_seconds: int | None = None) -> str:
    if status_code == 401:
        return "Authentication failed. The Spotify access token may have expired."
    if status_code == 403:
        return "You don't have permission to perform this action."
    if status_code == 404:
        return "The requested resource was not found on Spotify."
    if status_code == 429:
        wait = 0 if wait_seconds is None else wait_seconds
        return f"Rate limit exceeded. Please wait {wait} seconds."
    if status_code >= 500:
        return "Spotify API is experiencing issues. Please try again later."
    return f"Spotify API request failed with status {status_code}."


def _error_details(response: httpx.Response) -> tuple[object, str | None, str | None]:
    try:
        payload = response.json()
    except ValueError:
        return {"raw": response.text}, None, None

    # Spotify wraps errors as {"error": {"status": ..., "message": ..., "reason": ...}}.
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        message = error.get("message") if isinstance(error.get("message"), str) else None
        reason = error.get("reason") if isinstance(error.get("reason"), str) else None
        return payload, message, reason
    return payload, None, None


def raise_for_api_error(response: httpx.Response) -> None:
    """Map an error response onto the spotkit error taxonomy.

    The response body must already be read.
    """
    if response.status_code < 400:
        return

    payload, message, reason = _error_details(response)
    if response.status_code == 401:
        raise UnauthorizedError(
            message or _friendly_error_message(401),
            payload=payload,
        )
    if response.status_code == 429:
        raise RateLimitedError(
            _retry_after_seconds(response.headers.get("retry-after")),
            payload=payload,
        )

    LOGGER.warning(
        "Spotify API error status=%s endpoint=%s payload=%s",
        response.status_code,
        response.request.url,
        payload,
    )
    raise ApiError(
        response.status_code,
        message or _friendly_error_message(response.status_code),
        reason=reason,
        payload=payload,
    )


def decode_body(response: httpx.Response) -> object:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def log_request(request: httpx.Request) -> None:
    LOGGER.debug("Spotify request %s %s", request.method, request.url)


def log_response(response: httpx.Response) -> None:
    LOGGER.debug(
        "Spotify response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )


async def alog_request(request: httpx.Request) -> None:
    log_request(request)


async def alog_response(response: httpx.Response) -> None:
    log_response(response)


def build_http_client(
    *,
    timeout: float,
    max_retries: int,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    retry_transport = RetryTransport(
        transport or httpx.HTTPTransport(),
        max_retries=max_retries,
        logger=LOGGER,
    )
    return httpx.Client(
        timeout=timeout,
        headers={"User-Agent": USER_AGENT},
        transport=retry_transport,
        event_hooks={"request": [log_request], "response": [log_response]},
    )


def build_async_http_client(
    *,
    timeout: float,
    max_retries: int,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    retry_transport = AsyncRetryTransport(
        transport or httpx.AsyncHTTPTransport(),
        max_retries=max_retries,
        logger=LOGGER,
    )
    return httpx.AsyncClient(
        timeout=timeout,
        headers={"User-Agent": USER_AGENT},
        transport=retry_transport,
        event_hooks={"request": [alog_request], "response": [alog_response]},
    )
