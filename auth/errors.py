from __future__ import annotations

from pathlib import Path


class SpotkitError(RuntimeError):
    """Base class for every error raised by spotkit."""


class ConfigError(SpotkitError):
    pass


class TransportFailure(SpotkitError):
    """The request never produced an HTTP response (DNS, TLS, timeout...)."""


class ProtocolRejection(SpotkitError):
    """The authorization server refused an exchange.

    Fatal for the attempt: interactive flows need a fresh authorization.
    """

    def __init__(
        self,
        error: str,
        description: str | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        self.error = error
        self.description = description
        self.status_code = status_code
        message = error if not description else f"{error}: {description}"
        if status_code is not None:
            message = f"{message} (status {status_code})"
        super().__init__(message)


class StateMismatchError(ProtocolRejection):
    def __init__(self, expected: str, received: str | None) -> None:
        self.expected = expected
        self.received = received
        super().__init__(
            "state_mismatch",
            "Request state doesn't match the callback state.",
        )


class NotRefreshableError(SpotkitError):
    def __init__(self, message: str = "Token has no refresh credential.") -> None:
        super().__init__(message)


class MissingVerifierError(SpotkitError):
    def __init__(self) -> None:
        super().__init__(
            "No pending PKCE code verifier. Call get_authorize_url() before requesting a token."
        )


class CacheError(SpotkitError):
    def __init__(self, message: str, path: str | Path) -> None:
        self.path = Path(path)
        super().__init__(f"{message}: {self.path}")


class TokenCacheMissingError(CacheError):
    def __init__(self, path: str | Path) -> None:
        super().__init__("Token cache file not found", path)


class TokenCacheCorruptError(CacheError):
    def __init__(self, path: str | Path, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Token cache file is invalid ({detail})", path)


class TokenCacheWriteError(CacheError):
    def __init__(self, path: str | Path) -> None:
        super().__init__("Failed to write token cache", path)


class ApiError(SpotkitError):
    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        reason: str | None = None,
        payload: object = None,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.reason = reason
        self.payload = payload
        text = f"{status_code}: {message}"
        if reason:
            text = f"{status_code} ({reason}): {message}"
        super().__init__(text)


class UnauthorizedError(ApiError):
    def __init__(self, message: str = "Unauthorized request.", *, payload: object = None) -> None:
        super().__init__(401, message, payload=payload)


class RateLimitedError(ApiError):
    def __init__(self, retry_after: int | None, *, payload: object = None) -> None:
        self.retry_after = retry_after
        wait = 0 if retry_after is None else retry_after
        super().__init__(
            429,
            f"Rate limit exceeded. Please wait {wait} seconds.",
            payload=payload,
        )
