from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import string
import urllib.parse
from dataclasses import dataclass, field

import httpx

from auth.errors import ApiError, ProtocolRejection, StateMismatchError, TransportFailure
from auth.token import Token

LOGGER = logging.getLogger("spotkit.auth")

# RFC 7636 section 4.1 unreserved characters.
PKCE_VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"
PKCE_MIN_LENGTH = 43
PKCE_MAX_LENGTH = 128

GRANT_CLIENT_CREDENTIALS = "client_credentials"
GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"


@dataclass(frozen=True)
class TokenRequest:
    """Form body and headers for one POST to the token endpoint."""

    grant_type: str
    form: dict[str, str]
    headers: dict[str, str] = field(default_factory=dict)
    previous_refresh_token: str | None = None


def generate_code_verifier(length: int = PKCE_MIN_LENGTH) -> str:
    if not PKCE_MIN_LENGTH <= length <= PKCE_MAX_LENGTH:
        raise ValueError(
            f"PKCE verifier length must be between {PKCE_MIN_LENGTH} and {PKCE_MAX_LENGTH}."
        )
    return "".join(secrets.choice(PKCE_VERIFIER_ALPHABET) for _ in range(length))


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def basic_auth_header(client_id: str, client_secret: str) -> dict[str, str]:
    raw = f"{client_id}:{client_secret}".encode("utf-8")
    return {"Authorization": f"Basic {base64.b64encode(raw).decode('ascii')}"}


def build_authorization_url(authorize_url: str, params: dict[str, str]) -> str:
    return f"{authorize_url}?{urllib.parse.urlencode(params)}"


def parse_response_code(url: str, expected_state: str) -> str:
    """Extract the authorization code from the redirect URL.

    The ``state`` echoed by the provider must match the one sent with the
    authorize URL (RFC 6749 section 4.1).
    """
    parsed = urllib.parse.urlparse(url.strip())
    query = urllib.parse.parse_qs(parsed.query)

    if "error" in query:
        raise ProtocolRejection(
            query["error"][0],
            query.get("error_description", [None])[0],
        )

    state = query.get("state", [None])[0]
    if state != expected_state:
        LOGGER.error("Request state doesn't match the callback state")
        raise StateMismatchError(expected_state, state)

    code = query.get("code", [None])[0]
    if not code:
        raise ProtocolRejection("invalid_request", "Redirect URL has no code parameter.")
    return code


def looks_like_url(value: str) -> bool:
    parsed = urllib.parse.urlparse(value.strip())
    return bool(parsed.scheme and (parsed.netloc or parsed.query))


def _rejection_from_response(response: httpx.Response) -> ProtocolRejection:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return ProtocolRejection(
            payload["error"],
            payload.get("error_description"),
            status_code=response.status_code,
        )
    return ProtocolRejection(
        "invalid_request",
        response.text or response.reason_phrase,
        status_code=response.status_code,
    )


def parse_token_response(response: httpx.Response, request: TokenRequest) -> Token:
    if 400 <= response.status_code < 500:
        rejection = _rejection_from_response(response)
        LOGGER.warning("Token request (%s) rejected: %s", request.grant_type, rejection)
        raise rejection
    if response.status_code >= 300:
        raise ApiError(
            response.status_code,
            f"Token request failed with status {response.status_code}: {response.text}",
        )

    try:
        payload = response.json()
    except ValueError as error:
        raise ProtocolRejection("invalid_response", "Token response is not JSON.") from error
    if not isinstance(payload, dict):
        raise ProtocolRejection("invalid_response", "Token response must be a JSON object.")

    return Token.from_payload(payload, previous_refresh_token=request.previous_refresh_token)


def exchange_token(client: httpx.Client, token_url: str, request: TokenRequest) -> Token:
    LOGGER.info("Requesting token (grant_type=%s)", request.grant_type)
    try:
        response = client.post(token_url, data=request.form, headers=request.headers)
    except httpx.TransportError as error:
        raise TransportFailure(f"Token request failed: {error}") from error
    return parse_token_response(response, request)


async def aexchange_token(
    client: httpx.AsyncClient,
    token_url: str,
    request: TokenRequest,
) -> Token:
    LOGGER.info("Requesting token (grant_type=%s)", request.grant_type)
    try:
        response = await client.post(token_url, data=request.form, headers=request.headers)
    except httpx.TransportError as error:
        raise TransportFailure(f"Token request failed: {error}") from error
    return parse_token_response(response, request)
