"""Authorization flows for the Spotify accounts service.

Flows don't perform I/O. Each one turns its inputs into a ``TokenRequest``
that the client posts to the token endpoint, so the same flow objects work
with the blocking and the asyncio clients.
"""

from __future__ import annotations

import logging
from typing import Protocol

from auth import oauth2
from auth.credentials import Credentials, OAuth, join_scopes
from auth.errors import MissingVerifierError, NotRefreshableError
from auth.oauth2 import TokenRequest
from auth.token import Token
from spotkit.constants import AUTHORIZE_PATH, DEFAULT_AUTH_BASE_URL

LOGGER = logging.getLogger("spotkit.auth")

DEFAULT_AUTHORIZE_URL = DEFAULT_AUTH_BASE_URL + AUTHORIZE_PATH


class AuthFlow(Protocol):
    credentials: Credentials
    oauth: OAuth | None
    interactive: bool

    def token_request(self, *args: str) -> TokenRequest: ...

    def reauth_request(self, token: Token) -> TokenRequest: ...

    def refresh_request(self, token: Token) -> TokenRequest: ...


def _resolve_code(oauth: OAuth, code_or_url: str) -> str:
    # A full redirect URL is state-checked; a bare code is taken as is.
    if oauth2.looks_like_url(code_or_url):
        return oauth2.parse_response_code(code_or_url, oauth.state)
    return code_or_url.strip()


def _refresh_form(token: Token) -> dict[str, str]:
    if token.refresh_token is None:
        raise NotRefreshableError()
    return {
        "grant_type": oauth2.GRANT_REFRESH_TOKEN,
        "refresh_token": token.refresh_token,
    }


class ClientCredentialsFlow:
    """App-only access: no user context and no refresh credential."""

    interactive = False

    def __init__(self, credentials: Credentials) -> None:
        credentials.require_secret()
        self.credentials = credentials
        self.oauth = None

    def token_request(self) -> TokenRequest:
        return TokenRequest(
            grant_type=oauth2.GRANT_CLIENT_CREDENTIALS,
            form={"grant_type": oauth2.GRANT_CLIENT_CREDENTIALS},
            headers=oauth2.basic_auth_header(self.credentials.id, self.credentials.secret),
        )

    def reauth_request(self, token: Token) -> TokenRequest:
        # Re-authentication is just a new grant with the same credentials.
        return self.token_request()

    def refresh_request(self, token: Token) -> TokenRequest:
        raise NotRefreshableError(
            "Client credentials tokens have no refresh credential; request a new token instead."
        )


class AuthorizationCodeFlow:
    interactive = True

    def __init__(self, credentials: Credentials, oauth: OAuth) -> None:
        credentials.require_secret()
        self.credentials = credentials
        self.oauth = oauth

    def get_authorize_url(
        self,
        show_dialog: bool = False,
        *,
        authorize_url: str = DEFAULT_AUTHORIZE_URL,
    ) -> str:
        LOGGER.info("Building auth URL")
        params = {
            "client_id": self.credentials.id,
            "response_type": "code",
            "redirect_uri": self.oauth.redirect_uri,
            "scope": join_scopes(self.oauth.scopes),
            "state": self.oauth.state,
        }
        if show_dialog:
            params["show_dialog"] = "true"
        return oauth2.build_authorization_url(authorize_url, params)

    def parse_response_code(self, url: str) -> str:
        return oauth2.parse_response_code(url, self.oauth.state)

    def token_request(self, code_or_url: str) -> TokenRequest:
        code = _resolve_code(self.oauth, code_or_url)
        return TokenRequest(
            grant_type=oauth2.GRANT_AUTHORIZATION_CODE,
            form={
                "grant_type": oauth2.GRANT_AUTHORIZATION_CODE,
                "code": code,
                "redirect_uri": self.oauth.redirect_uri,
            },
            headers=oauth2.basic_auth_header(self.credentials.id, self.credentials.secret),
        )

    def refresh_request(self, token: Token) -> TokenRequest:
        return TokenRequest(
            grant_type=oauth2.GRANT_REFRESH_TOKEN,
            form=_refresh_form(token),
            headers=oauth2.basic_auth_header(self.credentials.id, self.credentials.secret),
            previous_refresh_token=token.refresh_token,
        )

    def reauth_request(self, token: Token) -> TokenRequest:
        return self.refresh_request(token)


class AuthorizationCodePkceFlow:
    """Authorization code flow bound to a locally held verifier.

    No client secret is needed. Every authorize URL carries a fresh verifier.
    The verifier stays pending until the client settles the code exchange,
    so an exchange that never reached the server can be retried.
    Spotify PKCE refresh tokens are single-use, rotated on every refresh.
    """

    interactive = True

    def __init__(self, credentials: Credentials, oauth: OAuth) -> None:
        self.credentials = credentials
        self.oauth = oauth
        self.verifier: str | None = None

    def get_authorize_url(
        self,
        verifier_length: int = oauth2.PKCE_MIN_LENGTH,
        *,
        authorize_url: str = DEFAULT_AUTHORIZE_URL,
    ) -> str:
        LOGGER.info("Generating PKCE codes")
        verifier = oauth2.generate_code_verifier(verifier_length)
        challenge = oauth2.generate_code_challenge(verifier)
        self.verifier = verifier

        params = {
            "client_id": self.credentials.id,
            "response_type": "code",
            "redirect_uri": self.oauth.redirect_uri,
            "code_challenge_method": "S256",
            "code_challenge": challenge,
            "state": self.oauth.state,
            "scope": join_scopes(self.oauth.scopes),
        }
        return oauth2.build_authorization_url(authorize_url, params)

    def parse_response_code(self, url: str) -> str:
        return oauth2.parse_response_code(url, self.oauth.state)

    def token_request(self, code_or_url: str) -> TokenRequest:
        if self.verifier is None:
            raise MissingVerifierError()
        code = _resolve_code(self.oauth, code_or_url)
        return TokenRequest(
            grant_type=oauth2.GRANT_AUTHORIZATION_CODE,
            form={
                "grant_type": oauth2.GRANT_AUTHORIZATION_CODE,
                "client_id": self.credentials.id,
                "code": code,
                "redirect_uri": self.oauth.redirect_uri,
                "code_verifier": self.verifier,
            },
        )

    def discard_verifier(self) -> None:
        self.verifier = None

    def refresh_request(self, token: Token) -> TokenRequest:
        form = _refresh_form(token)
        form["client_id"] = self.credentials.id
        return TokenRequest(
            grant_type=oauth2.GRANT_REFRESH_TOKEN,
            form=form,
            previous_refresh_token=token.refresh_token,
        )

    def reauth_request(self, token: Token) -> TokenRequest:
        return self.refresh_request(token)
