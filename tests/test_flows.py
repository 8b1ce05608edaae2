import time
import urllib.parse

import httpx
import pytest

from auth.credentials import Credentials
from auth.errors import (
    ConfigError,
    MissingVerifierError,
    NotRefreshableError,
    ProtocolRejection,
    StateMismatchError,
)
from auth.flows import AuthorizationCodeFlow, AuthorizationCodePkceFlow, ClientCredentialsFlow
from auth.oauth2 import basic_auth_header, exchange_token, generate_code_challenge

from tests.spotify_helpers import TOKEN_URL, make_token, redirect_url


def _query(url: str) -> dict[str, str]:
    return dict(urllib.parse.parse_qsl(urllib.parse.urlparse(url).query))


def test_client_credentials_exchange(credentials) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"access_token": "abc", "expires_in": 3600})

    flow = ClientCredentialsFlow(credentials)
    before = time.time()
    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        token = exchange_token(client, TOKEN_URL, flow.token_request())

    assert token.access_token == "abc"
    assert token.scopes == frozenset()
    assert token.refresh_token is None
    assert token.is_expired(now=before + 3500) is False
    assert token.is_expired(now=before + 3600) is True

    request = seen[0]
    assert request.headers["authorization"] == basic_auth_header("client-id", "client-secret")[
        "Authorization"
    ]
    assert _query("?" + request.content.decode()) == {"grant_type": "client_credentials"}


def test_client_credentials_requires_secret() -> None:
    with pytest.raises(ConfigError):
        ClientCredentialsFlow(Credentials(id="client-id"))


def test_client_credentials_reauth_is_new_grant(credentials) -> None:
    flow = ClientCredentialsFlow(credentials)

    request = flow.reauth_request(make_token())

    assert request.form == {"grant_type": "client_credentials"}
    assert flow.interactive is False


def test_client_credentials_not_refreshable(credentials) -> None:
    with pytest.raises(NotRefreshableError):
        ClientCredentialsFlow(credentials).refresh_request(make_token())


def test_code_flow_authorize_url(credentials, oauth) -> None:
    flow = AuthorizationCodeFlow(credentials, oauth)

    query = _query(flow.get_authorize_url())

    assert query == {
        "client_id": "client-id",
        "response_type": "code",
        "redirect_uri": "http://localhost:8888/callback",
        "scope": "playlist-read-private user-read-private",
        "state": "state123",
    }


def test_code_flow_authorize_url_show_dialog(credentials, oauth) -> None:
    flow = AuthorizationCodeFlow(credentials, oauth)

    url = flow.get_authorize_url(True, authorize_url="http://localhost:9000/authorize")

    assert url.startswith("http://localhost:9000/authorize?")
    assert _query(url)["show_dialog"] == "true"


def test_code_flow_token_request_from_redirect(credentials, oauth) -> None:
    flow = AuthorizationCodeFlow(credentials, oauth)

    request = flow.token_request(redirect_url("code-1", "state123"))

    assert request.form == {
        "grant_type": "authorization_code",
        "code": "code-1",
        "redirect_uri": "http://localhost:8888/callback",
    }
    assert request.headers == basic_auth_header("client-id", "client-secret")


def test_code_flow_token_request_bare_code(credentials, oauth) -> None:
    flow = AuthorizationCodeFlow(credentials, oauth)

    assert flow.token_request(" code-1 \n").form["code"] == "code-1"


def test_code_flow_state_mismatch(credentials, oauth) -> None:
    flow = AuthorizationCodeFlow(credentials, oauth)

    with pytest.raises(StateMismatchError):
        flow.token_request(redirect_url("code-1", "forged"))


def test_code_flow_parse_response_code(credentials, oauth) -> None:
    flow = AuthorizationCodeFlow(credentials, oauth)

    assert flow.parse_response_code(redirect_url("code-1", "state123")) == "code-1"


def test_code_flow_refresh_request(credentials, oauth) -> None:
    flow = AuthorizationCodeFlow(credentials, oauth)

    request = flow.refresh_request(make_token(refresh_token="refresh-0"))

    assert request.form == {"grant_type": "refresh_token", "refresh_token": "refresh-0"}
    assert request.previous_refresh_token == "refresh-0"
    assert "Authorization" in request.headers
    assert flow.reauth_request(make_token(refresh_token="refresh-0")) == request


def test_code_flow_refresh_without_refresh_token(credentials, oauth) -> None:
    flow = AuthorizationCodeFlow(credentials, oauth)

    with pytest.raises(NotRefreshableError):
        flow.refresh_request(make_token())


def test_pkce_authorize_url_carries_challenge(oauth) -> None:
    flow = AuthorizationCodePkceFlow(Credentials(id="client-id"), oauth)

    query = _query(flow.get_authorize_url())

    assert query["code_challenge_method"] == "S256"
    assert query["code_challenge"] == generate_code_challenge(flow.verifier)
    assert query["state"] == "state123"
    assert "client_secret" not in query
    assert len(flow.verifier) == 43


def test_pkce_fresh_verifier_per_authorize_url(oauth) -> None:
    flow = AuthorizationCodePkceFlow(Credentials(id="client-id"), oauth)

    flow.get_authorize_url()
    first = flow.verifier
    flow.get_authorize_url(128)

    assert flow.verifier != first
    assert len(flow.verifier) == 128


def test_pkce_verifier_length_bounds(oauth) -> None:
    flow = AuthorizationCodePkceFlow(Credentials(id="client-id"), oauth)

    with pytest.raises(ValueError):
        flow.get_authorize_url(20)


def test_pkce_token_request_sends_verifier(oauth) -> None:
    flow = AuthorizationCodePkceFlow(Credentials(id="client-id"), oauth)
    flow.get_authorize_url()
    verifier = flow.verifier

    request = flow.token_request(redirect_url("code-1", "state123"))

    assert request.form == {
        "grant_type": "authorization_code",
        "client_id": "client-id",
        "code": "code-1",
        "redirect_uri": "http://localhost:8888/callback",
        "code_verifier": verifier,
    }
    assert request.headers == {}


def test_pkce_verifier_pending_until_discarded(oauth) -> None:
    flow = AuthorizationCodePkceFlow(Credentials(id="client-id"), oauth)
    flow.get_authorize_url()

    first = flow.token_request("code-1")
    second = flow.token_request("code-1")
    assert first.form["code_verifier"] == second.form["code_verifier"]

    flow.discard_verifier()
    with pytest.raises(MissingVerifierError):
        flow.token_request("code-1")


def test_pkce_token_request_without_authorize_url(oauth) -> None:
    flow = AuthorizationCodePkceFlow(Credentials(id="client-id"), oauth)

    with pytest.raises(MissingVerifierError):
        flow.token_request("code-1")


def test_pkce_refresh_request(oauth) -> None:
    flow = AuthorizationCodePkceFlow(Credentials(id="client-id"), oauth)

    request = flow.refresh_request(make_token(refresh_token="refresh-0"))

    assert request.form == {
        "grant_type": "refresh_token",
        "refresh_token": "refresh-0",
        "client_id": "client-id",
    }
    assert request.headers == {}


class PkceServer:
    """Authorization server that remembers the challenge bound to each code."""

    def __init__(self) -> None:
        self.challenges: dict[str, str] = {}

    def authorize(self, url: str, code: str) -> None:
        self.challenges[code] = _query(url)["code_challenge"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        form = _query("?" + request.content.decode())
        expected = self.challenges.pop(form["code"], None)
        if expected is None or generate_code_challenge(form["code_verifier"]) != expected:
            return httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "code_verifier was incorrect"},
            )
        return httpx.Response(
            200,
            json={"access_token": "pkce-access", "expires_in": 3600, "refresh_token": "r"},
        )


def test_pkce_exchange_with_matching_verifier(oauth) -> None:
    server = PkceServer()
    flow = AuthorizationCodePkceFlow(Credentials(id="client-id"), oauth)
    server.authorize(flow.get_authorize_url(), "code-1")

    with httpx.Client(transport=httpx.MockTransport(server.handler)) as client:
        token = exchange_token(client, TOKEN_URL, flow.token_request("code-1"))

    assert token.access_token == "pkce-access"


def test_pkce_exchange_with_wrong_verifier(oauth) -> None:
    server = PkceServer()
    flow = AuthorizationCodePkceFlow(Credentials(id="client-id"), oauth)
    server.authorize(flow.get_authorize_url(), "code-1")
    # A second authorize URL replaces the verifier bound to code-1.
    flow.get_authorize_url()

    with httpx.Client(transport=httpx.MockTransport(server.handler)) as client:
        with pytest.raises(ProtocolRejection) as excinfo:
            exchange_token(client, TOKEN_URL, flow.token_request("code-1"))

    assert excinfo.value.error == "invalid_grant"
