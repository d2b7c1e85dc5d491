"""Tests for API key login."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import httpx
import pytest

from bitbucket_cli.auth.api_key import ApiKeyLogin
from bitbucket_cli.auth.credentials import ApiKeyCredential
from bitbucket_cli.auth.manager import AuthManager
from bitbucket_cli.auth.storage import FileBackend
from bitbucket_cli.client import BitbucketClient
from bitbucket_cli.exceptions import AuthError, ConnectionError_, ServerError


def _client_factory(handler: Callable[[httpx.Request], httpx.Response]):
    transport = httpx.MockTransport(handler)
    return lambda credential: BitbucketClient(credential, transport=transport)


@pytest.fixture
def manager(tmp_path: Path) -> AuthManager:
    return AuthManager(FileBackend(tmp_path / "credentials.json"))


class TestApiKeyLogin:
    def test_valid_key_is_stored(self, manager: AuthManager, quiet_output) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"display_name": "Alice", "username": "alice"})

        login = ApiKeyLogin(manager, client_factory=_client_factory(handler))
        cred = login.authenticate("alice", "ATATTsecret")

        assert cred == ApiKeyCredential(username="alice", api_key="ATATTsecret")
        assert manager.get_credentials() == cred
        assert seen[0].url.path == "/2.0/user"
        assert seen[0].headers["Authorization"] == cred.auth_header()

    def test_whitespace_is_stripped(self, manager: AuthManager, quiet_output) -> None:
        login = ApiKeyLogin(
            manager,
            client_factory=_client_factory(lambda r: httpx.Response(200, json={})),
        )
        cred = login.authenticate("  alice ", "\tATATTsecret\n")
        assert cred.username == "alice"
        assert cred.api_key == "ATATTsecret"

    def test_rejected_key_is_not_stored(self, manager: AuthManager, quiet_output) -> None:
        login = ApiKeyLogin(
            manager,
            client_factory=_client_factory(lambda r: httpx.Response(401)),
        )
        with pytest.raises(AuthError, match="Possible causes"):
            login.authenticate("alice", "ATATTwrong")
        assert manager.get_credentials() is None

    def test_server_error_propagates(self, manager: AuthManager, quiet_output) -> None:
        login = ApiKeyLogin(
            manager,
            client_factory=_client_factory(lambda r: httpx.Response(503, text="down")),
        )
        with pytest.raises(ServerError):
            login.authenticate("alice", "ATATTsecret")
        assert manager.get_credentials() is None

    def test_network_error(self, manager: AuthManager, quiet_output) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no route to host", request=request)

        login = ApiKeyLogin(manager, client_factory=_client_factory(handler))
        with pytest.raises(ConnectionError_):
            login.authenticate("alice", "ATATTsecret")

    @pytest.mark.parametrize("username,key", [("", "ATATTx"), ("alice", "   ")])
    def test_empty_input(self, manager: AuthManager, username: str, key: str) -> None:
        login = ApiKeyLogin(
            manager,
            client_factory=_client_factory(lambda r: httpx.Response(200, json={})),
        )
        with pytest.raises(AuthError, match="cannot be empty"):
            login.authenticate(username, key)

    def test_unexpected_prefix_warns_but_continues(
        self, manager: AuthManager, plain_output, capsys
    ) -> None:
        login = ApiKeyLogin(
            manager,
            client_factory=_client_factory(lambda r: httpx.Response(200, json={})),
        )
        login.authenticate("alice", "legacy-app-password")
        err = capsys.readouterr().err
        assert "expected prefix" in err
        assert "It starts with: legac" in err
        assert manager.is_authenticated()
