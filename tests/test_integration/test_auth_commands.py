"""Integration tests for the ``auth`` and ``config`` command groups.

Commands run through the root Typer app with an isolated config directory
and the file credential backend. Bitbucket's ``/user`` endpoint is served by
an :class:`httpx.MockTransport`, and the OAuth token endpoint by patching
``httpx.post``.
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from bitbucket_cli import __version__
from bitbucket_cli.app import app
from bitbucket_cli.auth.credentials import ApiKeyCredential, OAuthCredential
from bitbucket_cli.auth.storage import FileBackend
from bitbucket_cli.client import BitbucketClient
from bitbucket_cli.config import load_config


GOOD_KEY = "ATATTgood-key"


class MockBitbucketApi:
    """Accepts one username / key pair and any bearer token in ``tokens``."""

    def __init__(self) -> None:
        self.valid = {ApiKeyCredential(username="alice", api_key=GOOD_KEY).auth_header()}
        self.requests: list[httpx.Request] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path != "/2.0/user":
            return httpx.Response(404)
        if request.headers.get("Authorization") not in self.valid:
            return httpx.Response(401)
        return httpx.Response(200, json={"username": "alice", "display_name": "Alice Example"})


@pytest.fixture
def api(monkeypatch: pytest.MonkeyPatch) -> MockBitbucketApi:
    mock_api = MockBitbucketApi()
    transport = httpx.MockTransport(mock_api.handle)

    class _MockedClient(BitbucketClient):
        def __init__(self, *args, **kwargs) -> None:  # noqa: ANN002, ANN003
            kwargs.setdefault("transport", transport)
            super().__init__(*args, **kwargs)

    monkeypatch.setattr("bitbucket_cli.client.BitbucketClient", _MockedClient)
    monkeypatch.setattr("bitbucket_cli.auth.api_key.BitbucketClient", _MockedClient)
    return mock_api


@pytest.fixture
def credentials_file(isolated_config: Path) -> Path:
    return isolated_config / "config" / "bitbucket" / "credentials.json"


def _token_response(json_data: dict) -> MagicMock:
    mock_resp = MagicMock(spec=httpx.Response)
    mock_resp.status_code = 200
    mock_resp.json.return_value = json_data
    return mock_resp


class TestRoot:
    def test_version(self, cli_runner) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_no_args_shows_help(self, cli_runner) -> None:
        result = cli_runner.invoke(app, [])
        assert "auth" in result.output
        assert "config" in result.output


class TestApiKeyLifecycle:
    def test_login_status_logout(self, cli_runner, isolated_config, api, credentials_file) -> None:
        result = cli_runner.invoke(
            app, ["--plain", "auth", "login", "--api-key", "-u", "alice"], input=f"{GOOD_KEY}\n"
        )
        assert result.exit_code == 0, result.output
        assert "Successfully authenticated as alice" in result.output
        assert FileBackend(credentials_file).retrieve() == ApiKeyCredential(
            username="alice", api_key=GOOD_KEY
        )
        assert load_config().username == "alice"

        result = cli_runner.invoke(app, ["--json", "auth", "status"])
        assert result.exit_code == 0, result.output
        status = json.loads(result.output[result.output.index("{"):result.output.rindex("}") + 1])
        assert status["authenticated"] is True
        assert status["type"] == "API Key"
        assert status["storage"] == "file"
        assert status["username"] == "alice"
        assert status["display_name"] == "Alice Example"

        result = cli_runner.invoke(app, ["auth", "logout"])
        assert result.exit_code == 0, result.output
        assert not credentials_file.exists()
        assert load_config().username is None

    def test_username_prompt(self, cli_runner, isolated_config, api) -> None:
        result = cli_runner.invoke(
            app, ["auth", "login", "--api-key"], input=f"alice\n{GOOD_KEY}\n"
        )
        assert result.exit_code == 0, result.output
        assert load_config().username == "alice"

    def test_api_key_is_default_without_oauth_consumer(self, cli_runner, isolated_config, api) -> None:
        result = cli_runner.invoke(app, ["auth", "login", "-u", "alice"], input=f"{GOOD_KEY}\n")
        assert result.exit_code == 0, result.output
        assert "Successfully authenticated" in result.output

    def test_rejected_key(self, cli_runner, isolated_config, api, credentials_file) -> None:
        result = cli_runner.invoke(
            app, ["auth", "login", "--api-key", "-u", "alice"], input="ATATTwrong\n"
        )
        assert result.exit_code == 3
        assert "401" in result.output
        assert not credentials_file.exists()
        assert load_config().username is None

    def test_relogin_requires_confirmation(self, cli_runner, isolated_config, api, credentials_file) -> None:
        FileBackend(credentials_file).store(OAuthCredential(access_token="existing"))
        result = cli_runner.invoke(
            app, ["auth", "login", "--api-key", "-u", "alice"], input="n\n"
        )
        assert result.exit_code == 0
        assert "Cancelled" in result.output
        assert FileBackend(credentials_file).retrieve() == OAuthCredential(access_token="existing")

    def test_force_replaces_credential(self, cli_runner, isolated_config, api, credentials_file) -> None:
        FileBackend(credentials_file).store(OAuthCredential(access_token="existing"))
        result = cli_runner.invoke(
            app, ["--force", "auth", "login", "--api-key", "-u", "alice"], input=f"{GOOD_KEY}\n"
        )
        assert result.exit_code == 0, result.output
        assert FileBackend(credentials_file).retrieve().is_api_key


class TestLoginOptions:
    def test_conflicting_flags(self, cli_runner, isolated_config) -> None:
        result = cli_runner.invoke(app, ["auth", "login", "--oauth", "--api-key"])
        assert result.exit_code == 2
        assert "mutually exclusive" in result.output

    def test_oauth_without_consumer(self, cli_runner, isolated_config) -> None:
        result = cli_runner.invoke(app, ["auth", "login", "--oauth"])
        assert result.exit_code == 1
        assert "No OAuth client id configured" in result.output

    def test_oauth_selected_when_consumer_configured(
        self, cli_runner, isolated_config, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("BITBUCKET_OAUTH_CLIENT_ID", "cid")
        monkeypatch.setenv("BITBUCKET_OAUTH_CLIENT_SECRET", "csec")
        calls: list[tuple] = []

        def _fake_authenticate(self, manager, callback_timeout=None, **kwargs):  # noqa: ANN001
            calls.append((self._client_id, self._client_secret, callback_timeout))
            return OAuthCredential(access_token="acc")

        monkeypatch.setattr("bitbucket_cli.auth.oauth.OAuthFlow.authenticate", _fake_authenticate)
        result = cli_runner.invoke(app, ["auth", "login", "--timeout", "42"])
        assert result.exit_code == 0, result.output
        assert calls == [("cid", "csec", 42.0)]


class TestStatus:
    def test_not_authenticated_is_not_an_error(self, cli_runner, isolated_config) -> None:
        result = cli_runner.invoke(app, ["--plain", "auth", "status"])
        assert result.exit_code == 0
        assert "authenticated\tFalse" in result.output

    def test_invalid_credentials_warn(self, cli_runner, isolated_config, api, credentials_file) -> None:
        FileBackend(credentials_file).store(ApiKeyCredential(username="alice", api_key="ATATTrevoked"))
        result = cli_runner.invoke(app, ["--plain", "auth", "status"])
        assert result.exit_code == 0
        assert "Credentials may be invalid" in result.output
        assert "authenticated\tTrue" in result.output

    def test_oauth_expiry_shown(self, cli_runner, isolated_config, api, credentials_file) -> None:
        api.valid.add("Bearer acc")
        FileBackend(credentials_file).store(
            OAuthCredential(access_token="acc", refresh_token="ref", expires_at=4_102_488_000)
        )
        result = cli_runner.invoke(app, ["--plain", "auth", "status"])
        assert result.exit_code == 0, result.output
        assert "type\tOAuth 2.0" in result.output
        assert "expires\t2100-01-01" in result.output

    def test_corrupt_credential_fails(self, cli_runner, isolated_config, credentials_file) -> None:
        credentials_file.parent.mkdir(parents=True, exist_ok=True)
        credentials_file.write_text("garbage")
        result = cli_runner.invoke(app, ["auth", "status"])
        assert result.exit_code == 8
        assert "corrupt" in result.output


class TestRefresh:
    def test_refresh_oauth(
        self, cli_runner, isolated_config, credentials_file, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("BITBUCKET_OAUTH_CLIENT_ID", "cid")
        monkeypatch.setenv("BITBUCKET_OAUTH_CLIENT_SECRET", "csec")
        FileBackend(credentials_file).store(OAuthCredential(access_token="old", refresh_token="ref"))

        mock_resp = _token_response({"access_token": "new", "expires_in": 7200})
        with patch("bitbucket_cli.auth.oauth.httpx.post", return_value=mock_resp) as mock_post:
            result = cli_runner.invoke(app, ["auth", "refresh"])

        assert result.exit_code == 0, result.output
        assert mock_post.call_args.kwargs["data"]["refresh_token"] == "ref"
        stored = FileBackend(credentials_file).retrieve()
        assert stored.access_token == "new"
        assert stored.refresh_token == "ref"

    def test_refresh_api_key(self, cli_runner, isolated_config, credentials_file) -> None:
        FileBackend(credentials_file).store(ApiKeyCredential(username="alice", api_key=GOOD_KEY))
        result = cli_runner.invoke(app, ["auth", "refresh"])
        assert result.exit_code == 3
        assert "only OAuth tokens can be refreshed" in result.output

    def test_refresh_not_logged_in(self, cli_runner, isolated_config) -> None:
        result = cli_runner.invoke(app, ["auth", "refresh"])
        assert result.exit_code == 3
        assert "Not authenticated" in result.output


class TestConfigCommands:
    def test_set_and_get(self, cli_runner, isolated_config) -> None:
        result = cli_runner.invoke(app, ["config", "set", "defaults.workspace", "team"])
        assert result.exit_code == 0, result.output

        result = cli_runner.invoke(app, ["config", "get", "defaults.workspace"])
        assert result.exit_code == 0
        assert result.output.strip().endswith("team")
        assert load_config().default_workspace == "team"

    def test_bool_coercion(self, cli_runner, isolated_config) -> None:
        result = cli_runner.invoke(app, ["config", "set", "display.color", "false"])
        assert result.exit_code == 0, result.output
        assert load_config().display.color is False

    def test_bad_bool(self, cli_runner, isolated_config) -> None:
        result = cli_runner.invoke(app, ["config", "set", "display.color", "maybe"])
        assert result.exit_code == 2

    @pytest.mark.parametrize("key", ["nope", "defaults.nope", "defaults", "oauth.client_id.x"])
    def test_unknown_keys(self, cli_runner, isolated_config, key: str) -> None:
        result = cli_runner.invoke(app, ["config", "get", key])
        assert result.exit_code == 2

    def test_show_json(self, cli_runner, isolated_config) -> None:
        result = cli_runner.invoke(app, ["--json", "config", "show"])
        assert result.exit_code == 0
        data = json.loads(result.output[result.output.index("{"):])
        assert data["defaults"]["branch"] == "main"

    def test_path(self, cli_runner, isolated_config) -> None:
        result = cli_runner.invoke(app, ["config", "path"])
        assert result.exit_code == 0
        assert result.output.strip().endswith("config.json")
