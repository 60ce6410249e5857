"""Tests for OAuth handling and persisted cloud state."""

import sqlite3
from datetime import UTC, datetime
from typing import Any
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from vault_sync.core.cloud.auth import OAUTH_PENDING_KEY, OAUTH_STATE_KEY, CloudAuth
from vault_sync.core.database.schema import get_metadata
from vault_sync.errors import AuthenticationError, DriveApiError
from tests.unit.fakes import FakeDrive


@pytest.fixture
def auth(conn: sqlite3.Connection, drive: FakeDrive) -> CloudAuth:
    auth = CloudAuth(conn, deployment="test", drive_factory=lambda _token: drive)
    auth.client_id = "client-123"
    return auth


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


def test_sign_in_requires_client_id(
    conn: sqlite3.Connection, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("vault_sync.core.cloud.auth.config.GOOGLE_CLIENT_ID", "")
    auth = CloudAuth(conn, deployment="test")
    with pytest.raises(AuthenticationError, match="Client ID"):
        auth.sign_in()
    assert auth.last_error == "Please set Google Client ID first"


def test_sign_in_builds_authorization_url(auth: CloudAuth, conn: sqlite3.Connection) -> None:
    url = auth.sign_in()

    params = _query(url)
    assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    assert params["client_id"] == "client-123"
    assert params["response_type"] == "token"
    assert params["prompt"] == "select_account"
    assert params["include_granted_scopes"] == "true"
    assert "https://www.googleapis.com/auth/drive.file" in params["scope"].split()
    assert params["state"] == get_metadata(conn, OAUTH_STATE_KEY)
    assert get_metadata(conn, OAUTH_PENDING_KEY) == "true"


def test_callback_stores_token_and_user(auth: CloudAuth, conn: sqlite3.Connection) -> None:
    state = _query(auth.sign_in())["state"]

    result = auth.handle_oauth_callback(
        f"http://localhost:8765/?x=1#access_token=tok&expires_in=3600&state={state}"
    )

    assert result.success
    assert result.cleaned_url == "http://localhost:8765/?x=1"
    assert result.user is not None and result.user.email == "ada@example.com"
    assert auth.access_token == "tok"
    assert auth.is_connected
    assert get_metadata(conn, OAUTH_STATE_KEY) is None
    assert get_metadata(conn, OAUTH_PENDING_KEY) is None


def test_callback_rejects_state_mismatch(auth: CloudAuth) -> None:
    auth.sign_in()

    result = auth.handle_oauth_callback("http://localhost:8765/#access_token=tok&state=forged")

    assert not result.success
    assert result.error == "OAuth state validation failed"
    assert auth.last_error == "OAuth state validation failed"
    assert auth.access_token is None


def test_callback_user_info_failure(auth: CloudAuth, drive: FakeDrive) -> None:
    state = _query(auth.sign_in())["state"]
    drive.errors["fetch_user_info"] = DriveApiError("nope", status=500)

    result = auth.handle_oauth_callback(f"http://localhost:8765/#access_token=tok&state={state}")

    assert not result.success
    assert result.error == "Failed to get user info"


def test_callback_provider_error(auth: CloudAuth) -> None:
    auth.sign_in()
    result = auth.handle_oauth_callback("http://localhost:8765/#error=access_denied")
    assert not result.success
    assert result.error == "Authorization failed: access_denied"
    assert result.cleaned_url == "http://localhost:8765/"


def test_expired_token_keeps_identity_and_file_reference(
    auth: CloudAuth, conn: sqlite3.Connection, drive: FakeDrive
) -> None:
    auth.save_auth("tok", 0, drive.user)
    auth.sync_file_id = "file1"

    reloaded = CloudAuth(conn, deployment="test")

    assert reloaded.access_token is None
    assert reloaded.user == drive.user
    assert reloaded.sync_file_id == "file1"
    assert reloaded.needs_reauthorization
    assert not reloaded.is_connected


def test_clear_token_only_versus_everything(auth: CloudAuth, drive: FakeDrive) -> None:
    auth.save_auth("tok", 3600, drive.user)
    auth.sync_file_id = "file1"
    auth.mark_conflict(datetime(2024, 5, 1, tzinfo=UTC))

    auth.clear(clear_all=False)
    assert auth.access_token is None
    assert auth.sync_file_id == "file1"
    assert auth.has_conflict

    auth.sign_out()
    assert auth.user is None
    assert auth.sync_file_id is None
    assert not auth.has_conflict
    assert not auth.auto_sync_paused


def test_cloud_state_is_per_deployment(conn: sqlite3.Connection) -> None:
    a = CloudAuth(conn, deployment="desktop")
    b = CloudAuth(conn, deployment="laptop")
    a.sync_file_id = "desktop-file"
    a.last_cloud_modified_time = datetime(2024, 5, 1, 12, tzinfo=UTC)

    assert b.sync_file_id is None
    assert b.last_cloud_modified_time is None
    assert get_metadata(conn, "md-viewer-google-sync-file-id-desktop") == "desktop-file"


def test_conflict_flags_survive_restart(auth: CloudAuth, conn: sqlite3.Connection) -> None:
    when = datetime(2024, 5, 1, 12, 30, tzinfo=UTC)
    auth.mark_conflict(when)

    reloaded = CloudAuth(conn, deployment="test")
    assert reloaded.has_conflict
    assert reloaded.auto_sync_paused
    assert reloaded.conflict_cloud_time == when

    reloaded.clear_conflict()
    assert not reloaded.has_conflict
    assert reloaded.conflict_cloud_time is None


def test_record_sync_clears_error(auth: CloudAuth) -> None:
    auth.last_error = "boom"
    auth.record_sync()
    assert auth.last_error is None
    assert auth.last_sync_time is not None


def _silent_session(fragment: str) -> MagicMock:
    """Session answering the prompt=none request with a redirect."""
    session = MagicMock()

    def get(url: str, **kwargs: Any) -> MagicMock:
        state = _query(url)["state"]
        response = MagicMock()
        response.headers = {
            "Location": f"http://localhost:8765/#{fragment.format(state=state)}"
        }
        return response

    session.get.side_effect = get
    return session


def test_silent_refresh_success(auth: CloudAuth) -> None:
    session = _silent_session("access_token=fresh&expires_in=3600&state={state}")

    assert auth.try_silent_refresh(session)

    assert auth.access_token == "fresh"
    kwargs = session.get.call_args.kwargs
    assert kwargs["allow_redirects"] is False
    assert kwargs["timeout"] == 5.0
    assert _query(session.get.call_args.args[0])["prompt"] == "none"


def test_silent_refresh_requires_matching_state(auth: CloudAuth) -> None:
    assert not auth.try_silent_refresh(_silent_session("access_token=x&state=other"))
    assert not auth.try_silent_refresh(_silent_session("error=interaction_required"))
    assert auth.access_token is None


def test_silent_refresh_network_error(auth: CloudAuth) -> None:
    session = MagicMock()
    session.get.side_effect = requests.Timeout("slow")
    assert not auth.try_silent_refresh(session)
