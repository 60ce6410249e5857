"""Tests for the Google Drive client."""

from datetime import UTC, datetime
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from vault_sync.drive_api import DriveClient, parse_drive_time, quote_query_value
from vault_sync.errors import DriveApiError


@pytest.fixture
def client_with_mock_session() -> tuple[DriveClient, MagicMock]:
    with patch("vault_sync.drive_api.requests.Session") as mock_session_cls:
        mock_session = MagicMock()
        mock_session.headers = {}
        mock_session_cls.return_value = mock_session
        client = DriveClient("drive-token")
    return client, mock_session


def _make_response(status: int = 200, data: Any = None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.json.return_value = data
    response.text = text
    return response


def test_parse_drive_time() -> None:
    assert parse_drive_time("2024-05-01T10:00:00.000Z") == datetime(2024, 5, 1, 10, tzinfo=UTC)


def test_quote_query_value() -> None:
    assert quote_query_value("MD Viewer Data [Bob's]") == "MD Viewer Data [Bob\\'s]"


def test_bearer_header(client_with_mock_session: tuple[DriveClient, MagicMock]) -> None:
    _, session = client_with_mock_session
    assert session.headers["Authorization"] == "Bearer drive-token"


def test_find_files(client_with_mock_session: tuple[DriveClient, MagicMock]) -> None:
    client, session = client_with_mock_session
    session.request.return_value = _make_response(
        data={"files": [{"id": "f1", "name": "data.json", "modifiedTime": "2024-05-01T10:00:00Z"}]}
    )

    files = client.find_files("name='data.json'", order_by="name desc")

    assert [f.id for f in files] == ["f1"]
    assert files[0].modified_time == datetime(2024, 5, 1, 10, tzinfo=UTC)
    params = session.request.call_args.kwargs["params"]
    assert params["q"] == "name='data.json'"
    assert params["orderBy"] == "name desc"


def test_error_status_raises(client_with_mock_session: tuple[DriveClient, MagicMock]) -> None:
    client, session = client_with_mock_session
    session.request.return_value = _make_response(401, text="Invalid Credentials")
    with pytest.raises(DriveApiError) as exc_info:
        client.get_modified_time("f1")
    assert exc_info.value.status == 401


def test_get_content_missing_file_is_none(
    client_with_mock_session: tuple[DriveClient, MagicMock],
) -> None:
    client, session = client_with_mock_session
    session.request.return_value = _make_response(404, text="not found")
    assert client.get_content("gone") is None


def test_create_file_sends_multipart_body(
    client_with_mock_session: tuple[DriveClient, MagicMock],
) -> None:
    client, session = client_with_mock_session
    session.request.return_value = _make_response(data={"id": "new"})

    assert client.create_file("data.json", '{"tabs": []}', "folder1") == "new"

    kwargs = session.request.call_args.kwargs
    assert kwargs["params"]["uploadType"] == "multipart"
    assert kwargs["headers"]["Content-Type"].startswith("multipart/related; boundary=")
    body = kwargs["data"].decode()
    assert '"parents": ["folder1"]' in body
    assert '{"tabs": []}' in body


def test_update_file_returns_remote_file(
    client_with_mock_session: tuple[DriveClient, MagicMock],
) -> None:
    client, session = client_with_mock_session
    session.request.return_value = _make_response(
        data={"id": "f1", "name": "data.json", "modifiedTime": "2024-05-02T00:00:00Z"}
    )
    updated = client.update_file("f1", "{}")
    assert updated.modified_time == datetime(2024, 5, 2, tzinfo=UTC)
    assert session.request.call_args.args[0] == "PATCH"


def test_copy_file(client_with_mock_session: tuple[DriveClient, MagicMock]) -> None:
    client, session = client_with_mock_session
    session.request.return_value = _make_response(data={"id": "copy1"})
    assert client.copy_file("f1", "backup-2024-05-01.json", "backups") == "copy1"
    assert session.request.call_args.kwargs["json"] == {
        "name": "backup-2024-05-01.json",
        "parents": ["backups"],
    }


def test_fetch_user_info(client_with_mock_session: tuple[DriveClient, MagicMock]) -> None:
    client, session = client_with_mock_session
    session.request.return_value = _make_response(
        data={"email": "ada@example.com", "name": "Ada", "picture": "p.png"}
    )
    user = client.fetch_user_info()
    assert user.email == "ada@example.com"
    assert user.picture == "p.png"
