"""Shared test fixtures."""

import sqlite3
import subprocess
from collections.abc import Iterator
from pathlib import Path

import pytest

from vault_sync.core.cloud.auth import USER_INFO_KEY, CloudAuth
from vault_sync.core.database.schema import create_schema, set_json
from vault_sync.core.storage.handles import LocalDirectoryHandle
from tests.unit.fakes import FakeDrive


@pytest.fixture
def conn() -> Iterator[sqlite3.Connection]:
    """Return an in-memory state database."""
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def vault_dir(tmp_path: Path) -> Path:
    """A small vault with markdown and non-markdown files."""
    root = tmp_path / "Notes"
    (root / "daily").mkdir(parents=True)
    (root / "attachments").mkdir()
    (root / ".obsidian").mkdir()
    (root / "index.md").write_text("# Index\n")
    (root / "daily" / "2024-05-01.md").write_text("today\n")
    (root / "attachments" / "image.png").write_bytes(b"\x89PNG")
    (root / ".obsidian" / "app.json").write_text("{}")
    return root


@pytest.fixture
def vault_handle(vault_dir: Path) -> LocalDirectoryHandle:
    return LocalDirectoryHandle(vault_dir)


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def signed_in_auth(conn: sqlite3.Connection, drive: FakeDrive) -> CloudAuth:
    """CloudAuth with a valid token and user, talking to ``drive``."""
    auth = CloudAuth(conn, deployment="test", drive_factory=lambda _token: drive)
    auth.save_token("access-123", 3600)
    set_json(conn, USER_INFO_KEY, drive.user.to_dict())
    assert auth.access_token == "access-123"
    return auth


@pytest.fixture
def bare_remote(tmp_path: Path) -> Path:
    """An empty bare repository usable as a local remote."""
    remote = tmp_path / "remote.git"
    subprocess.run(
        ["git", "init", "--bare", "-b", "main", str(remote)],
        check=True,
        capture_output=True,
    )
    return remote
