"""Tests for the vault registry and handle persistence."""

import sqlite3
from pathlib import Path

import pytest

from vault_sync.core.database.schema import load_handles, set_handle_granted
from vault_sync.core.storage.handles import LocalDirectoryHandle
from vault_sync.core.vaults.registry import VaultRegistry
from vault_sync.errors import EntryNotFoundError
from vault_sync.models.vault import PersistedHandle
from tests.unit.fakes import FakeDirectoryHandle


def _fake_vault(name: str, **kwargs) -> FakeDirectoryHandle:
    handle = FakeDirectoryHandle(name, **kwargs)
    handle.add_file("README.md", f"# {name}")
    return handle


class FakeHandles:
    """Handle factory returning pre-built fakes by persisted location."""

    def __init__(self, *handles: FakeDirectoryHandle) -> None:
        self.by_location = {h.location: h for h in handles}

    def __call__(self, persisted: PersistedHandle) -> FakeDirectoryHandle:
        return self.by_location[persisted.path]


def test_add_vault_persists_handle(conn: sqlite3.Connection, vault_handle: LocalDirectoryHandle) -> None:
    registry = VaultRegistry(conn)

    vault = registry.add_vault(vault_handle)

    assert vault is not None
    assert vault.id.startswith("vault-")
    assert vault.name == "Notes"
    assert [e.path for e in vault.entries] == ["daily", "index.md"]
    [persisted] = load_handles(conn)
    assert persisted.vault_id == vault.id
    assert persisted.path == str(vault_handle.path)
    assert persisted.granted


def test_duplicate_name_is_refused(conn: sqlite3.Connection) -> None:
    registry = VaultRegistry(conn)
    registry.add_vault(_fake_vault("Notes"))

    assert registry.add_vault(_fake_vault("Notes")) is None
    assert registry.error == 'A vault named "Notes" is already open'
    assert len(registry.vaults) == 1
    assert len(load_handles(conn)) == 1


def test_add_vault_requests_permission(conn: sqlite3.Connection) -> None:
    registry = VaultRegistry(conn)
    asked = _fake_vault("Asked", permission="prompt")
    refused = _fake_vault("Refused", permission="prompt", grant_on_request=False)

    assert registry.add_vault(asked) is not None
    assert asked.permission_requests == 1

    assert registry.add_vault(refused) is None
    assert registry.error == "Permission denied for Refused"
    assert [v.name for v in registry.vaults] == ["Asked"]


def test_reconnect_never_prompts(conn: sqlite3.Connection) -> None:
    handles = [_fake_vault(name) for name in ("Work", "Home", "Archive")]
    first = VaultRegistry(conn)
    for h in handles:
        first.add_vault(h)
    handles[0].permission = "prompt"

    registry = VaultRegistry(conn, handle_factory=FakeHandles(*handles))
    active = registry.reconnect_all()

    assert [v.name for v in active] == ["Home", "Archive"]
    assert registry.error is None
    assert handles[0].permission_requests == 0
    assert [p.name for p in registry.pending_vaults()] == ["Work"]


def test_reconnect_keeps_ids_and_is_idempotent(conn: sqlite3.Connection) -> None:
    handle = _fake_vault("Work")
    original = VaultRegistry(conn).add_vault(handle)
    assert original is not None

    registry = VaultRegistry(conn, handle_factory=FakeHandles(handle))
    registry.reconnect_all()
    registry.reconnect_all()

    assert [v.id for v in registry.vaults] == [original.id]


def test_request_vault_permission(conn: sqlite3.Connection) -> None:
    handle = _fake_vault("Work")
    vault = VaultRegistry(conn).add_vault(handle)
    assert vault is not None
    handle.permission = "prompt"
    set_handle_granted(conn, vault.id, False)

    registry = VaultRegistry(conn, handle_factory=FakeHandles(handle))
    registry.reconnect_all()
    assert registry.vaults == []

    restored = registry.request_vault_permission(vault.id)

    assert restored is not None
    assert restored.id == vault.id
    assert handle.permission_requests == 1
    assert load_handles(conn)[0].granted
    assert registry.pending_vaults() == []
    assert registry.request_vault_permission("vault-unknown") is None


def test_revoked_local_vault_stays_pending(conn: sqlite3.Connection, vault_dir: Path) -> None:
    vault = VaultRegistry(conn).add_vault(LocalDirectoryHandle(vault_dir))
    assert vault is not None
    set_handle_granted(conn, vault.id, False)

    registry = VaultRegistry(conn)
    assert registry.reconnect_all() == []
    assert [p.vault_id for p in registry.pending_vaults()] == [vault.id]


def test_missing_local_directory_is_skipped(conn: sqlite3.Connection, tmp_path: Path) -> None:
    gone = tmp_path / "gone"
    gone.mkdir()
    (gone / "a.md").write_text("a")
    VaultRegistry(conn).add_vault(LocalDirectoryHandle(gone))
    (gone / "a.md").unlink()
    gone.rmdir()

    registry = VaultRegistry(conn)
    assert registry.reconnect_all() == []
    assert len(registry.pending_vaults()) == 1


def test_remove_vault(conn: sqlite3.Connection) -> None:
    registry = VaultRegistry(conn)
    vault = registry.add_vault(_fake_vault("Work"))
    assert vault is not None

    assert registry.remove_vault(vault.id)
    assert registry.vaults == []
    assert load_handles(conn) == []
    assert not registry.remove_vault(vault.id)


def test_file_io_and_create(conn: sqlite3.Connection, vault_handle: LocalDirectoryHandle) -> None:
    registry = VaultRegistry(conn)
    vault = registry.add_vault(vault_handle)
    assert vault is not None

    assert registry.read_file(vault.id, "daily/2024-05-01.md") == "today\n"
    mtime = registry.save_file(vault.id, "index.md", "# Changed\n")
    assert mtime == registry.file_handle(vault.id, "index.md").info().last_modified

    path = registry.create_file(vault.id, "projects/plan")
    assert path == "projects/plan.md"
    assert registry.find_file_by_path(vault.id, "projects/plan.md") is not None
    assert registry.create_file(vault.id, "x.markdown", "x") == "x.markdown"


def test_missing_file_raises_enoent(conn: sqlite3.Connection) -> None:
    registry = VaultRegistry(conn)
    vault = registry.add_vault(_fake_vault("Work"))
    assert vault is not None

    with pytest.raises(EntryNotFoundError):
        registry.read_file(vault.id, "nope/missing.md")
    with pytest.raises(EntryNotFoundError):
        registry.read_file(vault.id, "")
    with pytest.raises(KeyError):
        registry.read_file("vault-unknown", "README.md")


def test_lookup_and_toggles(conn: sqlite3.Connection, vault_handle: LocalDirectoryHandle) -> None:
    registry = VaultRegistry(conn)
    vault = registry.add_vault(vault_handle)
    registry.add_vault(_fake_vault("Other"))
    assert vault is not None

    assert registry.find_file_by_path(vault.id, "daily") is None
    assert registry.find_file_by_path("vault-unknown", "index.md") is None
    assert [f.path for _, f in registry.all_markdown_files()] == [
        "daily/2024-05-01.md",
        "index.md",
        "README.md",
    ]

    assert registry.toggle_directory_expanded(vault.id, "daily")
    registry.refresh_vault(vault.id)
    assert registry.toggle_directory_expanded(vault.id, "daily") is False
    assert registry.toggle_directory_expanded(vault.id, "index.md") is False

    assert registry.toggle_vault_expanded(vault.id) is False
    assert registry.toggle_vault_expanded(vault.id) is True
