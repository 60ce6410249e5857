"""Tests for tab-to-file bindings."""

import sqlite3

import pytest

from vault_sync.core.tabs.bindings import TabBindings
from vault_sync.core.tabs.store import TabStore
from vault_sync.core.vaults.registry import VaultRegistry
from vault_sync.models.tabs import TabBinding
from vault_sync.models.vault import Vault
from tests.unit.fakes import FakeDirectoryHandle, FakeFileHandle


@pytest.fixture
def root() -> FakeDirectoryHandle:
    handle = FakeDirectoryHandle("Notes")
    handle.add_file("daily/today.md", "today", mtime=1_000)
    handle.add_file("ideas.markdown", "ideas", mtime=1_000)
    return handle


@pytest.fixture
def registry(conn: sqlite3.Connection) -> VaultRegistry:
    return VaultRegistry(conn)


@pytest.fixture
def vault(registry: VaultRegistry, root: FakeDirectoryHandle) -> Vault:
    vault = registry.add_vault(root)
    assert vault is not None
    return vault


@pytest.fixture
def tabs(conn: sqlite3.Connection) -> TabStore:
    return TabStore(conn)


@pytest.fixture
def bindings(tabs: TabStore, registry: VaultRegistry) -> TabBindings:
    return TabBindings(tabs, registry)


def _file(root: FakeDirectoryHandle, path: str) -> FakeFileHandle:
    *dirs, name = path.split("/")
    directory = root
    for part in dirs:
        directory = directory.get_directory_handle(part)
    return directory.get_file_handle(name)


def test_open_file_creates_bound_tab(bindings: TabBindings, tabs: TabStore, vault: Vault) -> None:
    tab = bindings.open_file(vault.id, "daily/today.md")

    assert tab.name == "today"
    assert tab.content == "today"
    assert tab.file_path == "daily/today.md"
    assert tabs.active_tab_id == tab.id
    assert bindings.binding(tab.id) == TabBinding(vault.id, "daily/today.md")
    assert bindings.tab_for(vault.id, "daily/today.md") == tab.id


def test_open_same_file_reuses_tab(bindings: TabBindings, tabs: TabStore, vault: Vault) -> None:
    first = bindings.open_file(vault.id, "daily/today.md")
    other = bindings.open_file(vault.id, "ideas.markdown")
    assert other.name == "ideas"
    assert tabs.active_tab_id == other.id

    again = bindings.open_file(vault.id, "daily/today.md")

    assert again.id == first.id
    assert tabs.active_tab_id == first.id
    assert len(tabs.tabs) == 2
    assert len(bindings) == 2


def test_save_active_tab_writes_file(
    bindings: TabBindings, tabs: TabStore, vault: Vault, root: FakeDirectoryHandle
) -> None:
    tab = bindings.open_file(vault.id, "daily/today.md")
    tabs.update_content(tab.id, "rewritten")

    assert bindings.save_active_tab()

    assert _file(root, "daily/today.md").data == b"rewritten"
    assert not bindings.check_external_change(tab.id)


def test_save_unbound_tab_is_noop(bindings: TabBindings, tabs: TabStore) -> None:
    assert not bindings.save_active_tab()
    tabs.add_tab("Scratch", "x")
    assert not bindings.save_active_tab()


def test_external_change_tolerance(
    bindings: TabBindings, vault: Vault, root: FakeDirectoryHandle
) -> None:
    tab = bindings.open_file(vault.id, "daily/today.md")
    handle = _file(root, "daily/today.md")

    handle.mtime = 2_000
    assert not bindings.check_external_change(tab.id)

    handle.mtime = 2_001
    assert bindings.check_external_change(tab.id)
    assert not bindings.check_external_change("tab-unbound")


def test_reload_from_disk(
    bindings: TabBindings, vault: Vault, root: FakeDirectoryHandle
) -> None:
    tab = bindings.open_file(vault.id, "daily/today.md")
    handle = _file(root, "daily/today.md")
    handle.data = b"changed elsewhere"
    handle.mtime = 10_000

    reloaded = bindings.reload_from_disk(tab.id)

    assert reloaded.content == "changed elsewhere"
    assert not bindings.check_external_change(tab.id)


def test_closing_tab_prunes_binding(bindings: TabBindings, tabs: TabStore, vault: Vault) -> None:
    tab = bindings.open_file(vault.id, "daily/today.md")

    tabs.close_tab(tab.id)

    assert len(bindings) == 0
    assert bindings.binding(tab.id) is None
    assert bindings.tab_for(vault.id, "daily/today.md") is None
    assert bindings.open_file(vault.id, "daily/today.md").id != tab.id


def test_unbind_vault(
    bindings: TabBindings, registry: VaultRegistry, vault: Vault
) -> None:
    other_root = FakeDirectoryHandle("Work")
    other_root.add_file("plan.md", "plan")
    other = registry.add_vault(other_root)
    assert other is not None
    bindings.open_file(vault.id, "daily/today.md")
    kept = bindings.open_file(other.id, "plan.md")

    assert bindings.unbind_vault(vault.id) == 1

    assert len(bindings) == 1
    assert bindings.tab_for(other.id, "plan.md") == kept.id
