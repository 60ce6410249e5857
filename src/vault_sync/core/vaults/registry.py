"""Registry of user-granted vault directories.

Vaults are persisted in the ``vault_handles`` table and reconnected at
startup. Reconnection never prompts: a vault whose permission is not already
``granted`` stays pending until :meth:`VaultRegistry.request_vault_permission`
is called for it.
"""

import sqlite3
import time
import uuid
from collections.abc import Callable

from loguru import logger

from vault_sync.core.database.schema import (
    delete_handle,
    load_handles,
    save_handle,
    set_handle_granted,
)
from vault_sync.core.storage.handles import LocalDirectoryHandle, PermissionPrompt
from vault_sync.core.vaults.tree import (
    build_tree,
    expanded_paths,
    find_entry,
    is_markdown,
    iter_files,
)
from vault_sync.errors import EntryNotFoundError, PermissionDeniedError
from vault_sync.models.vault import DirectoryEntry, FileEntry, PersistedHandle, Vault
from vault_sync.protocols import DirectoryHandle, FileHandle

HandleFactory = Callable[[PersistedHandle], DirectoryHandle]


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_vault_id() -> str:
    return f"vault-{uuid.uuid4().hex}"


def local_handle_factory(prompt: PermissionPrompt | None = None) -> HandleFactory:
    """Recreate on-disk handles from the handle store."""

    def factory(persisted: PersistedHandle) -> DirectoryHandle:
        return LocalDirectoryHandle(persisted.path, granted=persisted.granted, prompt=prompt)

    return factory


def _split(path: str) -> tuple[list[str], str]:
    parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]
    if not parts:
        raise EntryNotFoundError(path)
    return parts[:-1], parts[-1]


class VaultRegistry:
    """Active vaults plus the persisted handles that could not be reconnected."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        handle_factory: HandleFactory | None = None,
    ) -> None:
        self.conn = conn
        self.handle_factory = handle_factory or local_handle_factory()
        self.vaults: list[Vault] = []
        self.error: str | None = None

    # --- lifecycle ---

    def add_vault(self, handle: DirectoryHandle) -> Vault | None:
        """Activate a newly picked directory. Returns None if it was refused."""
        if any(v.name == handle.name for v in self.vaults):
            self.error = f'A vault named "{handle.name}" is already open'
            logger.warning(self.error)
            return None
        if handle.query_permission() != "granted" and handle.request_permission() != "granted":
            self.error = f"Permission denied for {handle.name}"
            logger.warning(self.error)
            return None

        vault = Vault(
            id=new_vault_id(),
            handle=handle,
            name=handle.name,
            entries=build_tree(handle),
            last_opened=_now_ms(),
        )
        save_handle(self.conn, vault.id, vault.name, handle.location)
        self.vaults.append(vault)
        self.error = None
        logger.info("Added vault {} ({})", vault.name, vault.id)
        return vault

    def reconnect_all(self) -> list[Vault]:
        """Activate every persisted vault that still has permission."""
        active_ids = {v.id for v in self.vaults}
        for persisted in load_handles(self.conn):
            if persisted.vault_id in active_ids:
                continue
            try:
                handle = self.handle_factory(persisted)
                state = handle.query_permission()
                if state != "granted":
                    logger.info("Vault {} needs permission ({})", persisted.name, state)
                    continue
                self.vaults.append(
                    Vault(
                        id=persisted.vault_id,
                        handle=handle,
                        name=persisted.name,
                        entries=build_tree(handle),
                        last_opened=_now_ms(),
                    )
                )
            except OSError as e:
                logger.warning("Could not reconnect vault {}: {}", persisted.name, e)
        return list(self.vaults)

    def pending_vaults(self) -> list[PersistedHandle]:
        """Persisted vaults that are not active in this session."""
        active_ids = {v.id for v in self.vaults}
        return [p for p in load_handles(self.conn) if p.vault_id not in active_ids]

    def request_vault_permission(self, vault_id: str) -> Vault | None:
        """Explicitly re-grant access to a pending vault."""
        existing = self.get_vault(vault_id)
        if existing is not None:
            return existing
        persisted = next((p for p in load_handles(self.conn) if p.vault_id == vault_id), None)
        if persisted is None:
            return None
        handle = self.handle_factory(persisted)
        if handle.request_permission() != "granted":
            self.error = f"Permission denied for {persisted.name}"
            return None
        set_handle_granted(self.conn, vault_id, True)
        vault = Vault(
            id=vault_id,
            handle=handle,
            name=persisted.name,
            entries=build_tree(handle),
            last_opened=_now_ms(),
        )
        self.vaults.append(vault)
        self.error = None
        return vault

    def remove_vault(self, vault_id: str) -> bool:
        before = len(self.vaults)
        self.vaults = [v for v in self.vaults if v.id != vault_id]
        delete_handle(self.conn, vault_id)
        return len(self.vaults) != before

    def refresh_vault(self, vault_id: str) -> Vault:
        vault = self._require(vault_id)
        vault.entries = build_tree(vault.handle, expanded=expanded_paths(vault.entries))
        return vault

    # --- lookups ---

    def get_vault(self, vault_id: str) -> Vault | None:
        return next((v for v in self.vaults if v.id == vault_id), None)

    def _require(self, vault_id: str) -> Vault:
        vault = self.get_vault(vault_id)
        if vault is None:
            msg = f"Unknown vault: {vault_id}"
            raise KeyError(msg)
        return vault

    def find_file_by_path(self, vault_id: str, path: str) -> FileEntry | None:
        vault = self.get_vault(vault_id)
        if vault is None:
            return None
        entry = find_entry(vault.entries, path)
        return entry if isinstance(entry, FileEntry) else None

    def all_markdown_files(self) -> list[tuple[Vault, FileEntry]]:
        return [(v, f) for v in self.vaults for f in iter_files(v.entries)]

    def toggle_directory_expanded(self, vault_id: str, path: str) -> bool:
        entry = find_entry(self._require(vault_id).entries, path)
        if not isinstance(entry, DirectoryEntry):
            return False
        entry.expanded = not entry.expanded
        return entry.expanded

    def toggle_vault_expanded(self, vault_id: str) -> bool:
        vault = self._require(vault_id)
        vault.expanded = not vault.expanded
        return vault.expanded

    # --- file I/O ---

    def file_handle(self, vault_id: str, path: str, *, create: bool = False) -> FileHandle:
        """Resolve ``path`` inside a vault to a file handle."""
        vault = self._require(vault_id)
        directories, name = _split(path)
        directory = vault.handle
        try:
            for part in directories:
                directory = directory.get_directory_handle(part, create=create)
            return directory.get_file_handle(name, create=create)
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError) as e:
            raise EntryNotFoundError(path) from e
        except PermissionError as e:
            raise PermissionDeniedError(f"EPERM: {path}") from e

    def read_file(self, vault_id: str, path: str) -> str:
        return self.file_handle(vault_id, path).read_bytes().decode("utf-8")

    def save_file(self, vault_id: str, path: str, content: str) -> int:
        """Write ``content`` and return the new mtime (epoch ms)."""
        handle = self.file_handle(vault_id, path, create=True)
        handle.write_bytes(content.encode("utf-8"))
        return handle.info().last_modified

    def create_file(self, vault_id: str, path: str, content: str = "") -> str:
        """Create a markdown file (``.md`` appended if missing); returns its path."""
        if not is_markdown(path):
            path = f"{path}.md"
        self.save_file(vault_id, path, content)
        self.refresh_vault(vault_id)
        return path
