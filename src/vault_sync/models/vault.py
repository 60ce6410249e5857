"""Domain models for vaults and their file trees."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from vault_sync.protocols import DirectoryHandle, FileHandle

PermissionState = Literal["granted", "prompt", "denied"]


@dataclass
class FileEntry:
    """A markdown file inside a vault."""

    handle: "FileHandle"
    name: str
    path: str
    last_modified: int
    size: int
    kind: Literal["file"] = "file"


@dataclass
class DirectoryEntry:
    """A directory that (transitively) contains markdown files."""

    handle: "DirectoryHandle"
    name: str
    path: str
    children: list["FileEntry | DirectoryEntry"] = field(default_factory=list)
    expanded: bool = False
    kind: Literal["directory"] = "directory"


Entry = FileEntry | DirectoryEntry


@dataclass
class Vault:
    """A user-granted directory tree tracked by the registry."""

    id: str
    handle: "DirectoryHandle"
    name: str
    entries: list[Entry] = field(default_factory=list)
    expanded: bool = True
    last_opened: int = 0


@dataclass(frozen=True)
class PersistedHandle:
    """A row of the persisted handle store."""

    vault_id: str
    name: str
    path: str
    granted: bool
    added_at: int
