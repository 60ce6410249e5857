"""Protocols for dependency injection across the sync engines."""

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Protocol, runtime_checkable

from vault_sync.models.cloud import GoogleUserInfo, RemoteFile
from vault_sync.models.git import FileChange
from vault_sync.models.vault import PermissionState


@dataclass(frozen=True)
class FileInfo:
    """Size and modification time of a file, as reported by its handle."""

    size: int
    last_modified: int


@runtime_checkable
class FileHandle(Protocol):
    """Capability to read and write one file."""

    @property
    def name(self) -> str: ...

    @property
    def kind(self) -> Literal["file"]: ...

    def read_bytes(self) -> bytes:
        """Return the file contents."""
        ...

    def write_bytes(self, data: bytes) -> None:
        """Replace the file contents."""
        ...

    def info(self) -> FileInfo:
        """Return size and last-modified time (epoch ms)."""
        ...


@runtime_checkable
class DirectoryHandle(Protocol):
    """Capability granting access to one directory tree.

    Lookups of missing children raise ``FileNotFoundError``; a child of the
    wrong kind raises ``NotADirectoryError`` / ``IsADirectoryError``.
    """

    @property
    def name(self) -> str: ...

    @property
    def kind(self) -> Literal["directory"]: ...

    @property
    def location(self) -> str:
        """Stable string used to persist and later re-create the handle."""
        ...

    def get_directory_handle(self, name: str, *, create: bool = False) -> "DirectoryHandle": ...

    def get_file_handle(self, name: str, *, create: bool = False) -> FileHandle: ...

    def remove_entry(self, name: str, *, recursive: bool = False) -> None: ...

    def entries(self) -> Iterator[tuple[str, "FileHandle | DirectoryHandle"]]: ...

    def query_permission(self) -> PermissionState:
        """Report the current permission state without prompting."""
        ...

    def request_permission(self) -> PermissionState:
        """Ask for access, possibly prompting the user."""
        ...


@runtime_checkable
class HostingApiProtocol(Protocol):
    """Protocol for Git hosting API clients."""

    def repo_exists(self, owner: str, repo: str) -> bool: ...

    def create_repo(self, name: str, *, private: bool = True, description: str | None = None) -> str:
        """Create a repository and return its clone URL."""
        ...

    def list_branches(self, owner: str, repo: str) -> list[dict[str, Any]]: ...

    def current_user_login(self) -> str | None: ...


@runtime_checkable
class DriveProtocol(Protocol):
    """Protocol for the cloud object store used by the cloud engine."""

    def find_files(self, query: str, *, order_by: str | None = None) -> list[RemoteFile]: ...

    def get_modified_time(self, file_id: str) -> datetime: ...

    def create_folder(self, name: str, parent_id: str | None = None) -> str: ...

    def create_file(self, name: str, content: str, parent_id: str | None = None) -> str: ...

    def update_file(self, file_id: str, content: str) -> RemoteFile: ...

    def get_content(self, file_id: str) -> str | None:
        """Return file content, or None if the file no longer exists."""
        ...

    def copy_file(self, file_id: str, name: str, parent_id: str) -> str: ...

    def delete_file(self, file_id: str) -> None: ...

    def fetch_user_info(self) -> GoogleUserInfo: ...


class CommitMessageGenerator(Protocol):
    """Externally supplied commit message writer (for the "ai" style)."""

    def __call__(self, changes: list[FileChange], vault_name: str) -> str | None: ...
