"""Fake implementations for testing the sync engines."""

import re
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from vault_sync.drive_api import FOLDER_MIME_TYPE, JSON_MIME_TYPE
from vault_sync.errors import DriveApiError, HostingApiError
from vault_sync.models.cloud import GoogleUserInfo, RemoteFile
from vault_sync.models.vault import PermissionState
from vault_sync.protocols import FileInfo

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


@dataclass
class DriveFile:
    id: str
    name: str
    mime_type: str
    parent_id: str | None
    content: str
    modified_time: datetime


def _unquote(value: str) -> str:
    return value.replace("\\'", "'").replace("\\\\", "\\")


class FakeDrive:
    """In-memory object store understanding the query subset the engine uses.

    Every write advances the store clock by one second. Records all calls.
    """

    def __init__(self, *, now: datetime = T0) -> None:
        self.files: dict[str, DriveFile] = {}
        self.now = now
        self.calls: list[str] = []
        self.errors: dict[str, Exception] = {}
        self.user = GoogleUserInfo(email="ada@example.com", name="Ada", picture=None)
        self._next_id = 0

    # --- test helpers ---

    def _tick(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now

    def _check(self, method: str) -> None:
        self.calls.append(method)
        if method in self.errors:
            raise self.errors[method]

    def add(
        self,
        name: str,
        content: str = "",
        *,
        parent_id: str | None = None,
        mime_type: str = JSON_MIME_TYPE,
        modified_time: datetime | None = None,
    ) -> str:
        self._next_id += 1
        file_id = f"file{self._next_id}"
        self.files[file_id] = DriveFile(
            id=file_id,
            name=name,
            mime_type=mime_type,
            parent_id=parent_id,
            content=content,
            modified_time=modified_time or self._tick(),
        )
        return file_id

    def touch(self, file_id: str, content: str | None = None) -> datetime:
        """Simulate another device changing a file."""
        f = self.files[file_id]
        if content is not None:
            f.content = content
        f.modified_time = self._tick()
        return f.modified_time

    def named(self, name: str) -> list[DriveFile]:
        return [f for f in self.files.values() if f.name == name]

    def children(self, parent_id: str) -> list[DriveFile]:
        return [f for f in self.files.values() if f.parent_id == parent_id]

    # --- DriveProtocol ---

    def find_files(self, query: str, *, order_by: str | None = None) -> list[RemoteFile]:
        self._check("find_files")
        result = list(self.files.values())
        if m := re.search(r"name='((?:[^'\\]|\\.)*)'", query):
            result = [f for f in result if f.name == _unquote(m.group(1))]
        if m := re.search(r"name contains '((?:[^'\\]|\\.)*)'", query):
            result = [f for f in result if _unquote(m.group(1)) in f.name]
        if m := re.search(r"mimeType='([^']*)'", query):
            result = [f for f in result if f.mime_type == m.group(1)]
        if m := re.search(r"'([^']*)' in parents", query):
            result = [f for f in result if f.parent_id == m.group(1)]
        if order_by == "name desc":
            result.sort(key=lambda f: f.name, reverse=True)
        return [RemoteFile(id=f.id, name=f.name, modified_time=f.modified_time) for f in result]

    def get_modified_time(self, file_id: str) -> datetime:
        self._check("get_modified_time")
        if file_id not in self.files:
            raise DriveApiError("Drive API error: 404", status=404)
        return self.files[file_id].modified_time

    def create_folder(self, name: str, parent_id: str | None = None) -> str:
        self._check("create_folder")
        return self.add(name, parent_id=parent_id, mime_type=FOLDER_MIME_TYPE)

    def create_file(self, name: str, content: str, parent_id: str | None = None) -> str:
        self._check("create_file")
        return self.add(name, content, parent_id=parent_id)

    def update_file(self, file_id: str, content: str) -> RemoteFile:
        self._check("update_file")
        f = self.files[file_id]
        self.touch(file_id, content)
        return RemoteFile(id=f.id, name=f.name, modified_time=f.modified_time)

    def get_content(self, file_id: str) -> str | None:
        self._check("get_content")
        f = self.files.get(file_id)
        return f.content if f else None

    def copy_file(self, file_id: str, name: str, parent_id: str) -> str:
        self._check("copy_file")
        return self.add(name, self.files[file_id].content, parent_id=parent_id)

    def delete_file(self, file_id: str) -> None:
        self._check("delete_file")
        del self.files[file_id]

    def fetch_user_info(self) -> GoogleUserInfo:
        self._check("fetch_user_info")
        return self.user


class FakeHostingApi:
    """In-memory GitHub: a set of repos with their branches."""

    def __init__(self, token: str = "token", *, login: str | None = "ada") -> None:
        self.token = token
        self.login = login
        self.repos: dict[tuple[str, str], list[str]] = {}
        self.created: list[tuple[str, bool]] = []
        self.fail = False

    def repo_exists(self, owner: str, repo: str) -> bool:
        if self.fail:
            raise HostingApiError("boom", status=500)
        return (owner, repo) in self.repos

    def create_repo(self, name: str, *, private: bool = True, description: str | None = None) -> str:
        self.repos[(self.login or "me", name)] = []
        self.created.append((name, private))
        return f"https://github.com/{self.login}/{name}.git"

    def list_branches(self, owner: str, repo: str) -> list[dict[str, Any]]:
        if self.fail or (owner, repo) not in self.repos:
            raise HostingApiError("Not Found", status=404)
        return [{"name": b} for b in self.repos[(owner, repo)]]

    def current_user_login(self) -> str | None:
        return self.login


class FakeFileHandle:
    kind: Literal["file"] = "file"

    def __init__(self, name: str, data: bytes = b"", mtime: int = 1_000) -> None:
        self._name = name
        self.data = data
        self.mtime = mtime

    @property
    def name(self) -> str:
        return self._name

    def read_bytes(self) -> bytes:
        return self.data

    def write_bytes(self, data: bytes) -> None:
        self.data = data
        self.mtime += 5_000

    def info(self) -> FileInfo:
        return FileInfo(size=len(self.data), last_modified=self.mtime)


class FakeDirectoryHandle:
    """In-memory directory tree with a scripted permission state."""

    kind: Literal["directory"] = "directory"

    def __init__(
        self,
        name: str,
        *,
        permission: PermissionState = "granted",
        grant_on_request: bool = True,
    ) -> None:
        self._name = name
        self.permission: PermissionState = permission
        self.grant_on_request = grant_on_request
        self.children: dict[str, "FakeFileHandle | FakeDirectoryHandle"] = {}
        self.permission_requests = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def location(self) -> str:
        return f"/fake/{self._name}"

    def add_file(self, path: str, content: str = "", mtime: int = 1_000) -> FakeFileHandle:
        *dirs, name = path.split("/")
        directory = self
        for part in dirs:
            directory = directory.get_directory_handle(part, create=True)
        handle = FakeFileHandle(name, content.encode(), mtime)
        directory.children[name] = handle
        return handle

    def get_directory_handle(self, name: str, *, create: bool = False) -> "FakeDirectoryHandle":
        child = self.children.get(name)
        if isinstance(child, FakeFileHandle):
            raise NotADirectoryError(name)
        if child is None:
            if not create:
                raise FileNotFoundError(name)
            child = FakeDirectoryHandle(name, permission=self.permission)
            self.children[name] = child
        return child

    def get_file_handle(self, name: str, *, create: bool = False) -> FakeFileHandle:
        child = self.children.get(name)
        if isinstance(child, FakeDirectoryHandle):
            raise IsADirectoryError(name)
        if child is None:
            if not create:
                raise FileNotFoundError(name)
            child = FakeFileHandle(name)
            self.children[name] = child
        return child

    def remove_entry(self, name: str, *, recursive: bool = False) -> None:
        child = self.children.get(name)
        if child is None:
            raise FileNotFoundError(name)
        if isinstance(child, FakeDirectoryHandle) and child.children and not recursive:
            raise OSError(f"Directory not empty: {name}")
        del self.children[name]

    def entries(self) -> Iterator[tuple[str, "FakeFileHandle | FakeDirectoryHandle"]]:
        yield from sorted(self.children.items())

    def query_permission(self) -> PermissionState:
        return self.permission

    def request_permission(self) -> PermissionState:
        self.permission_requests += 1
        if self.permission == "prompt":
            self.permission = "granted" if self.grant_on_request else "denied"
        return self.permission
