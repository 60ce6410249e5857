"""Directory and file handles backed by the local filesystem."""

import os
import shutil
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from loguru import logger

from vault_sync.errors import PermissionDeniedError
from vault_sync.models.vault import PermissionState
from vault_sync.protocols import FileInfo

# Asked when access has to be (re-)granted. Receives the directory path.
PermissionPrompt = Callable[[str], bool]


@dataclass
class _Grant:
    """Permission shared by a root handle and every handle derived from it."""

    granted: bool
    prompt: PermissionPrompt | None = None

    def check(self, path: Path) -> None:
        if not self.granted:
            msg = f"EPERM: permission revoked, {str(path)!r}"
            raise PermissionDeniedError(msg)


def _check_name(name: str) -> None:
    if name in ("", ".", "..") or "/" in name or "\\" in name:
        msg = f"Invalid entry name: {name!r}"
        raise ValueError(msg)


class LocalFileHandle:
    """Handle to one file on disk."""

    kind: Literal["file"] = "file"

    def __init__(self, path: Path, grant: _Grant) -> None:
        self.path = path
        self._grant = grant

    @property
    def name(self) -> str:
        return self.path.name

    def read_bytes(self) -> bytes:
        self._grant.check(self.path)
        return self.path.read_bytes()

    def write_bytes(self, data: bytes) -> None:
        self._grant.check(self.path)
        # Write to a sibling first so readers never see a half-written file.
        tmp = self.path.with_name(f".{self.path.name}.crswap")
        tmp.write_bytes(data)
        os.replace(tmp, self.path)

    def info(self) -> FileInfo:
        st = self.path.stat()
        return FileInfo(size=st.st_size, last_modified=int(st.st_mtime * 1000))

    def __repr__(self) -> str:
        return f"LocalFileHandle({str(self.path)!r})"


class LocalDirectoryHandle:
    """Handle to a directory tree on disk.

    The permission state models an explicit user grant on top of what the OS
    allows: a directory the process cannot read and write is ``denied``; a
    readable directory that was not (or no longer is) granted is ``prompt``.
    """

    kind: Literal["directory"] = "directory"

    def __init__(
        self,
        path: Path | str,
        *,
        granted: bool = True,
        prompt: PermissionPrompt | None = None,
        _grant: _Grant | None = None,
    ) -> None:
        self.path = Path(path).expanduser().resolve()
        self._grant = _grant or _Grant(granted=granted, prompt=prompt)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def location(self) -> str:
        return str(self.path)

    def _child(self, name: str) -> Path:
        _check_name(name)
        self._grant.check(self.path)
        return self.path / name

    def get_directory_handle(self, name: str, *, create: bool = False) -> "LocalDirectoryHandle":
        child = self._child(name)
        if child.is_file():
            raise NotADirectoryError(str(child))
        if not child.exists():
            if not create:
                raise FileNotFoundError(str(child))
            child.mkdir()
        return LocalDirectoryHandle(child, _grant=self._grant)

    def get_file_handle(self, name: str, *, create: bool = False) -> LocalFileHandle:
        child = self._child(name)
        if child.is_dir():
            raise IsADirectoryError(str(child))
        if not child.exists():
            if not create:
                raise FileNotFoundError(str(child))
            child.touch()
        return LocalFileHandle(child, self._grant)

    def remove_entry(self, name: str, *, recursive: bool = False) -> None:
        child = self._child(name)
        if child.is_dir() and not child.is_symlink():
            if recursive:
                shutil.rmtree(child)
            else:
                child.rmdir()
        else:
            child.unlink()

    def entries(self) -> Iterator[tuple[str, "LocalFileHandle | LocalDirectoryHandle"]]:
        self._grant.check(self.path)
        with os.scandir(self.path) as it:
            items = sorted(it, key=lambda e: e.name)
        for entry in items:
            child = Path(entry.path)
            if entry.is_dir():
                yield entry.name, LocalDirectoryHandle(child, _grant=self._grant)
            elif entry.is_file():
                yield entry.name, LocalFileHandle(child, self._grant)

    def _os_allows(self) -> bool:
        return self.path.is_dir() and os.access(self.path, os.R_OK | os.W_OK | os.X_OK)

    def query_permission(self) -> PermissionState:
        if not self._os_allows():
            return "denied"
        return "granted" if self._grant.granted else "prompt"

    def request_permission(self) -> PermissionState:
        state = self.query_permission()
        if state != "prompt":
            return state
        if self._grant.prompt is None:
            logger.debug("No permission prompt available for {}", self.path)
            return "prompt"
        if self._grant.prompt(str(self.path)):
            self._grant.granted = True
            return "granted"
        return "denied"

    def revoke_permission(self) -> None:
        self._grant.granted = False

    def __repr__(self) -> str:
        return f"LocalDirectoryHandle({str(self.path)!r})"
