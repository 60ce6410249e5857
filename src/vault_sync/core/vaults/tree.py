"""Build the markdown-only entry tree of a vault."""

import re

from loguru import logger

from vault_sync.config import MARKDOWN_SUFFIXES
from vault_sync.models.vault import DirectoryEntry, Entry, FileEntry
from vault_sync.protocols import DirectoryHandle

_DIGITS = re.compile(r"(\d+)")


def natural_key(name: str) -> list[tuple[int, int | str]]:
    """Sort key comparing digit runs numerically, everything else case-insensitively."""
    return [
        (0, int(part)) if part.isdigit() else (1, part.casefold())
        for part in _DIGITS.split(name)
        if part
    ]


def is_markdown(name: str) -> bool:
    return name.lower().endswith(MARKDOWN_SUFFIXES)


def strip_markdown_suffix(name: str) -> str:
    lowered = name.lower()
    for suffix in MARKDOWN_SUFFIXES:
        if lowered.endswith(suffix):
            return name[: -len(suffix)]
    return name


def build_tree(
    directory: DirectoryHandle,
    base_path: str = "",
    expanded: frozenset[str] = frozenset(),
) -> list[Entry]:
    """Return the entries under ``directory``.

    Hidden entries are skipped; directories without any markdown file below
    them are pruned. Directories come first, each group in natural order.
    ``expanded`` holds directory paths whose expansion flag should be kept.
    """
    directories: list[DirectoryEntry] = []
    files: list[FileEntry] = []
    for name, handle in directory.entries():
        if name.startswith("."):
            continue
        path = f"{base_path}/{name}" if base_path else name
        if handle.kind == "directory":
            try:
                children = build_tree(handle, path, expanded)
            except OSError as e:
                logger.warning("Skipping unreadable directory {}: {}", path, e)
                continue
            if children:
                directories.append(
                    DirectoryEntry(
                        handle=handle,
                        name=name,
                        path=path,
                        children=children,
                        expanded=path in expanded,
                    )
                )
        elif is_markdown(name):
            info = handle.info()
            files.append(
                FileEntry(
                    handle=handle,
                    name=name,
                    path=path,
                    last_modified=info.last_modified,
                    size=info.size,
                )
            )
    directories.sort(key=lambda e: natural_key(e.name))
    files.sort(key=lambda e: natural_key(e.name))
    return [*directories, *files]


def iter_files(entries: list[Entry]) -> list[FileEntry]:
    """Flatten a tree into its files, depth first."""
    result: list[FileEntry] = []
    for entry in entries:
        if isinstance(entry, DirectoryEntry):
            result.extend(iter_files(entry.children))
        else:
            result.append(entry)
    return result


def find_entry(entries: list[Entry], path: str) -> Entry | None:
    for entry in entries:
        if entry.path == path:
            return entry
        if isinstance(entry, DirectoryEntry) and path.startswith(entry.path + "/"):
            return find_entry(entry.children, path)
    return None


def expanded_paths(entries: list[Entry]) -> frozenset[str]:
    """Paths of all expanded directories, so a rebuild can keep them open."""
    paths: set[str] = set()
    for entry in entries:
        if isinstance(entry, DirectoryEntry):
            if entry.expanded:
                paths.add(entry.path)
            paths |= expanded_paths(entry.children)
    return frozenset(paths)
