"""Editor tab and folder records."""

from dataclasses import dataclass


@dataclass
class Tab:
    """An open document buffer."""

    id: str
    name: str
    content: str
    created_at: int
    folder_id: str | None = None
    file_path: str | None = None


@dataclass
class Folder:
    id: str
    name: str
    parent_id: str | None
    created_at: int
    expanded: bool = False


@dataclass(frozen=True)
class TabBinding:
    """Which vault file backs a tab."""

    vault_id: str
    file_path: str
