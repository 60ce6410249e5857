"""Tabs and folders, persisted as one JSON document in the state database."""

import sqlite3
import time
import uuid
from collections.abc import Callable
from typing import Any

from loguru import logger

from vault_sync.config import DEFAULT_FONT_SIZE, MAX_FONT_SIZE, MIN_FONT_SIZE
from vault_sync.core.database.schema import get_json, set_json
from vault_sync.models.tabs import Folder, Tab

STORAGE_KEY = "markdown-mermaid-editor-data"

TabsListener = Callable[[list[Tab]], None]


def clamp_font_size(size: int) -> int:
    return max(MIN_FONT_SIZE, min(MAX_FONT_SIZE, size))


def _now_ms() -> int:
    return int(time.time() * 1000)


def tab_to_dict(tab: Tab) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": tab.id,
        "name": tab.name,
        "content": tab.content,
        "createdAt": tab.created_at,
        "folderId": tab.folder_id,
    }
    if tab.file_path is not None:
        data["filePath"] = tab.file_path
    return data


def tab_from_dict(data: dict[str, Any]) -> Tab:
    return Tab(
        id=data["id"],
        name=data.get("name", ""),
        content=data.get("content", ""),
        created_at=int(data.get("createdAt", 0)),
        folder_id=data.get("folderId"),
        file_path=data.get("filePath"),
    )


def folder_to_dict(folder: Folder) -> dict[str, Any]:
    return {
        "id": folder.id,
        "name": folder.name,
        "parentId": folder.parent_id,
        "createdAt": folder.created_at,
        "expanded": folder.expanded,
    }


def folder_from_dict(data: dict[str, Any]) -> Folder:
    return Folder(
        id=data["id"],
        name=data.get("name", ""),
        parent_id=data.get("parentId"),
        created_at=int(data.get("createdAt", 0)),
        expanded=bool(data.get("expanded", False)),
    )


class TabStore:
    """Open tabs, folders, the active tab and the editor font size."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.tabs: list[Tab] = []
        self.folders: list[Folder] = []
        self.active_tab_id: str | None = None
        self.font_size = DEFAULT_FONT_SIZE
        self._listeners: list[TabsListener] = []

    # --- serialization ---

    def to_dict(self) -> dict[str, Any]:
        return {
            "tabs": [tab_to_dict(t) for t in self.tabs],
            "folders": [folder_to_dict(f) for f in self.folders],
            "activeTabId": self.active_tab_id,
            "fontSize": self.font_size,
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        """Replace state from a serialized document.

        Raises ValueError if ``tabs`` is not a list or ``fontSize`` is not a
        number.
        """
        tabs = data.get("tabs")
        if not isinstance(tabs, list):
            msg = "Invalid tab data: 'tabs' must be a list"
            raise ValueError(msg)
        font_size = data.get("fontSize", DEFAULT_FONT_SIZE)
        if isinstance(font_size, bool) or not isinstance(font_size, int | float):
            msg = "Invalid tab data: 'fontSize' must be a number"
            raise ValueError(msg)

        self.tabs = [tab_from_dict(t) for t in tabs]
        self.folders = [folder_from_dict(f) for f in data.get("folders") or []]
        self.font_size = clamp_font_size(int(font_size))
        active = data.get("activeTabId")
        if not any(t.id == active for t in self.tabs):
            active = self.tabs[0].id if self.tabs else None
        self.active_tab_id = active
        self._notify()

    def load(self) -> bool:
        """Load persisted state; returns False if nothing was stored."""
        data = get_json(self.conn, STORAGE_KEY)
        if data is None:
            return False
        self.load_dict(data)
        logger.debug("Loaded {} tabs", len(self.tabs))
        return True

    def save(self) -> None:
        set_json(self.conn, STORAGE_KEY, self.to_dict())

    # --- listeners ---

    def subscribe(self, listener: TabsListener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in self._listeners:
            listener(self.tabs)

    # --- operations ---

    def get_tab(self, tab_id: str) -> Tab | None:
        return next((t for t in self.tabs if t.id == tab_id), None)

    @property
    def active_tab(self) -> Tab | None:
        return self.get_tab(self.active_tab_id) if self.active_tab_id else None

    def add_tab(self, name: str, content: str = "", *, folder_id: str | None = None) -> Tab:
        tab = Tab(
            id=f"tab-{uuid.uuid4().hex}",
            name=name,
            content=content,
            created_at=_now_ms(),
            folder_id=folder_id,
        )
        self.tabs.append(tab)
        self.active_tab_id = tab.id
        self._notify()
        return tab

    def close_tab(self, tab_id: str) -> bool:
        index = next((i for i, t in enumerate(self.tabs) if t.id == tab_id), None)
        if index is None:
            return False
        del self.tabs[index]
        if self.active_tab_id == tab_id:
            neighbour = self.tabs[min(index, len(self.tabs) - 1)] if self.tabs else None
            self.active_tab_id = neighbour.id if neighbour else None
        self._notify()
        return True

    def set_active(self, tab_id: str) -> None:
        if self.get_tab(tab_id) is None:
            msg = f"Unknown tab: {tab_id}"
            raise KeyError(msg)
        self.active_tab_id = tab_id

    def update_content(self, tab_id: str, content: str) -> None:
        tab = self.get_tab(tab_id)
        if tab is None:
            msg = f"Unknown tab: {tab_id}"
            raise KeyError(msg)
        tab.content = content

    def add_folder(self, name: str, parent_id: str | None = None) -> Folder:
        folder = Folder(
            id=f"folder-{uuid.uuid4().hex}",
            name=name,
            parent_id=parent_id,
            created_at=_now_ms(),
        )
        self.folders.append(folder)
        return folder

    def set_font_size(self, size: int) -> int:
        self.font_size = clamp_font_size(size)
        return self.font_size
