"""Link editor tabs to vault files."""

from loguru import logger

from vault_sync.config import EXTERNAL_CHANGE_TOLERANCE_MS
from vault_sync.core.tabs.store import TabStore
from vault_sync.core.vaults.registry import VaultRegistry
from vault_sync.core.vaults.tree import strip_markdown_suffix
from vault_sync.models.tabs import Tab, TabBinding


class TabBindings:
    """Bidirectional tab id <-> (vault id, file path) map.

    Bindings live in memory only. They are pruned whenever the tab store
    reports a change of the tab set.
    """

    def __init__(self, tabs: TabStore, registry: VaultRegistry) -> None:
        self.tabs = tabs
        self.registry = registry
        self._by_tab: dict[str, TabBinding] = {}
        self._by_file: dict[TabBinding, str] = {}
        self._known_mtime: dict[str, int] = {}
        tabs.subscribe(lambda _tabs: self.prune())

    def binding(self, tab_id: str) -> TabBinding | None:
        return self._by_tab.get(tab_id)

    def tab_for(self, vault_id: str, file_path: str) -> str | None:
        return self._by_file.get(TabBinding(vault_id, file_path))

    def _bind(self, tab_id: str, binding: TabBinding, mtime: int) -> None:
        self._by_tab[tab_id] = binding
        self._by_file[binding] = tab_id
        self._known_mtime[tab_id] = mtime

    def _unbind(self, tab_id: str) -> None:
        binding = self._by_tab.pop(tab_id, None)
        if binding is not None:
            self._by_file.pop(binding, None)
        self._known_mtime.pop(tab_id, None)

    def open_file(self, vault_id: str, file_path: str) -> Tab:
        """Open a vault file in a tab, reusing the tab already bound to it."""
        existing = self.tab_for(vault_id, file_path)
        if existing is not None and self.tabs.get_tab(existing) is not None:
            self.tabs.set_active(existing)
            return self.tabs.get_tab(existing)  # type: ignore[return-value]

        content = self.registry.read_file(vault_id, file_path)
        mtime = self.registry.file_handle(vault_id, file_path).info().last_modified
        name = strip_markdown_suffix(file_path.rsplit("/", 1)[-1])
        tab = self.tabs.add_tab(name, content)
        tab.file_path = file_path
        self._bind(tab.id, TabBinding(vault_id, file_path), mtime)
        logger.debug("Opened {} in tab {}", file_path, tab.id)
        return tab

    def save_active_tab(self) -> bool:
        """Write the active tab back to its file; False when it is unbound."""
        tab = self.tabs.active_tab
        if tab is None:
            return False
        binding = self._by_tab.get(tab.id)
        if binding is None:
            return False
        self._known_mtime[tab.id] = self.registry.save_file(
            binding.vault_id, binding.file_path, tab.content
        )
        logger.info("Saved {}", binding.file_path)
        return True

    def check_external_change(self, tab_id: str) -> bool:
        """True if the bound file changed on disk since it was last read or written."""
        binding = self._by_tab.get(tab_id)
        if binding is None:
            return False
        current = self.registry.file_handle(binding.vault_id, binding.file_path).info()
        known = self._known_mtime.get(tab_id, 0)
        return current.last_modified - known > EXTERNAL_CHANGE_TOLERANCE_MS

    def reload_from_disk(self, tab_id: str) -> Tab:
        """Replace the tab content with the file content and accept its mtime."""
        binding = self._by_tab[tab_id]
        content = self.registry.read_file(binding.vault_id, binding.file_path)
        self.tabs.update_content(tab_id, content)
        handle = self.registry.file_handle(binding.vault_id, binding.file_path)
        self._known_mtime[tab_id] = handle.info().last_modified
        return self.tabs.get_tab(tab_id)  # type: ignore[return-value]

    def prune(self) -> int:
        """Drop bindings of tabs that no longer exist."""
        live = {t.id for t in self.tabs.tabs}
        stale = [tab_id for tab_id in self._by_tab if tab_id not in live]
        for tab_id in stale:
            self._unbind(tab_id)
        return len(stale)

    def unbind_vault(self, vault_id: str) -> int:
        """Drop all bindings into a removed vault."""
        stale = [tab_id for tab_id, b in self._by_tab.items() if b.vault_id == vault_id]
        for tab_id in stale:
            self._unbind(tab_id)
        return len(stale)

    def __len__(self) -> int:
        return len(self._by_tab)
