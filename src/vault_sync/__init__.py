"""Git and Google Drive sync for markdown vaults."""

from vault_sync.core.cloud.engine import CloudSyncEngine
from vault_sync.core.git.engine import GitSyncEngine
from vault_sync.core.storage.fs_adapter import StorageAdapter
from vault_sync.core.vaults.registry import VaultRegistry

__all__ = ["CloudSyncEngine", "GitSyncEngine", "StorageAdapter", "VaultRegistry"]
