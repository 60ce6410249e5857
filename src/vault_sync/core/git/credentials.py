"""Git credentials and per-vault remote configuration.

Both live in the state database's ``metadata`` table as JSON. Status fields
are runtime-only: they are never written and reset to idle on every load.
"""

import sqlite3
import time
from dataclasses import replace
from typing import Any

from loguru import logger

from vault_sync.core.database.schema import delete_metadata, get_json, set_json
from vault_sync.models.git import (
    ACTIVE_SYNC_STATUSES,
    GitCredentials,
    GitRemoteConfig,
    SyncStatus,
    VaultGitConfig,
    VaultGitStatus,
)

CREDENTIALS_KEY = "md-viewer-git-credentials"
VAULT_CONFIGS_KEY = "md-viewer-vault-git-configs"


class GitStore:
    """Process-wide credential and remote-config store, loaded lazily."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self._loaded = False
        self._credentials: GitCredentials | None = None
        self._configs: dict[str, VaultGitConfig] = {}
        self._active_syncs: set[str] = set()

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        creds = get_json(self.conn, CREDENTIALS_KEY)
        self._credentials = GitCredentials.from_dict(creds) if creds else None
        raw_configs = get_json(self.conn, VAULT_CONFIGS_KEY) or {}
        self._configs = {
            vault_id: VaultGitConfig.from_dict(data) for vault_id, data in raw_configs.items()
        }
        self._loaded = True
        logger.debug("Loaded git config for {} vault(s)", len(self._configs))

    def _save_configs(self) -> None:
        set_json(
            self.conn,
            VAULT_CONFIGS_KEY,
            {vault_id: config.to_dict() for vault_id, config in self._configs.items()},
        )

    # --- credentials ---

    @property
    def credentials(self) -> GitCredentials | None:
        self._ensure_loaded()
        return self._credentials

    @property
    def has_credentials(self) -> bool:
        creds = self.credentials
        return bool(creds and creds.token)

    def set_credentials(self, credentials: GitCredentials) -> None:
        self._ensure_loaded()
        self._credentials = credentials
        set_json(self.conn, CREDENTIALS_KEY, credentials.to_dict())

    def clear_credentials(self) -> None:
        self._ensure_loaded()
        self._credentials = None
        delete_metadata(self.conn, CREDENTIALS_KEY)

    # --- vault configs ---

    def vault_config(self, vault_id: str, vault_name: str = "") -> VaultGitConfig:
        """Return the config for a vault, creating a default one if needed."""
        self._ensure_loaded()
        config = self._configs.get(vault_id)
        if config is None:
            config = VaultGitConfig(vault_id=vault_id, vault_name=vault_name)
            self._configs[vault_id] = config
        return config

    def find_config(self, vault_id: str) -> VaultGitConfig | None:
        self._ensure_loaded()
        return self._configs.get(vault_id)

    @property
    def configs(self) -> list[VaultGitConfig]:
        self._ensure_loaded()
        return list(self._configs.values())

    def update_status(self, vault_id: str, **changes: Any) -> None:
        config = self.find_config(vault_id)
        if config is not None:
            config.status = config.status.updated(**changes)

    def update_settings(self, vault_id: str, **changes: Any) -> None:
        config = self.find_config(vault_id)
        if config is not None:
            config.sync_settings = replace(config.sync_settings, **changes)
            self._save_configs()

    def set_remote(self, vault_id: str, url: str, name: str = "origin") -> None:
        config = self.find_config(vault_id)
        if config is not None:
            config.remote = GitRemoteConfig(name=name, url=url)
            self._save_configs()

    def clear_remote(self, vault_id: str) -> None:
        """Forget a vault's remote and reset its runtime status."""
        config = self.find_config(vault_id)
        if config is not None:
            config.remote = None
            config.status = VaultGitStatus()
            self._active_syncs.discard(vault_id)
            self._save_configs()

    def remove_config(self, vault_id: str) -> None:
        self._ensure_loaded()
        self._configs.pop(vault_id, None)
        self._active_syncs.discard(vault_id)
        self._save_configs()

    def save(self) -> None:
        self._ensure_loaded()
        self._save_configs()

    # --- sync status ---

    def set_sync_status(self, vault_id: str, status: SyncStatus) -> None:
        self.update_status(vault_id, sync_status=status)
        if status in ACTIVE_SYNC_STATUSES:
            self._active_syncs.add(vault_id)
        else:
            self._active_syncs.discard(vault_id)

    def set_error(self, vault_id: str, error: str | None) -> None:
        self.update_status(
            vault_id,
            error_message=error,
            sync_status=SyncStatus.ERROR if error else SyncStatus.IDLE,
        )
        self._active_syncs.discard(vault_id)

    def record_sync(self, vault_id: str) -> None:
        self.update_status(
            vault_id,
            last_sync_time=int(time.time() * 1000),
            sync_status=SyncStatus.IDLE,
            error_message=None,
        )
        self._active_syncs.discard(vault_id)

    def is_vault_syncing(self, vault_id: str) -> bool:
        return vault_id in self._active_syncs

    @property
    def is_syncing(self) -> bool:
        return bool(self._active_syncs)
