"""User-tunable cloud sync settings."""

import sqlite3
from dataclasses import replace
from typing import Any

from vault_sync.core.database.schema import get_json, set_json
from vault_sync.models.cloud import SyncSettings

SETTINGS_KEY = "md-viewer-settings"

MIN_SYNC_INTERVAL = 1
MAX_SYNC_INTERVAL = 60
MIN_RETENTION_DAYS = 1
MAX_RETENTION_DAYS = 30


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class SettingsStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def load(self) -> SyncSettings:
        stored = get_json(self.conn, SETTINGS_KEY)
        return SyncSettings.from_dict(stored) if stored else SyncSettings()

    def update(self, **changes: Any) -> SyncSettings:
        """Apply changes, clamping interval and retention to their ranges."""
        settings = replace(self.load(), **changes)
        settings = replace(
            settings,
            sync_interval_minutes=_clamp(
                settings.sync_interval_minutes, MIN_SYNC_INTERVAL, MAX_SYNC_INTERVAL
            ),
            backup_retention_days=_clamp(
                settings.backup_retention_days, MIN_RETENTION_DAYS, MAX_RETENTION_DAYS
            ),
        )
        set_json(self.conn, SETTINGS_KEY, settings.to_dict())
        return settings

    def reset(self) -> SyncSettings:
        settings = SyncSettings()
        set_json(self.conn, SETTINGS_KEY, settings.to_dict())
        return settings
