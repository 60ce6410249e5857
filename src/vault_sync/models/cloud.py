"""Domain models for cloud backup and sync."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any


@dataclass(frozen=True)
class GoogleUserInfo:
    email: str
    name: str
    picture: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"email": self.email, "name": self.name, "picture": self.picture}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GoogleUserInfo":
        return cls(email=data["email"], name=data.get("name", ""), picture=data.get("picture"))


@dataclass(frozen=True)
class RemoteFile:
    """Metadata of a file in the object store."""

    id: str
    name: str
    modified_time: datetime


@dataclass(frozen=True)
class BackupFile:
    id: str
    name: str
    date: str
    modified_time: datetime


@dataclass(frozen=True)
class CloudSyncStatus:
    is_connected: bool
    needs_reauthorization: bool
    is_syncing: bool
    last_sync_time: int | None
    error: str | None
    has_conflict: bool
    conflict_cloud_time: datetime | None
    auto_sync_paused: bool


class CloudUpdateCheck(StrEnum):
    UP_TO_DATE = "up-to-date"
    CLOUD_NEWER = "cloud-newer"
    NO_CLOUD_FILE = "no-cloud-file"
    ERROR = "error"


class StorageProvider(StrEnum):
    LOCAL = "local"
    GOOGLE = "google"


@dataclass(frozen=True)
class SyncSettings:
    """User-tunable cloud sync preferences."""

    provider: StorageProvider = StorageProvider.LOCAL
    auto_sync: bool = False
    sync_interval_minutes: int = 5
    backup_enabled: bool = False
    backup_retention_days: int = 7

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": str(self.provider),
            "autoSync": self.auto_sync,
            "syncIntervalMinutes": self.sync_interval_minutes,
            "backupEnabled": self.backup_enabled,
            "backupRetentionDays": self.backup_retention_days,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncSettings":
        default = cls()
        return cls(
            provider=StorageProvider(data.get("provider", default.provider)),
            auto_sync=bool(data.get("autoSync", default.auto_sync)),
            sync_interval_minutes=int(
                data.get("syncIntervalMinutes", default.sync_interval_minutes)
            ),
            backup_enabled=bool(data.get("backupEnabled", default.backup_enabled)),
            backup_retention_days=int(
                data.get("backupRetentionDays", default.backup_retention_days)
            ),
        )


# --- Tagged results ---


@dataclass(frozen=True)
class CloudSynced:
    file_id: str
    modified_time: datetime | None


@dataclass(frozen=True)
class CloudConflict:
    cloud_time: datetime


@dataclass(frozen=True)
class CloudFailed:
    error: str


@dataclass(frozen=True)
class CloudPaused:
    """Automatic sync is paused until a conflict is resolved."""


@dataclass(frozen=True)
class CloudNoData:
    """There is no canonical document in the cloud yet."""


@dataclass(frozen=True)
class BackupCreated:
    file_id: str
    name: str


CloudSyncResult = CloudSynced | CloudConflict | CloudFailed
AutoSyncResult = CloudSynced | CloudConflict | CloudFailed | CloudPaused
ManualBackupResult = BackupCreated | CloudConflict | CloudNoData | CloudFailed


@dataclass(frozen=True)
class AuthResult:
    """Outcome of processing an OAuth redirect."""

    success: bool
    cleaned_url: str
    user: GoogleUserInfo | None = None
    error: str | None = None
