"""Domain models for Git synchronization."""

from dataclasses import asdict, dataclass, field, replace
from enum import StrEnum
from typing import Any


class SyncStatus(StrEnum):
    IDLE = "idle"
    SYNCING = "syncing"
    PULLING = "pulling"
    PUSHING = "pushing"
    COMMITTING = "committing"
    ERROR = "error"
    CONFLICT = "conflict"


# Statuses that mean an operation is in flight for the vault.
ACTIVE_SYNC_STATUSES = frozenset(
    {SyncStatus.SYNCING, SyncStatus.PULLING, SyncStatus.PUSHING, SyncStatus.COMMITTING}
)


class CommitMessageStyle(StrEnum):
    AI = "ai"
    SMART = "smart"
    TIMESTAMP = "timestamp"
    CUSTOM = "custom"


class ForeignGitMode(StrEnum):
    """How to coexist with a Git plugin that also manages the vault."""

    AUTO = "auto"
    FULL = "full"
    PULL_ONLY = "pull-only"


class FileChangeStatus(StrEnum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class GitCredentials:
    """Token and commit author, shared by all vaults."""

    token: str
    user_name: str = ""
    user_email: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"token": self.token, "userName": self.user_name, "userEmail": self.user_email}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GitCredentials":
        return cls(
            token=data["token"],
            user_name=data.get("userName", ""),
            user_email=data.get("userEmail", ""),
        )


@dataclass(frozen=True)
class GitRemoteConfig:
    name: str
    url: str


@dataclass(frozen=True)
class GitSyncSettings:
    auto_sync_enabled: bool = False
    auto_sync_interval: int = 5
    auto_pull_on_startup: bool = False
    commit_message_style: CommitMessageStyle = CommitMessageStyle.SMART
    commit_message_template: str = "vault backup: {{date}}"
    foreign_git_mode: ForeignGitMode = ForeignGitMode.AUTO

    def to_dict(self) -> dict[str, Any]:
        return {
            "autoSyncEnabled": self.auto_sync_enabled,
            "autoSyncInterval": self.auto_sync_interval,
            "autoPullOnStartup": self.auto_pull_on_startup,
            "commitMessageStyle": str(self.commit_message_style),
            "commitMessageTemplate": self.commit_message_template,
            "obsidianGitMode": str(self.foreign_git_mode),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GitSyncSettings":
        default = cls()
        return cls(
            auto_sync_enabled=bool(data.get("autoSyncEnabled", default.auto_sync_enabled)),
            auto_sync_interval=int(data.get("autoSyncInterval", default.auto_sync_interval)),
            auto_pull_on_startup=bool(
                data.get("autoPullOnStartup", default.auto_pull_on_startup)
            ),
            commit_message_style=CommitMessageStyle(
                data.get("commitMessageStyle", default.commit_message_style)
            ),
            commit_message_template=data.get(
                "commitMessageTemplate", default.commit_message_template
            ),
            foreign_git_mode=ForeignGitMode(data.get("obsidianGitMode", default.foreign_git_mode)),
        )


@dataclass(frozen=True)
class VaultGitStatus:
    """Derived repository state. Recomputed on demand, never persisted."""

    is_git_repo: bool = False
    has_remote: bool = False
    current_branch: str | None = None
    changed_files_count: int = 0
    has_unpushed_commits: bool = False
    last_sync_time: int | None = None
    sync_status: SyncStatus = SyncStatus.IDLE
    error_message: str | None = None
    has_foreign_git_plugin: bool = False

    def updated(self, **changes: Any) -> "VaultGitStatus":
        return replace(self, **changes)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class VaultGitConfig:
    vault_id: str
    vault_name: str
    remote: GitRemoteConfig | None = None
    sync_settings: GitSyncSettings = field(default_factory=GitSyncSettings)
    status: VaultGitStatus = field(default_factory=VaultGitStatus)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage, without the derived status."""
        return {
            "vaultId": self.vault_id,
            "vaultName": self.vault_name,
            "remote": {"name": self.remote.name, "url": self.remote.url} if self.remote else None,
            "syncSettings": self.sync_settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VaultGitConfig":
        remote = data.get("remote")
        return cls(
            vault_id=data["vaultId"],
            vault_name=data.get("vaultName", ""),
            remote=GitRemoteConfig(name=remote["name"], url=remote["url"]) if remote else None,
            sync_settings=GitSyncSettings.from_dict(data.get("syncSettings") or {}),
        )


@dataclass(frozen=True)
class FileChange:
    path: str
    name: str
    status: FileChangeStatus


# --- Tagged results ---


@dataclass(frozen=True)
class OperationFailed:
    """An operation failed; ``error`` is human-readable."""

    error: str


@dataclass(frozen=True)
class PullSuccess:
    updated_files: int = 0
    fast_forward: bool = False


@dataclass(frozen=True)
class PullConflict:
    conflict_files: tuple[str, ...] = ()
    error: str = "Merge conflicts detected"


PullResult = PullSuccess | PullConflict | OperationFailed


@dataclass(frozen=True)
class PushSuccess:
    commits_pushed: int


PushResult = PushSuccess | OperationFailed


@dataclass(frozen=True)
class SyncSuccess:
    pulled_files: int = 0
    pushed_commits: int = 0
    commit_hash: str | None = None


@dataclass(frozen=True)
class SyncConflict:
    pulled_files: int = 0
    conflict_files: tuple[str, ...] = ()


@dataclass(frozen=True)
class SyncFailed:
    error: str
    pulled_files: int = 0
    pushed_commits: int = 0
    commit_hash: str | None = None


SyncResult = SyncSuccess | SyncConflict | SyncFailed


@dataclass(frozen=True)
class RemoteSetupResult:
    """Outcome of the check/create/set-remote/push setup flow."""

    success: bool
    created: bool = False
    error: str | None = None
