"""Error taxonomy shared by the storage layer and both sync engines.

Conflicts have no exception type; they are returned as result values.
"""

from enum import Enum


class VaultSyncError(Exception):
    """Base class for all vault-sync errors."""


class EntryNotFoundError(VaultSyncError, FileNotFoundError):
    """A path does not exist in a vault.

    Carries ``code == "ENOENT"`` so callers can branch on "doesn't exist yet"
    without parsing messages.
    """

    code = "ENOENT"

    def __init__(self, path: str) -> None:
        super().__init__(f"ENOENT: no such file or directory, {path!r}")
        self.path = path


class PermissionDeniedError(VaultSyncError, PermissionError):
    """Access to a directory or file was denied or revoked."""

    code = "EPERM"


class AuthenticationError(VaultSyncError):
    """Credentials are missing, expired, or were rejected."""


class TransportErrorKind(Enum):
    """Structured classification of git transport failures."""

    REPOSITORY_NOT_FOUND = "repository-not-found"
    EMPTY_REMOTE = "empty-remote"
    BRANCH_MISSING = "branch-missing"
    MERGE_CONFLICT = "merge-conflict"
    AUTHENTICATION = "authentication"
    NETWORK = "network"
    OTHER = "other"


# A pull against any of these is a normal first-sync outcome, not a failure.
EMPTY_REMOTE_KINDS = frozenset(
    {
        TransportErrorKind.REPOSITORY_NOT_FOUND,
        TransportErrorKind.EMPTY_REMOTE,
        TransportErrorKind.BRANCH_MISSING,
    }
)


class TransportError(VaultSyncError):
    """A git command or network call failed."""

    def __init__(
        self,
        message: str,
        *,
        kind: TransportErrorKind = TransportErrorKind.OTHER,
        command: str | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.command = command
        self.returncode = returncode


class HostingApiError(VaultSyncError):
    """The Git hosting API returned an unexpected response."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class DriveApiError(VaultSyncError):
    """The cloud object store returned an unexpected response."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
