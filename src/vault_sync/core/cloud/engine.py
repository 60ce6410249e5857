"""Cloud backup and sync against a single canonical JSON document.

Layout in the object store::

    MD-Viewer-Data [<deployment>]/
        data.json
        backups/
            backup-YYYY-MM-DD.json
            backup-YYYY-MM-DDTHH-MM-SS.json

Every non-forced write first compares the remote modification time with the
one recorded after the last successful sync. A newer remote aborts the write
and pauses automatic sync until the user picks a side. The check and the
write are separate calls, so a remote change landing in between is not
detected.
"""

import json
import re
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import requests
from loguru import logger

from vault_sync import config
from vault_sync.core.cloud.auth import CloudAuth
from vault_sync.drive_api import FOLDER_MIME_TYPE, quote_query_value
from vault_sync.errors import AuthenticationError, DriveApiError, VaultSyncError
from vault_sync.models.cloud import (
    AuthResult,
    AutoSyncResult,
    BackupCreated,
    BackupFile,
    CloudConflict,
    CloudFailed,
    CloudNoData,
    CloudPaused,
    CloudSynced,
    CloudSyncResult,
    CloudSyncStatus,
    CloudUpdateCheck,
    ManualBackupResult,
    RemoteFile,
)
from vault_sync.protocols import DriveProtocol

_BACKUP_DATE = re.compile(r"backup-(\d{4}-\d{2}-\d{2})")

# Failures a sync call turns into a CloudFailed result.
_SYNC_ERRORS = (VaultSyncError, requests.RequestException, ValueError)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


class CloudSyncEngine:
    def __init__(self, auth: CloudAuth, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self.auth = auth
        self.clock = clock
        self.is_syncing = False

    # --- plumbing ---

    def _drive(self) -> DriveProtocol:
        token = self.auth.access_token
        if not token:
            msg = "Not signed in to Google"
            raise AuthenticationError(msg)
        return self.auth.drive_factory(token)

    def _fail(self, prefix: str, error: Exception) -> CloudFailed:
        message = f"{prefix}: {error}"
        self.auth.last_error = message
        if isinstance(error, DriveApiError) and error.status == 401:
            logger.warning("Google rejected the token, signing out of this session")
            self.auth.clear(clear_all=False)
        logger.error(message)
        return CloudFailed(error=message)

    def status(self) -> CloudSyncStatus:
        return CloudSyncStatus(
            is_connected=self.auth.is_connected,
            needs_reauthorization=self.auth.needs_reauthorization,
            is_syncing=self.is_syncing,
            last_sync_time=self.auth.last_sync_time,
            error=self.auth.last_error,
            has_conflict=self.auth.has_conflict,
            conflict_cloud_time=self.auth.conflict_cloud_time,
            auto_sync_paused=self.auth.auto_sync_paused,
        )

    # --- startup / sign-in ---

    def initialize(self) -> None:
        """Restore a usable session: silent refresh, then locate the remote file."""
        if self.auth.needs_reauthorization and self.auth.client_id:
            if self.auth.try_silent_refresh():
                logger.info("Silent refresh successful")
            else:
                logger.info("Silent refresh failed, interactive sign-in required")
        if self.auth.access_token:
            try:
                self.discover_sync_file()
            except _SYNC_ERRORS as e:
                logger.warning("Could not look up the cloud data file: {}", e)

    def complete_sign_in(self, redirect_url: str) -> AuthResult:
        result = self.auth.handle_oauth_callback(redirect_url)
        if result.success:
            try:
                self.discover_sync_file()
            except _SYNC_ERRORS as e:
                logger.warning("Could not look up the cloud data file: {}", e)
        return result

    def discover_sync_file(self) -> str | None:
        """Find an existing canonical file when none is recorded."""
        if self.auth.sync_file_id:
            return self.auth.sync_file_id
        drive = self._drive()
        found: RemoteFile | None = None
        folders = drive.find_files(self._folder_query(config.sync_folder_name(self.auth.deployment)))
        if folders:
            found = self._find_in_folder(drive, config.DATA_FILE_NAME, folders[0].id)
        if found is None:
            found = self._find_legacy_file(drive)
        if found is None:
            return None
        logger.info("Found existing cloud data file {}", found.id)
        self.auth.sync_file_id = found.id
        if self.auth.last_cloud_modified_time is None:
            self.auth.last_cloud_modified_time = found.modified_time
        return found.id

    def sign_out(self) -> None:
        self.auth.sign_out()

    # --- folders and lookups ---

    @staticmethod
    def _folder_query(name: str, parent_id: str | None = None) -> str:
        query = (
            f"name='{quote_query_value(name)}' and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
        )
        if parent_id:
            query += f" and '{parent_id}' in parents"
        return query

    def _find_or_create_folder(
        self, drive: DriveProtocol, name: str, parent_id: str | None = None
    ) -> str:
        existing = drive.find_files(self._folder_query(name, parent_id))
        if existing:
            return existing[0].id
        logger.info("Creating cloud folder {!r}", name)
        return drive.create_folder(name, parent_id)

    def ensure_folder_structure(self, drive: DriveProtocol | None = None) -> tuple[str, str]:
        """Return (main folder id, backup folder id), creating them as needed."""
        drive = drive or self._drive()
        main_id = self.auth.sync_folder_id
        if not main_id:
            main_id = self._find_or_create_folder(
                drive, config.sync_folder_name(self.auth.deployment)
            )
            self.auth.sync_folder_id = main_id
        backup_id = self.auth.backup_folder_id
        if not backup_id:
            backup_id = self._find_or_create_folder(drive, config.BACKUP_FOLDER_NAME, main_id)
            self.auth.backup_folder_id = backup_id
        return main_id, backup_id

    @staticmethod
    def _find_in_folder(drive: DriveProtocol, name: str, folder_id: str) -> RemoteFile | None:
        files = drive.find_files(
            f"name='{quote_query_value(name)}' and '{folder_id}' in parents and trashed=false"
        )
        return files[0] if files else None

    def _find_legacy_file(self, drive: DriveProtocol) -> RemoteFile | None:
        name = config.legacy_data_file_name(self.auth.deployment)
        files = drive.find_files(f"name='{quote_query_value(name)}' and trashed=false")
        if not files:
            return None
        return max(files, key=lambda f: f.modified_time)

    def migrate_legacy(self, drive: DriveProtocol, folder_id: str) -> bool:
        """Copy the pre-folder data file into ``folder_id``. The old file is kept."""
        if self._find_in_folder(drive, config.DATA_FILE_NAME, folder_id):
            return False
        legacy = self._find_legacy_file(drive)
        if legacy is None:
            return False
        content = drive.get_content(legacy.id)
        if not content:
            logger.warning("Legacy data file {} is empty or gone", legacy.id)
            return False
        json.loads(content)
        self.auth.sync_file_id = drive.create_file(config.DATA_FILE_NAME, content, folder_id)
        logger.info("Migrated legacy data file {} into the sync folder", legacy.name)
        return True

    # --- conflict detection ---

    def _remote_is_newer(self, modified: datetime) -> bool:
        recorded = self.auth.last_cloud_modified_time
        return recorded is not None and modified > recorded

    def _conflict(self, cloud_time: datetime) -> CloudConflict:
        logger.warning("Cloud copy changed at {}, not overwriting it", cloud_time.isoformat())
        self.auth.mark_conflict(cloud_time)
        return CloudConflict(cloud_time=cloud_time)

    def check_for_cloud_updates(self) -> CloudUpdateCheck:
        try:
            drive = self._drive()
            main_id, _ = self.ensure_folder_structure(drive)
            existing = self._find_in_folder(drive, config.DATA_FILE_NAME, main_id)
            if existing is None:
                return CloudUpdateCheck.NO_CLOUD_FILE
            modified = drive.get_modified_time(existing.id)
        except _SYNC_ERRORS as e:
            logger.error("Error checking for cloud updates: {}", e)
            return CloudUpdateCheck.ERROR

        if self.auth.last_cloud_modified_time is None:
            # First contact: adopt the remote time as the baseline.
            self.auth.last_cloud_modified_time = modified
            return CloudUpdateCheck.UP_TO_DATE
        if self._remote_is_newer(modified):
            self.auth.mark_conflict(modified)
            return CloudUpdateCheck.CLOUD_NEWER
        return CloudUpdateCheck.UP_TO_DATE

    # --- writes ---

    def sync_with_backup(
        self,
        data: Any,
        *,
        backup_enabled: bool,
        retention_days: int,
        force: bool = False,
    ) -> CloudSyncResult:
        """Write ``data`` to the canonical file, with a daily backup first."""
        self.is_syncing = True
        try:
            drive = self._drive()
            main_id, backup_id = self.ensure_folder_structure(drive)
            if self.migrate_legacy(drive, main_id):
                logger.info("Using migrated legacy data as the canonical file")

            existing = self._find_in_folder(drive, config.DATA_FILE_NAME, main_id)
            if existing is not None and not force:
                modified = drive.get_modified_time(existing.id)
                if self._remote_is_newer(modified):
                    return self._conflict(modified)

            if backup_enabled and existing is not None:
                if self.create_daily_backup(existing.id, backup_id, drive=drive):
                    self.cleanup_old_backups(retention_days, drive=drive)

            content = _dump(data)
            if existing is not None:
                updated = drive.update_file(existing.id, content)
                file_id, modified_time = updated.id, updated.modified_time
            else:
                file_id = drive.create_file(config.DATA_FILE_NAME, content, main_id)
                modified_time = drive.get_modified_time(file_id)

            self.auth.sync_file_id = file_id
            self.auth.last_cloud_modified_time = modified_time
            self.auth.record_sync()
            logger.info("Synced data to the cloud")
            return CloudSynced(file_id=file_id, modified_time=modified_time)
        except _SYNC_ERRORS as e:
            return self._fail("Sync failed", e)
        finally:
            self.is_syncing = False

    def sync_to_cloud(self, data: Any, *, force: bool = False) -> CloudSyncResult:
        """Single-file sync at the Drive root, without folders or backups."""
        self.is_syncing = True
        try:
            drive = self._drive()
            content = _dump(data)
            file_id = self.auth.sync_file_id
            if file_id is None:
                legacy = self._find_legacy_file(drive)
                file_id = legacy.id if legacy else None
            elif not force:
                modified = drive.get_modified_time(file_id)
                if self._remote_is_newer(modified):
                    return self._conflict(modified)

            if file_id is not None:
                updated = drive.update_file(file_id, content)
                modified_time: datetime | None = updated.modified_time
            else:
                file_id = drive.create_file(config.legacy_data_file_name(self.auth.deployment), content)
                modified_time = drive.get_modified_time(file_id)

            self.auth.sync_file_id = file_id
            self.auth.last_cloud_modified_time = modified_time
            self.auth.record_sync()
            return CloudSynced(file_id=file_id, modified_time=modified_time)
        except _SYNC_ERRORS as e:
            return self._fail("Sync failed", e)
        finally:
            self.is_syncing = False

    def load_from_cloud(self) -> Any | None:
        """Return the parsed canonical document, or None if there is none."""
        file_id = self.auth.sync_file_id
        if not file_id or not self.auth.access_token:
            return None
        self.is_syncing = True
        try:
            drive = self._drive()
            content = drive.get_content(file_id)
            if content is None:
                self.auth.sync_file_id = None
                return None
            self.auth.last_cloud_modified_time = drive.get_modified_time(file_id)
            self.auth.record_sync()
            return json.loads(content)
        except _SYNC_ERRORS as e:
            self._fail("Loading from the cloud failed", e)
            return None
        finally:
            self.is_syncing = False

    def clear_sync_file(self) -> None:
        """Forget the canonical file reference without signing out."""
        self.auth.sync_file_id = None

    # --- conflict resolution ---

    def resolve_conflict_with_cloud(self) -> Any | None:
        """Discard local state: load the cloud copy and clear the conflict."""
        data = self.load_from_cloud()
        if data is not None:
            self.auth.clear_conflict()
        return data

    def resolve_conflict_with_local(
        self, data: Any, *, backup_enabled: bool, retention_days: int
    ) -> CloudSyncResult:
        """Overwrite the cloud copy with ``data`` and clear the conflict."""
        result = self.sync_with_backup(
            data, backup_enabled=backup_enabled, retention_days=retention_days, force=True
        )
        if isinstance(result, CloudSynced):
            self.auth.clear_conflict()
        return result

    def auto_sync(self, data: Any, *, backup_enabled: bool, retention_days: int) -> AutoSyncResult:
        """Background sync. Never resolves a conflict on its own."""
        if self.auth.auto_sync_paused:
            return CloudPaused()
        check = self.check_for_cloud_updates()
        if check == CloudUpdateCheck.CLOUD_NEWER:
            logger.info("Conflict detected, pausing auto-sync")
            cloud_time = self.auth.conflict_cloud_time or self.clock()
            return CloudConflict(cloud_time=cloud_time)
        return self.sync_with_backup(
            data, backup_enabled=backup_enabled, retention_days=retention_days
        )

    # --- backups ---

    def create_daily_backup(
        self, source_id: str, backup_folder_id: str, *, drive: DriveProtocol | None = None
    ) -> str | None:
        """Copy ``source_id`` to today's backup unless it already exists."""
        today = self.clock().date().isoformat()
        if self.auth.last_backup_date == today:
            return None
        drive = drive or self._drive()
        name = f"backup-{today}.json"
        existing = self._find_in_folder(drive, name, backup_folder_id)
        if existing is not None:
            self.auth.last_backup_date = today
            return existing.id
        backup_id = drive.copy_file(source_id, name, backup_folder_id)
        self.auth.last_backup_date = today
        logger.info("Created daily backup {}", name)
        return backup_id

    def list_backups(self, *, drive: DriveProtocol | None = None) -> list[BackupFile]:
        """List backups, newest name first. Always asks the remote."""
        folder_id = self.auth.backup_folder_id
        if not folder_id:
            return []
        drive = drive or self._drive()
        files = drive.find_files(
            f"'{folder_id}' in parents and trashed=false and name contains 'backup-'",
            order_by="name desc",
        )
        backups = []
        for f in files:
            match = _BACKUP_DATE.match(f.name)
            backups.append(
                BackupFile(
                    id=f.id,
                    name=f.name,
                    date=match.group(1) if match else f.name,
                    modified_time=f.modified_time,
                )
            )
        return sorted(backups, key=lambda b: b.name, reverse=True)

    def cleanup_old_backups(self, retention_days: int, *, drive: DriveProtocol | None = None) -> int:
        """Delete backups dated more than ``retention_days`` ago."""
        drive = drive or self._drive()
        cutoff = self.clock() - timedelta(days=retention_days)
        deleted = 0
        for backup in self.list_backups(drive=drive):
            try:
                backup_date = datetime.fromisoformat(backup.date).replace(tzinfo=UTC)
            except ValueError:
                continue
            if backup_date >= cutoff:
                continue
            try:
                drive.delete_file(backup.id)
            except DriveApiError as e:
                logger.warning("Failed to delete backup {}: {}", backup.name, e)
                continue
            logger.info("Deleted old backup {}", backup.name)
            deleted += 1
        return deleted

    def create_manual_backup(self) -> ManualBackupResult:
        """Timestamped backup of the canonical file; refuses if the cloud moved on."""
        self.is_syncing = True
        try:
            drive = self._drive()
            main_id, backup_id = self.ensure_folder_structure(drive)
            existing = self._find_in_folder(drive, config.DATA_FILE_NAME, main_id)
            if existing is None:
                self.auth.last_error = "No cloud data to backup. Please sync first."
                return CloudNoData()
            modified = drive.get_modified_time(existing.id)
            if self._remote_is_newer(modified):
                return self._conflict(modified)
            name = f"backup-{self.clock().strftime('%Y-%m-%dT%H-%M-%S')}.json"
            backup_id = drive.copy_file(existing.id, name, backup_id)
            logger.info("Created manual backup {}", name)
            return BackupCreated(file_id=backup_id, name=name)
        except _SYNC_ERRORS as e:
            return self._fail("Backup failed", e)
        finally:
            self.is_syncing = False

    def restore_from_backup(self, backup_id: str) -> Any | None:
        """Return the parsed content of a backup file."""
        try:
            content = self._drive().get_content(backup_id)
            return json.loads(content) if content else None
        except _SYNC_ERRORS as e:
            self._fail("Failed to restore from backup", e)
            return None
