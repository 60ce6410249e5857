"""OAuth state and persisted cloud sync bookkeeping.

Everything lives in the ``metadata`` table. Keys for remote file ids, backup
dates and conflict flags carry a ``-<deployment>`` suffix so installations
sharing one state directory (or one Google account) never collide.
"""

import secrets
import sqlite3
import time
from collections.abc import Callable
from datetime import datetime
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

import requests
from loguru import logger

from vault_sync import config
from vault_sync.core.database.schema import (
    delete_metadata,
    get_json,
    get_metadata,
    set_json,
    set_metadata,
)
from vault_sync.drive_api import DriveClient
from vault_sync.errors import AuthenticationError, DriveApiError
from vault_sync.models.cloud import AuthResult, GoogleUserInfo
from vault_sync.protocols import DriveProtocol

ACCESS_TOKEN_KEY = "md-viewer-google-access-token"
REFRESH_TOKEN_KEY = "md-viewer-google-refresh-token"
TOKEN_EXPIRY_KEY = "md-viewer-google-token-expiry"
USER_INFO_KEY = "md-viewer-google-user-info"
CLIENT_ID_KEY = "md-viewer-google-client-id"
OAUTH_STATE_KEY = "oauth_state"
OAUTH_PENDING_KEY = "oauth_pending"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _fragment_params(url: str) -> dict[str, str]:
    fragment = urlsplit(url).fragment
    return {k: v[0] for k, v in parse_qs(fragment).items() if v}


def strip_fragment(url: str) -> str:
    return urlunsplit(urlsplit(url)._replace(fragment=""))


class CloudAuth:
    """Token, identity and per-deployment cloud state."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        deployment: str = config.DEPLOYMENT_NAME,
        drive_factory: Callable[[str], DriveProtocol] = DriveClient,
    ) -> None:
        self.conn = conn
        self.deployment = deployment
        self.drive_factory = drive_factory
        self._expire_token()

    def _key(self, name: str) -> str:
        return f"md-viewer-google-{name}-{self.deployment}"

    def _get(self, key: str) -> str | None:
        return get_metadata(self.conn, key)

    def _set(self, key: str, value: str | None) -> None:
        if value is None:
            delete_metadata(self.conn, key)
        else:
            set_metadata(self.conn, key, value)

    def _expire_token(self) -> None:
        """Drop an expired token but keep identity and remote file references."""
        expiry = self._get(TOKEN_EXPIRY_KEY)
        if self._get(ACCESS_TOKEN_KEY) and (expiry is None or int(expiry) <= _now_ms()):
            logger.debug("Stored Google token expired")
            self.clear(clear_all=False)

    # --- credentials ---

    @property
    def access_token(self) -> str | None:
        self._expire_token()
        return self._get(ACCESS_TOKEN_KEY)

    @property
    def user(self) -> GoogleUserInfo | None:
        data = get_json(self.conn, USER_INFO_KEY)
        return GoogleUserInfo.from_dict(data) if data else None

    @property
    def is_connected(self) -> bool:
        return bool(self.access_token and self.user)

    @property
    def needs_reauthorization(self) -> bool:
        return self.user is not None and not self.access_token

    def save_token(self, token: str, expires_in: int = config.DEFAULT_TOKEN_LIFETIME_SECONDS) -> None:
        set_metadata(self.conn, ACCESS_TOKEN_KEY, token)
        set_metadata(self.conn, TOKEN_EXPIRY_KEY, str(_now_ms() + expires_in * 1000))

    def save_auth(self, token: str, expires_in: int, user: GoogleUserInfo) -> None:
        self.save_token(token, expires_in)
        set_json(self.conn, USER_INFO_KEY, user.to_dict())

    def clear(self, *, clear_all: bool = True) -> None:
        """Forget the token; with ``clear_all`` also identity and remote ids."""
        delete_metadata(self.conn, ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TOKEN_EXPIRY_KEY)
        if clear_all:
            delete_metadata(
                self.conn,
                USER_INFO_KEY,
                self._key("sync-file-id"),
                self._key("sync-folder-id"),
                self._key("backup-folder-id"),
                self._key("last-backup-date"),
                self._key("last-cloud-modified-time"),
                self._key("last-sync-time"),
                self._key("last-error"),
            )
            self.clear_conflict()

    @property
    def client_id(self) -> str:
        return self._get(CLIENT_ID_KEY) or config.GOOGLE_CLIENT_ID

    @client_id.setter
    def client_id(self, value: str) -> None:
        set_metadata(self.conn, CLIENT_ID_KEY, value)

    # --- remote references ---

    @property
    def sync_file_id(self) -> str | None:
        return self._get(self._key("sync-file-id"))

    @sync_file_id.setter
    def sync_file_id(self, value: str | None) -> None:
        self._set(self._key("sync-file-id"), value)

    @property
    def sync_folder_id(self) -> str | None:
        return self._get(self._key("sync-folder-id"))

    @sync_folder_id.setter
    def sync_folder_id(self, value: str | None) -> None:
        self._set(self._key("sync-folder-id"), value)

    @property
    def backup_folder_id(self) -> str | None:
        return self._get(self._key("backup-folder-id"))

    @backup_folder_id.setter
    def backup_folder_id(self, value: str | None) -> None:
        self._set(self._key("backup-folder-id"), value)

    @property
    def last_backup_date(self) -> str | None:
        return self._get(self._key("last-backup-date"))

    @last_backup_date.setter
    def last_backup_date(self, value: str | None) -> None:
        self._set(self._key("last-backup-date"), value)

    @property
    def last_cloud_modified_time(self) -> datetime | None:
        value = self._get(self._key("last-cloud-modified-time"))
        return datetime.fromisoformat(value) if value else None

    @last_cloud_modified_time.setter
    def last_cloud_modified_time(self, value: datetime | None) -> None:
        self._set(self._key("last-cloud-modified-time"), value.isoformat() if value else None)

    @property
    def last_sync_time(self) -> int | None:
        value = self._get(self._key("last-sync-time"))
        return int(value) if value else None

    @property
    def last_error(self) -> str | None:
        return self._get(self._key("last-error"))

    @last_error.setter
    def last_error(self, value: str | None) -> None:
        self._set(self._key("last-error"), value)

    def record_sync(self) -> None:
        self._set(self._key("last-sync-time"), str(_now_ms()))
        self.last_error = None

    # --- conflict flags ---

    @property
    def has_conflict(self) -> bool:
        return self._get(self._key("has-conflict")) == "true"

    @property
    def conflict_cloud_time(self) -> datetime | None:
        value = self._get(self._key("conflict-cloud-time"))
        return datetime.fromisoformat(value) if value else None

    @property
    def auto_sync_paused(self) -> bool:
        return self._get(self._key("auto-sync-paused")) == "true"

    def mark_conflict(self, cloud_time: datetime) -> None:
        """Record an unresolved conflict and pause automatic sync."""
        self._set(self._key("has-conflict"), "true")
        self._set(self._key("conflict-cloud-time"), cloud_time.isoformat())
        self._set(self._key("auto-sync-paused"), "true")

    def clear_conflict(self) -> None:
        delete_metadata(
            self.conn,
            self._key("has-conflict"),
            self._key("conflict-cloud-time"),
            self._key("auto-sync-paused"),
        )

    # --- OAuth ---

    def authorization_url(self, state: str, *, prompt: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": config.OAUTH_REDIRECT_URI,
            "response_type": "token",
            "scope": config.GOOGLE_SCOPES,
            "state": state,
            "prompt": prompt,
            "include_granted_scopes": "true",
        }
        return f"{config.GOOGLE_AUTH_URL}?{urlencode(params)}"

    def sign_in(self) -> str:
        """Start the redirect flow; return the URL the user has to open."""
        if not self.client_id:
            msg = "Please set Google Client ID first"
            self.last_error = msg
            raise AuthenticationError(msg)
        self.last_error = None
        state = secrets.token_urlsafe(16)
        set_metadata(self.conn, OAUTH_STATE_KEY, state)
        set_metadata(self.conn, OAUTH_PENDING_KEY, "true")
        return self.authorization_url(state, prompt="select_account")

    def handle_oauth_callback(self, redirect_url: str) -> AuthResult:
        """Validate the redirect the provider sent back and store the token."""
        cleaned = strip_fragment(redirect_url)
        params = _fragment_params(redirect_url)
        saved_state = self._get(OAUTH_STATE_KEY)
        delete_metadata(self.conn, OAUTH_STATE_KEY, OAUTH_PENDING_KEY)

        token = params.get("access_token")
        if not token:
            error = params.get("error")
            if error:
                self.last_error = f"Authorization failed: {error}"
            return AuthResult(success=False, cleaned_url=cleaned, error=self.last_error)

        if saved_state is None or params.get("state") != saved_state:
            self.last_error = str(AuthenticationError("OAuth state validation failed"))
            logger.error("OAuth state mismatch")
            return AuthResult(success=False, cleaned_url=cleaned, error=self.last_error)

        expires_in = int(params.get("expires_in") or config.DEFAULT_TOKEN_LIFETIME_SECONDS)
        self.save_token(token, expires_in)
        try:
            user = self.drive_factory(token).fetch_user_info()
        except (DriveApiError, requests.RequestException) as e:
            self.last_error = "Failed to get user info"
            logger.error("Failed to fetch Google user info: {}", e)
            return AuthResult(success=False, cleaned_url=cleaned, error=self.last_error)

        self.save_auth(token, expires_in, user)
        self.last_error = None
        logger.info("Signed in to Google as {}", user.email)
        return AuthResult(success=True, cleaned_url=cleaned, user=user)

    def try_silent_refresh(self, session: requests.Session | None = None) -> bool:
        """Attempt a ``prompt=none`` authorization without user interaction."""
        if not self.client_id:
            return False
        state = f"silent_refresh_{secrets.token_urlsafe(12)}"
        url = self.authorization_url(state, prompt="none")
        sess = session or requests.Session()
        try:
            r = sess.get(
                url, allow_redirects=False, timeout=config.SILENT_REFRESH_TIMEOUT_SECONDS
            )
        except requests.RequestException as e:
            logger.debug("Silent refresh failed: {}", e)
            return False
        params = _fragment_params(r.headers.get("Location", ""))
        token = params.get("access_token")
        if not token or params.get("state") != state:
            logger.debug("Silent refresh denied: {}", params.get("error", "no token"))
            return False
        self.save_token(token, int(params.get("expires_in") or config.DEFAULT_TOKEN_LIFETIME_SECONDS))
        logger.info("Google token refreshed silently")
        return True

    def sign_out(self) -> None:
        self.clear()
        self.last_error = None
