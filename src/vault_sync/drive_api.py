"""Google Drive v3 client for the handful of calls the cloud engine needs."""

import json
import secrets
from datetime import datetime
from typing import Any

import requests
from loguru import logger

from vault_sync.config import (
    GOOGLE_DRIVE_URL,
    GOOGLE_UPLOAD_URL,
    GOOGLE_USERINFO_URL,
    HTTP_TIMEOUT_SECONDS,
)
from vault_sync.errors import DriveApiError
from vault_sync.models.cloud import GoogleUserInfo, RemoteFile

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
JSON_MIME_TYPE = "application/json"
_FILE_FIELDS = "id,name,modifiedTime"


def parse_drive_time(value: str) -> datetime:
    """Parse an RFC 3339 timestamp such as ``2024-05-01T10:00:00.000Z``."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def quote_query_value(value: str) -> str:
    """Escape a string literal for a Drive ``q`` expression."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _remote_file(data: dict[str, Any]) -> RemoteFile:
    return RemoteFile(
        id=data["id"], name=data.get("name", ""), modified_time=parse_drive_time(data["modifiedTime"])
    )


class DriveClient:
    """Bearer-token authenticated Drive client."""

    def __init__(self, token: str) -> None:
        self.sess = requests.Session()
        self.sess.headers.update({"Authorization": f"Bearer {token}"})

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        logger.debug("Drive {} {}", method, url)
        r = self.sess.request(method, url, timeout=HTTP_TIMEOUT_SECONDS, **kwargs)
        if not r.ok:
            msg = f"Drive API error: {r.status_code} {r.text[:200]}".strip()
            raise DriveApiError(msg, status=r.status_code)
        return r

    def find_files(self, query: str, *, order_by: str | None = None) -> list[RemoteFile]:
        params = {"q": query, "fields": f"files({_FILE_FIELDS})", "spaces": "drive"}
        if order_by:
            params["orderBy"] = order_by
        r = self._request("GET", f"{GOOGLE_DRIVE_URL}/files", params=params)
        return [_remote_file(f) for f in r.json().get("files", [])]

    def get_modified_time(self, file_id: str) -> datetime:
        r = self._request(
            "GET", f"{GOOGLE_DRIVE_URL}/files/{file_id}", params={"fields": "modifiedTime"}
        )
        return parse_drive_time(r.json()["modifiedTime"])

    def create_folder(self, name: str, parent_id: str | None = None) -> str:
        metadata: dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            metadata["parents"] = [parent_id]
        r = self._request("POST", f"{GOOGLE_DRIVE_URL}/files", json=metadata, params={"fields": "id"})
        folder_id: str = r.json()["id"]
        return folder_id

    def create_file(self, name: str, content: str, parent_id: str | None = None) -> str:
        """Upload a new JSON file in one multipart request."""
        metadata: dict[str, Any] = {"name": name, "mimeType": JSON_MIME_TYPE}
        if parent_id:
            metadata["parents"] = [parent_id]
        boundary = f"vault-sync-{secrets.token_hex(8)}"
        body = (
            f"--{boundary}\r\n"
            f"Content-Type: {JSON_MIME_TYPE}; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata)}\r\n"
            f"--{boundary}\r\n"
            f"Content-Type: {JSON_MIME_TYPE}\r\n\r\n"
            f"{content}\r\n"
            f"--{boundary}--\r\n"
        )
        r = self._request(
            "POST",
            f"{GOOGLE_UPLOAD_URL}/files",
            params={"uploadType": "multipart", "fields": "id"},
            data=body.encode("utf-8"),
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        )
        file_id: str = r.json()["id"]
        return file_id

    def update_file(self, file_id: str, content: str) -> RemoteFile:
        r = self._request(
            "PATCH",
            f"{GOOGLE_UPLOAD_URL}/files/{file_id}",
            params={"uploadType": "media", "fields": _FILE_FIELDS},
            data=content.encode("utf-8"),
            headers={"Content-Type": JSON_MIME_TYPE},
        )
        return _remote_file(r.json())

    def get_content(self, file_id: str) -> str | None:
        try:
            r = self._request("GET", f"{GOOGLE_DRIVE_URL}/files/{file_id}", params={"alt": "media"})
        except DriveApiError as e:
            if e.status == 404:
                return None
            raise
        r.encoding = "utf-8"
        return r.text

    def copy_file(self, file_id: str, name: str, parent_id: str) -> str:
        r = self._request(
            "POST",
            f"{GOOGLE_DRIVE_URL}/files/{file_id}/copy",
            json={"name": name, "parents": [parent_id]},
            params={"fields": "id"},
        )
        copy_id: str = r.json()["id"]
        return copy_id

    def delete_file(self, file_id: str) -> None:
        self._request("DELETE", f"{GOOGLE_DRIVE_URL}/files/{file_id}")

    def fetch_user_info(self) -> GoogleUserInfo:
        r = self._request("GET", GOOGLE_USERINFO_URL)
        return GoogleUserInfo.from_dict(r.json())
