"""Configuration constants for vault-sync."""

import os
import socket
from pathlib import Path

# Directory with the state database. First directory which is found is used;
# if none exists, the first one is created.
STATE_DIRECTORIES: list[Path] = [
    Path("~/.local/share/vault-sync").expanduser(),
    Path("~/.vault-sync").expanduser(),
    Path("~/.config/vault-sync").expanduser(),
]

STATE_DB_NAME: str = "state.db"

# Name used to keep several installations apart when they share one cloud account.
DEPLOYMENT_NAME: str = os.environ.get("VAULT_SYNC_DEPLOYMENT") or socket.gethostname()

# Git
DEFAULT_BRANCH: str = "main"
DEFAULT_REMOTE_NAME: str = "origin"
TOKEN_USERNAME: str = "x-access-token"
DEFAULT_AUTHOR_NAME: str = "md-viewer"
DEFAULT_AUTHOR_EMAIL: str = "md-viewer@local"
CLONE_DEPTH: int = 10
GIT_TIMEOUT_SECONDS: float = 300.0

# Relay prefix for HTTPS git traffic, e.g. "https://cors.isomorphic-git.org".
# Only needed when git traffic must go through a CORS-style relay.
CORS_PROXY: str | None = os.environ.get("VAULT_SYNC_CORS_PROXY") or None

# Marker directory of a foreign Git plugin living inside the vault.
FOREIGN_GIT_PLUGIN_DIR: str = ".obsidian/plugins/obsidian-git"

DEFAULT_GITIGNORE: str = """\
# Obsidian
.obsidian/workspace.json
.obsidian/workspace-mobile.json
.obsidian/plugins/*/data.json
.trash/

# System files
.DS_Store
Thumbs.db
"""

# Hosting API
GITHUB_API_URL: str = "https://api.github.com"
GITHUB_ACCEPT: str = "application/vnd.github.v3+json"
HTTP_TIMEOUT_SECONDS: float = 30.0

# Google OAuth / Drive
GOOGLE_CLIENT_ID: str = os.environ.get("VAULT_SYNC_GOOGLE_CLIENT_ID", "")
GOOGLE_AUTH_URL: str = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_USERINFO_URL: str = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_DRIVE_URL: str = "https://www.googleapis.com/drive/v3"
GOOGLE_UPLOAD_URL: str = "https://www.googleapis.com/upload/drive/v3"
GOOGLE_SCOPES: str = " ".join(
    [
        "https://www.googleapis.com/auth/drive.file",
        "https://www.googleapis.com/auth/userinfo.email",
        "https://www.googleapis.com/auth/userinfo.profile",
    ]
)
OAUTH_REDIRECT_URI: str = "http://localhost:8765/"
SILENT_REFRESH_TIMEOUT_SECONDS: float = 5.0
DEFAULT_TOKEN_LIFETIME_SECONDS: int = 3600

BACKUP_FOLDER_NAME: str = "backups"
DATA_FILE_NAME: str = "data.json"

# Tabs / vault files
EXTERNAL_CHANGE_TOLERANCE_MS: int = 1000
MARKDOWN_SUFFIXES: tuple[str, ...] = (".md", ".markdown")
MIN_FONT_SIZE: int = 10
MAX_FONT_SIZE: int = 24
DEFAULT_FONT_SIZE: int = 14


def sync_folder_name(deployment: str = DEPLOYMENT_NAME) -> str:
    """Name of the main cloud folder for a deployment."""
    return f"MD-Viewer-Data [{deployment}]"


def legacy_data_file_name(deployment: str = DEPLOYMENT_NAME) -> str:
    """Name of the pre-folder single data file for a deployment."""
    return f"MD Viewer Data [{deployment}].json"


def resolve_state_directory() -> Path:
    """Return the state directory, creating the default one if needed."""
    override = os.environ.get("VAULT_SYNC_STATE_DIR")
    if override:
        path = Path(override).expanduser()
        path.mkdir(parents=True, exist_ok=True)
        return path
    for candidate in STATE_DIRECTORIES:
        if candidate.is_dir():
            return candidate
    STATE_DIRECTORIES[0].mkdir(parents=True, exist_ok=True)
    return STATE_DIRECTORIES[0]
