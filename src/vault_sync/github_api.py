"""GitHub REST v3 client used to check, create and inspect remotes."""

import re
from typing import Any

import requests
from loguru import logger

from vault_sync.config import GITHUB_ACCEPT, GITHUB_API_URL, HTTP_TIMEOUT_SECONDS
from vault_sync.errors import HostingApiError

_HTTPS_URL = re.compile(r"github\.com/([^/]+)/([^/.]+)(\.git)?", re.IGNORECASE)
_SSH_URL = re.compile(r"git@github\.com:([^/]+)/([^/.]+)(\.git)?", re.IGNORECASE)


def parse_github_url(url: str) -> tuple[str, str] | None:
    """Extract (owner, repo) from an HTTPS or SSH GitHub URL."""
    match = _SSH_URL.search(url) or _HTTPS_URL.search(url)
    if match:
        return match.group(1), match.group(2)
    return None


def suggest_repo_name(vault_name: str) -> str:
    """Turn a vault name into a repository slug."""
    slug = re.sub(r"\s+", "-", vault_name.lower())
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug or "my-vault"


class GitHubApi:
    """Authenticated GitHub API client."""

    def __init__(self, token: str, *, base_url: str = GITHUB_API_URL) -> None:
        self.base_url = base_url.rstrip("/")
        self.sess = requests.Session()
        self.sess.headers.update({"Authorization": f"Bearer {token}", "Accept": GITHUB_ACCEPT})

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        logger.debug("GitHub {} {}", method, path)
        return self.sess.request(
            method, f"{self.base_url}{path}", timeout=HTTP_TIMEOUT_SECONDS, **kwargs
        )

    @staticmethod
    def _error(response: requests.Response, fallback: str) -> HostingApiError:
        try:
            message = response.json().get("message")
        except ValueError:
            message = None
        return HostingApiError(message or f"{fallback}: {response.status_code}", status=response.status_code)

    def repo_exists(self, owner: str, repo: str) -> bool:
        r = self._request("GET", f"/repos/{owner}/{repo}")
        if r.status_code == 200:
            return True
        if r.status_code == 404:
            return False
        raise self._error(r, "GitHub API error")

    def create_repo(
        self, name: str, *, private: bool = True, description: str | None = None
    ) -> str:
        """Create a repository for the authenticated user; return its clone URL."""
        r = self._request(
            "POST",
            "/user/repos",
            json={
                "name": name,
                "description": description or "Vault synced by vault-sync",
                "private": private,
                # Local history gets pushed right after creation.
                "auto_init": False,
            },
        )
        if not r.ok:
            raise self._error(r, "Failed to create repository")
        clone_url: str = r.json()["clone_url"]
        logger.info("Created GitHub repository {}", clone_url)
        return clone_url

    def list_branches(self, owner: str, repo: str) -> list[dict[str, Any]]:
        r = self._request("GET", f"/repos/{owner}/{repo}/branches")
        if r.status_code != 200:
            raise self._error(r, "Failed to list branches")
        branches: list[dict[str, Any]] = r.json() or []
        return branches

    def current_user_login(self) -> str | None:
        try:
            r = self._request("GET", "/user")
        except requests.RequestException:
            logger.debug("GitHub user lookup failed", exc_info=True)
            return None
        if not r.ok:
            return None
        login: str | None = r.json().get("login")
        return login
