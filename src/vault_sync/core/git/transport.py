"""Thin wrapper around the ``git`` command line.

All failures of a git invocation surface as
:class:`~vault_sync.errors.TransportError`, classified once here by
:func:`classify_git_error`. Credentials embedded in URLs are redacted from
every message and log line.
"""

import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

from loguru import logger

from vault_sync import config
from vault_sync.errors import TransportError, TransportErrorKind

_CREDENTIALS_IN_URL = re.compile(r"(://)[^/@\s]+@")

# Checked in order; the first matching pattern wins.
_ERROR_PATTERNS: list[tuple[TransportErrorKind, re.Pattern[str]]] = [
    (
        TransportErrorKind.MERGE_CONFLICT,
        re.compile(r"^CONFLICT \(|automatic merge failed", re.IGNORECASE | re.MULTILINE),
    ),
    (
        TransportErrorKind.BRANCH_MISSING,
        re.compile(
            r"couldn't find remote ref|could not find remote ref|not something we can merge",
            re.IGNORECASE,
        ),
    ),
    (
        TransportErrorKind.EMPTY_REMOTE,
        re.compile(
            r"empty repository|remote HEAD refers to nonexistent ref", re.IGNORECASE
        ),
    ),
    (
        TransportErrorKind.REPOSITORY_NOT_FOUND,
        re.compile(
            r"repository '.*' not found|repository not found"
            r"|does not appear to be a git repository|HTTP 404|returned error: 404",
            re.IGNORECASE,
        ),
    ),
    (
        TransportErrorKind.AUTHENTICATION,
        re.compile(
            r"authentication failed|could not read username|HTTP 40[13]"
            r"|returned error: 40[13]|permission denied \(publickey\)",
            re.IGNORECASE,
        ),
    ),
    (
        TransportErrorKind.NETWORK,
        re.compile(
            r"could not resolve host|connection refused|connection timed out"
            r"|operation timed out|unable to access|network is unreachable",
            re.IGNORECASE,
        ),
    ),
]


_OVERWRITTEN_BY_MERGE = re.compile(r"would be overwritten by merge:\n((?:\t.*(?:\n|$))+)")


def overwritten_by_merge(output: str) -> list[str]:
    """Paths git refused to merge over because of local, uncommitted edits."""
    paths: list[str] = []
    for block in _OVERWRITTEN_BY_MERGE.findall(output):
        paths.extend(line.strip() for line in block.splitlines() if line.strip())
    return paths


def classify_git_error(output: str) -> TransportErrorKind:
    """Map git's human-readable error output to a structured kind."""
    for kind, pattern in _ERROR_PATTERNS:
        if pattern.search(output):
            return kind
    return TransportErrorKind.OTHER


def redact(text: str) -> str:
    """Hide credentials embedded in URLs."""
    return _CREDENTIALS_IN_URL.sub(r"\1***@", text)


def authenticated_url(url: str, token: str | None) -> str:
    """Put ``token`` in the password slot of an HTTPS URL.

    Non-HTTPS URLs (SSH, local paths) are returned unchanged.
    """
    if not token or not url.startswith("https://"):
        return url
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{config.TOKEN_USERNAME}:{quote(token, safe='')}@{host}"
    return urlunsplit(parts._replace(netloc=netloc))


def apply_relay(url: str, proxy: str | None) -> str:
    """Route an HTTPS URL through a relay prefix, e.g. ``<proxy>/github.com/o/r.git``."""
    if not proxy or not url.startswith("https://"):
        return url
    return f"{proxy.rstrip('/')}/{url.removeprefix('https://')}"


def remote_url_for(url: str, token: str | None, proxy: str | None = None) -> str:
    """The URL actually handed to git for network operations."""
    return apply_relay(authenticated_url(url, token), proxy)


@dataclass(frozen=True)
class GitAuthor:
    name: str
    email: str


class GitRunner:
    """Runs git commands inside one working tree."""

    def __init__(
        self,
        workdir: Path | str,
        *,
        author: GitAuthor | None = None,
        timeout: float = config.GIT_TIMEOUT_SECONDS,
    ) -> None:
        self.workdir = Path(workdir)
        self.author = author or GitAuthor(config.DEFAULT_AUTHOR_NAME, config.DEFAULT_AUTHOR_EMAIL)
        self.timeout = timeout

    def _command(self, args: tuple[str, ...]) -> list[str]:
        return [
            "git",
            "-c",
            f"user.name={self.author.name}",
            "-c",
            f"user.email={self.author.email}",
            "-c",
            "commit.gpgsign=false",
            *args,
        ]

    def run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Run ``git <args>``; raise TransportError on failure when ``check``."""
        shown = redact(" ".join(args))
        logger.debug("git {}", shown)
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0", "GIT_ASKPASS": ""}
        try:
            proc = subprocess.run(
                self._command(args),
                cwd=self.workdir,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            msg = f"git {shown} timed out after {self.timeout:.0f}s"
            raise TransportError(msg, kind=TransportErrorKind.NETWORK, command=shown) from e
        except FileNotFoundError as e:
            msg = "git executable not found"
            raise TransportError(msg, command=shown) from e
        if check and proc.returncode != 0:
            output = redact((proc.stderr or proc.stdout).strip())
            raise TransportError(
                output or f"git {shown} failed with exit code {proc.returncode}",
                kind=classify_git_error(output),
                command=shown,
                returncode=proc.returncode,
            )
        return proc

    def output(self, *args: str) -> str:
        return self.run(*args).stdout.strip()

    def succeeds(self, *args: str) -> bool:
        return self.run(*args, check=False).returncode == 0

    def rev_parse(self, ref: str) -> str | None:
        """Resolve a ref to a commit sha, or None if it does not exist."""
        proc = self.run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", check=False)
        if proc.returncode != 0:
            return None
        return proc.stdout.strip() or None
