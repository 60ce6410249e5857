"""Git synchronization engine: init, status, commit, pull, push and sync per vault.

Git itself runs as a subprocess inside the vault directory. The working tree
is inspected through the vault's storage adapter, so change detection sees
exactly what the editor sees.
"""

import hashlib
from collections.abc import Callable
from pathlib import Path

from loguru import logger

from vault_sync import config
from vault_sync.core.git.credentials import GitStore
from vault_sync.core.git.messages import generate_commit_message
from vault_sync.core.git.transport import (
    GitAuthor,
    GitRunner,
    overwritten_by_merge,
    redact,
    remote_url_for,
)
from vault_sync.core.storage.fs_adapter import AdapterCache, StorageAdapter
from vault_sync.errors import (
    EMPTY_REMOTE_KINDS,
    AuthenticationError,
    EntryNotFoundError,
    HostingApiError,
    TransportError,
    VaultSyncError,
)
from vault_sync.github_api import GitHubApi, parse_github_url
from vault_sync.models.git import (
    FileChange,
    FileChangeStatus,
    GitRemoteConfig,
    OperationFailed,
    PullConflict,
    PullResult,
    PullSuccess,
    PushResult,
    PushSuccess,
    RemoteSetupResult,
    SyncConflict,
    SyncFailed,
    SyncResult,
    SyncStatus,
    SyncSuccess,
    VaultGitConfig,
    VaultGitStatus,
)
from vault_sync.protocols import CommitMessageGenerator, DirectoryHandle, HostingApiProtocol

# Per-path (HEAD, WORKDIR) presence: 0 absent, 1 same as HEAD, 2 different.
StatusRow = tuple[str, int, int]


def git_blob_hash(data: bytes) -> str:
    """Object id git assigns to a blob with this content."""
    return hashlib.sha1(b"blob %d\0" % len(data) + data).hexdigest()


def classify_change(head: int, workdir: int) -> FileChangeStatus | None:
    """Change kind for a status row, or None when unchanged."""
    if head == workdir:
        return None
    if head == 0 and workdir == 2:
        return FileChangeStatus.ADDED
    if head == 1 and workdir == 0:
        return FileChangeStatus.DELETED
    return FileChangeStatus.MODIFIED


class GitSyncEngine:
    """Orchestrates git operations for any number of vaults."""

    def __init__(
        self,
        store: GitStore,
        adapters: AdapterCache | None = None,
        *,
        hosting_factory: Callable[[str], HostingApiProtocol] = GitHubApi,
        message_generator: CommitMessageGenerator | None = None,
        cors_proxy: str | None = config.CORS_PROXY,
    ) -> None:
        self.store = store
        self.adapters = adapters or AdapterCache()
        self.hosting_factory = hosting_factory
        self.message_generator = message_generator
        self.cors_proxy = cors_proxy

    # --- helpers ---

    def _adapter(self, vault_id: str, handle: DirectoryHandle) -> StorageAdapter:
        return self.adapters.get(vault_id, handle)

    def _config(self, vault_id: str, handle: DirectoryHandle) -> VaultGitConfig:
        return self.store.vault_config(vault_id, handle.name)

    def _runner(self, handle: DirectoryHandle) -> GitRunner:
        creds = self.store.credentials
        author = GitAuthor(
            (creds and creds.user_name) or config.DEFAULT_AUTHOR_NAME,
            (creds and creds.user_email) or config.DEFAULT_AUTHOR_EMAIL,
        )
        return GitRunner(Path(handle.location), author=author)

    def _token(self) -> str | None:
        creds = self.store.credentials
        return creds.token if creds and creds.token else None

    def _require_token(self) -> str:
        token = self._token()
        if not token:
            msg = "Git credentials not configured"
            raise AuthenticationError(msg)
        return token

    def _hosting(self) -> HostingApiProtocol:
        return self.hosting_factory(self._require_token())

    def _require_remote(self, vault_id: str, handle: DirectoryHandle) -> GitRemoteConfig:
        remote = self._config(vault_id, handle).remote
        if remote is None:
            msg = "No remote configured"
            raise VaultSyncError(msg)
        return remote

    def _network_url(self, url: str, token: str | None) -> str:
        return remote_url_for(url, token, self.cors_proxy)

    # --- probes ---

    def is_git_initialized(self, vault_id: str, handle: DirectoryHandle) -> bool:
        try:
            return "HEAD" in self._adapter(vault_id, handle).readdir(".git")
        except (EntryNotFoundError, OSError):
            return False

    def has_foreign_git_plugin(self, vault_id: str, handle: DirectoryHandle) -> bool:
        try:
            self._adapter(vault_id, handle).readdir(config.FOREIGN_GIT_PLUGIN_DIR)
        except (EntryNotFoundError, OSError):
            return False
        return True

    def get_current_branch(self, vault_id: str, handle: DirectoryHandle) -> str | None:
        try:
            return self._runner(handle).output("symbolic-ref", "--short", "-q", "HEAD") or None
        except TransportError:
            return None

    def get_remotes(self, vault_id: str, handle: DirectoryHandle) -> list[GitRemoteConfig]:
        proc = self._runner(handle).run(
            "config", "--get-regexp", r"^remote\..*\.url$", check=False
        )
        remotes = []
        for line in proc.stdout.splitlines():
            key, _, url = line.partition(" ")
            name = key.removeprefix("remote.").removesuffix(".url")
            remotes.append(GitRemoteConfig(name=name, url=url))
        return remotes

    def _status_matrix(self, vault_id: str, handle: DirectoryHandle) -> list[StatusRow]:
        runner = self._runner(handle)
        adapter = self._adapter(vault_id, handle)

        head: dict[str, str] = {}
        if runner.rev_parse("HEAD"):
            for record in runner.output("ls-tree", "-r", "-z", "--full-tree", "HEAD").split("\0"):
                meta, _, path = record.partition("\t")
                parts = meta.split()
                if path and len(parts) == 3 and parts[1] == "blob":
                    head[path] = parts[2]

        listed = runner.output("ls-files", "-z", "--cached", "--others", "--exclude-standard")
        paths = set(head) | {p for p in listed.split("\0") if p}

        rows: list[StatusRow] = []
        for path in sorted(paths):
            if path.startswith(".git/"):
                continue
            try:
                data = adapter.read_file(path)
            except EntryNotFoundError:
                workdir = 0
            else:
                workdir = 1 if head.get(path) == git_blob_hash(data) else 2
            rows.append((path, 1 if path in head else 0, workdir))
        return rows

    def get_changed_files(self, vault_id: str, handle: DirectoryHandle) -> list[FileChange]:
        try:
            rows = self._status_matrix(vault_id, handle)
        except (VaultSyncError, OSError):
            logger.debug("Could not compute changes for {}", vault_id, exc_info=True)
            return []
        changes = []
        for path, head, workdir in rows:
            status = classify_change(head, workdir)
            if status is not None:
                changes.append(FileChange(path=path, name=path.rsplit("/", 1)[-1], status=status))
        return changes

    def get_status(self, vault_id: str, handle: DirectoryHandle) -> VaultGitStatus:
        cached = self._config(vault_id, handle).status
        foreign = self.has_foreign_git_plugin(vault_id, handle)
        if not self.is_git_initialized(vault_id, handle):
            return VaultGitStatus(last_sync_time=cached.last_sync_time, has_foreign_git_plugin=foreign)

        runner = self._runner(handle)
        remotes = self.get_remotes(vault_id, handle)
        branch = self.get_current_branch(vault_id, handle)
        changes = self.get_changed_files(vault_id, handle)

        has_unpushed = False
        if remotes and branch:
            local = runner.rev_parse(f"refs/heads/{branch}")
            tracking = runner.rev_parse(f"refs/remotes/{config.DEFAULT_REMOTE_NAME}/{branch}")
            # Without a tracking ref nothing proves the branch was pushed.
            has_unpushed = local is None or tracking is None or local != tracking

        return VaultGitStatus(
            is_git_repo=True,
            has_remote=bool(remotes),
            current_branch=branch,
            changed_files_count=len(changes),
            has_unpushed_commits=has_unpushed,
            last_sync_time=cached.last_sync_time,
            sync_status=cached.sync_status,
            error_message=cached.error_message,
            has_foreign_git_plugin=foreign,
        )

    def refresh_status(self, vault_id: str, handle: DirectoryHandle) -> VaultGitStatus:
        """Recompute the status and cache it for display."""
        status = self.get_status(vault_id, handle)
        self._config(vault_id, handle).status = status
        return status

    # --- local operations ---

    def initialize(self, vault_id: str, handle: DirectoryHandle) -> None:
        """Create a repository with a default ignore file as its first commit."""
        self._config(vault_id, handle)
        self.store.set_sync_status(vault_id, SyncStatus.SYNCING)
        try:
            runner = self._runner(handle)
            runner.run("init", "-b", config.DEFAULT_BRANCH)
            adapter = self._adapter(vault_id, handle)
            if not adapter.exists(".gitignore"):
                adapter.write_file(".gitignore", config.DEFAULT_GITIGNORE)
            runner.run("add", "--", ".gitignore")
            if not runner.rev_parse("HEAD") or not runner.succeeds(
                "diff", "--cached", "--quiet", "HEAD"
            ):
                runner.run("commit", "--quiet", "-m", "Initial commit")
            self.refresh_status(vault_id, handle)
            self.store.record_sync(vault_id)
            logger.info("Initialized git repository in {}", handle.location)
        except (VaultSyncError, OSError) as e:
            self.store.set_error(vault_id, str(e) or "Failed to initialize Git")
            raise

    def commit(self, vault_id: str, handle: DirectoryHandle, message: str) -> str | None:
        """Stage everything and commit. Returns the new sha, or None if nothing changed."""
        self._config(vault_id, handle)
        self.store.set_sync_status(vault_id, SyncStatus.COMMITTING)
        try:
            runner = self._runner(handle)
            runner.run("add", "--all", "--", ".")
            for path, head, workdir in self._status_matrix(vault_id, handle):
                if head == 1 and workdir == 0:
                    runner.run("rm", "--cached", "--quiet", "--ignore-unmatch", "--", path)

            if runner.rev_parse("HEAD"):
                has_changes = not runner.succeeds("diff", "--cached", "--quiet", "HEAD")
            else:
                has_changes = bool(runner.output("ls-files"))
            if not has_changes:
                self.store.set_sync_status(vault_id, SyncStatus.IDLE)
                return None

            runner.run("commit", "--quiet", "-m", message)
            sha = runner.rev_parse("HEAD")
            self.store.set_sync_status(vault_id, SyncStatus.IDLE)
            self.refresh_status(vault_id, handle)
            logger.info("Committed {}: {}", (sha or "")[:8], message)
            return sha
        except (VaultSyncError, OSError) as e:
            self.store.set_error(vault_id, str(e) or "Commit failed")
            raise

    def set_remote(
        self,
        vault_id: str,
        handle: DirectoryHandle,
        url: str,
        name: str = config.DEFAULT_REMOTE_NAME,
    ) -> None:
        """Point ``name`` at ``url``, replacing any existing remote of that name."""
        self._config(vault_id, handle)
        try:
            runner = self._runner(handle)
            if any(r.name == name for r in self.get_remotes(vault_id, handle)):
                runner.run("remote", "remove", name)
            runner.run("remote", "add", name, url)
            self.store.set_remote(vault_id, url, name)
            self.refresh_status(vault_id, handle)
        except (VaultSyncError, OSError) as e:
            self.store.set_error(vault_id, str(e) or "Failed to set remote")
            raise

    def generate_message(self, vault_id: str, handle: DirectoryHandle) -> str:
        settings = self._config(vault_id, handle).sync_settings
        return generate_commit_message(
            self.get_changed_files(vault_id, handle),
            settings.commit_message_style,
            template=settings.commit_message_template,
            vault_name=handle.name,
            generator=self.message_generator,
        )

    # --- network operations ---

    def pull(self, vault_id: str, handle: DirectoryHandle) -> PullResult:
        """Fetch the current branch and merge it.

        An empty or missing remote is a successful pull of zero files. Merge
        conflicts abort the merge and leave the working tree untouched.
        """
        self._config(vault_id, handle)
        self.store.set_sync_status(vault_id, SyncStatus.PULLING)
        try:
            runner = self._runner(handle)
            branch = self.get_current_branch(vault_id, handle) or config.DEFAULT_BRANCH
            remote = self._require_remote(vault_id, handle)
            tracking = f"refs/remotes/{remote.name}/{branch}"

            try:
                runner.run(
                    "fetch",
                    "--no-tags",
                    self._network_url(remote.url, self._token()),
                    f"+refs/heads/{branch}:{tracking}",
                )
            except TransportError as e:
                if e.kind in EMPTY_REMOTE_KINDS:
                    logger.info("Remote has nothing to pull ({})", e.kind.value)
                    self.store.set_sync_status(vault_id, SyncStatus.IDLE)
                    return PullSuccess()
                raise

            before = runner.rev_parse("HEAD")
            theirs = runner.rev_parse(tracking)
            if theirs is None:
                self.store.set_sync_status(vault_id, SyncStatus.IDLE)
                return PullSuccess()
            fast_forward = before is None or runner.succeeds(
                "merge-base", "--is-ancestor", before, theirs
            )

            merge = runner.run(
                "merge", "--no-edit", "--allow-unrelated-histories", tracking, check=False
            )
            if merge.returncode != 0:
                conflicts = [
                    p for p in runner.output("diff", "--name-only", "--diff-filter=U").splitlines() if p
                ]
                if conflicts:
                    runner.run("merge", "--abort", check=False)
                else:
                    # Refused before touching the tree: local edits collide with incoming ones.
                    conflicts = overwritten_by_merge(f"{merge.stderr}\n{merge.stdout}")
                if conflicts:
                    self.store.set_sync_status(vault_id, SyncStatus.CONFLICT)
                    self.store.update_status(vault_id, error_message="Merge conflicts detected")
                    logger.warning("Merge conflicts in {}: {}", handle.name, ", ".join(conflicts))
                    return PullConflict(conflict_files=tuple(conflicts))
                output = redact((merge.stderr or merge.stdout).strip())
                raise TransportError(output or "Merge failed", command="merge")

            after = runner.rev_parse("HEAD")
            if before is None:
                updated = len([p for p in runner.output("ls-files").splitlines() if p])
            elif before == after:
                updated = 0
            else:
                diff = runner.output("diff", "--name-only", before, after or "HEAD")
                updated = len([p for p in diff.splitlines() if p])

            self.store.record_sync(vault_id)
            return PullSuccess(updated_files=updated, fast_forward=fast_forward)
        except (VaultSyncError, OSError) as e:
            message = str(e) or "Pull failed"
            self.store.set_error(vault_id, message)
            return OperationFailed(error=message)

    def push(self, vault_id: str, handle: DirectoryHandle) -> PushResult:
        self._config(vault_id, handle)
        self.store.set_sync_status(vault_id, SyncStatus.PUSHING)
        try:
            token = self._require_token()
            remote = self._require_remote(vault_id, handle)
            commits = self._push_branch(vault_id, handle, remote, token)
            self.store.record_sync(vault_id)
            return PushSuccess(commits_pushed=commits)
        except (VaultSyncError, OSError) as e:
            message = str(e) or "Push failed"
            self.store.set_error(vault_id, message)
            return OperationFailed(error=message)

    def _push_branch(
        self, vault_id: str, handle: DirectoryHandle, remote: GitRemoteConfig, token: str
    ) -> int:
        runner = self._runner(handle)
        branch = self.get_current_branch(vault_id, handle) or config.DEFAULT_BRANCH
        tracking = f"refs/remotes/{remote.name}/{branch}"
        if runner.rev_parse(tracking):
            ahead = int(runner.output("rev-list", "--count", f"{tracking}..HEAD"))
        else:
            ahead = int(runner.output("rev-list", "--count", "HEAD"))
        runner.run(
            "push", "--quiet", self._network_url(remote.url, token), f"HEAD:refs/heads/{branch}"
        )
        runner.run("update-ref", tracking, "HEAD")
        logger.info("Pushed {} commit(s) to {}", ahead, redact(remote.url))
        return ahead

    def is_remote_empty(self, vault_id: str) -> bool:
        """Ask the hosting API whether the remote has any branches.

        Remotes the API does not know about are reported non-empty, leaving
        the decision to the pull itself.
        """
        config_ = self.store.find_config(vault_id)
        if not self._token() or config_ is None or config_.remote is None:
            return True
        parsed = parse_github_url(config_.remote.url)
        if parsed is None:
            return False
        try:
            return not self._hosting().list_branches(*parsed)
        except (HostingApiError, OSError):
            logger.debug("Branch listing failed, treating remote as empty", exc_info=True)
            return True

    def sync_all(
        self, vault_id: str, handle: DirectoryHandle, commit_message: str | None = None
    ) -> SyncResult:
        """Pull, commit, then push if something was committed."""
        self._config(vault_id, handle)
        self.store.set_sync_status(vault_id, SyncStatus.SYNCING)
        pulled = 0
        sha: str | None = None
        try:
            if not self.is_remote_empty(vault_id):
                pull = self.pull(vault_id, handle)
                if isinstance(pull, PullConflict):
                    return SyncConflict(conflict_files=pull.conflict_files)
                if isinstance(pull, OperationFailed):
                    return SyncFailed(error=pull.error)
                pulled = pull.updated_files

            message = commit_message or self.generate_message(vault_id, handle)
            sha = self.commit(vault_id, handle, message)
            if sha is None:
                self.store.record_sync(vault_id)
                return SyncSuccess(pulled_files=pulled)

            push = self.push(vault_id, handle)
            if isinstance(push, OperationFailed):
                return SyncFailed(error=push.error, pulled_files=pulled, commit_hash=sha)
            return SyncSuccess(pulled_files=pulled, pushed_commits=push.commits_pushed, commit_hash=sha)
        except (VaultSyncError, OSError) as e:
            message = str(e) or "Sync failed"
            self.store.set_error(vault_id, message)
            return SyncFailed(error=message, pulled_files=pulled, commit_hash=sha)

    def clone(self, vault_id: str, handle: DirectoryHandle, url: str) -> bool:
        """Shallow single-branch clone into the (empty) vault directory."""
        self._config(vault_id, handle)
        self.store.set_sync_status(vault_id, SyncStatus.SYNCING)
        try:
            runner = self._runner(handle)
            runner.run(
                "clone",
                "--quiet",
                f"--depth={config.CLONE_DEPTH}",
                "--single-branch",
                self._network_url(url, self._require_token()),
                ".",
            )
            # Keep the token out of .git/config.
            runner.run("remote", "set-url", config.DEFAULT_REMOTE_NAME, url)
            self.adapters.invalidate(vault_id)
            self.store.set_remote(vault_id, url)
            self.store.record_sync(vault_id)
            logger.info("Cloned {} into {}", redact(url), handle.location)
            return True
        except (VaultSyncError, OSError) as e:
            self.store.set_error(vault_id, str(e) or "Clone failed")
            return False

    # --- hosting API ---

    @staticmethod
    def _owner_and_repo(url: str) -> tuple[str, str]:
        parsed = parse_github_url(url)
        if parsed is None:
            msg = "Invalid GitHub URL"
            raise ValueError(msg)
        return parsed

    def check_repo_exists(self, url: str) -> bool:
        return self._hosting().repo_exists(*self._owner_and_repo(url))

    def create_remote_repo(
        self, name: str, *, private: bool = True, description: str | None = None
    ) -> str:
        return self._hosting().create_repo(name, private=private, description=description)

    def get_github_username(self) -> str | None:
        if not self._token():
            return None
        return self._hosting().current_user_login()

    def smart_setup_remote(
        self,
        vault_id: str,
        handle: DirectoryHandle,
        url: str,
        *,
        create_if_missing: bool = False,
        private: bool = True,
    ) -> RemoteSetupResult:
        """Check the remote exists (creating it if asked), attach it, push if new."""
        try:
            owner, repo = self._owner_and_repo(url)
            exists = self._hosting().repo_exists(owner, repo)
            if not exists and not create_if_missing:
                return RemoteSetupResult(success=False, error="Repository does not exist on GitHub")
            final_url = url
            if not exists:
                final_url = self.create_remote_repo(repo, private=private)

            self.set_remote(vault_id, handle, final_url)
            if not exists:
                push = self.push(vault_id, handle)
                if isinstance(push, OperationFailed):
                    return RemoteSetupResult(success=False, created=True, error=push.error)
            return RemoteSetupResult(success=True, created=not exists)
        except (VaultSyncError, OSError, ValueError) as e:
            return RemoteSetupResult(success=False, error=str(e) or "Failed to setup remote")

    # --- reset ---

    def reset(self, vault_id: str, handle: DirectoryHandle) -> bool:
        """Delete ``.git`` (best effort) and forget the vault's remote and status."""
        self._config(vault_id, handle)
        self.store.set_sync_status(vault_id, SyncStatus.SYNCING)
        try:
            self._adapter(vault_id, handle).rmdir(".git", recursive=True)
        except (EntryNotFoundError, OSError):
            logger.warning("Could not remove .git in {}", handle.location, exc_info=True)
        self.store.clear_remote(vault_id)
        self.adapters.invalidate(vault_id)
        logger.info("Reset git state of {}", handle.name)
        return True
