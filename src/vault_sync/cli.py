"""Command-line interface for vault-sync."""

import json
import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger

from vault_sync import config
from vault_sync.core.cloud.auth import CloudAuth
from vault_sync.core.cloud.engine import CloudSyncEngine
from vault_sync.core.cloud.settings import SettingsStore
from vault_sync.core.database.schema import open_state_db
from vault_sync.core.git.credentials import GitStore
from vault_sync.core.git.engine import GitSyncEngine
from vault_sync.core.storage.handles import LocalDirectoryHandle
from vault_sync.core.tabs.store import TabStore
from vault_sync.core.vaults.registry import VaultRegistry, local_handle_factory
from vault_sync.errors import VaultSyncError
from vault_sync.logging_config import configure_logging
from vault_sync.models.cloud import (
    BackupCreated,
    CloudConflict,
    CloudFailed,
    CloudNoData,
    CloudSynced,
    CloudSyncResult,
    CloudUpdateCheck,
    StorageProvider,
)
from vault_sync.models.git import (
    CommitMessageStyle,
    GitCredentials,
    OperationFailed,
    PullConflict,
    SyncConflict,
    SyncFailed,
)
from vault_sync.models.vault import DirectoryEntry, Entry, Vault

app = typer.Typer(help="Sync markdown vaults with Git and Google Drive.")
vault_app = typer.Typer(help="Manage vault directories.")
git_app = typer.Typer(help="Git sync for a vault.")
cloud_app = typer.Typer(help="Google Drive backup and sync of the editor tabs.")
settings_app = typer.Typer(help="Cloud sync settings.")
app.add_typer(vault_app, name="vault")
app.add_typer(git_app, name="git")
app.add_typer(cloud_app, name="cloud")
app.add_typer(settings_app, name="settings")

VaultRef = Annotated[str, typer.Argument(help="Vault id or name")]


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    state_dir: Annotated[
        Path | None,
        typer.Option("--state-dir", "-s", help="Directory holding the state database"),
    ] = None,
) -> None:
    configure_logging(verbose=verbose)
    ctx.obj = state_dir


def _open_state(ctx: typer.Context) -> sqlite3.Connection:
    state_dir: Path | None = ctx.obj
    if state_dir is None:
        state_dir = config.resolve_state_directory()
    else:
        state_dir = state_dir.expanduser()
        state_dir.mkdir(parents=True, exist_ok=True)
    conn = open_state_db(state_dir / config.STATE_DB_NAME)
    ctx.call_on_close(conn.close)
    return conn


def _registry(conn: sqlite3.Connection, *, prompt: bool = False) -> VaultRegistry:
    factory = local_handle_factory(
        (lambda path: typer.confirm(f"Allow access to {path}?")) if prompt else None
    )
    registry = VaultRegistry(conn, handle_factory=factory)
    registry.reconnect_all()
    return registry


def _vault(registry: VaultRegistry, ref: str) -> Vault:
    vault = registry.get_vault(ref) or next((v for v in registry.vaults if v.name == ref), None)
    if vault is None:
        logger.error("Vault not found or not accessible: {}", ref)
        raise typer.Exit(1)
    return vault


def _git(ctx: typer.Context, ref: str) -> tuple[GitSyncEngine, Vault]:
    conn = _open_state(ctx)
    return GitSyncEngine(GitStore(conn)), _vault(_registry(conn), ref)


def _cloud(ctx: typer.Context) -> tuple[CloudSyncEngine, sqlite3.Connection]:
    conn = _open_state(ctx)
    engine = CloudSyncEngine(CloudAuth(conn))
    engine.initialize()
    return engine, conn


def _echo_tree(entries: list[Entry], indent: int = 0) -> None:
    for entry in entries:
        suffix = "/" if isinstance(entry, DirectoryEntry) else ""
        typer.echo(f"{'  ' * indent}{entry.name}{suffix}")
        if isinstance(entry, DirectoryEntry):
            _echo_tree(entry.children, indent + 1)


# --- vault ---


@vault_app.command("add")
def vault_add(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Directory to open as a vault"),
) -> None:
    """Register a directory as a vault."""
    if not path.expanduser().is_dir():
        logger.error("Not a directory: {}", path)
        raise typer.Exit(1)
    registry = _registry(_open_state(ctx))
    vault = registry.add_vault(LocalDirectoryHandle(path))
    if vault is None:
        logger.error(registry.error or "Could not add vault")
        raise typer.Exit(1)
    typer.echo(f"{vault.id}  {vault.name}")


@vault_app.command("list")
def vault_list(ctx: typer.Context) -> None:
    """List active and pending vaults."""
    registry = _registry(_open_state(ctx))
    for vault in registry.vaults:
        typer.echo(f"{vault.id}  {vault.name}  {vault.handle.location}")
    for pending in registry.pending_vaults():
        typer.echo(f"{pending.vault_id}  {pending.name}  {pending.path}  (needs permission)")


@vault_app.command("remove")
def vault_remove(ctx: typer.Context, vault_id: str = typer.Argument(...)) -> None:
    """Forget a vault. Files on disk are not touched."""
    conn = _open_state(ctx)
    _registry(conn).remove_vault(vault_id)
    GitStore(conn).remove_config(vault_id)
    typer.echo(f"Removed {vault_id}")


@vault_app.command("reconnect")
def vault_reconnect(ctx: typer.Context) -> None:
    """Reconnect persisted vaults without prompting."""
    registry = _registry(_open_state(ctx))
    typer.echo(
        f"{len(registry.vaults)} active, {len(registry.pending_vaults())} need permission"
    )


@vault_app.command("grant")
def vault_grant(ctx: typer.Context, vault_id: str = typer.Argument(...)) -> None:
    """Re-grant access to a pending vault."""
    registry = _registry(_open_state(ctx), prompt=True)
    vault = registry.request_vault_permission(vault_id)
    if vault is None:
        logger.error(registry.error or f"Unknown vault: {vault_id}")
        raise typer.Exit(1)
    typer.echo(f"Reconnected {vault.name}")


@vault_app.command("tree")
def vault_tree(ctx: typer.Context, vault: VaultRef) -> None:
    """Show the markdown files of a vault."""
    _echo_tree(_vault(_registry(_open_state(ctx)), vault).entries)


# --- git ---


@git_app.command("credentials")
def git_credentials(
    ctx: typer.Context,
    token: Annotated[str | None, typer.Option("--token", help="Personal access token")] = None,
    name: str = typer.Option("", "--name", help="Commit author name"),
    email: str = typer.Option("", "--email", help="Commit author email"),
    clear: bool = typer.Option(False, "--clear", help="Forget stored credentials"),
) -> None:
    """Store or clear the Git hosting token and commit author."""
    store = GitStore(_open_state(ctx))
    if clear:
        store.clear_credentials()
        typer.echo("Credentials cleared")
        return
    if not token:
        creds = store.credentials
        typer.echo(f"Configured for {creds.user_name or '?'}" if creds else "Not configured")
        return
    store.set_credentials(GitCredentials(token=token, user_name=name, user_email=email))
    typer.echo("Credentials saved")


@git_app.command("init")
def git_init(ctx: typer.Context, vault: VaultRef) -> None:
    """Initialize a repository in the vault."""
    engine, v = _git(ctx, vault)
    try:
        engine.initialize(v.id, v.handle)
    except (VaultSyncError, OSError) as e:
        logger.error("Init failed: {}", e)
        raise typer.Exit(1) from e
    typer.echo(f"Initialized {v.name}")


@git_app.command("status")
def git_status(
    ctx: typer.Context,
    vault: VaultRef,
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show the repository state of a vault."""
    engine, v = _git(ctx, vault)
    status = engine.refresh_status(v.id, v.handle)
    if output_json:
        typer.echo(json.dumps(status.as_dict(), indent=2, default=str))
        return
    typer.echo(f"repository: {'yes' if status.is_git_repo else 'no'}")
    typer.echo(f"branch:     {status.current_branch or '-'}")
    typer.echo(f"remote:     {'yes' if status.has_remote else 'no'}")
    typer.echo(f"changes:    {status.changed_files_count}")
    typer.echo(f"unpushed:   {'yes' if status.has_unpushed_commits else 'no'}")
    if status.error_message:
        typer.echo(f"error:      {status.error_message}")


@git_app.command("changes")
def git_changes(ctx: typer.Context, vault: VaultRef) -> None:
    """List changed files."""
    engine, v = _git(ctx, vault)
    for change in engine.get_changed_files(v.id, v.handle):
        typer.echo(f"{change.status.value[0].upper()} {change.path}")


@git_app.command("remote")
def git_remote(ctx: typer.Context, vault: VaultRef, url: str = typer.Argument(...)) -> None:
    """Set the remote URL."""
    engine, v = _git(ctx, vault)
    try:
        engine.set_remote(v.id, v.handle, url)
    except (VaultSyncError, OSError) as e:
        logger.error("Setting the remote failed: {}", e)
        raise typer.Exit(1) from e
    typer.echo("Remote set")


@git_app.command("setup")
def git_setup(
    ctx: typer.Context,
    vault: VaultRef,
    url: str = typer.Argument(..., help="GitHub repository URL"),
    create: bool = typer.Option(False, "--create", help="Create the repository if missing"),
    public: bool = typer.Option(False, "--public", help="Create a public repository"),
) -> None:
    """Check or create the GitHub repository and attach it as remote."""
    engine, v = _git(ctx, vault)
    result = engine.smart_setup_remote(
        v.id, v.handle, url, create_if_missing=create, private=not public
    )
    if not result.success:
        logger.error(result.error or "Setup failed")
        raise typer.Exit(1)
    typer.echo("Repository created and pushed" if result.created else "Remote configured")


@git_app.command("pull")
def git_pull(ctx: typer.Context, vault: VaultRef) -> None:
    """Fetch and merge the remote branch."""
    engine, v = _git(ctx, vault)
    result = engine.pull(v.id, v.handle)
    if isinstance(result, OperationFailed):
        logger.error(result.error)
        raise typer.Exit(1)
    if isinstance(result, PullConflict):
        logger.error("Merge conflicts: {}", ", ".join(result.conflict_files))
        raise typer.Exit(1)
    typer.echo(f"Pulled {result.updated_files} file(s)")


@git_app.command("push")
def git_push(ctx: typer.Context, vault: VaultRef) -> None:
    """Push local commits."""
    engine, v = _git(ctx, vault)
    result = engine.push(v.id, v.handle)
    if isinstance(result, OperationFailed):
        logger.error(result.error)
        raise typer.Exit(1)
    typer.echo(f"Pushed {result.commits_pushed} commit(s)")


@git_app.command("sync")
def git_sync(
    ctx: typer.Context,
    vault: VaultRef,
    message: Annotated[str | None, typer.Option("--message", "-m")] = None,
) -> None:
    """Pull, commit and push."""
    engine, v = _git(ctx, vault)
    result = engine.sync_all(v.id, v.handle, message)
    if isinstance(result, SyncConflict):
        logger.error("Merge conflicts: {}", ", ".join(result.conflict_files))
        raise typer.Exit(1)
    if isinstance(result, SyncFailed):
        logger.error(result.error)
        raise typer.Exit(1)
    typer.echo(f"Pulled {result.pulled_files} file(s), pushed {result.pushed_commits} commit(s)")


@git_app.command("clone")
def git_clone(ctx: typer.Context, vault: VaultRef, url: str = typer.Argument(...)) -> None:
    """Clone a repository into an empty vault."""
    conn = _open_state(ctx)
    engine = GitSyncEngine(GitStore(conn))
    registry = _registry(conn)
    v = _vault(registry, vault)
    if not engine.clone(v.id, v.handle, url):
        logger.error(engine.store.vault_config(v.id).status.error_message or "Clone failed")
        raise typer.Exit(1)
    registry.refresh_vault(v.id)
    typer.echo(f"Cloned into {v.name}")


@git_app.command("reset")
def git_reset(
    ctx: typer.Context,
    vault: VaultRef,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete the vault's repository metadata and remote."""
    engine, v = _git(ctx, vault)
    if not yes:
        typer.confirm(f"Delete .git in {v.handle.location}?", abort=True)
    engine.reset(v.id, v.handle)
    typer.echo("Git state reset")


@git_app.command("message")
def git_message(
    ctx: typer.Context,
    vault: VaultRef,
    style: Annotated[CommitMessageStyle | None, typer.Option("--style")] = None,
    template: Annotated[str | None, typer.Option("--template")] = None,
) -> None:
    """Print the commit message the next sync would use, optionally changing its style."""
    engine, v = _git(ctx, vault)
    changes: dict[str, object] = {}
    if style is not None:
        changes["commit_message_style"] = style
    if template is not None:
        changes["commit_message_template"] = template
    if changes:
        engine.store.vault_config(v.id, v.name)
        engine.store.update_settings(v.id, **changes)
    typer.echo(engine.generate_message(v.id, v.handle))


# --- cloud ---


def _report(result: CloudSyncResult) -> None:
    if isinstance(result, CloudConflict):
        logger.error(
            "Cloud copy changed at {}. Run 'cloud resolve cloud' or 'cloud resolve local'.",
            result.cloud_time.isoformat(),
        )
        raise typer.Exit(1)
    if isinstance(result, CloudFailed):
        logger.error(result.error)
        raise typer.Exit(1)
    typer.echo("Synced")


def _tabs(conn: sqlite3.Connection) -> TabStore:
    tabs = TabStore(conn)
    tabs.load()
    return tabs


@cloud_app.command("client-id")
def cloud_client_id(ctx: typer.Context, client_id: str = typer.Argument(...)) -> None:
    """Set the Google OAuth client id."""
    CloudAuth(_open_state(ctx)).client_id = client_id
    typer.echo("Client id saved")


@cloud_app.command("sign-in")
def cloud_sign_in(ctx: typer.Context) -> None:
    """Print the Google authorization URL."""
    engine, _ = _cloud(ctx)
    try:
        url = engine.auth.sign_in()
    except (VaultSyncError, OSError) as e:
        logger.error(str(e))
        raise typer.Exit(1) from e
    typer.echo("Open this URL, then pass the URL you are redirected to to 'cloud callback':")
    typer.echo(url)


@cloud_app.command("callback")
def cloud_callback(ctx: typer.Context, redirect_url: str = typer.Argument(...)) -> None:
    """Finish sign-in with the redirect URL."""
    engine, _ = _cloud(ctx)
    result = engine.complete_sign_in(redirect_url)
    if not result.success:
        logger.error(result.error or "Sign-in failed")
        raise typer.Exit(1)
    typer.echo(f"Signed in as {result.user.email if result.user else '?'}")


@cloud_app.command("status")
def cloud_status(ctx: typer.Context) -> None:
    """Show the cloud connection and conflict state."""
    engine, _ = _cloud(ctx)
    status = engine.status()
    user = engine.auth.user
    typer.echo(f"connected:  {'yes' if status.is_connected else 'no'}")
    if user:
        typer.echo(f"account:    {user.email}")
    if status.needs_reauthorization:
        typer.echo("token expired, run 'cloud sign-in'")
    if status.has_conflict:
        time = status.conflict_cloud_time.isoformat() if status.conflict_cloud_time else "?"
        typer.echo(f"conflict:   cloud changed at {time}, auto sync paused")
    if status.error:
        typer.echo(f"error:      {status.error}")


@cloud_app.command("sync")
def cloud_sync(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite a newer cloud copy"),
) -> None:
    """Upload the editor tabs."""
    engine, conn = _cloud(ctx)
    settings = SettingsStore(conn).load()
    _report(
        engine.sync_with_backup(
            _tabs(conn).to_dict(),
            backup_enabled=settings.backup_enabled,
            retention_days=settings.backup_retention_days,
            force=force,
        )
    )


@cloud_app.command("load")
def cloud_load(ctx: typer.Context) -> None:
    """Replace the editor tabs with the cloud copy."""
    engine, conn = _cloud(ctx)
    data = engine.load_from_cloud()
    if data is None:
        logger.error(engine.auth.last_error or "No cloud data")
        raise typer.Exit(1)
    tabs = TabStore(conn)
    tabs.load_dict(data)
    tabs.save()
    typer.echo(f"Loaded {len(tabs.tabs)} tab(s)")


@cloud_app.command("backup")
def cloud_backup(ctx: typer.Context) -> None:
    """Create a timestamped backup of the cloud copy."""
    engine, _ = _cloud(ctx)
    result = engine.create_manual_backup()
    if isinstance(result, BackupCreated):
        typer.echo(f"Created {result.name}")
        return
    if isinstance(result, CloudNoData):
        logger.error("No cloud data to backup. Please sync first.")
        raise typer.Exit(1)
    _report(result)


@cloud_app.command("backups")
def cloud_backups(ctx: typer.Context) -> None:
    """List backups, newest first."""
    engine, _ = _cloud(ctx)
    for backup in engine.list_backups():
        typer.echo(f"{backup.id}  {backup.name}")


@cloud_app.command("restore")
def cloud_restore(ctx: typer.Context, backup_id: str = typer.Argument(...)) -> None:
    """Replace the editor tabs with a backup."""
    engine, conn = _cloud(ctx)
    data = engine.restore_from_backup(backup_id)
    if data is None:
        logger.error(engine.auth.last_error or "Backup is empty")
        raise typer.Exit(1)
    tabs = TabStore(conn)
    tabs.load_dict(data)
    tabs.save()
    typer.echo(f"Restored {len(tabs.tabs)} tab(s)")


@cloud_app.command("check")
def cloud_check(ctx: typer.Context) -> None:
    """Check whether the cloud copy changed since the last sync."""
    engine, _ = _cloud(ctx)
    result = engine.check_for_cloud_updates()
    typer.echo(result.value)
    if result == CloudUpdateCheck.ERROR:
        raise typer.Exit(1)


@cloud_app.command("resolve")
def cloud_resolve(
    ctx: typer.Context,
    keep: str = typer.Argument(..., help="'cloud' or 'local'"),
) -> None:
    """Resolve a conflict by keeping one side."""
    engine, conn = _cloud(ctx)
    if keep == "cloud":
        data = engine.resolve_conflict_with_cloud()
        if data is None:
            logger.error(engine.auth.last_error or "No cloud data")
            raise typer.Exit(1)
        tabs = TabStore(conn)
        tabs.load_dict(data)
        tabs.save()
        typer.echo("Kept the cloud copy")
    elif keep == "local":
        settings = SettingsStore(conn).load()
        result = engine.resolve_conflict_with_local(
            _tabs(conn).to_dict(),
            backup_enabled=settings.backup_enabled,
            retention_days=settings.backup_retention_days,
        )
        if isinstance(result, CloudSynced):
            typer.echo("Kept the local copy")
        else:
            _report(result)
    else:
        logger.error("Expected 'cloud' or 'local', got {!r}", keep)
        raise typer.Exit(1)


@cloud_app.command("sign-out")
def cloud_sign_out(ctx: typer.Context) -> None:
    """Forget the Google account and all cloud references."""
    engine, _ = _cloud(ctx)
    engine.sign_out()
    typer.echo("Signed out")


# --- settings ---


@settings_app.command("show")
def settings_show(ctx: typer.Context) -> None:
    """Print the cloud sync settings."""
    settings = SettingsStore(_open_state(ctx)).load()
    typer.echo(json.dumps(settings.to_dict(), indent=2))


@settings_app.command("set")
def settings_set(
    ctx: typer.Context,
    provider: Annotated[StorageProvider | None, typer.Option("--provider")] = None,
    auto_sync: Annotated[bool | None, typer.Option("--auto-sync/--no-auto-sync")] = None,
    interval: Annotated[int | None, typer.Option("--interval", help="Minutes, 1-60")] = None,
    backup: Annotated[bool | None, typer.Option("--backup/--no-backup")] = None,
    retention: Annotated[int | None, typer.Option("--retention", help="Days, 1-30")] = None,
) -> None:
    """Change cloud sync settings."""
    changes = {
        "provider": provider,
        "auto_sync": auto_sync,
        "sync_interval_minutes": interval,
        "backup_enabled": backup,
        "backup_retention_days": retention,
    }
    settings = SettingsStore(_open_state(ctx)).update(
        **{k: v for k, v in changes.items() if v is not None}
    )
    typer.echo(json.dumps(settings.to_dict(), indent=2))
