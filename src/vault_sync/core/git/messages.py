"""Commit message generation."""

from datetime import UTC, datetime

from loguru import logger

from vault_sync.models.git import CommitMessageStyle, FileChange, FileChangeStatus
from vault_sync.protocols import CommitMessageGenerator

DEFAULT_TEMPLATE = "vault backup: {{date}}"

_ACTIONS = {FileChangeStatus.ADDED: "Add", FileChangeStatus.DELETED: "Delete"}


def format_date(now: datetime | None = None) -> str:
    """``YYYY-MM-DD HH:MM`` in UTC."""
    return (now or datetime.now(UTC)).astimezone(UTC).strftime("%Y-%m-%d %H:%M")


def smart_message(changes: list[FileChange], date: str) -> str:
    if not changes:
        return f"sync: {date}"
    if len(changes) == 1:
        change = changes[0]
        return f"{_ACTIONS.get(change.status, 'Update')} {change.name}"
    if len(changes) <= 3:
        return "Update " + ", ".join(c.name for c in changes)
    return f"vault backup: {date} ({len(changes)} files)"


def render_template(template: str, values: dict[str, str]) -> str:
    for key, value in values.items():
        template = template.replace("{{" + key + "}}", value)
    return template


def generate_commit_message(
    changes: list[FileChange],
    style: CommitMessageStyle = CommitMessageStyle.SMART,
    *,
    template: str | None = None,
    vault_name: str | None = None,
    generator: CommitMessageGenerator | None = None,
    now: datetime | None = None,
) -> str:
    date = format_date(now)
    if style == CommitMessageStyle.TIMESTAMP:
        return f"vault backup: {date}"
    if style == CommitMessageStyle.CUSTOM:
        return render_template(
            template or DEFAULT_TEMPLATE,
            {
                "date": date,
                "count": str(len(changes)),
                "files": ", ".join(c.name for c in changes),
                "vault": vault_name or "vault",
            },
        )
    if style == CommitMessageStyle.AI and generator is not None:
        try:
            message = generator(changes, vault_name or "vault")
        except Exception:
            logger.warning("Commit message generator failed, using smart message", exc_info=True)
            message = None
        if message and message.strip():
            return message.strip()
    return smart_message(changes, date)
