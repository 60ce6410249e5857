"""Tests for commit message generation."""

from datetime import UTC, datetime

from vault_sync.core.git.messages import format_date, generate_commit_message
from vault_sync.models.git import CommitMessageStyle, FileChange, FileChangeStatus

NOW = datetime(2024, 5, 1, 9, 30, tzinfo=UTC)


def _change(name: str, status: FileChangeStatus = FileChangeStatus.MODIFIED) -> FileChange:
    return FileChange(path=f"notes/{name}", name=name, status=status)


def test_format_date() -> None:
    assert format_date(NOW) == "2024-05-01 09:30"


def test_smart_single_change_uses_verb() -> None:
    assert generate_commit_message([_change("a.md", FileChangeStatus.ADDED)], now=NOW) == "Add a.md"
    assert (
        generate_commit_message([_change("a.md", FileChangeStatus.DELETED)], now=NOW)
        == "Delete a.md"
    )
    assert generate_commit_message([_change("a.md")], now=NOW) == "Update a.md"


def test_smart_few_and_many_changes() -> None:
    few = [_change("a.md"), _change("b.md")]
    assert generate_commit_message(few, now=NOW) == "Update a.md, b.md"

    many = [_change(f"{i}.md") for i in range(5)]
    assert generate_commit_message(many, now=NOW) == "vault backup: 2024-05-01 09:30 (5 files)"


def test_smart_without_changes() -> None:
    assert generate_commit_message([], now=NOW) == "sync: 2024-05-01 09:30"


def test_timestamp_style() -> None:
    message = generate_commit_message([_change("a.md")], CommitMessageStyle.TIMESTAMP, now=NOW)
    assert message == "vault backup: 2024-05-01 09:30"


def test_custom_template_placeholders() -> None:
    message = generate_commit_message(
        [_change("a.md"), _change("b.md")],
        CommitMessageStyle.CUSTOM,
        template="{{vault}}: {{count}} files ({{files}}) at {{date}}",
        vault_name="Notes",
        now=NOW,
    )
    assert message == "Notes: 2 files (a.md, b.md) at 2024-05-01 09:30"


def test_ai_style_uses_generator() -> None:
    def generator(changes: list[FileChange], vault_name: str) -> str | None:
        return f"  Tidy {vault_name} ({len(changes)})  "

    message = generate_commit_message(
        [_change("a.md")], CommitMessageStyle.AI, vault_name="Notes", generator=generator, now=NOW
    )
    assert message == "Tidy Notes (1)"


def test_ai_style_falls_back_to_smart() -> None:
    def broken(changes: list[FileChange], vault_name: str) -> str | None:
        raise RuntimeError("quota exceeded")

    assert (
        generate_commit_message([_change("a.md")], CommitMessageStyle.AI, generator=broken, now=NOW)
        == "Update a.md"
    )
    assert generate_commit_message([_change("a.md")], CommitMessageStyle.AI, now=NOW) == "Update a.md"
