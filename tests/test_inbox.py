"""Unit tests for council/inbox.py."""

import textwrap
from pathlib import Path

import pytest

from council.inbox import archive_file, ensure_dirs, parse_query_file, scan_inbox


def test_parse_query_file_no_frontmatter(tmp_path: Path) -> None:
    f = tmp_path / "question.md"
    f.write_text("Should we use Redis or Memcached?\n", encoding="utf-8")
    query = parse_query_file(f)
    assert query.question == "Should we use Redis or Memcached?"
    assert (query.mode, query.preset, query.chairman, query.responders) == (None, None, None, None)
    assert query.path == f


def test_parse_query_file_with_frontmatter(tmp_path: Path) -> None:
    f = tmp_path / "question.md"
    f.write_text(
        textwrap.dedent("""\
            ---
            mode: merge
            preset: merge-balanced
            chairman: claude:heavy
            responders: claude, codex:fast
            rounds: 3
            ---
            Draft a migration plan for our database.
        """),
        encoding="utf-8",
    )
    query = parse_query_file(f)
    assert query.question == "Draft a migration plan for our database."
    assert query.mode == "merge"
    assert query.preset == "merge-balanced"
    assert query.chairman == "claude:heavy"
    assert query.responders == ["claude", "codex:fast"]


def test_parse_query_file_responders_as_list(tmp_path: Path) -> None:
    f = tmp_path / "q.md"
    f.write_text("---\nresponders: [gemini, claude]\n---\nWhy?", encoding="utf-8")
    assert parse_query_file(f).responders == ["gemini", "claude"]


def test_parse_query_file_unknown_mode(tmp_path: Path) -> None:
    f = tmp_path / "q.md"
    f.write_text("---\nmode: debate\n---\nWhy?", encoding="utf-8")
    with pytest.raises(ValueError, match="unknown mode"):
        parse_query_file(f)


def test_parse_query_file_empty_body(tmp_path: Path) -> None:
    f = tmp_path / "q.md"
    f.write_text("---\nmode: merge\n---\n\n", encoding="utf-8")
    with pytest.raises(ValueError, match="no question"):
        parse_query_file(f)


def test_archive_file_success(tmp_path: Path) -> None:
    inbox = tmp_path / "inbox"
    archive = tmp_path / "archive"
    ensure_dirs(inbox, archive)

    src = inbox / "my-question.md"
    src.write_text("A question", encoding="utf-8")

    dest = archive_file(src, archive)

    assert not src.exists(), "Source should be moved"
    assert dest.exists(), "Destination should exist"
    assert dest.parent == archive
    # Timestamp prefix: YYYY-MM-DDTHHMM_my-question.md
    assert dest.name.endswith("_my-question.md")
    assert not dest.name.startswith("FAILED_")


def test_archive_file_failed(tmp_path: Path) -> None:
    inbox = tmp_path / "inbox"
    archive = tmp_path / "archive"
    ensure_dirs(inbox, archive)

    src = inbox / "broken.md"
    src.write_text("Bad question", encoding="utf-8")

    dest = archive_file(src, archive, failed=True)

    assert not src.exists()
    assert dest.name.startswith("FAILED_")
    assert "broken.md" in dest.name


def test_scan_inbox_only_markdown(tmp_path: Path) -> None:
    inbox = tmp_path / "inbox"
    inbox.mkdir()
    (inbox / "a.md").write_text("A", encoding="utf-8")
    (inbox / "notes.txt").write_text("ignored", encoding="utf-8")
    assert [p.name for p in scan_inbox(inbox)] == ["a.md"]


def test_scan_inbox_empty(tmp_path: Path) -> None:
    inbox = tmp_path / "inbox"
    inbox.mkdir()
    assert scan_inbox(inbox) == []
