"""Query files: markdown with optional front matter, inbox scanning and archiving."""

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import frontmatter

from config.config_loader import MODES

logger = logging.getLogger(__name__)


@dataclass
class QueryFile:
    """A question plus the per-file overrides from its front matter."""

    path: Path
    question: str
    mode: str | None = None
    preset: str | None = None
    chairman: str | None = None
    responders: list[str] | None = None


def ensure_dirs(inbox_dir: Path, archive_dir: Path) -> None:
    inbox_dir.mkdir(parents=True, exist_ok=True)
    archive_dir.mkdir(parents=True, exist_ok=True)


def scan_inbox(inbox_dir: Path) -> list[Path]:
    """Return all .md files in inbox_dir, oldest first."""
    files = list(inbox_dir.glob("*.md"))
    return sorted(files, key=lambda p: p.stat().st_mtime)


def _responders(value: object) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        items = [v.strip() for v in value.split(",")]
    else:
        items = [str(v).strip() for v in value]  # type: ignore[union-attr]
    return [v for v in items if v] or None


def parse_query_file(file_path: Path) -> QueryFile:
    """Parse a query file.

    Recognized front matter keys: ``mode``, ``preset``, ``chairman`` and
    ``responders`` (a list or a comma-separated string). Unknown keys are
    ignored.

    Raises:
        ValueError: If the body is empty or ``mode`` is not a known mode.
    """
    post = frontmatter.load(str(file_path))
    question = post.content.strip()
    if not question:
        raise ValueError(f"{file_path.name}: no question text")

    meta = dict(post.metadata)
    mode = meta.get("mode")
    if mode is not None and str(mode) not in MODES:
        raise ValueError(f"{file_path.name}: unknown mode '{mode}'")

    return QueryFile(
        path=file_path,
        question=question,
        mode=str(mode) if mode is not None else None,
        preset=str(meta["preset"]) if meta.get("preset") else None,
        chairman=str(meta["chairman"]) if meta.get("chairman") else None,
        responders=_responders(meta.get("responders")),
    )


def archive_file(file_path: Path, archive_dir: Path, *, failed: bool = False) -> Path:
    """Move file to archive_dir with a timestamp prefix (plus ``FAILED_`` on failure)."""
    timestamp = datetime.now().strftime("%Y-%m-%dT%H%M")
    prefix = "FAILED_" if failed else ""
    dest = archive_dir / f"{prefix}{timestamp}_{file_path.name}"
    shutil.move(str(file_path), str(dest))
    logger.debug("Archived %s -> %s", file_path.name, dest)
    return dest
