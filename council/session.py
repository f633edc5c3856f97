"""Conversation history for follow-up questions, kept in a YAML session file."""

import logging
from pathlib import Path

import yaml

from council.models import ConversationEntry, PipelineResult, Stage1Result

logger = logging.getLogger(__name__)


def load_history(path: Path) -> list[ConversationEntry]:
    """Read the exchanges in a session file, oldest first.

    A missing or empty file is an empty history.

    Raises:
        ValueError: If the file is not a session file.
    """
    if not path.exists():
        return []
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    entries = raw.get("history") if isinstance(raw, dict) else None
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ValueError(f"Session file {path}: 'history' must be a list")

    try:
        history = [
            ConversationEntry(
                question=str(item["question"]),
                stage1=[
                    Stage1Result(agent=str(r["agent"]), response=str(r["response"]))
                    for r in item.get("stage1") or []
                ],
                stage3_response=str(item["answer"]),
            )
            for item in entries
        ]
    except (KeyError, TypeError, AttributeError) as exc:
        raise ValueError(f"Session file {path} is malformed: {exc}") from exc
    logger.debug("Loaded %d exchanges from %s", len(history), path)
    return history


def append_to_history(path: Path, result: PipelineResult) -> ConversationEntry:
    """Record a finished council run so the next question can follow up on it."""
    history = load_history(path)
    entry = ConversationEntry(
        question=result.question,
        stage1=list(result.stage1),
        stage3_response=result.final_answer,
    )
    history.append(entry)

    data = {
        "history": [
            {
                "question": e.question,
                "stage1": [{"agent": r.agent, "response": r.response} for r in e.stage1],
                "answer": e.stage3_response,
            }
            for e in history
        ]
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, allow_unicode=True, sort_keys=False)
    logger.info("Session %s now has %d exchanges", path, len(history))
    return entry
