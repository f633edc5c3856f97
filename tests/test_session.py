"""Tests for council/session.py."""

from pathlib import Path

import pytest

from council.models import CritiqueResult, PipelineResult, Stage1Result, Stage3Result
from council.session import append_to_history, load_history


def _result(question: str, answer: str, **kwargs) -> PipelineResult:
    return PipelineResult(
        question=question,
        mode="merge",
        stage1=[Stage1Result(agent="claude", response=f"claude on {question}")],
        stage2=None,
        aggregate=None,
        stage3=Stage3Result(agent="gemini", response=answer),
        **kwargs,
    )


def test_missing_file_is_empty_history(tmp_path: Path):
    assert load_history(tmp_path / "none.yaml") == []


def test_empty_file_is_empty_history(tmp_path: Path):
    path = tmp_path / "session.yaml"
    path.write_text("", encoding="utf-8")
    assert load_history(path) == []


def test_append_then_load(tmp_path: Path):
    path = tmp_path / "chats" / "session.yaml"
    append_to_history(path, _result("What is 2+2?", "4"))
    entry = append_to_history(path, _result("And 3+3?", "6"))

    assert entry.stage3_response == "6"
    history = load_history(path)
    assert [(e.question, e.stage3_response) for e in history] == [("What is 2+2?", "4"), ("And 3+3?", "6")]
    assert history[0].stage1 == [Stage1Result(agent="claude", response="claude on What is 2+2?")]
    assert "answer: '4'" in path.read_text(encoding="utf-8")


def test_append_records_the_final_answer(tmp_path: Path):
    path = tmp_path / "session.yaml"
    append_to_history(path, _result("q", "draft", critique=CritiqueResult(revised_draft="revised")))
    assert load_history(path)[0].stage3_response == "revised"


def test_unicode_survives(tmp_path: Path):
    path = tmp_path / "session.yaml"
    append_to_history(path, _result("Qué?", "日本"))
    assert load_history(path)[0].stage3_response == "日本"


@pytest.mark.parametrize(
    "content",
    [
        "history: not-a-list\n",
        "history:\n  - question: q\n",
        "history:\n  - just a string\n",
    ],
)
def test_malformed_session_raises(tmp_path: Path, content: str):
    path = tmp_path / "session.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ValueError):
        load_history(path)
