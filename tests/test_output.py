"""Tests for council/output.py."""

from pathlib import Path

import pytest

from council.models import (
    AggregateRank,
    CritiqueItem,
    CritiqueResult,
    PipelineResult,
    Stage2CustomResult,
    Stage3Result,
    TwoPassResult,
    UniqueInsight,
)
from council.output import _slug, build_ranking_table, render_markdown, save_to_file


def test_slug_basic():
    assert _slug("Should we use YAML or JSON?") == "should-we-use-yaml-or-json"


def test_slug_max_len():
    assert len(_slug("a" * 100)) <= 40


def test_slug_special_chars():
    result = _slug("API vs. SDK (2024)")
    assert "." not in result
    assert "(" not in result
    assert ")" not in result


def test_slug_never_empty():
    assert _slug("???") == "council"


@pytest.fixture
def compete_result(sample_stage1, sample_stage2) -> PipelineResult:
    return PipelineResult(
        question="Should we use YAML or JSON?",
        mode="compete",
        stage1=sample_stage1,
        stage2=sample_stage2,
        aggregate=[AggregateRank("claude", 1.5, 2), AggregateRank("gemini", 1.5, 2), AggregateRank("codex", 3.0, 2)],
        stage3=Stage3Result("gemini", "## Consensus\nUse YAML."),
        label_to_agent={"Response A": "claude", "Response B": "codex", "Response C": "gemini"},
        total_duration_sec=12.5,
    )


def test_render_markdown_compete(compete_result):
    content = render_markdown(compete_result, source="cli")
    assert content.startswith("# Agent Council: Should we use YAML or JSON?")
    assert "**Mode:** compete" in content
    assert "**Chairman:** gemini" in content
    assert "## Stage 1: Responses" in content
    assert "### codex\n\nJSON is stricter; prefer it." in content
    assert "## Stage 2: Peer Rankings" in content
    assert "Response A = claude" in content
    assert "| 3 | codex | 3.00 | 2 |" in content
    assert content.rstrip().endswith("## Consensus\nUse YAML.")


def test_render_markdown_merge_has_no_rankings(sample_stage1):
    result = PipelineResult(
        question="q",
        mode="merge",
        stage1=sample_stage1,
        stage2=None,
        aggregate=None,
        stage3=Stage3Result("claude", "Merged.", used_fallback_chairman=True),
    )
    content = render_markdown(result)
    assert "Stage 2" not in content
    assert "**Chairman:** claude (fallback)" in content


def test_render_markdown_consolidation(sample_stage1):
    result = PipelineResult(
        question="q",
        mode="merge",
        stage1=sample_stage1,
        stage2=None,
        aggregate=None,
        stage3=Stage3Result("gemini", "Merged."),
        stage2_custom=Stage2CustomResult(
            sections={"format": "YAML for humans."},
            unique_insights=[UniqueInsight(source="codex", insight="Validate with a schema.")],
        ),
    )
    content = render_markdown(result)
    assert "## Stage 2: Consolidation" in content
    assert "### format\n\nYAML for humans." in content
    assert "- Validate with a schema. (codex)" in content
    assert "Peer Rankings" not in content

def test_render_markdown_two_pass_and_critique(compete_result):
    compete_result.two_pass = TwoPassResult(
        pass1=Stage3Result("gemini:heavy", "p1"),
        pass2=Stage3Result("gemini", ""),
        combined="## Executive Summary\n\nYAML.",
        pass1_sections=["executive_summary"],
        used_fallback=True,
    )
    compete_result.critique = CritiqueResult(
        applied=[CritiqueItem("codex-1", "codex", "blocking", "Cite sources", recommendation="Add links", applied=True)],
        rejected=[CritiqueItem("claude-1", "claude", "blocking", "Too long", applied=False, rejection_reason="Needed")],
        advisory=[CritiqueItem("claude-2", "claude", "advisory", "Tone")],
        revised_draft="Revised YAML answer.",
    )
    content = render_markdown(compete_result)
    assert "## Two-Pass Synthesis" in content
    assert "*Pass 2 (gemini) sections:* (none)" in content
    assert "Some sections fell back" in content
    assert "1 applied, 1 rejected, 1 advisory" in content
    assert "- **codex-1** (codex): Cite sources *Recommendation:* Add links" in content
    assert "*Rejected:* Needed" in content
    assert content.rstrip().endswith("Revised YAML answer.")


def test_build_ranking_table(compete_result):
    table = build_ranking_table(compete_result.aggregate)
    assert table.row_count == 3
    assert [c.header for c in table.columns] == ["#", "Agent", "Avg rank", "Votes"]


def test_save_to_file_creates_output_dir(tmp_path: Path, compete_result):
    output_dir = tmp_path / "nested" / "output"
    saved = save_to_file(compete_result, output_dir)
    assert saved.exists()
    assert saved.suffix == ".md"
    assert saved.parent == output_dir
    assert saved.name.endswith("_should-we-use-yaml-or-json.md")


def test_save_to_file_slug_override(tmp_path: Path, compete_result):
    saved = save_to_file(compete_result, tmp_path, slug_override="inbox-item", source="inbox/inbox-item.md")
    assert saved.name.endswith("_inbox-item.md")
    assert "**Source:** inbox/inbox-item.md" in saved.read_text(encoding="utf-8")
