"""Tests for council/pipeline.py."""

import json
import os

import pytest

from council.agents import AgentRegistry
from council.checkpoint import Checkpoint
from council.critique import CritiqueConfig
from council.errors import ChairmanError, PipelineConfigError
from council.models import (
    AgentSpec,
    Conflict,
    ConflictPosition,
    ConversationEntry,
    PipelineStage,
    RunStatus,
    Stage1Result,
    Stage2CustomResult,
    Stage2Result,
    UniqueInsight,
)
from council.pipeline import (
    PipelineCallbacks,
    PipelineOptions,
    Stage2Handler,
    StageTracker,
    run_pipeline,
    run_pipeline_sync,
)
from council.sections import format_section
from council.synthesis import TwoPassConfig
from tests.conftest import FakeRunner, agent

RANKING = "Analysis...\nFINAL RANKING:\n1. Response B\n2. Response A\n3. Response C"


def scripted(answer: str, ranking: str = RANKING, synthesis: str = "Synthesis.", critique: str = "[]", resolve: str = ""):
    """One agent that answers differently depending on which stage is asking."""

    def respond(prompt: str) -> str:
        if "adversarial reviewer" in prompt:
            return critique
        if "Reviewers critiqued" in prompt:
            return resolve
        if "Chairman" in prompt:
            return synthesis
        if "FINAL RANKING:" in prompt:
            return ranking
        return answer

    return respond


@pytest.fixture
def council_runner() -> FakeRunner:
    return FakeRunner(
        {
            "claude": scripted("Claude says 4."),
            "codex": scripted("Codex says 4."),
            "gemini": scripted("Gemini says 4.", synthesis="The council agrees: 4."),
        }
    )


async def test_compete_pipeline(three_agents, council_runner):
    fired: list[str] = []
    stages: list[PipelineStage] = []

    def on_stage2(stage2, aggregate, label_map):
        fired.append("stage2")
        assert label_map.agent_for("Response B") == "codex"

    options = PipelineOptions(
        evaluators=three_agents,
        runner=council_runner,
        callbacks=PipelineCallbacks(
            on_stage1_complete=lambda stage1: fired.append("stage1"),
            on_stage2_complete=on_stage2,
            on_stage3_complete=lambda stage3: fired.append("stage3"),
            on_stage_change=stages.append,
        ),
    )
    result = await run_pipeline("What is 2+2?", three_agents, three_agents[2], options)

    assert result is not None
    assert [r.agent for r in result.stage1] == ["claude", "codex", "gemini"]
    assert result.label_to_agent == {"Response A": "claude", "Response B": "codex", "Response C": "gemini"}
    assert [r.parsed_ranking for r in result.stage2] == [["Response B", "Response A", "Response C"]] * 3
    assert [(a.agent, a.average_rank, a.rankings_count) for a in result.aggregate] == [
        ("codex", 1.0, 3),
        ("claude", 2.0, 3),
        ("gemini", 3.0, 3),
    ]
    assert result.stage3.agent == "gemini"
    assert result.final_answer == "The council agrees: 4."
    assert result.stage is PipelineStage.COMPLETE
    assert fired == ["stage1", "stage2", "stage3"]
    assert stages == [PipelineStage.STAGE1, PipelineStage.STAGE2, PipelineStage.STAGE3, PipelineStage.COMPLETE]

    # Evaluators never see agent names
    ranking_prompt = council_runner.called("claude")[1]
    assert "Codex says 4." in ranking_prompt
    assert "codex" not in ranking_prompt


async def test_merge_pipeline_skips_ranking(three_agents, council_runner):
    stage2_calls = []
    options = PipelineOptions(
        mode="merge",
        runner=council_runner,
        callbacks=PipelineCallbacks(on_stage2_complete=lambda *args: stage2_calls.append(args)),
    )
    result = await run_pipeline("What is 2+2?", three_agents, three_agents[2], options)

    assert result is not None
    assert result.stage2 is None
    assert result.aggregate is None
    assert result.label_to_agent is None
    assert stage2_calls == []
    # One stage1 call per responder, plus the chairman
    assert len(council_runner.called("claude")) == 1
    assert "MERGE MODE" in council_runner.called("gemini")[1]


def consolidating_handler(calls: list) -> Stage2Handler:
    async def handler(stage1, agents, timeout_sec):
        calls.append(([r.agent for r in stage1], [a.name for a in agents], timeout_sec))
        return Stage2CustomResult(
            sections={"api": "Use REST for public endpoints."},
            conflicts=[
                Conflict(
                    topic="auth",
                    positions=[ConflictPosition("claude", "JWT"), ConflictPosition("codex", "sessions")],
                )
            ],
            unique_insights=[UniqueInsight(source="gemini", insight="Cache GET responses.")],
        )

    return handler


async def test_stage2_handler_replaces_ranking(three_agents, council_runner):
    handler_calls: list = []
    consolidated: list[Stage2CustomResult] = []
    stages: list[PipelineStage] = []
    options = PipelineOptions(
        timeout_sec=30,
        stage2_handler=consolidating_handler(handler_calls),
        runner=council_runner,
        callbacks=PipelineCallbacks(on_stage2_custom_complete=consolidated.append, on_stage_change=stages.append),
    )
    result = await run_pipeline("Design the API", three_agents, three_agents[2], options)

    assert result is not None
    assert handler_calls == [(["claude", "codex", "gemini"], ["claude", "codex", "gemini"], 30)]
    assert consolidated == [result.stage2_custom]
    assert result.stage2 is None
    assert result.aggregate is None
    assert stages == [PipelineStage.STAGE1, PipelineStage.STAGE2, PipelineStage.STAGE3, PipelineStage.COMPLETE]
    assert not any("FINAL RANKING:" in prompt for _, prompt in council_runner.calls)

    chairman_prompt = council_runner.called("gemini")[-1]
    assert "STAGE 2 - Consolidated Analysis:" in chairman_prompt
    assert "Use REST for public endpoints." in chairman_prompt
    assert "  - codex: sessions" in chairman_prompt
    assert "- Cache GET responses. (gemini)" in chairman_prompt


async def test_stage2_handler_runs_in_merge_mode(three_agents, council_runner):
    handler_calls: list = []
    options = PipelineOptions(
        mode="merge",
        evaluators=[three_agents[0]],
        stage2_handler=consolidating_handler(handler_calls),
        runner=council_runner,
    )
    result = await run_pipeline("Design the API", three_agents, three_agents[2], options)

    assert [agents for _, agents, _ in handler_calls] == [["claude"]]
    assert result.stage2_custom is not None
    chairman_prompt = council_runner.called("gemini")[-1]
    assert "MERGE MODE" in chairman_prompt
    assert "CONSOLIDATED ANALYSIS:" in chairman_prompt


async def test_history_frames_every_prompt(three_agents, council_runner):
    history = [ConversationEntry(question="What is 1+1?", stage1=[], stage3_response="2")]
    options = PipelineOptions(evaluators=three_agents, history=history, runner=council_runner)
    result = await run_pipeline("And 2+2?", three_agents, three_agents[2], options)

    assert result.question == "And 2+2?"
    assert len(council_runner.calls) == 7
    for _, prompt in council_runner.calls:
        assert "Previous conversation:" in prompt
        assert "Q: What is 1+1?\nA: 2\n" in prompt
        assert "Current question: And 2+2?" in prompt
    assert council_runner.called("claude")[0].startswith("Previous conversation:")

async def test_failed_responder_is_excluded_from_labels(three_agents):
    runner = FakeRunner(
        {"claude": scripted("A"), "gemini": scripted("C", ranking="FINAL RANKING:\n1. Response B\n2. Response A")},
        failures={"codex": RunStatus.TIMEOUT},
    )
    options = PipelineOptions(evaluators=three_agents, runner=runner)
    result = await run_pipeline("q", three_agents, three_agents[2], options)

    assert [r.agent for r in result.stage1] == ["claude", "gemini"]
    assert result.label_to_agent == {"Response A": "claude", "Response B": "gemini"}
    assert [r.agent for r in result.stage2] == ["claude", "gemini"]


async def test_no_usable_responses_returns_none(three_agents):
    runner = FakeRunner(failures={a.name: RunStatus.ERROR for a in three_agents})
    stage1_calls = []
    options = PipelineOptions(
        evaluators=three_agents,
        runner=runner,
        callbacks=PipelineCallbacks(on_stage1_complete=stage1_calls.append),
    )
    assert await run_pipeline("q", three_agents, three_agents[0], options) is None
    assert len(runner.calls) == 3
    assert stage1_calls == []


async def test_fallback_chairman(three_agents):
    runner = FakeRunner(
        {"claude": scripted("A", synthesis="Fallback synthesis."), "codex": scripted("B")},
        failures={"gemini": RunStatus.ERROR},
    )
    options = PipelineOptions(evaluators=three_agents[:2], fallback_chairman=three_agents[0], runner=runner)
    result = await run_pipeline("q", three_agents[:2], three_agents[2], options)
    assert result.stage3.agent == "claude"
    assert result.stage3.used_fallback_chairman is True


async def test_chairman_failure_without_fallback_raises(three_agents):
    runner = FakeRunner({"claude": scripted("A")}, failures={"gemini": RunStatus.ERROR})
    options = PipelineOptions(evaluators=[three_agents[0]], runner=runner)
    with pytest.raises(ChairmanError):
        await run_pipeline("q", [three_agents[0]], three_agents[2], options)


# --- configuration errors, detected before any process starts ---

@pytest.mark.parametrize(
    "responders, options",
    [
        ([agent("claude")], PipelineOptions()),  # compete without evaluators
        ([agent("claude")], PipelineOptions(mode="compete", evaluators=[])),
        ([], PipelineOptions(mode="merge")),
        ([agent("claude")], PipelineOptions(mode="debate")),
        ([agent("claude"), agent("Claude")], PipelineOptions(mode="merge")),
        ([agent("claude")], PipelineOptions(mode="merge", two_pass=TwoPassConfig(enabled=True, pass1_tier="ultra"))),
        ([agent("claude")], PipelineOptions(mode="merge", critique=CritiqueConfig(enabled=True, confirm=True))),
        ([AgentSpec(name="empty", command=())], PipelineOptions(mode="merge")),
        ([agent("claude")], PipelineOptions(evaluators=[AgentSpec(name="empty", command=())])),
        (
            [agent("claude")],
            PipelineOptions(mode="merge", critique=CritiqueConfig(enabled=True, agents=[AgentSpec(name="e", command=())])),
        ),
        ([agent("claude")], PipelineOptions(mode="merge", fallback_chairman=AgentSpec(name="e", command=()))),
    ],
)
async def test_invalid_configuration(responders, options):
    runner = FakeRunner()
    options.runner = runner
    with pytest.raises(PipelineConfigError):
        await run_pipeline("q", responders, agent("gemini"), options)
    assert runner.calls == []


def test_stage_tracker_rejects_invalid_transition():
    tracker = StageTracker()
    tracker.advance(PipelineStage.STAGE1)
    with pytest.raises(RuntimeError):
        tracker.advance(PipelineStage.CRITIQUE)
    tracker.advance(PipelineStage.STAGE3)
    tracker.advance(PipelineStage.COMPLETE)
    with pytest.raises(RuntimeError):
        tracker.advance(PipelineStage.STAGE1)
    assert tracker.history == [PipelineStage.STAGE1, PipelineStage.STAGE3, PipelineStage.COMPLETE]


# --- two-pass and critique ---

async def test_two_pass_uses_tiered_chairmen(sample_app_config):
    registry = AgentRegistry(sample_app_config.agents)
    pass1 = format_section("executive_summary", "Four.") + "\n" + format_section("section_outlines", "- proof: show it")
    runner = FakeRunner(
        {
            "claude": scripted("A"),
            "gemini": scripted("C", synthesis=format_section("proof", "2+2=4 by counting.")),
            "gemini:heavy": pass1,
        }
    )
    stages: list[PipelineStage] = []
    responders = [registry.create("claude"), registry.create("gemini")]
    options = PipelineOptions(
        mode="merge",
        registry=registry,
        two_pass=TwoPassConfig(enabled=True, pass1_tier="heavy"),
        runner=runner,
        callbacks=PipelineCallbacks(on_stage_change=stages.append),
    )
    result = await run_pipeline("2+2?", responders, registry.create("gemini"), options)

    assert result.two_pass is not None
    assert result.two_pass.pass1.agent == "gemini:heavy"
    assert result.two_pass.pass2.agent == "gemini"
    assert result.stage3.agent == "gemini:heavy"
    assert result.final_answer == result.two_pass.combined
    assert stages == [PipelineStage.STAGE1, PipelineStage.PASS1, PipelineStage.PASS2, PipelineStage.COMPLETE]


async def test_critique_revises_final_answer(three_agents):
    critique = json.dumps({"critiques": [{"category": "blocking", "description": "Show the working"}]})
    resolve = format_section("revised_draft", "2+2 = 4 (1+1+1+1).") + "\n" + format_section(
        "decisions", json.dumps([{"id": "codex-1", "applied": True}])
    )
    runner = FakeRunner(
        {
            "claude": scripted("4"),
            "codex": scripted("4", critique=critique),
            "gemini": scripted("4", synthesis="4", resolve=resolve),
        }
    )
    options = PipelineOptions(evaluators=three_agents, critique=CritiqueConfig(enabled=True), runner=runner)
    result = await run_pipeline("2+2?", three_agents, three_agents[2], options)

    assert result.stage3.response == "4"
    assert result.critique is not None
    assert [i.id for i in result.critique.applied] == ["codex-1"]
    assert result.final_answer == "2+2 = 4 (1+1+1+1)."
    # Critics default to the responders
    assert all(any("adversarial reviewer" in p for p in runner.called(a.name)) for a in three_agents)


# --- resume ---

def _checkpoint(question: str, completed_stage: str, with_stage2: bool) -> Checkpoint:
    return Checkpoint(
        question=question,
        completed_stage=completed_stage,
        timestamp="2026-01-01T00:00:00+00:00",
        stage1=[Stage1Result("claude", "Saved A"), Stage1Result("codex", "Saved B")],
        stage2=[Stage2Result("claude", "FINAL RANKING:\n1. Response B", ["Response B"])] if with_stage2 else None,
        label_to_agent={"Response A": "claude", "Response B": "codex"} if with_stage2 else None,
    )


async def test_resume_skips_completed_stages(three_agents):
    runner = FakeRunner({"gemini": scripted("unused", synthesis="Resumed synthesis.")})
    options = PipelineOptions(
        evaluators=three_agents,
        resume_from=_checkpoint("2+2?", "stage2", with_stage2=True),
        runner=runner,
    )
    result = await run_pipeline("2+2?", three_agents, three_agents[2], options)

    assert [name for name, _ in runner.calls] == ["gemini"]
    assert [r.response for r in result.stage1] == ["Saved A", "Saved B"]
    assert [(a.agent, a.average_rank) for a in result.aggregate] == [("codex", 1.0)]
    assert result.final_answer == "Resumed synthesis."


async def test_resume_after_stage1_reruns_ranking(three_agents, council_runner):
    options = PipelineOptions(
        evaluators=three_agents,
        resume_from=_checkpoint("2+2?", "stage1", with_stage2=False),
        runner=council_runner,
    )
    result = await run_pipeline("2+2?", three_agents, three_agents[2], options)
    assert [r.response for r in result.stage1] == ["Saved A", "Saved B"]
    assert len(result.stage2) == 3
    assert all("Saved A" in council_runner.called(a.name)[0] for a in three_agents)


async def test_resume_ignores_checkpoint_for_other_question(three_agents, council_runner):
    options = PipelineOptions(
        evaluators=three_agents,
        resume_from=_checkpoint("different?", "stage2", with_stage2=True),
        runner=council_runner,
    )
    result = await run_pipeline("2+2?", three_agents, three_agents[2], options)
    assert [r.response for r in result.stage1] == ["Claude says 4.", "Codex says 4.", "Gemini says 4."]


# --- real processes ---

def _sh(name: str, script: str) -> AgentSpec:
    return AgentSpec(name=name, command=("sh", "-c", script))


@pytest.mark.skipif(os.name != "posix", reason="uses sh")
def test_end_to_end_with_real_processes():
    responders = [
        _sh("alpha", "cat >/dev/null; echo 'It is 4.'"),
        _sh("beta", "cat >/dev/null; echo '4'"),
        _sh("broken", "cat >/dev/null; echo 'crash' >&2; exit 2"),
    ]
    evaluators = [
        _sh("judge1", "cat >/dev/null; printf 'FINAL RANKING:\\n1. Response B\\n2. Response A\\n'"),
        _sh("judge2", "cat >/dev/null; printf 'FINAL RANKING:\\n1. Response A\\n2. Response B\\n'"),
    ]
    chairman = _sh("chair", "grep -q 'STAGE 2 - Peer Rankings' && echo 'The answer is 4.'")

    result = run_pipeline_sync(
        "What is 2+2?",
        responders,
        chairman,
        PipelineOptions(evaluators=evaluators, timeout_sec=10),
    )

    assert result is not None
    assert [(r.agent, r.response) for r in result.stage1] == [("alpha", "It is 4."), ("beta", "4")]
    assert [r.parsed_ranking for r in result.stage2] == [["Response B", "Response A"], ["Response A", "Response B"]]
    assert [(a.agent, a.average_rank) for a in result.aggregate] == [("alpha", 1.5), ("beta", 1.5)]
    assert result.stage3.agent == "chair"
    assert result.final_answer == "The answer is 4."
