"""Council pipeline: responders -> [peer ranking] -> chairman -> [critique]."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from config.config_loader import MODES, TIERS
from council.agents import AgentRegistry, lower_tier
from council.aggregation import calculate_aggregate_rankings
from council.checkpoint import Checkpoint
from council.critique import ConfirmHandler, CritiqueConfig, run_critique_loop
from council.errors import PipelineConfigError
from council.fanout import AgentRunner, abort_if_no_stage1, extract_stage1, run_agents
from council.models import (
    AgentSpec,
    AggregateRank,
    ConversationEntry,
    PipelineResult,
    PipelineStage,
    RunRecord,
    Stage1Result,
    Stage2CustomResult,
    Stage2Result,
    Stage3Result,
    TwoPassResult,
)
from council.prompts import build_question_with_history, build_ranking_prompt, build_stage1_prompt
from council.ranking import LabelMap, build_label_map, extract_stage2
from council.runner import run_agent
from council.synthesis import TwoPassConfig, run_compete_chairman, run_merge_chairman, run_two_pass_chairman

logger = logging.getLogger(__name__)

# (stage1, agents, timeout_sec) -> consolidated output; replaces peer ranking
Stage2Handler = Callable[[list[Stage1Result], list[AgentSpec], float | None], Awaitable[Stage2CustomResult]]

_TRANSITIONS: dict[PipelineStage | None, set[PipelineStage]] = {
    None: {PipelineStage.STAGE1},
    PipelineStage.STAGE1: {PipelineStage.STAGE2, PipelineStage.STAGE3, PipelineStage.PASS1},
    PipelineStage.STAGE2: {PipelineStage.STAGE3, PipelineStage.PASS1},
    PipelineStage.STAGE3: {PipelineStage.CRITIQUE, PipelineStage.COMPLETE},
    PipelineStage.PASS1: {PipelineStage.PASS2},
    PipelineStage.PASS2: {PipelineStage.CRITIQUE, PipelineStage.COMPLETE},
    PipelineStage.CRITIQUE: {PipelineStage.COMPLETE},
    PipelineStage.COMPLETE: set(),
}


@dataclass
class PipelineCallbacks:
    on_stage1_complete: Callable[[list[Stage1Result]], None] | None = None
    # Never called in merge mode
    on_stage2_complete: Callable[[list[Stage2Result], list[AggregateRank], LabelMap], None] | None = None
    on_stage2_custom_complete: Callable[[Stage2CustomResult], None] | None = None
    on_stage3_complete: Callable[[Stage3Result], None] | None = None
    # Live records of a fan-out, before the join; lets a caller cancel runs
    on_agents_started: Callable[[PipelineStage, list[RunRecord]], None] | None = None
    on_stage_change: Callable[[PipelineStage], None] | None = None


@dataclass
class PipelineOptions:
    timeout_sec: float | None = None
    mode: str = "compete"
    stage1_prompt: str | None = None
    evaluators: list[AgentSpec] | None = None
    stage2_handler: Stage2Handler | None = None
    # Earlier exchanges for a follow-up question, oldest first
    history: list[ConversationEntry] = field(default_factory=list)
    output_format: str | None = None
    fallback_chairman: AgentSpec | None = None
    use_summaries: bool = False
    two_pass: TwoPassConfig = field(default_factory=TwoPassConfig)
    critique: CritiqueConfig = field(default_factory=CritiqueConfig)
    confirm_handler: ConfirmHandler | None = None
    callbacks: PipelineCallbacks = field(default_factory=PipelineCallbacks)
    registry: AgentRegistry | None = None
    resume_from: Checkpoint | None = None
    runner: AgentRunner = run_agent


class StageTracker:
    """Current pipeline stage; refuses transitions the table does not allow."""

    def __init__(self, on_change: Callable[[PipelineStage], None] | None = None) -> None:
        self.current: PipelineStage | None = None
        self.history: list[PipelineStage] = []
        self._on_change = on_change

    def advance(self, stage: PipelineStage) -> None:
        if stage not in _TRANSITIONS[self.current]:
            current = self.current.value if self.current else "start"
            raise RuntimeError(f"Invalid pipeline transition: {current} -> {stage.value}")
        self.current = stage
        self.history.append(stage)
        logger.debug("Pipeline stage: %s", stage.value)
        if self._on_change:
            self._on_change(stage)


def validate_options(
    responders: Sequence[AgentSpec],
    chairman: AgentSpec,
    options: PipelineOptions,
) -> None:
    """Reject configurations that cannot run. Called before anything is spawned."""
    if options.mode not in MODES:
        raise PipelineConfigError(f"Unknown mode '{options.mode}'. Valid: {', '.join(MODES)}")
    if not responders:
        raise PipelineConfigError("At least one stage1 responder is required")

    names = [r.name.lower() for r in responders]
    if len(set(names)) != len(names):
        raise PipelineConfigError(f"Responder names must be unique (case-insensitive): {names}")

    if options.mode == "compete" and not options.evaluators and options.stage2_handler is None:
        raise PipelineConfigError("Compete mode requires stage2 evaluators")

    for tier in (options.two_pass.pass1_tier, options.two_pass.pass2_tier):
        if tier is not None and tier not in TIERS:
            raise PipelineConfigError(f"Unknown two-pass tier '{tier}'. Valid: {', '.join(TIERS)}")

    if options.critique.enabled and options.critique.confirm and options.confirm_handler is None:
        raise PipelineConfigError("Critique confirmation requires a confirm_handler")

    roles: list[tuple[str, AgentSpec]] = [("Responder", r) for r in responders]
    roles += [("Evaluator", e) for e in options.evaluators or []]
    roles += [("Critic", c) for c in options.critique.agents or []]
    roles.append(("Chairman", chairman))
    if options.fallback_chairman is not None:
        roles.append(("Fallback chairman", options.fallback_chairman))
    if options.critique.chairman is not None:
        roles.append(("Critique chairman", options.critique.chairman))
    for role, spec in roles:
        if not spec.command:
            raise PipelineConfigError(f"{role} '{spec.name}' has an empty command")


def _usable_checkpoint(query: str, checkpoint: Checkpoint | None) -> Checkpoint | None:
    if checkpoint is None:
        return None
    if checkpoint.question != query:
        logger.warning("Checkpoint is for a different question; starting from scratch")
        return None
    if not checkpoint.stage1:
        return None
    logger.info("Resuming from checkpoint (completed: %s)", checkpoint.completed_stage)
    return checkpoint


def _two_pass_chairmen(chairman: AgentSpec, options: PipelineOptions) -> tuple[AgentSpec, AgentSpec]:
    cfg = options.two_pass
    pass2_tier = cfg.pass2_tier or (lower_tier(cfg.pass1_tier) if cfg.pass1_tier else None)
    if options.registry is None:
        if cfg.pass1_tier or pass2_tier:
            logger.debug("Tier hints ignored: no agent registry configured")
        return chairman, chairman
    return (
        options.registry.resolve_tier(chairman, cfg.pass1_tier),
        options.registry.resolve_tier(chairman, pass2_tier),
    )


async def run_pipeline(
    query: str,
    responders: Sequence[AgentSpec],
    chairman: AgentSpec,
    options: PipelineOptions | None = None,
) -> PipelineResult | None:
    """Run the full council on one query.

    Args:
        query: The user question.
        responders: Stage 1 agents, in the order results should be kept.
        chairman: The synthesizing agent.
        options: Everything else (mode, timeout, evaluators, two-pass, critique,
            callbacks). Defaults to compete mode, which needs evaluators.

    Returns:
        The PipelineResult, or None when no responder produced a usable answer.

    Raises:
        PipelineConfigError: For invalid configuration, before any process starts.
        ChairmanError: If the chairman and its fallback both fail.
    """
    options = options or PipelineOptions()
    validate_options(responders, chairman, options)

    start = time.monotonic()
    callbacks = options.callbacks
    question = build_question_with_history(query, options.history)
    if options.history:
        logger.info("Follow-up question with %d earlier exchanges", len(options.history))
    tracker = StageTracker(callbacks.on_stage_change)
    resume = _usable_checkpoint(query, options.resume_from)

    def started(stage: PipelineStage) -> Callable[[list[RunRecord]], None] | None:
        hook = callbacks.on_agents_started
        if hook is None:
            return None
        return lambda records: hook(stage, records)

    # Stage 1: independent answers
    tracker.advance(PipelineStage.STAGE1)
    if resume is not None:
        stage1 = list(resume.stage1)
        logger.info("Stage 1 restored from checkpoint: %d responses", len(stage1))
    else:
        logger.info("Stage 1: %d responders, mode=%s", len(responders), options.mode)
        records = await run_agents(
            responders,
            build_stage1_prompt(question, options.stage1_prompt),
            options.timeout_sec,
            options.runner,
            started(PipelineStage.STAGE1),
        )
        stage1 = extract_stage1(records)

    if abort_if_no_stage1(stage1):
        return None
    logger.info("Stage 1 complete: %d/%d usable responses", len(stage1), len(responders))
    if callbacks.on_stage1_complete:
        callbacks.on_stage1_complete(stage1)

    # Stage 2: custom handler, or anonymous peer ranking (compete only)
    stage2: list[Stage2Result] | None = None
    aggregate: list[AggregateRank] | None = None
    label_map: LabelMap | None = None
    stage2_custom: Stage2CustomResult | None = None
    if options.stage2_handler is not None:
        tracker.advance(PipelineStage.STAGE2)
        handler_agents = list(options.evaluators or responders)
        logger.info("Stage 2: custom handler with %d agents", len(handler_agents))
        stage2_custom = await options.stage2_handler(stage1, handler_agents, options.timeout_sec)
        logger.info("Stage 2 complete: %d consolidated sections", len(stage2_custom.sections))
        if callbacks.on_stage2_custom_complete:
            callbacks.on_stage2_custom_complete(stage2_custom)
    elif options.mode == "compete":
        tracker.advance(PipelineStage.STAGE2)
        label_map = build_label_map(stage1)
        logger.debug("Label map: %s", label_map.as_dict())
        if (
            resume is not None
            and resume.completed_stage in ("stage2", "complete")
            and resume.stage2 is not None
            and resume.label_to_agent == label_map.as_dict()
        ):
            stage2 = list(resume.stage2)
            logger.info("Stage 2 restored from checkpoint: %d rankings", len(stage2))
        else:
            if not options.evaluators:
                raise PipelineConfigError("Compete mode requires stage2 evaluators")
            records = await run_agents(
                options.evaluators,
                build_ranking_prompt(question, stage1, label_map),
                options.timeout_sec,
                options.runner,
                started(PipelineStage.STAGE2),
            )
            stage2 = extract_stage2(records)
        aggregate = calculate_aggregate_rankings(stage2, label_map)
        logger.info(
            "Stage 2 complete: %d rankings, order: %s",
            len(stage2),
            ", ".join(a.agent for a in aggregate) or "(none)",
        )
        if callbacks.on_stage2_complete:
            callbacks.on_stage2_complete(stage2, aggregate, label_map)

    # Stage 3: chairman synthesis
    two_pass: TwoPassResult | None = None
    if options.two_pass.enabled:
        tracker.advance(PipelineStage.PASS1)
        pass1_chairman, pass2_chairman = _two_pass_chairmen(chairman, options)
        two_pass = await run_two_pass_chairman(
            question,
            stage1,
            pass1_chairman,
            pass2_chairman,
            options.two_pass,
            mode=options.mode,
            stage2=stage2,
            aggregate=aggregate,
            timeout_sec=options.timeout_sec,
            fallback=options.fallback_chairman,
            use_summaries=options.use_summaries,
            runner=options.runner,
            consolidation=stage2_custom,
        )
        tracker.advance(PipelineStage.PASS2)
        stage3 = Stage3Result(
            agent=two_pass.pass1.agent,
            response=two_pass.combined,
            used_fallback_chairman=two_pass.pass1.used_fallback_chairman,
        )
    else:
        tracker.advance(PipelineStage.STAGE3)
        if options.mode == "merge":
            stage3 = await run_merge_chairman(
                question,
                stage1,
                chairman,
                timeout_sec=options.timeout_sec,
                fallback=options.fallback_chairman,
                output_format=options.output_format,
                use_summaries=options.use_summaries,
                runner=options.runner,
                consolidation=stage2_custom,
            )
        else:
            stage3 = await run_compete_chairman(
                question,
                stage1,
                stage2 or [],
                chairman,
                aggregate=aggregate,
                timeout_sec=options.timeout_sec,
                fallback=options.fallback_chairman,
                output_format=options.output_format,
                use_summaries=options.use_summaries,
                runner=options.runner,
                consolidation=stage2_custom,
            )
    logger.info("Stage 3 complete via %s", stage3.agent)
    if callbacks.on_stage3_complete:
        callbacks.on_stage3_complete(stage3)

    # Optional adversarial review of the draft
    critique = None
    if options.critique.enabled:
        tracker.advance(PipelineStage.CRITIQUE)
        critique_cfg = options.critique
        critique = await run_critique_loop(
            question,
            stage3.response,
            critique_cfg.agents or list(responders),
            critique_cfg.chairman or chairman,
            timeout_sec=options.timeout_sec,
            prompt=critique_cfg.prompt,
            confirm=critique_cfg.confirm,
            confirm_handler=options.confirm_handler,
            fallback=None if critique_cfg.chairman else options.fallback_chairman,
            runner=options.runner,
        )

    tracker.advance(PipelineStage.COMPLETE)
    return PipelineResult(
        question=query,
        mode=options.mode,
        stage1=stage1,
        stage2=stage2,
        aggregate=aggregate,
        stage3=stage3,
        label_to_agent=label_map.as_dict() if label_map is not None else None,
        stage2_custom=stage2_custom,
        two_pass=two_pass,
        critique=critique,
        stage=PipelineStage.COMPLETE,
        total_duration_sec=time.monotonic() - start,
    )


def run_pipeline_sync(
    query: str,
    responders: Sequence[AgentSpec],
    chairman: AgentSpec,
    options: PipelineOptions | None = None,
) -> PipelineResult | None:
    """Blocking wrapper around run_pipeline for callers without an event loop."""
    return asyncio.run(run_pipeline(query, responders, chairman, options))
