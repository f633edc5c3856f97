"""Pure dataclasses for the agent council pipeline. No logic, no deps."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class AgentSpec:
    name: str                    # unique, compared case-insensitively
    command: tuple[str, ...]     # argument vector
    prompt_via_stdin: bool = True


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    KILLED = "killed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self not in (RunStatus.PENDING, RunStatus.RUNNING)


@dataclass
class RunRecord:
    spec: AgentSpec
    status: RunStatus = RunStatus.PENDING
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    start_time: float | None = None
    end_time: float | None = None
    exit_code: int | None = None
    error_message: str | None = None
    process: asyncio.subprocess.Process | None = field(default=None, repr=False, compare=False)

    @property
    def output(self) -> str:
        return "".join(self.stdout)

    @property
    def duration_sec(self) -> float | None:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time


@dataclass
class Stage1Result:
    agent: str
    response: str
    summary: str | None = None


@dataclass
class Stage2Result:
    agent: str
    ranking_raw: str
    parsed_ranking: list[str] = field(default_factory=list)


@dataclass
class AggregateRank:
    agent: str
    average_rank: float
    rankings_count: int


@dataclass
class ConflictPosition:
    agent: str
    position: str


@dataclass
class Conflict:
    topic: str
    positions: list[ConflictPosition] = field(default_factory=list)
    resolution: str | None = None


@dataclass
class UniqueInsight:
    source: str
    insight: str


@dataclass
class Stage2CustomResult:
    """Output of a custom Stage 2 handler that replaces peer ranking."""

    sections: dict[str, str]
    conflicts: list[Conflict] = field(default_factory=list)
    unique_insights: list[UniqueInsight] = field(default_factory=list)
    raw_outputs: list[Stage1Result] = field(default_factory=list)


@dataclass
class Stage3Result:
    agent: str
    response: str
    used_fallback_chairman: bool = False


@dataclass
class ParsedSection:
    name: str
    content: str
    complete: bool


@dataclass
class TwoPassResult:
    pass1: Stage3Result
    pass2: Stage3Result
    combined: str
    pass1_sections: list[str] = field(default_factory=list)
    pass2_sections: list[str] = field(default_factory=list)
    used_fallback: bool = False


@dataclass
class CritiqueItem:
    id: str
    source: str
    category: str          # "blocking" or "advisory"
    description: str
    location: str = ""
    recommendation: str = ""
    rationale: str = ""
    applied: bool | None = None
    rejection_reason: str | None = None


@dataclass
class UserConfirmation:
    prompted: bool
    decision: str | None   # "apply", "skip" or None
    timestamp: str


@dataclass
class CritiqueTiming:
    critique_start_ms: int
    critique_end_ms: int
    resolve_start_ms: int
    resolve_end_ms: int


@dataclass
class CritiqueResult:
    applied: list[CritiqueItem] = field(default_factory=list)
    rejected: list[CritiqueItem] = field(default_factory=list)
    advisory: list[CritiqueItem] = field(default_factory=list)
    revised_draft: str = ""
    resolved_by: str | None = None
    user_confirmation: UserConfirmation | None = None
    timing: CritiqueTiming | None = None


@dataclass
class ConversationEntry:
    question: str
    stage1: list[Stage1Result]
    stage3_response: str


class PipelineStage(str, Enum):
    STAGE1 = "stage1"
    STAGE2 = "stage2"
    STAGE3 = "stage3"
    PASS1 = "pass1"
    PASS2 = "pass2"
    CRITIQUE = "critique"
    COMPLETE = "complete"


@dataclass
class PipelineResult:
    question: str
    mode: str                                    # "compete" or "merge"
    stage1: list[Stage1Result]
    stage2: list[Stage2Result] | None
    aggregate: list[AggregateRank] | None
    stage3: Stage3Result
    label_to_agent: dict[str, str] | None = None
    stage2_custom: Stage2CustomResult | None = None
    two_pass: TwoPassResult | None = None
    critique: CritiqueResult | None = None
    stage: PipelineStage = PipelineStage.COMPLETE
    total_duration_sec: float = 0.0

    @property
    def final_answer(self) -> str:
        if self.critique is not None and self.critique.revised_draft:
            return self.critique.revised_draft
        if self.two_pass is not None:
            return self.two_pass.combined
        return self.stage3.response
