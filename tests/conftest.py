"""Shared pytest fixtures."""

import time
from collections.abc import Callable
from pathlib import Path

import pytest

from config.config_loader import (
    AgentCommandConfig,
    AppConfig,
    DefaultsConfig,
    InboxConfig,
    PresetConfig,
)
from council.models import AgentSpec, RunRecord, RunStatus, Stage1Result, Stage2Result

Scripted = str | Callable[[str], str]


def agent(name: str) -> AgentSpec:
    """A spec that is never actually executed; FakeRunner answers for it."""
    return AgentSpec(name=name, command=(f"fake-{name}",))


class FakeRunner:
    """Test double for council.runner.run_agent.

    ``responses`` maps agent name -> stdout (or a function of the prompt).
    ``failures`` maps agent name -> terminal status. Agents in neither dict
    end in ``error``.
    """

    def __init__(
        self,
        responses: dict[str, Scripted] | None = None,
        failures: dict[str, RunStatus] | None = None,
    ) -> None:
        self.responses = dict(responses or {})
        self.failures = dict(failures or {})
        self.calls: list[tuple[str, str]] = []

    async def __call__(
        self,
        spec: AgentSpec,
        prompt: str,
        timeout_sec: float | None = None,
        record: RunRecord | None = None,
    ) -> RunRecord:
        record = record or RunRecord(spec=spec)
        self.calls.append((spec.name, prompt))
        record.status = RunStatus.RUNNING
        record.start_time = time.time()

        if spec.name in self.failures:
            record.status = self.failures[spec.name]
            record.error_message = f"scripted {record.status.value}"
            record.exit_code = 1 if record.status is RunStatus.ERROR else None
            record.stderr.append("boom\n")
        elif spec.name in self.responses:
            scripted = self.responses[spec.name]
            record.stdout.append(scripted(prompt) if callable(scripted) else scripted)
            record.status = RunStatus.COMPLETED
            record.exit_code = 0
        else:
            record.status = RunStatus.ERROR
            record.error_message = "no scripted response"
            record.exit_code = 127

        record.end_time = time.time()
        return record

    def called(self, name: str) -> list[str]:
        """Prompts the agent was called with, in order."""
        return [prompt for agent_name, prompt in self.calls if agent_name == name]


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def three_agents() -> list[AgentSpec]:
    return [agent("claude"), agent("codex"), agent("gemini")]


@pytest.fixture
def sample_stage1() -> list[Stage1Result]:
    return [
        Stage1Result(agent="claude", response="Use YAML for human-edited config."),
        Stage1Result(agent="codex", response="JSON is stricter; prefer it."),
        Stage1Result(agent="gemini", response="TOML is a good middle ground."),
    ]


@pytest.fixture
def sample_stage2() -> list[Stage2Result]:
    return [
        Stage2Result(
            agent="claude",
            ranking_raw="FINAL RANKING:\n1. Response C\n2. Response A\n3. Response B",
            parsed_ranking=["Response C", "Response A", "Response B"],
        ),
        Stage2Result(
            agent="codex",
            ranking_raw="FINAL RANKING:\n1. Response A\n2. Response C\n3. Response B",
            parsed_ranking=["Response A", "Response C", "Response B"],
        ),
    ]


@pytest.fixture
def sample_app_config(tmp_path: Path) -> AppConfig:
    agents = {
        name: AgentCommandConfig(
            name=name,
            tiers={
                "fast": [f"{name}-cli", "--fast"],
                "default": [f"{name}-cli"],
                "heavy": [f"{name}-cli", "--heavy"],
            },
        )
        for name in ("claude", "codex", "gemini")
    }
    presets = {
        "balanced": PresetConfig(
            name="balanced",
            mode="compete",
            stage1=["claude", "codex", "gemini"],
            chairman="gemini",
            fallback="claude",
        ),
        "merge-fast": PresetConfig(
            name="merge-fast",
            mode="merge",
            stage1=["claude:fast", "gemini:fast"],
            chairman="gemini:fast",
        ),
    }
    return AppConfig(
        defaults=DefaultsConfig(
            preset="balanced",
            output_dir=tmp_path / "output",
            timeout_sec=60,
            checkpoint_dir=tmp_path / "checkpoints",
        ),
        agents=agents,
        presets=presets,
        inbox=InboxConfig(dir=tmp_path / "inbox", archive_dir=tmp_path / "inbox" / "archive"),
    )
