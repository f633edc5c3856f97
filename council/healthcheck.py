"""Agent availability checks: is the CLI on PATH, and does it answer a ping."""

import asyncio
import logging
import shutil
from collections.abc import Sequence

from council.fanout import AgentRunner
from council.models import AgentSpec, RunStatus
from council.runner import run_agent

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 30.0


def is_installed(spec: AgentSpec) -> bool:
    return bool(spec.command) and shutil.which(spec.command[0]) is not None


def filter_available_agents(agents: Sequence[AgentSpec]) -> tuple[list[AgentSpec], list[AgentSpec]]:
    """Split agents into (available, unavailable) by looking the executable up on PATH."""
    available: list[AgentSpec] = []
    unavailable: list[AgentSpec] = []
    for spec in agents:
        (available if is_installed(spec) else unavailable).append(spec)
    if unavailable:
        logger.debug("Not on PATH: %s", ", ".join(s.name for s in unavailable))
    return available, unavailable


async def _ping_one(spec: AgentSpec, timeout_sec: float, runner: AgentRunner) -> tuple[str, bool, str]:
    """Returns (name, ok, error_message)."""
    record = await runner(spec, _PING_PROMPT, timeout_sec, None)
    if record.status is RunStatus.COMPLETED and record.output.strip():
        return spec.name, True, ""
    if record.status is RunStatus.COMPLETED:
        return spec.name, False, "empty response"
    stderr = "".join(record.stderr).strip()
    detail = record.error_message or (stderr.splitlines()[0] if stderr else "")
    return spec.name, False, f"{record.status.value}: {detail}".rstrip(": ")


async def run_health_checks(
    agents: Sequence[AgentSpec],
    ping: bool = True,
    timeout_sec: float = _TIMEOUT_SEC,
    runner: AgentRunner = run_agent,
) -> dict[str, tuple[bool, str]]:
    """Check all agents; pings run in parallel.

    Returns:
        Dict mapping agent name -> (ok, error_message).
        error_message is "" when ok is True.
    """
    available, unavailable = filter_available_agents(agents)
    results: dict[str, tuple[bool, str]] = {
        spec.name: (False, f"'{spec.command[0] if spec.command else ''}' not found on PATH") for spec in unavailable
    }
    if not ping:
        results.update({spec.name: (True, "") for spec in available})
        return results
    pinged = await asyncio.gather(*(_ping_one(s, timeout_sec, runner) for s in available))
    results.update({name: (ok, err) for name, ok, err in pinged})
    return results
