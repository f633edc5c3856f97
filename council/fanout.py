"""Fan-out: run many agents on one prompt in parallel, keep the usable answers."""

import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable, Sequence

from council.models import AgentSpec, RunRecord, RunStatus, Stage1Result
from council.runner import run_agent

logger = logging.getLogger(__name__)

AgentRunner = Callable[[AgentSpec, str, float | None, RunRecord | None], Awaitable[RunRecord]]

# Quality gate: warn when fewer than this many responders succeed
_MIN_QUALITY_RESPONSES = 2

_JSON_BLOCK = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


def _first_stderr_line(record: RunRecord) -> str:
    text = "".join(record.stderr).strip()
    return text.splitlines()[0][:200] if text else ""


async def run_agents(
    specs: Sequence[AgentSpec],
    prompt: str,
    timeout_sec: float | None = None,
    runner: AgentRunner = run_agent,
    on_start: Callable[[list[RunRecord]], None] | None = None,
) -> list[RunRecord]:
    """Run every spec concurrently and wait until all of them are terminal.

    Args:
        specs: Agents to invoke, in caller order.
        prompt: Shared prompt.
        timeout_sec: Shared per-agent timeout (None = unbounded).
        runner: The process runner; replaceable for tests.
        on_start: Called with the live records before the join, so a caller
            can cancel individual runs.

    Returns:
        One terminal RunRecord per spec, in spec order.
    """
    records = [RunRecord(spec=spec) for spec in specs]
    if on_start:
        on_start(records)

    logger.info("Running %d agents: %s", len(specs), ", ".join(s.name for s in specs))
    results = await asyncio.gather(
        *(runner(rec.spec, prompt, timeout_sec, rec) for rec in records)
    )

    for rec in results:
        if rec.status is not RunStatus.COMPLETED:
            logger.warning(
                "Agent %s finished with status %s (exit %s): %s %s",
                rec.spec.name,
                rec.status.value,
                rec.exit_code,
                rec.error_message or "",
                _first_stderr_line(rec),
            )
    return list(results)


def extract_summary(text: str) -> str | None:
    """Return the ``executive_summary`` field of JSON output, if there is one."""
    candidates = [m.group(1) for m in _JSON_BLOCK.finditer(text)]
    stripped = text.strip()
    if stripped.startswith("{"):
        candidates.insert(0, stripped)
    for raw in candidates:
        try:
            obj = json.loads(raw)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            summary = obj.get("executive_summary")
            if isinstance(summary, str) and summary.strip():
                return summary.strip()
    return None


def extract_stage1(records: Sequence[RunRecord]) -> list[Stage1Result]:
    """Keep completed runs only, preserving input order."""
    results: list[Stage1Result] = []
    for rec in records:
        if rec.status is not RunStatus.COMPLETED:
            continue
        response = rec.output.strip()
        results.append(Stage1Result(agent=rec.spec.name, response=response, summary=extract_summary(response)))

    if len(records) >= _MIN_QUALITY_RESPONSES and 0 < len(results) < _MIN_QUALITY_RESPONSES:
        logger.warning(
            "Only %d/%d agents responded. Council quality is degraded.",
            len(results),
            len(records),
        )
    return results


def abort_if_no_stage1(results: Sequence[Stage1Result]) -> bool:
    """True when there is nothing usable to rank or synthesize."""
    if not results:
        logger.error("No usable responses from any agent")
        return True
    return False
