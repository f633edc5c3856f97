"""Adversarial critique of a draft, then chairman resolve (apply or reject)."""

import json
import logging
import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import yaml

from council.fanout import AgentRunner, run_agents
from council.models import (
    AgentSpec,
    CritiqueItem,
    CritiqueResult,
    CritiqueTiming,
    RunStatus,
    UserConfirmation,
)
from council.prompts import build_critique_prompt, build_resolve_prompt
from council.runner import run_agent
from council.sections import parse_sections, sections_by_name
from council.synthesis import run_chairman

logger = logging.getLogger(__name__)

BLOCKING = "blocking"
ADVISORY = "advisory"

# Called with (blocking, advisory); returns True to apply the blocking fixes
ConfirmHandler = Callable[[list[CritiqueItem], list[CritiqueItem]], bool]

_FENCED = re.compile(r"```(?:json|yaml)?\s*([\s\S]*?)```")


@dataclass
class CritiqueConfig:
    enabled: bool = False
    agents: list[AgentSpec] | None = None     # None = reuse the Stage 1 responders
    chairman: AgentSpec | None = None         # None = reuse the synthesis chairman
    prompt: str | None = None                 # ${QUERY} and ${DRAFT} placeholders
    confirm: bool = False


def _now_ms() -> int:
    return int(time.time() * 1000)


def _load_structured(raw: str) -> Any:
    """JSON (or YAML) from free text: fenced block first, then the outermost braces."""
    candidates: list[str] = [m.group(1).strip() for m in _FENCED.finditer(raw)]
    spans = []
    for open_char, close_char in (("{", "}"), ("[", "]")):
        first, last = raw.find(open_char), raw.rfind(close_char)
        if first != -1 and last > first:
            spans.append((first, last))
    # Whichever bracket opens first is the outermost structure
    candidates.extend(raw[first:last + 1] for first, last in sorted(spans))
    candidates.append(raw.strip())

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass
        try:
            obj = yaml.safe_load(candidate)
        except yaml.YAMLError:
            continue
        if isinstance(obj, (dict, list)):
            return obj
    return None


def parse_critique(raw: str, source: str) -> list[CritiqueItem]:
    """Parse one critic's output. Unparseable output yields an empty list."""
    obj = _load_structured(raw)
    entries: list[tuple[str | None, dict]] = []
    if isinstance(obj, list):
        entries = [(None, e) for e in obj if isinstance(e, dict)]
    elif isinstance(obj, dict):
        if isinstance(obj.get("critiques"), list):
            entries = [(None, e) for e in obj["critiques"] if isinstance(e, dict)]
        for category in (BLOCKING, ADVISORY):
            if isinstance(obj.get(category), list):
                entries.extend((category, e) for e in obj[category] if isinstance(e, dict))
    else:
        logger.warning("Could not parse critique from %s", source)
        return []

    items: list[CritiqueItem] = []
    for forced_category, entry in entries:
        description = str(entry.get("description") or entry.get("issue") or "").strip()
        if not description:
            continue
        category = (forced_category or str(entry.get("category", ADVISORY))).strip().lower()
        if category != BLOCKING:
            # Anything not explicitly blocking is informational only
            category = ADVISORY
        items.append(
            CritiqueItem(
                id=f"{source}-{len(items) + 1}",
                source=source,
                category=category,
                description=description,
                location=str(entry.get("location") or ""),
                recommendation=str(entry.get("recommendation") or entry.get("fix") or ""),
                rationale=str(entry.get("rationale") or ""),
            )
        )
    return items


def parse_decisions(raw: str) -> dict[str, tuple[bool, str | None]]:
    """``[{"id", "applied", "rejection_reason"}]`` -> {id: (applied, reason)}."""
    obj = _load_structured(raw)
    if isinstance(obj, dict):
        obj = obj.get("decisions", [])
    if not isinstance(obj, list):
        return {}
    decisions: dict[str, tuple[bool, str | None]] = {}
    for entry in obj:
        if not isinstance(entry, dict) or "id" not in entry:
            continue
        applied = entry.get("applied")
        if isinstance(applied, str):
            applied = applied.strip().lower() in ("true", "yes", "applied")
        reason = entry.get("rejection_reason") or entry.get("reason")
        decisions[str(entry["id"])] = (bool(applied), str(reason) if reason else None)
    return decisions


def _reject_all(items: Sequence[CritiqueItem], reason: str) -> list[CritiqueItem]:
    for item in items:
        item.applied = False
        item.rejection_reason = reason
    return list(items)


async def run_critique_loop(
    query: str,
    draft: str,
    critics: Sequence[AgentSpec],
    chairman: AgentSpec,
    timeout_sec: float | None = None,
    prompt: str | None = None,
    confirm: bool = False,
    confirm_handler: ConfirmHandler | None = None,
    fallback: AgentSpec | None = None,
    runner: AgentRunner = run_agent,
) -> CritiqueResult:
    """Critics review the draft in parallel; the chairman applies or rejects blocking items.

    Advisory items are passed through untouched. With ``confirm`` set, the
    handler decides whether blocking fixes are applied at all.

    Raises:
        ChairmanError: If the resolving chairman (and fallback) fail.
    """
    critique_start = _now_ms()
    records = await run_agents(critics, build_critique_prompt(query, draft, prompt), timeout_sec, runner)
    critique_end = _now_ms()

    items: list[CritiqueItem] = []
    for rec in records:
        if rec.status is RunStatus.COMPLETED:
            items.extend(parse_critique(rec.output, rec.spec.name))

    blocking = [i for i in items if i.category == BLOCKING]
    advisory = [i for i in items if i.category == ADVISORY]
    logger.info(
        "Critique: %d blocking, %d advisory from %d critics in %.1fs",
        len(blocking),
        len(advisory),
        len(critics),
        (critique_end - critique_start) / 1000,
    )

    result = CritiqueResult(advisory=advisory, revised_draft=draft)

    if blocking and confirm:
        if confirm_handler is None:
            raise ValueError("confirm=True requires a confirm_handler")
        decision = "apply" if confirm_handler(blocking, advisory) else "skip"
        result.user_confirmation = UserConfirmation(
            prompted=True,
            decision=decision,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        logger.info("User decision on %d blocking critiques: %s", len(blocking), decision)
        if decision == "skip":
            result.rejected = _reject_all(blocking, "Skipped by user")
            blocking = []

    resolve_start = _now_ms()
    if blocking:
        stage3 = await run_chairman(
            chairman,
            build_resolve_prompt(query, draft, blocking, advisory),
            timeout_sec,
            fallback,
            runner,
        )
        result.resolved_by = stage3.agent
        sections = sections_by_name(parse_sections(stage3.response))
        revised = sections.get("revised_draft")
        if revised is None or not revised.content:
            logger.warning("Chairman %s returned no revised draft; keeping the original", stage3.agent)
            result.rejected = _reject_all(blocking, "Chairman returned no revised draft")
        else:
            result.revised_draft = revised.content
            decisions = parse_decisions(sections["decisions"].content) if "decisions" in sections else {}
            for item in blocking:
                applied, reason = decisions.get(item.id, (False, "No decision returned by chairman"))
                item.applied = applied
                if applied:
                    result.applied.append(item)
                else:
                    item.rejection_reason = reason or "Rejected by chairman"
                    result.rejected.append(item)
    resolve_end = _now_ms()

    result.timing = CritiqueTiming(
        critique_start_ms=critique_start,
        critique_end_ms=critique_end,
        resolve_start_ms=resolve_start,
        resolve_end_ms=resolve_end,
    )
    logger.info("Resolve: %d applied, %d rejected", len(result.applied), len(result.rejected))
    return result
