"""Chairman synthesis: single pass, merge, and two-pass with truncation recovery."""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from council.errors import ChairmanError
from council.fanout import AgentRunner
from council.models import (
    AgentSpec,
    AggregateRank,
    ParsedSection,
    RunRecord,
    RunStatus,
    Stage1Result,
    Stage2CustomResult,
    Stage2Result,
    Stage3Result,
    TwoPassResult,
)
from council.prompts import (
    DEFAULT_DETAIL_SECTION,
    MERGE_PASS2_SECTIONS,
    build_chairman_prompt,
    build_merge_chairman_prompt,
    build_merge_pass1_prompt,
    build_merge_pass2_prompt,
    build_pass1_prompt,
    build_pass2_prompt,
    format_all_responses_for_merge,
    format_consolidation,
)
from council.runner import run_agent
from council.sections import parse_sections, sections_by_name

logger = logging.getLogger(__name__)

COMPETE_OUTLINE_SECTION = "section_outlines"
MERGE_OUTLINE_SECTION = "merged_content"

_OUTLINE_LINE = re.compile(r"^\s*(?:[-*]|\d+[.)])\s+[*`]*([A-Za-z][\w-]*)[*`]*\s*:\s*(.*)$", re.MULTILINE)


@dataclass
class TwoPassConfig:
    enabled: bool = False
    pass1_tier: str | None = None
    pass2_tier: str | None = None
    pass1_format: str | None = None
    pass1_is_custom_prompt: bool = False
    pass2_format: str | None = None
    pass2_is_custom_prompt: bool = False


def _consolidation(result: Stage2CustomResult | None) -> str | None:
    return format_consolidation(result) if result is not None else None


def _failure_reason(record: RunRecord) -> str | None:
    if record.status is not RunStatus.COMPLETED:
        stderr = "".join(record.stderr).strip()
        detail = record.error_message or ""
        if stderr:
            detail = f"{detail} {stderr.splitlines()[0][:200]}".strip()
        return f"{record.status.value}: {detail}" if detail else record.status.value
    if not record.output.strip():
        return "returned empty output"
    return None


async def run_chairman(
    chairman: AgentSpec,
    prompt: str,
    timeout_sec: float | None = None,
    fallback: AgentSpec | None = None,
    runner: AgentRunner = run_agent,
) -> Stage3Result:
    """Run the chairman; on failure try the fallback chairman once.

    Raises:
        ChairmanError: If the chairman fails and there is no fallback, or the
            fallback fails as well.
    """
    logger.info("Running chairman %s", chairman.name)
    record = await runner(chairman, prompt, timeout_sec, None)
    reason = _failure_reason(record)
    if reason is None:
        return Stage3Result(agent=chairman.name, response=record.output.strip())

    logger.warning("Chairman %s failed: %s", chairman.name, reason)
    if fallback is None or fallback.name.lower() == chairman.name.lower():
        raise ChairmanError(chairman.name, reason)

    logger.info("Trying fallback chairman %s", fallback.name)
    record = await runner(fallback, prompt, timeout_sec, None)
    fallback_reason = _failure_reason(record)
    if fallback_reason is None:
        return Stage3Result(agent=fallback.name, response=record.output.strip(), used_fallback_chairman=True)

    logger.warning("Fallback chairman %s failed: %s", fallback.name, fallback_reason)
    raise ChairmanError(fallback.name, f"{fallback_reason} (after {chairman.name}: {reason})")


async def run_compete_chairman(
    query: str,
    stage1: Sequence[Stage1Result],
    stage2: Sequence[Stage2Result],
    chairman: AgentSpec,
    aggregate: Sequence[AggregateRank] | None = None,
    timeout_sec: float | None = None,
    fallback: AgentSpec | None = None,
    output_format: str | None = None,
    use_summaries: bool = False,
    runner: AgentRunner = run_agent,
    consolidation: Stage2CustomResult | None = None,
) -> Stage3Result:
    prompt = build_chairman_prompt(
        query, stage1, stage2, aggregate, output_format, use_summaries, _consolidation(consolidation)
    )
    return await run_chairman(chairman, prompt, timeout_sec, fallback, runner)


async def run_merge_chairman(
    query: str,
    stage1: Sequence[Stage1Result],
    chairman: AgentSpec,
    timeout_sec: float | None = None,
    fallback: AgentSpec | None = None,
    output_format: str | None = None,
    use_summaries: bool = False,
    runner: AgentRunner = run_agent,
    consolidation: Stage2CustomResult | None = None,
) -> Stage3Result:
    formatted = format_all_responses_for_merge(stage1, use_summaries)
    prompt = build_merge_chairman_prompt(query, formatted, output_format, _consolidation(consolidation))
    return await run_chairman(chairman, prompt, timeout_sec, fallback, runner)


def parse_outline(content: str) -> dict[str, str]:
    """``- section_name: what it covers`` lines -> {section_name: description}."""
    entries: dict[str, str] = {}
    for match in _OUTLINE_LINE.finditer(content):
        name = match.group(1).lower().replace("-", "_")
        entries.setdefault(name, match.group(2).strip())
    return entries


def _title(name: str) -> str:
    return name.replace("_", " ").strip().title()


def combine_two_pass(
    pass1_sections: Sequence[ParsedSection],
    pass2_sections: Sequence[ParsedSection] | None,
    outline_section: str,
    detail_names: Sequence[str],
) -> tuple[str, bool]:
    """Merge both passes into one document.

    Pass 1 sections come first (except the outline, which Pass 2 replaces).
    Detail sections come from Pass 2 when complete; otherwise the matching
    outline entry, or the whole outline when Pass 2 produced nothing.

    Returns:
        (combined_markdown, used_fallback)
    """
    p1 = sections_by_name(list(pass1_sections))
    parts = [f"## {_title(s.name)}\n\n{s.content}" for s in p1.values() if s.name != outline_section and s.content]
    outline = p1.get(outline_section)

    if pass2_sections is None:
        if outline is not None and outline.content:
            parts.append(f"## {_title(outline.name)}\n\n{outline.content}")
        return "\n\n".join(parts), True

    p2 = sections_by_name(list(pass2_sections))
    outline_entries = parse_outline(outline.content) if outline is not None else {}
    used_fallback = False
    missing: list[str] = []

    for name in detail_names:
        section = p2.get(name)
        if section is not None and section.complete and section.content:
            parts.append(f"## {_title(name)}\n\n{section.content}")
            continue
        used_fallback = True
        missing.append(name)
        if name in outline_entries:
            parts.append(f"## {_title(name)}\n\n{outline_entries[name]}")
        elif section is not None and section.content:
            # Truncated, but better than nothing
            parts.append(f"## {_title(name)}\n\n{section.content}")
        elif outline is not None and outline.content and name in (DEFAULT_DETAIL_SECTION, *MERGE_PASS2_SECTIONS):
            parts.append(f"## {_title(outline.name)}\n\n{outline.content}")

    for name, section in p2.items():
        if name not in detail_names and section.complete and section.content:
            parts.append(f"## {_title(name)}\n\n{section.content}")

    if missing:
        logger.warning("Pass 2 sections missing or truncated, used Pass 1 content: %s", ", ".join(missing))
    return "\n\n".join(parts), used_fallback


async def run_two_pass_chairman(
    query: str,
    stage1: Sequence[Stage1Result],
    pass1_chairman: AgentSpec,
    pass2_chairman: AgentSpec,
    config: TwoPassConfig,
    mode: str = "compete",
    stage2: Sequence[Stage2Result] | None = None,
    aggregate: Sequence[AggregateRank] | None = None,
    timeout_sec: float | None = None,
    fallback: AgentSpec | None = None,
    use_summaries: bool = False,
    runner: AgentRunner = run_agent,
    consolidation: Stage2CustomResult | None = None,
) -> TwoPassResult:
    """Pass 1 (bounded synthesis) then Pass 2 (detail expansion).

    A Pass 1 failure propagates as ChairmanError. A Pass 2 failure does not:
    the combined output falls back to Pass 1 content and ``used_fallback``
    is set.
    """
    consolidated = _consolidation(consolidation)
    if mode == "merge":
        pass1_prompt = build_merge_pass1_prompt(
            query, stage1, config.pass1_format, config.pass1_is_custom_prompt, use_summaries, consolidated
        )
    else:
        pass1_prompt = build_pass1_prompt(
            query,
            stage1,
            stage2,
            aggregate,
            config.pass1_format,
            config.pass1_is_custom_prompt,
            use_summaries,
            consolidated,
        )

    logger.info("Two-pass synthesis: pass 1 via %s, pass 2 via %s", pass1_chairman.name, pass2_chairman.name)
    pass1 = await run_chairman(pass1_chairman, pass1_prompt, timeout_sec, fallback, runner)

    pass1_sections = parse_sections(pass1.response)
    if not pass1_sections:
        logger.warning("No delimited sections in pass 1 output; treating it as one section")
        pass1_sections = [ParsedSection(name="synthesis", content=pass1.response, complete=True)]
    p1 = sections_by_name(pass1_sections)

    if mode == "merge":
        outline_section = MERGE_OUTLINE_SECTION
        detail_names = list(MERGE_PASS2_SECTIONS)
        pass2_prompt = build_merge_pass2_prompt(
            query, pass1.response, stage1, config.pass2_format, config.pass2_is_custom_prompt, use_summaries
        )
    else:
        outline_section = COMPETE_OUTLINE_SECTION
        outline = p1.get(outline_section)
        detail_names = list(parse_outline(outline.content)) if outline else []
        pass2_prompt = build_pass2_prompt(
            query,
            stage1,
            pass1.response,
            detail_names,
            config.pass2_format,
            config.pass2_is_custom_prompt,
            use_summaries,
        )
        detail_names = detail_names or [DEFAULT_DETAIL_SECTION]

    pass2_sections: list[ParsedSection] | None
    try:
        pass2 = await run_chairman(pass2_chairman, pass2_prompt, timeout_sec, fallback, runner)
        pass2_sections = parse_sections(pass2.response)
        if not pass2_sections:
            logger.warning("No delimited sections in pass 2 output")
    except ChairmanError as exc:
        logger.warning("Pass 2 failed, falling back to pass 1 content: %s", exc)
        pass2 = Stage3Result(agent=pass2_chairman.name, response="")
        pass2_sections = None

    combined, used_fallback = combine_two_pass(pass1_sections, pass2_sections, outline_section, detail_names)
    return TwoPassResult(
        pass1=pass1,
        pass2=pass2,
        combined=combined,
        pass1_sections=[s.name for s in pass1_sections if s.complete],
        pass2_sections=[s.name for s in pass2_sections or [] if s.complete],
        used_fallback=used_fallback,
    )
