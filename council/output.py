"""Rich console output and markdown transcript for council results."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from council.models import (
    AggregateRank,
    CritiqueItem,
    CritiqueResult,
    PipelineResult,
    Stage1Result,
    Stage2CustomResult,
)
from council.prompts import format_consolidation

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len] or "council"


def _preview(text: str, words: int = 50) -> str:
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def print_stage1_summary(stage1: list[Stage1Result]) -> None:
    console.print(Rule("[bold cyan]Stage 1: Responses[/bold cyan]"))
    for result in stage1:
        console.print(
            Panel(
                _preview(result.summary or result.response),
                title=f"[bold]{result.agent}[/bold]",
                subtitle="summary" if result.summary else None,
                border_style="dim",
            )
        )


def build_ranking_table(aggregate: list[AggregateRank]) -> Table:
    table = Table(title="Aggregate Ranking", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Agent", style="bold")
    table.add_column("Avg rank", justify="right")
    table.add_column("Votes", justify="right")
    for position, rank in enumerate(aggregate, start=1):
        table.add_row(str(position), rank.agent, f"{rank.average_rank:.2f}", str(rank.rankings_count))
    return table


def print_aggregate(aggregate: list[AggregateRank]) -> None:
    console.print(Rule("[bold cyan]Stage 2: Peer Ranking[/bold cyan]"))
    if not aggregate:
        console.print("[yellow]No usable rankings.[/yellow]")
        return
    console.print(build_ranking_table(aggregate))


def print_consolidation(consolidated: Stage2CustomResult) -> None:
    console.print(Rule("[bold cyan]Stage 2: Consolidation[/bold cyan]"))
    console.print(Markdown(format_consolidation(consolidated)))


def _critique_counts(critique: CritiqueResult) -> str:
    return f"{len(critique.applied)} applied, {len(critique.rejected)} rejected, {len(critique.advisory)} advisory"


def print_critique(critique: CritiqueResult) -> None:
    console.print(Rule("[bold magenta]Critique[/bold magenta]"))
    console.print(Text(_critique_counts(critique), style="dim"))
    for item in critique.applied:
        console.print(f"  [green]APPLIED [/green] {item.id}: {item.description}")
    for item in critique.rejected:
        console.print(f"  [red]REJECTED[/red] {item.id}: {item.description} [dim]({item.rejection_reason})[/dim]")
    for item in critique.advisory:
        console.print(f"  [yellow]ADVISORY[/yellow] {item.id}: {item.description}")


def print_final_answer(result: PipelineResult) -> None:
    console.print(Rule("[bold green]Council Answer[/bold green]"))
    chairman = result.stage3.agent + (" (fallback)" if result.stage3.used_fallback_chairman else "")
    meta = f"Chairman: {chairman} | Mode: {result.mode} | Duration: {result.total_duration_sec:.1f}s"
    if result.two_pass is not None:
        meta += " | Two-pass" + (" (pass 1 fallback)" if result.two_pass.used_fallback else "")
    console.print(Text(meta, style="dim"))
    console.print(Markdown(result.final_answer))


def print_result(result: PipelineResult) -> None:
    print_stage1_summary(result.stage1)
    if result.aggregate is not None:
        print_aggregate(result.aggregate)
    if result.stage2_custom is not None:
        print_consolidation(result.stage2_custom)
    if result.critique is not None:
        print_critique(result.critique)
    print_final_answer(result)


def _critique_lines(title: str, items: list[CritiqueItem]) -> list[str]:
    if not items:
        return []
    lines = [f"### {title}", ""]
    for item in items:
        line = f"- **{item.id}** ({item.source}): {item.description}"
        if item.recommendation:
            line += f" *Recommendation:* {item.recommendation}"
        if item.rejection_reason:
            line += f" *Rejected:* {item.rejection_reason}"
        lines.append(line)
    lines.append("")
    return lines


def render_markdown(result: PipelineResult, source: str = "cli") -> str:
    """The full transcript: every stage, then the final answer."""
    lines: list[str] = [
        f"# Agent Council: {result.question[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Mode:** {result.mode}",
        f"**Responders:** {', '.join(r.agent for r in result.stage1)}",
        f"**Chairman:** {result.stage3.agent}" + (" (fallback)" if result.stage3.used_fallback_chairman else ""),
        f"**Duration:** {result.total_duration_sec:.1f}s",
        f"**Source:** {source}",
        "",
        "---",
        "",
        "## Question",
        "",
        result.question,
        "",
        "## Stage 1: Responses",
        "",
    ]
    for r in result.stage1:
        lines += [f"### {r.agent}", "", r.response, ""]

    if result.stage2 is not None:
        lines += ["## Stage 2: Peer Rankings", ""]
        if result.label_to_agent:
            lines.append("Labels: " + ", ".join(f"{label} = {agent}" for label, agent in result.label_to_agent.items()))
            lines.append("")
        for r in result.stage2:
            parsed = ", ".join(r.parsed_ranking) or "(none parsed)"
            lines += [f"### {r.agent}", "", f"*Parsed ranking:* {parsed}", "", r.ranking_raw, ""]
        if result.aggregate:
            lines += ["### Aggregate", "", "| # | Agent | Avg rank | Votes |", "|---|---|---|---|"]
            for i, a in enumerate(result.aggregate, start=1):
                lines.append(f"| {i} | {a.agent} | {a.average_rank:.2f} | {a.rankings_count} |")
            lines.append("")

    if result.stage2_custom is not None:
        lines += ["## Stage 2: Consolidation", "", format_consolidation(result.stage2_custom), ""]

    if result.two_pass is not None:
        tp = result.two_pass
        lines += [
            "## Two-Pass Synthesis",
            "",
            f"*Pass 1 ({tp.pass1.agent}) sections:* {', '.join(tp.pass1_sections) or '(none)'}",
            f"*Pass 2 ({tp.pass2.agent}) sections:* {', '.join(tp.pass2_sections) or '(none)'}",
            "",
        ]
        if tp.used_fallback:
            lines += ["*Some sections fell back to Pass 1 content.*", ""]

    if result.critique is not None:
        lines += ["## Critique", "", _critique_counts(result.critique), ""]
        lines += _critique_lines("Applied", result.critique.applied)
        lines += _critique_lines("Rejected", result.critique.rejected)
        lines += _critique_lines("Advisory", result.critique.advisory)

    lines += ["## Final Answer", "", result.final_answer, ""]
    return "\n".join(lines)


def save_to_file(
    result: PipelineResult,
    output_dir: Path,
    slug_override: str | None = None,
    source: str = "cli",
) -> Path:
    """Save the transcript as ``<timestamp>_<slug>.md`` in output_dir."""
    output_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(result.question)
    filepath = output_dir / f"{timestamp}_{slug}.md"
    filepath.write_text(render_markdown(result, source), encoding="utf-8")
    logger.info("Transcript saved to: %s", filepath)
    return filepath
