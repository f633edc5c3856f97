"""Click CLI: config and preset resolution, agent checks, pipeline run, output."""

import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import MODES, AppConfig, load_config
from council.agents import pick_chairman
from council.checkpoint import CheckpointWriter, checkpoint_path, load_checkpoint
from council.errors import CouncilError
from council.healthcheck import run_health_checks
from council.inbox import archive_file, ensure_dirs, parse_query_file, scan_inbox
from council.models import (
    AggregateRank,
    CritiqueItem,
    PipelineResult,
    PipelineStage,
    RunRecord,
    Stage1Result,
    Stage2Result,
    Stage3Result,
)
from council.output import print_result, save_to_file
from council.pipeline import PipelineCallbacks, run_pipeline
from council.presets import CouncilPlan, build_pipeline_options
from council.ranking import LabelMap
from council.session import append_to_history, load_history

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


@dataclass
class RunOverrides:
    """Per-run settings from the command line (None = use the preset)."""

    preset: str | None = None
    mode: str | None = None
    agents: list[str] | None = None
    chairman: str | None = None
    timeout_sec: float | None = None
    two_pass: bool | None = None
    critique: bool | None = None
    confirm: bool | None = None


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _split_agents(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [a.strip() for a in value.split(",") if a.strip()] or None


async def _check_agents(plan: CouncilPlan, ping: bool = False) -> CouncilPlan:
    """Drop agents whose CLI is missing (or, with ``ping``, does not answer).

    Asks before continuing without them. Exits if no responder is left.
    """
    options = plan.options
    critique = options.critique
    roles = [*plan.responders, *(options.evaluators or []), plan.chairman]
    if options.fallback_chairman is not None:
        roles.append(options.fallback_chairman)
    if critique.enabled:
        roles.extend(critique.agents or [])
        if critique.chairman is not None:
            roles.append(critique.chairman)
    everyone = {s.name: s for s in roles}

    console.print(f"\n[bold]{'Pinging' if ping else 'Checking'} agents...[/bold]")
    results = await run_health_checks(list(everyone.values()), ping=ping)

    missing_names: set[str] = set()
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            missing_names.add(name)

    if not missing_names:
        console.print()
        return plan

    responders = [s for s in plan.responders if s.name not in missing_names]
    if not responders:
        console.print("\n[bold red]Error:[/bold red] None of the responders are available.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(missing_names)} agent(s) unavailable:[/yellow] {', '.join(sorted(missing_names))}")
    if not click.confirm("Continue with the available agents only?", default=True):
        sys.exit(0)

    if options.evaluators is not None:
        options.evaluators = [s for s in options.evaluators if s.name not in missing_names] or list(responders)
    if options.fallback_chairman is not None and options.fallback_chairman.name in missing_names:
        options.fallback_chairman = None
    chairman = plan.chairman
    if chairman.name in missing_names:
        chairman = options.fallback_chairman or pick_chairman(responders)
        options.fallback_chairman = None
        console.print(f"Chairman: using {chairman.name} instead")
    if critique.agents is not None:
        # An empty list falls back to the responders
        critique.agents = [s for s in critique.agents if s.name not in missing_names] or None
    if critique.chairman is not None and critique.chairman.name in missing_names:
        critique.chairman = None
        console.print(f"Critique chairman: using {chairman.name} instead")
    console.print()
    return CouncilPlan(preset=plan.preset, responders=responders, chairman=chairman, options=options)


def _print_critique_items(title: str, items: list[CritiqueItem]) -> None:
    if not items:
        return
    console.print(f"\n[bold]{title}[/bold]")
    for item in items:
        console.print(f"  - [cyan]{item.id}[/cyan] {item.description}")
        if item.recommendation:
            console.print(f"    [dim]Fix: {item.recommendation}[/dim]")


async def _run_single(
    question_text: str,
    source: str,
    config: AppConfig,
    overrides: RunOverrides,
    output_dir: Path,
    checkpoint_dir: Path | None,
    resume: bool,
    skip_health_check: bool,
    slug_override: str | None = None,
    ping: bool = False,
    session_path: Path | None = None,
) -> Path | None:
    """Run one council and return the saved transcript path (None if nobody answered)."""
    plan = build_pipeline_options(
        config,
        overrides.preset,
        mode=overrides.mode,
        responders=overrides.agents,
        chairman=overrides.chairman,
        timeout_sec=overrides.timeout_sec,
        two_pass=overrides.two_pass,
        critique=overrides.critique,
        confirm=overrides.confirm,
    )
    if not skip_health_check:
        plan = await _check_agents(plan, ping=ping)
    options = plan.options
    if session_path is not None:
        options.history = load_history(session_path)

    writer: CheckpointWriter | None = None
    if checkpoint_dir is not None:
        path = checkpoint_path(checkpoint_dir)
        if resume:
            options.resume_from = load_checkpoint(path)
            if options.resume_from is None:
                console.print(f"[yellow]No usable checkpoint at {path}; starting fresh.[/yellow]")
        writer = CheckpointWriter(path, question_text)

    console.print(
        f"\n[bold cyan]Agent Council[/bold cyan] [{plan.preset}] {options.mode} mode, "
        f"{len(plan.responders)} responders"
    )
    console.print(f"Responders: {', '.join(s.name for s in plan.responders)}")
    console.print(f"Chairman: {plan.chairman.name}")
    console.print(f"Question: [italic]{question_text[:80]}{'...' if len(question_text) > 80 else ''}[/italic]\n")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Starting...", total=None)

        def on_stage_change(stage: PipelineStage) -> None:
            labels = {
                PipelineStage.STAGE1: "Stage 1: collecting responses...",
                PipelineStage.STAGE2: "Stage 2: peer ranking...",
                PipelineStage.STAGE3: "Stage 3: chairman synthesis...",
                PipelineStage.PASS1: "Stage 3: synthesis pass 1...",
                PipelineStage.PASS2: "Stage 3: synthesis pass 2...",
                PipelineStage.CRITIQUE: "Critique and resolve...",
                PipelineStage.COMPLETE: "Done",
            }
            progress.update(task, description=labels[stage])

        def on_agents_started(stage: PipelineStage, records: list[RunRecord]) -> None:
            logger.debug("%s: started %s", stage.value, ", ".join(r.spec.name for r in records))

        def on_stage1_complete(stage1: list[Stage1Result]) -> None:
            progress.print(f"[green]OK[/green] Stage 1 complete ({len(stage1)} responses)")
            if writer:
                writer.on_stage1_complete(stage1)

        def on_stage2_complete(stage2: list[Stage2Result], aggregate: list[AggregateRank], label_map: LabelMap) -> None:
            progress.print(f"[green]OK[/green] Stage 2 complete ({len(stage2)} rankings)")
            if writer:
                writer.on_stage2_complete(stage2, aggregate, label_map)

        def on_stage3_complete(stage3: Stage3Result) -> None:
            progress.print(f"[green]OK[/green] Synthesis complete ({stage3.agent})")
            if writer:
                writer.on_stage3_complete(stage3)

        def confirm_blocking(blocking: list[CritiqueItem], advisory: list[CritiqueItem]) -> bool:
            progress.stop()
            try:
                _print_critique_items(f"Blocking issues ({len(blocking)})", blocking)
                _print_critique_items(f"Advisory notes ({len(advisory)})", advisory)
                return click.confirm("\nApply the blocking fixes?", default=True)
            finally:
                progress.start()

        options.callbacks = PipelineCallbacks(
            on_stage1_complete=on_stage1_complete,
            on_stage2_complete=on_stage2_complete,
            on_stage3_complete=on_stage3_complete,
            on_agents_started=on_agents_started,
            on_stage_change=on_stage_change,
        )
        options.confirm_handler = confirm_blocking

        result: PipelineResult | None = await run_pipeline(question_text, plan.responders, plan.chairman, options)

    if result is None:
        console.print("[bold red]Error:[/bold red] No agent produced a response.")
        return None

    print_result(result)
    saved_path = save_to_file(result, output_dir, slug_override=slug_override, source=source)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
    if session_path is not None:
        append_to_history(session_path, result)
    return saved_path


async def _run_inbox(
    config: AppConfig,
    overrides: RunOverrides,
    inbox_dir: Path,
    archive_dir: Path,
    output_dir: Path,
    skip_health_check: bool,
    ping: bool = False,
) -> None:
    """Process all .md files in the inbox folder.

    Precedence for per-file settings: CLI flag > front matter > preset.
    """
    ensure_dirs(inbox_dir, archive_dir)
    files = scan_inbox(inbox_dir)

    if not files:
        click.echo("No files in inbox.")
        return

    for file_path in files:
        try:
            query = parse_query_file(file_path)
            file_overrides = RunOverrides(
                preset=overrides.preset or query.preset,
                mode=overrides.mode or query.mode,
                agents=overrides.agents or query.responders,
                chairman=overrides.chairman or query.chairman,
                timeout_sec=overrides.timeout_sec,
                two_pass=overrides.two_pass,
                critique=overrides.critique,
                confirm=overrides.confirm,
            )
            saved = await _run_single(
                question_text=query.question,
                source=str(file_path),
                config=config,
                overrides=file_overrides,
                output_dir=output_dir,
                checkpoint_dir=None,
                resume=False,
                skip_health_check=skip_health_check,
                slug_override=file_path.stem,
                ping=ping,
            )
            if saved is None:
                archive_file(file_path, archive_dir, failed=True)
                continue
            archived = archive_file(file_path, archive_dir)
            click.echo(f"Processed: {file_path.name} -> {saved} (archived: {archived.name})")
        except Exception as e:
            logger.error("Failed: %s -- %s", file_path.name, e)
            archive_file(file_path, archive_dir, failed=True)


@click.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True), help="Read the question from a .md file")
@click.option("--inbox", "use_inbox", is_flag=True, default=False, help="Process all .md files in the inbox folder")
@click.option("--preset", default=None, help="Preset from settings.yaml (default: from config)")
@click.option("--mode", type=click.Choice(MODES), default=None, help="compete (rank + synthesize) or merge")
@click.option("--agents", default=None, help="Comma-separated responders, e.g. claude,codex:fast")
@click.option("--chairman", default=None, help="Chairman agent, e.g. gemini or claude:heavy")
@click.option("--timeout", "timeout_sec", type=float, default=None, help="Per-agent timeout in seconds")
@click.option("--two-pass/--no-two-pass", default=None, help="Two-pass chairman synthesis")
@click.option("--critique/--no-critique", default=None, help="Critique and resolve the draft")
@click.option("--confirm/--no-confirm", default=None, help="Ask before applying blocking critique fixes")
@click.option("--checkpoint-dir", default=None, help="Write stage checkpoints here (default: from config)")
@click.option("--resume", is_flag=True, default=False, help="Resume from the checkpoint in --checkpoint-dir")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--session", "session_path", default=None, help="YAML file of earlier exchanges; the answer is appended")
@click.option("--skip-health-check", is_flag=True, default=False, help="Skip the agent availability check")
@click.option("--ping", is_flag=True, default=False, help="Also send every agent a short test prompt before the run")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(
    question: str | None,
    question_file: str | None,
    use_inbox: bool,
    preset: str | None,
    mode: str | None,
    agents: str | None,
    chairman: str | None,
    timeout_sec: float | None,
    two_pass: bool | None,
    critique: bool | None,
    confirm: bool | None,
    checkpoint_dir: str | None,
    resume: bool,
    output_path: str | None,
    session_path: str | None,
    skip_health_check: bool,
    ping: bool,
    verbose: bool,
) -> None:
    """Agent Council -- ask several agent CLIs, rank the answers, synthesize one.

    \b
    Examples:
      agent-council "Should we use REST or GraphQL?"
      agent-council "Draft a migration plan" --mode merge --two-pass
      agent-council "SQL or NoSQL?" --agents claude,gemini --chairman claude:heavy
      agent-council --file question.md --preset thorough --critique --confirm
      agent-council "And for mobile clients?" --session chat.yaml
      agent-council --inbox
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    overrides = RunOverrides(
        preset=preset,
        mode=mode,
        agents=_split_agents(agents),
        chairman=chairman,
        timeout_sec=timeout_sec,
        two_pass=two_pass,
        critique=critique,
        confirm=confirm,
    )
    effective_output = Path(output_path) if output_path else config.defaults.output_dir
    effective_checkpoint_dir = Path(checkpoint_dir) if checkpoint_dir else config.defaults.checkpoint_dir

    try:
        if use_inbox:
            asyncio.run(
                _run_inbox(
                    config=config,
                    overrides=overrides,
                    inbox_dir=config.inbox.dir,
                    archive_dir=config.inbox.archive_dir,
                    output_dir=effective_output,
                    skip_health_check=skip_health_check,
                    ping=ping,
                )
            )
            return

        if question_file:
            query = parse_query_file(Path(question_file))
            question_text = query.question
            question_source = question_file
            overrides.preset = overrides.preset or query.preset
            overrides.mode = overrides.mode or query.mode
            overrides.agents = overrides.agents or query.responders
            overrides.chairman = overrides.chairman or query.chairman
        elif question:
            question_text = question
            question_source = "cli"
        else:
            console.print("[bold red]Error:[/bold red] Provide a QUESTION argument, --file, or --inbox.")
            sys.exit(1)

        saved = asyncio.run(
            _run_single(
                question_text=question_text,
                source=question_source,
                config=config,
                overrides=overrides,
                output_dir=effective_output,
                checkpoint_dir=effective_checkpoint_dir,
                resume=resume,
                skip_health_check=skip_health_check,
                ping=ping,
                session_path=Path(session_path) if session_path else None,
            )
        )
    except (CouncilError, ValueError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    if saved is None:
        sys.exit(1)


if __name__ == "__main__":
    main()
