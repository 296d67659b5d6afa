"""
mcqgen CLI - developer harness around the generation pipeline.

Usage:
    mcqgen generate "Acne vulgaris"                 # Board-style question
    mcqgen generate "Rosacea" --variant rapid       # Fast model, short prompt
    mcqgen generate "Psoriasis" --json              # Raw PipelineResult JSON
    mcqgen variants                                 # List pipeline variants
    mcqgen config                                   # Effective settings
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from config import get_settings
from mcqgen.errors import GenerationError
from mcqgen.models import GenerationRequest, PipelineResult, PipelineVariant, ProgressStatus
from mcqgen.parsing.structured_text import OPTION_LETTERS
from mcqgen.pipeline.orchestrator import QuestionPipeline
from mcqgen.pipeline.variants import build_strategies

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="mcqgen",
    help="Draft and refine board-style multiple-choice questions with Gemini",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()

SECRET_SETTINGS = {"gemini_api_key"}


def configure_logging(level: str, log_file: str | None = None) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level, format="<level>{message}</level>")
    if log_file:
        logger.add(log_file, level="DEBUG", rotation="10 MB")


# =============================================================================
# Generation
# =============================================================================


async def _generate(
    request: GenerationRequest,
    max_iterations: int | None,
    timeout: float | None,
    show_progress: bool,
) -> PipelineResult:
    settings = get_settings()
    if max_iterations is not None:
        settings = settings.model_copy(update={"max_refinement_iterations": max_iterations})

    async with QuestionPipeline.from_settings(settings) as pipeline:
        session_id = "cli"
        watcher = None
        if show_progress and pipeline.progress is not None:
            watcher = asyncio.create_task(_print_progress(pipeline, session_id))
        try:
            return await pipeline.generate(request, session_id, timeout_s=timeout)
        finally:
            if watcher is not None:
                await asyncio.wait({watcher}, timeout=1)
                watcher.cancel()


async def _print_progress(pipeline: QuestionPipeline, session_id: str) -> None:
    colors = {
        ProgressStatus.RUNNING: "cyan",
        ProgressStatus.COMPLETE: "green",
        ProgressStatus.ERROR: "red",
        ProgressStatus.SKIPPED: "dim",
        ProgressStatus.PENDING: "dim",
    }
    async for event in pipeline.progress.subscribe(session_id):
        color = colors[event.status]
        iteration = f" #{event.iteration}" if event.iteration else ""
        message = f" {escape(event.message)}" if event.message else ""
        console.print(f"[{color}]{event.stage.value}{iteration} {event.status.value}[/{color}]{message}")


def render_result(result: PipelineResult) -> None:
    draft = result.final_draft
    lines = [escape(draft.stem), "", f"[bold]{escape(draft.lead_in)}[/bold]", ""]
    for position, option in enumerate(draft.options):
        marker = "[green]*[/green]" if position == draft.correct_index else " "
        lines.append(f"{marker} {OPTION_LETTERS[position]}. {escape(option.text)}")

    status = "[green]ACCEPTED[/green]" if result.accepted else "[yellow]NOT ACCEPTED[/yellow]"
    console.print(
        Panel(
            "\n".join(lines),
            title=f"{status} ({result.terminal_state.value})",
            subtitle="cache hit" if result.cache_hit else f"{result.total_duration_ms} ms",
            border_style="green" if result.accepted else "yellow",
        )
    )
    if draft.explanation:
        console.print(Panel(escape(draft.explanation), title="Explanation", border_style="dim"))

    table = Table(title="Iterations")
    table.add_column("#", justify="right")
    table.add_column("Valid")
    table.add_column("Structure", justify="right")
    table.add_column("Rubric", justify="right")
    table.add_column("Trigger")
    for record in result.iterations:
        table.add_row(
            str(record.index),
            "[green]yes[/green]" if record.validation.is_valid else "[red]no[/red]",
            str(record.validation.score),
            "-" if record.rubric.skipped else f"{record.rubric.total}/25",
            escape(record.trigger),
        )
    console.print(table)
    if result.error:
        console.print(f"[yellow]Stopped early:[/yellow] {escape(result.error)}")


@app.command()
def generate(
    topic: Annotated[str, typer.Argument(help="Topic of the question")],
    difficulty: Annotated[
        float, typer.Option("--difficulty", "-d", min=0.0, max=1.0, help="Target difficulty 0-1")
    ] = 0.6,
    variant: Annotated[
        PipelineVariant, typer.Option("--variant", "-v", help="Pipeline variant")
    ] = PipelineVariant.BOARD_STYLE,
    no_cache: Annotated[
        bool, typer.Option("--no-cache", help="Skip the result cache")
    ] = False,
    max_iterations: Annotated[
        int | None, typer.Option("--max-iterations", "-n", min=1, help="Refinement budget")
    ] = None,
    timeout: Annotated[
        float | None, typer.Option("--timeout", help="Cancel after this many seconds")
    ] = None,
    as_json: Annotated[
        bool, typer.Option("--json", help="Print the result as JSON")
    ] = False,
) -> None:
    """Generate one question for a topic."""
    try:
        request = GenerationRequest(
            topic=topic, difficulty=difficulty, variant=variant, use_cache=not no_cache
        )
    except ValueError as e:
        console.print(f"[red]Invalid request:[/red] {escape(str(e))}")
        raise typer.Exit(2)

    try:
        result = asyncio.run(_generate(request, max_iterations, timeout, show_progress=not as_json))
    except GenerationError as e:
        console.print(f"[red]Generation failed:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    if as_json:
        console.print_json(json.dumps(result.to_dict()))
    else:
        render_result(result)


# =============================================================================
# Inspection
# =============================================================================


@app.command()
def variants() -> None:
    """List the registered pipeline variants."""
    table = Table(title="Pipeline Variants")
    table.add_column("Variant", style="cyan")
    table.add_column("Template")
    table.add_column("Preferred model")
    table.add_column("Max iterations", justify="right")
    table.add_column("Description")

    settings = get_settings()
    strategies = build_strategies(primary_model=settings.ai_model, fast_model=settings.ai_fallback_model)
    for strategy in strategies.values():
        table.add_row(
            strategy.variant.value,
            strategy.template.name,
            strategy.preferred_model or settings.ai_model,
            str(strategy.max_iterations or settings.max_refinement_iterations),
            strategy.description,
        )
    console.print(table)


@app.command("config")
def show_config() -> None:
    """Show the effective settings (secrets masked)."""
    settings = get_settings()
    table = Table(title="Settings")
    table.add_column("Name", style="cyan")
    table.add_column("Value")
    for name, value in settings.model_dump().items():
        if name in SECRET_SETTINGS:
            value = "set" if value else "not set"
        table.add_row(name, str(value))
    console.print(table)


# =============================================================================
# Entry Point
# =============================================================================


@app.callback()
def main(
    verbose: Annotated[
        bool, typer.Option("--verbose", help="Debug logging")
    ] = False,
) -> None:
    """
    mcqgen - bounded LLM pipeline for board-style MCQs.

    \b
    Quick Start:
      mcqgen generate "Acne vulgaris"
      mcqgen variants
    """
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_file)


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
