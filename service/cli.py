"""CLI interface for checking, running and grading lesson submissions."""

from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Optional

import typer
from tqdm import tqdm

from evaluator.feedback import FeedbackTemplates
from evaluator.solution import SolutionEvaluator
from progress_core.events import LoggingEventSink
from progress_core.orchestrator import (
    LessonAccessDeniedError,
    LessonNotFoundError,
    ProgressOrchestrator,
)
from sandbox.execution import check_safety, execute_and_format
from sandbox.formatter import NIL_TEXT, DisplayResult, create_summary
from service.config import EngineConfig, load_config
from service.lessons import import_catalog
from store.repository import LessonRepository, ProgressRepository

app = typer.Typer(help="Code lesson execution and grading CLI")

STATE_ICONS = {"completed": "✓", "available": "▶", "locked": "🔒"}


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to engine YAML config"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Override the SQLite database path"),
) -> None:
    """Load configuration and set up logging for every command."""
    try:
        config = load_config(config_path) if config_path else EngineConfig()
    except FileNotFoundError as e:
        typer.secho(f"❌ {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except ValueError as e:
        typer.secho(f"❌ Invalid config: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    if db_path:
        config = config.model_copy(update={"db_path": db_path})

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = config


def _read_source(path: str) -> str:
    source_path = Path(path)
    if not source_path.exists():
        typer.secho(f"❌ Source file not found: {path}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    return source_path.read_text(encoding="utf-8")


def _build_orchestrator(config: EngineConfig) -> ProgressOrchestrator:
    progress = ProgressRepository(config.db_path)
    return ProgressOrchestrator(
        lessons=LessonRepository(config.db_path),
        progress=progress,
        events=LoggingEventSink(),
        evaluator=SolutionEvaluator(FeedbackTemplates(random.Random(config.feedback_seed))),
        stats=progress,
        options=config.sandbox.to_options(),
    )


def _echo_display(display: DisplayResult) -> None:
    if display.success and display.value_text != NIL_TEXT:
        typer.echo(f"   Result: {display.value_text}")
    if display.output_text is not None:
        typer.echo("   Output:")
        for line in display.output_text.splitlines():
            typer.echo(f"     {line}")
    if display.error_text is not None:
        typer.secho(f"   Error:  {display.error_text}", fg=typer.colors.RED)
    typer.echo(f"   Time:   {display.elapsed_text}")


@app.command()
def check(
    source_file: str = typer.Argument(..., help="Python file to check"),
) -> None:
    """Run the safety gate only; nothing is executed."""
    verdict = check_safety(_read_source(source_file))
    if verdict.error is not None:
        typer.secho(f"❌ {verdict.error.display}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.secho("✅ No dangerous operations found", fg=typer.colors.GREEN)


@app.command()
def run(
    ctx: typer.Context,
    source_file: str = typer.Argument(..., help="Python file to execute"),
) -> None:
    """Execute a file in the sandbox and show the formatted result."""
    config: EngineConfig = ctx.obj
    outcome = execute_and_format(_read_source(source_file), config.sandbox.to_options())
    if not isinstance(outcome, DisplayResult):
        message = outcome.error.display if outcome.error else "Code rejected"
        typer.secho(f"❌ {message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    colour = typer.colors.GREEN if outcome.success else typer.colors.RED
    typer.secho(create_summary(outcome), fg=colour)
    _echo_display(outcome)
    if not outcome.success:
        raise typer.Exit(1)


@app.command("import-lessons")
def import_lessons(
    ctx: typer.Context,
    catalog: str = typer.Argument(..., help="YAML lesson catalog"),
) -> None:
    """Import a lesson catalog into the database."""
    config: EngineConfig = ctx.obj
    try:
        lessons = import_catalog(catalog, LessonRepository(config.db_path))
    except FileNotFoundError as e:
        typer.secho(f"❌ {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except ValueError as e:
        typer.secho(f"❌ Invalid catalog: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    typer.secho(f"✅ Imported {len(lessons)} lesson(s)", fg=typer.colors.GREEN)
    for lesson in lessons:
        typer.echo(f"   {lesson.order_index:>3}. {lesson.title} (id={lesson.id})")


@app.command()
def lessons(
    ctx: typer.Context,
    user_id: int = typer.Argument(..., help="User to show lesson availability for"),
) -> None:
    """List lessons with their completed / available / locked state."""
    orchestrator = _build_orchestrator(ctx.obj)
    entries = orchestrator.get_available_lessons(user_id)
    if not entries:
        typer.secho("No lessons found.", fg=typer.colors.YELLOW)
        return

    for entry in entries:
        difficulty = f" [{entry.difficulty}]" if entry.difficulty else ""
        attempts = f" ({entry.attempts} attempt(s))" if entry.attempts else ""
        typer.echo(
            f"  {STATE_ICONS[entry.state]} {entry.order_index:>3}. "
            f"{entry.title}{difficulty}{attempts} (id={entry.lesson_id})"
        )

    next_lesson = orchestrator.get_next_lesson(user_id)
    if next_lesson is not None:
        typer.secho(f"\nNext up: {next_lesson.title}", fg=typer.colors.BLUE)


@app.command()
def submit(
    ctx: typer.Context,
    user_id: int = typer.Argument(..., help="Submitting user"),
    lesson_id: int = typer.Argument(..., help="Lesson to submit for"),
    source_file: str = typer.Argument(..., help="Python file with the solution"),
) -> None:
    """Submit a solution: grade it and record progress."""
    orchestrator = _build_orchestrator(ctx.obj)
    code = _read_source(source_file)
    try:
        submission = orchestrator.submit_solution(user_id, lesson_id, code)
    except LessonNotFoundError as e:
        typer.secho(f"❌ {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except LessonAccessDeniedError as e:
        typer.secho(f"🔒 {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    if submission.rejected:
        error = submission.execution.error
        typer.secho(f"❌ {error.display if error else 'Code rejected'}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    if submission.passed:
        typer.secho(f"✅ {submission.verdict.feedback}", fg=typer.colors.GREEN)
    else:
        typer.secho(f"❌ {submission.verdict.feedback}", fg=typer.colors.RED)

    if submission.progress is not None:
        typer.echo(
            f"   Status: {submission.progress.status.value} | Attempts: {submission.progress.attempts}"
        )
    if submission.unlocked_lesson is not None:
        typer.secho(f"🔓 Unlocked: {submission.unlocked_lesson.title}", fg=typer.colors.BLUE)
    if not submission.passed:
        raise typer.Exit(1)


@app.command()
def grade(
    ctx: typer.Context,
    lesson_id: int = typer.Argument(..., help="Lesson to grade against"),
    source_files: list[str] = typer.Argument(..., help="Python files to grade"),
) -> None:
    """Grade several files against one lesson without recording progress."""
    orchestrator = _build_orchestrator(ctx.obj)
    results: list[tuple[str, bool, str]] = []
    try:
        for source_file in tqdm(source_files, desc="📝 Grading", unit="file", ncols=100):
            verdict = orchestrator.check_solution(lesson_id, _read_source(source_file))
            results.append((source_file, verdict.passed, verdict.feedback))
    except LessonNotFoundError as e:
        typer.secho(f"❌ {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    passed = sum(1 for _, ok, _ in results if ok)
    typer.secho(f"\n📊 {passed}/{len(results)} passed\n", fg=typer.colors.BLUE)
    for source_file, ok, feedback in results:
        icon = "✓" if ok else "✗"
        first_line = feedback.splitlines()[0] if feedback else ""
        typer.echo(f"  {icon} {source_file}: {first_line}")


@app.command()
def stats(
    ctx: typer.Context,
    user_id: Optional[int] = typer.Option(None, "--user-id", help="Show one user's statistics"),
) -> None:
    """Show global or per-user progress statistics."""
    config: EngineConfig = ctx.obj
    if user_id is not None:
        user = _build_orchestrator(config).user_statistics(user_id)
        typer.secho(f"\n📈 User {user.user_id}\n", fg=typer.colors.BLUE)
        typer.echo(f"  Completed:   {user.completed_lessons}/{user.total_lessons} ({user.completion_percentage}%)")
        typer.echo(f"  In progress: {user.in_progress_lessons}")
        typer.echo(f"  Attempts:    {user.total_attempts} (avg {user.average_attempts_per_lesson} per lesson)")
        return

    overall = ProgressRepository(config.db_path).global_stats()
    typer.secho("\n📈 Global progress\n", fg=typer.colors.BLUE)
    typer.echo(f"  Lessons: {overall.total_lessons} | Users: {overall.total_users}")
    typer.echo(f"  Overall completion: {overall.overall_completion_rate}%")
    for summary in overall.lesson_completion_stats:
        typer.echo(
            f"  {summary.order_index:>3}. {summary.lesson_title}: "
            f"{summary.completed_count} completed, {summary.in_progress_count} in progress, "
            f"{summary.total_attempts} attempt(s)"
        )


if __name__ == "__main__":
    app()
