"""Revisit CLI: card scheduling, due queues and the HTTP server."""

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import typer

from revisit.application.config import resolve_config
from revisit.application.factory import Services, build_services
from revisit.application.scheduler import calculate_quality
from revisit.domain.errors import RevisitError
from revisit.domain.models import Card, Performance
from revisit.infrastructure.adapters.codec import card_to_dict

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="revisit: spaced-repetition scheduling for student review.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Manage revisit configuration.")
app.add_typer(config_app, name="config")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _services(ctx: typer.Context) -> Services:
    obj = ctx.ensure_object(dict)
    if "services" not in obj:
        config = resolve_config({"data_dir": obj.get("data_dir")})
        if not obj.get("verbose"):
            logging.getLogger("revisit").setLevel(config.log_level)
        obj["services"] = build_services(config)
    return obj["services"]


@contextmanager
def _reported_errors() -> Iterator[None]:
    try:
        yield
    except RevisitError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from None


def _card_line(card: Card) -> str:
    label = card.concept_text or card.question_id or ""
    return (
        f"{card.id}  [{card.status.value}]  {card.subject or '-'}  "
        f"due {card.next_review_at:%Y-%m-%d %H:%M}  ef={card.easiness_factor:.2f}  {label}"
    )


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    data_dir: Annotated[
        Path | None, typer.Option("--data-dir", help="Card store directory override.")
    ] = None,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity."),
    ] = 0,
):
    """Global settings for revisit."""
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir
    ctx.obj["verbose"] = verbose
    if verbose:
        logging.getLogger("revisit").setLevel(logging.DEBUG if verbose > 1 else logging.INFO)


# ---------------------------------------------------------------------------
# Card commands
# ---------------------------------------------------------------------------


@app.command()
def add(
    ctx: typer.Context,
    student: Annotated[str, typer.Argument(help="Student ID.")],
    subject: Annotated[str | None, typer.Option(help="Subject, e.g. math.")] = None,
    topic: Annotated[str | None, typer.Option(help="Topic ID.")] = None,
    grade: Annotated[str, typer.Option(help="Grade level (K, 1-12).")] = "K",
    question_id: Annotated[str | None, typer.Option(help="Question reference.")] = None,
    text: Annotated[str | None, typer.Option(help="Concept text.")] = None,
    difficulty: Annotated[int | None, typer.Option(min=1, max=10)] = None,
):
    """[bold green]Add[/bold green] a new card, due immediately."""
    with _reported_errors():
        card = _services(ctx).cards.add_card(
            student,
            subject=subject,
            topic_id=topic,
            grade_level=grade,
            question_id=question_id,
            concept_text=text,
            difficulty=difficulty,
        )
    typer.echo(card.id)


@app.command()
def due(
    ctx: typer.Context,
    student: Annotated[str, typer.Argument(help="Student ID.")],
    subject: Annotated[str | None, typer.Option(help="Filter by subject.")] = None,
    limit: Annotated[int | None, typer.Option(help="Maximum cards to list.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """List cards due now, most overdue first."""
    with _reported_errors():
        cards = _services(ctx).cards.get_due_cards(student, subject, limit=limit)

    if json_output:
        typer.echo(json.dumps([card_to_dict(c) for c in cards], indent=2))
        return
    if not cards:
        typer.secho("No cards due.", fg="green")
        return
    for card in cards:
        typer.echo(_card_line(card))


@app.command()
def review(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card ID.")],
    quality: Annotated[int, typer.Option("--quality", "-q", help="Recall quality 0-5.")],
    time_spent: Annotated[float, typer.Option(help="Seconds spent answering.")] = 0.0,
    correct: Annotated[
        bool | None,
        typer.Option("--correct/--incorrect", help="Defaults to quality >= 3."),
    ] = None,
):
    """Record a review and print the new schedule."""
    with _reported_errors():
        result = _services(ctx).cards.review_card(
            card_id, Performance(quality=quality, time_spent=time_spent, correct=correct)
        )
    typer.echo(json.dumps(result.to_dict(), indent=2))


@app.command()
def reset(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card ID.")],
):
    """Send a card back to 'new' for re-learning."""
    with _reported_errors():
        card = _services(ctx).cards.reset_card(card_id)
    typer.secho(f"Reset {card.id}.", fg="green")


@app.command()
def archive(
    ctx: typer.Context,
    student: Annotated[str, typer.Argument(help="Student ID.")],
    days: Annotated[
        int | None, typer.Option(help="Retire mastered cards not reviewed for this many days.")
    ] = None,
):
    """Retire long-mastered cards."""
    with _reported_errors():
        count = _services(ctx).cards.archive_mastered_cards(student, days)
    typer.echo(f"Archived {count} cards.")


@app.command()
def stats(
    ctx: typer.Context,
    student: Annotated[str, typer.Argument(help="Student ID.")],
    subject: Annotated[str | None, typer.Option(help="Filter by subject.")] = None,
):
    """Show review statistics as JSON."""
    with _reported_errors():
        result = _services(ctx).cards.get_review_stats(student, subject)
    typer.echo(json.dumps(result.to_dict(), indent=2))


@app.command()
def upcoming(
    ctx: typer.Context,
    student: Annotated[str, typer.Argument(help="Student ID.")],
    days: Annotated[int, typer.Option(help="Days to show.")] = 7,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show the review calendar."""
    with _reported_errors():
        schedule = _services(ctx).cards.get_upcoming_reviews(student, days=days)

    if json_output:
        typer.echo(json.dumps([d.to_dict() for d in schedule], indent=2))
        return
    for day in schedule:
        typer.echo(f"{day.date.isoformat()}: {day.count} reviews")


@app.command()
def quality(
    confidence: Annotated[float, typer.Option(min=0.0, max=1.0)],
    time_spent: Annotated[float, typer.Option(help="Seconds taken.")],
    expected_time: Annotated[float, typer.Option(help="Expected seconds.")],
    correct: Annotated[bool, typer.Option("--correct/--incorrect")] = True,
):
    """Convert raw answer data into a 0-5 quality score."""
    with _reported_errors():
        typer.echo(calculate_quality(correct, confidence, time_spent, expected_time))


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@app.command()
def serve(
    port: Annotated[int | None, typer.Option(help="Port to bind the server to.")] = None,
    host: Annotated[str | None, typer.Option(help="Host to bind the server to.")] = None,
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Run the HTTP API."""
    import uvicorn

    config = resolve_config({"port": port, "host": host})
    uvicorn.run("revisit.server:app", host=config.host, port=config.port, reload=reload)


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    obj = ctx.ensure_object(dict)
    config = resolve_config({"data_dir": obj.get("data_dir")})
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))
