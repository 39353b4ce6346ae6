"""
CLI entry point for studyless.
"""

# Standard library imports
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import UUID

# Third-party imports
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

# Local application imports
from studyless.config import ConfigError, load_parameters_file
from studyless.constants import DEFAULT_USER_ID
from studyless.db.database import ReviewDatabase
from studyless.db.db_utils import backup_database
from studyless.due_selector import cards_by_urgency, due_cards
from studyless.exceptions import DatabaseError, SchedulingError
from studyless.models import AlgorithmParameters, CardState, LeechDecision, Rating
from studyless.optimizer import optimize_fsrs_parameters
from studyless.retention import (
    RetentionGoal,
    calculate_optimal_retention,
    get_recommended_retention,
)
from studyless.review_processor import ReviewProcessor
from studyless.review_stats import (
    ReviewStats,
    calculate_review_stats,
    detect_cheating_risk,
    get_learning_insights,
)
from studyless.scheduler import FSRS_Scheduler, format_interval


console = Console()

app = typer.Typer(
    name="studyless",
    help="Studyless: FSRS spaced-repetition scheduler and analytics.",
    add_completion=False,
    rich_markup_mode="markdown",
)


# ---------------------------------------------------------------------------
# Helpers for resolving the --db path and the active user's settings
# ---------------------------------------------------------------------------


def _resolve_db_path(db: Optional[Path]) -> Path:
    """Resolve db path from CLI flag or STUDYLESS_DB envvar. Exits on missing."""
    if db is not None:
        return db
    env_val = os.environ.get("STUDYLESS_DB")
    if env_val:
        return Path(env_val)
    console.print(
        "[bold red]Error: --db is required "
        "(or set the STUDYLESS_DB environment variable).[/bold red]"
    )
    raise typer.Exit(code=1)


_db_option = typer.Option(  # noqa: B008
    None,
    "--db",
    help="Path to the DuckDB database file. "
    "Falls back to STUDYLESS_DB env var.",
    envvar="STUDYLESS_DB",
)

_user_option = typer.Option(  # noqa: B008
    DEFAULT_USER_ID,
    "--user",
    help="User whose cards, reviews and parameters are used. "
    "Falls back to STUDYLESS_USER env var.",
    envvar="STUDYLESS_USER",
)

_params_file_option = typer.Option(  # noqa: B008
    None,
    "--params-file",
    help="YAML settings file overriding the stored parameters.",
)


def _load_params(
    db_inst: ReviewDatabase, user: str, params_file: Optional[Path]
) -> AlgorithmParameters:
    """
    Settings for this run: the YAML file if given, else the user's stored
    parameters, else the defaults.
    """
    if params_file is not None:
        try:
            return load_parameters_file(params_file)
        except ConfigError as e:
            console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
            raise typer.Exit(code=1) from e
    stored = db_inst.get_parameters(user)
    return stored if stored is not None else AlgorithmParameters()


def _parse_card_id(raw: str) -> UUID:
    try:
        return UUID(raw)
    except ValueError as e:
        console.print(f"[bold red]Error: '{raw}' is not a valid card id.[/bold red]")
        raise typer.Exit(code=1) from e


# ---------------------------------------------------------------------------
# Init & card commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    db: Optional[Path] = _db_option,
    user: str = _user_option,
    params_file: Optional[Path] = _params_file_option,
    force: bool = typer.Option(
        False,
        "--force",
        help="Drop and recreate all tables. ALL DATA WILL BE LOST.",
    ),
):
    """Create the database schema and store the user's parameters."""
    db_path = _resolve_db_path(db)
    try:
        with ReviewDatabase(db_path=db_path) as db_inst:
            db_inst.initialize_schema(force_recreate_tables=force)
            if params_file is not None or db_inst.get_parameters(user) is None:
                params = _load_params(db_inst, user, params_file)
                db_inst.save_parameters(user, params)
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {escape(str(e))}[/bold]")
        raise typer.Exit(code=1) from e
    console.print(
        f"[bold green]Database ready at {db_path} for user '{user}'.[/bold green]"
    )


@app.command("add-card")
def add_card(
    db: Optional[Path] = _db_option,
    user: str = _user_option,
    count: int = typer.Option(1, "--count", "-n", min=1, help="Number of new cards."),
):
    """Register new cards, due immediately."""
    db_path = _resolve_db_path(db)
    now = datetime.now(timezone.utc)
    cards = [CardState.new(now=now) for _ in range(count)]
    try:
        with ReviewDatabase(db_path=db_path) as db_inst:
            db_inst.upsert_card_states(cards, user_id=user)
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {escape(str(e))}[/bold]")
        raise typer.Exit(code=1) from e
    for card in cards:
        console.print(str(card.card_id))
    console.print(f"[green]Added {len(cards)} card(s) for user '{user}'.[/green]")


# ---------------------------------------------------------------------------
# Review & due commands
# ---------------------------------------------------------------------------


@app.command()
def review(
    card_id: str = typer.Argument(..., help="Id of the card being reviewed."),  # noqa: B008
    rating: int = typer.Argument(  # noqa: B008
        ..., help="1=Again, 2=Hard, 3=Good, 4=Easy."
    ),
    db: Optional[Path] = _db_option,
    user: str = _user_option,
    params_file: Optional[Path] = _params_file_option,
    time_ms: int = typer.Option(
        0, "--time-ms", min=0, help="Time spent on the card in milliseconds."
    ),
):
    """Record one review of a card and show when it is due next."""
    db_path = _resolve_db_path(db)
    card_uuid = _parse_card_id(card_id)
    try:
        with ReviewDatabase(db_path=db_path) as db_inst:
            params = _load_params(db_inst, user, params_file)
            processor = ReviewProcessor(db_inst, FSRS_Scheduler(params), user_id=user)
            outcome = processor.process_review_by_id(
                card_uuid, rating, review_time_ms=time_ms
            )
    except SchedulingError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=1) from e
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {escape(str(e))}[/bold]")
        raise typer.Exit(code=1) from e
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=1) from e

    card = outcome.card
    console.print(
        f"Rated [cyan]{Rating(rating).name}[/cyan]. "
        f"Next review in [bold]{format_interval(outcome.interval_days)}[/bold] "
        f"({card.due_at.isoformat()})."
    )
    console.print(
        f"State: {card.learning_state.name}, stability {card.stability:.2f}d, "
        f"difficulty {card.difficulty:.2f}, lapses {card.lapses}"
    )
    if outcome.leech_decision == LeechDecision.FLAGGED:
        console.print("[yellow]This card is a leech. Consider rewriting it.[/yellow]")
    elif outcome.leech_decision == LeechDecision.SUSPENDED:
        console.print("[bold yellow]Leech card suspended.[/bold yellow]")


@app.command()
def due(
    db: Optional[Path] = _db_option,
    user: str = _user_option,
    params_file: Optional[Path] = _params_file_option,
    test_day: bool = typer.Option(
        False, "--test-day", help="Today is the scheduled test day."
    ),
    limit: int = typer.Option(
        50, "--limit", "-l", min=1, help="Maximum number of cards to list."
    ),
):
    """List the cards due for review now."""
    db_path = _resolve_db_path(db)
    now = datetime.now(timezone.utc)
    try:
        with ReviewDatabase(db_path=db_path) as db_inst:
            params = _load_params(db_inst, user, params_file)
            cards = db_inst.get_all_card_states(user_id=user)
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {escape(str(e))}[/bold]")
        raise typer.Exit(code=1) from e

    due_ids = due_cards(cards, now, params, is_test_day_today=test_day)
    if not due_ids:
        if test_day and params.test_day_lockout_enabled:
            console.print("[yellow]Test day: reviews are locked out.[/yellow]")
        else:
            console.print("[green]No cards are due.[/green]")
        return

    by_id = {card.card_id: card for card in cards}
    overdue = {card.card_id for card in cards_by_urgency(cards, now)}
    table = Table(title=f"Due Cards ({len(due_ids)})")
    table.add_column("Card", style="cyan")
    table.add_column("State", style="magenta")
    table.add_column("Due", style="yellow")
    table.add_column("Overdue")
    for card_uuid in due_ids[:limit]:
        card = by_id[card_uuid]
        table.add_row(
            str(card_uuid),
            card.learning_state.name,
            card.due_at.strftime("%Y-%m-%d %H:%M"),
            "yes" if card_uuid in overdue else "",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Stats helpers & command
# ---------------------------------------------------------------------------


def _display_review_stats(cons: Console, review_stats: ReviewStats):
    """
    Prints a two-column table of aggregate review statistics.
    """
    table = Table(title="Review Stats", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Total Reviews", str(review_stats.total_reviews))
    table.add_row("Accuracy", f"{review_stats.average_accuracy:.1%}")
    table.add_row(
        "Avg Response Time", f"{review_stats.average_response_time_ms:.0f} ms"
    )
    table.add_row("Avg Stability", f"{review_stats.average_stability:.2f} d")
    table.add_row("Avg Difficulty", f"{review_stats.average_difficulty:.2f}")
    table.add_row("Sub-second Reviews", str(review_stats.suspiciously_fast_reviews))
    cons.print(table)


def _display_rating_distribution(cons: Console, review_stats: ReviewStats):
    table = Table(title="Ratings")
    table.add_column("Rating", style="cyan")
    table.add_column("Count", style="magenta")
    for rating in Rating:
        table.add_row(rating.name, str(review_stats.rating_distribution.get(rating, 0)))
    cons.print(table)


@app.command()
def stats(
    db: Optional[Path] = _db_option,
    user: str = _user_option,
):
    """Display review statistics, cheating risk and learning insights."""
    db_path = _resolve_db_path(db)
    try:
        with ReviewDatabase(db_path=db_path) as db_inst:
            history = db_inst.get_review_history(user_id=user)
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {escape(str(e))}[/bold]")
        raise typer.Exit(code=1) from e

    if not history:
        console.print(f"[yellow]No reviews found for user '{user}'.[/yellow]")
        return

    review_stats = calculate_review_stats(history)
    _display_review_stats(console, review_stats)
    _display_rating_distribution(console, review_stats)

    risk = detect_cheating_risk(history)
    console.print(
        f"Cheating risk: [bold]{risk.risk_level.value}[/bold] "
        f"({risk.suspicious_percent:.1f}% sub-second). {risk.message}"
    )

    insights = get_learning_insights(history)
    console.print(f"Trend: [bold]{insights.improvement_trend.value}[/bold]")
    if insights.most_difficult_cards:
        console.print("Most difficult cards:")
        for card_uuid in insights.most_difficult_cards:
            console.print(f"- {card_uuid}")


# ---------------------------------------------------------------------------
# Optimizer & retention commands
# ---------------------------------------------------------------------------


@app.command()
def optimize(
    db: Optional[Path] = _db_option,
    user: str = _user_option,
    apply: bool = typer.Option(
        False, "--apply", help="Save the optimized weights for the user."
    ),
    max_iterations: int = typer.Option(
        25, "--max-iterations", min=1, help="Upper bound on search sweeps."
    ),
):
    """Fit the FSRS weights to the review history."""
    db_path = _resolve_db_path(db)
    try:
        with ReviewDatabase(db_path=db_path) as db_inst:
            params = _load_params(db_inst, user, None)
            history = db_inst.get_review_history(user_id=user)
            result = optimize_fsrs_parameters(
                history, params, max_iterations=max_iterations
            )

            console.print(result.message)
            console.print(
                f"Retention {result.retention_rate:.1%}, RMSE {result.rmse:.4f}, "
                f"log-loss {result.log_loss:.4f} over {result.review_count} reviews."
            )

            if apply and result.optimized:
                backup_path = backup_database(db_inst.db_path_resolved)
                if "backups" in str(backup_path):
                    console.print(f"Database backed up to: [dim]{backup_path}[/dim]")
                db_inst.save_parameters(user, result.apply_to(params))
                console.print(
                    f"[bold green]Saved optimized weights for '{user}'.[/bold green]"
                )
            elif apply:
                console.print("[yellow]Nothing to apply.[/yellow]")
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {escape(str(e))}[/bold]")
        raise typer.Exit(code=1) from e


@app.command()
def retention(
    db: Optional[Path] = _db_option,
    user: str = _user_option,
    goal: Optional[RetentionGoal] = typer.Option(  # noqa: B008
        None,
        "--goal",
        help="Use the fixed retention for a study goal instead of the history.",
    ),
    review_seconds: float = typer.Option(
        8, "--review-seconds", help="Average seconds per review."
    ),
    relearn_seconds: float = typer.Option(
        30, "--relearn-seconds", help="Average seconds to relearn a lapse."
    ),
):
    """Recommend a requested retention."""
    if goal is not None:
        value = get_recommended_retention(goal)
        console.print(f"Recommended retention for {goal.value}: [bold]{value:.2f}[/bold]")
        return

    db_path = _resolve_db_path(db)
    try:
        with ReviewDatabase(db_path=db_path) as db_inst:
            history = db_inst.get_review_history(user_id=user)
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {escape(str(e))}[/bold]")
        raise typer.Exit(code=1) from e

    value = calculate_optimal_retention(history, review_seconds, relearn_seconds)
    console.print(
        f"Optimal retention from {len(history)} reviews: [bold]{value:.2f}[/bold]"
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """
    Run the CLI application, exiting with status 1 on an unexpected error.
    """
    try:
        app()
    except Exception as e:
        console.print(f"[bold red]UNEXPECTED ERROR: {escape(str(e))}[/bold red]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
