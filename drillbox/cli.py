"""drillbox CLI: new, add, list, drill and deck housekeeping commands."""

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Optional

import typer

from drillbox.engine.collection import Collection
from drillbox.engine.errors import DrillError, NothingToUndo
from drillbox.engine.scheduler import Rating, format_interval, preview
from drillbox.engine.session import DrillSession
from drillbox.utils.config import ConfigManager

app = typer.Typer(
    help="drillbox: spaced-repetition flashcards in your terminal.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

LEVELS = ["WARNING", "INFO", "DEBUG"]

RATING_KEYS = {key: Rating.from_key(key) for key in "1234"}


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    db: Annotated[
        Optional[Path], typer.Option("--db", help="SQLite file to use instead of the configured one.")
    ] = None,
    verbose: Annotated[
        int, typer.Option("--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail.")
    ] = 0,
):
    """Global settings for drillbox."""
    config = ConfigManager()
    if verbose:
        level = LEVELS[min(verbose, len(LEVELS) - 1)]
    else:
        level = str(config.get("log_level")).upper()
    logging.basicConfig(
        level=level,
        format="%(levelname)s:%(name)s:%(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["db_override"] = db


def _open_collection(ctx: typer.Context) -> Collection:
    config: ConfigManager = ctx.obj["config"]
    override = ctx.obj.get("db_override")
    if override is not None:
        config.override("database_path", str(override))
    logger.debug("Using database %s", config.database_path())
    return Collection.from_config(config)


@contextmanager
def _reporting():
    """Print engine errors and exit with status 1."""
    try:
        yield
    except (DrillError, ValueError) as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Deck commands
# ---------------------------------------------------------------------------


@app.command()
def new(ctx: typer.Context, name: Annotated[str, typer.Argument(help="Name of the new deck.")]):
    """Create a new deck."""
    with _reporting():
        collection = _open_collection(ctx)
        try:
            deck = collection.create_deck(name)
        finally:
            collection.close()
    typer.secho(f"Created deck '{deck.name}'", fg=typer.colors.GREEN)


@app.command()
def add(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck name or id.")],
    front: Annotated[Optional[str], typer.Option(help="Question side.")] = None,
    back: Annotated[Optional[str], typer.Option(help="Answer side.")] = None,
):
    """Add a card to a deck. Prompts for missing sides."""
    if front is None:
        front = typer.prompt("Front")
    if back is None:
        back = typer.prompt("Back")
    with _reporting():
        collection = _open_collection(ctx)
        try:
            target = collection.resolve_deck(deck)
            collection.add_card(target, front, back)
        finally:
            collection.close()
    typer.echo(f"Added card to '{target.name}'")


@app.command("list")
def list_decks(ctx: typer.Context):
    """List all decks with their card and due counts."""
    with _reporting():
        collection = _open_collection(ctx)
        try:
            summaries = collection.list_decks()
        finally:
            collection.close()
    if not summaries:
        typer.echo("No decks yet. Create one with: drillbox new NAME")
        return
    width = max(len(s.deck.name) for s in summaries)
    for s in summaries:
        typer.echo(f"{s.deck.name.ljust(width)}  {s.card_count:>5} cards  {s.due_count:>5} due")


@app.command()
def rename(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck name or id.")],
    new_name: Annotated[str, typer.Argument(help="New deck name.")],
):
    """Rename a deck."""
    with _reporting():
        collection = _open_collection(ctx)
        try:
            renamed = collection.rename_deck(deck, new_name)
        finally:
            collection.close()
    typer.echo(f"Renamed deck to '{renamed.name}'")


@app.command()
def delete(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck name or id.")],
    force: Annotated[bool, typer.Option("--force", "-f", help="Do not ask for confirmation.")] = False,
):
    """Delete a deck and all of its cards."""
    with _reporting():
        collection = _open_collection(ctx)
        try:
            target = collection.resolve_deck(deck)
            if not force:
                typer.confirm(f"Delete deck '{target.name}' and all its cards?", abort=True)
            collection.delete_deck(target)
        finally:
            collection.close()
    typer.echo(f"Deleted deck '{target.name}'")


# ---------------------------------------------------------------------------
# Drill
# ---------------------------------------------------------------------------


@app.command()
def drill(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck name or id.")],
    gui: Annotated[bool, typer.Option("--gui", help="Drill in a window instead of the terminal.")] = False,
):
    """Review the cards that are due in a deck.

    Keys: space reveals the answer, 1-4 rate it (forgot, hard, good, easy),
    u undoes the last rating and q ends the session.
    """
    with _reporting():
        collection = _open_collection(ctx)
        try:
            if gui:
                from drillbox.ui.main import run_drill_window

                raise typer.Exit(code=run_drill_window(collection, deck))
            session = collection.start_session(deck)
            _run_terminal_drill(session)
        finally:
            collection.close()


def _run_terminal_drill(session: DrillSession) -> None:
    if session.total_cards == 0:
        typer.echo("No cards are due in this deck right now.")
        return

    while True:
        if session.is_finished:
            if not session.can_undo:
                break
            typer.echo("All due cards reviewed. Press u to undo the last rating, any other key to finish.")
            if typer.getchar() != "u":
                break
            _undo(session)
            continue

        card = session.current()
        typer.echo("")
        typer.secho(f"[{session.percent_done:>3}%] {card.front}", bold=True)
        if session.revealed:
            _show_answer(session)

        key = typer.getchar()
        if key in ("", "q"):
            session.finish()
            break
        if key == " ":
            if not session.revealed:
                session.reveal()
                _show_answer(session)
            key = typer.getchar()
            if key in ("", "q"):
                session.finish()
                break
        if key == "u":
            _undo(session)
        elif key in RATING_KEYS:
            try:
                outcome = session.rate(RATING_KEYS[key])
            except DrillError as e:
                typer.secho(str(e), fg=typer.colors.YELLOW)
                continue
            typer.echo(f"Next review in {format_interval(outcome.card.state.interval_days)}")
        elif key != " ":
            typer.echo("space: reveal  1-4: rate  u: undo  q: quit")

    summary = session.summary()
    typer.secho(
        f"Reviewed {summary.cards_reviewed} of {summary.total_cards} cards "
        f"in {summary.duration_s} seconds.",
        fg=typer.colors.GREEN,
    )
    if summary.cards_reviewed:
        typer.echo(f"Pace: {summary.pace_s_per_card:.2f} s/card")


def _show_answer(session: DrillSession) -> None:
    card = session.current()
    typer.echo(card.back)
    intervals = preview(card.state, card.state.due_at, session.params)
    offered = session.answer_controls.ratings
    buttons = [
        f"{key}:{rating.value} ({format_interval(intervals[rating])})"
        for key, rating in RATING_KEYS.items() if rating in offered
    ]
    typer.echo("  ".join(buttons))


def _undo(session: DrillSession) -> None:
    try:
        outcome = session.undo()
    except NothingToUndo as e:
        typer.secho(str(e), fg=typer.colors.YELLOW)
        return
    typer.echo(f"Undid rating of '{outcome.card.front}'")


if __name__ == "__main__":
    app()
