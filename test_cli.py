"""Tests for the drillbox CLI commands."""

import pytest
from typer.testing import CliRunner

from drillbox.cli import app
from drillbox.engine.db import Database

runner = CliRunner()


@pytest.fixture
def cli_db(tmp_path, drillbox_home):
    return str(tmp_path / "cli.sqlite")


def invoke(cli_db, *args, input=None):
    return runner.invoke(app, ["--db", cli_db, *args], input=input)


def test_cli_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("new", "add", "list", "drill"):
        assert command in result.output


def test_new_and_list(cli_db):
    result = invoke(cli_db, "new", "Spanish")
    assert result.exit_code == 0
    assert "Created deck 'Spanish'" in result.output

    invoke(cli_db, "add", "Spanish", "--front", "hola", "--back", "hello")
    result = invoke(cli_db, "list")
    assert result.exit_code == 0
    assert "Spanish" in result.output
    assert "1 cards" in result.output
    assert "1 due" in result.output


def test_list_without_decks(cli_db):
    result = invoke(cli_db, "list")
    assert result.exit_code == 0
    assert "No decks yet" in result.output


def test_duplicate_deck_fails(cli_db):
    invoke(cli_db, "new", "Spanish")
    result = invoke(cli_db, "new", "Spanish")
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_add_prompts_for_missing_sides(cli_db):
    invoke(cli_db, "new", "Spanish")
    result = invoke(cli_db, "add", "Spanish", input="gato\ncat\n")
    assert result.exit_code == 0
    assert "Added card to 'Spanish'" in result.output

    with Database(cli_db) as db:
        deck = db.get_deck_by_name("Spanish")
        [card] = db.list_cards(deck.id)
    assert (card.front, card.back) == ("gato", "cat")


def test_add_to_unknown_deck(cli_db):
    result = invoke(cli_db, "add", "Nope", "--front", "a", "--back", "b")
    assert result.exit_code == 1
    assert "Deck not found" in result.output


def test_rename_and_delete(cli_db):
    invoke(cli_db, "new", "Spanish")
    result = invoke(cli_db, "rename", "Spanish", "Español")
    assert result.exit_code == 0

    result = invoke(cli_db, "delete", "Español", input="y\n")
    assert result.exit_code == 0
    assert "Deleted deck" in result.output
    assert "No decks yet" in invoke(cli_db, "list").output


def test_delete_can_be_aborted(cli_db):
    invoke(cli_db, "new", "Spanish")
    result = invoke(cli_db, "delete", "Spanish", input="n\n")
    assert result.exit_code == 1
    assert "Spanish" in invoke(cli_db, "list").output


def test_drill_reviews_due_card(cli_db):
    invoke(cli_db, "new", "Spanish")
    invoke(cli_db, "add", "Spanish", "--front", "hola", "--back", "hello")

    # space reveals, 3 rates good, x leaves the completion prompt
    result = invoke(cli_db, "drill", "Spanish", input=" 3x")

    assert result.exit_code == 0, result.output
    assert "hola" in result.output
    assert "hello" in result.output
    assert "Next review in 3d" in result.output
    assert "Reviewed 1 of 1 cards" in result.output
    assert "0 due" in invoke(cli_db, "list").output


def test_drill_undo_then_quit(cli_db):
    invoke(cli_db, "new", "Spanish")
    invoke(cli_db, "add", "Spanish", "--front", "hola", "--back", "hello")

    result = invoke(cli_db, "drill", "Spanish", input=" 1uq")

    assert result.exit_code == 0, result.output
    assert "Undid rating of 'hola'" in result.output
    assert "Reviewed 0 of 1 cards" in result.output
    assert "1 due" in invoke(cli_db, "list").output


def test_drill_nothing_to_undo(cli_db):
    invoke(cli_db, "new", "Spanish")
    invoke(cli_db, "add", "Spanish", "--front", "hola", "--back", "hello")

    result = invoke(cli_db, "drill", "Spanish", input="uq")

    assert result.exit_code == 0
    assert "Nothing to undo" in result.output


def test_drill_empty_deck(cli_db):
    invoke(cli_db, "new", "Spanish")
    result = invoke(cli_db, "drill", "Spanish")
    assert result.exit_code == 0
    assert "No cards are due" in result.output


def test_drill_unknown_deck(cli_db):
    result = invoke(cli_db, "drill", "Nope")
    assert result.exit_code == 1
    assert "Deck not found" in result.output


def test_drill_ends_when_input_runs_out(cli_db):
    invoke(cli_db, "new", "Spanish")
    for front in ("uno", "dos"):
        invoke(cli_db, "add", "Spanish", "--front", front, "--back", "x")

    result = invoke(cli_db, "drill", "Spanish", input="4")

    assert result.exit_code == 0, result.output
    assert "Reviewed 1 of 2 cards" in result.output
