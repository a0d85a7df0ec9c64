#!/usr/bin/env python3
"""Tests for the SQLite store."""

import sqlite3

import pytest

from conftest import DAY, NOW
from drillbox.engine import db as db_module
from drillbox.engine.db import Database
from drillbox.engine.errors import (Busy, CardNotFound, DeckNotFound,
                                    DuplicateName, ReviewNotFound, StaleState,
                                    StorageIO)
from drillbox.engine.scheduler import Rating, initial_state, next_state


# DECKS

def test_create_and_get_deck(db):
    deck = db.create_deck("  German A1 ", now_ts=NOW)
    assert deck.name == "German A1"
    assert db.get_deck(deck.id) == deck
    assert db.get_deck_by_name("German A1") == deck


def test_duplicate_deck_name(db, deck):
    with pytest.raises(DuplicateName):
        db.create_deck("Spanish")


def test_empty_deck_name(db):
    with pytest.raises(ValueError):
        db.create_deck("   ")


def test_rename_deck(db, deck):
    renamed = db.rename_deck(deck.id, "Español")
    assert renamed.name == "Español"
    assert renamed.id == deck.id
    with pytest.raises(DeckNotFound):
        db.get_deck_by_name("Spanish")


def test_rename_to_existing_name(db, deck):
    db.create_deck("French")
    with pytest.raises(DuplicateName):
        db.rename_deck(deck.id, "French")


def test_rename_unknown_deck(db):
    with pytest.raises(DeckNotFound):
        db.rename_deck("no-such-deck", "Whatever")


def test_list_decks_counts(db, deck):
    other = db.create_deck("Anatomy")
    db.add_card(deck.id, "hola", "hello", now_ts=NOW)
    db.add_card(deck.id, "adiós", "goodbye", now_ts=NOW + 10 * DAY)

    summaries = db.list_decks(as_of=NOW)
    assert [s.deck.name for s in summaries] == ["Anatomy", "Spanish"]
    by_name = {s.deck.name: s for s in summaries}
    assert (by_name["Spanish"].card_count, by_name["Spanish"].due_count) == (2, 1)
    assert (by_name["Anatomy"].card_count, by_name["Anatomy"].due_count) == (0, 0)
    assert by_name["Anatomy"].deck == other


def test_delete_deck_cascades(db, deck):
    card = db.add_card(deck.id, "hola", "hello", now_ts=NOW)
    new_state = next_state(card.state, Rating.GOOD, NOW)
    entry = db.commit_review(card.id, card.state, new_state, Rating.GOOD, NOW)

    db.delete_deck(deck.id)

    with pytest.raises(DeckNotFound):
        db.get_deck(deck.id)
    with pytest.raises(CardNotFound):
        db.get_card(card.id)
    with pytest.raises(ReviewNotFound):
        db.get_review(entry.id)


def test_delete_unknown_deck(db):
    with pytest.raises(DeckNotFound):
        db.delete_deck("missing")


# CARDS

def test_add_card_defaults(db, deck):
    card = db.add_card(deck.id, "hola", "hello", now_ts=NOW)
    assert card.state == initial_state(NOW)
    assert db.get_card(card.id) == card
    assert db.list_cards(deck.id) == [card]


def test_add_card_to_unknown_deck(db):
    with pytest.raises(DeckNotFound):
        db.add_card("missing", "front", "back")


def test_due_cards_ordering(db, deck):
    later = db.add_card(deck.id, "later", "x", now_ts=NOW + 50)
    tied = [db.add_card(deck.id, f"tied {i}", "x", now_ts=NOW) for i in range(5)]
    future = db.add_card(deck.id, "future", "x", now_ts=NOW + DAY)

    due = db.due_cards(deck.id, NOW + 100)

    expected = sorted(tied, key=lambda c: c.id) + [later]
    assert [c.id for c in due] == [c.id for c in expected]
    assert future.id not in {c.id for c in due}
    # Stable across repeated queries
    assert db.due_cards(deck.id, NOW + 100) == due
    assert db.count_due(deck.id, NOW + 100) == 6


def test_due_cards_are_per_deck(db, deck):
    other = db.create_deck("French")
    mine = db.add_card(deck.id, "hola", "hello", now_ts=NOW)
    theirs = db.add_card(other.id, "bonjour", "hello", now_ts=NOW)

    assert [c.id for c in db.due_cards(deck.id, NOW)] == [mine.id]
    assert [c.id for c in db.due_cards(other.id, NOW)] == [theirs.id]


def test_due_cards_unknown_deck(db):
    with pytest.raises(DeckNotFound):
        db.due_cards("missing", NOW)


# REVIEWS

def test_commit_review_updates_state_and_logs(db, deck):
    card = db.add_card(deck.id, "hola", "hello", now_ts=NOW)
    new_state = next_state(card.state, Rating.EASY, NOW)

    entry = db.commit_review(card.id, card.state, new_state, Rating.EASY, NOW)

    assert db.get_card(card.id).state == new_state
    assert entry.prior_state == card.state
    assert entry.resulting_state == new_state
    assert entry.rating == "easy"
    assert db.review_log(card.id) == [entry]
    assert db.get_review(entry.id) == entry


def test_commit_review_rejects_stale_state(db, deck):
    card = db.add_card(deck.id, "hola", "hello", now_ts=NOW)
    first = next_state(card.state, Rating.GOOD, NOW)
    db.commit_review(card.id, card.state, first, Rating.GOOD, NOW)

    # Second writer still holds the original state
    with pytest.raises(StaleState):
        db.commit_review(card.id, card.state, next_state(card.state, Rating.FORGOT, NOW),
                         Rating.FORGOT, NOW)

    assert db.get_card(card.id).state == first
    assert len(db.review_log(card.id)) == 1


def test_commit_review_unknown_card(db):
    state = initial_state(NOW)
    with pytest.raises(CardNotFound):
        db.commit_review("missing", state, state, Rating.GOOD, NOW)


def test_undo_review_restores_prior_state(db, deck):
    card = db.add_card(deck.id, "hola", "hello", now_ts=NOW)
    state = card.state
    for rating in [Rating.GOOD, Rating.EASY, Rating.HARD]:
        new_state = next_state(state, rating, NOW)
        entry = db.commit_review(card.id, state, new_state, rating, NOW)
        before_last, state = state, new_state

    restored = db.undo_review(entry.id)

    assert restored.state == before_last
    assert db.get_card(card.id).state == before_last
    assert db.get_review(entry.id).undone is True
    assert len(db.review_log(card.id)) == 2
    assert len(db.review_log(card.id, include_undone=True)) == 3


def test_undo_review_twice(db, deck):
    card = db.add_card(deck.id, "hola", "hello", now_ts=NOW)
    entry = db.commit_review(card.id, card.state, next_state(card.state, Rating.GOOD, NOW),
                             Rating.GOOD, NOW)
    db.undo_review(entry.id)
    with pytest.raises(ReviewNotFound):
        db.undo_review(entry.id)


def test_undo_review_refuses_superseded_entry(db, deck):
    card = db.add_card(deck.id, "hola", "hello", now_ts=NOW)
    first_state = next_state(card.state, Rating.GOOD, NOW)
    first = db.commit_review(card.id, card.state, first_state, Rating.GOOD, NOW)
    second_state = next_state(first_state, Rating.EASY, NOW)
    db.commit_review(card.id, first_state, second_state, Rating.EASY, NOW)

    with pytest.raises(StaleState):
        db.undo_review(first.id)

    assert db.get_card(card.id).state == second_state
    assert db.get_review(first.id).undone is False


def test_undo_unknown_review(db):
    with pytest.raises(ReviewNotFound):
        db.undo_review(12345)


def test_state_survives_reopen(db_path):
    with Database(db_path) as first:
        deck = first.create_deck("Spanish")
        card = first.add_card(deck.id, "hola", "hello", now_ts=NOW)
        new_state = next_state(card.state, Rating.EASY, NOW)
        first.commit_review(card.id, card.state, new_state, Rating.EASY, NOW)

    with Database(db_path) as second:
        assert second.get_card(card.id).state == new_state


# TRANSACTIONS

def test_failed_log_append_rolls_back_state(db, deck):
    card = db.add_card(deck.id, "hola", "hello", now_ts=NOW)
    db.conn.execute("""
        CREATE TRIGGER refuse_reviews BEFORE INSERT ON review_log
        BEGIN SELECT RAISE(ABORT, 'refused'); END
    """)

    with pytest.raises(StorageIO):
        db.commit_review(card.id, card.state, next_state(card.state, Rating.GOOD, NOW),
                         Rating.GOOD, NOW)

    assert db.get_card(card.id).state == card.state
    assert db.review_log(card.id, include_undone=True) == []


def test_locked_database_raises_busy(db_path, monkeypatch):
    monkeypatch.setattr(db_module.time, "sleep", lambda seconds: None)
    db = Database(db_path, busy_attempts=3, busy_backoff_ms=1, lock_timeout=0.01)
    blocker = sqlite3.connect(db_path, isolation_level=None)
    blocker.execute("BEGIN IMMEDIATE")
    try:
        with pytest.raises(Busy) as excinfo:
            db.create_deck("Spanish")
        assert excinfo.value.attempts == 3
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()

    # Nothing was written and the store is usable again
    assert db.list_decks() == []
    db.create_deck("Spanish")
    db.close()


def test_lock_released_between_retries(db_path, monkeypatch):
    db = Database(db_path, busy_attempts=3, busy_backoff_ms=1, lock_timeout=0.01)
    blocker = sqlite3.connect(db_path, isolation_level=None)
    blocker.execute("BEGIN IMMEDIATE")
    sleeps = []

    def release_lock(seconds):
        sleeps.append(seconds)
        if blocker.in_transaction:
            blocker.execute("ROLLBACK")

    monkeypatch.setattr(db_module.time, "sleep", release_lock)
    deck = db.create_deck("Spanish")

    assert len(sleeps) == 1
    assert db.get_deck(deck.id) == deck
    blocker.close()
    db.close()


def test_busy_attempts_must_be_positive(db_path):
    with pytest.raises(ValueError):
        Database(db_path, busy_attempts=0)
