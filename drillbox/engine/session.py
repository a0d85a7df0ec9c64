"""Drill session state machine.

A session snapshots the deck's due cards when it starts and walks through
them once. Each rating is committed to the database immediately; the ids of
the resulting review log entries form an undo stack that lives only as long
as the session.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from .db import Database
from .errors import InvalidState, NothingToUndo, StaleState
from .models import Card, ReviewLogEntry, SessionSummary
from .scheduler import DEFAULT_PARAMS, Rating, SchedulerParams, next_state

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    FINISHED = "finished"


class AnswerControls(Enum):
    FULL = "full"        # forgot / hard / good / easy
    BINARY = "binary"    # forgot / good

    @property
    def ratings(self) -> FrozenSet[Rating]:
        if self is AnswerControls.BINARY:
            return frozenset({Rating.FORGOT, Rating.GOOD})
        return frozenset(Rating)


@dataclass(frozen=True)
class RateOutcome:
    entry: ReviewLogEntry
    card: Card
    finished: bool


@dataclass(frozen=True)
class UndoOutcome:
    entry_id: int
    card: Card
    reactivated: bool


@dataclass(frozen=True)
class _Applied:
    entry_id: int
    rating: Rating
    requeued: bool


class DrillSession:
    """One pass through a deck's due cards."""

    def __init__(self, db: Database, deck_id: str,
                 params: SchedulerParams = DEFAULT_PARAMS,
                 require_reveal: bool = False,
                 requeue_lapsed: bool = False,
                 answer_controls: AnswerControls = AnswerControls.FULL):
        self.db = db
        self.deck_id = deck_id
        self.params = params
        self.require_reveal = require_reveal
        self.requeue_lapsed = requeue_lapsed
        self.answer_controls = AnswerControls(answer_controls)

        self.state = SessionState.IDLE
        self.queue: List[str] = []
        self.cursor = 0
        self.revealed = False
        self.started_at: Optional[int] = None
        self.finished_at: Optional[int] = None
        self._cards: Dict[str, Card] = {}
        self._undo_stack: List[_Applied] = []
        self._seen = set()
        self._total = 0
        self._ended_early = False

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, now_ts: Optional[int] = None) -> "DrillSession":
        """Load the due cards; an empty deck finishes the session at once."""
        if self.state is not SessionState.IDLE:
            raise InvalidState("Session has already been started")
        now_ts = _now(now_ts)
        cards = self.db.due_cards(self.deck_id, now_ts)
        self._cards = {card.id: card for card in cards}
        self.queue = [card.id for card in cards]
        self._total = len(self.queue)
        self.cursor = 0
        self.started_at = now_ts

        if self.queue:
            self.state = SessionState.ACTIVE
        else:
            self.state = SessionState.FINISHED
            self.finished_at = now_ts
        logger.info("Started session on deck %s with %d due cards",
                    self.deck_id, self._total)
        return self

    def current(self) -> Optional[Card]:
        if self.state is not SessionState.ACTIVE:
            return None
        return self._cards[self.queue[self.cursor]]

    def reveal(self) -> Card:
        """Mark the current card's answer as shown."""
        card = self._require_current()
        self.revealed = True
        self._seen.add(card.id)
        return card

    def rate(self, rating, now_ts: Optional[int] = None) -> RateOutcome:
        """Schedule the current card and move on to the next one."""
        card = self._require_current()
        rating = Rating.parse(rating)
        if rating not in self.answer_controls.ratings:
            raise InvalidState(
                f"Rating '{rating.value}' is not offered with "
                f"{self.answer_controls.value} answer controls")
        if self.require_reveal and not self.revealed:
            raise InvalidState("Reveal the answer before rating the card")
        now_ts = _now(now_ts)

        new_state = next_state(card.state, rating, now_ts, self.params)
        try:
            entry = self.db.commit_review(card.id, card.state, new_state, rating, now_ts)
        except StaleState:
            # Rate from the stored schedule on the next attempt
            self._cards[card.id] = self.db.get_card(card.id)
            raise

        updated = replace(card, state=new_state)
        self._cards[card.id] = updated
        requeued = self.requeue_lapsed and rating.is_lapse
        if requeued:
            self.queue.append(card.id)
        self._undo_stack.append(_Applied(entry.id, rating, requeued))
        self.cursor += 1
        self.revealed = False

        if self.cursor >= len(self.queue):
            self.state = SessionState.FINISHED
            self.finished_at = now_ts
            logger.info("Session on deck %s finished after %d reviews",
                        self.deck_id, self.cards_reviewed)
        return RateOutcome(entry=entry, card=updated,
                           finished=self.state is SessionState.FINISHED)

    def undo(self) -> UndoOutcome:
        """Revert the most recent rating and show that card again."""
        if self._ended_early:
            raise InvalidState("Session was ended; its reviews can no longer be undone")
        if not self._undo_stack:
            raise NothingToUndo()
        applied = self._undo_stack.pop()
        try:
            card = self.db.undo_review(applied.entry_id)
        except Exception:
            self._undo_stack.append(applied)
            raise

        if applied.requeued:
            self.queue.pop()
        self.cursor -= 1
        self._cards[card.id] = card
        self.revealed = False
        reactivated = self.state is SessionState.FINISHED
        if reactivated:
            self.state = SessionState.ACTIVE
            self.finished_at = None
        logger.debug("Undid review %d of card %s", applied.entry_id, card.id)
        return UndoOutcome(entry_id=applied.entry_id, card=card, reactivated=reactivated)

    def finish(self, now_ts: Optional[int] = None) -> SessionSummary:
        """End the session; cards not yet rated stay due."""
        if self.state is SessionState.IDLE:
            raise InvalidState("Session has not been started")
        if self.state is SessionState.ACTIVE:
            self.state = SessionState.FINISHED
            self.finished_at = _now(now_ts)
            self._ended_early = True
            logger.info("Session on deck %s ended early with %d cards left",
                        self.deck_id, self.remaining)
        return self.summary()

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    @property
    def is_finished(self) -> bool:
        return self.state is SessionState.FINISHED

    @property
    def can_undo(self) -> bool:
        return bool(self._undo_stack) and not self._ended_early

    @property
    def total_cards(self) -> int:
        return self._total

    @property
    def cards_reviewed(self) -> int:
        return len(self._undo_stack)

    @property
    def remaining(self) -> int:
        return len(self.queue) - self.cursor

    @property
    def percent_done(self) -> int:
        if not self.queue:
            return 100
        return (self.cursor * 100) // len(self.queue)

    def was_seen(self, card_id: str) -> bool:
        return card_id in self._seen

    def summary(self) -> SessionSummary:
        end = self.finished_at if self.finished_at is not None else _now(None)
        start = self.started_at if self.started_at is not None else end
        duration = max(0, end - start)
        reviewed = self.cards_reviewed
        return SessionSummary(
            total_cards=self._total,
            cards_reviewed=reviewed,
            started_at=start,
            finished_at=self.finished_at,
            duration_s=duration,
            pace_s_per_card=(duration / reviewed) if reviewed else 0.0,
            ratings=dict(Counter(a.rating.value for a in self._undo_stack)),
        )

    def _require_current(self) -> Card:
        if self.state is not SessionState.ACTIVE:
            raise InvalidState(f"No card to review: session is {self.state.value}")
        return self._cards[self.queue[self.cursor]]


def _now(now_ts: Optional[int]) -> int:
    return int(time.time()) if now_ts is None else int(now_ts)
