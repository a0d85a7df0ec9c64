"""The API the command line and the Qt window talk to."""

import logging
from typing import List, Optional

from .db import Database
from .errors import DeckNotFound, InvalidState
from .models import Card, Deck, DeckSummary, SessionSummary
from .scheduler import DEFAULT_PARAMS, SchedulerParams
from .session import AnswerControls, DrillSession, RateOutcome, UndoOutcome

logger = logging.getLogger(__name__)


class Collection:
    """Decks, cards and at most one drill session at a time."""

    def __init__(self, db: Database, params: SchedulerParams = DEFAULT_PARAMS,
                 require_reveal: bool = False, requeue_lapsed: bool = False,
                 answer_controls: AnswerControls = AnswerControls.FULL):
        self.db = db
        self.params = params
        self.require_reveal = require_reveal
        self.requeue_lapsed = requeue_lapsed
        self.answer_controls = AnswerControls(answer_controls)
        self.session: Optional[DrillSession] = None

    @classmethod
    def from_config(cls, config, db: Optional[Database] = None) -> "Collection":
        """Build a collection from a ConfigManager."""
        params = config.scheduler_params()
        if db is None:
            db = Database(config.database_path(), params=params,
                          busy_attempts=config.get("busy_attempts"),
                          busy_backoff_ms=config.get("busy_backoff_ms"))
        return cls(db, params=params,
                   require_reveal=config.get("require_reveal"),
                   requeue_lapsed=config.get("requeue_lapsed"),
                   answer_controls=config.answer_controls())

    def close(self) -> None:
        self.db.close()

    # Decks

    def resolve_deck(self, deck) -> Deck:
        """Look a deck up by Deck object, id or name."""
        if isinstance(deck, Deck):
            return deck
        try:
            return self.db.get_deck(deck)
        except DeckNotFound:
            return self.db.get_deck_by_name(deck)

    def create_deck(self, name: str) -> Deck:
        return self.db.create_deck(name)

    def rename_deck(self, deck, new_name: str) -> Deck:
        return self.db.rename_deck(self.resolve_deck(deck).id, new_name)

    def delete_deck(self, deck) -> None:
        target = self.resolve_deck(deck)
        if self.session is not None and self.session.deck_id == target.id \
                and not self.session.is_finished:
            raise InvalidState(f"Deck '{target.name}' is being drilled")
        self.db.delete_deck(target.id)

    def list_decks(self, as_of: Optional[int] = None) -> List[DeckSummary]:
        return self.db.list_decks(as_of)

    def add_card(self, deck, front: str, back: str) -> Card:
        front, back = front.strip(), back.strip()
        if not front or not back:
            raise ValueError("Both sides of a card need text")
        return self.db.add_card(self.resolve_deck(deck).id, front, back)

    # Drill

    def start_session(self, deck, now_ts: Optional[int] = None) -> DrillSession:
        if self.session is not None and not self.session.is_finished:
            raise InvalidState("A drill session is already running; finish it first")
        target = self.resolve_deck(deck)
        session = DrillSession(
            self.db, target.id,
            params=self.params,
            require_reveal=self.require_reveal,
            requeue_lapsed=self.requeue_lapsed,
            answer_controls=self.answer_controls,
        )
        self.session = session.start(now_ts)
        return self.session

    def current_card(self) -> Optional[Card]:
        return self._session().current()

    def reveal(self) -> Card:
        return self._session().reveal()

    def rate(self, rating, now_ts: Optional[int] = None) -> RateOutcome:
        return self._session().rate(rating, now_ts)

    def undo(self) -> UndoOutcome:
        return self._session().undo()

    def finish(self, now_ts: Optional[int] = None) -> SessionSummary:
        return self._session().finish(now_ts)

    def _session(self) -> DrillSession:
        if self.session is None:
            raise InvalidState("No drill session has been started")
        return self.session
