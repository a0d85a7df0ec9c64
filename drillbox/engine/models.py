"""Value types shared by the store, scheduler and session engine."""

from dataclasses import dataclass, field
from typing import Optional

SECONDS_PER_DAY = 24 * 3600


@dataclass(frozen=True)
class SchedulingState:
    """Review schedule of a single card."""

    due_at: int              # Unix timestamp (seconds)
    interval_days: int
    ease_factor: float
    repetitions: int = 0     # consecutive non-lapse reviews
    lapses: int = 0          # "forgot" ratings ever


@dataclass(frozen=True)
class Deck:
    id: str
    name: str
    created_at: int


@dataclass(frozen=True)
class Card:
    id: str
    deck_id: str
    front: str
    back: str
    created_at: int
    state: SchedulingState


@dataclass(frozen=True)
class ReviewLogEntry:
    id: int
    card_id: str
    reviewed_at: int
    rating: str
    prior_state: SchedulingState
    resulting_state: SchedulingState
    undone: bool = False


@dataclass(frozen=True)
class DeckSummary:
    """A deck together with its card counts, as shown by ``list``."""

    deck: Deck
    card_count: int
    due_count: int


@dataclass
class SessionSummary:
    total_cards: int
    cards_reviewed: int
    started_at: int
    finished_at: Optional[int] = None
    duration_s: int = 0
    pace_s_per_card: float = 0.0
    ratings: dict = field(default_factory=dict)
