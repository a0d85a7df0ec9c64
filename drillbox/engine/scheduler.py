# engine/scheduler.py

import math
import time
from functools import total_ordering
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional

from .models import SECONDS_PER_DAY, SchedulingState


@total_ordering
class Rating(Enum):
    """4-button rating system, ordered from worst to best recall."""
    FORGOT = "forgot"   # Lapse - relearn from the minimum interval
    HARD = "hard"       # Difficult recall - small growth, ease penalty
    GOOD = "good"       # Successful recall - grow by ease factor
    EASY = "easy"       # Effortless recall - ease bonus and easy multiplier

    @property
    def rank(self) -> int:
        return _RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Rating):
            return NotImplemented
        return self.rank < other.rank

    @property
    def is_lapse(self) -> bool:
        return self is Rating.FORGOT

    @classmethod
    def parse(cls, value) -> "Rating":
        """Accept a Rating, its value or its name in any case."""
        if isinstance(value, Rating):
            return value
        key = str(value).strip().lower()
        for rating in cls:
            if rating.value == key:
                return rating
        raise ValueError(f"Unknown rating: {value!r} (expected forgot, hard, good or easy)")

    @classmethod
    def from_key(cls, key: str) -> "Rating":
        """Map the presentation layer's 1-4 keys onto ratings."""
        try:
            return _KEYS[key]
        except KeyError:
            raise ValueError(f"No rating bound to key {key!r}") from None


_RANK = {Rating.FORGOT: 0, Rating.HARD: 1, Rating.GOOD: 2, Rating.EASY: 3}
_KEYS = {"1": Rating.FORGOT, "2": Rating.HARD, "3": Rating.GOOD, "4": Rating.EASY}


@dataclass(frozen=True)
class SchedulerParams:
    """SM-2 configuration (Anki-style defaults)."""
    minimum_interval_days: int = 1
    default_ease: float = 2.5       # Starting ease factor (250%)
    ease_floor: float = 1.3         # Minimum ease factor (130%)
    lapse_penalty: float = 0.2
    hard_penalty: float = 0.15
    easy_bonus: float = 0.15
    hard_multiplier: float = 1.2
    easy_multiplier: float = 1.3

    def __post_init__(self):
        if self.minimum_interval_days < 1:
            raise ValueError("minimum_interval_days must be at least 1")
        if self.ease_floor <= 0:
            raise ValueError("ease_floor must be positive")
        if self.default_ease < self.ease_floor:
            raise ValueError("default_ease must not be below ease_floor")


DEFAULT_PARAMS = SchedulerParams()


def initial_state(now_ts: Optional[int] = None,
                  params: SchedulerParams = DEFAULT_PARAMS) -> SchedulingState:
    """State of a freshly added card: due immediately."""
    if now_ts is None:
        now_ts = int(time.time())
    return SchedulingState(
        due_at=now_ts,
        interval_days=params.minimum_interval_days,
        ease_factor=params.default_ease,
        repetitions=0,
        lapses=0,
    )


def next_state(state: SchedulingState, rating: Rating, now_ts: int,
               params: SchedulerParams = DEFAULT_PARAMS) -> SchedulingState:
    """Calculate the schedule that follows ``rating`` given at ``now_ts``.

    Growth depends only on the stored interval, never on how late or early
    the review happened.
    """
    rating = Rating.parse(rating)
    floor = params.ease_floor
    minimum = params.minimum_interval_days
    current_interval = max(minimum, state.interval_days)

    if rating is Rating.FORGOT:
        ease = max(floor, state.ease_factor - params.lapse_penalty)
        return SchedulingState(
            due_at=_due(now_ts, minimum),
            interval_days=minimum,
            ease_factor=ease,
            repetitions=0,
            lapses=state.lapses + 1,
        )

    if rating is Rating.HARD:
        ease = max(floor, state.ease_factor - params.hard_penalty)
        interval = _round_half_up(current_interval * params.hard_multiplier)
    elif rating is Rating.GOOD:
        ease = max(floor, state.ease_factor)
        interval = _round_half_up(current_interval * ease)
    else:  # EASY
        ease = max(floor, state.ease_factor + params.easy_bonus)
        interval = _round_half_up(current_interval * ease * params.easy_multiplier)

    interval = max(minimum, interval)
    return replace(
        state,
        due_at=_due(now_ts, interval),
        interval_days=interval,
        ease_factor=ease,
        repetitions=state.repetitions + 1,
    )


def preview(state: SchedulingState, now_ts: int,
            params: SchedulerParams = DEFAULT_PARAMS) -> Dict[Rating, int]:
    """Interval in days each rating would produce, for answer buttons."""
    return {rating: next_state(state, rating, now_ts, params).interval_days
            for rating in Rating}


def format_interval(days: int) -> str:
    """Short label such as ``3d``, ``5mo`` or ``1.2y``."""
    if days < 30:
        return f"{days}d"
    if days < 365:
        return f"{round(days / 30)}mo"
    return f"{days / 365:.1f}y"


def _due(now_ts: int, interval_days: int) -> int:
    return int(now_ts) + interval_days * SECONDS_PER_DAY


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
