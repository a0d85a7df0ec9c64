"""Error types raised by the drillbox engine."""


class DrillError(Exception):
    """Base class for every error the engine surfaces to callers."""


class NotFound(DrillError):
    """A deck, card or review log entry does not exist."""


class DeckNotFound(NotFound):
    def __init__(self, deck: str):
        super().__init__(f"Deck not found: {deck}")
        self.deck = deck


class CardNotFound(NotFound):
    def __init__(self, card_id: str):
        super().__init__(f"Card not found: {card_id}")
        self.card_id = card_id


class ReviewNotFound(NotFound):
    def __init__(self, entry_id: int):
        super().__init__(f"Review log entry not found or already undone: {entry_id}")
        self.entry_id = entry_id


class DuplicateName(DrillError):
    def __init__(self, name: str):
        super().__init__(f"A deck named '{name}' already exists")
        self.name = name


class InvalidState(DrillError):
    """Operation not allowed in the session's current state."""


class NothingToUndo(DrillError):
    def __init__(self):
        super().__init__("Nothing to undo in this session")


class StaleState(DrillError):
    """The card's stored schedule changed since it was read."""

    def __init__(self, card_id: str):
        super().__init__(f"Card {card_id} was modified by someone else; reload and retry")
        self.card_id = card_id


class Busy(DrillError):
    """The database stayed locked for every retry attempt."""

    def __init__(self, attempts: int):
        super().__init__(f"Database is busy (gave up after {attempts} attempts)")
        self.attempts = attempts


class StorageIO(DrillError):
    """Underlying SQLite failure."""
