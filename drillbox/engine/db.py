"""Database layer for drillbox."""

import logging
import sqlite3
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from .errors import (Busy, CardNotFound, DeckNotFound, DuplicateName,
                     ReviewNotFound, StaleState, StorageIO)
from .models import Card, Deck, DeckSummary, ReviewLogEntry, SchedulingState
from .scheduler import DEFAULT_PARAMS, Rating, SchedulerParams, initial_state

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS decks (
    id TEXT PRIMARY KEY,
    name TEXT UNIQUE NOT NULL,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS cards (
    id TEXT PRIMARY KEY,
    deck_id TEXT NOT NULL,
    front TEXT NOT NULL,
    back TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    due_at INTEGER NOT NULL,
    interval_days INTEGER NOT NULL,
    ease_factor REAL NOT NULL,
    repetitions INTEGER NOT NULL DEFAULT 0,
    lapses INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY(deck_id) REFERENCES decks(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS review_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    card_id TEXT NOT NULL,
    reviewed_at INTEGER NOT NULL,
    rating TEXT NOT NULL,
    prior_due_at INTEGER NOT NULL,
    prior_interval INTEGER NOT NULL,
    prior_ease_factor REAL NOT NULL,
    prior_repetitions INTEGER NOT NULL,
    prior_lapses INTEGER NOT NULL,
    next_due_at INTEGER NOT NULL,
    next_interval INTEGER NOT NULL,
    next_ease_factor REAL NOT NULL,
    next_repetitions INTEGER NOT NULL,
    next_lapses INTEGER NOT NULL,
    undone INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY(card_id) REFERENCES cards(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_cards_due ON cards(deck_id, due_at, id);
CREATE INDEX IF NOT EXISTS idx_review_log_card ON review_log(card_id, id);
"""

CARD_COLUMNS = ("id, deck_id, front, back, created_at, "
                "due_at, interval_days, ease_factor, repetitions, lapses")


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


class Database:
    """SQLite store for decks, cards and the review log.

    Every write runs inside ``BEGIN IMMEDIATE`` and is retried with
    exponential backoff while another connection holds the write lock.
    """

    def __init__(self, path: str, params: SchedulerParams = DEFAULT_PARAMS,
                 busy_attempts: int = 5, busy_backoff_ms: int = 20,
                 lock_timeout: float = 0.05):
        """Open (and create if needed) the database.

        Args:
            path: Path to SQLite database file, or ``:memory:``
            params: Scheduler parameters used for new cards' default state
            busy_attempts: How many times a locked write is attempted
            busy_backoff_ms: First retry delay; doubles on each attempt
            lock_timeout: SQLite's own wait per attempt, in seconds
        """
        if busy_attempts < 1:
            raise ValueError("busy_attempts must be at least 1")
        self.path = str(path)
        self.params = params
        self.busy_attempts = busy_attempts
        self.busy_backoff_ms = busy_backoff_ms
        self._ensure_path_exists()
        try:
            # Autocommit mode: transactions are managed explicitly
            self.conn = sqlite3.connect(self.path, timeout=lock_timeout,
                                        isolation_level=None)
            self.conn.row_factory = sqlite3.Row
            self._setup_database()
        except sqlite3.Error as e:
            raise StorageIO(f"Cannot open database {self.path}: {e}") from e

    def _ensure_path_exists(self) -> None:
        if self.path == ":memory:":
            return
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _setup_database(self) -> None:
        """Set up database with WAL mode, foreign keys and tables."""
        self.conn.execute("PRAGMA foreign_keys=ON")
        if self.path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.executescript(SCHEMA)

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self):
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self.conn
            self.conn.execute("COMMIT")
        except BaseException:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise

    def _write(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``operation`` in a write transaction, retrying on lock contention."""
        delay = self.busy_backoff_ms / 1000
        for attempt in range(1, self.busy_attempts + 1):
            try:
                with self._transaction() as conn:
                    return operation(conn)
            except sqlite3.OperationalError as e:
                if not _is_lock_error(e):
                    raise StorageIO(str(e)) from e
                if attempt == self.busy_attempts:
                    raise Busy(attempt) from e
                logger.warning("Database locked (attempt %d/%d), retrying in %.0f ms",
                               attempt, self.busy_attempts, delay * 1000)
                time.sleep(delay)
                delay *= 2
            except sqlite3.Error as e:
                raise StorageIO(str(e)) from e
        raise Busy(self.busy_attempts)

    def _read(self, sql: str, args=()) -> List[sqlite3.Row]:
        try:
            return self.conn.execute(sql, args).fetchall()
        except sqlite3.Error as e:
            raise StorageIO(str(e)) from e

    # ------------------------------------------------------------------
    # Decks
    # ------------------------------------------------------------------

    def create_deck(self, name: str, now_ts: Optional[int] = None) -> Deck:
        """Create a new deck. Raises DuplicateName if the name is taken."""
        name = _clean_name(name)
        if now_ts is None:
            now_ts = int(time.time())
        deck = Deck(id=str(uuid.uuid4()), name=name, created_at=now_ts)

        def insert(conn):
            try:
                conn.execute(
                    "INSERT INTO decks (id, name, created_at) VALUES (?, ?, ?)",
                    (deck.id, deck.name, deck.created_at)
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateName(name) from e

        self._write(insert)
        logger.info("Created deck %r (%s)", name, deck.id)
        return deck

    def get_deck(self, deck_id: str) -> Deck:
        rows = self._read("SELECT * FROM decks WHERE id = ?", (deck_id,))
        if not rows:
            raise DeckNotFound(deck_id)
        return _row_to_deck(rows[0])

    def get_deck_by_name(self, name: str) -> Deck:
        rows = self._read("SELECT * FROM decks WHERE name = ?", (name.strip(),))
        if not rows:
            raise DeckNotFound(name)
        return _row_to_deck(rows[0])

    def list_decks(self, as_of: Optional[int] = None) -> List[DeckSummary]:
        """List all decks by name with their card and due counts."""
        if as_of is None:
            as_of = int(time.time())
        rows = self._read("""
            SELECT d.*,
                   COUNT(c.id) AS card_count,
                   COALESCE(SUM(c.due_at <= ?), 0) AS due_count
            FROM decks d
            LEFT JOIN cards c ON c.deck_id = d.id
            GROUP BY d.id
            ORDER BY d.name
        """, (as_of,))
        return [DeckSummary(deck=_row_to_deck(row),
                            card_count=row["card_count"],
                            due_count=row["due_count"]) for row in rows]

    def rename_deck(self, deck_id: str, new_name: str) -> Deck:
        new_name = _clean_name(new_name)

        def update(conn):
            try:
                cursor = conn.execute("UPDATE decks SET name = ? WHERE id = ?",
                                      (new_name, deck_id))
            except sqlite3.IntegrityError as e:
                raise DuplicateName(new_name) from e
            if cursor.rowcount == 0:
                raise DeckNotFound(deck_id)

        self._write(update)
        return self.get_deck(deck_id)

    def delete_deck(self, deck_id: str) -> None:
        """Delete a deck together with its cards and their review log."""
        def delete(conn):
            cursor = conn.execute("DELETE FROM decks WHERE id = ?", (deck_id,))
            if cursor.rowcount == 0:
                raise DeckNotFound(deck_id)

        self._write(delete)
        logger.info("Deleted deck %s", deck_id)

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    def add_card(self, deck_id: str, front: str, back: str,
                 now_ts: Optional[int] = None) -> Card:
        """Add a card that is due immediately.

        Args:
            deck_id: Target deck ID
            front: Front text
            back: Back text
            now_ts: Creation time (defaults to now)

        Returns:
            The new card with its default scheduling state
        """
        if now_ts is None:
            now_ts = int(time.time())
        card = Card(
            id=str(uuid.uuid4()),
            deck_id=deck_id,
            front=front,
            back=back,
            created_at=now_ts,
            state=initial_state(now_ts, self.params),
        )

        def insert(conn):
            if conn.execute("SELECT 1 FROM decks WHERE id = ?", (deck_id,)).fetchone() is None:
                raise DeckNotFound(deck_id)
            s = card.state
            conn.execute(
                f"INSERT INTO cards ({CARD_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (card.id, deck_id, front, back, now_ts,
                 s.due_at, s.interval_days, s.ease_factor, s.repetitions, s.lapses)
            )

        self._write(insert)
        logger.debug("Added card %s to deck %s", card.id, deck_id)
        return card

    def get_card(self, card_id: str) -> Card:
        rows = self._read(f"SELECT {CARD_COLUMNS} FROM cards WHERE id = ?", (card_id,))
        if not rows:
            raise CardNotFound(card_id)
        return _row_to_card(rows[0])

    def list_cards(self, deck_id: str) -> List[Card]:
        self.get_deck(deck_id)
        rows = self._read(
            f"SELECT {CARD_COLUMNS} FROM cards WHERE deck_id = ? ORDER BY created_at, id",
            (deck_id,))
        return [_row_to_card(row) for row in rows]

    def due_cards(self, deck_id: str, as_of: int) -> List[Card]:
        """Cards of one deck due at ``as_of``, oldest due first, ties by id."""
        self.get_deck(deck_id)
        rows = self._read(f"""
            SELECT {CARD_COLUMNS} FROM cards
            WHERE deck_id = ? AND due_at <= ?
            ORDER BY due_at, id
        """, (deck_id, as_of))
        return [_row_to_card(row) for row in rows]

    def count_due(self, deck_id: str, as_of: int) -> int:
        rows = self._read(
            "SELECT COUNT(*) FROM cards WHERE deck_id = ? AND due_at <= ?",
            (deck_id, as_of))
        return rows[0][0]

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def commit_review(self, card_id: str, prior_state: SchedulingState,
                      new_state: SchedulingState, rating: Rating,
                      reviewed_at: int) -> ReviewLogEntry:
        """Store a card's new schedule and log the review in one transaction.

        Raises:
            CardNotFound: the card does not exist
            StaleState: the stored schedule no longer equals ``prior_state``
        """
        rating = Rating.parse(rating)

        def commit(conn):
            row = conn.execute(f"SELECT {CARD_COLUMNS} FROM cards WHERE id = ?",
                               (card_id,)).fetchone()
            if row is None:
                raise CardNotFound(card_id)
            if _row_to_state(row) != prior_state:
                raise StaleState(card_id)
            _write_state(conn, card_id, new_state)
            cursor = conn.execute("""
                INSERT INTO review_log
                (card_id, reviewed_at, rating,
                 prior_due_at, prior_interval, prior_ease_factor, prior_repetitions, prior_lapses,
                 next_due_at, next_interval, next_ease_factor, next_repetitions, next_lapses)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (card_id, reviewed_at, rating.value,
                  prior_state.due_at, prior_state.interval_days, prior_state.ease_factor,
                  prior_state.repetitions, prior_state.lapses,
                  new_state.due_at, new_state.interval_days, new_state.ease_factor,
                  new_state.repetitions, new_state.lapses))
            return cursor.lastrowid

        entry_id = self._write(commit)
        logger.debug("Committed review %d: card %s rated %s, next interval %dd",
                     entry_id, card_id, rating.value, new_state.interval_days)
        return ReviewLogEntry(
            id=entry_id,
            card_id=card_id,
            reviewed_at=reviewed_at,
            rating=rating.value,
            prior_state=prior_state,
            resulting_state=new_state,
        )

    def undo_review(self, entry_id: int) -> Card:
        """Restore the schedule a review replaced and mark the entry undone.

        The log entry itself is kept for auditing.
        Raises StaleState when the card has been reviewed again since.
        """
        def undo(conn):
            row = conn.execute(
                "SELECT * FROM review_log WHERE id = ? AND undone = 0", (entry_id,)
            ).fetchone()
            if row is None:
                raise ReviewNotFound(entry_id)
            entry = _row_to_entry(row)
            card_row = conn.execute(
                "SELECT * FROM cards WHERE id = ?", (entry.card_id,)
            ).fetchone()
            if _row_to_state(card_row) != entry.resulting_state:
                raise StaleState(entry.card_id)
            _write_state(conn, entry.card_id, entry.prior_state)
            conn.execute("UPDATE review_log SET undone = 1 WHERE id = ?", (entry_id,))
            return entry.card_id

        card_id = self._write(undo)
        logger.debug("Undid review %d of card %s", entry_id, card_id)
        return self.get_card(card_id)

    def get_review(self, entry_id: int) -> ReviewLogEntry:
        rows = self._read("SELECT * FROM review_log WHERE id = ?", (entry_id,))
        if not rows:
            raise ReviewNotFound(entry_id)
        return _row_to_entry(rows[0])

    def review_log(self, card_id: str, include_undone: bool = False) -> List[ReviewLogEntry]:
        """Review history of a card, oldest first."""
        sql = "SELECT * FROM review_log WHERE card_id = ?"
        if not include_undone:
            sql += " AND undone = 0"
        rows = self._read(sql + " ORDER BY id", (card_id,))
        return [_row_to_entry(row) for row in rows]


def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValueError("Deck name must not be empty")
    return name


def _write_state(conn: sqlite3.Connection, card_id: str, state: SchedulingState) -> None:
    conn.execute("""
        UPDATE cards
        SET due_at = ?, interval_days = ?, ease_factor = ?, repetitions = ?, lapses = ?
        WHERE id = ?
    """, (state.due_at, state.interval_days, state.ease_factor,
          state.repetitions, state.lapses, card_id))


def _row_to_deck(row) -> Deck:
    return Deck(id=row["id"], name=row["name"], created_at=row["created_at"])


def _row_to_state(row) -> SchedulingState:
    return SchedulingState(
        due_at=row["due_at"],
        interval_days=row["interval_days"],
        ease_factor=row["ease_factor"],
        repetitions=row["repetitions"],
        lapses=row["lapses"],
    )


def _row_to_card(row) -> Card:
    return Card(
        id=row["id"],
        deck_id=row["deck_id"],
        front=row["front"],
        back=row["back"],
        created_at=row["created_at"],
        state=_row_to_state(row),
    )


def _row_to_entry(row) -> ReviewLogEntry:
    return ReviewLogEntry(
        id=row["id"],
        card_id=row["card_id"],
        reviewed_at=row["reviewed_at"],
        rating=row["rating"],
        prior_state=SchedulingState(
            due_at=row["prior_due_at"],
            interval_days=row["prior_interval"],
            ease_factor=row["prior_ease_factor"],
            repetitions=row["prior_repetitions"],
            lapses=row["prior_lapses"],
        ),
        resulting_state=SchedulingState(
            due_at=row["next_due_at"],
            interval_days=row["next_interval"],
            ease_factor=row["next_ease_factor"],
            repetitions=row["next_repetitions"],
            lapses=row["next_lapses"],
        ),
        undone=bool(row["undone"]),
    )
