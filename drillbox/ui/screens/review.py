"""Review screen for drillbox."""

import logging

from PySide6.QtWidgets import (QWidget, QVBoxLayout, QHBoxLayout, QPushButton,
                              QLabel, QFrame, QProgressBar)
from PySide6.QtCore import Qt, Signal
from PySide6.QtGui import QFont, QKeySequence, QShortcut

from ...engine.errors import DrillError, NothingToUndo
from ...engine.scheduler import Rating, format_interval, preview
from ...engine.session import DrillSession

logger = logging.getLogger(__name__)

BUTTON_STYLES = {
    Rating.FORGOT: "QPushButton { background-color: #ff4757; color: white; min-height: 40px; }",
    Rating.HARD: "QPushButton { background-color: #ffa502; color: white; min-height: 40px; }",
    Rating.GOOD: "QPushButton { background-color: #2ed573; color: white; min-height: 40px; }",
    Rating.EASY: "QPushButton { background-color: #1e90ff; color: white; min-height: 40px; }",
}


class ReviewScreen(QWidget):
    """Shows one card at a time and forwards key presses to a DrillSession."""

    # Signals
    card_rated = Signal(str, str)       # card_id, rating value
    review_undone = Signal(str)         # card_id
    review_finished = Signal()
    error_raised = Signal(str)

    def __init__(self, session: DrillSession):
        super().__init__()
        self.session = session
        self.rating_buttons = {}
        self.setup_ui()
        self.setup_shortcuts()
        self.refresh()

    def setup_ui(self):
        """Set up the review screen UI."""
        layout = QVBoxLayout()

        # Header with progress
        header_layout = QHBoxLayout()
        self.undo_button = QPushButton("Undo (U)")
        self.undo_button.clicked.connect(self.undo)
        header_layout.addWidget(self.undo_button)

        self.progress_bar = QProgressBar()
        self.progress_bar.setRange(0, 100)
        header_layout.addWidget(self.progress_bar)

        self.end_button = QPushButton("End")
        self.end_button.clicked.connect(self.end_session)
        header_layout.addWidget(self.end_button)
        layout.addLayout(header_layout)

        layout.addSpacing(20)

        # Card display
        self.card_frame = QFrame()
        self.card_frame.setFrameStyle(QFrame.StyledPanel)
        self.card_frame.setMinimumHeight(200)
        card_layout = QVBoxLayout(self.card_frame)

        self.front_label = QLabel()
        self.front_label.setAlignment(Qt.AlignCenter)
        front_font = QFont()
        front_font.setPointSize(24)
        front_font.setBold(True)
        self.front_label.setFont(front_font)
        self.front_label.setWordWrap(True)
        card_layout.addWidget(self.front_label)

        self.back_label = QLabel()
        self.back_label.setAlignment(Qt.AlignCenter)
        back_font = QFont()
        back_font.setPointSize(18)
        self.back_label.setFont(back_font)
        self.back_label.setWordWrap(True)
        self.back_label.setStyleSheet("QLabel { color: #27ae60; font-weight: bold; }")
        self.back_label.hide()
        card_layout.addWidget(self.back_label)

        layout.addWidget(self.card_frame)
        layout.addSpacing(20)

        # Show answer / Rating buttons
        self.show_answer_button = QPushButton("Show Answer (Space)")
        self.show_answer_button.clicked.connect(self.show_answer)
        self.show_answer_button.setMinimumHeight(40)
        layout.addWidget(self.show_answer_button)

        rating_layout = QHBoxLayout()
        for key, rating in enumerate(Rating, start=1):
            button = QPushButton()
            button.setStyleSheet(BUTTON_STYLES[rating])
            button.clicked.connect(lambda checked=False, r=rating: self.rate_card(r))
            button.setProperty("shortcut_key", str(key))
            button.hide()
            rating_layout.addWidget(button)
            self.rating_buttons[rating] = button
        layout.addLayout(rating_layout)

        layout.addStretch()
        self.setLayout(layout)

    def setup_shortcuts(self):
        """Space reveals, 1-4 rate, U undoes."""
        space_shortcut = QShortcut(QKeySequence(Qt.Key_Space), self)
        space_shortcut.activated.connect(self.show_answer)

        for key, rating in zip((Qt.Key_1, Qt.Key_2, Qt.Key_3, Qt.Key_4), Rating):
            shortcut = QShortcut(QKeySequence(key), self)
            shortcut.activated.connect(lambda r=rating: self.rate_card(r))

        undo_shortcut = QShortcut(QKeySequence(Qt.Key_U), self)
        undo_shortcut.activated.connect(self.undo)

    def refresh(self):
        """Redraw for the session's current card."""
        self.undo_button.setEnabled(self.session.can_undo)
        self.progress_bar.setValue(self.session.percent_done)
        card = self.session.current()

        if card is None:
            self.show_completion()
            return

        self.front_label.setText(card.front)
        self.back_label.setText(card.back)
        if self.session.revealed:
            self._show_rating_buttons()
        else:
            self.back_label.hide()
            for button in self.rating_buttons.values():
                button.hide()
            self.show_answer_button.show()

    def show_answer(self):
        """Show the answer and rating buttons."""
        if self.session.current() is None or self.session.revealed:
            return
        self.session.reveal()
        self._show_rating_buttons()

    def _show_rating_buttons(self):
        card = self.session.current()
        intervals = preview(card.state, card.state.due_at, self.session.params)
        offered = self.session.answer_controls.ratings
        self.back_label.show()
        self.show_answer_button.hide()
        for key, (rating, button) in enumerate(self.rating_buttons.items(), start=1):
            button.setText(f"{rating.value.title()} ({key}) · {format_interval(intervals[rating])}")
            button.setVisible(rating in offered)

    def rate_card(self, rating: Rating):
        """Rate the current card and move to next."""
        card = self.session.current()
        if card is None or not self.session.revealed:
            return
        if rating not in self.session.answer_controls.ratings:
            return
        try:
            self.session.rate(rating)
        except DrillError as e:
            logger.warning("Rating failed: %s", e)
            self.error_raised.emit(str(e))
            self.refresh()
            return
        self.card_rated.emit(card.id, rating.value)
        self.refresh()

    def undo(self):
        try:
            outcome = self.session.undo()
        except NothingToUndo:
            return
        except DrillError as e:
            logger.warning("Undo failed: %s", e)
            self.error_raised.emit(str(e))
            return
        self.review_undone.emit(outcome.card.id)
        self.refresh()

    def end_session(self):
        if not self.session.is_finished:
            self.session.finish()
        self.refresh()
        self.review_finished.emit()

    def show_completion(self):
        """Show review completion screen."""
        self.back_label.hide()
        self.show_answer_button.hide()
        for button in self.rating_buttons.values():
            button.hide()

        summary = self.session.summary()
        if summary.total_cards == 0:
            self.front_label.setText("No cards are due right now!")
        else:
            self.front_label.setText(
                f"🎉 Session Complete!\n\nReviewed {summary.cards_reviewed} of "
                f"{summary.total_cards} cards in {summary.duration_s} seconds."
            )
        self.progress_bar.setValue(100)
