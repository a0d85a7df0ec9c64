"""Main UI window for drillbox drills."""

import logging
import sys

from PySide6.QtWidgets import QApplication, QMainWindow, QMessageBox

from .screens.review import ReviewScreen
from ..engine.collection import Collection

logger = logging.getLogger(__name__)


class MainWindow(QMainWindow):
    """Window hosting one drill session."""

    def __init__(self, collection: Collection, deck):
        super().__init__()
        self.collection = collection
        target = collection.resolve_deck(deck)
        self.setWindowTitle(f"drillbox · {target.name}")
        self.resize(700, 500)

        session = collection.start_session(target)
        self.review_screen = ReviewScreen(session)
        self.review_screen.error_raised.connect(self.show_error)
        self.review_screen.card_rated.connect(self.on_card_rated)
        self.review_screen.review_finished.connect(self.close)
        self.setCentralWidget(self.review_screen)

    def show_error(self, message: str):
        QMessageBox.warning(self, "drillbox", message)

    def on_card_rated(self, card_id: str, rating: str):
        logger.info("Card %s rated %s", card_id, rating)

    def closeEvent(self, event):
        session = self.review_screen.session
        if not session.is_finished:
            session.finish()
        super().closeEvent(event)


def run_drill_window(collection: Collection, deck) -> int:
    """Open a drill window and block until it is closed."""
    app = QApplication.instance() or QApplication(sys.argv)
    app.setApplicationName("drillbox")

    window = MainWindow(collection, deck)
    window.show()
    return app.exec()
