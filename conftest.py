import os
import sys
from pathlib import Path

import pytest

# Add the project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

# Qt widgets are exercised without a display
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from drillbox.engine.collection import Collection
from drillbox.engine.db import Database

NOW = 1_700_000_000
DAY = 24 * 3600


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "drillbox.sqlite")


@pytest.fixture
def db(db_path):
    database = Database(db_path)
    yield database
    database.close()


@pytest.fixture
def deck(db):
    return db.create_deck("Spanish", now_ts=NOW)


@pytest.fixture
def collection(db):
    return Collection(db)


@pytest.fixture
def drillbox_home(tmp_path, monkeypatch):
    """Point the configuration directory at a temp dir."""
    home = tmp_path / "home"
    monkeypatch.setenv("DRILLBOX_HOME", str(home))
    return home
