from __future__ import annotations

import pytest

from feed_tracker.config import DatabaseConfig
from feed_tracker.storage.store import Store


@pytest.fixture
def store(tmp_path):
    db = Store(DatabaseConfig(url=f"sqlite:///{tmp_path / 'feeds.db'}"))
    db.init_schema()
    yield db
    db.close()
