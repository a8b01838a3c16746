import pytest
from fastapi.testclient import TestClient

import main
from activities import ActivityRecorder, list_categories, seed_categories
from aggregates import AggregateMaintainer
from feed import ChangeFeed
from store import MemoryStore


@pytest.fixture
def store():
    s = MemoryStore()
    seed_categories(s)
    return s


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def published(feed):
    """Leaderboard rows delivered on the feed, in order."""
    rows = []
    feed.subscribe(rows.append)
    return rows


@pytest.fixture
def maintainer(store, feed):
    return AggregateMaintainer(store, feed)


@pytest.fixture
def recorder(store, maintainer):
    return ActivityRecorder(store, maintainer)


@pytest.fixture
def categories(store):
    return {c.name: c for c in list_categories(store)}


@pytest.fixture
def client(store):
    main.app.dependency_overrides[main.get_store] = lambda: store
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
