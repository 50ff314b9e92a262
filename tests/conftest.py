from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from geopresence.main import app
from geopresence.runtime.presence import room_registry


@pytest.fixture(autouse=True)
def _reset_room_registry():
    room_registry.clear()
    yield
    room_registry.clear()


@pytest.fixture
def client():
    # Entering the context shares one event loop across all websocket sessions.
    with TestClient(app) as c:
        yield c
