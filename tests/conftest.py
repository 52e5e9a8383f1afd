from collections.abc import Generator
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from coupon_engine import storage
from coupon_engine.main import app

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _reset_store() -> Generator[None, None, None]:
    storage.reset()
    yield
    storage.reset()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)
