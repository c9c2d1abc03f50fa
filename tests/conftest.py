# tests/conftest.py

from __future__ import annotations

import os
import tempfile
from pathlib import Path

# Settings are read at import time, so the environment must be in place
# before anything from taskapp is imported.
_TMP_DIR = Path(tempfile.mkdtemp(prefix="taskapp-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'tasks.db'}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.pop("EMAIL_USER", None)
os.environ.pop("EMAIL_PASSWORD", None)

from typing import Callable, Iterator

import pytest
from fastapi.testclient import TestClient

from taskapp import db
from taskapp.cache import TaskQueryCache
from taskapp.main import app

from .helpers import FakeClock


@pytest.fixture(autouse=True)
def fresh_db() -> Iterator[None]:
    """Every test starts from empty tables."""
    db.metadata.drop_all(db.engine)
    db.init_db()
    yield


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def task_cache(clock: FakeClock) -> TaskQueryCache:
    """A fresh cache driven by a manual clock, installed on the app."""
    cache = TaskQueryCache(ttl=30.0, clock=clock)
    app.state.task_cache = cache
    return cache


@pytest.fixture()
def client(task_cache: TaskQueryCache) -> Iterator[TestClient]:
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def signup(client: TestClient) -> Callable[..., dict]:
    """Create an account through the API and return the response body."""

    def _signup(email: str = "a@x.com", password: str = "secret1", name: str | None = "Ann") -> dict:
        body = {"email": email, "password": password}
        if name is not None:
            body["name"] = name
        r = client.post("/api/auth/signup", json=body)
        assert r.status_code == 201, r.text
        return r.json()

    return _signup
