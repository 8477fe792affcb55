# tests/conftest.py

import os
from collections.abc import AsyncIterator

import pytest

# Point the app's engine at a process-local in-memory DB before any
# Lexicarium module reads settings.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("LOGGING_ENABLED", "false")

import Lexicarium.db as _db  # noqa: E402
from Lexicarium.config import Settings, TransferConfig  # noqa: E402
from Lexicarium.metrics import reset_counters  # noqa: E402
from Lexicarium.store import SqlDocumentStore  # noqa: E402

# TOML and .env have higher precedence than OS env, so repoint the module
# explicitly before any engine is created.
_db.configure(os.environ["DATABASE_URL"])


@pytest.fixture(autouse=True)
def _reset_metrics() -> None:
    reset_counters()


@pytest.fixture
async def database() -> AsyncIterator[None]:
    """Fresh in-memory schema per test; the engine is disposed afterwards.

    A new engine per test keeps every aiosqlite connection on the loop of the
    test that created it.
    """
    await _db.dispose_engine()
    await _db.create_schema()
    try:
        yield None
    finally:
        await _db.dispose_engine()


@pytest.fixture
async def store(database) -> SqlDocumentStore:
    return SqlDocumentStore()


@pytest.fixture
def settings() -> Settings:
    return Settings(logging_enabled=False, transfer=TransferConfig())
