"""Tests for engine and session factory setup."""

import pytest

from tip_ledger.config import get_settings
from tip_ledger.database import dispose_db, init_db


@pytest.fixture
def sqlite_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'init.db'}")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestInitDb:
    async def test_init_is_cached_until_disposed(self, sqlite_settings):
        engine, factory = init_db()
        try:
            assert init_db() == (engine, factory)
        finally:
            await dispose_db()

        new_engine, new_factory = init_db()
        try:
            assert new_engine is not engine
            assert new_factory is not None
        finally:
            await dispose_db()
