"""Tests for the database migration system."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest


class FakeConnection:
    """Records statements and answers the schema_migrations queries."""

    def __init__(self, version=0, history=()):
        self.version = version
        self.history = list(history)
        self.statements: list[tuple[str, object]] = []

    async def execute(self, sql, params=None):
        self.statements.append((sql, params))
        cursor = MagicMock()
        if "MAX(version)" in sql:
            cursor.fetchone = AsyncMock(return_value=(self.version,))
        elif "SELECT version, applied_at" in sql:
            cursor.fetchall = AsyncMock(return_value=self.history)
        elif "INSERT INTO schema_migrations" in sql:
            self.version = params[0]
        return cursor

    @asynccontextmanager
    async def transaction(self):
        yield

    def executed(self, fragment: str) -> bool:
        return any(fragment in sql for sql, _ in self.statements)


def patch_connection(conn: FakeConnection):
    @asynccontextmanager
    async def fake_get_connection(autocommit: bool = True):
        yield conn

    return patch("scheduling.db.migrations._get_connection", fake_get_connection)


class TestMigrationSystem:
    @pytest.mark.asyncio
    async def test_get_current_version_creates_table(self):
        conn = FakeConnection()
        with patch_connection(conn):
            from scheduling.db.migrations import get_current_version

            assert await get_current_version() == 0
        assert "CREATE TABLE IF NOT EXISTS schema_migrations" in conn.statements[0][0]

    @pytest.mark.asyncio
    async def test_get_current_version_returns_max(self):
        with patch_connection(FakeConnection(version=5)):
            from scheduling.db.migrations import get_current_version

            assert await get_current_version() == 5

    @pytest.mark.asyncio
    async def test_apply_migration_skips_if_already_applied(self):
        conn = FakeConnection(version=5)
        with patch_connection(conn):
            from scheduling.db.migrations import apply_migration

            assert await apply_migration(3, "SELECT 1;", "test") is False
        assert not conn.executed("SELECT 1;")

    @pytest.mark.asyncio
    async def test_apply_migration_records_version(self):
        conn = FakeConnection(version=2)
        with patch_connection(conn):
            from scheduling.db.migrations import apply_migration

            assert await apply_migration(3, "CREATE TABLE test (id INT);", "test migration") is True
        assert conn.executed("CREATE TABLE test")
        insert = [p for sql, p in conn.statements if "INSERT INTO schema_migrations" in sql]
        assert insert == [(3, "test migration")]

    @pytest.mark.asyncio
    async def test_pending_migrations_excludes_applied(self):
        with patch_connection(FakeConnection(version=1)):
            from scheduling.db.migrations import get_pending_migrations

            versions = [m["version"] for m in await get_pending_migrations()]
        assert 1 not in versions
        assert 2 in versions

    @pytest.mark.asyncio
    async def test_run_migrations_applies_all_files(self):
        conn = FakeConnection()
        with patch_connection(conn):
            from scheduling.db.migrations import run_migrations

            assert await run_migrations() == 2
        assert conn.version == 2
        assert conn.executed("CREATE TABLE IF NOT EXISTS booking_requests")
        assert conn.executed("CREATE TABLE IF NOT EXISTS poll_votes")

    @pytest.mark.asyncio
    async def test_get_migration_history(self):
        history = [(1, "2026-01-01", "booking_core"), (2, "2026-01-02", "polls")]
        with patch_connection(FakeConnection(history=history)):
            from scheduling.db.migrations import get_migration_history

            result = await get_migration_history()
        assert [h["version"] for h in result] == [1, 2]
        assert result[1]["description"] == "polls"


class TestMigrationFiles:
    def test_files_are_numbered(self):
        from scheduling.db.migrations import list_migration_files

        files = list_migration_files()
        assert [m["version"] for m in files] == [1, 2]
        assert files[0]["description"] == "booking_core"

    def test_tokens_are_unique(self):
        from scheduling.db.migrations import MIGRATIONS_DIR

        sql = (MIGRATIONS_DIR / "001_booking_core.sql").read_text()
        assert "confirmation_token TEXT NOT NULL UNIQUE" in sql
        assert "host_approval_token TEXT UNIQUE" in sql

    def test_one_vote_per_slot_and_participant(self):
        from scheduling.db.migrations import MIGRATIONS_DIR

        sql = (MIGRATIONS_DIR / "002_polls.sql").read_text()
        assert "UNIQUE (poll_id, time_slot_id, participant_identifier)" in sql


class TestSchemaModule:
    @pytest.mark.asyncio
    async def test_ensure_schema_runs_migrations(self):
        with patch("scheduling.db.schema.get_current_version", new_callable=AsyncMock) as mock_version, \
             patch("scheduling.db.schema.run_migrations", new_callable=AsyncMock) as mock_run:
            mock_version.return_value = 0
            mock_run.return_value = 2

            from scheduling.db.schema import ensure_schema

            await ensure_schema()

            mock_version.assert_called()
            mock_run.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_schema_info_returns_dict(self):
        with patch("scheduling.db.schema.get_current_version", new_callable=AsyncMock) as mock_version, \
             patch("scheduling.db.schema.get_migration_history", new_callable=AsyncMock) as mock_history:
            mock_version.return_value = 2
            mock_history.return_value = [{"version": 1}, {"version": 2}]

            from scheduling.db.schema import get_schema_info

            info = await get_schema_info()

            assert info["current_version"] == 2
            assert len(info["migration_history"]) == 2
