"""Alembic revision tests: the DDL covers every mapped column and named constraint."""

from __future__ import annotations

import importlib.util
import re
from pathlib import Path
from unittest.mock import MagicMock

import pytest

import ecgsim.db.models  # noqa: F401
from ecgsim.db.base import Base

MIGRATION = Path(__file__).resolve().parents[2] / "alembic" / "versions" / "001_gamification_tables.py"

ENGINE_TABLES = [t for name, t in Base.metadata.tables.items() if name != "profiles"]


def _load_migration():
    spec = importlib.util.spec_from_file_location("gamification_tables_revision", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def revision():
    return _load_migration()


def _run(revision, monkeypatch, step: str) -> list[str]:
    op = MagicMock()
    monkeypatch.setattr(revision, "op", op)
    getattr(revision, step)()
    return [c.args[0] for c in op.execute.call_args_list]


def _create_statement(statements: list[str], table: str) -> str:
    matches = [s for s in statements if f"CREATE TABLE IF NOT EXISTS {table} (" in s]
    assert len(matches) == 1, f"no CREATE TABLE for {table}"
    return matches[0]


class TestUpgrade:
    """Schema created or extended by the revision."""

    def test_is_first_revision(self, revision):
        """The chain starts here."""
        assert revision.revision == "001_gamification_tables"
        assert revision.down_revision is None

    @pytest.mark.parametrize("table", ENGINE_TABLES, ids=lambda t: t.name)
    def test_creates_every_mapped_column(self, revision, monkeypatch, table):
        """Each ORM column has a line in its CREATE TABLE."""
        statement = _create_statement(_run(revision, monkeypatch, "upgrade"), table.name)
        missing = [c.name for c in table.columns if not re.search(rf"^\s+{c.name}\s", statement, re.M)]
        assert missing == []

    def test_adds_engine_columns_to_existing_stats_table(self, revision, monkeypatch):
        """Pre-existing stats tables get the versioning and counter columns."""
        alter = next(
            s for s in _run(revision, monkeypatch, "upgrade") if "ALTER TABLE user_gamification_stats" in s
        )
        for column in ("version", "ecgs_today", "perfect_by_difficulty", "ecgs_by_context"):
            assert f"ADD COLUMN IF NOT EXISTS {column} " in alter

    def test_creates_named_constraints(self, revision, monkeypatch):
        """Upserts target constraints by name; all of them must exist."""
        sql = "\n".join(_run(revision, monkeypatch, "upgrade"))
        names = [
            c.name
            for table in ENGINE_TABLES
            for c in table.constraints
            if isinstance(c.name, str) and c.name
        ]
        assert "user_xp_events_user_id_event_id_key" in names
        for name in names:
            assert f"conname = '{name}'" in sql

    def test_slug_is_unique(self, revision, monkeypatch):
        """Seeding upserts on achievement slug."""
        sql = "\n".join(_run(revision, monkeypatch, "upgrade"))
        assert "CREATE UNIQUE INDEX IF NOT EXISTS achievements_slug_key" in sql

    def test_leaves_profiles_alone(self, revision, monkeypatch):
        """The account subsystem owns profiles."""
        assert not any("profiles" in s for s in _run(revision, monkeypatch, "upgrade"))


class TestDowngrade:
    def test_drops_only_added_columns(self, revision, monkeypatch):
        """Tables that may predate the revision are kept."""
        statements = _run(revision, monkeypatch, "downgrade")
        assert not any("DROP TABLE" in s for s in statements)
        assert any("DROP COLUMN IF EXISTS version" in s for s in statements)
