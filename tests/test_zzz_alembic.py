"""Alembic migration tests.

File named test_zzz_alembic.py to sort LAST in pytest collection order. The
migrations are raw PostgreSQL, so they are checked against the ORM metadata
instead of being applied to the SQLite test database.
"""

import importlib.util
from pathlib import Path
from unittest.mock import MagicMock

from meza.db import models  # noqa: F401
from meza.db.base import Base

VERSIONS = Path(__file__).resolve().parent.parent / "alembic" / "versions"
REVISIONS = ("001_initial_schema", "002_evidence_and_reminder_links")


def _load_migration(revision: str):
    spec = importlib.util.spec_from_file_location(revision, VERSIONS / f"{revision}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    module.op = MagicMock()
    return module


def _executed_sql(func: str, revisions=REVISIONS) -> str:
    statements = []
    for revision in revisions:
        module = _load_migration(revision)
        getattr(module, func)()
        statements.extend(call.args[0] for call in module.op.execute.call_args_list)
    return "\n".join(statements)


def test_upgrade_creates_every_table() -> None:
    sql = _executed_sql("upgrade")
    for table in Base.metadata.tables:
        assert f"CREATE TABLE IF NOT EXISTS {table}" in sql


def test_upgrade_covers_every_column() -> None:
    sql = _executed_sql("upgrade")
    for table in Base.metadata.sorted_tables:
        for column in table.columns:
            assert column.name in sql, f"{table.name}.{column.name} missing from migrations"


def test_upgrade_enforces_one_active_challenge() -> None:
    sql = _executed_sql("upgrade")
    assert "uq_challenges_one_active_per_user" in sql
    assert "WHERE status = 'active'" in sql


def test_reminders_linked_to_challenges() -> None:
    sql = _executed_sql("upgrade", ("002_evidence_and_reminder_links",))
    assert "ADD COLUMN IF NOT EXISTS challenge_id" in sql
    assert "ADD COLUMN IF NOT EXISTS evidence JSONB" in sql


def test_downgrade_drops_every_table() -> None:
    sql = _executed_sql("downgrade", ("001_initial_schema",))
    for table in Base.metadata.tables:
        assert table in sql


def test_revisions_form_a_chain() -> None:
    previous = None
    for revision in REVISIONS:
        module = _load_migration(revision)
        assert module.revision == revision
        assert module.down_revision == previous
        previous = revision
