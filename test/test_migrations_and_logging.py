import json
import logging
import sqlite3
from pathlib import Path

import pytest

from acai.application.container import build_container
from acai.config import StorageSettings
from acai.logging_config import setup_logging
from acai.repositories.sqlite_repo import SqliteRepository


def test_migrations_are_recorded_and_rerunnable(tmp_path: Path):
    db = tmp_path / "m.db"
    repo = SqliteRepository(db)
    repo.init_db()
    repo.init_db()

    conn = repo._conn()
    cur = conn.cursor()
    cur.execute("SELECT version FROM schema_migrations ORDER BY version")
    versions = [r[0] for r in cur.fetchall()]
    conn.close()
    assert versions == [1, 2]


def test_schema_rejects_recurring_expense_without_due_day(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "c.db")
    repo.init_db()
    uid = repo.create_user_with_config("a@b.com", "Acai1234", "Loja")

    conn = repo._conn()
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO expenses (user_id, description, amount, date, status, recurring) VALUES (?, 'x', '10', '2026-01-01', 'pending', 1)",
            (uid,),
        )
    conn.close()


def test_migration_failure_restores_db(tmp_path: Path):
    class BrokenMigrationRepo(SqliteRepository):
        def _migration_v2_indexes(self, cur):
            raise RuntimeError("forced migration failure")

    db = tmp_path / "broken.db"
    repo = SqliteRepository(db)
    repo.init_db()

    conn = repo._conn()
    cur = conn.cursor()
    cur.execute("DELETE FROM schema_migrations WHERE version = 2")
    conn.commit()
    conn.close()

    with pytest.raises(RuntimeError, match="Original database restored"):
        BrokenMigrationRepo(db).run_migrations()

    conn = repo._conn()
    cur = conn.cursor()
    cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
    assert int(cur.fetchone()[0]) == 1
    conn.close()


def test_container_wires_storage_only_when_configured(tmp_path: Path):
    plain = build_container(tmp_path / "a.db")
    assert plain.storage is None
    assert plain.settings.storage is None

    settings = StorageSettings(base_url="https://files.example.com", api_key="k")
    wired = build_container(tmp_path / "b.db", storage=settings)
    assert wired.storage is not None
    assert wired.settings.storage is wired.storage
    assert wired.reporting.closing is wired.closing


def test_sales_logger_writes_json_lines(tmp_path: Path):
    root = logging.getLogger()
    sales_log = logging.getLogger("acai.sales")
    root_before, sales_before = list(root.handlers), list(sales_log.handlers)
    try:
        setup_logging(tmp_path / "logs")
        sales_log.info("sale_created sale_id=%s", 7)
        for h in sales_log.handlers:
            h.flush()

        line = (tmp_path / "logs" / "sales.log").read_text(encoding="utf-8").strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["logger"] == "acai.sales"
        assert payload["message"] == "sale_created sale_id=7"
        assert (tmp_path / "logs" / "closing.log").exists()
    finally:
        for logger, before in ((root, root_before), (sales_log, sales_before)):
            for h in list(logger.handlers):
                if h not in before:
                    logger.removeHandler(h)
                    h.close()
        closing_log = logging.getLogger("acai.closing")
        for h in list(closing_log.handlers):
            closing_log.removeHandler(h)
            h.close()
