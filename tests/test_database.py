"""
Tests for the SQLite layer: schema, retrying query helper, transactions,
error translation.
"""
import sqlite3

import pytest

from taskmate.database import Database, is_transient, translate_error
from taskmate.errors import DatabaseError, ValidationError


class TestTranslateError:

    def test_unique_violation(self):
        err = translate_error(sqlite3.IntegrityError("UNIQUE constraint failed: users.email"))
        assert isinstance(err, DatabaseError)
        assert str(err) == "Duplicate entry"
        assert err.code == "unique"

    def test_foreign_key_violation(self):
        err = translate_error(sqlite3.IntegrityError("FOREIGN KEY constraint failed"))
        assert str(err) == "Foreign key constraint violation"

    def test_check_violation(self):
        err = translate_error(sqlite3.IntegrityError("CHECK constraint failed: priority"))
        assert str(err) == "Check constraint violation"

    def test_wip_limit_message_is_validation(self):
        err = translate_error(sqlite3.OperationalError("WIP limit exceeded for board"))
        assert isinstance(err, ValidationError)

    def test_other_errors_are_generic(self):
        err = translate_error(sqlite3.OperationalError("disk I/O error"))
        assert isinstance(err, DatabaseError)
        assert str(err) == "Database operation failed"


class TestDatabase:

    def test_schema_created(self, db):
        names = {r["name"] for r in db.query("SELECT name FROM sqlite_master WHERE type = 'table'").rows}
        assert {"users", "projects", "boards", "tags", "tasks", "task_tags"} <= names

    def test_schema_init_is_idempotent(self, cfg, db):
        Database(cfg.db_path, retry_delay=0)
        assert db.check_connection()

    def test_foreign_keys_enforced(self, db):
        with pytest.raises(DatabaseError, match="Foreign key"):
            db.query(
                "INSERT INTO projects (id, name, owner_id, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                ("p1", "x", "missing-user", "t", "t"),
            )

    def test_query_retries_transient_errors(self, db):
        real_connect = db.connect
        calls = {"n": 0}

        def flaky():
            calls["n"] += 1
            if calls["n"] < 3:
                raise sqlite3.OperationalError("database is locked")
            return real_connect()

        db.connect = flaky
        assert db.query("SELECT 1 AS one").first()["one"] == 1
        assert calls["n"] == 3

    def test_query_gives_up_after_retries(self, db):
        calls = {"n": 0}

        def broken():
            calls["n"] += 1
            raise sqlite3.OperationalError("database is locked")

        db.connect = broken
        with pytest.raises(DatabaseError):
            db.query("SELECT 1")
        assert calls["n"] == db.retries

    def test_constraint_errors_not_retried(self, db, user):
        real_connect = db.connect
        calls = {"n": 0}

        def counting():
            calls["n"] += 1
            return real_connect()

        db.connect = counting
        with pytest.raises(DatabaseError, match="Duplicate entry"):
            db.query(
                "INSERT INTO users (id, email, name, password_hash, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                ("other", user.email, "Dup", "x", "t", "t"),
            )
        assert calls["n"] == 1

    def test_transaction_rolls_back_on_error(self, db, user):
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute("UPDATE users SET name = ? WHERE id = ?", ("Changed", user.id))
                raise RuntimeError("boom")
        row = db.query("SELECT name FROM users WHERE id = ?", (user.id,)).first()
        assert row["name"] == "Ada"

    def test_transaction_translates_driver_errors(self, db, user):
        with pytest.raises(DatabaseError, match="Duplicate entry"):
            with db.transaction() as conn:
                conn.execute("UPDATE users SET name = ? WHERE id = ?", ("Changed", user.id))
                conn.execute(
                    "INSERT INTO users (id, email, name, password_hash, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    ("other", user.email, "Dup", "x", "t", "t"),
                )
        row = db.query("SELECT name FROM users WHERE id = ?", (user.id,)).first()
        assert row["name"] == "Ada"

    def test_query_reports_rowcount(self, db, user):
        result = db.query("UPDATE users SET name = ? WHERE id = ?", ("Ada L.", user.id))
        assert result.rowcount == 1
        assert db.query("SELECT * FROM users WHERE id = ?", ("nobody",)).first() is None

    def test_permanent_operational_errors_not_retried(self, db):
        real_connect = db.connect
        calls = {"n": 0}

        def counting():
            calls["n"] += 1
            return real_connect()

        db.connect = counting
        with pytest.raises(DatabaseError):
            db.query("SELECT * FROM no_such_table")
        assert calls["n"] == 1

    def test_rollback_skipped_when_sqlite_already_ended_transaction(self, db):
        """The caller's error surfaces, not a 'no transaction is active' failure"""
        with pytest.raises(RuntimeError, match="boom"):
            with db.transaction() as conn:
                conn.execute("ROLLBACK")
                raise RuntimeError("boom")


def test_is_transient():
    assert is_transient(sqlite3.OperationalError("database is locked"))
    assert is_transient(sqlite3.OperationalError("unable to open database file"))
    assert not is_transient(sqlite3.OperationalError("no such table: tasks"))
    assert not is_transient(sqlite3.OperationalError('near "SELEC": syntax error'))
