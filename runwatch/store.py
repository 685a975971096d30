"""Runwatch document store - SQLite persistence for test runs.

This module provides the database schema and CRUD helpers for test case
documents, lifecycle notifications and archived screenshot metadata. Steps and
other list-valued fields are stored as JSON columns so a test case reads back
as one document.

Database location: <data dir>/runwatch.db
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from runwatch.errors import RunNotFoundError, StoreError
from runwatch.models import Notification, RunStatus, StepRecord, TestRun

SCHEMA_VERSION = 1

# Document fields that may be updated, mapped to their column
_TEST_CASE_COLUMNS = {
    "name": "name",
    "status": "status",
    "steps": "steps",
    "last_result": "last_result",
    "duration": "duration",
    "script_path": "script_path",
    "template_steps": "template_steps",
    "test_url": "test_url",
    "last_run": "last_run",
}


def init_db(db_path: Path) -> sqlite3.Connection:
    """Initialize the database schema.

    Creates tables if they don't exist. This function is idempotent and safe
    to call multiple times.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        Open database connection with the schema initialized.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = _open(db_path)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS test_cases (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL,
            steps TEXT NOT NULL DEFAULT '[]',
            last_result TEXT,
            duration REAL,
            script_path TEXT,
            template_steps TEXT,
            test_url TEXT,
            last_run TIMESTAMP,
            updated_at TIMESTAMP NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id TEXT PRIMARY KEY,
            test_id TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            type TEXT NOT NULL,
            created_at TIMESTAMP NOT NULL,
            read_by TEXT NOT NULL DEFAULT '[]'
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS blobs (
            name TEXT PRIMARY KEY,
            content_type TEXT NOT NULL,
            size INTEGER NOT NULL,
            test_id TEXT,
            step_index INTEGER,
            timestamp TEXT,
            public INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP NOT NULL
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_created ON notifications(created_at)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_blobs_test ON blobs(test_id)
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_info (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
    """)
    conn.execute(
        "INSERT OR REPLACE INTO schema_info (key, value) VALUES (?, ?)",
        ("version", str(SCHEMA_VERSION)),
    )

    conn.commit()
    return conn


def _open(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    # WAL keeps readers (dashboard) from blocking the pipeline's writes
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Get the current schema version from the database.

    Returns:
        Schema version number, or 0 if not set.
    """
    try:
        cursor = conn.execute("SELECT value FROM schema_info WHERE key = ?", ("version",))
        row = cursor.fetchone()
        return int(row["value"]) if row else 0
    except sqlite3.OperationalError:
        return 0


def _encode(value: Any) -> Any:
    """Convert a document field value into its column representation."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return json.dumps([v.to_dict() if isinstance(v, StepRecord) else v for v in value])
    return value


def _row_to_test_run(row: sqlite3.Row) -> TestRun:
    template_steps = row["template_steps"]
    return TestRun(
        id=row["id"],
        name=row["name"],
        status=RunStatus(row["status"]),
        steps=[StepRecord.from_dict(s) for s in json.loads(row["steps"] or "[]")],
        last_result=row["last_result"],
        duration=row["duration"],
        script_path=row["script_path"],
        template_steps=json.loads(template_steps) if template_steps else None,
        test_url=row["test_url"],
        last_run=row["last_run"],
    )


def _row_to_notification(row: sqlite3.Row) -> Notification:
    return Notification(
        id=row["id"],
        test_id=row["test_id"],
        title=row["title"],
        message=row["message"],
        type=row["type"],
        created_at=row["created_at"],
        read_by=set(json.loads(row["read_by"] or "[]")),
    )


class RunStore:
    """Document store for test cases, notifications and blob metadata.

    Every operation opens its own connection so the store can be used from
    worker threads via asyncio.to_thread(). sqlite3 errors are wrapped in
    StoreError.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        try:
            init_db(self.db_path).close()
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Cannot open document store at {self.db_path}", detail=str(e)) from e

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = _open(self.db_path)
        except sqlite3.Error as e:
            raise StoreError("Document store unreachable", detail=str(e)) from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError("Document store operation failed", detail=str(e)) from e
        finally:
            conn.close()

    # Test cases

    def upsert_test_case(self, run: TestRun) -> None:
        """Insert a test case document, replacing any existing one."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO test_cases (
                    id, name, status, steps, last_result, duration,
                    script_path, template_steps, test_url, last_run, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.id,
                    run.name,
                    run.status.value,
                    _encode(run.steps),
                    run.last_result,
                    run.duration,
                    run.script_path,
                    _encode(run.template_steps) if run.template_steps is not None else None,
                    run.test_url,
                    run.last_run,
                    datetime.now().isoformat(),
                ),
            )

    def get_test_case(self, test_id: str) -> TestRun:
        """Get a test case by ID.

        Raises:
            RunNotFoundError: If no document exists for test_id.
        """
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM test_cases WHERE id = ?", (test_id,)).fetchone()
        if row is None:
            raise RunNotFoundError(test_id)
        return _row_to_test_run(row)

    def list_test_cases(self, status: RunStatus | None = None) -> list[TestRun]:
        """List test cases, optionally filtered by run status."""
        query = "SELECT * FROM test_cases"
        params: list[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(status.value)
        query += " ORDER BY id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_test_run(row) for row in rows]

    def update_test_case(self, test_id: str, **fields: Any) -> None:
        """Update fields of a test case document.

        Args:
            test_id: Test case to update.
            **fields: Document fields to set (status, steps, last_result,
                duration, last_run, ...).

        Raises:
            RunNotFoundError: If the document no longer exists.
            ValueError: If an unknown field is given.
        """
        if not fields:
            return

        unknown = set(fields) - set(_TEST_CASE_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown test case fields: {sorted(unknown)}")

        columns = [_TEST_CASE_COLUMNS[k] for k in fields]
        values = [_encode(v) for v in fields.values()]
        set_clause = ", ".join(f"{c} = ?" for c in columns) + ", updated_at = ?"
        values.append(datetime.now().isoformat())
        values.append(test_id)

        with self._connect() as conn:
            cursor = conn.execute(f"UPDATE test_cases SET {set_clause} WHERE id = ?", values)
            updated = cursor.rowcount > 0
        if not updated:
            raise RunNotFoundError(test_id)

    def delete_test_case(self, test_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM test_cases WHERE id = ?", (test_id,))
            return cursor.rowcount > 0

    # Notifications

    def insert_notification(self, notification: Notification) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO notifications (id, test_id, title, message, type, created_at, read_by)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    notification.id,
                    notification.test_id,
                    notification.title,
                    notification.message,
                    notification.type,
                    notification.created_at,
                    json.dumps(sorted(notification.read_by)),
                ),
            )

    def list_notifications(self, limit: int | None = None) -> list[Notification]:
        """List notifications, newest first."""
        query = "SELECT * FROM notifications ORDER BY created_at DESC"
        params: list[Any] = []
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_notification(row) for row in rows]

    def get_notification(self, notification_id: str) -> Notification | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM notifications WHERE id = ?", (notification_id,)
            ).fetchone()
        return _row_to_notification(row) if row else None

    def add_notification_reader(self, notification_id: str, user_id: str) -> bool:
        """Add user_id to a notification's readers.

        The read-modify-write happens inside one transaction.

        Returns:
            True if the notification exists.
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT read_by FROM notifications WHERE id = ?", (notification_id,)
            ).fetchone()
            if row is None:
                return False
            read_by = set(json.loads(row["read_by"] or "[]"))
            if user_id not in read_by:
                read_by.add(user_id)
                conn.execute(
                    "UPDATE notifications SET read_by = ? WHERE id = ?",
                    (json.dumps(sorted(read_by)), notification_id),
                )
        return True

    # Blob metadata

    def insert_blob(
        self,
        name: str,
        content_type: str,
        size: int,
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Record an archived blob and its audit metadata."""
        metadata = metadata or {}
        step_index = metadata.get("stepIndex")
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO blobs (
                    name, content_type, size, test_id, step_index, timestamp, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name,
                    content_type,
                    size,
                    metadata.get("testId"),
                    int(step_index) if step_index is not None else None,
                    metadata.get("timestamp"),
                    datetime.now().isoformat(),
                ),
            )

    def mark_blob_public(self, name: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("UPDATE blobs SET public = 1 WHERE name = ?", (name,))
            return cursor.rowcount > 0

    def list_blobs(self, test_id: str | None = None) -> list[dict[str, Any]]:
        """List blob metadata rows, optionally for one test case."""
        query = "SELECT * FROM blobs"
        params: list[Any] = []
        if test_id is not None:
            query += " WHERE test_id = ?"
            params.append(test_id)
        query += " ORDER BY created_at"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]
