from __future__ import annotations

import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterator

from shiftsync.errors import FeedNotFound, StorageFailed
from shiftsync.models import (
    ExternalEvent,
    ExternalFeed,
    ReconcilePlan,
    SyncedRecord,
    SyncLogEntry,
    SyncStats,
    parse_iso_datetime,
    serialize_datetime,
    utc_now,
)


FEED_COLUMNS = "id, calendar_id, name, url, color, interval_minutes, last_synced_at, created_at, updated_at"
SHIFT_COLUMNS = (
    "id, calendar_id, date, start_time, end_time, title, color, description, is_all_day, "
    "feed_id, external_id, synced_from_external, created_at, updated_at"
)
LOG_COLUMNS = "id, feed_id, calendar_id, status, message, trigger, created, updated, deleted, is_read, synced_at"
EDITABLE_FEED_FIELDS = ("name", "url", "color", "interval_minutes")


def _now_text() -> str:
    return utc_now().isoformat()


def _feed_from_row(row: sqlite3.Row) -> ExternalFeed:
    return ExternalFeed(
        feed_id=row["id"],
        calendar_id=row["calendar_id"],
        name=row["name"],
        url=row["url"],
        color=row["color"],
        interval_minutes=int(row["interval_minutes"]),
        last_synced_at=parse_iso_datetime(row["last_synced_at"]),
        created_at=parse_iso_datetime(row["created_at"]),
        updated_at=parse_iso_datetime(row["updated_at"]),
    )


def _shift_from_row(row: sqlite3.Row) -> SyncedRecord:
    return SyncedRecord(
        shift_id=row["id"],
        calendar_id=row["calendar_id"],
        date=date.fromisoformat(row["date"]),
        start_time=row["start_time"],
        end_time=row["end_time"],
        title=row["title"],
        color=row["color"],
        description=row["description"],
        all_day=bool(row["is_all_day"]),
        feed_id=row["feed_id"],
        external_id=row["external_id"],
        synced_from_external=bool(row["synced_from_external"]),
        created_at=parse_iso_datetime(row["created_at"]),
        updated_at=parse_iso_datetime(row["updated_at"]),
    )


def _log_from_row(row: sqlite3.Row) -> SyncLogEntry:
    return SyncLogEntry(
        log_id=int(row["id"]),
        feed_id=row["feed_id"],
        calendar_id=row["calendar_id"],
        status=row["status"],
        message=row["message"] or "",
        trigger=row["trigger"],
        created=int(row["created"]),
        updated=int(row["updated"]),
        deleted=int(row["deleted"]),
        is_read=bool(row["is_read"]),
        synced_at=parse_iso_datetime(row["synced_at"]),
    )


def _shift_values(feed: ExternalFeed, event: ExternalEvent) -> dict[str, Any]:
    return {
        "calendar_id": feed.calendar_id,
        "date": event.date.isoformat(),
        "start_time": event.start_time,
        "end_time": event.end_time,
        "title": event.title,
        "color": feed.color,
        "description": event.description,
        "is_all_day": int(event.all_day),
        "feed_id": feed.feed_id,
        "external_id": event.external_id,
    }


def _scope_clause(feed_id: str | None, calendar_id: str | None) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if feed_id:
        clauses.append("feed_id = ?")
        params.append(feed_id)
    if calendar_id:
        clauses.append("calendar_id = ?")
        params.append(calendar_id)
    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


class StateStore:
    def __init__(self, db_path: str, busy_timeout_seconds: float = 10) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout_seconds = float(busy_timeout_seconds)
        self._lock = threading.RLock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout_seconds, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                conn = self._connect()
            except sqlite3.Error as exc:
                raise StorageFailed(f"storage unavailable: {exc}") from exc
            try:
                with conn:
                    yield conn
            except sqlite3.Error as exc:
                raise StorageFailed(f"storage error: {exc}") from exc
            finally:
                conn.close()

    def _init_schema(self) -> None:
        schema_sql = """
        CREATE TABLE IF NOT EXISTS feeds (
            id TEXT PRIMARY KEY,
            calendar_id TEXT NOT NULL,
            name TEXT NOT NULL,
            url TEXT NOT NULL,
            color TEXT NOT NULL,
            interval_minutes INTEGER NOT NULL,
            last_synced_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS shifts (
            id TEXT PRIMARY KEY,
            calendar_id TEXT NOT NULL,
            date TEXT NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            title TEXT NOT NULL,
            color TEXT NOT NULL,
            description TEXT,
            is_all_day INTEGER NOT NULL DEFAULT 0,
            feed_id TEXT REFERENCES feeds(id) ON DELETE CASCADE,
            external_id TEXT,
            synced_from_external INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE UNIQUE INDEX IF NOT EXISTS shifts_feed_external
            ON shifts(feed_id, external_id);
        CREATE INDEX IF NOT EXISTS shifts_calendar_date
            ON shifts(calendar_id, date);

        CREATE TABLE IF NOT EXISTS sync_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
            calendar_id TEXT NOT NULL,
            status TEXT NOT NULL,
            message TEXT,
            trigger TEXT NOT NULL,
            created INTEGER NOT NULL DEFAULT 0,
            updated INTEGER NOT NULL DEFAULT 0,
            deleted INTEGER NOT NULL DEFAULT 0,
            is_read INTEGER NOT NULL DEFAULT 0,
            synced_at TEXT NOT NULL
        );
        """
        with self._transaction() as conn:
            conn.executescript(schema_sql)

    # Feeds

    def create_feed(
        self,
        *,
        calendar_id: str,
        name: str,
        url: str,
        color: str,
        interval_minutes: int,
    ) -> ExternalFeed:
        feed_id = str(uuid.uuid4())
        now = _now_text()
        with self._transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO feeds({FEED_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, NULL, ?, ?)
                """,
                (feed_id, calendar_id, name, url, color, int(interval_minutes), now, now),
            )
        return self.get_feed(feed_id)

    def get_feed(self, feed_id: str) -> ExternalFeed:
        with self._transaction() as conn:
            row = conn.execute(f"SELECT {FEED_COLUMNS} FROM feeds WHERE id = ?", (feed_id,)).fetchone()
        if row is None:
            raise FeedNotFound(feed_id)
        return _feed_from_row(row)

    def list_feeds(self, calendar_id: str | None = None) -> list[ExternalFeed]:
        with self._transaction() as conn:
            if calendar_id is None:
                rows = conn.execute(f"SELECT {FEED_COLUMNS} FROM feeds ORDER BY created_at, id").fetchall()
            else:
                rows = conn.execute(
                    f"SELECT {FEED_COLUMNS} FROM feeds WHERE calendar_id = ? ORDER BY created_at, id",
                    (calendar_id,),
                ).fetchall()
        return [_feed_from_row(row) for row in rows]

    def update_feed(self, feed_id: str, **changes: Any) -> ExternalFeed:
        updates = {key: value for key, value in changes.items() if key in EDITABLE_FEED_FIELDS and value is not None}
        if updates:
            assignments = ", ".join(f"{key} = ?" for key in updates)
            with self._transaction() as conn:
                cursor = conn.execute(
                    f"UPDATE feeds SET {assignments}, updated_at = ? WHERE id = ?",
                    (*updates.values(), _now_text(), feed_id),
                )
                if cursor.rowcount == 0:
                    raise FeedNotFound(feed_id)
        return self.get_feed(feed_id)

    def delete_feed(self, feed_id: str) -> None:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM feeds WHERE id = ?", (feed_id,))
            if cursor.rowcount == 0:
                raise FeedNotFound(feed_id)

    # Shifts

    def add_shift(self, record: SyncedRecord) -> SyncedRecord:
        with self._transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO shifts({SHIFT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.shift_id,
                    record.calendar_id,
                    record.date.isoformat(),
                    record.start_time,
                    record.end_time,
                    record.title,
                    record.color,
                    record.description,
                    int(record.all_day),
                    record.feed_id,
                    record.external_id,
                    int(record.synced_from_external),
                    serialize_datetime(record.created_at),
                    serialize_datetime(record.updated_at),
                ),
            )
        return record

    def list_shifts(self, calendar_id: str) -> list[SyncedRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {SHIFT_COLUMNS} FROM shifts WHERE calendar_id = ? ORDER BY date, start_time, id",
                (calendar_id,),
            ).fetchall()
        return [_shift_from_row(row) for row in rows]

    def list_synced_records(self, feed_id: str) -> list[SyncedRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT {SHIFT_COLUMNS} FROM shifts
                WHERE feed_id = ? AND synced_from_external = 1
                ORDER BY date, start_time, id
                """,
                (feed_id,),
            ).fetchall()
        return [_shift_from_row(row) for row in rows]

    def apply_sync_plan(self, feed: ExternalFeed, plan: ReconcilePlan, synced_at: datetime) -> SyncStats:
        """Apply one run's inserts, updates and deletes plus the last-synced stamp atomically."""
        now = _now_text()
        with self._transaction() as conn:
            conn.execute("BEGIN IMMEDIATE")
            for event in plan.to_insert:
                values = _shift_values(feed, event)
                conn.execute(
                    f"""
                    INSERT INTO shifts({SHIFT_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                    """,
                    (
                        str(uuid.uuid4()),
                        values["calendar_id"],
                        values["date"],
                        values["start_time"],
                        values["end_time"],
                        values["title"],
                        values["color"],
                        values["description"],
                        values["is_all_day"],
                        values["feed_id"],
                        values["external_id"],
                        now,
                        now,
                    ),
                )
            for record, event in plan.to_update:
                values = _shift_values(feed, event)
                conn.execute(
                    """
                    UPDATE shifts
                    SET calendar_id = ?, date = ?, start_time = ?, end_time = ?, title = ?, color = ?,
                        description = ?, is_all_day = ?, feed_id = ?, external_id = ?,
                        synced_from_external = 1, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        values["calendar_id"],
                        values["date"],
                        values["start_time"],
                        values["end_time"],
                        values["title"],
                        values["color"],
                        values["description"],
                        values["is_all_day"],
                        values["feed_id"],
                        values["external_id"],
                        now,
                        record.shift_id,
                    ),
                )
            for record in plan.to_delete:
                conn.execute(
                    "DELETE FROM shifts WHERE id = ? AND synced_from_external = 1",
                    (record.shift_id,),
                )
            cursor = conn.execute(
                "UPDATE feeds SET last_synced_at = ?, updated_at = ? WHERE id = ?",
                (serialize_datetime(synced_at), now, feed.feed_id),
            )
            if cursor.rowcount == 0:
                raise StorageFailed(f"feed disappeared during sync: {feed.feed_id}")
        return SyncStats(
            created=len(plan.to_insert),
            updated=len(plan.to_update),
            deleted=len(plan.to_delete),
        )

    # Sync log

    def append_sync_log(
        self,
        *,
        feed_id: str,
        calendar_id: str,
        status: str,
        message: str,
        trigger: str,
        created: int = 0,
        updated: int = 0,
        deleted: int = 0,
    ) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_logs(feed_id, calendar_id, status, message, trigger, created, updated, deleted, is_read, synced_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (feed_id, calendar_id, status, message, trigger, created, updated, deleted, _now_text()),
            )
            return int(cursor.lastrowid)

    def list_sync_logs(
        self,
        *,
        feed_id: str | None = None,
        calendar_id: str | None = None,
        limit: int | None = None,
    ) -> list[SyncLogEntry]:
        where, params = _scope_clause(feed_id, calendar_id)
        sql = f"SELECT {LOG_COLUMNS} FROM sync_logs {where} ORDER BY id DESC"
        if limit is not None:
            if int(limit) <= 0:
                return []
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._transaction() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_log_from_row(row) for row in rows]

    def has_unread_errors(self, *, feed_id: str | None = None, calendar_id: str | None = None) -> bool:
        where, params = _scope_clause(feed_id, calendar_id)
        where = f"{where} AND" if where else "WHERE"
        sql = f"SELECT 1 FROM sync_logs {where} status = 'error' AND is_read = 0 LIMIT 1"
        with self._transaction() as conn:
            return conn.execute(sql, params).fetchone() is not None

    def mark_errors_read(self, *, feed_id: str | None = None, calendar_id: str | None = None) -> int:
        where, params = _scope_clause(feed_id, calendar_id)
        where = f"{where} AND status = 'error'" if where else "WHERE status = 'error'"
        with self._transaction() as conn:
            cursor = conn.execute(f"UPDATE sync_logs SET is_read = 1 {where} AND is_read = 0", params)
            return int(cursor.rowcount)

    def clear_sync_logs(self, *, feed_id: str | None = None, calendar_id: str | None = None) -> int:
        where, params = _scope_clause(feed_id, calendar_id)
        with self._transaction() as conn:
            cursor = conn.execute(f"DELETE FROM sync_logs {where}", params)
            return int(cursor.rowcount)
