"""SQLite-backed store: the single source of truth for shared pipeline state."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, Iterator, Sequence

from ..errors import ConflictError, InternalError, NotFoundError
from ..models import (
    Channel,
    EventKind,
    Item,
    Job,
    JobResult,
    JobStatus,
    Origin,
    Subscription,
    SubscriptionStatus,
    format_timestamp,
    parse_timestamp,
)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS channels (
        id TEXT PRIMARY KEY,
        external_id TEXT UNIQUE,
        name TEXT NOT NULL,
        handle TEXT,
        enabled INTEGER NOT NULL DEFAULT 1,
        listing_id TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS items (
        record_id TEXT PRIMARY KEY,
        item_id TEXT UNIQUE,
        channel_id TEXT NOT NULL REFERENCES channels(id),
        source_url TEXT NOT NULL DEFAULT '',
        title TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        published_at TEXT,
        origin TEXT NOT NULL,
        event_kind TEXT NOT NULL,
        raw_payload TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_items_channel_published ON items(channel_id, published_at)",
    """
    CREATE TABLE IF NOT EXISTS jobs (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        item_id TEXT NOT NULL UNIQUE,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        started_at TEXT,
        finished_at TEXT,
        summary_text TEXT,
        key_points TEXT,
        doc_url TEXT,
        doc_id TEXT,
        notified_at TEXT,
        error TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON jobs(status, created_at, seq)",
    """
    CREATE TABLE IF NOT EXISTS subscriptions (
        channel_id TEXT PRIMARY KEY REFERENCES channels(id),
        topic_url TEXT NOT NULL,
        callback_url TEXT NOT NULL,
        status TEXT NOT NULL,
        lease_expires_at TEXT,
        last_renewed_at TEXT
    )
    """,
)


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, check_same_thread=False, timeout=self.timeout)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        for statement in SCHEMA:
            conn.execute(statement)
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        if path.exists():
            path.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _load(value: str | None, default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except ValueError:
        return default


class Store:
    """Documented store operations used by every component.

    Uniqueness (item identifier, job per item, subscription per channel) is
    enforced by the schema; violations surface as ``ConflictError``.
    """

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._lock = Lock()
        self._conn = self.manager.connect(db_path)

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise ConflictError(str(exc)) from exc
            except sqlite3.OperationalError as exc:
                self._conn.rollback()
                raise InternalError(f"SQLite write failed: {exc}") from exc
            except Exception:
                self._conn.rollback()
                raise
            else:
                self._conn.commit()

    def _query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def close(self) -> None:
        self.manager.close_all()

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------
    def add_channel(self, channel: Channel) -> Channel:
        with self._write() as conn:
            conn.execute(
                "INSERT INTO channels(id, external_id, name, handle, enabled, listing_id, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    channel.id,
                    channel.external_id,
                    channel.name,
                    channel.handle,
                    int(channel.enabled),
                    channel.listing_id,
                    format_timestamp(channel.created_at),
                ),
            )
        return channel

    def get_channel(self, channel_id: str) -> Channel:
        rows = self._query("SELECT * FROM channels WHERE id = ?", (channel_id,))
        if not rows:
            raise NotFoundError(f"Channel not found: {channel_id}")
        return _channel(rows[0])

    def find_channel_by_external_id(self, external_id: str) -> Channel | None:
        rows = self._query("SELECT * FROM channels WHERE external_id = ?", (external_id,))
        return _channel(rows[0]) if rows else None

    def list_channels(
        self, enabled_only: bool = False, ids: Iterable[str] | None = None
    ) -> list[Channel]:
        """List channels, optionally filtered by internal or external ids."""

        sql = "SELECT * FROM channels"
        clauses: list[str] = []
        params: list[Any] = []
        if enabled_only:
            clauses.append("enabled = 1")
        if ids is not None:
            wanted = list(ids)
            if not wanted:
                return []
            placeholders = ",".join("?" for _ in wanted)
            clauses.append(f"(id IN ({placeholders}) OR external_id IN ({placeholders}))")
            params.extend(wanted)
            params.extend(wanted)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at, id"
        return [_channel(row) for row in self._query(sql, params)]

    def update_channel(self, channel_id: str, **fields: Any) -> Channel:
        allowed = {"external_id", "listing_id", "handle", "name", "enabled"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unsupported channel fields: {sorted(unknown)}")
        if fields:
            assignments = ", ".join(f"{key} = ?" for key in fields)
            values = [int(v) if key == "enabled" else v for key, v in fields.items()]
            with self._write() as conn:
                cur = conn.execute(
                    f"UPDATE channels SET {assignments} WHERE id = ?", (*values, channel_id)
                )
                if cur.rowcount == 0:
                    raise NotFoundError(f"Channel not found: {channel_id}")
        return self.get_channel(channel_id)

    def delete_channel(self, channel_id: str) -> None:
        with self._write() as conn:
            referenced = conn.execute(
                "SELECT 1 FROM items WHERE channel_id = ? LIMIT 1", (channel_id,)
            ).fetchone()
            if referenced:
                raise ConflictError(f"Channel {channel_id} is referenced by items")
            conn.execute("DELETE FROM subscriptions WHERE channel_id = ?", (channel_id,))
            cur = conn.execute("DELETE FROM channels WHERE id = ?", (channel_id,))
            if cur.rowcount == 0:
                raise NotFoundError(f"Channel not found: {channel_id}")

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------
    def insert_item(self, item: Item) -> Item:
        with self._write() as conn:
            conn.execute(
                "INSERT INTO items(record_id, item_id, channel_id, source_url, title, description,"
                " published_at, origin, event_kind, raw_payload, created_at, updated_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    item.record_id,
                    item.item_id,
                    item.channel_id,
                    item.source_url,
                    item.title,
                    item.description,
                    format_timestamp(item.published_at),
                    item.origin.value,
                    item.event_kind.value,
                    _dump(item.raw_payload),
                    format_timestamp(item.created_at),
                    format_timestamp(item.updated_at),
                ),
            )
        return item

    def get_item(self, item_id: str) -> Item | None:
        rows = self._query("SELECT * FROM items WHERE item_id = ?", (item_id,))
        return _item(rows[0]) if rows else None

    def existing_item_ids(self, item_ids: Sequence[str]) -> set[str]:
        if not item_ids:
            return set()
        placeholders = ",".join("?" for _ in item_ids)
        rows = self._query(
            f"SELECT item_id FROM items WHERE item_id IN ({placeholders})", list(item_ids)
        )
        return {row["item_id"] for row in rows}

    def item_sources(self) -> list[tuple[str, str]]:
        """Return ``(record_id, source_url)`` for every stored item."""

        rows = self._query("SELECT record_id, source_url FROM items ORDER BY created_at")
        return [(row["record_id"], row["source_url"]) for row in rows]

    def find_items_by_date_and_title(
        self, channel_id: str, published_date: str, title_prefix: str
    ) -> list[Item]:
        rows = self._query(
            "SELECT * FROM items WHERE channel_id = ? AND substr(published_at, 1, 10) = ?"
            " AND substr(title, 1, length(?)) = ? ORDER BY created_at",
            (channel_id, published_date, title_prefix, title_prefix),
        )
        return [_item(row) for row in rows]

    def update_item_event(
        self,
        record_id: str,
        event_kind: EventKind,
        raw_payload: dict[str, Any],
        updated_at: datetime,
        origin: Origin | None = None,
    ) -> None:
        with self._write() as conn:
            if origin is None:
                cur = conn.execute(
                    "UPDATE items SET event_kind = ?, raw_payload = ?, updated_at = ? WHERE record_id = ?",
                    (event_kind.value, _dump(raw_payload), format_timestamp(updated_at), record_id),
                )
            else:
                cur = conn.execute(
                    "UPDATE items SET event_kind = ?, raw_payload = ?, updated_at = ?, origin = ?"
                    " WHERE record_id = ?",
                    (
                        event_kind.value,
                        _dump(raw_payload),
                        format_timestamp(updated_at),
                        origin.value,
                        record_id,
                    ),
                )
            if cur.rowcount == 0:
                raise NotFoundError(f"Item not found: {record_id}")

    def count_items(self) -> int:
        return self._query("SELECT count(*) AS n FROM items")[0]["n"]

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------
    def insert_job(self, job: Job) -> Job:
        with self._write() as conn:
            conn.execute(
                "INSERT INTO jobs(id, item_id, status, created_at) VALUES (?, ?, ?, ?)",
                (job.id, job.item_id, job.status.value, format_timestamp(job.created_at)),
            )
        return job

    def get_job(self, job_id: str) -> Job | None:
        rows = self._query("SELECT * FROM jobs WHERE id = ?", (job_id,))
        return _job(rows[0]) if rows else None

    def get_job_for_item(self, item_id: str) -> Job | None:
        rows = self._query("SELECT * FROM jobs WHERE item_id = ?", (item_id,))
        return _job(rows[0]) if rows else None

    def pending_job_ids(self, limit: int) -> list[str]:
        rows = self._query(
            "SELECT id FROM jobs WHERE status = ? ORDER BY created_at, seq LIMIT ?",
            (JobStatus.PENDING.value, limit),
        )
        return [row["id"] for row in rows]

    def transition_job(
        self,
        job_id: str,
        expected: JobStatus,
        target: JobStatus,
        **fields: Any,
    ) -> bool:
        """Conditionally move a job between states.

        The update only applies when the row still holds ``expected``; the
        return value tells the caller whether it won the transition.
        """

        columns = {"status": target.value}
        for key, value in fields.items():
            if isinstance(value, datetime):
                value = format_timestamp(value)
            elif key == "key_points" and value is not None:
                value = _dump(value)
            columns[key] = value
        assignments = ", ".join(f"{key} = ?" for key in columns)
        with self._write() as conn:
            cur = conn.execute(
                f"UPDATE jobs SET {assignments} WHERE id = ? AND status = ?",
                (*columns.values(), job_id, expected.value),
            )
            return cur.rowcount == 1

    def stale_job_ids(self, started_before: datetime) -> list[str]:
        rows = self._query(
            "SELECT id FROM jobs WHERE status = ? AND started_at IS NOT NULL AND started_at < ?"
            " ORDER BY started_at",
            (JobStatus.PROCESSING.value, format_timestamp(started_before)),
        )
        return [row["id"] for row in rows]

    def list_jobs(self, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        if status is None:
            rows = self._query("SELECT * FROM jobs ORDER BY created_at DESC, seq DESC LIMIT ?", (limit,))
        else:
            rows = self._query(
                "SELECT * FROM jobs WHERE status = ? ORDER BY created_at DESC, seq DESC LIMIT ?",
                (status.value, limit),
            )
        return [_job(row) for row in rows]

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def upsert_subscription(self, subscription: Subscription) -> Subscription:
        with self._write() as conn:
            conn.execute(
                "INSERT INTO subscriptions(channel_id, topic_url, callback_url, status,"
                " lease_expires_at, last_renewed_at) VALUES (?, ?, ?, ?, ?, ?)"
                " ON CONFLICT(channel_id) DO UPDATE SET topic_url = excluded.topic_url,"
                " callback_url = excluded.callback_url, status = excluded.status,"
                " lease_expires_at = excluded.lease_expires_at,"
                " last_renewed_at = excluded.last_renewed_at",
                (
                    subscription.channel_id,
                    subscription.topic_url,
                    subscription.callback_url,
                    subscription.status.value,
                    format_timestamp(subscription.lease_expires_at),
                    format_timestamp(subscription.last_renewed_at),
                ),
            )
        return subscription

    def get_subscription(self, channel_id: str) -> Subscription | None:
        rows = self._query("SELECT * FROM subscriptions WHERE channel_id = ?", (channel_id,))
        return _subscription(rows[0]) if rows else None

    def list_subscriptions(self, status: SubscriptionStatus | None = None) -> list[Subscription]:
        if status is None:
            rows = self._query("SELECT * FROM subscriptions ORDER BY lease_expires_at")
        else:
            rows = self._query(
                "SELECT * FROM subscriptions WHERE status = ? ORDER BY lease_expires_at",
                (status.value,),
            )
        return [_subscription(row) for row in rows]

    def expiring_subscriptions(self, expires_before: datetime) -> list[Subscription]:
        rows = self._query(
            "SELECT * FROM subscriptions WHERE status = ? AND lease_expires_at <= ?"
            " ORDER BY lease_expires_at",
            (SubscriptionStatus.SUBSCRIBED.value, format_timestamp(expires_before)),
        )
        return [_subscription(row) for row in rows]

    def set_subscription_status(self, channel_id: str, status: SubscriptionStatus) -> None:
        with self._write() as conn:
            cur = conn.execute(
                "UPDATE subscriptions SET status = ? WHERE channel_id = ?",
                (status.value, channel_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"Subscription not found for channel: {channel_id}")


def _channel(row: sqlite3.Row) -> Channel:
    return Channel(
        id=row["id"],
        name=row["name"],
        external_id=row["external_id"],
        handle=row["handle"],
        enabled=bool(row["enabled"]),
        listing_id=row["listing_id"],
        created_at=parse_timestamp(row["created_at"]),
    )


def _item(row: sqlite3.Row) -> Item:
    return Item(
        record_id=row["record_id"],
        item_id=row["item_id"],
        channel_id=row["channel_id"],
        source_url=row["source_url"],
        title=row["title"],
        description=row["description"],
        published_at=parse_timestamp(row["published_at"]),
        origin=Origin(row["origin"]),
        event_kind=EventKind(row["event_kind"]),
        raw_payload=_load(row["raw_payload"], {}),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def _job(row: sqlite3.Row) -> Job:
    result = None
    if row["summary_text"] is not None:
        result = JobResult(
            summary_text=row["summary_text"],
            key_points=_load(row["key_points"], []),
            doc_url=row["doc_url"],
            doc_id=row["doc_id"],
            notified_at=parse_timestamp(row["notified_at"]),
        )
    return Job(
        id=row["id"],
        item_id=row["item_id"],
        status=JobStatus(row["status"]),
        created_at=parse_timestamp(row["created_at"]),
        started_at=parse_timestamp(row["started_at"]),
        finished_at=parse_timestamp(row["finished_at"]),
        result=result,
        error=row["error"],
    )


def _subscription(row: sqlite3.Row) -> Subscription:
    return Subscription(
        channel_id=row["channel_id"],
        topic_url=row["topic_url"],
        callback_url=row["callback_url"],
        status=SubscriptionStatus(row["status"]),
        lease_expires_at=parse_timestamp(row["lease_expires_at"]),
        last_renewed_at=parse_timestamp(row["last_renewed_at"]),
    )


__all__ = ["SQLiteManager", "Store"]
