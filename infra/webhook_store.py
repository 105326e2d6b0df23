"""SQLite persistence for the webhook delivery pipeline.

Holds three tables:

* ``bots``              : webhook subscribers (URL, signing secret, project scope)
* ``projects``          : project → owner mapping used for implicit scoping
* ``webhook_deliveries``: one row per (bot, event) delivery attempt record

A single connection is kept open for the store's lifetime so that
``":memory:"`` databases work in tests.  Access is serialized with a lock.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

SCHEMA = """
CREATE TABLE IF NOT EXISTS bots (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    owner_id TEXT,
    webhook_url TEXT,
    webhook_secret TEXT,
    project_ids TEXT NOT NULL DEFAULT '[]',
    is_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS webhook_deliveries (
    id TEXT PRIMARY KEY,
    bot_id TEXT NOT NULL,
    event TEXT NOT NULL,
    payload TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'delivered', 'failed')),
    attempts INTEGER NOT NULL DEFAULT 0,
    next_retry_at TEXT,
    http_status INTEGER,
    response TEXT,
    last_attempt_at TEXT,
    delivered_at TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_deliveries_due
    ON webhook_deliveries (status, next_retry_at, created_at);
"""


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class WebhookBot(BaseModel):
    """A bot registered to receive webhooks."""

    id: str
    name: str = ""
    owner_id: str | None = None
    webhook_url: str | None = None
    webhook_secret: str | None = None
    project_ids: list[str] = Field(default_factory=list)
    is_active: bool = True


class WebhookDelivery(BaseModel):
    id: str
    bot_id: str
    event: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    next_retry_at: datetime | None = None
    http_status: int | None = None
    response: str | None = None
    last_attempt_at: datetime | None = None
    delivered_at: datetime | None = None
    created_at: datetime


def _ts(value: datetime | None) -> str | None:
    """Fixed-width ISO timestamp so that string ordering equals time ordering."""
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class WebhookStore:
    """Thread-safe SQLite store for bots, projects and webhook deliveries."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        path = str(db_path)
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ── Bots / projects ───────────────────────────────────────────────

    def upsert_bot(self, bot: WebhookBot) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO bots (id, name, owner_id, webhook_url, webhook_secret, project_ids, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name=excluded.name,
                    owner_id=excluded.owner_id,
                    webhook_url=excluded.webhook_url,
                    webhook_secret=excluded.webhook_secret,
                    project_ids=excluded.project_ids,
                    is_active=excluded.is_active
                """,
                (
                    bot.id,
                    bot.name,
                    bot.owner_id,
                    bot.webhook_url,
                    bot.webhook_secret,
                    json.dumps(bot.project_ids),
                    int(bot.is_active),
                ),
            )
            self._conn.commit()

    @staticmethod
    def _bot_from_row(row: sqlite3.Row) -> WebhookBot:
        return WebhookBot(
            id=row["id"],
            name=row["name"],
            owner_id=row["owner_id"],
            webhook_url=row["webhook_url"],
            webhook_secret=row["webhook_secret"],
            project_ids=json.loads(row["project_ids"] or "[]"),
            is_active=bool(row["is_active"]),
        )

    def get_bot(self, bot_id: str) -> WebhookBot | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM bots WHERE id = ?", (bot_id,)).fetchone()
        return self._bot_from_row(row) if row else None

    def list_webhook_bots(self) -> list[WebhookBot]:
        """Active bots that have a webhook URL configured."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM bots WHERE is_active = 1 AND webhook_url IS NOT NULL AND webhook_url != ''"
            ).fetchall()
        return [self._bot_from_row(r) for r in rows]

    def upsert_project(self, project_id: str, owner_id: str) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO projects (id, owner_id) VALUES (?, ?) "
                "ON CONFLICT(id) DO UPDATE SET owner_id=excluded.owner_id",
                (project_id, owner_id),
            )
            self._conn.commit()

    def get_project_owner(self, project_id: str) -> str | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT owner_id FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
        return row["owner_id"] if row else None

    # ── Deliveries ────────────────────────────────────────────────────

    @staticmethod
    def _delivery_from_row(row: sqlite3.Row) -> WebhookDelivery:
        return WebhookDelivery(
            id=row["id"],
            bot_id=row["bot_id"],
            event=row["event"],
            payload=json.loads(row["payload"]),
            status=DeliveryStatus(row["status"]),
            attempts=row["attempts"],
            next_retry_at=_dt(row["next_retry_at"]),
            http_status=row["http_status"],
            response=row["response"],
            last_attempt_at=_dt(row["last_attempt_at"]),
            delivered_at=_dt(row["delivered_at"]),
            created_at=_dt(row["created_at"]),
        )

    def create_delivery(
        self,
        bot_id: str,
        event: str,
        payload: dict[str, Any],
        created_at: datetime,
    ) -> WebhookDelivery:
        delivery_id = uuid.uuid4().hex
        with self._lock:
            self._conn.execute(
                "INSERT INTO webhook_deliveries (id, bot_id, event, payload, status, attempts, created_at) "
                "VALUES (?, ?, ?, ?, 'pending', 0, ?)",
                (delivery_id, bot_id, event, json.dumps(payload, default=str), _ts(created_at)),
            )
            self._conn.commit()
        return self.get_delivery(delivery_id)  # type: ignore[return-value]

    def get_delivery(self, delivery_id: str) -> WebhookDelivery | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM webhook_deliveries WHERE id = ?", (delivery_id,)
            ).fetchone()
        return self._delivery_from_row(row) if row else None

    def update_delivery(self, delivery_id: str, **fields: Any) -> None:
        """Update columns of a delivery row.  Datetimes are normalized."""
        if not fields:
            return
        columns = []
        values: list[Any] = []
        for key, value in fields.items():
            if isinstance(value, datetime):
                value = _ts(value)
            elif isinstance(value, DeliveryStatus):
                value = value.value
            columns.append(f"{key} = ?")
            values.append(value)
        values.append(delivery_id)
        with self._lock:
            self._conn.execute(
                f"UPDATE webhook_deliveries SET {', '.join(columns)} WHERE id = ?", values
            )
            self._conn.commit()

    def list_due_deliveries(self, now: datetime, limit: int = 50) -> list[WebhookDelivery]:
        """Pending rows whose retry time has passed (or was never set), oldest first."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM webhook_deliveries
                WHERE status = 'pending' AND (next_retry_at IS NULL OR next_retry_at <= ?)
                ORDER BY created_at ASC
                LIMIT ?
                """,
                (_ts(now), limit),
            ).fetchall()
        return [self._delivery_from_row(r) for r in rows]

    def list_deliveries(
        self,
        status: DeliveryStatus | str | None = None,
        limit: int = 100,
    ) -> list[WebhookDelivery]:
        query = "SELECT * FROM webhook_deliveries"
        params: list[Any] = []
        if status:
            query += " WHERE status = ?"
            params.append(str(status))
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._delivery_from_row(r) for r in rows]
