"""
activity/store.py -- SQLAlchemy Core persistence layer for the activity log.

Pattern: Repository + Data Mapper.
ActivityStore is the repository; _row_to_entry is the mapper. Service and route
code never touches SQL directly.

Append-only: there is no update or delete method. Retention is an operational
concern handled outside the gateway.

Ordering: recorded_at is assigned here, at write time, never by the caller.
Reads order by (recorded_at DESC, id DESC) so two entries written within the
same microsecond still come back in insertion order.

Idempotency: event_key is UNIQUE. A retried append with the same key raises
IntegrityError, which activity/log.py treats as "already recorded".

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: activity/pagegate_activity.db unless ACTIVITY_DB_URL says otherwise.

Layer rule: no imports from api/, web/, or auth/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, create_engine, event, func, select
from sqlalchemy.engine import Engine

from activity.models import ActivityEntry

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'pagegate_activity.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_activity = Table(
    "activity_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("subject", String(128), nullable=False),
    Column("action", String(200), nullable=False),
    Column("recorded_at", String(32), nullable=False),  # ISO 8601 UTC, microseconds
    Column("event_key", String(64), nullable=False, unique=True),
)

Index("ix_activity_subject_recorded", _activity.c.subject, _activity.c.recorded_at)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so history reads never block behind log writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _row_to_entry(row) -> ActivityEntry:
    return ActivityEntry(
        id=row.id,
        subject=row.subject,
        action=row.action,
        recorded_at=row.recorded_at,
        event_key=row.event_key,
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ActivityStore:
    """Repository for ActivityEntry records.

    Usage:
        store = ActivityStore()
        store.append("uid-123", "login", event_key="login-ab12...")
        entries = store.history("uid-123", limit=20)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def append(self, subject: str, action: str, event_key: str) -> ActivityEntry:
        """Insert one entry stamped with the current time and return it.

        Raises sqlalchemy.exc.IntegrityError if event_key already exists.
        """
        recorded_at = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _activity.insert().values(
                    subject=subject,
                    action=action,
                    recorded_at=recorded_at,
                    event_key=event_key,
                )
            )
            conn.commit()
            entry_id = result.inserted_primary_key[0]
        return ActivityEntry(
            id=entry_id,
            subject=subject,
            action=action,
            recorded_at=recorded_at,
            event_key=event_key,
        )

    def get_by_key(self, event_key: str) -> ActivityEntry | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(_activity).where(_activity.c.event_key == event_key)).first()
        return _row_to_entry(row) if row else None

    def history(self, subject: str, limit: int) -> list[ActivityEntry]:
        """Return the newest `limit` entries for subject, newest first."""
        query = (
            select(_activity)
            .where(_activity.c.subject == subject)
            .order_by(_activity.c.recorded_at.desc(), _activity.c.id.desc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_entry(r) for r in rows]

    def count(self, subject: str, action: str | None = None) -> int:
        query = select(func.count()).select_from(_activity).where(_activity.c.subject == subject)
        if action is not None:
            query = query.where(_activity.c.action == action)
        with self.engine.connect() as conn:
            result = conn.execute(query).scalar()
        return result or 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()
