"""
activity/models.py -- Domain dataclass for activity log entries.

Pure data container, zero logic. The store assigns recorded_at and id; callers
never supply a timestamp.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ActivityEntry:
    """One user action, e.g. a login.

    subject is the partition key (the provider's user ID). recorded_at is an
    ISO 8601 UTC timestamp with microseconds, assigned by the store at write
    time; the fixed width makes string order equal chronological order.
    event_key is the idempotency key: a retried write with the same key is
    the same entry.
    """

    subject: str
    action: str
    recorded_at: str
    event_key: str
    id: int | None = None
