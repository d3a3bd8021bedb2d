"""
activity/log.py -- Best-effort async service in front of ActivityStore.

Contract:
  record()          -- never raises. A logging fault is logged to observability
                       and reported as None; it never becomes the caller's
                       error. A successful login must never be demoted to a
                       failure because the audit write failed.
  record_detached() -- schedules record() as a background task and returns
                       immediately. The login flow uses this: the write is
                       sequenced after the credential is minted, but the
                       response does not wait for it.
  history()         -- plain read, errors propagate (the route maps them to 500).
  drain()           -- awaits outstanding detached writes. Called on shutdown so
                       no scheduled entry is lost when the process exits.

Retries and exactly-once:
  Transient store faults (SQLAlchemy OperationalError, e.g. "database is
  locked") are retried by tenacity with exponential backoff. Every write
  carries an event_key; if a retry collides with an entry that the failed
  attempt actually committed, the UNIQUE constraint raises IntegrityError and
  the existing entry is returned. A retried write therefore never duplicates
  and never vanishes.

Writers never coordinate with each other: each entry is independently keyed
and ordered by the store-assigned timestamp.

Layer rule: no imports from api/, web/, or auth/.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from activity.models import ActivityEntry
from activity.store import ActivityStore

logger = logging.getLogger("pagegate.activity")


class ActivityLog:
    """Append-only activity journal with best-effort writes.

    Usage:
        log = ActivityLog(ActivityStore())
        log.record_detached("uid-123", "login", event_key="login-ab12...")
        entries = await log.history("uid-123", limit=20)
        await log.drain()
    """

    def __init__(
        self,
        store: ActivityStore,
        max_attempts: int = 4,
        wait_min: float = 0.05,
        wait_max: float = 1.0,
    ) -> None:
        self._store = store
        self._max_attempts = max_attempts
        self._wait_min = wait_min
        self._wait_max = wait_max
        self._pending: set[asyncio.Task] = set()

    @property
    def store(self) -> ActivityStore:
        return self._store

    @property
    def pending(self) -> int:
        """Number of detached writes not yet finished."""
        return len(self._pending)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._wait_min, min=self._wait_min, max=self._wait_max),
            retry=retry_if_exception_type(OperationalError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def record(self, subject: str, action: str, event_key: str | None = None) -> ActivityEntry | None:
        """Append one entry. Returns the stored entry, or None if it could not be written."""
        if not subject or not action:
            logger.warning("Activity entry dropped: subject and action are required")
            return None
        key = event_key or uuid.uuid4().hex

        try:
            async for attempt in self._retrying():
                with attempt:
                    return await run_in_threadpool(self._store.append, subject, action, key)
        except IntegrityError:
            existing = await self._existing(key)
            if existing is None:
                logger.error("Activity write rejected by the store (subject=%s action=%s)", subject, action)
            return existing
        except SQLAlchemyError as exc:
            logger.error("Activity write failed (subject=%s action=%s): %s", subject, action, exc)
            return None
        except Exception:
            logger.exception("Unexpected activity write failure (subject=%s action=%s)", subject, action)
            return None
        return None

    async def _existing(self, key: str) -> ActivityEntry | None:
        try:
            return await run_in_threadpool(self._store.get_by_key, key)
        except SQLAlchemyError:
            logger.exception("Could not read back activity entry after key collision")
            return None

    def record_detached(self, subject: str, action: str, event_key: str | None = None) -> asyncio.Task:
        """Schedule record() without awaiting it. Must be called on the event loop."""
        task = asyncio.get_running_loop().create_task(self.record(subject, action, event_key))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def history(self, subject: str, limit: int = 20) -> list[ActivityEntry]:
        """Return the newest `limit` entries for subject, newest first."""
        if limit < 1:
            raise ValueError("limit must be at least 1")
        return await run_in_threadpool(self._store.history, subject, limit)
