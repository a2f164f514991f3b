# Overview: Database concurrency helpers for cultivation rows (row locks, retry on stale versions).

"""
Batches, lots and sites carry a version_id column (optimistic locking).
Two writers racing on the same row make the loser's commit raise
StaleDataError; run_with_retry rolls back and re-runs the whole unit of
work so it re-reads the row.

Registry calls never go inside a retried unit: the registry is called at
most once per logical item.
"""

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


log = logging.getLogger(__name__)

RETRYABLE_DB_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """SELECT ... FOR UPDATE. SQLite ignores it; version_id still guards the row."""
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, sleep=time.sleep):
    """
    Run func(), retrying on lock and stale-version failures.

    func must be a complete unit of work (read, modify, commit) because the
    session is rolled back between attempts.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_DB_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            log.warning("Concurrent update (%s), attempt %d of %d", type(exc).__name__, attempt, attempts)
            sleep(backoff_base * (2 ** (attempt - 1)))
