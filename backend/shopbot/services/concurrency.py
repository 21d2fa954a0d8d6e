# Overview: Row locking and retry helpers for stock, order and payment updates.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Lock the selected product/order/payment rows until the transaction ends.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; PostgreSQL/MySQL honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, label: str = "update", attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func(); on a lock error or a version_id conflict (two admins editing
    the same order, or a checkout racing a stock adjustment), roll back and
    try again with exponential backoff.

    func must do its own commit so that each attempt is one transaction.
    label names the operation in the retry log, e.g. "order 12 -> preparing".
    Any other exception propagates after a rollback.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as e:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.error("%s failed after %d attempts: %s", label, attempts, e)
                raise
            current_app.logger.warning("%s conflicted (attempt %d/%d), retrying", label, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    return None
