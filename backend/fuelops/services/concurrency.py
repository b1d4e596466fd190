# Overview: Transaction, locking and retry helpers shared by the services.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE: hold the selected rows until the transaction ends.

    NOTE: SQLite has no row locks and drops the clause. There the partial
    unique index on open shifts and the tank version checks serialize writers.
    """
    return query.with_for_update()


@contextmanager
def atomic(*, commit: bool = True):
    """
    Single transaction boundary for a multi-row mutation.

    Everything flushed inside the block commits together (commit=True) or is
    left pending for an outer owner such as the idempotency guard
    (commit=False). Any exception rolls the whole session back.
    """
    try:
        yield db.session
        if commit:
            db.session.commit()
        else:
            db.session.flush()
    except Exception:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a transactional unit again when the database reports a conflict.

    OperationalError covers deadlocks, serialization failures and a locked
    SQLite file; StaleDataError is a Shift version_id mismatch. func starts
    its own transaction and re-reads what it guards, so a rerun is safe.
    The final failure propagates unchanged.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            current_app.logger.warning(
                "Retrying after %s (attempt %s of %s)", type(exc).__name__, attempt, attempts,
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))
