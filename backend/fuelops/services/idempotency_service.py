# Overview: Claim-then-execute-then-store guard for client idempotency keys.

"""
Idempotency Guard

PROTOCOL (per operation + key):
1. CLAIM: insert an IN_PROGRESS row and commit. The unique constraint on
   (operation, idempotency_key) makes the insert the atomic claim; a plain
   read-then-write check would let two racing requests both execute.
2. EXECUTE: the claim winner runs the operation. The operation flushes but
   does not commit.
3. STORE: the response is written on the claim row in the SAME transaction
   as the operation's own writes, then committed. Either both the effect and
   its stored response exist, or neither does.

Losers never execute. They replay the stored response once the row is
COMPLETED, wait (bounded) while it is IN_PROGRESS, and re-try the claim if
the winner failed and released it. Replays skip every business guard: a
replayed close must not fail with ShiftNotOpen just because the first call
closed the shift.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Callable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import IdempotencyInProgress, IdempotencyKeyReused, ValidationError
from ..models import IdempotencyRecord
from ..models.system import IDEMPOTENCY_IN_PROGRESS, IDEMPOTENCY_COMPLETED
from ..time_utils import utcnow

MAX_KEY_LENGTH = 255


def execute(
    operation: str,
    key: str | None,
    fn: Callable[[], dict],
    *,
    resource_id: int | str | None = None,
) -> dict:
    """
    Run fn at most once per (operation, key) and return its JSON-able result.

    Without a key fn runs normally and its work is committed.

    Raises:
        IdempotencyKeyReused: key already used for a different resource
        IdempotencyInProgress: winner still running after IDEMPOTENCY_WAIT_SECONDS
    """
    if not key:
        result = fn()
        db.session.commit()
        return result

    key = key.strip()
    if not key or len(key) > MAX_KEY_LENGTH:
        raise ValidationError(f"Idempotency-Key must be 1-{MAX_KEY_LENGTH} characters")
    resource = str(resource_id) if resource_id is not None else None

    wait_seconds = current_app.config.get("IDEMPOTENCY_WAIT_SECONDS", 5)
    deadline = time.monotonic() + wait_seconds
    delay = 0.05

    while True:
        claim_id = _claim(operation, key, resource)
        if claim_id is not None:
            return _run_claimed(claim_id, fn)

        existing = _find(operation, key)
        if existing is not None:
            if existing.resource_id != resource:
                raise IdempotencyKeyReused(
                    "Idempotency-Key was already used for a different resource",
                    details={"operation": operation, "resource_id": existing.resource_id},
                )
            if existing.status == IDEMPOTENCY_COMPLETED:
                return existing.response_json

        if time.monotonic() >= deadline:
            raise IdempotencyInProgress(
                "A request with this Idempotency-Key is still being processed",
                details={"operation": operation},
            )
        time.sleep(delay)
        delay = min(delay * 2, 0.5)


def _claim(operation: str, key: str, resource: str | None) -> int | None:
    record = IdempotencyRecord(
        operation=operation,
        idempotency_key=key,
        resource_id=resource,
        status=IDEMPOTENCY_IN_PROGRESS,
    )
    db.session.add(record)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return None
    return record.id


def _find(operation: str, key: str) -> IdempotencyRecord | None:
    # End the current transaction so the read sees the winner's commit
    db.session.rollback()
    return db.session.query(IdempotencyRecord).filter_by(
        operation=operation,
        idempotency_key=key,
    ).first()


def _run_claimed(claim_id: int, fn: Callable[[], dict]) -> dict:
    try:
        result = fn()
        record = db.session.get(IdempotencyRecord, claim_id)
        record.status = IDEMPOTENCY_COMPLETED
        record.response_json = result
        record.completed_at = utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        _release(claim_id)
        raise
    return result


def _release(claim_id: int) -> None:
    """Drop a failed claim so the client can retry with the same key."""
    db.session.query(IdempotencyRecord).filter_by(
        id=claim_id,
        status=IDEMPOTENCY_IN_PROGRESS,
    ).delete(synchronize_session=False)
    db.session.commit()


def purge_stale_claims(older_than: timedelta) -> int:
    """
    Delete IN_PROGRESS claims abandoned by a crashed worker.

    Completed records are kept: they are the replay answers.
    """
    cutoff = utcnow() - older_than
    deleted = db.session.query(IdempotencyRecord).filter(
        IdempotencyRecord.status == IDEMPOTENCY_IN_PROGRESS,
        IdempotencyRecord.created_at < cutoff,
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
