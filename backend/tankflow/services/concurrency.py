# Overview: Service-layer helpers for locking, retries, and unit-of-work boundaries.

from __future__ import annotations

import threading
import time
from typing import Callable, Hashable, Iterable, TypeVar

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError

T = TypeVar("T")

DEFAULT_LINE_LOCK_TIMEOUT_SECONDS = 10.0

_HELD_LOCKS_KEY = "tankflow.held_line_locks"
_registry_guard = threading.Lock()
_line_locks: dict[Hashable, threading.Lock] = {}


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Line locks (below) cover the single-process SQLite case.
    """
    return query.with_for_update()


def run_with_retry(session, func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.1) -> T:
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def commit_with_retry(session, *, attempts: int = 3, backoff_base: float = 0.1) -> None:
    """Commit the given session with retry handling."""
    def _op():
        session.commit()
    return run_with_retry(session, _op, attempts=attempts, backoff_base=backoff_base)


def run_unit_of_work(session, func: Callable[[], T], *, commit: bool = True) -> T:
    """
    Run `func` as one unit of work.

    commit=True: func runs under retry and the session commits at the end.
    Any failure rolls the whole unit back before re-raising.

    commit=False: func joins the caller's open transaction; the caller owns
    commit and rollback (used when a workflow transition composes reservation
    and ledger operations).
    """
    if not commit:
        return func()

    def _op():
        result = func()
        session.commit()
        return result

    try:
        return run_with_retry(session, _op)
    except Exception:
        session.rollback()
        raise


# ---------------------------------------------------------------------------
# Per-inventory-line locks
#
# A line is (assignment_id, item_type, item_id). Locks are held by a session
# until its outermost transaction ends (commit, rollback or close), so a
# check-then-insert stays serialized up to the commit.
# ---------------------------------------------------------------------------

def line_key(assignment_id: int, item_type: str, item_id: int) -> tuple:
    return (int(assignment_id), str(item_type), int(item_id))


def _lock_for(key: Hashable) -> threading.Lock:
    with _registry_guard:
        lock = _line_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _line_locks[key] = lock
        return lock


def acquire_line_locks(
    session,
    keys: Iterable[tuple],
    *,
    timeout: float = DEFAULT_LINE_LOCK_TIMEOUT_SECONDS,
) -> None:
    """
    Acquire the in-process locks for `keys` on behalf of `session`.

    Keys are taken in sorted order. Keys the session already holds are
    skipped. Raises ConflictError if a line stays busy past `timeout`.
    """
    held = session.info.setdefault(_HELD_LOCKS_KEY, {})
    for key in sorted(set(keys)):
        if key in held:
            continue
        lock = _lock_for(key)
        if not lock.acquire(timeout=timeout):
            raise ConflictError(
                f"Inventory line busy: assignment {key[0]}, {key[1]} {key[2]}. Try again"
            )
        held[key] = lock


def release_line_locks(session) -> None:
    held = session.info.pop(_HELD_LOCKS_KEY, None)
    if not held:
        return
    for lock in held.values():
        lock.release()


def held_line_locks(session) -> set:
    return set(session.info.get(_HELD_LOCKS_KEY, {}))


@event.listens_for(Session, "after_transaction_end")
def _release_line_locks_on_transaction_end(session, transaction):
    if transaction.parent is None:
        release_line_locks(session)
