"""Commit helper shared by the domain services"""

import logging

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import InvalidStateError

logger = logging.getLogger(__name__)

# PostgreSQL serialization failure, deadlock and lock timeout
LOCK_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}


def is_lock_conflict(error: OperationalError) -> bool:
    """True when the database refused a write because another transaction holds the row or file lock"""
    if getattr(error.orig, "pgcode", None) in LOCK_CONFLICT_SQLSTATES:
        return True
    return "database is locked" in str(error.orig).lower()


def commit_or_conflict(db: Session, attempted: str, current_state: str) -> None:
    """
    Commit the session, turning a lost concurrent update into InvalidStateError.

    A version mismatch, a duplicate milestone sequence or a lock conflict all
    mean another request changed the same entity first; the caller should reload.
    Other operational errors propagate unchanged.
    """
    try:
        db.commit()
    except (StaleDataError, IntegrityError, OperationalError) as e:
        db.rollback()
        if isinstance(e, OperationalError) and not is_lock_conflict(e):
            raise
        logger.warning(f"⚠️ Concurrent modification while trying to {attempted}: {e}")
        raise InvalidStateError(
            attempted,
            current_state,
            message=f"Cannot {attempted}: the record was modified by another request, reload and retry",
        ) from e
