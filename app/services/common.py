import logging
import uuid
from contextlib import contextmanager

from fastapi import HTTPException
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

_DEPTH_KEY = "transaction_depth"
_AFTER_COMMIT_KEY = "after_commit_callbacks"


def coerce_uuid(value):
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def apply_ordering(query, order_by, order_dir, allowed_columns):
    if order_by not in allowed_columns:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid order_by. Allowed: {', '.join(sorted(allowed_columns))}",
        )
    column = allowed_columns[order_by]
    if order_dir == "desc":
        return query.order_by(column.desc())
    return query.order_by(column.asc())


def apply_pagination(query, limit, offset):
    return query.limit(limit).offset(offset)


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


def after_commit(db: Session, callback) -> None:
    """Run ``callback`` once the outermost ``transaction`` block commits."""
    db.info.setdefault(_AFTER_COMMIT_KEY, []).append(callback)


@contextmanager
def transaction(db: Session):
    """Atomic unit of work over ``db``.

    Nested blocks join the outermost one: only the outermost block commits,
    and an exception anywhere rolls back every write. A version mismatch
    detected at flush time surfaces as ``ConcurrencyConflict``.
    """
    depth = db.info.get(_DEPTH_KEY, 0)
    db.info[_DEPTH_KEY] = depth + 1
    try:
        yield db
        if depth == 0:
            db.commit()
    except StaleDataError as exc:
        if depth > 0:
            raise
        db.rollback()
        db.info.pop(_AFTER_COMMIT_KEY, None)
        logger.warning("Optimistic lock failure, transaction rolled back: %s", exc)
        raise ConcurrencyConflict() from exc
    except Exception:
        if depth == 0:
            db.rollback()
            db.info.pop(_AFTER_COMMIT_KEY, None)
        raise
    finally:
        db.info[_DEPTH_KEY] = depth

    if depth == 0:
        for callback in db.info.pop(_AFTER_COMMIT_KEY, []):
            try:
                callback()
            except Exception:
                logger.exception("After-commit callback %r failed", callback)
