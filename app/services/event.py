import enum
import logging
import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.approval import OutboxEvent

logger = logging.getLogger(__name__)


class EventType(enum.Enum):
    approval_request_created = "approval.request_created"
    approval_decision_made = "approval.decision_made"
    share_created = "share.created"


def _jsonable(value):
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    return value


def enqueue_event(db: Session, event_type: EventType, payload: dict) -> OutboxEvent:
    """Stage an event in the outbox as part of the caller's transaction.

    Nothing leaves the process until the transaction commits and the
    dispatcher drains the row.
    """
    event = OutboxEvent(
        event_type=event_type.value,
        payload={key: _jsonable(value) for key, value in payload.items()},
    )
    db.add(event)
    logger.debug("Enqueued outbox event %s", event_type.value)
    return event


def dispatch_after_commit() -> None:
    """Fire-and-forget request to drain the outbox.

    Never raises: a lost call is picked up by the periodic drain.
    """
    try:
        from app.tasks.events import dispatch_outbox

        dispatch_outbox.delay()
    except Exception as e:
        logger.exception("Failed to queue outbox dispatch: %s", e)
