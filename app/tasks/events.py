import logging
from datetime import datetime, timezone

from app.celery_app import celery_app

logger = logging.getLogger(__name__)

BATCH_SIZE = 100


@celery_app.task(name="app.tasks.events.dispatch_outbox", ignore_result=True)
def dispatch_outbox() -> None:
    """Drain undispatched outbox events and hand each to its handler.

    Runs after commits that enqueue events and periodically from beat.
    A failing event is retried on later runs until it reaches the attempt cap.
    """
    from app.db import SessionLocal

    db = SessionLocal()
    try:
        _drain(db)
    except Exception as e:
        logger.exception("Failed to drain outbox: %s", e)
    finally:
        db.close()


def _claim_query(db, exclude_ids):
    """Next undispatched event, row-locked; rows held by other drains are skipped."""
    from app.config import settings
    from app.models.approval import OutboxEvent

    query = (
        db.query(OutboxEvent)
        .filter(OutboxEvent.dispatched_at.is_(None))
        .filter(OutboxEvent.attempts < settings.outbox_max_attempts)
    )
    if exclude_ids:
        query = query.filter(OutboxEvent.id.notin_(exclude_ids))
    return (
        query.order_by(OutboxEvent.created_at.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
    )


def _drain(
    db: "Session",  # type: ignore[name-defined]  # noqa: F821
    batch_size: int = BATCH_SIZE,
) -> int:
    from app import metrics
    from app.models.approval import OutboxEvent
    from app.services.approval_notifications import handle_event

    # Each commit below releases this worker's row lock, so events are
    # claimed one at a time rather than locked as a batch.
    seen = []
    dispatched = 0
    while len(seen) < batch_size:
        event = _claim_query(db, seen).first()
        if event is None:
            break
        event_id = event.id
        event_type = event.event_type
        seen.append(event_id)
        try:
            handle_event(db, event_type, dict(event.payload or {}))
        except Exception as e:
            db.rollback()
            event = db.get(OutboxEvent, event_id)
            event.attempts += 1
            event.last_error = str(e)[:2000]
            db.commit()
            metrics.outbox_events_dispatched_total.labels(event_type, "error").inc()
            logger.warning(
                "Outbox event %s (%s) failed on attempt %d: %s",
                event_id,
                event_type,
                event.attempts,
                e,
            )
            continue
        event.attempts += 1
        event.dispatched_at = datetime.now(timezone.utc)
        event.last_error = None
        db.commit()
        dispatched += 1
        metrics.outbox_events_dispatched_total.labels(event_type, "success").inc()

    if seen:
        logger.info("Dispatched %d of %d outbox events", dispatched, len(seen))
    return dispatched
