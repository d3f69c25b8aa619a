"""
Audit sink for lifecycle and extraction events.

Recording is fire-and-forget from the pipeline's point of view: a sink
that fails is logged and never fails the operation that emitted the event.
"""

import logging
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.orm import Session, sessionmaker

from ..models_db import AuditEvent

logger = logging.getLogger(__name__)


# Event actions
PROCESSING_STARTED = "processing_started"
PROCESSING_COMPLETED = "processing_completed"
PROCESSING_FAILED = "processing_failed"
PROCESSING_CANCELLED = "processing_cancelled"
VALUE_UPDATED = "value_updated"


@runtime_checkable
class AuditSink(Protocol):
    def record(self, entity_id: str, action: str, details: dict[str, Any]) -> None:
        ...


class DatabaseAuditSink:
    """Stores audit events in the `audit_events` table."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def record(self, entity_id: str, action: str, details: dict[str, Any]) -> None:
        db = self.session_factory()
        try:
            db.add(AuditEvent(entity_id=entity_id, action=action, details=details))
            db.commit()
        finally:
            db.close()

    def events_for(self, entity_id: str) -> list[AuditEvent]:
        """All events recorded for `entity_id`, oldest first."""
        db = self.session_factory()
        try:
            return (
                db.query(AuditEvent)
                .filter(AuditEvent.entity_id == entity_id)
                .order_by(AuditEvent.created_at, AuditEvent.id)
                .all()
            )
        finally:
            db.close()


def record_event(sink: AuditSink | None, entity_id: str, action: str, details: dict[str, Any]) -> None:
    """Record an event, logging and swallowing any sink failure."""
    if sink is None:
        return
    try:
        sink.record(entity_id, action, details)
    except Exception:
        logger.exception("Failed to record audit event '%s' for %s", action, entity_id)
