from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ..models import BookingEvent

logger = logging.getLogger(__name__)


def log_event(session: Session, reservation_id: Optional[str], event_type: str, payload: Dict[str, Any]) -> None:
    """
    Append-only audit log of booking actions.
    Stored as JSON string for flexibility. A failed audit write is logged and
    does not undo the booking action it describes.
    """
    ev = BookingEvent(
        id="evt_" + uuid.uuid4().hex[:12],
        reservation_id=reservation_id,
        event_type=event_type,
        payload_json=json.dumps(payload, ensure_ascii=False, default=str),
    )
    try:
        session.add(ev)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to record %s audit event for %s", event_type, reservation_id)


def events_for(session: Session, reservation_id: str) -> List[BookingEvent]:
    stmt = select(BookingEvent).where(BookingEvent.reservation_id == reservation_id).order_by(BookingEvent.created_at)
    return list(session.exec(stmt).all())
