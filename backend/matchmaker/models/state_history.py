"""EventStateHistory ORM model: append-only ledger of status transitions."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, JSON

from matchmaker.database import Base

SYSTEM_ACTOR = "system"


class EventStateHistory(Base):
    __tablename__ = "event_state_history"

    history_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(36), ForeignKey("events.event_id"), nullable=False, index=True)
    previous_status = Column(String(32), nullable=True)  # None for the creation row
    new_status = Column(String(32), nullable=False)
    triggered_by = Column(String(36), nullable=False, default=SYSTEM_ACTOR)
    reason = Column(String(500), nullable=False, default="")
    additional_data = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
