"""EventConfirmation ORM model: a creator or participant sign-off on a matched event."""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint, Enum as SAEnum

from matchmaker.database import Base


class ConfirmationType(str, enum.Enum):
    creator = "creator"
    participant = "participant"


class EventConfirmation(Base):
    __tablename__ = "event_confirmations"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", "confirmation_type", name="uq_confirmation_event_user_type"),
    )

    confirmation_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(36), ForeignKey("events.event_id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.user_id"), nullable=False)
    confirmation_type = Column(SAEnum(ConfirmationType), nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
