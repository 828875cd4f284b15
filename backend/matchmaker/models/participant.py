"""EventParticipant ORM model: the join relation carrying join-time priority."""
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, Enum as SAEnum
from sqlalchemy.orm import relationship

from matchmaker.database import Base


class ParticipantPriority(str, enum.Enum):
    high = "high"
    medium = "medium"
    low = "low"


PRIORITY_WEIGHTS = {
    ParticipantPriority.high: 3,
    ParticipantPriority.medium: 2,
    ParticipantPriority.low: 1,
}


class EventParticipant(Base):
    __tablename__ = "event_participants"

    event_id = Column(String(36), ForeignKey("events.event_id"), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.user_id"), primary_key=True)
    priority = Column(SAEnum(ParticipantPriority), nullable=False, default=ParticipantPriority.medium)
    joined_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    event = relationship("Event", back_populates="participants")
