"""Availability ORM model: one row per user per calendar date."""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Date, Boolean, DateTime, ForeignKey, UniqueConstraint

from matchmaker.database import Base


class TimeSlot(str, enum.Enum):
    daytime = "daytime"
    evening = "evening"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Availability(Base):
    __tablename__ = "availability"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_availability_user_date"),)

    availability_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.user_id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    daytime = Column(Boolean, nullable=False, default=False)
    evening = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def available_slots(self) -> set[TimeSlot]:
        """Slots flagged available on this date."""
        slots = set()
        if self.daytime:
            slots.add(TimeSlot.daytime)
        if self.evening:
            slots.add(TimeSlot.evening)
        return slots
