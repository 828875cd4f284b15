"""Event ORM model and the canonical event state machine."""
import uuid
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, Date, DateTime, Integer, Boolean, JSON, ForeignKey, Enum as SAEnum
from sqlalchemy.orm import relationship

from matchmaker.database import Base


class EventStatus(str, enum.Enum):
    open = "open"
    matched = "matched"
    pending_confirmation = "pending_confirmation"
    confirmed = "confirmed"
    cancelled = "cancelled"
    expired = "expired"
    rolled_back = "rolled_back"


class DateMode(str, enum.Enum):
    consecutive = "consecutive"
    flexible = "flexible"
    within_period = "within_period"


class TimeSlotRestriction(str, enum.Enum):
    both = "both"
    daytime_only = "daytime_only"
    evening_only = "evening_only"


class ConfirmationMode(str, enum.Enum):
    creator_only = "creator_only"
    all = "all"
    majority = "majority"
    minimum_count = "minimum_count"


class ReservationStatus(str, enum.Enum):
    open = "open"
    tentative = "tentative"
    confirmed = "confirmed"
    expired = "expired"


ALLOWED_TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.open: frozenset({EventStatus.matched, EventStatus.expired, EventStatus.cancelled}),
    EventStatus.matched: frozenset({
        EventStatus.pending_confirmation,
        EventStatus.confirmed,
        EventStatus.rolled_back,
        EventStatus.expired,
        EventStatus.cancelled,
    }),
    EventStatus.pending_confirmation: frozenset({
        EventStatus.confirmed,
        EventStatus.rolled_back,
        EventStatus.expired,
        EventStatus.cancelled,
    }),
    EventStatus.confirmed: frozenset(),
    EventStatus.cancelled: frozenset(),
    EventStatus.expired: frozenset(),
    EventStatus.rolled_back: frozenset(),
}

# Statuses for which matched_slots must be non-empty
MATCHED_STATUSES = frozenset({EventStatus.matched, EventStatus.pending_confirmation, EventStatus.confirmed})


class InvalidTransitionError(ValueError):
    """Raised when a status change is not permitted by the state machine."""

    def __init__(self, source: EventStatus, target: EventStatus):
        super().__init__(f"Cannot transition event from '{source.value}' to '{target.value}'")
        self.source = source
        self.target = target


def check_transition(source: EventStatus, target: EventStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[source]:
        raise InvalidTransitionError(source, target)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Event(Base):
    __tablename__ = "events"

    event_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    creator_id = Column(String(36), ForeignKey("users.user_id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")

    # Requirements
    min_participants = Column(Integer, nullable=False, default=1)
    max_participants = Column(Integer, nullable=True)  # None = unlimited
    required_slots = Column(Integer, nullable=False, default=1)
    date_mode = Column(SAEnum(DateMode), nullable=False, default=DateMode.consecutive)
    minimum_consecutive = Column(Integer, nullable=False, default=1)
    time_slot_restriction = Column(SAEnum(TimeSlotRestriction), nullable=False, default=TimeSlotRestriction.both)
    matching_policy = Column(JSON, nullable=False, default=dict)

    # Temporal bounds
    deadline = Column(DateTime(timezone=True), nullable=True, index=True)
    period_start = Column(Date, nullable=True)
    period_end = Column(Date, nullable=True)
    deadline_warning_sent = Column(Boolean, nullable=False, default=False)

    # Confirmation policy
    require_creator_confirmation = Column(Boolean, nullable=False, default=False)
    require_participant_confirmation = Column(Boolean, nullable=False, default=False)
    confirmation_mode = Column(SAEnum(ConfirmationMode), nullable=False, default=ConfirmationMode.creator_only)
    minimum_confirmations = Column(Integer, nullable=True)
    confirmation_timeout = Column(Integer, nullable=False, default=60)  # minutes
    grace_period = Column(Integer, nullable=False, default=30)  # minutes
    confirmation_deadline = Column(DateTime(timezone=True), nullable=True)

    # Outcome
    status = Column(SAEnum(EventStatus), nullable=False, default=EventStatus.open, index=True)
    matched_slots = Column(JSON, nullable=True)  # [{"date": "YYYY-MM-DD", "time_slot": "daytime"}, ...]
    reservation_status = Column(SAEnum(ReservationStatus), nullable=False, default=ReservationStatus.open)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    participants = relationship(
        "EventParticipant",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventParticipant.joined_at",
    )

    @property
    def participant_ids(self) -> list[str]:
        """Participant ids in join order, creator first."""
        ordered = sorted(enumerate(self.participants), key=lambda pair: (pair[1].user_id != self.creator_id, pair[0]))
        return [p.user_id for _, p in ordered]
