"""Event store: creation, participation, queries and guarded status writes.

Every status change goes through ``update_event_status``, which
- validates the change against the state machine,
- applies it only if the row is still in the expected source status,
- bumps ``version`` and appends an ``EventStateHistory`` row.

A writer that loses the race gets ``False`` back and nothing is retried.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

from fastapi import HTTPException, status
from sqlalchemy import func, null, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from matchmaker.matching.slots import SlotCoordinate
from matchmaker.models.confirmation import ConfirmationType, EventConfirmation
from matchmaker.models.event import (
    ConfirmationMode,
    DateMode,
    Event,
    EventStatus,
    MATCHED_STATUSES,
    TimeSlotRestriction,
    check_transition,
)
from matchmaker.models.participant import EventParticipant, ParticipantPriority
from matchmaker.models.state_history import EventStateHistory, SYSTEM_ACTOR
from matchmaker.models.user import User

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = frozenset({EventStatus.open, EventStatus.matched, EventStatus.pending_confirmation})


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise to aware UTC; SQLite hands back naive datetimes and everything stored is UTC."""
    if value is None:
        return value
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc)
    return value.replace(tzinfo=timezone.utc)


def _record_history(
    db: Session,
    event_id: str,
    previous_status: Optional[EventStatus],
    new_status: EventStatus,
    triggered_by: str = SYSTEM_ACTOR,
    reason: str = "",
    additional_data: Optional[dict[str, Any]] = None,
) -> None:
    db.add(EventStateHistory(
        event_id=event_id,
        previous_status=previous_status.value if previous_status else None,
        new_status=new_status.value,
        triggered_by=triggered_by,
        reason=reason[:500],
        additional_data=additional_data,
    ))


def create_event(
    db: Session,
    creator_id: str,
    name: str,
    description: str = "",
    min_participants: int = 1,
    max_participants: Optional[int] = None,
    required_slots: int = 1,
    date_mode: DateMode = DateMode.consecutive,
    minimum_consecutive: int = 1,
    time_slot_restriction: TimeSlotRestriction = TimeSlotRestriction.both,
    deadline: Optional[datetime] = None,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
    matching_policy: Optional[dict[str, Any]] = None,
    require_creator_confirmation: bool = False,
    require_participant_confirmation: bool = False,
    confirmation_mode: ConfirmationMode = ConfirmationMode.creator_only,
    minimum_confirmations: Optional[int] = None,
    confirmation_timeout: int = 60,
    grace_period: int = 30,
    creator_priority: ParticipantPriority = ParticipantPriority.medium,
) -> Event:
    """Create an open event; the creator becomes its first participant."""
    creator = db.query(User).filter(User.user_id == creator_id).first()
    if not creator:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Creator not found")

    event = Event(
        creator_id=creator_id,
        name=name,
        description=description,
        min_participants=min_participants,
        max_participants=max_participants,
        required_slots=required_slots,
        date_mode=date_mode,
        minimum_consecutive=minimum_consecutive,
        time_slot_restriction=time_slot_restriction,
        deadline=as_utc(deadline),
        period_start=period_start,
        period_end=period_end,
        matching_policy=matching_policy or {},
        require_creator_confirmation=require_creator_confirmation,
        require_participant_confirmation=require_participant_confirmation,
        confirmation_mode=confirmation_mode,
        minimum_confirmations=minimum_confirmations,
        confirmation_timeout=confirmation_timeout,
        grace_period=grace_period,
        status=EventStatus.open,
        version=1,
    )
    db.add(event)
    db.flush()

    db.add(EventParticipant(event_id=event.event_id, user_id=creator_id, priority=creator_priority))
    _record_history(db, event.event_id, None, EventStatus.open, triggered_by=creator_id, reason="Event created")
    db.commit()
    db.refresh(event)
    logger.info("Created event '%s' (%s) by %s", name, event.event_id, creator_id)
    return event


def find_event(db: Session, event_id: str) -> Optional[Event]:
    return db.query(Event).filter(Event.event_id == event_id).first()


def get_event(db: Session, event_id: str) -> Event:
    event = find_event(db, event_id)
    if not event:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return event


def get_open_events(db: Session) -> list[Event]:
    """Open events in creation order."""
    return (
        db.query(Event)
        .filter(Event.status == EventStatus.open)
        .order_by(Event.created_at, Event.event_id)
        .all()
    )


def get_events_with_deadline_passed(db: Session, now: datetime) -> list[Event]:
    return (
        db.query(Event)
        .filter(Event.status == EventStatus.open, Event.deadline.isnot(None), Event.deadline <= now)
        .order_by(Event.deadline, Event.created_at)
        .all()
    )


def get_events_with_deadline_between(db: Session, start: datetime, end: datetime) -> list[Event]:
    """Open, not yet warned events whose deadline falls in (start, end]."""
    return (
        db.query(Event)
        .filter(
            Event.status == EventStatus.open,
            Event.deadline_warning_sent.is_(False),
            Event.deadline > start,
            Event.deadline <= end,
        )
        .order_by(Event.deadline)
        .all()
    )


def mark_deadline_warned(db: Session, event_id: str) -> bool:
    """Claim the single deadline warning for an event; False if already claimed."""
    claimed = (
        db.query(Event)
        .filter(Event.event_id == event_id, Event.deadline_warning_sent.is_(False))
        .update({Event.deadline_warning_sent: True}, synchronize_session=False)
    )
    db.commit()
    return claimed == 1


def get_pending_confirmation_events(db: Session) -> list[Event]:
    return (
        db.query(Event)
        .filter(Event.status == EventStatus.pending_confirmation)
        .order_by(Event.confirmation_deadline, Event.created_at)
        .all()
    )


def get_events_by_creator(db: Session, user_id: str) -> list[Event]:
    return db.query(Event).filter(Event.creator_id == user_id).order_by(Event.created_at).all()


def get_events_by_participant(db: Session, user_id: str) -> list[Event]:
    """Events the user takes part in, including ones they created."""
    return (
        db.query(Event)
        .join(EventParticipant, EventParticipant.event_id == Event.event_id)
        .filter(EventParticipant.user_id == user_id)
        .order_by(Event.created_at)
        .all()
    )


def get_matched_events_for_user(db: Session, user_id: str) -> list[Event]:
    return (
        db.query(Event)
        .join(EventParticipant, EventParticipant.event_id == Event.event_id)
        .filter(EventParticipant.user_id == user_id, Event.status.in_(list(MATCHED_STATUSES)))
        .order_by(Event.created_at)
        .all()
    )


def list_events(
    db: Session,
    event_status: Optional[EventStatus] = None,
    creator_id: Optional[str] = None,
    participant_id: Optional[str] = None,
    joinable_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> list[Event]:
    """Events matching every given filter, in creation order.

    ``joinable_by`` keeps open events the user neither created nor joined
    whose deadline (if any) is still ahead.
    """
    query = db.query(Event)
    if joinable_by:
        now = now or datetime.now(timezone.utc)
        query = query.filter(
            Event.status == EventStatus.open,
            Event.creator_id != joinable_by,
            or_(Event.deadline.is_(None), Event.deadline > now),
            ~Event.participants.any(EventParticipant.user_id == joinable_by),
        )
    if participant_id:
        query = query.join(EventParticipant, EventParticipant.event_id == Event.event_id).filter(
            EventParticipant.user_id == participant_id
        )
    if event_status:
        query = query.filter(Event.status == event_status)
    if creator_id:
        query = query.filter(Event.creator_id == creator_id)
    return query.order_by(Event.created_at).all()


def get_status_counts(db: Session) -> dict[str, int]:
    """Number of events per status; every status is present."""
    counts = {s.value: 0 for s in EventStatus}
    for event_status, count in db.query(Event.status, func.count(Event.event_id)).group_by(Event.status):
        counts[EventStatus(event_status).value] = count
    return counts


def get_user_event_stats(db: Session, user_id: str) -> dict[str, int]:
    """Dashboard counters for one user.

    Each dataset is fetched on its own.  A failed fetch contributes zeros;
    only when both the created and the participating fetch fail is the whole
    call an error.
    """
    results: dict[str, Optional[list[Event]]] = {}
    for key, fetch in (
        ("created", get_events_by_creator),
        ("participating", get_events_by_participant),
        ("matched", get_matched_events_for_user),
    ):
        try:
            results[key] = fetch(db, user_id)
        except SQLAlchemyError:
            db.rollback()
            logger.warning("Stats query '%s' failed for user %s", key, user_id, exc_info=True)
            results[key] = None

    if results["created"] is None and results["participating"] is None:
        logger.error("All stats queries failed for user %s", user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load event statistics",
        )

    created = results["created"] or []
    participating = [e for e in results["participating"] or [] if e.creator_id != user_id]
    matched = results["matched"] or []
    return {
        "created_events": len(created),
        "participating_events": len(participating),
        "matched_events": len(matched),
        "pending_events": sum(1 for e in created + participating if e.status == EventStatus.open),
    }


def add_participant(
    db: Session,
    event_id: str,
    user_id: str,
    priority: ParticipantPriority = ParticipantPriority.medium,
    now: Optional[datetime] = None,
) -> Event:
    now = now or datetime.now(timezone.utc)
    event = get_event(db, event_id)

    if not db.query(User).filter(User.user_id == user_id).first():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if event.status != EventStatus.open:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Event is not open for joining")

    deadline = as_utc(event.deadline)
    if deadline is not None and deadline <= now:
        update_event_status(
            db, event_id, EventStatus.expired, EventStatus.open,
            reason="Deadline passed before matching", triggered_by=SYSTEM_ACTOR,
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Event deadline has passed")

    if event.creator_id == user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Event creator cannot join their own event")
    existing = (
        db.query(EventParticipant)
        .filter(EventParticipant.event_id == event_id, EventParticipant.user_id == user_id)
        .first()
    )
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Already joined this event")

    db.add(EventParticipant(event_id=event_id, user_id=user_id, priority=priority, joined_at=now))
    db.commit()
    db.refresh(event)
    logger.info("User %s joined event %s with %s priority", user_id, event_id, priority.value)
    return event


def remove_participant(db: Session, event_id: str, user_id: str) -> Event:
    event = get_event(db, event_id)
    if event.status != EventStatus.open:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Can only leave an open event")
    if event.creator_id == user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Event creator cannot leave their own event")

    participant = (
        db.query(EventParticipant)
        .filter(EventParticipant.event_id == event_id, EventParticipant.user_id == user_id)
        .first()
    )
    if not participant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not a participant of this event")

    db.delete(participant)
    db.commit()
    db.refresh(event)
    logger.info("User %s left event %s", user_id, event_id)
    return event


EDITABLE_FIELDS = (
    "name",
    "description",
    "min_participants",
    "max_participants",
    "required_slots",
    "minimum_consecutive",
    "deadline",
    "period_start",
    "period_end",
)
NULLABLE_FIELDS = frozenset({"max_participants", "deadline", "period_start", "period_end"})


def _requirement_errors(event: Event, merged: dict[str, Any], now: datetime) -> Optional[str]:
    """First rule the edited event would break, checked on stored and new values together."""
    deadline = as_utc(merged["deadline"])
    if deadline is not None and deadline <= now:
        return "deadline must be in the future"
    if merged["max_participants"] is not None and merged["max_participants"] < merged["min_participants"]:
        return "max_participants must be >= min_participants"
    if merged["minimum_consecutive"] > merged["required_slots"]:
        return "minimum_consecutive cannot exceed required_slots"
    start, end = merged["period_start"], merged["period_end"]
    if event.date_mode == DateMode.within_period and (start is None or end is None):
        return "within_period events need period_start and period_end"
    if start is not None and end is not None and start >= end:
        return "period_start must be before period_end"
    minimum_slots = (event.matching_policy or {}).get("minimum_time_slots")
    if minimum_slots is not None and minimum_slots > merged["required_slots"]:
        return "matching_policy.minimum_time_slots cannot exceed required_slots"
    return None


def update_event(
    db: Session,
    event_id: str,
    actor_user_id: str,
    version: int,
    updates: dict[str, Any],
    now: Optional[datetime] = None,
) -> Event:
    """Creator edit of an open event, guarded by ``version``.

    Only ``EDITABLE_FIELDS`` change; status, policy and matching fields are
    left to the engine.  A new deadline re-arms the deadline warning.
    """
    now = now or datetime.now(timezone.utc)
    event = get_event(db, event_id)
    if event.creator_id != actor_user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the event creator may edit this event")
    if event.status != EventStatus.open:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only open events can be edited")
    if event.version != version:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Version mismatch: expected {event.version}, got {version}. Re-fetch and retry.",
        )

    changes = {field: value for field, value in updates.items() if field in EDITABLE_FIELDS}
    for field, value in changes.items():
        if value is None and field not in NULLABLE_FIELDS:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{field} cannot be null")
    merged = {field: changes.get(field, getattr(event, field)) for field in EDITABLE_FIELDS}
    error = _requirement_errors(event, merged, now)
    if error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error)

    values: dict[Any, Any] = {getattr(Event, field): value for field, value in changes.items()}
    if "deadline" in changes:
        values[Event.deadline] = as_utc(changes["deadline"])
        values[Event.deadline_warning_sent] = False
    values[Event.version] = Event.version + 1
    values[Event.updated_at] = now

    updated = (
        db.query(Event)
        .filter(Event.event_id == event_id, Event.version == version, Event.status == EventStatus.open)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Event changed concurrently. Re-fetch and retry.",
        )
    db.commit()
    db.expire_all()
    logger.info("Updated event %s (%s) to version %d", event_id, ", ".join(sorted(changes)) or "no fields", version + 1)
    return get_event(db, event_id)


def update_event_status(
    db: Session,
    event_id: str,
    new_status: EventStatus,
    expected_status: EventStatus,
    matched_slots: Optional[Iterable[SlotCoordinate]] = None,
    reason: str = "",
    triggered_by: str = SYSTEM_ACTOR,
    confirmation_deadline: Optional[datetime] = None,
) -> bool:
    """Move an event from ``expected_status`` to ``new_status`` if it is still there.

    Raises ``InvalidTransitionError`` for a change the state machine forbids.
    Returns False, writing nothing, when another writer got there first.
    """
    check_transition(expected_status, new_status)

    values: dict[Any, Any] = {
        Event.status: new_status,
        Event.version: Event.version + 1,
        Event.updated_at: datetime.now(timezone.utc),
    }
    slots_payload = None
    if new_status not in MATCHED_STATUSES:
        # matched_slots is non-empty exactly while the event holds a match
        values[Event.matched_slots] = null()
    elif matched_slots is not None:
        slots_payload = [s.to_dict() for s in matched_slots]
        values[Event.matched_slots] = slots_payload
    if confirmation_deadline is not None:
        values[Event.confirmation_deadline] = confirmation_deadline

    updated = (
        db.query(Event)
        .filter(Event.event_id == event_id, Event.status == expected_status)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        logger.warning(
            "Status update %s -> %s lost for event %s (no longer %s)",
            expected_status.value, new_status.value, event_id, expected_status.value,
        )
        return False

    _record_history(
        db, event_id, expected_status, new_status,
        triggered_by=triggered_by,
        reason=reason,
        additional_data={"matched_slots": slots_payload} if slots_payload is not None else None,
    )
    db.commit()
    db.expire_all()
    logger.info("Event %s: %s -> %s (%s)", event_id, expected_status.value, new_status.value, reason)
    return True


def cancel_event(db: Session, event_id: str, actor_user_id: str, reason: Optional[str] = None) -> Event:
    """Creator-only cancellation from any non-terminal status."""
    event = get_event(db, event_id)
    if event.creator_id != actor_user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the event creator may cancel this event",
        )
    if event.status not in CANCELLABLE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot cancel an event that is {event.status.value}",
        )

    if not update_event_status(
        db, event_id, EventStatus.cancelled, event.status,
        reason=reason or "Cancelled by creator", triggered_by=actor_user_id,
    ):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Event status changed concurrently. Re-fetch and retry.",
        )
    return get_event(db, event_id)


def record_confirmation(
    db: Session,
    event_id: str,
    user_id: str,
    confirmation_type: ConfirmationType,
) -> EventConfirmation:
    """Store a confirmation; confirming twice returns the existing row."""
    existing = (
        db.query(EventConfirmation)
        .filter(
            EventConfirmation.event_id == event_id,
            EventConfirmation.user_id == user_id,
            EventConfirmation.confirmation_type == confirmation_type,
        )
        .first()
    )
    if existing:
        return existing

    confirmation = EventConfirmation(event_id=event_id, user_id=user_id, confirmation_type=confirmation_type)
    db.add(confirmation)
    db.commit()
    db.refresh(confirmation)
    logger.info("Recorded %s confirmation by %s for event %s", confirmation_type.value, user_id, event_id)
    return confirmation


def get_confirmations(db: Session, event_id: str) -> list[EventConfirmation]:
    return (
        db.query(EventConfirmation)
        .filter(EventConfirmation.event_id == event_id)
        .order_by(EventConfirmation.confirmed_at)
        .all()
    )


def get_state_history(db: Session, event_id: str) -> list[EventStateHistory]:
    return (
        db.query(EventStateHistory)
        .filter(EventStateHistory.event_id == event_id)
        .order_by(EventStateHistory.created_at)
        .all()
    )
