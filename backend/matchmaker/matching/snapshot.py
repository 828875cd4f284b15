"""Read-only snapshots of events and availability handed to the decision logic.

The decision functions never touch the ORM; the engine copies what they need
into these frozen structures first, so a single evaluation cannot write
anything back by accident.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional

from matchmaker.matching.policy import MatchingPolicy
from matchmaker.matching.slots import SlotCoordinate
from matchmaker.models.availability import Availability, TimeSlot
from matchmaker.models.event import Event, DateMode, TimeSlotRestriction, EventStatus
from matchmaker.models.participant import ParticipantPriority

# user_id -> date -> slots marked available
AvailabilityMap = dict[str, dict[date, frozenset[TimeSlot]]]


@dataclass(frozen=True)
class ParticipantSnapshot:
    user_id: str
    priority: ParticipantPriority
    join_order: int


@dataclass(frozen=True)
class EventSnapshot:
    event_id: str
    name: str
    creator_id: str
    status: EventStatus
    created_at: datetime
    min_participants: int
    max_participants: Optional[int]
    required_slots: int
    date_mode: DateMode
    minimum_consecutive: int
    time_slot_restriction: TimeSlotRestriction
    period_start: Optional[date]
    period_end: Optional[date]
    deadline: Optional[datetime]
    requires_confirmation: bool
    policy: MatchingPolicy
    participants: tuple[ParticipantSnapshot, ...] = field(default_factory=tuple)
    matched_slots: tuple[SlotCoordinate, ...] = field(default_factory=tuple)
    confirmation_timeout: int = 60

    @property
    def participant_ids(self) -> list[str]:
        return [p.user_id for p in self.participants]

    @classmethod
    def from_event(cls, event: Event) -> "EventSnapshot":
        by_user = {p.user_id: p for p in event.participants}
        participants = tuple(
            ParticipantSnapshot(user_id=uid, priority=by_user[uid].priority, join_order=index)
            for index, uid in enumerate(event.participant_ids)
        )
        return cls(
            event_id=event.event_id,
            name=event.name,
            creator_id=event.creator_id,
            status=event.status,
            created_at=event.created_at,
            min_participants=event.min_participants,
            max_participants=event.max_participants,
            required_slots=event.required_slots,
            date_mode=event.date_mode,
            minimum_consecutive=event.minimum_consecutive,
            time_slot_restriction=event.time_slot_restriction,
            period_start=event.period_start,
            period_end=event.period_end,
            deadline=event.deadline,
            requires_confirmation=bool(
                event.require_creator_confirmation or event.require_participant_confirmation
            ),
            policy=MatchingPolicy.from_stored(event.matching_policy),
            participants=participants,
            matched_slots=tuple(SlotCoordinate.from_dict(s) for s in (event.matched_slots or [])),
            confirmation_timeout=event.confirmation_timeout,
        )


def build_availability_map(records: Iterable[Availability]) -> AvailabilityMap:
    """Index availability rows by user and date.

    Dates without a row are simply absent from the map, which the
    intersection treats as unavailable.
    """
    result: AvailabilityMap = {}
    for record in records:
        result.setdefault(record.user_id, {})[record.date] = frozenset(record.available_slots())
    return result
