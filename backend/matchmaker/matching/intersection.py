"""Counted-participant selection and availability intersection."""
import random
from datetime import date, timedelta
from typing import Iterable

from matchmaker.matching.policy import ParticipantSelection
from matchmaker.matching.slots import SlotCoordinate, candidate_coordinates
from matchmaker.matching.snapshot import AvailabilityMap, EventSnapshot, ParticipantSnapshot
from matchmaker.models.event import DateMode
from matchmaker.models.participant import PRIORITY_WEIGHTS


def select_counted_participants(event: EventSnapshot) -> list[ParticipantSnapshot]:
    """Participants whose availability decides the match.

    Everyone counts unless ``max_participants`` is exceeded; then the creator
    plus the best ``max_participants - 1`` others under the policy's
    selection strategy.  The result keeps join order.
    """
    participants = list(event.participants)
    cap = event.max_participants
    if cap is None or len(participants) <= cap:
        return participants

    creator = [p for p in participants if p.user_id == event.creator_id]
    others = [p for p in participants if p.user_id != event.creator_id]
    strategy = event.policy.participant_selection

    if strategy == ParticipantSelection.first_come:
        ranked = others
    elif strategy == ParticipantSelection.lottery:
        ranked = list(others)
        random.Random(event.policy.lottery_seed).shuffle(ranked)
    else:
        ranked = sorted(others, key=lambda p: (-PRIORITY_WEIGHTS[p.priority], p.join_order))

    chosen = creator + ranked[: max(cap - len(creator), 0)]
    return sorted(chosen, key=lambda p: p.join_order)


def availability_participants(event: EventSnapshot, counted: list[ParticipantSnapshot]) -> list[str]:
    """User ids that must all be free on a slot for it to be usable."""
    if event.policy.require_all_participants:
        return event.participant_ids
    return [p.user_id for p in counted]


def aggregate_priority(participants: Iterable[ParticipantSnapshot]) -> int:
    return sum(PRIORITY_WEIGHTS[p.priority] for p in participants)


def candidate_window(event: EventSnapshot, today: date, horizon_weeks: int) -> tuple[date, date]:
    """Inclusive date bounds an event may be scheduled in.

    Bounded by the event's period for ``within_period``, otherwise by the
    scheduling horizon.  Never starts before ``today``.
    """
    if event.date_mode == DateMode.within_period:
        return max(event.period_start, today), event.period_end
    return today, today + timedelta(weeks=horizon_weeks)


def is_available(availability: AvailabilityMap, user_id: str, coord: SlotCoordinate) -> bool:
    """Fail-closed lookup: a missing record or missing flag means busy."""
    return coord.time_slot in availability.get(user_id, {}).get(coord.date, frozenset())


def mutually_available(
    coordinates: Iterable[SlotCoordinate],
    user_ids: list[str],
    availability: AvailabilityMap,
) -> list[SlotCoordinate]:
    """Coordinates on which every user is available, in input order."""
    if not user_ids:
        return []
    return [c for c in coordinates if all(is_available(availability, uid, c) for uid in user_ids)]


def event_candidates(
    event: EventSnapshot,
    today: date,
    horizon_weeks: int,
    excluded: Iterable[SlotCoordinate] = (),
) -> list[SlotCoordinate]:
    start, end = candidate_window(event, today, horizon_weeks)
    return candidate_coordinates(start, end, event.time_slot_restriction, excluded)
