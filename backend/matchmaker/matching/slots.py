"""Slot arithmetic over (date, time slot) coordinates.

Pure functions, no database access.  A coordinate is ordered by date first and
then by slot order (daytime before evening).  Two coordinates are *adjacent*
when the second immediately follows the first:

- same date, daytime -> evening
- next calendar day, same slot (e.g. daytime -> daytime when evenings are filtered out)
- next calendar day, evening -> daytime (overnight)
"""
from datetime import date, timedelta
from typing import Iterable, NamedTuple, Optional

from matchmaker.models.availability import TimeSlot
from matchmaker.models.event import TimeSlotRestriction

SLOT_ORDER = {TimeSlot.daytime: 0, TimeSlot.evening: 1}

_RESTRICTION_SLOTS = {
    TimeSlotRestriction.both: frozenset({TimeSlot.daytime, TimeSlot.evening}),
    TimeSlotRestriction.daytime_only: frozenset({TimeSlot.daytime}),
    TimeSlotRestriction.evening_only: frozenset({TimeSlot.evening}),
}


class SlotCoordinate(NamedTuple):
    date: date
    time_slot: TimeSlot

    def sort_key(self) -> tuple[date, int]:
        return self.date, SLOT_ORDER[self.time_slot]

    def to_dict(self) -> dict[str, str]:
        return {"date": self.date.isoformat(), "time_slot": self.time_slot.value}

    @classmethod
    def from_dict(cls, data: dict) -> "SlotCoordinate":
        return cls(date.fromisoformat(data["date"]), TimeSlot(data["time_slot"]))


def sort_slots(slots: Iterable[SlotCoordinate]) -> list[SlotCoordinate]:
    return sorted(set(slots), key=SlotCoordinate.sort_key)


def is_adjacent(a: SlotCoordinate, b: SlotCoordinate) -> bool:
    """True if ``b`` directly follows ``a``."""
    if a.date == b.date:
        return a.time_slot == TimeSlot.daytime and b.time_slot == TimeSlot.evening
    if b.date - a.date == timedelta(days=1):
        if a.time_slot == b.time_slot:
            return True
        return a.time_slot == TimeSlot.evening and b.time_slot == TimeSlot.daytime
    return False


def split_runs(sorted_slots: list[SlotCoordinate]) -> list[list[SlotCoordinate]]:
    """Split a sorted sequence into maximal runs of adjacent coordinates."""
    runs: list[list[SlotCoordinate]] = []
    for slot in sorted_slots:
        if runs and is_adjacent(runs[-1][-1], slot):
            runs[-1].append(slot)
        else:
            runs.append([slot])
    return runs


def longest_consecutive_run(sorted_slots: list[SlotCoordinate]) -> int:
    if not sorted_slots:
        return 0
    return max(len(run) for run in split_runs(sorted_slots))


def is_contiguous(slots: list[SlotCoordinate]) -> bool:
    """True if every neighbouring pair is adjacent."""
    return all(is_adjacent(a, b) for a, b in zip(slots, slots[1:]))


def allowed_slots(restriction: TimeSlotRestriction) -> frozenset[TimeSlot]:
    return _RESTRICTION_SLOTS[restriction]


def restrict_by_time_slot_policy(
    slots: Iterable[SlotCoordinate],
    restriction: TimeSlotRestriction,
) -> list[SlotCoordinate]:
    """Drop coordinates whose slot the restriction excludes; order is preserved."""
    permitted = allowed_slots(restriction)
    return [s for s in slots if s.time_slot in permitted]


def date_range(start: date, end: date) -> list[date]:
    """Inclusive list of calendar dates from start to end."""
    if end < start:
        return []
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def candidate_coordinates(
    start: date,
    end: date,
    restriction: TimeSlotRestriction = TimeSlotRestriction.both,
    excluded: Optional[Iterable[SlotCoordinate]] = None,
) -> list[SlotCoordinate]:
    """Every (date, slot) in [start, end] permitted by the restriction, sorted."""
    skip = set(excluded or ())
    coords = [SlotCoordinate(day, slot) for day in date_range(start, end) for slot in (TimeSlot.daytime, TimeSlot.evening)]
    return [c for c in restrict_by_time_slot_policy(coords, restriction) if c not in skip]
