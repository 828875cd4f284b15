"""Matching decision for a single event.

Given an event snapshot and its participants' availability, pick the slots the
event would occupy.  Selection rules per date mode:

- consecutive: the earliest window of ``required_slots`` adjacent coordinates.
- flexible: the chronologically earliest ``required_slots`` coordinates; when
  ``minimum_consecutive`` > 1 the selection must contain a run of that length,
  otherwise it is rebuilt around the earliest run that is long enough.
- within_period: flexible selection restricted to the event's period.

Every candidate selection is ranked by earliest start, then longest run, then
lexicographic date order; the committed selection is always the first-ranked
one, so repeated evaluation of the same snapshot gives the same answer.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from matchmaker.matching.intersection import (
    availability_participants,
    event_candidates,
    mutually_available,
    select_counted_participants,
)
from matchmaker.matching.slots import SlotCoordinate, longest_consecutive_run, sort_slots, split_runs
from matchmaker.matching.snapshot import AvailabilityMap, EventSnapshot
from matchmaker.models.event import DateMode

SUCCESS_REASON = "Successfully matched"


@dataclass(frozen=True)
class MatchOption:
    slots: tuple[SlotCoordinate, ...]
    longest_run: int

    def rank_key(self):
        return (
            self.slots[0].sort_key(),
            -self.longest_run,
            tuple(s.sort_key() for s in self.slots),
        )


@dataclass
class MatchDecision:
    is_matched: bool
    reason: str
    matched_slots: list[SlotCoordinate] = field(default_factory=list)
    counted_participants: list[str] = field(default_factory=list)
    partial: bool = False
    suggestions: list[MatchOption] = field(default_factory=list)


def _option(slots: Iterable[SlotCoordinate]) -> MatchOption:
    ordered = sort_slots(slots)
    return MatchOption(slots=tuple(ordered), longest_run=longest_consecutive_run(ordered))


def _rank(options: Iterable[MatchOption]) -> list[MatchOption]:
    unique = {o.slots: o for o in options}
    return sorted(unique.values(), key=MatchOption.rank_key)


def consecutive_options(available: list[SlotCoordinate], required: int) -> list[MatchOption]:
    """Every window of ``required`` adjacent coordinates, ranked."""
    options = []
    for run in split_runs(available):
        for start in range(len(run) - required + 1):
            options.append(_option(run[start:start + required]))
    return _rank(options)


def flexible_options(
    available: list[SlotCoordinate],
    required: int,
    minimum_consecutive: int = 1,
) -> list[MatchOption]:
    """Selections of ``required`` coordinates honouring the minimum run length, ranked.

    When the earliest selection already satisfies the run requirement it is
    ranked first.  Otherwise each run of at least ``minimum_consecutive``
    coordinates is taken as an anchor and topped up with the earliest
    remaining coordinates.
    """
    if len(available) < required:
        return []

    windows = [_option(available[i:i + required]) for i in range(len(available) - required + 1)]
    satisfying = [w for w in windows if w.longest_run >= minimum_consecutive]
    if windows[0].longest_run >= minimum_consecutive:
        return [windows[0]] + _rank(satisfying[1:])

    anchored = []
    for run in split_runs(available):
        if len(run) < minimum_consecutive:
            continue
        anchor = run[: min(len(run), required)]
        rest = [s for s in available if s not in anchor][: required - len(anchor)]
        anchored.append(_option(anchor + rest))
    return _rank(anchored + satisfying)


def _options_for(event: EventSnapshot, available: list[SlotCoordinate]) -> list[MatchOption]:
    if event.date_mode == DateMode.consecutive:
        return consecutive_options(available, event.required_slots)
    return flexible_options(available, event.required_slots, event.minimum_consecutive)


def _failure_reason(event: EventSnapshot, available: list[SlotCoordinate]) -> str:
    required = event.required_slots
    longest = longest_consecutive_run(available)
    if len(available) >= required and longest < event.minimum_consecutive:
        return (
            f"Not matched: minimum consecutive requirement not met, no run of "
            f"{event.minimum_consecutive} slots in common availability"
        )
    if event.date_mode == DateMode.consecutive:
        return (
            f"Not matched: insufficient consecutive availability, longest common run is "
            f"{longest} of {required} required slots"
        )
    if event.date_mode == DateMode.within_period:
        return (
            f"Not matched: no sufficient slots within the specified period, "
            f"{len(available)} of {required} required slots available"
        )
    return f"Not matched: insufficient common availability, {len(available)} of {required} required slots available"


def _partial_selection(event: EventSnapshot, available: list[SlotCoordinate]) -> list[SlotCoordinate]:
    """Largest usable selection smaller than the requirement."""
    if event.date_mode == DateMode.consecutive:
        runs = split_runs(available)
        if not runs:
            return []
        longest = max(len(r) for r in runs)
        return next(r for r in runs if len(r) == longest)
    selection = available[: event.required_slots]
    if longest_consecutive_run(selection) < min(event.minimum_consecutive, len(selection) or 1):
        return []
    return selection


def decide(
    event: EventSnapshot,
    availability: AvailabilityMap,
    today: date,
    horizon_weeks: int,
    excluded: Iterable[SlotCoordinate] = (),
) -> MatchDecision:
    """Evaluate one event against its participants' availability.

    ``excluded`` removes coordinates from consideration (used when a slot was
    lost to a higher-priority event).  Pure: reads only its arguments.
    """
    counted = select_counted_participants(event)
    counted_ids = [p.user_id for p in counted]

    if len(counted) < event.min_participants:
        return MatchDecision(
            is_matched=False,
            reason=(
                f"Not enough participants: minimum participants not met "
                f"({len(counted)} of {event.min_participants})"
            ),
            counted_participants=counted_ids,
        )

    candidates = event_candidates(event, today, horizon_weeks, excluded)
    available = mutually_available(candidates, availability_participants(event, counted), availability)

    options = _options_for(event, available)
    if options:
        suggestions = options[: event.policy.max_suggestions] if event.policy.suggest_multiple_options else []
        return MatchDecision(
            is_matched=True,
            reason=SUCCESS_REASON,
            matched_slots=list(options[0].slots),
            counted_participants=counted_ids,
            suggestions=suggestions,
        )

    reason = _failure_reason(event, available)
    if event.policy.allow_partial_matching:
        minimum = event.policy.effective_minimum_slots(event.required_slots)
        partial = _partial_selection(event, available)
        if partial and len(partial) >= minimum:
            return MatchDecision(
                is_matched=True,
                reason=(
                    f"Partially matched: {len(partial)} of {event.required_slots} "
                    f"required slots (minimum time slots {minimum})"
                ),
                matched_slots=list(partial),
                counted_participants=counted_ids,
                partial=True,
            )
        reason = f"{reason}; below minimum time slots ({len(partial)} of {minimum})"

    return MatchDecision(is_matched=False, reason=reason, counted_participants=counted_ids)
