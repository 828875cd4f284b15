"""Cross-event double-booking resolution for a global matching run.

Candidates are processed strictly in priority order: highest aggregate
participant priority first, then earliest creation.  A candidate whose
slots intersect slots already claimed is re-evaluated exactly once with the
claimed coordinates removed; the second result is final even if it would
now collide with nothing, or match nothing at all.  Cascades (a demoted
event freeing a slot someone else wanted) are not revisited.
"""
from dataclasses import dataclass
from typing import Callable, Iterable

from matchmaker.matching.decision import MatchDecision
from matchmaker.matching.intersection import aggregate_priority, select_counted_participants
from matchmaker.matching.slots import SlotCoordinate
from matchmaker.matching.snapshot import EventSnapshot

Reevaluate = Callable[[EventSnapshot, frozenset[SlotCoordinate]], MatchDecision]


@dataclass
class Candidate:
    event: EventSnapshot
    decision: MatchDecision

    @property
    def priority(self) -> int:
        return aggregate_priority(select_counted_participants(self.event))

    def rank_key(self):
        return (-self.priority, self.event.created_at, self.event.event_id)


@dataclass
class Resolution:
    event: EventSnapshot
    decision: MatchDecision
    contested: frozenset[SlotCoordinate] = frozenset()
    reevaluated: bool = False


def rank_candidates(candidates: Iterable[Candidate]) -> list[Candidate]:
    return sorted(candidates, key=Candidate.rank_key)


def resolve_conflicts(candidates: Iterable[Candidate], reevaluate: Reevaluate) -> list[Resolution]:
    """Assign slots to matched candidates without double-booking, in rank order."""
    claimed: set[SlotCoordinate] = set()
    resolutions = []
    for candidate in rank_candidates(candidates):
        decision = candidate.decision
        contested = frozenset(set(decision.matched_slots) & claimed)
        reevaluated = False

        if contested:
            retry = reevaluate(candidate.event, frozenset(claimed))
            reevaluated = True
            if retry.is_matched:
                decision = retry
            else:
                decision = MatchDecision(
                    is_matched=False,
                    reason=f"Lost contested slots to a higher-priority event; {retry.reason}",
                    counted_participants=retry.counted_participants,
                )

        if decision.is_matched:
            claimed.update(decision.matched_slots)
        resolutions.append(Resolution(candidate.event, decision, contested, reevaluated))
    return resolutions
