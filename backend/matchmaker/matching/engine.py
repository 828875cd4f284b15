"""Matching engine: evaluates events against the stores and applies transitions.

Responsibilities:
- single, batch and global matching runs, and the deadline sweep
- confirmation bookkeeping for pending events
- revalidation and rollback of stale matches
- aggregate statistics

Expected outcomes (not matched, lost a race, already matched) come back as
``MatchingResult`` values.  Unexpected failures while handling one event are
logged, the session is rolled back and the event gets a generic failure
result; the rest of a batch carries on.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

import pytz
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from matchmaker.config import settings
from matchmaker.matching.confirmation import (
    confirmation_cutoff,
    is_confirmed,
    required_participant_confirmations,
)
from matchmaker.matching.conflicts import Candidate, resolve_conflicts
from matchmaker.matching.decision import MatchDecision, MatchOption, decide
from matchmaker.matching.intersection import (
    availability_participants,
    candidate_window,
    mutually_available,
    select_counted_participants,
)
from matchmaker.matching.slots import SlotCoordinate
from matchmaker.matching.snapshot import AvailabilityMap, EventSnapshot
from matchmaker.models.confirmation import ConfirmationType
from matchmaker.models.event import Event, EventStatus, MATCHED_STATUSES
from matchmaker.models.state_history import SYSTEM_ACTOR
from matchmaker.notifications import LoggingNotifier, Notifier
from matchmaker.services import event_service
from matchmaker.services.availability_service import load_availability_map

logger = logging.getLogger(__name__)

INTERNAL_ERROR_REASON = "Matching failed due to an internal error"
EVENT_NOT_FOUND_REASON = "Event not found"


@dataclass
class MatchingResult:
    event_id: str
    is_matched: bool
    reason: str
    matched_slots: list[SlotCoordinate] = field(default_factory=list)
    status: Optional[EventStatus] = None
    event_name: str = ""
    partial: bool = False
    suggestions: list[MatchOption] = field(default_factory=list)
    failed: bool = False


@dataclass
class BatchResult:
    results: list[MatchingResult]

    @property
    def total_checked(self) -> int:
        return len(self.results)

    @property
    def matched(self) -> int:
        return sum(1 for r in self.results if r.is_matched and not r.failed)

    @property
    def pending(self) -> int:
        return sum(1 for r in self.results if not r.is_matched and not r.failed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)


@dataclass
class ConfirmationResult:
    event_id: str
    status: EventStatus
    confirmed: bool
    participant_confirmations: int
    required_participant_confirmations: int
    creator_confirmed: bool


class MatchingEngine:
    """Runs matching against one database session.

    ``clock`` returns the current UTC instant; tests pin it.  "Today" for the
    candidate window is that instant seen in ``SCHEDULING_TIMEZONE``.
    """

    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
        horizon_weeks: Optional[int] = None,
        scheduling_timezone: Optional[str] = None,
    ):
        self.db = db
        self.notifier = notifier or LoggingNotifier()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.horizon_weeks = horizon_weeks or settings.MATCHING_HORIZON_WEEKS
        self.tz = pytz.timezone(scheduling_timezone or settings.SCHEDULING_TIMEZONE)

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self.now().astimezone(self.tz).date()

    # ------------------------------------------------------------------
    # Evaluation helpers
    # ------------------------------------------------------------------

    def _load(self, snapshot: EventSnapshot, today: date) -> AvailabilityMap:
        start, end = candidate_window(snapshot, today, self.horizon_weeks)
        return load_availability_map(self.db, snapshot.participant_ids, start, end)

    def _evaluate(
        self,
        event: Event,
        today: date,
        excluded: Iterable[SlotCoordinate] = (),
    ) -> tuple[EventSnapshot, AvailabilityMap, MatchDecision]:
        snapshot = EventSnapshot.from_event(event)
        availability = self._load(snapshot, today)
        return snapshot, availability, decide(snapshot, availability, today, self.horizon_weeks, excluded)

    def _failure(self, event_id: str) -> MatchingResult:
        """Convert the exception being handled into a generic per-event failure."""
        self.db.rollback()
        logger.warning("Matching failed for event %s", event_id, exc_info=True)
        return MatchingResult(event_id=event_id, is_matched=False, reason=INTERNAL_ERROR_REASON, failed=True)

    def _current_status(self, event_id: str) -> Optional[EventStatus]:
        event = event_service.find_event(self.db, event_id)
        return event.status if event else None

    @staticmethod
    def _result(snapshot: EventSnapshot, decision: MatchDecision, event_status: EventStatus) -> MatchingResult:
        return MatchingResult(
            event_id=snapshot.event_id,
            event_name=snapshot.name,
            is_matched=decision.is_matched,
            reason=decision.reason,
            matched_slots=list(decision.matched_slots),
            status=event_status,
            partial=decision.partial,
            suggestions=list(decision.suggestions),
        )

    @staticmethod
    def _stored_result(event: Event, reason: Optional[str] = None) -> MatchingResult:
        snapshot = EventSnapshot.from_event(event)
        return MatchingResult(
            event_id=event.event_id,
            event_name=event.name,
            is_matched=event.status in MATCHED_STATUSES,
            reason=reason or f"Event is already {event.status.value}",
            matched_slots=list(snapshot.matched_slots),
            status=event.status,
        )

    def _deadline_passed(self, snapshot: EventSnapshot) -> bool:
        deadline = event_service.as_utc(snapshot.deadline)
        return deadline is not None and deadline <= self.now()

    def _apply_match(self, snapshot: EventSnapshot, decision: MatchDecision, triggered_by: str) -> MatchingResult:
        """open -> matched, then -> pending_confirmation when sign-off is required."""
        result = self._result(snapshot, decision, EventStatus.matched)
        if not event_service.update_event_status(
            self.db, snapshot.event_id, EventStatus.matched, EventStatus.open,
            matched_slots=decision.matched_slots, reason=decision.reason, triggered_by=triggered_by,
        ):
            result.reason = f"{decision.reason} (status update failed: event changed concurrently)"
            result.status = self._current_status(snapshot.event_id)
            return result
        self.notifier.matched(snapshot.event_id, snapshot.name, list(decision.matched_slots))

        if snapshot.requires_confirmation:
            confirmation_deadline = self.now() + timedelta(minutes=snapshot.confirmation_timeout)
            if event_service.update_event_status(
                self.db, snapshot.event_id, EventStatus.pending_confirmation, EventStatus.matched,
                reason="Awaiting confirmation", triggered_by=SYSTEM_ACTOR,
                confirmation_deadline=confirmation_deadline,
            ):
                result.status = EventStatus.pending_confirmation
                self.notifier.confirmation_required(snapshot.event_id, snapshot.name, confirmation_deadline)
            else:
                result.status = self._current_status(snapshot.event_id)
        return result

    def _expire(self, snapshot: EventSnapshot, reason: str) -> MatchingResult:
        result = MatchingResult(
            event_id=snapshot.event_id,
            event_name=snapshot.name,
            is_matched=False,
            reason=reason,
            status=EventStatus.expired,
        )
        if not event_service.update_event_status(
            self.db, snapshot.event_id, EventStatus.expired, EventStatus.open, reason=reason,
        ):
            result.reason = f"{reason} (status update failed: event changed concurrently)"
            result.status = self._current_status(snapshot.event_id)
        return result

    def _settle_unmatched(self, snapshot: EventSnapshot, decision: MatchDecision) -> MatchingResult:
        if self._deadline_passed(snapshot):
            return self._expire(snapshot, decision.reason)
        return self._result(snapshot, decision, EventStatus.open)

    # ------------------------------------------------------------------
    # Matching runs
    # ------------------------------------------------------------------

    def check_event_matching(self, event_id: str, triggered_by: str = SYSTEM_ACTOR) -> MatchingResult:
        """Evaluate one event and apply the resulting transition."""
        try:
            event = event_service.find_event(self.db, event_id)
            if event is None:
                return MatchingResult(event_id=event_id, is_matched=False, reason=EVENT_NOT_FOUND_REASON)
            if event.status != EventStatus.open:
                return self._stored_result(event)

            snapshot, _, decision = self._evaluate(event, self.today())
            if not decision.is_matched:
                return self._settle_unmatched(snapshot, decision)
            if snapshot.policy.suggest_multiple_options:
                return self._result(snapshot, decision, EventStatus.open)
            return self._apply_match(snapshot, decision, triggered_by)
        except Exception:
            return self._failure(event_id)

    def check_all_events(self) -> BatchResult:
        """Evaluate every open event independently, in creation order."""
        event_ids = [e.event_id for e in event_service.get_open_events(self.db)]
        results = [self.check_event_matching(event_id) for event_id in event_ids]
        batch = BatchResult(results)
        logger.info(
            "Batch matching: %d checked, %d matched, %d pending, %d failed",
            batch.total_checked, batch.matched, batch.pending, batch.failed,
        )
        return batch

    def global_matching(self) -> BatchResult:
        """Batch matching with cross-event double-booking resolution.

        Phase 1 evaluates every open event on its own.  Phase 2 hands the
        matched candidates to ``resolve_conflicts`` and commits the outcome.
        Phase 1 reads only and could run events concurrently; it is serial here
        because all work shares one session.
        """
        today = self.today()
        events = event_service.get_open_events(self.db)
        order = [e.event_id for e in events]
        results: dict[str, MatchingResult] = {}
        candidates: list[Candidate] = []
        availability_by_event: dict[str, AvailabilityMap] = {}

        for event_id in order:
            try:
                event = event_service.find_event(self.db, event_id)
                snapshot, availability, decision = self._evaluate(event, today)
            except Exception:
                results[event_id] = self._failure(event_id)
                continue
            if decision.is_matched and not snapshot.policy.suggest_multiple_options:
                candidates.append(Candidate(snapshot, decision))
                availability_by_event[event_id] = availability
            elif decision.is_matched:
                results[event_id] = self._result(snapshot, decision, EventStatus.open)
            else:
                try:
                    results[event_id] = self._settle_unmatched(snapshot, decision)
                except Exception:
                    results[event_id] = self._failure(event_id)

        def reevaluate(snapshot: EventSnapshot, claimed: frozenset[SlotCoordinate]) -> MatchDecision:
            return decide(snapshot, availability_by_event[snapshot.event_id], today, self.horizon_weeks, claimed)

        resolutions = resolve_conflicts(candidates, reevaluate)
        for resolution in resolutions:
            event_id = resolution.event.event_id
            if resolution.reevaluated:
                logger.info(
                    "Event %s lost %d contested slot(s); re-evaluated once",
                    event_id, len(resolution.contested),
                )
            try:
                if resolution.decision.is_matched:
                    results[event_id] = self._apply_match(resolution.event, resolution.decision, SYSTEM_ACTOR)
                else:
                    results[event_id] = self._settle_unmatched(resolution.event, resolution.decision)
            except Exception:
                results[event_id] = self._failure(event_id)

        batch = BatchResult([results[event_id] for event_id in order])
        logger.info(
            "Global matching: %d checked, %d matched, %d conflicts re-evaluated, %d failed",
            batch.total_checked, batch.matched, sum(1 for r in resolutions if r.reevaluated), batch.failed,
        )
        return batch

    def check_deadlines(self, now: Optional[datetime] = None) -> BatchResult:
        """Settle every open event whose deadline has passed: matched or expired.

        Suggestion-mode events commit their first-ranked option here.
        """
        now = now or self.now()
        today = self.today()
        results = []
        for event in event_service.get_events_with_deadline_passed(self.db, now):
            event_id = event.event_id
            try:
                snapshot, _, decision = self._evaluate(event, today)
                if decision.is_matched:
                    results.append(self._apply_match(snapshot, decision, SYSTEM_ACTOR))
                else:
                    results.append(self._expire(snapshot, decision.reason))
            except Exception:
                results.append(self._failure(event_id))
        batch = BatchResult(results)
        logger.info("Deadline sweep: %d processed, %d matched, %d failed", batch.total_checked, batch.matched, batch.failed)
        return batch

    def notify_deadlines_approaching(self, now: Optional[datetime] = None) -> list[str]:
        now = now or self.now()
        until = now + timedelta(hours=settings.DEADLINE_WARNING_HOURS)
        notified = []
        for event in event_service.get_events_with_deadline_between(self.db, now, until):
            # another sweep may have claimed the warning first
            if not event_service.mark_deadline_warned(self.db, event.event_id):
                continue
            self.notifier.deadline_approaching(event.event_id, event.name, event_service.as_utc(event.deadline))
            notified.append(event.event_id)
        return notified

    # ------------------------------------------------------------------
    # Caller choice, confirmation, revalidation
    # ------------------------------------------------------------------

    def select_suggestion(self, event_id: str, index: int, actor_user_id: str) -> MatchingResult:
        """Commit one of the ranked suggestions for an open event."""
        event = event_service.get_event(self.db, event_id)
        if event.creator_id != actor_user_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the event creator may choose a slot option")
        if event.status != EventStatus.open:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Event is not open")

        snapshot, _, decision = self._evaluate(event, self.today())
        if not decision.suggestions:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No slot options available")
        if not 0 <= index < len(decision.suggestions):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Slot option index out of range")

        option = decision.suggestions[index]
        chosen = MatchDecision(
            is_matched=True,
            reason=f"Matched on slot option {index + 1} of {len(decision.suggestions)}",
            matched_slots=list(option.slots),
            counted_participants=decision.counted_participants,
        )
        return self._apply_match(snapshot, chosen, actor_user_id)

    def confirm_event(self, event_id: str, user_id: str) -> ConfirmationResult:
        event = event_service.get_event(self.db, event_id)
        if event.status != EventStatus.pending_confirmation:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Event is not awaiting confirmation")
        if user_id not in event.participant_ids:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only participants may confirm this event")

        deadline = event_service.as_utc(event.confirmation_deadline)
        if deadline is not None and self.now() > confirmation_cutoff(deadline, event.grace_period):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Confirmation deadline passed")

        snapshot = EventSnapshot.from_event(event)
        confirmation_type = ConfirmationType.creator if user_id == event.creator_id else ConfirmationType.participant
        event_service.record_confirmation(self.db, event_id, user_id, confirmation_type)

        eligible = [p.user_id for p in select_counted_participants(snapshot) if p.user_id != snapshot.creator_id]
        confirmations = event_service.get_confirmations(self.db, event_id)
        required = 0
        if event.require_participant_confirmation:
            required = required_participant_confirmations(
                event.confirmation_mode, len(eligible), event.minimum_confirmations
            )
        participant_count = len({
            c.user_id for c in confirmations
            if c.confirmation_type == ConfirmationType.participant and c.user_id in eligible
        })
        creator_confirmed = any(c.confirmation_type == ConfirmationType.creator for c in confirmations)

        current = EventStatus.pending_confirmation
        if is_confirmed(
            creator_id=snapshot.creator_id,
            participant_ids=eligible,
            confirmations=confirmations,
            require_creator=event.require_creator_confirmation,
            require_participants=event.require_participant_confirmation,
            mode=event.confirmation_mode,
            minimum_confirmations=event.minimum_confirmations,
        ):
            if event_service.update_event_status(
                self.db, event_id, EventStatus.confirmed, EventStatus.pending_confirmation,
                reason="Confirmation threshold reached", triggered_by=user_id,
            ):
                current = EventStatus.confirmed
            else:
                current = self._current_status(event_id)

        return ConfirmationResult(
            event_id=event_id,
            status=current,
            confirmed=current == EventStatus.confirmed,
            participant_confirmations=participant_count,
            required_participant_confirmations=required,
            creator_confirmed=creator_confirmed,
        )

    def expire_pending_confirmations(self, now: Optional[datetime] = None) -> list[MatchingResult]:
        """Expire pending events whose confirmation deadline plus grace period has elapsed."""
        now = now or self.now()
        results = []
        for event in event_service.get_pending_confirmation_events(self.db):
            event_id = event.event_id
            try:
                deadline = event_service.as_utc(event.confirmation_deadline)
                if deadline is None or now <= confirmation_cutoff(deadline, event.grace_period):
                    continue
                reason = "Confirmation deadline passed"
                ok = event_service.update_event_status(
                    self.db, event_id, EventStatus.expired, EventStatus.pending_confirmation, reason=reason,
                )
                results.append(MatchingResult(
                    event_id=event_id,
                    event_name=event.name,
                    is_matched=False,
                    reason=reason if ok else f"{reason} (status update failed: event changed concurrently)",
                    status=EventStatus.expired if ok else self._current_status(event_id),
                ))
            except Exception:
                results.append(self._failure(event_id))
        return results

    def revalidate_event(self, event_id: str) -> MatchingResult:
        """Roll back a matched or pending event whose slots are no longer free for everyone."""
        try:
            event = event_service.find_event(self.db, event_id)
            if event is None:
                return MatchingResult(event_id=event_id, is_matched=False, reason=EVENT_NOT_FOUND_REASON)
            if event.status not in (EventStatus.matched, EventStatus.pending_confirmation):
                return self._stored_result(event)

            snapshot = EventSnapshot.from_event(event)
            slots = list(snapshot.matched_slots)
            if not slots:
                return self.rollback_event(event_id, "Matched event has no recorded slots")
            user_ids = availability_participants(snapshot, select_counted_participants(snapshot))
            availability = load_availability_map(
                self.db, user_ids, min(s.date for s in slots), max(s.date for s in slots)
            )
            if mutually_available(slots, user_ids, availability) == slots:
                return self._stored_result(event, reason="Matched slots are still available")
            return self.rollback_event(event_id, "Matched slots are no longer available for all participants")
        except Exception:
            return self._failure(event_id)

    def rollback_event(self, event_id: str, reason: str, triggered_by: str = SYSTEM_ACTOR) -> MatchingResult:
        event = event_service.find_event(self.db, event_id)
        if event is None:
            return MatchingResult(event_id=event_id, is_matched=False, reason=EVENT_NOT_FOUND_REASON)
        if event.status not in (EventStatus.matched, EventStatus.pending_confirmation):
            return self._stored_result(event, reason=f"Event is {event.status.value}; nothing to roll back")

        source = event.status
        name = event.name
        if event_service.update_event_status(
            self.db, event_id, EventStatus.rolled_back, source, reason=reason, triggered_by=triggered_by,
        ):
            return MatchingResult(
                event_id=event_id, event_name=name, is_matched=False, reason=reason, status=EventStatus.rolled_back,
            )
        return MatchingResult(
            event_id=event_id,
            event_name=name,
            is_matched=False,
            reason=f"{reason} (status update failed: event changed concurrently)",
            status=self._current_status(event_id),
        )

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, int]:
        counts = event_service.get_status_counts(self.db)
        return {"total": sum(counts.values()), **counts}
