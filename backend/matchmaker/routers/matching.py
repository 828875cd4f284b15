"""Matching API routes: thin wrappers over MatchingEngine for schedulers and clients."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from matchmaker.config import settings
from matchmaker.database import get_db
from matchmaker.matching.engine import EVENT_NOT_FOUND_REASON, BatchResult, MatchingEngine, MatchingResult
from matchmaker.schemas.matching import (
    BatchResultOut,
    BatchSummary,
    DeadlineCheckOut,
    EngineStats,
    MatchingResultOut,
    SuggestionOut,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def get_engine(db: Session = Depends(get_db)) -> MatchingEngine:
    return MatchingEngine(db)


def to_result_out(result: MatchingResult) -> MatchingResultOut:
    return MatchingResultOut(
        event_id=result.event_id,
        event_name=result.event_name,
        is_matched=result.is_matched,
        reason=result.reason,
        matched_slots=[s.to_dict() for s in result.matched_slots],
        status=result.status,
        partial=result.partial,
        suggestions=[
            SuggestionOut(slots=[s.to_dict() for s in option.slots], longest_run=option.longest_run)
            for option in result.suggestions
        ],
        failed=result.failed,
    )


def _batch_out(message: str, batch: BatchResult) -> BatchResultOut:
    return BatchResultOut(
        message=message,
        results=[to_result_out(r) for r in batch.results],
        summary=BatchSummary(
            total_checked=batch.total_checked,
            matched=batch.matched,
            pending=batch.pending,
            failed=batch.failed,
        ),
    )


def require_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Bearer check for the scheduler; disabled when CRON_SECRET is empty."""
    if settings.CRON_SECRET and authorization != f"Bearer {settings.CRON_SECRET}":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("/", response_model=BatchResultOut)
def run_batch_matching(engine: MatchingEngine = Depends(get_engine)):
    """Check every open event independently."""
    return _batch_out("Matching run completed", engine.check_all_events())


@router.get("/", response_model=EngineStats)
def get_stats(engine: MatchingEngine = Depends(get_engine)):
    return engine.get_stats()


@router.post("/global", response_model=BatchResultOut)
def run_global_matching(engine: MatchingEngine = Depends(get_engine)):
    """Check every open event, resolving slots claimed by more than one event."""
    return _batch_out("Global matching run completed", engine.global_matching())


@router.api_route(
    "/check-deadlines",
    methods=["GET", "POST"],
    response_model=DeadlineCheckOut,
    dependencies=[Depends(require_cron_secret)],
)
def check_deadlines(engine: MatchingEngine = Depends(get_engine)):
    """Cron entry point: settle overdue events, expire stale confirmations, warn on near deadlines."""
    now = engine.now()
    swept = engine.check_deadlines(now)
    expired = engine.expire_pending_confirmations(now)
    warned = engine.notify_deadlines_approaching(now)
    return DeadlineCheckOut(
        message=f"Processed {swept.total_checked} event(s) past their deadline",
        processed_events=[to_result_out(r) for r in swept.results],
        total_processed=swept.total_checked,
        expired_confirmations=[to_result_out(r) for r in expired],
        deadline_warnings=warned,
    )


@router.post("/{event_id}", response_model=MatchingResultOut)
def check_event(event_id: str, engine: MatchingEngine = Depends(get_engine)):
    result = engine.check_event_matching(event_id)
    if result.reason == EVENT_NOT_FOUND_REASON:
        raise HTTPException(status_code=404, detail="Event not found")
    return to_result_out(result)
