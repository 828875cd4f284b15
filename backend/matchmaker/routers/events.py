"""Event API routes: delegates to event_service and the matching engine."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from matchmaker.database import get_db
from matchmaker.matching.engine import MatchingEngine
from matchmaker.matching.policy import MatchingPolicy
from matchmaker.models.event import EventStatus
from matchmaker.routers.matching import get_engine, to_result_out
from matchmaker.schemas.event import (
    CancelRequest,
    ConfirmationOut,
    ConfirmRequest,
    EventCreate,
    EventOut,
    EventUpdate,
    JoinRequest,
    LeaveRequest,
    SelectSuggestionRequest,
)
from matchmaker.schemas.matching import MatchingResultOut
from matchmaker.schemas.user import UserEventStats
from matchmaker.services import event_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=EventOut, status_code=status.HTTP_201_CREATED)
def create_event(payload: EventCreate, db: Session = Depends(get_db)):
    """Create an open event; the creator joins it automatically."""
    fields = payload.model_dump(exclude={"matching_policy"})
    return event_service.create_event(
        db,
        matching_policy=payload.matching_policy.model_dump(mode="json"),
        **fields,
    )


@router.get("/", response_model=list[EventOut])
def list_events(
    status_filter: Optional[EventStatus] = Query(None, alias="status"),
    creator_id: Optional[str] = Query(None),
    participant_id: Optional[str] = Query(None),
    joinable_by: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """List events; ``joinable_by`` keeps only open events that user could still join."""
    return event_service.list_events(db, status_filter, creator_id, participant_id, joinable_by=joinable_by)


@router.get("/stats", response_model=UserEventStats)
def get_user_stats(user_id: str = Query(...), db: Session = Depends(get_db)):
    """Dashboard counters; partial data failures degrade to zeros."""
    return event_service.get_user_event_stats(db, user_id)


@router.get("/{event_id}", response_model=EventOut)
def get_event(event_id: str, engine: MatchingEngine = Depends(get_engine)):
    """Fetch an event, re-checking a stale match first when its policy asks for it."""
    event = event_service.get_event(engine.db, event_id)
    if MatchingPolicy.from_stored(event.matching_policy).revalidate_on_access:
        engine.revalidate_event(event_id)
    return event_service.get_event(engine.db, event_id)


@router.put("/{event_id}", response_model=EventOut)
def update_event(event_id: str, payload: EventUpdate, db: Session = Depends(get_db)):
    """Edit an open event (creator only); `version` must match the stored one."""
    updates = payload.model_dump(exclude_unset=True, exclude={"user_id", "version"})
    return event_service.update_event(db, event_id, payload.user_id, payload.version, updates)


@router.post("/{event_id}/join", response_model=EventOut)
def join_event(event_id: str, payload: JoinRequest, db: Session = Depends(get_db)):
    return event_service.add_participant(db, event_id, payload.user_id, payload.priority)


@router.post("/{event_id}/leave", response_model=EventOut)
def leave_event(event_id: str, payload: LeaveRequest, db: Session = Depends(get_db)):
    return event_service.remove_participant(db, event_id, payload.user_id)


@router.post("/{event_id}/cancel", response_model=EventOut)
def cancel_event(event_id: str, payload: CancelRequest, db: Session = Depends(get_db)):
    """Cancel an event (creator only)."""
    return event_service.cancel_event(db, event_id, payload.user_id, payload.reason)


@router.post("/{event_id}/confirm", response_model=ConfirmationOut)
def confirm_event(event_id: str, payload: ConfirmRequest, engine: MatchingEngine = Depends(get_engine)):
    return engine.confirm_event(event_id, payload.user_id)


@router.post("/{event_id}/select-suggestion", response_model=MatchingResultOut)
def select_suggestion(
    event_id: str,
    payload: SelectSuggestionRequest,
    engine: MatchingEngine = Depends(get_engine),
):
    """Commit one of the ranked slot options of a suggestion-mode event."""
    return to_result_out(engine.select_suggestion(event_id, payload.index, payload.user_id))
