"""Availability API routes."""
import logging
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from matchmaker.database import get_db
from matchmaker.schemas.availability import AvailabilitySet, AvailabilityOut
from matchmaker.services import availability_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.put("/{user_id}", response_model=list[AvailabilityOut])
def set_availability(user_id: str, payload: AvailabilitySet, db: Session = Depends(get_db)):
    """Overwrite the user's slots on every given date."""
    return availability_service.set_availability(
        db,
        user_id=user_id,
        dates=payload.dates,
        daytime=payload.daytime,
        evening=payload.evening,
    )


@router.get("/{user_id}", response_model=list[AvailabilityOut])
def get_availability(
    user_id: str,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    return availability_service.get_availability(db, [user_id], start, end)


@router.delete("/{user_id}/{day}", status_code=status.HTTP_204_NO_CONTENT)
def delete_availability(user_id: str, day: date, db: Session = Depends(get_db)):
    availability_service.delete_availability(db, user_id, day)
