"""Availability service: per-user, per-date daytime/evening records."""
import logging
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from matchmaker.matching.snapshot import AvailabilityMap, build_availability_map
from matchmaker.models.availability import Availability
from matchmaker.models.user import User

logger = logging.getLogger(__name__)


def _require_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.user_id == user_id).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def set_availability(
    db: Session,
    user_id: str,
    dates: list[date],
    daytime: bool,
    evening: bool,
) -> list[Availability]:
    """Upsert one record per date, overwriting both slot flags."""
    _require_user(db, user_id)
    unique_dates = sorted(set(dates))
    existing = {
        rec.date: rec
        for rec in db.query(Availability).filter(
            Availability.user_id == user_id,
            Availability.date.in_(unique_dates),
        )
    }

    records = []
    now = datetime.now(timezone.utc)
    for day in unique_dates:
        record = existing.get(day)
        if record is None:
            record = Availability(user_id=user_id, date=day)
            db.add(record)
        record.daytime = daytime
        record.evening = evening
        record.updated_at = now
        records.append(record)

    db.commit()
    for record in records:
        db.refresh(record)
    logger.info(
        "Set availability for user %s on %d date(s) (daytime=%s, evening=%s)",
        user_id, len(records), daytime, evening,
    )
    return records


def get_availability(
    db: Session,
    user_ids: list[str],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> list[Availability]:
    """Records for the given users, optionally bounded to an inclusive date range."""
    if not user_ids:
        return []
    query = db.query(Availability).filter(Availability.user_id.in_(user_ids))
    if start is not None:
        query = query.filter(Availability.date >= start)
    if end is not None:
        query = query.filter(Availability.date <= end)
    return query.order_by(Availability.user_id, Availability.date).all()


def delete_availability(db: Session, user_id: str, day: date) -> None:
    record = (
        db.query(Availability)
        .filter(Availability.user_id == user_id, Availability.date == day)
        .first()
    )
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Availability not found")
    db.delete(record)
    db.commit()
    logger.info("Deleted availability for user %s on %s", user_id, day)


def load_availability_map(db: Session, user_ids: list[str], start: date, end: date) -> AvailabilityMap:
    return build_availability_map(get_availability(db, user_ids, start, end))
