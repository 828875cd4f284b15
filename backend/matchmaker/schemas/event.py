"""Pydantic schemas for Events."""
from __future__ import annotations
import datetime as dt
from typing import Optional
from pydantic import BaseModel, Field, model_validator

from matchmaker.matching.policy import MatchingPolicy
from matchmaker.models.availability import TimeSlot
from matchmaker.models.event import (
    ConfirmationMode,
    DateMode,
    EventStatus,
    ReservationStatus,
    TimeSlotRestriction,
)
from matchmaker.models.participant import ParticipantPriority


def to_utc_deadline(value: dt.datetime) -> dt.datetime:
    """Naive input is read as UTC; offset input is converted to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def check_future_deadline(value: dt.datetime) -> dt.datetime:
    value = to_utc_deadline(value)
    if value <= dt.datetime.now(dt.timezone.utc):
        raise ValueError("deadline must be in the future")
    return value


class EventCreate(BaseModel):
    creator_id: str
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    min_participants: int = Field(default=1, ge=1)
    max_participants: Optional[int] = Field(default=None, ge=1)  # None = unlimited
    required_slots: int = Field(default=1, ge=1)
    date_mode: DateMode = DateMode.consecutive
    minimum_consecutive: int = Field(default=1, ge=1)
    time_slot_restriction: TimeSlotRestriction = TimeSlotRestriction.both
    deadline: dt.datetime
    period_start: Optional[dt.date] = None
    period_end: Optional[dt.date] = None
    matching_policy: MatchingPolicy = Field(default_factory=MatchingPolicy)
    require_creator_confirmation: bool = False
    require_participant_confirmation: bool = False
    confirmation_mode: ConfirmationMode = ConfirmationMode.creator_only
    minimum_confirmations: Optional[int] = Field(default=None, ge=1)
    confirmation_timeout: int = Field(default=60, ge=1)  # minutes
    grace_period: int = Field(default=30, ge=0)  # minutes
    creator_priority: ParticipantPriority = ParticipantPriority.medium

    @model_validator(mode="after")
    def _check_rules(self) -> "EventCreate":
        self.deadline = check_future_deadline(self.deadline)
        if self.max_participants is not None and self.max_participants < self.min_participants:
            raise ValueError("max_participants must be >= min_participants")
        if self.minimum_consecutive > self.required_slots:
            raise ValueError("minimum_consecutive cannot exceed required_slots")
        if self.date_mode == DateMode.within_period and (self.period_start is None or self.period_end is None):
            raise ValueError("within_period events need period_start and period_end")
        if self.period_start is not None and self.period_end is not None and self.period_start >= self.period_end:
            raise ValueError("period_start must be before period_end")
        policy = self.matching_policy
        if policy.minimum_time_slots is not None and policy.minimum_time_slots > self.required_slots:
            raise ValueError("matching_policy.minimum_time_slots cannot exceed required_slots")
        if self.confirmation_mode == ConfirmationMode.minimum_count and self.minimum_confirmations is None:
            raise ValueError("minimum_count confirmation needs minimum_confirmations")
        return self


class EventUpdate(BaseModel):
    """Creator edit of an open event; rules that span stored fields are checked by the service."""

    user_id: str
    version: int  # required for optimistic locking
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    min_participants: Optional[int] = Field(default=None, ge=1)
    max_participants: Optional[int] = Field(default=None, ge=1)
    required_slots: Optional[int] = Field(default=None, ge=1)
    minimum_consecutive: Optional[int] = Field(default=None, ge=1)
    deadline: Optional[dt.datetime] = None
    period_start: Optional[dt.date] = None
    period_end: Optional[dt.date] = None

    @model_validator(mode="after")
    def _check_rules(self) -> "EventUpdate":
        if self.deadline is not None:
            self.deadline = check_future_deadline(self.deadline)
        if self.period_start is not None and self.period_end is not None and self.period_start >= self.period_end:
            raise ValueError("period_start must be before period_end")
        return self


class JoinRequest(BaseModel):
    user_id: str
    priority: ParticipantPriority = ParticipantPriority.medium


class LeaveRequest(BaseModel):
    user_id: str


class CancelRequest(BaseModel):
    user_id: str
    reason: Optional[str] = None


class ConfirmRequest(BaseModel):
    user_id: str


class SelectSuggestionRequest(BaseModel):
    user_id: str
    index: int = Field(ge=0)


class SlotOut(BaseModel):
    date: dt.date
    time_slot: TimeSlot

    model_config = {"from_attributes": True}


class ParticipantOut(BaseModel):
    user_id: str
    priority: ParticipantPriority
    joined_at: dt.datetime

    model_config = {"from_attributes": True}


class EventOut(BaseModel):
    event_id: str
    creator_id: str
    name: str
    description: str
    min_participants: int
    max_participants: Optional[int] = None
    required_slots: int
    date_mode: DateMode
    minimum_consecutive: int
    time_slot_restriction: TimeSlotRestriction
    deadline: Optional[dt.datetime] = None
    period_start: Optional[dt.date] = None
    period_end: Optional[dt.date] = None
    matching_policy: dict = {}
    require_creator_confirmation: bool
    require_participant_confirmation: bool
    confirmation_mode: ConfirmationMode
    minimum_confirmations: Optional[int] = None
    confirmation_timeout: int
    grace_period: int
    confirmation_deadline: Optional[dt.datetime] = None
    status: EventStatus
    matched_slots: Optional[list[SlotOut]] = None
    reservation_status: ReservationStatus
    version: int
    created_at: dt.datetime
    updated_at: dt.datetime
    participants: list[ParticipantOut] = []

    model_config = {"from_attributes": True}


class ConfirmationOut(BaseModel):
    event_id: str
    status: EventStatus
    confirmed: bool
    participant_confirmations: int
    required_participant_confirmations: int
    creator_confirmed: bool

    model_config = {"from_attributes": True}
