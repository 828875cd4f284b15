"""Pydantic schemas for matching results."""
from __future__ import annotations
from typing import Optional
from pydantic import BaseModel

from matchmaker.models.event import EventStatus
from matchmaker.schemas.event import SlotOut


class SuggestionOut(BaseModel):
    slots: list[SlotOut]
    longest_run: int

    model_config = {"from_attributes": True}


class MatchingResultOut(BaseModel):
    event_id: str
    event_name: str = ""
    is_matched: bool
    reason: str
    matched_slots: list[SlotOut] = []
    status: Optional[EventStatus] = None
    partial: bool = False
    suggestions: list[SuggestionOut] = []
    failed: bool = False

    model_config = {"from_attributes": True}


class BatchSummary(BaseModel):
    total_checked: int
    matched: int
    pending: int
    failed: int


class BatchResultOut(BaseModel):
    message: str
    results: list[MatchingResultOut]
    summary: BatchSummary


class DeadlineCheckOut(BaseModel):
    message: str
    processed_events: list[MatchingResultOut]
    total_processed: int
    expired_confirmations: list[MatchingResultOut] = []
    deadline_warnings: list[str] = []


class EngineStats(BaseModel):
    total: int = 0
    open: int = 0
    matched: int = 0
    pending_confirmation: int = 0
    confirmed: int = 0
    cancelled: int = 0
    expired: int = 0
    rolled_back: int = 0
