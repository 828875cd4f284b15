"""Pydantic schemas for Users."""
from __future__ import annotations
from datetime import datetime
from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    display_name: str = Field(min_length=1, max_length=100)


class UserOut(BaseModel):
    user_id: str
    display_name: str
    created_at: datetime

    model_config = {"from_attributes": True}


class UserEventStats(BaseModel):
    created_events: int = 0
    participating_events: int = 0
    matched_events: int = 0
    pending_events: int = 0
