"""Pydantic schemas for Availability."""
from __future__ import annotations
import datetime as dt
from pydantic import BaseModel, Field


class AvailabilitySet(BaseModel):
    dates: list[dt.date] = Field(min_length=1)
    daytime: bool = False
    evening: bool = False


class AvailabilityOut(BaseModel):
    user_id: str
    date: dt.date
    daytime: bool
    evening: bool

    model_config = {"from_attributes": True}
