"""Per-event matching policy."""
import enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class ParticipantSelection(str, enum.Enum):
    priority = "priority"
    first_come = "first_come"
    lottery = "lottery"


class MatchingPolicy(BaseModel):
    """Immutable feature flags controlling how an event is matched.

    Stored as JSON on the event row and rebuilt with ``from_stored``; unknown
    keys in stored data are rejected rather than ignored.
    """

    allow_partial_matching: bool = False
    minimum_time_slots: Optional[int] = Field(default=None, ge=1)  # None -> required_slots
    suggest_multiple_options: bool = False
    max_suggestions: int = Field(default=3, ge=1)
    require_all_participants: bool = False
    participant_selection: ParticipantSelection = ParticipantSelection.priority
    lottery_seed: Optional[int] = None
    revalidate_on_access: bool = False

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="after")
    def _lottery_needs_seed(self) -> "MatchingPolicy":
        if self.participant_selection == ParticipantSelection.lottery and self.lottery_seed is None:
            raise ValueError("lottery participant selection requires a lottery_seed")
        return self

    @classmethod
    def from_stored(cls, data: Optional[dict]) -> "MatchingPolicy":
        return cls.model_validate(data or {})

    def effective_minimum_slots(self, required_slots: int) -> int:
        if self.minimum_time_slots is None:
            return required_slots
        return min(self.minimum_time_slots, required_slots)
