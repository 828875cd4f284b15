"""Confirmation thresholds for events awaiting sign-off."""
import math
from datetime import datetime, timedelta
from typing import Iterable, Optional

from matchmaker.models.confirmation import ConfirmationType, EventConfirmation
from matchmaker.models.event import ConfirmationMode


def required_participant_confirmations(
    mode: ConfirmationMode,
    participant_count: int,
    minimum_confirmations: Optional[int] = None,
) -> int:
    """How many participant confirmations ``mode`` needs out of ``participant_count``."""
    if mode == ConfirmationMode.creator_only:
        return 0
    if mode == ConfirmationMode.all:
        return participant_count
    if mode == ConfirmationMode.majority:
        return math.ceil(participant_count / 2)
    return min(minimum_confirmations or participant_count, participant_count)


def is_confirmed(
    *,
    creator_id: str,
    participant_ids: list[str],
    confirmations: Iterable[EventConfirmation],
    require_creator: bool,
    require_participants: bool,
    mode: ConfirmationMode,
    minimum_confirmations: Optional[int] = None,
) -> bool:
    """True once the creator (if required) and enough participants have confirmed.

    ``participant_ids`` are the non-creator participants whose confirmation counts.
    """
    confirmations = list(confirmations)
    creator_ok = any(
        c.user_id == creator_id and c.confirmation_type == ConfirmationType.creator for c in confirmations
    )
    if require_creator and not creator_ok:
        return False
    if not require_participants:
        return True

    eligible = set(participant_ids)
    confirmed = {
        c.user_id
        for c in confirmations
        if c.confirmation_type == ConfirmationType.participant and c.user_id in eligible
    }
    return len(confirmed) >= required_participant_confirmations(mode, len(eligible), minimum_confirmations)


def confirmation_cutoff(confirmation_deadline: datetime, grace_period_minutes: int) -> datetime:
    """Instant after which an unconfirmed event expires."""
    return confirmation_deadline + timedelta(minutes=grace_period_minutes)
