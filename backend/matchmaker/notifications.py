"""Outbound notification hooks for event state changes.

The engine only emits; delivery and formatting belong to whatever
implements ``Notifier``.  The default implementation writes log lines.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime

from matchmaker.matching.slots import SlotCoordinate

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Interface the engine calls on matching transitions."""

    @abstractmethod
    def matched(self, event_id: str, event_name: str, slots: list[SlotCoordinate]) -> None:
        """An open event was committed to ``slots``."""
        ...

    @abstractmethod
    def confirmation_required(self, event_id: str, event_name: str, confirmation_deadline: datetime) -> None:
        """A matched event now waits for sign-off until ``confirmation_deadline``."""
        ...

    @abstractmethod
    def deadline_approaching(self, event_id: str, event_name: str, deadline: datetime) -> None:
        """An open event's deadline falls inside the warning window."""
        ...


class LoggingNotifier(Notifier):
    def matched(self, event_id, event_name, slots):
        logger.info(
            "Event '%s' (%s) matched on %s",
            event_name, event_id, ", ".join(f"{s.date.isoformat()} {s.time_slot.value}" for s in slots),
        )

    def confirmation_required(self, event_id, event_name, confirmation_deadline):
        logger.info(
            "Event '%s' (%s) awaits confirmation until %s",
            event_name, event_id, confirmation_deadline.isoformat(),
        )

    def deadline_approaching(self, event_id, event_name, deadline):
        logger.info("Event '%s' (%s) deadline approaching at %s", event_name, event_id, deadline.isoformat())
