"""
Workflow event bus.

Publication is fire-and-forget: the workflow persists state first, then
publishes, and a failed publish never rolls the state back.
"""

from abc import ABC, abstractmethod
from typing import Optional

from logger import get_logger
from models import WorkflowEvent

logger = get_logger(__name__)


class EventBus(ABC):
    """Abstract event bus."""

    @abstractmethod
    def publish(self, event_name: str, payload: WorkflowEvent):
        pass


class InMemoryEventBus(EventBus):
    """Keeps published events in order. Used by tests and the CLI."""

    def __init__(self):
        self.events: list[WorkflowEvent] = []

    def publish(self, event_name: str, payload: WorkflowEvent):
        self.events.append(payload)

    def names(self, case_id: Optional[str] = None) -> list[str]:
        return [e.event for e in self.events if case_id is None or e.case_id == case_id]

    def clear(self):
        self.events.clear()


class LoggingEventBus(EventBus):
    """Writes each event to the log."""

    def publish(self, event_name: str, payload: WorkflowEvent):
        logger.info(f"event {event_name} case={payload.case_id} subject={payload.subject_id} data={payload.data}")
