"""
Event dispatcher for decoupled notifications.

Services emit an event once their transaction has committed:

    await emit_event(EventType.PROPOSAL_ACCEPTED, {
        "freight_id": freight.id,
        "assignment_id": assignment.id,
        ...
    }, target_user_id=carrier_id)

Subscribers (the notification layer) react to it. Handler failures are logged
and never reach the emitting service, so a broken sink cannot undo a
committed allocation.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from haulbroker.models.base import utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    FREIGHT_CREATED = "freight.created"
    FREIGHT_CANCELLED = "freight.cancelled"

    PROPOSAL_SUBMITTED = "proposal.submitted"
    PROPOSAL_ACCEPTED = "proposal.accepted"
    PROPOSAL_REJECTED = "proposal.rejected"

    ASSIGNMENT_STATUS_CHANGED = "assignment.status_changed"
    ASSIGNMENT_WITHDRAWN = "assignment.withdrawn"
    ASSIGNMENT_RELEASED = "assignment.released"
    ASSIGNMENT_DELIVERY_CONFIRMED = "assignment.delivery_confirmed"
    ASSIGNMENT_PAYMENT_SENT = "assignment.payment_sent"
    ASSIGNMENT_PAYMENT_RECEIVED = "assignment.payment_received"


@dataclass
class Event:
    """Represents an event to be dispatched."""
    type: EventType
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)
    target_user_id: Optional[str] = None


EventHandler = Callable[[Event], Any]


class EventDispatcher:
    """
    Central in-process pub/sub for domain events.
    """

    _instance: Optional["EventDispatcher"] = None
    _handlers: Dict[EventType, List[EventHandler]]
    _global_handlers: List[EventHandler]

    def __new__(cls) -> "EventDispatcher":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._handlers = {}
            cls._instance._global_handlers = []
        return cls._instance

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        if handler not in self._global_handlers:
            self._global_handlers.append(handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        if event_type in self._handlers:
            self._handlers[event_type] = [h for h in self._handlers[event_type] if h != handler]

    def unsubscribe_all(self, handler: EventHandler) -> None:
        self._global_handlers = [h for h in self._global_handlers if h != handler]

    async def emit(self, event: Event) -> None:
        handlers = self._handlers.get(event.type, []) + self._global_handlers
        if not handlers:
            logger.debug("event_without_handlers", extra={"event_type": event.type.value})
            return

        tasks = []
        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    tasks.append(result)
            except Exception:
                logger.exception("event_handler_failed", extra={"event_type": event.type.value})

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for outcome in results:
                if isinstance(outcome, Exception):
                    logger.error(
                        "event_handler_failed",
                        extra={"event_type": event.type.value, "error": repr(outcome)},
                    )


_dispatcher = EventDispatcher()


def get_dispatcher() -> EventDispatcher:
    return _dispatcher


async def emit_event(
    event_type: EventType,
    data: Dict[str, Any],
    target_user_id: Optional[str] = None,
) -> None:
    """Emit an event to all subscribers."""
    await _dispatcher.emit(Event(type=event_type, data=data, target_user_id=target_user_id))
