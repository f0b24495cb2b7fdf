"""
Outbound yard events.

Services publish events after their transaction commits. Delivery goes
through a NotificationPort; the engine never talks to a concrete transport.

Events:
    appointment.scheduled, appointment.rescheduled, appointment.cancelled,
    appointment.late_arrival, trailer.checked_in, trailer.checked_out,
    yard.move.requested, yard.move.completed

A failed delivery is logged and re-queued on the APScheduler instance as a
one-off date job, up to NOTIFICATION_MAX_RETRIES attempts. The state change
that produced the event is never affected. Only the most recent
NOTIFICATION_DROPPED_HISTORY undeliverable events are kept for inspection.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, List, Optional

from apscheduler.schedulers.base import BaseScheduler
from pydantic import BaseModel, Field

from dockyard.config import settings

logger = logging.getLogger(__name__)


class YardEventType:
    """Event name constants."""
    APPOINTMENT_SCHEDULED = "appointment.scheduled"
    APPOINTMENT_RESCHEDULED = "appointment.rescheduled"
    APPOINTMENT_CANCELLED = "appointment.cancelled"
    APPOINTMENT_LATE_ARRIVAL = "appointment.late_arrival"
    TRAILER_CHECKED_IN = "trailer.checked_in"
    TRAILER_CHECKED_OUT = "trailer.checked_out"
    YARD_MOVE_REQUESTED = "yard.move.requested"
    YARD_MOVE_COMPLETED = "yard.move.completed"


class YardEvent(BaseModel):
    """Minimal event envelope: the affected entity id plus consumer fields."""
    event_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str
    tenant_id: uuid.UUID
    warehouse_id: Optional[uuid.UUID] = None
    entity_id: uuid.UUID
    payload: Dict[str, Any] = {}
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempt: int = 0


# ============================================================================
# NOTIFICATION PORTS
# ============================================================================

class NotificationPort(ABC):
    """Delivery boundary towards external consumers."""

    @abstractmethod
    async def deliver(self, event: YardEvent) -> None:
        """Deliver one event. Raise on failure."""
        pass


class LoggingNotificationPort(NotificationPort):
    """
    Placeholder port that logs events.

    Swap for a queue / webhook client when a consumer is wired up.
    """

    async def deliver(self, event: YardEvent) -> None:
        logger.info(
            f"[EVENT] {event.name} entity={event.entity_id} tenant={event.tenant_id} "
            f"payload={event.payload}"
        )


class InMemoryNotificationPort(NotificationPort):
    """Collects delivered events; can be told to fail the next N deliveries."""

    def __init__(self, fail_times: int = 0):
        self.events: List[YardEvent] = []
        self.fail_times = fail_times
        self.attempts = 0

    async def deliver(self, event: YardEvent) -> None:
        self.attempts += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError(f"Delivery of {event.name} failed")
        self.events.append(event)

    def names(self) -> List[str]:
        return [e.name for e in self.events]

    def of(self, name: str) -> List[YardEvent]:
        return [e for e in self.events if e.name == name]


# ============================================================================
# PUBLISHER
# ============================================================================

class EventPublisher:
    """Publishes yard events through a port with scheduled retries."""

    def __init__(
        self,
        port: NotificationPort,
        scheduler: Optional[BaseScheduler] = None,
        max_retries: Optional[int] = None,
        retry_delay_seconds: Optional[int] = None,
    ):
        self.port = port
        self.scheduler = scheduler
        self.max_retries = settings.NOTIFICATION_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay_seconds = (
            settings.NOTIFICATION_RETRY_DELAY_SECONDS
            if retry_delay_seconds is None else retry_delay_seconds
        )
        self.dropped: Deque[YardEvent] = deque(maxlen=settings.NOTIFICATION_DROPPED_HISTORY)

    async def publish(
        self,
        name: str,
        tenant_id: uuid.UUID,
        entity_id: uuid.UUID,
        warehouse_id: Optional[uuid.UUID] = None,
        **payload: Any
    ) -> YardEvent:
        """Build and deliver an event. Never raises on delivery failure."""
        event = YardEvent(
            name=name,
            tenant_id=tenant_id,
            warehouse_id=warehouse_id,
            entity_id=entity_id,
            payload=payload,
        )
        await self._deliver(event)
        return event

    async def redeliver(self, event: YardEvent) -> None:
        """Retry entry point invoked by the scheduler."""
        await self._deliver(event)

    async def _deliver(self, event: YardEvent) -> None:
        try:
            await self.port.deliver(event)
        except Exception as e:
            logger.warning(
                f"Delivery of {event.name} for {event.entity_id} failed "
                f"(attempt {event.attempt + 1}): {e}"
            )
            self._schedule_retry(event)

    def _schedule_retry(self, event: YardEvent) -> None:
        if event.attempt >= self.max_retries:
            logger.error(
                f"Giving up on {event.name} for {event.entity_id} after {event.attempt + 1} attempts"
            )
            self.dropped.append(event)
            return

        retry = event.model_copy(update={"attempt": event.attempt + 1})
        if self.scheduler is None:
            logger.error(f"No scheduler configured; {event.name} for {event.entity_id} not retried")
            self.dropped.append(retry)
            return

        run_date = datetime.now(timezone.utc) + timedelta(seconds=self.retry_delay_seconds)
        self.scheduler.add_job(
            self.redeliver,
            'date',
            run_date=run_date,
            args=[retry],
            id=f"notify-retry:{event.event_id}:{retry.attempt}",
            name=f"Retry {event.name}",
            replace_existing=True,
        )
        logger.info(f"Retry {retry.attempt}/{self.max_retries} for {event.name} scheduled at {run_date}")


_publisher: Optional[EventPublisher] = None


def get_event_publisher() -> EventPublisher:
    """Get the application event publisher singleton."""
    global _publisher
    if _publisher is None:
        from dockyard.jobs.scheduler import scheduler

        _publisher = EventPublisher(LoggingNotificationPort(), scheduler=scheduler)
    return _publisher


def set_event_publisher(publisher: Optional[EventPublisher]) -> None:
    """Replace the singleton (tests install an in-memory port)."""
    global _publisher
    _publisher = publisher
