"""Domain event outbox and the notification dispatcher that drains it.

Ledger operations only publish events; delivering them is the dispatcher's
job, so a failed notification can never undo a ledger change.
"""

import logging
import queue

from .clients.notifier import Notifier
from .models import BuyInApproved, BuyInRequested, DomainEvent, SessionCompleted

logger = logging.getLogger(__name__)


class EventQueue:
    """In-process FIFO outbox of domain events."""

    def __init__(self):
        self._queue: queue.Queue[DomainEvent] = queue.Queue()

    def publish(self, event: DomainEvent) -> None:
        """Enqueue an event; never blocks and never fails the caller."""
        self._queue.put_nowait(event)
        logger.debug(f"Published {event.kind} for session {event.session_id}")

    def drain(self) -> list[DomainEvent]:
        """Remove and return every queued event."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def __len__(self) -> int:
        return self._queue.qsize()


class NotificationDispatcher:
    """Turns domain events into notifier calls.

    Delivery failures are logged and dropped.
    """

    def __init__(self, events: EventQueue, notifier: Notifier):
        """Initialize the dispatcher."""
        self.events = events
        self.notifier = notifier

    def dispatch(self, event: DomainEvent) -> bool:
        """
        Deliver one event.

        Returns:
            True if delivered (or nothing needed delivering), False if the
            notifier failed
        """
        try:
            if isinstance(event, BuyInRequested):
                self.notifier.notify_buy_in_request(
                    event.session_id, event.member_name, event.amount_cents
                )
            elif isinstance(event, BuyInApproved):
                if event.member_user_id is None:
                    # Local-only members have nobody to notify
                    return True
                self.notifier.notify_buy_in_approved(
                    event.session_id, event.member_user_id, event.amount_cents
                )
            elif isinstance(event, SessionCompleted):
                self.notifier.notify_session_completed(event.session_id)
        except Exception as e:
            logger.error(f"Failed to deliver {event.kind} notification: {e}")
            return False
        return True

    def dispatch_pending(self) -> int:
        """Deliver everything currently queued; returns the number delivered."""
        return sum(self.dispatch(event) for event in self.events.drain())
