"""Ordered hand-off queue with assignment and response timer transitions."""
from datetime import datetime, timezone
from typing import Callable, List, Optional

from handoff.db import Database
from handoff.logging_conf import logger
from handoff.queue.models import QueueItem, normalize_operator_name


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueManager:
    """Enqueue, dequeue, assign and look up queued contacts.

    Reads degrade to safe defaults when the store is unavailable; mutations
    propagate the failure. Timer transitions whose precondition no longer
    holds are no-ops that return False.
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def enqueue(self, user_id: str, chat_id: str) -> int:
        """Queue a contact and return its 1-based position.

        Idempotent: a contact already in the queue keeps its place.
        """
        created = self.db.insert_queue_item(user_id, chat_id, self.clock())
        if created:
            logger.info("Contact added to queue", extra={"user_id": user_id})
        else:
            logger.info("Contact already in queue", extra={"user_id": user_id})

        position = self.db.queue_position(user_id)
        if position is None:
            # Removed between insert and lookup (operator /remove or /next).
            raise LookupError(f"{user_id} left the queue while being enqueued")
        return position

    def dequeue_oldest(self) -> Optional[QueueItem]:
        """Remove and return the oldest item, assigned or not."""
        row = self.db.pop_oldest_queue_item()
        if row is None:
            logger.info("No contacts in queue")
            return None
        item = QueueItem.from_row(row)
        logger.info("Dequeued oldest contact", extra={"user_id": item.user_id})
        return item

    def assign_next(self, operator_name: str) -> Optional[QueueItem]:
        """Assign the oldest waiting contact to an operator."""
        operator = normalize_operator_name(operator_name)
        if not operator:
            raise ValueError("operator name must not be empty")

        row = self.db.assign_oldest_unassigned(operator, self.clock())
        if row is None:
            logger.info("No unassigned contacts in queue", extra={"operator": operator})
            return None
        item = QueueItem.from_row(row)
        logger.info("Assigned contact", extra={"user_id": item.user_id, "operator": operator})
        return item

    def remove(self, user_id: str) -> bool:
        """Delete a contact's item; False if it was already gone."""
        removed = self.db.delete_queue_item(user_id)
        if removed:
            logger.info("Contact removed from queue", extra={"user_id": user_id})
        return removed

    def expire(self, user_id: str, started_at: datetime) -> Optional[QueueItem]:
        """Remove an item whose timer still runs from `started_at`.

        A reply or a fresh operator message moves or clears the timer, in
        which case nothing is removed.
        """
        row = self.db.delete_expired_queue_item(user_id, started_at)
        return QueueItem.from_row(row) if row else None

    def position_of(self, user_id: str) -> Optional[int]:
        try:
            return self.db.queue_position(user_id)
        except Exception as e:
            logger.error(f"Failed to get queue position: {e}", extra={"user_id": user_id})
            return None

    def get(self, user_id: str) -> Optional[QueueItem]:
        try:
            row = self.db.get_queue_item(user_id)
        except Exception as e:
            logger.error(f"Failed to look up queue item: {e}", extra={"user_id": user_id})
            return None
        return QueueItem.from_row(row) if row else None

    def is_waiting(self, user_id: str) -> bool:
        """True if the contact is queued and not yet assigned."""
        item = self.get(user_id)
        return item is not None and not item.is_assigned

    def list_items(self) -> List[QueueItem]:
        try:
            return [QueueItem.from_row(row) for row in self.db.list_queue_items()]
        except Exception as e:
            logger.error(f"Failed to list queue: {e}")
            return []

    def running_timers(self) -> List[QueueItem]:
        return [QueueItem.from_row(row) for row in self.db.list_running_timers()]

    def size(self) -> int:
        try:
            return self.db.count_queue_items()
        except Exception as e:
            logger.error(f"Failed to count queue: {e}")
            return 0

    def is_empty(self) -> bool:
        """Queue emptiness; an unreachable store reports empty."""
        try:
            return self.db.count_queue_items() == 0
        except Exception as e:
            logger.error(f"Failed to check if queue is empty: {e}")
            return True

    # Response timer

    def start_or_reset_timer(self, user_id: str) -> bool:
        """Start the response window for an assigned contact."""
        now = self.clock()
        try:
            started = self.db.start_timer(user_id, now)
        except Exception as e:
            logger.error(f"Failed to start response timer: {e}", extra={"user_id": user_id})
            return False
        if started:
            logger.info("Response timer started", extra={"user_id": user_id, "started_at": now.isoformat()})
        else:
            logger.debug("Response timer not started (not queued or not assigned)", extra={"user_id": user_id})
        return started

    def clear_timer(self, user_id: str) -> bool:
        """Stop the response window after the contact replied."""
        try:
            cleared = self.db.clear_timer(user_id, self.clock())
        except Exception as e:
            logger.error(f"Failed to clear response timer: {e}", extra={"user_id": user_id})
            return False
        if cleared:
            logger.info("Response timer stopped (contact replied)", extra={"user_id": user_id})
        return cleared

    def mark_warned(self, user_id: str, started_at: Optional[datetime] = None) -> bool:
        """Record that the timeout warning went out for the running window."""
        try:
            marked = self.db.mark_timeout_warned(user_id, self.clock(), started_at)
        except Exception as e:
            logger.error(f"Failed to mark timeout warning: {e}", extra={"user_id": user_id})
            return False
        if marked:
            logger.info("Timeout warning marked", extra={"user_id": user_id})
        return marked
