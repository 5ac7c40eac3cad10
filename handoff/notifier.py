"""Best-effort outbound notifications."""
import threading
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Set

from handoff import settings
from handoff.logging_conf import logger

# Sent message ids kept for recognizing the gateway's echo of our own messages.
SENT_ID_HISTORY = 1000


class Notifier:
    """Delivers notices through the gateway without blocking the caller.

    Notifications never feed back into queue state: a failed delivery is
    logged and nothing is retried or rolled back. The ids of delivered
    messages are remembered so the inbound side can drop their echoes.
    """

    def __init__(self, client, max_workers: int = 0):
        self.client = client
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.NOTIFY_WORKERS,
            thread_name_prefix="notify",
        )
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()
        self._sent_ids: "OrderedDict[str, None]" = OrderedDict()

    def send(self, destination: str, text: str) -> bool:
        """Deliver a message now; returns whether it was delivered."""
        if not destination:
            logger.warning("Notification skipped: no destination")
            return False
        try:
            sent = self.client.send_message(destination, text)
        except Exception as e:
            logger.warning(f"Failed to deliver notification: {e}", extra={"destination": destination})
            return False
        self._remember((sent or {}).get("id"))
        return True

    def _remember(self, message_id) -> None:
        if message_id is None:
            return
        with self._lock:
            self._sent_ids[str(message_id)] = None
            while len(self._sent_ids) > SENT_ID_HISTORY:
                self._sent_ids.popitem(last=False)

    def is_own_message(self, message_id: Optional[str]) -> bool:
        """True if `message_id` is a message this notifier delivered."""
        if message_id is None:
            return False
        with self._lock:
            return str(message_id) in self._sent_ids

    def dispatch(self, destination: str, text: str) -> Future:
        """Deliver a message in the background."""
        future = self._executor.submit(self.send, destination, text)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            logger.debug("Notification cancelled")
            return
        exception = future.exception()
        if exception:
            logger.error(f"Notification task crashed: {exception}")

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def close(self, wait: bool = True) -> None:
        """Stop accepting notifications; optionally drain the backlog."""
        self._executor.shutdown(wait=wait)
        logger.info("Notifier stopped")
