"""Background sweep that warns and evicts contacts who stop responding."""
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from handoff import settings
from handoff.logging_conf import logger
from handoff.queue.manager import QueueManager, utcnow
from handoff.queue.models import QueueItem

TIMEOUT_NOTICE = (
    "Sorry, your time to respond to operator {operator} ({window}) has run out. "
    "You have been removed from the queue."
)
WARNING_NOTICE = (
    "Heads up! You have about {remaining} left to respond to operator {operator} "
    "before you are removed from the queue."
)
OPERATOR_NOTICE = (
    "BOT INFO (auto): timeout, contact {user} was removed for not responding "
    "to operator {operator} within {seconds} seconds."
)


LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def parse_response_timeout(raw: Optional[str]) -> int:
    """Response timeout in seconds, falling back to the default on bad input."""
    default = settings.DEFAULT_RESPONSE_TIMEOUT_SECONDS
    if raw is None or not str(raw).strip():
        logger.warning(f"USER_RESPONSE_TIMEOUT_SECONDS not set. Using default of {default} seconds.")
        return default
    # Leading integer wins, so "15s" reads as 15 and "12.9" as 12.
    match = LEADING_INT.match(str(raw))
    seconds = int(match.group(1)) if match else None
    if seconds is None or seconds <= settings.MIN_RESPONSE_TIMEOUT_SECONDS:
        logger.warning(f"Invalid USER_RESPONSE_TIMEOUT_SECONDS value: {raw}. Using default of {default} seconds.")
        return default
    logger.info(f"USER_RESPONSE_TIMEOUT_SECONDS set to {seconds} seconds.")
    return seconds


def describe_duration(seconds: int) -> str:
    if seconds > 60:
        return f"{seconds // 60} minutes"
    return f"{seconds} seconds"


@dataclass
class SweeperConfig:
    timeout_seconds: int = settings.DEFAULT_RESPONSE_TIMEOUT_SECONDS
    warning_lead_seconds: int = 60
    interval_seconds: int = 30
    operator_chat_id: Optional[str] = None

    @classmethod
    def from_settings(cls) -> "SweeperConfig":
        return cls(
            timeout_seconds=parse_response_timeout(settings.USER_RESPONSE_TIMEOUT_SECONDS),
            warning_lead_seconds=settings.TIMEOUT_WARNING_LEAD_SECONDS,
            interval_seconds=settings.SWEEP_INTERVAL,
            operator_chat_id=settings.OPERATOR_CHAT_ID,
        )

    @property
    def timeout(self) -> timedelta:
        return timedelta(seconds=self.timeout_seconds)

    @property
    def warning_threshold(self) -> timedelta:
        return timedelta(seconds=max(self.timeout_seconds - self.warning_lead_seconds, 0))


@dataclass
class SweepResult:
    warned: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)


class TimeoutSweeper:
    """Polls running response timers on a fixed interval.

    Each tick looks at every assigned item whose timer runs: past the
    timeout it is removed and both the contact and the operator channel are
    told; inside the warning window the contact is warned once.
    """

    def __init__(self, queue: QueueManager, notifier=None, config: Optional[SweeperConfig] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.queue = queue
        self.notifier = notifier
        self.config = config or SweeperConfig.from_settings()
        self.clock = clock
        self.running = False
        self.thread = None
        self._stop_event = threading.Event()

    def bind_notifier(self, notifier) -> None:
        self.notifier = notifier

    def start(self) -> bool:
        """Start sweeping in a background thread."""
        if self.running:
            logger.warning("Timeout sweeper is already running")
            return False
        if self.notifier is None:
            logger.critical("Cannot start timeout sweeper: no notifier bound")
            return False

        self.running = True
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._run, name="timeout-sweeper", daemon=True)
        self.thread.start()
        logger.info(
            f"Timeout sweeper started (every {self.config.interval_seconds}s, "
            f"timeout {self.config.timeout_seconds}s, warning lead {self.config.warning_lead_seconds}s)"
        )
        return True

    def stop(self):
        """Stop the sweeper; no tick starts after this returns."""
        if not self.running:
            return

        self.running = False
        self._stop_event.set()
        if self.thread:
            self.thread.join(timeout=10)
        logger.info("Timeout sweeper stopped")

    def _run(self):
        logger.info("Timeout sweeper thread started")

        while self.running:
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error during timeout sweep: {e}", exc_info=True)

            if self._stop_event.wait(self.config.interval_seconds):
                break

        logger.info("Timeout sweeper thread stopped")

    def tick(self) -> SweepResult:
        """Evaluate every running timer once."""
        result = SweepResult()
        items = self.queue.running_timers()
        if not items:
            logger.debug("No running response timers")
            return result

        now = self.clock()
        logger.debug(f"Checking {len(items)} running response timers")
        for item in items:
            try:
                self._check_item(item, now, result)
            except Exception as e:
                logger.error(f"Failed to check response timer: {e}", extra={"user_id": item.user_id}, exc_info=True)
        return result

    def _check_item(self, item: QueueItem, now: datetime, result: SweepResult) -> None:
        if item.timeout_started_at is None:
            return
        elapsed = now - item.timeout_started_at

        if elapsed >= self.config.timeout:
            self._expire(item, elapsed, result)
        elif elapsed >= self.config.warning_threshold and not item.timeout_warning_sent:
            self._warn(item, elapsed, result)

    def _expire(self, item: QueueItem, elapsed: timedelta, result: SweepResult) -> None:
        logger.warning(
            f"Response timeout ({elapsed.total_seconds():.0f}s), removing from queue",
            extra={"user_id": item.user_id, "operator": item.assigned_operator},
        )
        removed = self.queue.expire(item.user_id, item.timeout_started_at)
        if removed is None:
            logger.info("Timed-out contact already gone or timer moved, skipping notices",
                        extra={"user_id": item.user_id})
            return

        result.removed.append(item.user_id)
        operator = item.assigned_operator or "?"
        seconds = self.config.timeout_seconds
        self.notifier.dispatch(
            item.chat_id,
            TIMEOUT_NOTICE.format(operator=operator, window=describe_duration(seconds)),
        )
        if self.config.operator_chat_id:
            self.notifier.dispatch(
                self.config.operator_chat_id,
                OPERATOR_NOTICE.format(user=item.user_id.split("@")[0], operator=operator, seconds=seconds),
            )
        else:
            logger.warning("No operator chat configured, operator timeout notice skipped")

    def _warn(self, item: QueueItem, elapsed: timedelta, result: SweepResult) -> None:
        if not self.queue.mark_warned(item.user_id, item.timeout_started_at):
            logger.debug("Warning already sent or timer moved", extra={"user_id": item.user_id})
            return

        result.warned.append(item.user_id)
        remaining = max(0, round((self.config.timeout - elapsed).total_seconds()))
        logger.warning(f"Response timeout warning, {remaining}s left", extra={"user_id": item.user_id})
        self.notifier.dispatch(
            item.chat_id,
            WARNING_NOTICE.format(
                remaining=describe_duration(remaining),
                operator=item.assigned_operator or "",
            ),
        )
