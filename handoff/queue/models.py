"""Queue data models."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any


@dataclass(frozen=True)
class QueueItem:
    """A waiting or assigned contact.

    `assigned_operator` is None while the contact waits. The response timer
    runs while `timeout_started_at` is set, which only happens for assigned
    items; `timeout_warning_sent` is only true while the timer runs.
    """

    id: int
    user_id: str
    chat_id: str
    created_at: datetime
    updated_at: datetime
    assigned_operator: Optional[str] = None
    timeout_started_at: Optional[datetime] = None
    timeout_warning_sent: bool = False

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "QueueItem":
        """Build a QueueItem from a `queue_items` row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            chat_id=row["chat_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            assigned_operator=row.get("assigned_operator"),
            timeout_started_at=row.get("timeout_started_at"),
            timeout_warning_sent=bool(row.get("timeout_warning_sent")),
        )

    @property
    def is_assigned(self) -> bool:
        return self.assigned_operator is not None

    @property
    def timer_running(self) -> bool:
        return self.timeout_started_at is not None


@dataclass(frozen=True)
class Operator:
    """A support operator known to the directory."""

    name: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Operator":
        return cls(name=row["name"], created_at=row["created_at"])


def normalize_operator_name(name: Optional[str]) -> str:
    """Operator names compare trimmed and case-insensitive."""
    return (name or "").strip().lower()
