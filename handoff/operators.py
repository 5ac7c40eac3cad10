"""Operator directory."""
import enum
from typing import Callable, List, Optional
from datetime import datetime

from handoff.db import Database
from handoff.logging_conf import logger
from handoff.queue.manager import utcnow
from handoff.queue.models import Operator, normalize_operator_name


class OperatorRemoval(enum.Enum):
    REMOVED = "removed"
    NOT_FOUND = "not_found"
    BUSY = "busy"
    INVALID = "invalid"


class OperatorDirectory:
    """Add, look up, list and remove operators by normalized name."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def add(self, name: str) -> Optional[Operator]:
        normalized = normalize_operator_name(name)
        if not normalized:
            logger.warning("Invalid operator name provided")
            return None

        row = self.db.insert_operator(normalized, self.clock())
        if row is None:
            logger.info("Operator already exists", extra={"operator": normalized})
            return self.find(normalized)

        logger.info("Operator added", extra={"operator": normalized})
        return Operator.from_row(row)

    def find(self, name: str) -> Optional[Operator]:
        normalized = normalize_operator_name(name)
        if not normalized:
            return None
        try:
            row = self.db.get_operator(normalized)
        except Exception as e:
            logger.error(f"Failed to find operator: {e}", extra={"operator": normalized})
            return None
        return Operator.from_row(row) if row else None

    def exists(self, name: str) -> bool:
        return self.find(name) is not None

    def remove(self, name: str) -> OperatorRemoval:
        """Delete an operator; refused while a contact is assigned to them."""
        normalized = normalize_operator_name(name)
        if not normalized:
            logger.warning("Invalid operator name provided")
            return OperatorRemoval.INVALID

        if self.db.get_operator(normalized) is None:
            logger.info("Operator not found", extra={"operator": normalized})
            return OperatorRemoval.NOT_FOUND

        if not self.db.delete_operator_if_idle(normalized):
            if self.db.get_operator(normalized) is None:
                return OperatorRemoval.NOT_FOUND
            logger.warning(
                "Operator has assigned contacts and cannot be removed",
                extra={"operator": normalized, "assigned": self.db.count_assignments(normalized)},
            )
            return OperatorRemoval.BUSY

        logger.info("Operator removed", extra={"operator": normalized})
        return OperatorRemoval.REMOVED

    def list_names(self) -> List[str]:
        try:
            return [row["name"] for row in self.db.list_operators()]
        except Exception as e:
            logger.error(f"Failed to list operators: {e}")
            return []
