"""Process-wide online/offline flag gating new queue entries."""
from handoff.db import Database
from handoff.logging_conf import logger


class GateNotInitializedError(RuntimeError):
    """The gate was used before `initialize()` completed."""


def _label(is_online: bool) -> str:
    return "online" if is_online else "offline"


class ServiceGate:
    """Singleton service flag stored in the database.

    While the gate is offline (paused) incoming contacts are queued; while
    online, operators talk to contacts directly.
    """

    def __init__(self, db: Database):
        self.db = db
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Create the gate row once per process; offline by default."""
        if self._initialized:
            return
        logger.info("Initializing service gate...")
        self.db.ensure_gate(default_online=False)
        self._initialized = True
        logger.info("Service gate initialized")

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            logger.error("Service gate accessed before initialization")
            raise GateNotInitializedError("ServiceGate.initialize() must run first")

    def _read_state(self) -> bool:
        state = self.db.get_gate()
        if state is None:
            logger.error("Service gate row missing, re-initializing")
            self.db.ensure_gate(default_online=False)
            state = self.db.get_gate()
        return bool(state)

    def is_online(self) -> bool:
        """Current gate value; a failed read reports offline."""
        self._ensure_initialized()
        try:
            return self._read_state()
        except Exception as e:
            logger.error(f"Failed to read service gate: {e}")
            return False

    def set_status(self, is_online: bool) -> bool:
        """Set the gate; returns False when it already had that value."""
        self._ensure_initialized()
        try:
            if self._read_state() == is_online:
                logger.info(f"Service already {_label(is_online)}, no update needed")
                return False
            updated = self.db.set_gate(is_online)
            if not updated:
                self.db.ensure_gate(default_online=is_online)
        except Exception as e:
            logger.error(f"Failed to update service gate: {e}")
            raise
        logger.info(f"Service status set to {_label(is_online)}")
        return True
