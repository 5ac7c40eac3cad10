"""Checkpoint management for the inbound message cursor."""
import json
from datetime import datetime
from pathlib import Path
from typing import Optional

from handoff import settings
from handoff.logging_conf import logger


class CheckpointManager:
    """Persists the gateway cursor so restarts don't replay messages."""

    def __init__(self, checkpoint_dir: Optional[Path] = None):
        self.checkpoint_file: Path = Path(checkpoint_dir or settings.CHECKPOINT_DIR) / "gateway.json"
        self.checkpoint_file.parent.mkdir(parents=True, exist_ok=True)

    def get_cursor(self) -> Optional[str]:
        """
        Get the last processed gateway cursor.

        Returns:
            Cursor string, or None on first run or unreadable checkpoint
        """
        try:
            if self.checkpoint_file.exists():
                with open(self.checkpoint_file, "r") as f:
                    data = json.load(f)
                    return data.get("cursor")
        except Exception as e:
            logger.warning(f"Failed to read checkpoint: {e}")
        return None

    def save_cursor(self, cursor: Optional[str]) -> None:
        """Save the cursor to checkpoint."""
        if cursor is None:
            return
        try:
            data = {
                "cursor": cursor,
                "updated_at": datetime.now().isoformat()
            }
            tmp_file = self.checkpoint_file.with_suffix(".tmp")
            with open(tmp_file, "w") as f:
                json.dump(data, f, indent=2)
            tmp_file.replace(self.checkpoint_file)
            logger.debug(f"Saved checkpoint: {cursor}")
        except Exception as e:
            logger.error(f"Failed to save checkpoint: {e}", exc_info=True)
