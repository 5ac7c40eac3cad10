"""Polling service for inbound chat messages from the gateway."""
import time
import threading

from handoff.logging_conf import logger
from handoff import settings
from handoff.checkpoint import CheckpointManager
from handoff.gateway_client import GatewayClient
from handoff.handler import InboundMessage, MessageHandler


class InboundPoller:
    """Polls the gateway for new messages and hands them to the handler."""

    def __init__(self, client: GatewayClient, handler: MessageHandler,
                 checkpoint: CheckpointManager = None, polling_interval: int = 0):
        self.client = client
        self.handler = handler
        self.checkpoint = checkpoint or CheckpointManager()
        self.running = False
        self.thread = None
        self.polling_interval = polling_interval or settings.INBOUND_POLL_INTERVAL

    def start(self):
        """Start the poller in a background thread."""
        if self.running:
            logger.warning("Poller is already running")
            return

        self.running = True
        self.thread = threading.Thread(target=self._run, name="inbound-poller", daemon=True)
        self.thread.start()
        logger.info(f"Poller started (interval: {self.polling_interval}s)")

    def stop(self):
        """Stop the poller."""
        if not self.running:
            return

        self.running = False
        if self.thread:
            self.thread.join(timeout=35)
        logger.info("Poller stopped")

    def _run(self):
        """Main poller loop."""
        logger.info("Poller thread started")

        while self.running:
            try:
                handled = self.poll_once()
            except Exception as e:
                logger.error(f"Poller error: {e}", exc_info=True)
                handled = 0

            # Drain a backlog without sleeping
            if handled:
                continue
            for _ in range(self.polling_interval):
                if not self.running:
                    break
                time.sleep(1)

        logger.info("Poller thread stopped")

    def poll_once(self) -> int:
        """Fetch one batch of messages and route them. Returns count handled."""
        cursor = self.checkpoint.get_cursor()
        update = self.client.fetch_updates(cursor)
        messages = update["messages"]

        handled = 0
        for payload in messages:
            try:
                self.handler.handle(InboundMessage.from_payload(payload))
                handled += 1
            except Exception as e:
                logger.error(f"Failed to handle message {payload.get('id')}: {e}", exc_info=True)

        if messages:
            logger.debug(f"Handled {handled}/{len(messages)} inbound messages")
            self.checkpoint.save_cursor(update["cursor"])
        return len(messages)
