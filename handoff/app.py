"""Main application - queues contacts while paused and evicts unresponsive ones."""
import signal
import sys
import time

from handoff.logging_conf import logger
from handoff import settings
from handoff.db import Database
from handoff.gate import ServiceGate
from handoff.gateway_client import GatewayClient
from handoff.handler import MessageHandler
from handoff.notifier import Notifier
from handoff.operators import OperatorDirectory
from handoff.poller import InboundPoller
from handoff.queue.manager import QueueManager
from handoff.sweeper import SweeperConfig, TimeoutSweeper


class Application:
    """Wires the queue, gate, sweeper and transport together."""

    def __init__(self):
        self.db = Database()
        self.client = GatewayClient()
        self.notifier = Notifier(self.client)
        self.queue = QueueManager(self.db)
        self.gate = ServiceGate(self.db)
        self.operators = OperatorDirectory(self.db)
        self.sweeper = TimeoutSweeper(self.queue, config=SweeperConfig.from_settings())
        self.handler = MessageHandler(self.queue, self.gate, self.operators, self.notifier)
        self.poller = InboundPoller(self.client, self.handler)
        self.running = False

    def start(self):
        """Start the application."""
        logger.info("=" * 50)
        logger.info("Support Hand-off Queue")
        logger.info("=" * 50)
        logger.info(f"Response timeout: {self.sweeper.config.timeout_seconds}s")
        logger.info(f"Warning lead: {self.sweeper.config.warning_lead_seconds}s")
        logger.info(f"Sweep interval: {self.sweeper.config.interval_seconds}s")
        logger.info("=" * 50)

        # Set first so stop() releases whatever a failed start already opened.
        self.running = True
        settings.validate_config()
        self.db.ensure_schema()
        self.gate.initialize()
        logger.info(f"Initial queue size: {self.queue.size()}")

        self.sweeper.bind_notifier(self.notifier)
        if not self.sweeper.start():
            raise RuntimeError("Timeout sweeper failed to start")
        self.poller.start()
        logger.info("Started - waiting for messages")

    def stop(self):
        """Stop the application; the sweeper halts before the store closes."""
        if not self.running:
            return
        self.running = False

        for name, step in (
            ("poller", self.poller.stop),
            ("sweeper", self.sweeper.stop),
            ("notifier", self.notifier.close),
            ("database", self.db.close),
        ):
            try:
                step()
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}", exc_info=True)
        logger.info("Stopped")

    def run(self):
        """Main loop."""
        try:
            self.start()
            while self.running:
                time.sleep(1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()


def main():
    """Entry point."""
    app = Application()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        app.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        app.run()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
