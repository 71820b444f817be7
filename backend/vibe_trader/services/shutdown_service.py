"""Shutdown service for graceful application termination."""

import logging
import signal

logger = logging.getLogger(__name__)


class ShutdownService:
    """Service for handling graceful shutdown operations."""

    def __init__(self, cycle_controller):
        """
        Initialize shutdown service.

        Args:
            cycle_controller: Controller whose ``request_stop()`` ends the loop
        """
        self.cycle_controller = cycle_controller

    def shutdown(self) -> None:
        """
        Gracefully shutdown the agent.

        Runs inside signal handlers, so it only requests the stop; the loop
        completes the in-flight symbol and then performs the transition.
        """
        logger.info("=" * 60)
        logger.info("SHUTDOWN SIGNAL RECEIVED")
        logger.info("=" * 60)
        logger.info("Completing current symbol before shutdown...")
        self.cycle_controller.request_stop()

    def register_signal_handlers(self) -> None:
        """
        Register signal handlers for graceful shutdown.

        Handles SIGINT (Ctrl+C) and SIGTERM (kill command).
        """
        def signal_handler(signum, frame):
            signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
            logger.info(f"Received {signal_name}")
            self.shutdown()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        logger.info("Signal handlers registered (SIGINT, SIGTERM)")
