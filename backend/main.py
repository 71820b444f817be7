#!/usr/bin/env python3
"""
Main entry point for the Vibe Trader agent.

This script loads configuration, initializes the loop controller,
and starts the trading agent with proper error handling.
"""

import argparse
import json
import logging
import sys
import threading
import time
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

from vibe_trader.config import Config
from vibe_trader.loop_controller import LoopController


class JSONFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def setup_logging(verbose: bool = False, json_logs: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, set log level to DEBUG, otherwise INFO
        json_logs: If True, enable JSON structured logging
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    Path("logs").mkdir(exist_ok=True)

    if json_logs:
        formatter = JSONFormatter()
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        date_format = "%Y-%m-%d %H:%M:%S"
        formatter = logging.Formatter(log_format, date_format)

    handlers = [
        logging.StreamHandler(sys.stdout),
        logging.FileHandler("logs/agent.log", mode="a")
    ]
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=log_level,
        handlers=handlers
    )

    if json_logs:
        json_handler = logging.FileHandler("logs/agent.json", mode="a")
        json_handler.setFormatter(formatter)
        logging.root.addHandler(json_handler)

    # Reduce noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("openai._base_client").setLevel(logging.WARNING)


def parse_arguments() -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Vibe Trader - LLM-driven perpetual futures agent for Aster",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                    # Run with default .env file
  python main.py --env .env.live    # Run with custom env file
  python main.py --verbose          # Run with debug logging
  python main.py --no-api           # Run without the control API

Safety:
  DRY_RUN_MODE=true (the default) logs orders instead of submitting them.
        """
    )

    parser.add_argument(
        "--env",
        type=str,
        default=".env",
        help="Path to environment file (default: .env)"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )

    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Enable JSON structured logging (outputs to logs/agent.json)"
    )

    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Do not start the control API server"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="Vibe Trader v1.0.0"
    )

    return parser.parse_args()


def start_api_server(controller: LoopController, host: str, port: int) -> None:
    """Serve the control API from a daemon thread."""
    import uvicorn
    import api_server

    logger = logging.getLogger(__name__)

    # Register controller BEFORE starting API server
    api_server.loop_controller_instance = controller
    logger.info("Loop controller registered with API server")

    def run_api_server():
        try:
            logger.info("Starting API server thread...")
            uvicorn.run(api_server.app, host=host, port=port, log_level="warning")
        except Exception as e:
            logger.error(f"API server thread crashed: {e}", exc_info=True)

    api_thread = threading.Thread(target=run_api_server, daemon=True)
    api_thread.start()
    logger.info(f"API server listening on http://{host}:{port}")


def main() -> int:
    """
    Main entry point for the trading agent.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    args = parse_arguments()

    setup_logging(verbose=args.verbose, json_logs=args.json_logs)
    logger = logging.getLogger(__name__)

    logger.info("=" * 80)
    logger.info("VIBE TRADER")
    logger.info("=" * 80)

    # Load configuration
    try:
        logger.info(f"Loading configuration from: {args.env}")

        if args.env != ".env":
            if not Path(args.env).exists():
                logger.error(f"Environment file not found: {args.env}")
                return 1
            load_dotenv(args.env, override=True)

        config = Config.from_env()
        logger.info("[OK] Configuration loaded successfully")
        logger.debug(f"Configuration: {config.redacted()}")

    except ValueError as e:
        logger.error(f"[ERROR] Configuration error: {e}")
        logger.error("Please check your .env file and ensure all required variables are set.")
        logger.error("See .env.example for reference.")
        return 1

    # Display run mode warning
    if not config.dry_run:
        logger.warning("!" * 80)
        logger.warning("!!! LIVE MODE ENABLED !!!")
        logger.warning("!!! REAL MONEY WILL BE TRADED !!!")
        logger.warning("!" * 80)
        logger.warning("Press Ctrl+C within 5 seconds to abort...")

        try:
            time.sleep(5)
        except KeyboardInterrupt:
            logger.info("Aborted by user")
            return 0
    else:
        logger.info("=" * 80)
        logger.info("DRY RUN MODE - orders are logged, not submitted")
        logger.info("=" * 80)

    # Initialize loop controller
    try:
        logger.info("Initializing loop controller...")
        controller = LoopController(config)
        logger.info("[OK] Loop controller initialized")
    except Exception as e:
        logger.error(f"[ERROR] Failed to initialize loop controller: {e}", exc_info=True)
        return 1

    controller.register_signal_handlers()

    # Run startup tests
    logger.info("Running startup connectivity tests...")
    if not controller.startup():
        logger.error("[ERROR] Startup tests failed")
        logger.error("Please check your API credentials and network connectivity.")
        return 1
    logger.info("[OK] All startup tests passed")

    if not args.no_api:
        try:
            start_api_server(controller, config.api_host, config.api_port)
        except Exception as e:
            logger.warning(f"Failed to start API server: {e}", exc_info=True)
            logger.warning("Agent control is limited to signals")

    # Start main loop
    try:
        logger.info("Starting main trading loop...")
        logger.info("Press Ctrl+C to stop gracefully")
        logger.info("=" * 80)

        controller.run()

        logger.info("=" * 80)
        logger.info("Agent stopped successfully")
        logger.info("=" * 80)
        return 0

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        controller.stop()
        return 0
    except Exception as e:
        logger.error(f"[ERROR] Fatal error in main loop: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
