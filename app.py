#!/usr/bin/env python3
"""
Kill Switch Guard - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Runs the per-account loss monitor.

- Compatible with PM2 process management
- Can be started, stopped, and restarted safely
- Handles SIGINT / SIGTERM gracefully: the in-flight
  monitoring cycle completes before exit

============================================================
USAGE
============================================================
Direct execution:
    python app.py --monitor

Single cycle (cron / smoke test):
    python app.py --single-cycle

Environment-based configuration (.env honoured):
    ENABLE_MONITORING=true MONITOR_INTERVAL_MS=500 python app.py

============================================================
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Optional

from redis.asyncio import Redis

from core.constants import SYSTEM_NAME, SYSTEM_VERSION
from core.exceptions import TradingException
from database.engine import (
    create_database_engine,
    create_session_factory,
    initialize_database,
    verify_database_connection,
)
from risk_guard.config import RiskGuardConfig, load_config_from_env
from risk_guard.service import RiskGuardService, create_risk_guard


# ============================================================
# LOGGING
# ============================================================

def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger(SYSTEM_NAME)


# ============================================================
# CLI
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog=SYSTEM_NAME,
        description="Per-account loss kill switch monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --monitor                 # Run the monitor until signalled
  %(prog)s --single-cycle            # Evaluate every account once and exit
  %(prog)s --init-db --single-cycle  # Create tables first
        """
    )

    execution_group = parser.add_argument_group("Execution Options")

    execution_group.add_argument(
        "--monitor",
        action="store_true",
        help="Start the monitoring loop (overrides ENABLE_MONITORING)",
    )

    execution_group.add_argument(
        "--single-cycle",
        action="store_true",
        help="Run a single monitoring cycle and exit (no loop)",
    )

    execution_group.add_argument(
        "--init-db",
        action="store_true",
        help="Create database tables before starting",
    )

    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        help="Log level (default: LOG_LEVEL or INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="text",
        help="Log output format (default: text)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {SYSTEM_VERSION}",
    )

    return parser


# ============================================================
# RUNTIME
# ============================================================

def install_signal_handlers(stop_event: asyncio.Event) -> None:
    """Install signal handlers for graceful shutdown."""
    if sys.platform == "win32":
        signal.signal(signal.SIGINT, lambda signum, frame: stop_event.set())
        return

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)


async def run_application(args: argparse.Namespace, config: Optional[RiskGuardConfig] = None) -> int:
    """
    Run the monitor.

    Args:
        args: Parsed CLI arguments
        config: Configuration (from environment if None)

    Returns:
        Exit code
    """
    logger = logging.getLogger(__name__)

    config = config or load_config_from_env()
    logger.info(f"Configuration: {config.to_dict()}")

    engine = create_database_engine(config.database_url)
    session_factory = create_session_factory(engine)
    redis_client = Redis.from_url(config.redis_url)

    service: Optional[RiskGuardService] = None
    try:
        if args.init_db:
            await initialize_database(engine)
        else:
            await verify_database_connection(engine)

        service = create_risk_guard(session_factory, redis_client, config)

        if args.single_cycle:
            logger.info("Running single cycle...")
            stats = await service.scheduler.run_cycle()
            print(json.dumps(stats.to_dict(), indent=2))
            return 1 if stats.listing_failed else 0

        if not (args.monitor or config.enable_monitoring):
            logger.warning("Monitoring disabled (set ENABLE_MONITORING=true or pass --monitor)")
            return 0

        stop_event = asyncio.Event()
        install_signal_handlers(stop_event)

        await service.start_monitoring()
        logger.info("Monitor running (press Ctrl+C to stop)...")
        await stop_event.wait()
        logger.info("Shutdown requested")
        return 0

    except TradingException as e:
        logger.critical(f"Startup failed: {e.to_log_format()}")
        return 1

    finally:
        if service is not None:
            await service.close()
        await redis_client.aclose()
        await engine.dispose()


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    setup_logging(args.log_level, args.log_format)

    return asyncio.run(run_application(args))


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
