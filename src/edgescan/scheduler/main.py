"""
edgescan: scheduled edge scanner.

Process entry point. Reads config/pipeline.yaml, loads the configured sources,
processors and detectors, and either runs the pipeline every interval_seconds
or, with --once, runs a single pass, routes it and exits.

Usage:
    edgescan                          # long-running scheduler
    edgescan --once                   # one on-demand run
    edgescan --config other.yaml --log-level DEBUG

Environment variables:
    EDGESCAN_CONFIG        Config file path (default: config/pipeline.yaml)
    LOG_LEVEL              Logging level (default: INFO)
    OPENAI_API_KEY         Enables the escalation analyzer
    ESCALATION_*           Escalation overrides (see ConfigLoader)
    PIPELINE_VERSION       Git SHA recorded in run lineage

Exit codes:
    0  clean shutdown, or --once run completed
    1  invalid config, unloadable plug-in, or unexpected error

Shutdown:
    SIGTERM / SIGINT  -> graceful shutdown after the current run
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from edgescan.framework.errors import EdgescanError
from edgescan.scheduler.run_scheduler import RunScheduler

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scan prediction markets for trading edges")
    parser.add_argument(
        "--config",
        default=os.getenv("EDGESCAN_CONFIG", RunScheduler.DEFAULT_CONFIG_PATH),
        help="Pipeline config file (default: $EDGESCAN_CONFIG or config/pipeline.yaml)",
    )
    parser.add_argument(
        "--once", action="store_true",
        help="Run the pipeline once, route the result and exit",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: $LOG_LEVEL or INFO)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stdout,
    )

    scheduler = RunScheduler(args.config)
    try:
        scheduler.build()
    except EdgescanError as exc:
        logger.error("Startup failed | config=%s | error=%s", args.config, exc)
        sys.exit(1)

    if args.once:
        run_once(scheduler)
    else:
        serve(scheduler)


def run_once(scheduler: RunScheduler) -> None:
    """One on-demand pass; the routed edges are the output."""
    try:
        result = asyncio.run(scheduler.run_once())
    except Exception as exc:
        logger.exception("Run failed: %s", exc)
        sys.exit(1)
    logger.info(
        "Run finished | run_id=%s | edges=%d | errors=%d",
        result.stats.run_id,
        len(result.edges),
        len(result.errors),
    )


def serve(scheduler: RunScheduler) -> None:
    """Tick until SIGTERM/SIGINT."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def _handle_signal(sig: signal.Signals) -> None:
        logger.info("Received %s, initiating graceful shutdown", sig.name)
        scheduler.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _handle_signal, sig)

    try:
        logger.info("edgescan scheduler starting")
        loop.run_until_complete(scheduler.run())
    except Exception as exc:
        logger.exception("Scheduler exited with error: %s", exc)
        sys.exit(1)
    finally:
        loop.close()
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    main()
