from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
from typing import List, Optional

from pydantic import ValidationError

from .config.config_parser import DirectoryConfig, parse_config_file
from .config.logging_config import init_logging
from .errors import StoreUnavailable
from .service import DirectoryService
from .stats import format_report_json


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the directory refresh service.
    Parses arguments, loads configuration, builds the service and runs it.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 on clean shutdown or a published --once cycle, 1 on
        configuration errors, store errors or a failed --once cycle, 2 after
        SIGTERM/SIGINT.

    Example use:
        CLI:
            PYTHONPATH=src python -m sampdir.main --config config/config.yaml --once
    """
    parser = argparse.ArgumentParser(
        description="SA-MP server directory refresh service"
    )
    parser.add_argument(
        "--config", default="config/config.yaml", help="Path to YAML config"
    )
    parser.add_argument(
        "-v",
        "--var",
        action="append",
        default=[],
        metavar="KEY=YAML",
        help="Override a config variable (repeatable)",
    )
    parser.add_argument(
        "--refresh-now",
        action="store_true",
        help="Trigger a refresh immediately after start-up",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run one refresh cycle, print its summary as JSON and exit",
    )
    mode.add_argument(
        "--dump",
        action="store_true",
        help="Print the persisted directory as JSON and exit",
    )
    args = parser.parse_args(argv)

    try:
        raw_cfg = parse_config_file(args.config, cli_vars=args.var)
        cfg = DirectoryConfig.from_mapping(raw_cfg)
    except (OSError, ValueError, ValidationError) as exc:
        print(str(exc))
        return 1

    # Initialize logging before any other operations
    init_logging(cfg.logging)
    logger = logging.getLogger("sampdir.main")
    logger.info("Loaded config from %s", args.config)

    try:
        service = DirectoryService.from_config(cfg)
    except (StoreUnavailable, KeyError, TypeError, ValueError) as exc:
        logger.error("Could not build directory service: %s", exc)
        return 1

    if args.dump:
        try:
            ok = service.load_persisted()
            if ok:
                print(json.dumps(service.current().to_dict(), indent=2))
            return 0 if ok else 1
        finally:
            service.store.close()

    if args.once:
        try:
            report = service.run_once()
        finally:
            service.store.close()
        if report is None:  # pragma: no cover - fresh guard is never held
            return 1
        print(format_report_json(report))
        return 0 if report.outcome == "published" else 1

    shutdown_event = threading.Event()
    exit_code = 0

    def _request_shutdown(reason: str, code: int) -> None:
        nonlocal exit_code
        if shutdown_event.is_set():
            return
        exit_code = code
        shutdown_event.set()
        logger.info("Received %s, initiating shutdown (exit code=%d)", reason, code)

    def _sigusr1_handler(_signum, _frame):
        started = service.trigger_refresh()
        logger.info("SIGUSR1: refresh requested (started=%s)", started)

    def _sigterm_handler(_signum, _frame):
        _request_shutdown("SIGTERM", 2)

    def _sigint_handler(_signum, _frame):
        _request_shutdown("SIGINT", 2)

    # Register handlers (Unix only)
    try:
        signal.signal(signal.SIGUSR1, _sigusr1_handler)
        logger.debug("Installed SIGUSR1 handler to trigger a refresh")
    except (AttributeError, ValueError):
        logger.warning("Could not install SIGUSR1 handler on this platform")

    try:
        signal.signal(signal.SIGTERM, _sigterm_handler)
        signal.signal(signal.SIGINT, _sigint_handler)
    except ValueError:  # pragma: no cover - not on the main thread
        logger.warning("Could not install termination handlers")

    try:
        service.start(refresh_now=args.refresh_now)
        while not shutdown_event.is_set():
            shutdown_event.wait(1.0)
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
        shutdown_event.set()
    finally:
        logger.info("Stopping directory service")
        service.stop()

    return exit_code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
