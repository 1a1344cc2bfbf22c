#!/usr/bin/env python3
"""
CLI for the alert bridge.

Usage examples:
  # Run every periodic task plus the Telegram update poller
  alert-bridge run

  # Run a single task once (e.g. from an external cron)
  alert-bridge task flush_hourly

  # Serve Telegram updates over a webhook instead of polling
  alert-bridge webhook --port 8080
"""
from __future__ import annotations

import argparse
import logging
import threading
from typing import List, Optional

from alert_bridge.alerts.delivery import TelegramTransport
from alert_bridge.alerts.orchestration import TASK_NAMES, BridgeOrchestrator, create_orchestrator_from_settings
from alert_bridge.alerts.telegram_handler import UpdateHandler, run_webhook, start_polling_thread
from alert_bridge.config import Settings
from alert_bridge.scheduler import PeriodicTask, TaskScheduler, daily_at, every, hourly

logger = logging.getLogger(__name__)


def build_tasks(orchestrator: BridgeOrchestrator, settings: Settings) -> List[PeriodicTask]:
    return [
        PeriodicTask("ingest", orchestrator.ingest, every(settings.ingest_interval_secs), run_at_start=True),
        PeriodicTask("flush_hourly", orchestrator.flush_hourly, hourly(minute=0)),
        PeriodicTask("reset_epoch", orchestrator.reset_epoch, daily_at(settings.epoch_reset_at, settings.display_tz)),
        PeriodicTask("news_ingest", orchestrator.news_ingest, every(settings.news_ingest_interval_secs), run_at_start=True),
        PeriodicTask("news_tick", orchestrator.news_tick, every(settings.news_tick_interval_secs)),
        PeriodicTask("purge", orchestrator.purge, daily_at(settings.purge_at, settings.display_tz)),
    ]


def _update_handler(orchestrator: BridgeOrchestrator, settings: Settings) -> UpdateHandler:
    transport = TelegramTransport(settings.telegram_bot_token, timeout=settings.http_timeout_secs)
    return UpdateHandler(transport, orchestrator.handle_callback)


def cmd_run(orchestrator: BridgeOrchestrator, settings: Settings) -> None:
    scheduler = TaskScheduler(build_tasks(orchestrator, settings))
    stop = threading.Event()
    scheduler.start()
    start_polling_thread(_update_handler(orchestrator, settings), stop)
    logger.info("Bridge running, Ctrl+C to stop")
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        logger.info("Stopping bridge...")
    finally:
        stop.set()
        scheduler.stop()


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(description="Chat alert to Telegram bridge")
    p.add_argument("--db-path", help="SQLite state file (overrides BRIDGE_DB_PATH)")
    p.add_argument("--log-level", help="Logging level (overrides LOG_LEVEL)")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run all periodic tasks and the update poller")

    task_p = sub.add_parser("task", help="Run one task once and exit")
    task_p.add_argument("name", choices=TASK_NAMES)

    hook_p = sub.add_parser("webhook", help="Run all periodic tasks and serve Telegram updates over HTTP")
    hook_p.add_argument("--port", type=int, help="Listen port (default: $PORT or 8080)")

    args = p.parse_args(argv)

    settings = Settings.from_overrides(db_path=args.db_path, log_level=args.log_level)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    )

    orchestrator = create_orchestrator_from_settings(settings)

    if args.command == "run":
        cmd_run(orchestrator, settings)
    elif args.command == "task":
        logger.info(f"Running task {args.name}")
        result = orchestrator.run_task(args.name)
        logger.info(f"Task {args.name} result: {result!r}")
    elif args.command == "webhook":
        scheduler = TaskScheduler(build_tasks(orchestrator, settings))
        scheduler.start()
        try:
            run_webhook(_update_handler(orchestrator, settings), port=args.port)
        finally:
            scheduler.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
