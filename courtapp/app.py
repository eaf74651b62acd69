#!/usr/bin/env python3
"""
Command-line entry points for the court booking scheduler.

Each sub-command maps to one :class:`BookingService` operation and prints
its JSON result, so the same calls can be wired to cron or an HTTP host.
"""
from tracking import t

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, List, Optional

from infrastructure.logging_config import setup_logging
from infrastructure.settings import get_settings
from reservations.services.reservation_service import BookingService


def build_parser() -> argparse.ArgumentParser:
    t('courtapp.app.build_parser')
    parser = argparse.ArgumentParser(
        prog='courtbot',
        description='Claim a tennis court the moment its booking window opens.',
    )
    sub = parser.add_subparsers(dest='command', required=True)

    schedule = sub.add_parser('schedule', help='Book a date/time now or when its window opens')
    schedule.add_argument('date', help='Target date, YYYY-MM-DD')
    schedule.add_argument('time', help='Target start time, HH:MM (24h, venue time)')

    cancel = sub.add_parser('cancel', help='Cancel the active schedule or a deferred trigger')
    cancel.add_argument('id', nargs='?', default=None, help='Schedule or trigger id')

    sub.add_parser('status', help='Show the schedule record and activity log')
    sub.add_parser('triggers', help='List pending deferred triggers')
    sub.add_parser('tick', help='Fire due triggers and run the schedule once')
    sub.add_parser('loop', help='Keep ticking until interrupted')

    webhook = sub.add_parser('webhook', help='Deliver a deferred trigger callback')
    webhook.add_argument('date')
    webhook.add_argument('time')
    webhook.add_argument('trigger_id')

    run = sub.add_parser('run', help='Attempt a booking right away')
    run.add_argument('date', nargs='?', default=None)
    run.add_argument('time', nargs='?', default=None)

    return parser


async def dispatch(service: BookingService, args: argparse.Namespace) -> Any:
    """Run the sub-command and return its JSON-serialisable result."""

    t('courtapp.app.dispatch')
    command = args.command
    if command == 'schedule':
        return await service.trigger(args.date, args.time)
    if command == 'cancel':
        return await service.cancel(args.id)
    if command == 'status':
        return service.status()
    if command == 'triggers':
        return service.list_triggers()
    if command == 'tick':
        return await service.tick()
    if command == 'webhook':
        return await service.webhook(args.date, args.time, args.trigger_id)
    if command == 'run':
        return await service.run_now(args.date, args.time)
    if command == 'loop':
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, service.stop)
            except NotImplementedError:  # pragma: no cover - Windows
                pass
        await service.serve()
        return {"stopped": True, "report": service.performance_report()}
    raise ValueError(f"Unknown command {command}")


async def run_command(service: BookingService, args: argparse.Namespace) -> Any:
    t('courtapp.app.run_command')
    try:
        return await dispatch(service, args)
    finally:
        await service.drain()


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point used by both the console script and module execution."""
    t('courtapp.app.main')

    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(production_mode=settings.production_mode)
    logger = logging.getLogger('Main')

    service = BookingService(settings)
    try:
        result = asyncio.run(run_command(service, args))
    except KeyboardInterrupt:
        logger.info("Stopped by user (Ctrl+C)")
        return 130
    except Exception as exc:
        logger.error("Command %s failed: %s", args.command, exc, exc_info=True)
        return 1

    print(json.dumps(result, indent=2, default=str))
    if isinstance(result, dict) and (result.get('accepted') is False or 'error' in result):
        return 2
    return 0


if __name__ == '__main__':
    sys.exit(main())
