#!/usr/bin/env python3
"""Requeue failed captures in paced batches.

Runs the same sweep as the scheduled ``retry_failed`` job, once, from the
command line. With ``--pending`` it runs the ``reconcile_pending`` sweep
instead, republishing captures whose queue handoff failed.
"""

import argparse
import asyncio
import json

from config.settings import Settings
from observability.logging import setup_logging
from server.container import AppContainer


async def main():
    parser = argparse.ArgumentParser(description="Requeue failed LinkVault captures")
    parser.add_argument("--batch-size", type=int, help="Captures per batch (default from RETRY_BATCH_SIZE)")
    parser.add_argument("--delay", type=float, help="Seconds between batches (default from RETRY_DELAY_SECONDS)")
    parser.add_argument("--source-type", help="Only retry captures of this source type")
    parser.add_argument("--limit", type=int, help="Maximum number of captures to retry")
    parser.add_argument("--pending", action="store_true",
                        help="Republish stranded pending captures instead of failed ones")
    parser.add_argument("--older-than", type=float,
                        help="With --pending, minimum age in seconds (default from RETRY_STALE_PENDING_SECONDS)")
    args = parser.parse_args()

    settings = Settings.from_env()
    setup_logging(level=settings.logging.level, use_json=settings.logging.use_json,
                  log_file=settings.logging.log_file)

    container = AppContainer(settings)
    try:
        if args.pending:
            report = await container.retry_service.requeue_stale_pending(
                older_than_seconds=args.older_than,
                batch_size=args.batch_size,
                delay_seconds=args.delay,
                limit=args.limit,
            )
        else:
            report = await container.retry_service.requeue_failed(
                batch_size=args.batch_size,
                delay_seconds=args.delay,
                source_type=args.source_type,
                limit=args.limit,
            )
    finally:
        await container.close()

    print(json.dumps(report.to_dict(), indent=2))


if __name__ == "__main__":
    asyncio.run(main())
