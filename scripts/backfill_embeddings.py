#!/usr/bin/env python3
"""Generate embeddings for complete captures that have none."""

import argparse
import asyncio
import json

from config.settings import Settings
from observability.logging import setup_logging
from server.container import AppContainer


async def main():
    parser = argparse.ArgumentParser(description="Backfill missing LinkVault embeddings")
    parser.add_argument("--limit", type=int, help="Maximum number of records to embed")
    args = parser.parse_args()

    settings = Settings.from_env()
    setup_logging(level=settings.logging.level, use_json=settings.logging.use_json,
                  log_file=settings.logging.log_file)

    container = AppContainer(settings)
    try:
        result = await container.embedder.backfill(limit=args.limit)
    finally:
        await container.close()

    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    asyncio.run(main())
