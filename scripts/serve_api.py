#!/usr/bin/env python3
"""Run the LinkVault API with uvicorn."""

import argparse
import os

import uvicorn

from config.settings import Settings
from observability.logging import setup_logging


def main():
    parser = argparse.ArgumentParser(description="Serve the LinkVault API")
    parser.add_argument("--host", default=os.getenv("LINKVAULT_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("LINKVAULT_PORT", "8001")))
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    args = parser.parse_args()

    settings = Settings.from_env()
    setup_logging(level=settings.logging.level, use_json=settings.logging.use_json,
                  log_file=settings.logging.log_file)

    uvicorn.run("server.rag_api:create_app", factory=True, host=args.host, port=args.port,
                reload=args.reload, log_config=None)


if __name__ == "__main__":
    main()
