"""
PeopleDesk Backend — Maintenance Command
==========================================

What:  Command-line access to the storage maintenance operations, for cron
       jobs and operators without HTTP access.

Usage:
    python -m peopledesk.maintenance reconcile   # delete unreferenced files
    python -m peopledesk.maintenance stats       # file count and total size

Prints the result as JSON and exits non-zero on failure.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from peopledesk.database import dispose_engine
from peopledesk.dependencies import get_profile_picture_service
from peopledesk.exceptions import PeopleDeskError
from peopledesk.main import setup_logging

logger = logging.getLogger(__name__)


async def _run(command: str) -> str:
    service = get_profile_picture_service()
    try:
        if command == "reconcile":
            result = await service.reconcile_orphans()
        else:
            result = await service.storage_stats()
        return result.model_dump_json(indent=2)
    finally:
        await dispose_engine()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m peopledesk.maintenance",
        description="Profile-picture storage maintenance.",
    )
    parser.add_argument("command", choices=["reconcile", "stats"])
    args = parser.parse_args(argv)

    setup_logging()
    try:
        output = asyncio.run(_run(args.command))
    except PeopleDeskError as e:
        logger.error("%s failed: %s | Context: %s", args.command, e.message, e.context)
        return 1
    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
