#!/usr/bin/env python3
"""
League table maintenance from the shell.

Runs the same queue, engine and snapshot service the application uses, so a
recalculation or restore from here takes the same per-table lock.

Usage:
    # Recalculate one table (HIGH priority, waits for the job)
    python scripts/recalculate_table.py recalculate --league 1 --season 2025

    # Compute without writing
    python scripts/recalculate_table.py preview --league 1 --season 2025

    # Snapshots
    python scripts/recalculate_table.py snapshot-create --league 1 --season 2025 --description "before fix"
    python scripts/recalculate_table.py snapshot-list --league 1 --season 2025
    python scripts/recalculate_table.py snapshot-restore snapshot_1_2025_20260101T120000000000_ab12cd
    python scripts/recalculate_table.py snapshot-delete snapshot_1_2025_20260101T120000000000_ab12cd
    python scripts/recalculate_table.py snapshot-prune --days 30

    # Component health
    python scripts/recalculate_table.py health

    # Prometheus exposition text
    python scripts/recalculate_table.py metrics
"""

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

from leaguetable.admin import AdminResponse
from leaguetable.config import load_settings
from leaguetable.errors import ConfigurationError
from leaguetable.runtime import TableAutomation

load_dotenv()

logger = logging.getLogger(__name__)


async def _recalculate(automation: TableAutomation, args) -> AdminResponse:
    response = await automation.admin.enqueue_recalculation(
        args.league, args.season, priority=args.priority, description=args.description,
    )
    if not response.success:
        return response
    job_id = response.data["job_id"]
    idle = await automation.queue.wait_idle(timeout=args.wait)
    if not idle:
        logger.warning(f"Job {job_id} still running after {args.wait}s")
    return await automation.admin.get_job(job_id)


async def _prune(automation: TableAutomation, args) -> AdminResponse:
    try:
        deleted = await automation.snapshots.delete_older_than(args.days)
    except Exception as e:
        return AdminResponse.fail(e)
    return AdminResponse.ok({"deleted": deleted})


async def run(args) -> int:
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e.message}")
        for violation in e.violations:
            logger.error(f"  {violation['field']}: {violation['message']}")
        return 2
    if not args.log_level:
        logging.getLogger().setLevel(settings.LOG_LEVEL)

    automation = TableAutomation(settings)
    await automation.start(install_hooks=False)
    try:
        admin = automation.admin
        if args.command == "recalculate":
            response = await _recalculate(automation, args)
        elif args.command == "preview":
            response = await admin.preview_table(args.league, args.season)
        elif args.command == "snapshot-create":
            response = await admin.create_snapshot(args.league, args.season, args.description)
        elif args.command == "snapshot-list":
            response = await admin.list_snapshots(args.league, args.season)
        elif args.command == "snapshot-restore":
            response = await admin.restore_snapshot(args.snapshot_id)
        elif args.command == "snapshot-delete":
            response = await admin.delete_snapshot(args.snapshot_id)
        elif args.command == "snapshot-prune":
            response = await _prune(automation, args)
        elif args.command == "metrics":
            response = await admin.prometheus_metrics()
        else:
            response = await admin.health()
    finally:
        await automation.stop()

    print(json.dumps(response.model_dump(mode="json"), indent=2, default=str))
    return 0 if response.success else 1


def main():
    parser = argparse.ArgumentParser(description="League table recalculation and snapshots")
    parser.add_argument("--log-level", help="Logging level (default: LEAGUETABLE_LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_table_args(p):
        p.add_argument("--league", type=int, required=True, help="League id")
        p.add_argument("--season", type=int, required=True, help="Season id")

    p = sub.add_parser("recalculate", help="Recalculate a table through the queue")
    add_table_args(p)
    p.add_argument("--priority", default="HIGH", choices=["LOW", "NORMAL", "HIGH"])
    p.add_argument("--description", help="Reason recorded on the job")
    p.add_argument("--wait", type=float, default=120.0, help="Seconds to wait for the job (default: 120)")

    p = sub.add_parser("preview", help="Compute a table without writing it")
    add_table_args(p)

    p = sub.add_parser("snapshot-create", help="Snapshot the current table")
    add_table_args(p)
    p.add_argument("--description", help="Snapshot description")

    p = sub.add_parser("snapshot-list", help="List snapshots of a table")
    add_table_args(p)

    p = sub.add_parser("snapshot-restore", help="Restore a snapshot")
    p.add_argument("snapshot_id")

    p = sub.add_parser("snapshot-delete", help="Delete a snapshot")
    p.add_argument("snapshot_id")

    p = sub.add_parser("snapshot-prune", help="Delete snapshots older than N days")
    p.add_argument("--days", type=int, default=None, help="Maximum age (default: SNAPSHOT_MAX_AGE_DAYS)")

    sub.add_parser("health", help="Queue, database and snapshot storage health")
    sub.add_parser("metrics", help="Prometheus exposition text of this process")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, (args.log_level or "INFO").upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
