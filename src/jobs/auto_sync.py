"""
Scheduled calendar sync.

Runs one sync for every connected account (or a single user) on a given
date. Meant to be invoked by cron or a Kubernetes CronJob:

    python -m jobs.auto_sync --date 2026-03-01 --user alice

Exits non-zero when any account failed to sync.
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from typing import List, Optional

from calendar_sync.engine import SyncEngine
from calendar_sync.errors import SyncError
from calendar_sync.service import today_in
from integration.calendar_integration import calendar_factory
from storage import db
from storage.google_auth import GoogleAuthStore
from storage.planner_store import PlannerStore

logger = logging.getLogger(__name__)


async def sync_accounts(store, factory, plan_date: Optional[date] = None, user_id: Optional[str] = None) -> List[str]:
    """Sync each enabled account; returns the user ids whose run failed."""
    accounts = await store.list_sync_accounts()
    if user_id:
        accounts = [a for a in accounts if a.user_id == user_id]

    failed = []
    for account in accounts:
        day = plan_date or today_in(account.time_zone)
        try:
            calendar = await factory(account.user_id)
            if calendar is None:
                logger.warning(f"No valid Google credentials for user {account.user_id}, skipping")
                failed.append(account.user_id)
                continue
            report = await SyncEngine(store, calendar).sync(account.user_id, day)
        except SyncError as e:
            logger.error(f"Sync failed for user {account.user_id}: {e}")
            failed.append(account.user_id)
            continue
        except Exception:
            # one broken account must not stop the others
            logger.exception(f"Unexpected error syncing user {account.user_id}")
            failed.append(account.user_id)
            continue
        if report.errors:
            failed.append(account.user_id)

    logger.info(f"Auto-sync finished: {len(accounts)} accounts, {len(failed)} failed")
    return failed


async def run(plan_date: Optional[date], user_id: Optional[str]) -> int:
    await db.init_db_pool(min_size=1, max_size=2)
    try:
        auth_store = GoogleAuthStore()
        failed = await sync_accounts(PlannerStore(), calendar_factory(auth_store), plan_date, user_id)
    finally:
        await db.close_db_pool()
    return 1 if failed else 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Sync day plans with Google Calendar")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="plan date (YYYY-MM-DD); defaults to today per account")
    parser.add_argument("--user", default=None, help="only sync this user id")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s"
    )
    return asyncio.run(run(args.date, args.user))


if __name__ == "__main__":
    sys.exit(main())
