"""Run one election scheduler tick against the configured database.

Usage (from the repository root):

    python -m scripts.run_scheduler_once

Exits non-zero when the ballot store cannot be reached.
"""

import asyncio
import sys

from app.core.config import settings
from app.core.database import close_db_pool, init_db_pool
from app.core.errors import AppError
from app.core.logging_config import setup_logging
from app.services.scheduler import ElectionScheduler
from app.store.postgres import PostgresBallotStore


async def run_once() -> int:
    setup_logging()
    pool = await init_db_pool(settings)
    try:
        scheduler = ElectionScheduler(PostgresBallotStore(pool))
        transitions = await scheduler.trigger_now(raise_errors=True)
    except AppError as e:
        print(f"✗ Scheduler tick failed: {e.message}")
        return 1
    finally:
        await close_db_pool()

    if not transitions:
        print("No elections due")
    for transition in transitions:
        print(
            f"✓ Election {transition['election_id']} "
            f"({transition['election_name']}) {transition['action']}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(run_once()))
