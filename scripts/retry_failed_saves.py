#!/usr/bin/env python3
"""
Failed call-log replay
Writes every backed-up call log to PostgreSQL; meant to run from cron
"""

import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from jerry_voice.core.config import config
from jerry_voice.db.call_log_store import CallLogStore
from jerry_voice.db.failed_saves import FailedSaveQueue


async def retry_failed_saves() -> int:
    """Replay the queue once; returns the number of entries still pending"""
    queue = FailedSaveQueue(config.failed_saves_dir)
    print(f"[{datetime.now()}] {len(queue)} backed-up call log(s) in {config.failed_saves_dir}")
    if not len(queue):
        return 0

    store = CallLogStore(config.database_url)
    try:
        written, remaining = await queue.replay(store.upsert_call_log)
    finally:
        store.close()
    print(f"Written: {written}, remaining: {remaining}")
    return remaining


if __name__ == "__main__":
    sys.exit(1 if asyncio.run(retry_failed_saves()) else 0)
