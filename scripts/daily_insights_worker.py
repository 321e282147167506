"""Cron-friendly worker that generates the daily insight slot for every user.

Takes no arguments: the slot is derived from the current time in the
business timezone, so running it again the same day only skips users that
already have insights. Exits nonzero when listing users fails or when any
user's generation failed.
"""
from __future__ import annotations

import os
import sys

from insight_engine import load_config
from pipeline import InsightDatabase, configure_logging
from scheduler import InsightScheduler
from supabase_utils import SupabaseInsightStore, SupabaseRecordStore, get_supabase_client


def _build_scheduler() -> InsightScheduler:
    config = load_config(os.getenv("INSIGHTS_CONFIG"))
    if os.getenv("SUPABASE_URL"):
        client = get_supabase_client()
        return InsightScheduler(SupabaseRecordStore(client), SupabaseInsightStore(client), cfg=config)
    db = InsightDatabase()
    return InsightScheduler(db, db, cfg=config)


def run() -> int:
    logger = configure_logging()
    try:
        scheduler = _build_scheduler()
        result = scheduler.run_daily_batch()
    except Exception:
        logger.exception("Daily insight batch aborted")
        return 1

    counts = result.counts()
    print(
        f"[DONE] slot={result.slot.isoformat()} generated={counts['generated']} "
        f"skipped={counts['skipped']} empty={counts['empty']} errors={counts['error']}"
    )
    if not result.ok:
        logger.error("Daily insight batch finished with %d failed users", counts["error"])
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(run())
