"""Command-line interface for ingesting sales data and generating insights."""
from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from pathlib import Path
from typing import List, Optional

from aggregator import summarize_period
from insight_engine import MODES, generate_insights, load_config, render_insights_markdown
from pipeline import InsightDatabase, configure_logging, load_fixture_json, load_records_csv
from scheduler import InsightScheduler
from windows import comparison_windows


def _parse_day(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _build_scheduler(args: argparse.Namespace) -> InsightScheduler:
    config = load_config(args.config)
    if args.use_supabase:
        from supabase_utils import SupabaseInsightStore, SupabaseRecordStore, get_supabase_client

        client = get_supabase_client()
        return InsightScheduler(SupabaseRecordStore(client), SupabaseInsightStore(client), cfg=config)

    db = InsightDatabase(args.database_url)
    return InsightScheduler(db, db, cfg=config)


def cmd_ingest(args: argparse.Namespace) -> int:
    logger = configure_logging()
    db = InsightDatabase(args.database_url)
    if args.path.endswith(".csv"):
        records = load_records_csv(args.path)
    else:
        config, records = load_fixture_json(args.path)
        db.save_store_config(args.user_id, config)
        logger.info(
            "Saved %d stores and %d sellers", len(config.stores), len(config.sellers), extra={"user_id": args.user_id}
        )
    summary = db.upsert_sales_records(args.user_id, records)
    print(
        f"Stored {len(records)} records | Inserted: {summary['inserted']} | "
        f"Updated: {summary['updated']} | Unchanged: {summary['unchanged']}"
    )
    return 0


def cmd_batch(args: argparse.Namespace) -> int:
    configure_logging()
    scheduler = _build_scheduler(args)
    user_ids = args.user_ids.split(",") if args.user_ids else None
    result = scheduler.run_daily_batch(user_ids=user_ids, show_progress=not args.no_progress)
    counts = result.counts()
    print(
        f"Slot {result.slot.isoformat()} | Generated: {counts['generated']} | Skipped: {counts['skipped']} | "
        f"Empty: {counts['empty']} | Errors: {counts['error']}"
    )
    return 0 if result.ok else 1


def cmd_regenerate(args: argparse.Namespace) -> int:
    configure_logging()
    scheduler = _build_scheduler(args)
    regenerated = scheduler.regenerate(args.user_id, _parse_day(args.date))
    print(render_insights_markdown(regenerated.insights, f"Insights for {regenerated.key.isoformat()}"))
    return 0


def cmd_feed(args: argparse.Namespace) -> int:
    configure_logging()
    scheduler = _build_scheduler(args)
    state = scheduler.interactive_feed(args.user_id, _parse_day(args.date), regenerate=args.regenerate)
    print(json.dumps(state.to_dict(), indent=2, ensure_ascii=False))
    return 1 if state.status == "error" else 0


def cmd_preview(args: argparse.Namespace) -> int:
    config, records = load_fixture_json(args.path)
    insights = generate_insights(
        records,
        config.stores,
        config.sellers,
        reference=_parse_day(args.date),
        mode=args.mode,
        cfg=load_config(args.config),
    )
    if args.format == "json":
        print(json.dumps([insight.to_dict() for insight in insights], indent=2, ensure_ascii=False))
    else:
        print(render_insights_markdown(insights, f"{args.mode.title()} insights preview"))
    return 0


def cmd_summary(args: argparse.Namespace) -> int:
    configure_logging()
    db = InsightDatabase(args.database_url)
    end = _parse_day(args.end) or date.today()
    start = _parse_day(args.start) or comparison_windows(end).current.start
    config = db.get_store_and_seller_config(args.user_id)
    records = db.list_sales_records(args.user_id, start, end)
    summary = summarize_period(records, config.stores, config.sellers, start, end)
    payload = json.dumps(summary.to_dict(), indent=2, ensure_ascii=False)
    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(payload, encoding="utf-8")
        print(f"Wrote summary to {out_path}")
    else:
        print(payload)
    return 0


def _add_backend_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--database-url",
        type=str,
        help="SQLAlchemy database URL (defaults to DATABASE_URL or sqlite:///data/insights.db)",
    )
    parser.add_argument(
        "--use-supabase",
        action="store_true",
        help="Read records and store insights in Supabase (requires SUPABASE_URL and keys)",
    )
    parser.add_argument("--config", type=str, help="Path to insights config JSON")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Conversion insights CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    p_ingest = sub.add_parser("ingest", help="Load a JSON fixture or CSV export into the local database")
    p_ingest.add_argument("path", type=str, help="Fixture JSON (stores, sellers, records) or records CSV")
    p_ingest.add_argument("--user-id", required=True, type=str)
    p_ingest.add_argument("--database-url", type=str)
    p_ingest.set_defaults(func=cmd_ingest)

    p_batch = sub.add_parser("batch", help="Generate today's insight slot for every user")
    _add_backend_arguments(p_batch)
    p_batch.add_argument("--user-ids", type=str, help="Comma-separated user ids (defaults to all users)")
    p_batch.add_argument("--no-progress", action="store_true")
    p_batch.set_defaults(func=cmd_batch)

    p_regen = sub.add_parser("regenerate", help="Recompute and overwrite a user's insights for a day")
    _add_backend_arguments(p_regen)
    p_regen.add_argument("--user-id", required=True, type=str)
    p_regen.add_argument("--date", type=str, help="Reference day (YYYY-MM-DD), defaults to the business day")
    p_regen.set_defaults(func=cmd_regenerate)

    p_feed = sub.add_parser("feed", help="Show a user's interactive insights for a day")
    _add_backend_arguments(p_feed)
    p_feed.add_argument("--user-id", required=True, type=str)
    p_feed.add_argument("--date", type=str)
    p_feed.add_argument("--regenerate", action="store_true")
    p_feed.set_defaults(func=cmd_feed)

    p_preview = sub.add_parser("preview", help="Generate insights from a fixture without persisting them")
    p_preview.add_argument("path", type=str)
    p_preview.add_argument("--mode", choices=MODES, default="batch")
    p_preview.add_argument("--date", type=str)
    p_preview.add_argument("--format", choices=["markdown", "json"], default="markdown")
    p_preview.add_argument("--config", type=str)
    p_preview.set_defaults(func=cmd_preview)

    p_summary = sub.add_parser("summary", help="Dashboard totals and rankings for a date range")
    p_summary.add_argument("--user-id", required=True, type=str)
    p_summary.add_argument("--start", type=str)
    p_summary.add_argument("--end", type=str)
    p_summary.add_argument("--database-url", type=str)
    p_summary.add_argument("--out", type=str, help="Write the summary JSON to this path")
    p_summary.set_defaults(func=cmd_summary)

    return parser


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
