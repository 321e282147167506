"""Supabase persistence helpers for the insight engine.

This module encapsulates Supabase connections, reads sales records and store
configuration, and stores generated insight sets under either the daily
batch slot or the interactive calendar day.
"""
from __future__ import annotations

import os
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, List, Optional

from postgrest.exceptions import APIError
from supabase import Client, create_client

from models import (
    DayKey,
    Insight,
    InsightKey,
    InsightSet,
    InsightStoreError,
    ROW_ERRORS,
    RecordStoreError,
    SalesRecord,
    SlotKey,
    StoreConfig,
)

SALES_TABLE = "sales_records"
CONFIG_TABLE = "store_configs"
SLOT_TABLE = "insights_feed"
DAY_TABLE = "daily_insights"
# PostgREST caps each response at its max-rows setting (1000 by default).
PAGE_SIZE = 1000


def _get_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def get_supabase_client() -> Client:
    """Create a Supabase client from environment variables."""
    url = _get_env("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or _get_env("SUPABASE_ANON_KEY")
    return create_client(url, key)


def sanitize_for_json(value: Any) -> Any:
    """Convert dates, datetimes and dataclasses into JSON-friendly values."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return sanitize_for_json(asdict(value))
    if isinstance(value, dict):
        return {key: sanitize_for_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_for_json(item) for item in value]
    return value


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SupabaseRecordStore:
    """Read-only access to a user's sales records and store configuration."""

    def __init__(self, client: Optional[Client] = None, page_size: int = PAGE_SIZE):
        self.client = client or get_supabase_client()
        self.page_size = page_size

    def _fetch_all(self, build_query: Callable[[], Any]) -> List[dict]:
        """Read every row of an ordered query, one ``range`` page at a time."""
        rows: List[dict] = []
        offset = 0
        while True:
            response = build_query().range(offset, offset + self.page_size - 1).execute()
            page = response.data or []
            rows.extend(page)
            if len(page) < self.page_size:
                return rows
            offset += self.page_size

    def list_user_ids(self) -> List[str]:
        try:
            rows = self._fetch_all(lambda: self.client.table(CONFIG_TABLE).select("user_id").order("user_id"))
        except APIError as exc:
            raise RecordStoreError(f"Could not list users: {exc}") from exc
        return list(dict.fromkeys(row["user_id"] for row in rows if row.get("user_id")))

    def list_sales_records(self, user_id: str, since: date, until: date) -> List[SalesRecord]:
        try:
            rows = self._fetch_all(
                lambda: self.client.table(SALES_TABLE)
                .select("id, seller_id, store_id, date, visits, sales")
                .eq("user_id", user_id)
                .gte("date", since.isoformat())
                .lte("date", until.isoformat())
                .order("date")
                .order("id")
            )
        except APIError as exc:
            raise RecordStoreError(f"Could not read sales records for {user_id}: {exc}") from exc
        try:
            return [SalesRecord.from_row(row) for row in rows]
        except ROW_ERRORS as exc:
            raise RecordStoreError(f"Malformed sales record for {user_id}: {exc}") from exc

    def get_store_and_seller_config(self, user_id: str) -> StoreConfig:
        try:
            response = (
                self.client.table(CONFIG_TABLE)
                .select("stores, sellers")
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
        except APIError as exc:
            raise RecordStoreError(f"Could not read store configuration for {user_id}: {exc}") from exc
        if not response.data:
            return StoreConfig()
        row = response.data[0]
        try:
            return StoreConfig.from_payload(row.get("stores"), row.get("sellers"))
        except ROW_ERRORS as exc:
            raise RecordStoreError(f"Malformed store configuration for {user_id}: {exc}") from exc


class SupabaseInsightStore:
    """Insight sets keyed by ``(user_id, slot_start)`` or ``(user_id, day)``."""

    def __init__(self, client: Optional[Client] = None):
        self.client = client or get_supabase_client()

    @staticmethod
    def _target(key: InsightKey) -> tuple[str, str, str]:
        if isinstance(key, SlotKey):
            return SLOT_TABLE, "slot_start", key.isoformat()
        if isinstance(key, DayKey):
            return DAY_TABLE, "day", key.isoformat()
        raise TypeError(f"Unsupported insight key: {key!r}")

    def find_insight_set(self, user_id: str, key: InsightKey) -> Optional[InsightSet]:
        table, column, value = self._target(key)
        try:
            response = (
                self.client.table(table)
                .select("insights, generated_at")
                .eq("user_id", user_id)
                .eq(column, value)
                .limit(1)
                .execute()
            )
        except APIError as exc:
            raise InsightStoreError(f"Could not read insights for {user_id}: {exc}") from exc
        if not response.data:
            return None
        row = response.data[0]
        try:
            return InsightSet(
                user_id=user_id,
                key=key,
                insights=[Insight.from_dict(item) for item in row.get("insights") or []],
                generated_at=_parse_timestamp(row["generated_at"]),
            )
        except ROW_ERRORS as exc:
            raise InsightStoreError(f"Malformed insight set for {user_id}: {exc}") from exc

    def upsert_insight_set(
        self,
        user_id: str,
        key: InsightKey,
        insights: List[Insight],
        generated_at: datetime,
    ) -> None:
        table, column, value = self._target(key)
        payload = sanitize_for_json(
            {
                "user_id": user_id,
                column: value,
                "insights": [insight.to_dict() for insight in insights],
                "generated_at": generated_at,
            }
        )
        try:
            self.client.table(table).upsert(payload, on_conflict=f"user_id,{column}").execute()
        except APIError as exc:
            raise InsightStoreError(f"Could not store insights for {user_id}: {exc}") from exc


__all__ = [
    "SupabaseInsightStore",
    "SupabaseRecordStore",
    "get_supabase_client",
    "sanitize_for_json",
]
