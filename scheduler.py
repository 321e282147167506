"""Daily insight generation and on-demand regeneration.

The batch path runs once per business day per user. Its idempotency key is
the fixed UTC instant of the business day's 08:00 (``SlotKey``): when a set
already exists for that slot the user is skipped without computing or
writing anything. The interactive path keys by plain calendar day
(``DayKey``) and always overwrites. The two key spaces are never mixed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Iterable, List, Literal, Optional, Protocol

from tqdm import tqdm

from insight_engine import generate_insights, load_config
from models import (
    DayKey,
    Insight,
    InsightKey,
    InsightSet,
    InsightStoreError,
    RecordStoreError,
    SalesRecord,
    SlotKey,
    StoreConfig,
)
from windows import history_range

logger = logging.getLogger("insights")


class RecordStore(Protocol):
    def list_user_ids(self) -> List[str]: ...

    def list_sales_records(self, user_id: str, since: date, until: date) -> List[SalesRecord]: ...

    def get_store_and_seller_config(self, user_id: str) -> StoreConfig: ...


class InsightStore(Protocol):
    def find_insight_set(self, user_id: str, key: InsightKey) -> Optional[InsightSet]: ...

    def upsert_insight_set(
        self, user_id: str, key: InsightKey, insights: List[Insight], generated_at: datetime
    ) -> None: ...


@dataclass(frozen=True)
class BusinessClock:
    """Business-day arithmetic at a fixed UTC offset (no daylight saving)."""

    timezone_name: str = "America/Sao_Paulo"
    utc_offset_hours: float = -3
    slot_hour: int = 8

    @classmethod
    def from_config(cls, cfg: dict) -> "BusinessClock":
        clock_cfg = cfg.get("business_clock", {})
        return cls(
            timezone_name=clock_cfg.get("timezone", cls.timezone_name),
            utc_offset_hours=clock_cfg.get("utc_offset_hours", cls.utc_offset_hours),
            slot_hour=clock_cfg.get("slot_hour", cls.slot_hour),
        )

    @property
    def offset(self) -> timedelta:
        return timedelta(hours=self.utc_offset_hours)

    def local_date(self, now: Optional[datetime] = None) -> date:
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return (now.astimezone(timezone.utc) + self.offset).date()

    def slot_for(self, now: Optional[datetime] = None) -> SlotKey:
        """Slot key for the business day containing ``now`` (08:00 local as UTC)."""
        day = self.local_date(now)
        local_slot = datetime.combine(day, time(hour=self.slot_hour), tzinfo=timezone.utc)
        return SlotKey(local_slot - self.offset)


@dataclass
class UserOutcome:
    user_id: str
    status: Literal["generated", "skipped", "empty", "error"]
    insights: int = 0
    error: Optional[str] = None


@dataclass
class BatchResult:
    slot: SlotKey
    outcomes: List[UserOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(outcome.status == "error" for outcome in self.outcomes)

    def counts(self) -> dict:
        totals = {"generated": 0, "skipped": 0, "empty": 0, "error": 0}
        for outcome in self.outcomes:
            totals[outcome.status] += 1
        return totals


@dataclass
class FeedState:
    """What the interactive surface shows: insights, "no data yet", or a load failure."""

    status: Literal["ready", "insufficient_data", "error"]
    day: date
    insights: List[Insight] = field(default_factory=list)
    generated_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def from_insights(cls, day: date, insights: List[Insight], generated_at: Optional[datetime]) -> "FeedState":
        return cls(
            status="ready" if insights else "insufficient_data",
            day=day,
            insights=list(insights),
            generated_at=generated_at,
        )

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "day": self.day.isoformat(),
            "insights": [insight.to_dict() for insight in self.insights],
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
            "error": self.error,
        }


class InsightScheduler:
    """Wires the record store, the engine and the insight store together."""

    def __init__(
        self,
        records: RecordStore,
        insights: InsightStore,
        cfg: Optional[dict] = None,
        clock: Optional[BusinessClock] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.records = records
        self.insights = insights
        self.cfg = cfg or load_config()
        self.clock = clock or BusinessClock.from_config(self.cfg)
        self._now = now_fn or (lambda: datetime.now(timezone.utc))

    def compute(self, user_id: str, reference: date, mode: str) -> List[Insight]:
        fetch = history_range(reference, self.cfg["windows"]["history_days"])
        config = self.records.get_store_and_seller_config(user_id)
        records = self.records.list_sales_records(user_id, fetch.start, fetch.end)
        return generate_insights(
            records,
            config.stores,
            config.sellers,
            reference=reference,
            mode=mode,
            cfg=self.cfg,
        )

    def generate_for_slot(self, user_id: str, now: Optional[datetime] = None) -> UserOutcome:
        now = now or self._now()
        slot = self.clock.slot_for(now)
        log_extra = {"user_id": user_id}

        existing = self.insights.find_insight_set(user_id, slot)
        if existing is not None:
            logger.info("Slot %s already generated, skipping", slot.isoformat(), extra=log_extra)
            return UserOutcome(user_id=user_id, status="skipped", insights=len(existing.insights))

        insights = self.compute(user_id, self.clock.local_date(now), "batch")
        if not insights:
            logger.info("Not enough data to generate insights", extra=log_extra)
            return UserOutcome(user_id=user_id, status="empty")

        self.insights.upsert_insight_set(user_id, slot, insights, now)
        logger.info("Stored %d insights for slot %s", len(insights), slot.isoformat(), extra=log_extra)
        return UserOutcome(user_id=user_id, status="generated", insights=len(insights))

    def run_daily_batch(
        self,
        user_ids: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None,
        show_progress: bool = False,
    ) -> BatchResult:
        """Generate the day's slot for every user, isolating per-user failures."""

        now = now or self._now()
        result = BatchResult(slot=self.clock.slot_for(now))
        if user_ids is None:
            user_ids = self.records.list_user_ids()
        unique_ids = list(dict.fromkeys(user_id for user_id in user_ids if user_id))

        logger.info(
            "Starting daily batch for %d users (slot %s, business day in %s)",
            len(unique_ids),
            result.slot.isoformat(),
            self.clock.timezone_name,
        )
        for user_id in tqdm(unique_ids, desc="Generating insights", unit="user", disable=not show_progress):
            try:
                outcome = self.generate_for_slot(user_id, now)
            except Exception as exc:
                logger.exception("Insight generation failed", extra={"user_id": user_id})
                outcome = UserOutcome(user_id=user_id, status="error", error=str(exc))
            result.outcomes.append(outcome)

        logger.info("Daily batch finished: %s", result.counts())
        return result

    def regenerate(self, user_id: str, reference_date: Optional[date] = None) -> InsightSet:
        """Recompute the interactive set for ``reference_date`` and overwrite it."""

        reference = reference_date or self.clock.local_date(self._now())
        insights = self.compute(user_id, reference, "interactive")
        regenerated = InsightSet(
            user_id=user_id,
            key=DayKey(reference),
            insights=insights,
            generated_at=self._now(),
        )
        self.insights.upsert_insight_set(user_id, regenerated.key, insights, regenerated.generated_at)
        logger.info("Regenerated %d insights for %s", len(insights), reference.isoformat(), extra={"user_id": user_id})
        return regenerated

    def interactive_feed(
        self,
        user_id: str,
        reference_date: Optional[date] = None,
        regenerate: bool = False,
    ) -> FeedState:
        reference = reference_date or self.clock.local_date(self._now())
        try:
            if not regenerate:
                existing = self.insights.find_insight_set(user_id, DayKey(reference))
                if existing is not None:
                    return FeedState.from_insights(reference, existing.insights, existing.generated_at)
            regenerated = self.regenerate(user_id, reference)
        except (RecordStoreError, InsightStoreError) as exc:
            logger.error("Failed to load insights: %s", exc, extra={"user_id": user_id})
            return FeedState(status="error", day=reference, error=str(exc))
        return FeedState.from_insights(reference, regenerated.insights, regenerated.generated_at)


__all__ = [
    "BatchResult",
    "BusinessClock",
    "FeedState",
    "InsightScheduler",
    "InsightStore",
    "RecordStore",
    "UserOutcome",
]
