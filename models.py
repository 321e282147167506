"""Canonical data models for sales records and generated insights.

These models give the engine a stable, typed view of what the record store
returns (per-day seller counts, store and seller configuration) and of what
it persists (ordered insight cards keyed by user and generation key).
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import List, Literal, Mapping, Optional, Union

InsightTag = Literal["alert", "opportunity", "info"]
InsightIcon = Literal[
    "trendingUp",
    "trendingDown",
    "alert",
    "target",
    "calendar",
    "dollar",
    "users",
    "store",
]

INSIGHT_KINDS = (
    "trend",
    "store_loss",
    "seller_loss",
    "weekday",
    "missing_ticket",
    "plus_one_point",
    "best_seller",
    "low_store_conversion",
)


class RecordStoreError(RuntimeError):
    """Raised when sales records or store configuration cannot be read."""


class InsightStoreError(RuntimeError):
    """Raised when an insight set cannot be looked up or written."""


# Raised while coercing a malformed storage row into a model.
ROW_ERRORS = (ValueError, TypeError, KeyError, AttributeError)


def parse_calendar_date(value) -> date:
    """Coerce a stored date into a plain calendar day.

    Timestamps are truncated to their date part; no timezone conversion is
    applied, so ``2025-06-15T23:30:00-03:00`` is still June 15th.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        raise ValueError("Missing calendar date")
    return date.fromisoformat(str(value).strip()[:10])


def _count(value) -> int:
    if value is None:
        return 0
    return max(int(value), 0)


@dataclass(slots=True, frozen=True)
class SalesRecord:
    """One seller's visits and sales for one calendar day at one store."""

    id: str
    seller_id: str
    store_id: str
    date: date
    visits: int = 0
    sales: int = 0

    @classmethod
    def from_row(cls, row: Mapping) -> "SalesRecord":
        return cls(
            id=str(row.get("id") or ""),
            seller_id=str(row.get("seller_id") or ""),
            store_id=str(row.get("store_id") or ""),
            date=parse_calendar_date(row.get("date")),
            visits=_count(row.get("visits")),
            sales=_count(row.get("sales")),
        )

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["date"] = self.date.isoformat()
        return payload


@dataclass(slots=True, frozen=True)
class Store:
    id: str
    name: str
    average_ticket: Optional[float] = None

    @property
    def ticket_configured(self) -> bool:
        ticket = self.average_ticket
        if isinstance(ticket, bool) or not isinstance(ticket, (int, float)):
            return False
        return math.isfinite(ticket) and ticket > 0

    @property
    def ticket(self) -> float:
        """Average ticket usable in value estimates (0 when not configured)."""
        return float(self.average_ticket) if self.ticket_configured else 0.0

    @classmethod
    def from_dict(cls, payload: Mapping) -> "Store":
        return cls(
            id=str(payload.get("id") or ""),
            name=payload.get("name") or "",
            average_ticket=payload.get("average_ticket"),
        )


@dataclass(slots=True, frozen=True)
class Seller:
    id: str
    name: str
    store_id: str

    @classmethod
    def from_dict(cls, payload: Mapping) -> "Seller":
        return cls(
            id=str(payload.get("id") or ""),
            name=payload.get("name") or "",
            store_id=str(payload.get("store_id") or ""),
        )


@dataclass(slots=True)
class StoreConfig:
    """Store and seller registrations for one user."""

    stores: List[Store] = field(default_factory=list)
    sellers: List[Seller] = field(default_factory=list)

    @classmethod
    def from_payload(cls, stores: Optional[list], sellers: Optional[list]) -> "StoreConfig":
        return cls(
            stores=[Store.from_dict(item) for item in stores or []],
            sellers=[Seller.from_dict(item) for item in sellers or []],
        )

    def to_payload(self) -> dict:
        return {
            "stores": [asdict(store) for store in self.stores],
            "sellers": [asdict(seller) for seller in self.sellers],
        }


@dataclass(slots=True)
class Aggregate:
    """Rollup of visits, sales and lost opportunities for one key."""

    visits: int = 0
    sales: int = 0
    lost: int = 0
    lost_value: float = 0.0

    @property
    def conversion(self) -> float:
        return self.sales * 100 / self.visits if self.visits > 0 else 0.0


@dataclass(slots=True, frozen=True)
class Insight:
    """A single ranked, human-readable insight card."""

    kind: str
    title: str
    description: str
    tag: InsightTag
    icon: InsightIcon
    metric: Optional[str] = None
    action: Optional[str] = None

    def __post_init__(self):
        if self.kind not in INSIGHT_KINDS:
            raise ValueError(f"Unknown insight kind: {self.kind!r}")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping) -> "Insight":
        return cls(
            kind=payload.get("kind") or payload.get("id") or "",
            title=payload.get("title", ""),
            description=payload.get("description", ""),
            tag=payload.get("tag", "info"),
            icon=payload.get("icon", "alert"),
            metric=payload.get("metric"),
            action=payload.get("action"),
        )


@dataclass(slots=True, frozen=True)
class SlotKey:
    """Batch idempotency key: the business day's fixed generation instant (UTC)."""

    instant: datetime

    def __post_init__(self):
        if self.instant.tzinfo is None:
            object.__setattr__(self, "instant", self.instant.replace(tzinfo=timezone.utc))
        else:
            object.__setattr__(self, "instant", self.instant.astimezone(timezone.utc))

    def isoformat(self) -> str:
        return self.instant.isoformat()


@dataclass(slots=True, frozen=True)
class DayKey:
    """Interactive key: the plain calendar day the insights were regenerated for."""

    day: date

    def isoformat(self) -> str:
        return self.day.isoformat()


InsightKey = Union[SlotKey, DayKey]


@dataclass(slots=True)
class InsightSet:
    user_id: str
    key: InsightKey
    insights: List[Insight]
    generated_at: datetime


__all__ = [
    "Aggregate",
    "DayKey",
    "INSIGHT_KINDS",
    "Insight",
    "InsightKey",
    "InsightSet",
    "InsightStoreError",
    "ROW_ERRORS",
    "RecordStoreError",
    "SalesRecord",
    "Seller",
    "SlotKey",
    "Store",
    "StoreConfig",
    "parse_calendar_date",
]
