"""Rollups of sales records by store, seller and weekday.

Everything here is a pure function of the records and the store
configuration. Keys are returned in sorted order and lost values are summed
with ``math.fsum`` so the output does not depend on how the record store
happened to order its rows.
"""
from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Sequence

from models import Aggregate, SalesRecord, Seller, Store

MIN_RANKING_VISITS = 3
RANKING_SIZE = 6


def conversion_rate(visits: int, sales: int) -> float:
    """Sales per hundred visits; 0 when there were no visits."""
    if not visits or visits <= 0:
        return 0.0
    return sales * 100 / visits


def lost_opportunities(record: SalesRecord) -> int:
    """Visits that did not convert. Over-reported sales never go negative."""
    return max(record.visits - record.sales, 0)


def sunday_weekday(day: date) -> int:
    """Weekday number with Sunday=0 .. Saturday=6."""
    return (day.weekday() + 1) % 7


@dataclass
class WindowAggregates:
    """All rollups for one comparison window."""

    records: int = 0
    visits: int = 0
    sales: int = 0
    by_store: Dict[str, Aggregate] = field(default_factory=dict)
    by_seller: Dict[str, Aggregate] = field(default_factory=dict)
    by_weekday: Dict[int, Aggregate] = field(default_factory=dict)

    @property
    def conversion(self) -> float:
        return conversion_rate(self.visits, self.sales)


def _add(agg: Aggregate, record: SalesRecord, lost: int) -> None:
    agg.visits += record.visits
    agg.sales += record.sales
    agg.lost += lost


def aggregate_window(records: Iterable[SalesRecord], stores: Sequence[Store]) -> WindowAggregates:
    tickets = {store.id: store.ticket for store in stores}
    result = WindowAggregates()
    by_store: Dict[str, Aggregate] = {}
    by_seller: Dict[str, Aggregate] = {}
    by_weekday: Dict[int, Aggregate] = {}
    store_values: Dict[str, List[float]] = defaultdict(list)
    seller_values: Dict[str, List[float]] = defaultdict(list)

    for record in records:
        lost = lost_opportunities(record)
        value = lost * tickets.get(record.store_id, 0.0)

        result.records += 1
        result.visits += record.visits
        result.sales += record.sales

        _add(by_store.setdefault(record.store_id, Aggregate()), record, lost)
        store_values[record.store_id].append(value)
        _add(by_seller.setdefault(record.seller_id, Aggregate()), record, lost)
        seller_values[record.seller_id].append(value)

        weekday = by_weekday.setdefault(sunday_weekday(record.date), Aggregate())
        weekday.visits += record.visits
        weekday.sales += record.sales

    for key, parts in store_values.items():
        by_store[key].lost_value = math.fsum(parts)
    for key, parts in seller_values.items():
        by_seller[key].lost_value = math.fsum(parts)

    result.by_store = dict(sorted(by_store.items()))
    result.by_seller = dict(sorted(by_seller.items()))
    result.by_weekday = dict(sorted(by_weekday.items()))
    return result


def total_conversion(records: Iterable[SalesRecord]) -> float:
    visits = 0
    sales = 0
    for record in records:
        visits += record.visits
        sales += record.sales
    return conversion_rate(visits, sales)


@dataclass
class PeriodSummary:
    """Dashboard rollup for an arbitrary date range."""

    total_visits: int
    total_sales: int
    conversion: float
    daily: List[dict]
    weekdays: List[dict]
    store_conversion: List[dict]
    seller_ranking: List[dict]
    seller_sales: List[dict]
    seller_visits: List[dict]
    best_seller: str
    best_store: str

    def to_dict(self) -> dict:
        return {
            "total_visits": self.total_visits,
            "total_sales": self.total_sales,
            "conversion": self.conversion,
            "daily": self.daily,
            "weekdays": self.weekdays,
            "store_conversion": self.store_conversion,
            "seller_ranking": self.seller_ranking,
            "seller_sales": self.seller_sales,
            "seller_visits": self.seller_visits,
            "best_seller": self.best_seller,
            "best_store": self.best_store,
        }


def summarize_period(
    records: Iterable[SalesRecord],
    stores: Sequence[Store],
    sellers: Sequence[Seller],
    start: date,
    end: date,
    min_ranking_visits: int = MIN_RANKING_VISITS,
) -> PeriodSummary:
    """Totals, per-day and per-weekday series and conversion rankings for ``[start, end]``."""

    in_range = [record for record in records if start <= record.date <= end]
    total_visits = sum(record.visits for record in in_range)
    total_sales = sum(record.sales for record in in_range)

    per_day: Dict[date, List[int]] = defaultdict(lambda: [0, 0])
    per_weekday = [[0, 0] for _ in range(7)]
    per_store: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
    per_seller: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
    for record in in_range:
        for bucket in (
            per_day[record.date],
            per_weekday[sunday_weekday(record.date)],
            per_store[record.store_id],
            per_seller[record.seller_id],
        ):
            bucket[0] += record.visits
            bucket[1] += record.sales

    daily = [
        {"date": day.isoformat(), "visits": visits, "sales": sales}
        for day, (visits, sales) in sorted(per_day.items())
    ]
    weekdays = [
        {"weekday": index, "visits": visits, "sales": sales}
        for index, (visits, sales) in enumerate(per_weekday)
    ]

    store_conversion = sorted(
        (
            {
                "store_id": store.id,
                "name": store.name,
                "conversion": round(conversion_rate(*per_store.get(store.id, (0, 0))), 1),
            }
            for store in stores
        ),
        key=lambda row: -row["conversion"],
    )

    store_names = {store.id: store.name for store in stores}
    ranking = []
    for seller in sellers:
        visits, sales = per_seller.get(seller.id, (0, 0))
        if visits < min_ranking_visits:
            continue
        ranking.append(
            {
                "seller_id": seller.id,
                "name": seller.name,
                "store_name": store_names.get(seller.store_id, "-"),
                "visits": visits,
                "sales": sales,
                "conversion": round(conversion_rate(visits, sales), 1),
            }
        )
    ranking.sort(key=lambda row: -row["conversion"])
    ranking = ranking[:RANKING_SIZE]

    seller_sales = sorted(
        ({"name": seller.name, "sales": per_seller.get(seller.id, (0, 0))[1]} for seller in sellers),
        key=lambda row: -row["sales"],
    )[:RANKING_SIZE]
    seller_visits = sorted(
        ({"name": seller.name, "visits": per_seller.get(seller.id, (0, 0))[0]} for seller in sellers),
        key=lambda row: -row["visits"],
    )[:RANKING_SIZE]

    return PeriodSummary(
        total_visits=total_visits,
        total_sales=total_sales,
        conversion=round(conversion_rate(total_visits, total_sales), 1),
        daily=daily,
        weekdays=weekdays,
        store_conversion=store_conversion,
        seller_ranking=ranking,
        seller_sales=seller_sales,
        seller_visits=seller_visits,
        best_seller=ranking[0]["name"] if ranking else "-",
        best_store=store_conversion[0]["name"] if store_conversion else "-",
    )


__all__ = [
    "PeriodSummary",
    "WindowAggregates",
    "aggregate_window",
    "conversion_rate",
    "lost_opportunities",
    "summarize_period",
    "sunday_weekday",
    "total_conversion",
]
