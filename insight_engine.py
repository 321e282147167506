"""Insight Engine
================

Pure functions that turn a user's recent sales records into a short,
ranked list of insight cards. No I/O happens here: callers pass records and
store configuration in, and get ``Insight`` objects back.

Key responsibilities
--------------------
* Build a snapshot of the current and prior comparison windows.
* Run a fixed, ordered list of rules over that snapshot. Each rule returns
  at most one insight.
* Keep the first insight of each kind, in rule order, and cap the list.

Two rule sets exist. ``interactive`` is the five-card daily view (weak
weekday needs a minimum number of visits there); ``batch`` is the eight-card
feed written by the daily job.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from aggregator import WindowAggregates, aggregate_window
from models import Insight, SalesRecord, Seller, Store
from windows import ComparisonWindows, comparison_windows, filter_window

DEFAULT_CONFIG_PATH = Path("insights_config.json")
WEEKDAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
MODES = ("batch", "interactive")


def load_config(config_path: Optional[str | Path] = None) -> dict:
    """Load thresholds and caps, merging any user config onto defaults."""

    base = {
        "windows": {
            "window_days": 7,
            "history_days": 60,
        },
        "caps": {
            "batch": 8,
            "interactive": 5,
        },
        "weekday": {
            "batch_min_visits": 0,
            "interactive_min_visits": 10,
        },
        "projection": {
            "lift_points": 1.0,
        },
        "missing_ticket": {
            "max_listed": 3,
        },
        "business_clock": {
            "timezone": "America/Sao_Paulo",
            "utc_offset_hours": -3,
            "slot_hour": 8,
        },
        "currency_symbol": "R$",
    }

    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if path.exists():
        user = json.loads(path.read_text())
        base = _deep_merge(base, user)
    return base


def _deep_merge(base: MutableMapping, override: Mapping) -> MutableMapping:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def format_currency(value: float, symbol: str = "R$") -> str:
    return f"{symbol} {value:,.0f}"


def trend_delta(conv_current: float, conv_prior: float) -> float:
    """Relative change of conversion between windows, in percent."""
    if conv_prior > 0:
        return (conv_current - conv_prior) / conv_prior * 100
    return 100.0 if conv_current > 0 else 0.0


@dataclass
class InsightContext:
    """Everything a rule may look at for one generation run."""

    windows: ComparisonWindows
    current: WindowAggregates
    prior: WindowAggregates
    stores: Sequence[Store]
    sellers: Sequence[Seller]
    cfg: dict
    mode: str = "batch"
    stores_by_id: Dict[str, Store] = field(default_factory=dict)
    sellers_by_id: Dict[str, Seller] = field(default_factory=dict)

    def __post_init__(self):
        self.stores_by_id = {store.id: store for store in self.stores}
        self.sellers_by_id = {seller.id: seller for seller in self.sellers}

    @property
    def window_days(self) -> int:
        return self.cfg["windows"]["window_days"]

    def money(self, value: float) -> str:
        return format_currency(value, self.cfg.get("currency_symbol", "R$"))

    def store_name(self, store_id: Optional[str], default: str = "Store") -> str:
        store = self.stores_by_id.get(store_id) if store_id else None
        return store.name if store and store.name else default

    def store_ticket(self, store_id: Optional[str]) -> float:
        store = self.stores_by_id.get(store_id) if store_id else None
        return store.ticket if store else 0.0


def build_context(
    records: Iterable[SalesRecord],
    stores: Sequence[Store],
    sellers: Sequence[Seller],
    reference: Optional[date] = None,
    mode: str = "batch",
    cfg: Optional[dict] = None,
) -> InsightContext:
    cfg = cfg or load_config()
    records = list(records)
    windows = comparison_windows(reference, cfg["windows"]["window_days"])
    return InsightContext(
        windows=windows,
        current=aggregate_window(filter_window(records, windows.current), stores),
        prior=aggregate_window(filter_window(records, windows.prior), stores),
        stores=list(stores),
        sellers=list(sellers),
        cfg=cfg,
        mode=mode,
    )


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def trend_insight(ctx: InsightContext) -> Optional[Insight]:
    if not ctx.current.records:
        return None

    conv_current = ctx.current.conversion
    conv_prior = ctx.prior.conversion
    delta = trend_delta(conv_current, conv_prior)
    rising = delta >= 0
    days = ctx.window_days

    description = (
        f"Average conversion over the last {days} days was {conv_current:.1f}%, "
        f"{abs(delta):.1f}% {'above' if rising else 'below'} the previous week ({conv_prior:.1f}%)."
    )
    if not rising:
        description += " Focus on approach and closing."

    return Insight(
        kind="trend",
        title="Conversion is up" if rising else "Conversion is down",
        description=description,
        tag="info" if rising else "alert",
        icon="trendingUp" if rising else "trendingDown",
        metric=f"Last {days}d: {conv_current:.1f}% • Previous week: {conv_prior:.1f}%",
        action="Replicate this week's good practices" if rising else "Reinforce the approach script",
    )


def store_loss_insight(ctx: InsightContext) -> Optional[Insight]:
    if not ctx.current.by_store:
        return None

    store_id, agg = min(ctx.current.by_store.items(), key=lambda item: (-item[1].lost_value, item[0]))
    return Insight(
        kind="store_loss",
        title=f"Highest lost value: {ctx.store_name(store_id)}",
        description=(
            f"Estimated {ctx.money(agg.lost_value)} in lost sales over the last {ctx.window_days} days "
            f"({agg.lost} lost opportunities)."
        ),
        tag="alert",
        icon="store",
        metric=f"Lost: {agg.lost} • Ticket: {ctx.money(ctx.store_ticket(store_id))}",
        action="Review staffing and approach at this store",
    )


def seller_loss_insight(ctx: InsightContext) -> Optional[Insight]:
    if not ctx.current.by_seller:
        return None

    seller_id, agg = min(ctx.current.by_seller.items(), key=lambda item: (-item[1].lost_value, item[0]))
    seller = ctx.sellers_by_id.get(seller_id)
    store_id = seller.store_id if seller else None
    return Insight(
        kind="seller_loss",
        title=f"Seller with the highest loss: {seller.name if seller and seller.name else 'Seller'}",
        description=(
            f"Missed a potential {ctx.money(agg.lost_value)} ({agg.lost} lost opportunities) "
            f"over the last {ctx.window_days} days."
        ),
        tag="alert",
        icon="users",
        metric=f"Store: {ctx.store_name(store_id, default='-')} • Ticket: {ctx.money(ctx.store_ticket(store_id))}",
        action="Run a 1:1 coaching session with objection role-play",
    )


def weak_weekday_insight(ctx: InsightContext) -> Optional[Insight]:
    if not ctx.current.by_weekday:
        return None

    weekday, agg = min(
        ctx.current.by_weekday.items(),
        key=lambda item: (item[1].conversion, item[0]),
    )
    # The weakest day is picked first; the sample threshold only gates emission.
    if agg.visits < ctx.cfg["weekday"].get(f"{ctx.mode}_min_visits", 0):
        return None

    return Insight(
        kind="weekday",
        title=f"Weak day: {WEEKDAY_NAMES[weekday]}",
        description=(
            f"Conversion of {agg.conversion:.1f}% in the period. Adjust staffing and actions on this day "
            "to capture the demand."
        ),
        tag="opportunity",
        icon="calendar",
        metric=f"Visits on this day: {agg.visits}",
        action="Plan a campaign and reinforce the team",
    )


def missing_ticket_stores(stores: Sequence[Store]) -> List[Store]:
    return [store for store in stores if not store.ticket_configured]


def missing_ticket_insight(ctx: InsightContext) -> Optional[Insight]:
    missing = missing_ticket_stores(ctx.stores)
    if not missing:
        return None

    max_listed = ctx.cfg["missing_ticket"].get("max_listed", 3)
    names = ", ".join(store.name for store in missing[:max_listed])
    if len(missing) > max_listed:
        names += "…"
    return Insight(
        kind="missing_ticket",
        title="Average ticket not configured",
        description=(
            f"Set the average ticket for: {names}. Without it, lost value estimates are understated."
        ),
        tag="alert",
        icon="dollar",
        action="Open store settings",
    )


def plus_one_point_insight(ctx: InsightContext) -> Optional[Insight]:
    if missing_ticket_stores(ctx.stores):
        return None

    lift = ctx.cfg["projection"].get("lift_points", 1.0) / 100
    projected = math.fsum(
        agg.visits * lift * ctx.store_ticket(store_id) for store_id, agg in ctx.current.by_store.items()
    )
    return Insight(
        kind="plus_one_point",
        title="Quick goal: +1pp conversion",
        description=(
            f"If conversion rises by one percentage point over the next {ctx.window_days} days, "
            f"the estimated gain is {ctx.money(projected)}."
        ),
        tag="opportunity",
        icon="target",
        metric=f"Projected gain: {ctx.money(projected)}",
        action="Set micro-goals per store and seller",
    )


def _ranking_rate(agg) -> float:
    return agg.sales / (agg.visits or 1)


def best_seller_insight(ctx: InsightContext) -> Optional[Insight]:
    if not ctx.current.by_seller:
        return None

    seller_id, agg = min(ctx.current.by_seller.items(), key=lambda item: (-_ranking_rate(item[1]), item[0]))
    seller = ctx.sellers_by_id.get(seller_id)
    name = seller.name if seller and seller.name else "Seller"
    return Insight(
        kind="best_seller",
        title=f"Best conversion ({ctx.window_days}d)",
        description="Recognize and replicate the practices at the top of the ranking.",
        tag="info",
        icon="users",
        metric=f"{name}: {agg.conversion:.1f}%",
    )


def low_store_conversion_insight(ctx: InsightContext) -> Optional[Insight]:
    if not ctx.current.by_store:
        return None

    store_id, agg = min(ctx.current.by_store.items(), key=lambda item: (_ranking_rate(item[1]), item[0]))
    return Insight(
        kind="low_store_conversion",
        title="Store with low conversion",
        description="Focus on approach and lead qualification at this store.",
        tag="opportunity",
        icon="store",
        metric=f"{ctx.store_name(store_id)}: {agg.conversion:.1f}%",
    )


Rule = Callable[[InsightContext], Optional[Insight]]

INTERACTIVE_RULES: tuple[Rule, ...] = (
    trend_insight,
    store_loss_insight,
    seller_loss_insight,
    weak_weekday_insight,
    missing_ticket_insight,
    plus_one_point_insight,
)

BATCH_RULES: tuple[Rule, ...] = INTERACTIVE_RULES + (
    best_seller_insight,
    low_store_conversion_insight,
)

RULE_SETS: Dict[str, tuple[Rule, ...]] = {
    "batch": BATCH_RULES,
    "interactive": INTERACTIVE_RULES,
}


def select_insights(candidates: Iterable[Optional[Insight]], cap: int) -> List[Insight]:
    """Keep the first insight of each kind, in the given order, up to ``cap``."""

    selected: List[Insight] = []
    seen = set()
    for insight in candidates:
        if insight is None or insight.kind in seen:
            continue
        seen.add(insight.kind)
        selected.append(insight)
        if len(selected) >= cap:
            break
    return selected


def generate_insights(
    records: Iterable[SalesRecord],
    stores: Sequence[Store],
    sellers: Sequence[Seller],
    reference: Optional[date] = None,
    mode: str = "batch",
    cfg: Optional[dict] = None,
) -> List[Insight]:
    """Run the rule set for ``mode`` and return the ranked insight list.

    An empty list means there were no records in the current window; it is
    a valid outcome, not an error.
    """
    if mode not in MODES:
        raise ValueError(f"Unknown insight mode: {mode}")

    cfg = cfg or load_config()
    ctx = build_context(records, stores, sellers, reference=reference, mode=mode, cfg=cfg)
    if not ctx.current.records:
        return []
    return select_insights((rule(ctx) for rule in RULE_SETS[mode]), cfg["caps"][mode])


def render_insights_markdown(insights: Sequence[Insight], heading: str) -> str:
    lines = [f"# {heading}\n"]
    if not insights:
        lines.append("Not enough data to generate insights yet.")
        return "\n".join(lines)

    for insight in insights:
        lines.append(f"- **[{insight.tag}] {insight.title}**: {insight.description}")
        if insight.metric:
            lines.append(f"  - {insight.metric}")
        if insight.action:
            lines.append(f"  - Next step: {insight.action}")
    return "\n".join(lines)


__all__ = [
    "BATCH_RULES",
    "INTERACTIVE_RULES",
    "InsightContext",
    "MODES",
    "RULE_SETS",
    "best_seller_insight",
    "build_context",
    "format_currency",
    "generate_insights",
    "load_config",
    "low_store_conversion_insight",
    "missing_ticket_insight",
    "missing_ticket_stores",
    "plus_one_point_insight",
    "render_insights_markdown",
    "seller_loss_insight",
    "select_insights",
    "store_loss_insight",
    "trend_delta",
    "trend_insight",
    "weak_weekday_insight",
]
