"""Local storage and logging utilities.

This module provides a SQL-backed record store and insight store for local
development and self-hosted deployments (SQLite or PostgreSQL). It mirrors
the Supabase tables so the scheduler can run against either backend, and it
loads fixture files and CSV exports into the local database.
"""
from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

import pandas as pd
from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

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

Base = declarative_base()


class SalesRecordRow(Base):
    __tablename__ = "sales_records"
    __table_args__ = (UniqueConstraint("user_id", "record_id", name="uq_sales_records_identity"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    record_id = Column(String, nullable=False)
    seller_id = Column(String, nullable=False)
    store_id = Column(String, nullable=False)
    date = Column(Date, nullable=False, index=True)
    visits = Column(Integer, nullable=False, default=0)
    sales = Column(Integer, nullable=False, default=0)


class StoreConfigRow(Base):
    __tablename__ = "store_configs"

    user_id = Column(String, primary_key=True)
    stores = Column(JSON, nullable=False, default=list)
    sellers = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class SlotInsightRow(Base):
    __tablename__ = "insights_feed"
    __table_args__ = (UniqueConstraint("user_id", "slot_start", name="uq_insights_feed_slot"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False)
    slot_start = Column(DateTime, nullable=False)
    insights = Column(JSON, nullable=False)
    generated_at = Column(DateTime, nullable=False)


class DailyInsightRow(Base):
    __tablename__ = "daily_insights"
    __table_args__ = (UniqueConstraint("user_id", "day", name="uq_daily_insights_day"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False)
    day = Column(Date, nullable=False)
    insights = Column(JSON, nullable=False)
    generated_at = Column(DateTime, nullable=False)


class _UserContextFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "user_id"):
            record.user_id = "-"
        return True


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger("insights")
    if logger.handlers:
        return logger
    handler = logging.StreamHandler()
    handler.addFilter(_UserContextFilter())
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [user:%(user_id)s] %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class InsightDatabase:
    """SQLAlchemy implementation of the record store and the insight store."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or os.getenv("DATABASE_URL", "sqlite:///data/insights.db")
        if self.database_url.startswith("sqlite:///") and not self.database_url.endswith(":memory:"):
            Path(self.database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(self.database_url)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)

    @contextmanager
    def session(self) -> Session:
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Record store -----------------------------------------------------------

    def list_user_ids(self) -> List[str]:
        try:
            with self.session() as session:
                rows = session.query(StoreConfigRow.user_id).order_by(StoreConfigRow.user_id).all()
                return [row[0] for row in rows]
        except SQLAlchemyError as exc:
            raise RecordStoreError(f"Could not list users: {exc}") from exc

    def list_sales_records(self, user_id: str, since: date, until: date) -> List[SalesRecord]:
        try:
            with self.session() as session:
                rows = (
                    session.query(SalesRecordRow)
                    .filter(
                        SalesRecordRow.user_id == user_id,
                        SalesRecordRow.date >= since,
                        SalesRecordRow.date <= until,
                    )
                    .order_by(SalesRecordRow.date, SalesRecordRow.record_id)
                    .all()
                )
                return [
                    SalesRecord(
                        id=row.record_id,
                        seller_id=row.seller_id,
                        store_id=row.store_id,
                        date=row.date,
                        visits=row.visits or 0,
                        sales=row.sales or 0,
                    )
                    for row in rows
                ]
        except SQLAlchemyError as exc:
            raise RecordStoreError(f"Could not read sales records for {user_id}: {exc}") from exc
        except ROW_ERRORS as exc:
            raise RecordStoreError(f"Malformed sales record for {user_id}: {exc}") from exc

    def get_store_and_seller_config(self, user_id: str) -> StoreConfig:
        try:
            with self.session() as session:
                row = session.query(StoreConfigRow).filter_by(user_id=user_id).one_or_none()
                if not row:
                    return StoreConfig()
                return StoreConfig.from_payload(row.stores, row.sellers)
        except SQLAlchemyError as exc:
            raise RecordStoreError(f"Could not read store configuration for {user_id}: {exc}") from exc
        except ROW_ERRORS as exc:
            raise RecordStoreError(f"Malformed store configuration for {user_id}: {exc}") from exc

    def save_store_config(self, user_id: str, config: StoreConfig) -> None:
        payload = config.to_payload()
        with self.session() as session:
            row = session.query(StoreConfigRow).filter_by(user_id=user_id).one_or_none()
            if row:
                row.stores = payload["stores"]
                row.sellers = payload["sellers"]
                row.updated_at = datetime.utcnow()
            else:
                session.add(StoreConfigRow(user_id=user_id, updated_at=datetime.utcnow(), **payload))

    def upsert_sales_records(self, user_id: str, records: Iterable[SalesRecord]) -> dict:
        summary = {"inserted": 0, "updated": 0, "unchanged": 0}
        with self.session() as session:
            for record in records:
                existing = (
                    session.query(SalesRecordRow)
                    .filter_by(user_id=user_id, record_id=record.id)
                    .one_or_none()
                )
                if not existing:
                    session.add(
                        SalesRecordRow(
                            user_id=user_id,
                            record_id=record.id,
                            seller_id=record.seller_id,
                            store_id=record.store_id,
                            date=record.date,
                            visits=record.visits,
                            sales=record.sales,
                        )
                    )
                    summary["inserted"] += 1
                    continue

                changed = False
                for field in ("seller_id", "store_id", "date", "visits", "sales"):
                    new_value = getattr(record, field)
                    if getattr(existing, field) != new_value:
                        setattr(existing, field, new_value)
                        changed = True
                summary["updated" if changed else "unchanged"] += 1
        return summary

    # Insight store ----------------------------------------------------------

    def _query_for(self, session: Session, user_id: str, key: InsightKey):
        if isinstance(key, SlotKey):
            return session.query(SlotInsightRow).filter_by(user_id=user_id, slot_start=_naive_utc(key.instant))
        if isinstance(key, DayKey):
            return session.query(DailyInsightRow).filter_by(user_id=user_id, day=key.day)
        raise TypeError(f"Unsupported insight key: {key!r}")

    def find_insight_set(self, user_id: str, key: InsightKey) -> Optional[InsightSet]:
        if not isinstance(key, (SlotKey, DayKey)):
            raise TypeError(f"Unsupported insight key: {key!r}")
        try:
            with self.session() as session:
                row = self._query_for(session, user_id, key).one_or_none()
                if not row:
                    return None
                return InsightSet(
                    user_id=user_id,
                    key=key,
                    insights=[Insight.from_dict(item) for item in row.insights or []],
                    generated_at=_aware_utc(row.generated_at),
                )
        except SQLAlchemyError as exc:
            raise InsightStoreError(f"Could not read insights for {user_id}: {exc}") from exc
        except ROW_ERRORS as exc:
            raise InsightStoreError(f"Malformed insight set for {user_id}: {exc}") from exc

    def upsert_insight_set(
        self,
        user_id: str,
        key: InsightKey,
        insights: List[Insight],
        generated_at: datetime,
    ) -> None:
        payload = [insight.to_dict() for insight in insights]
        try:
            with self.session() as session:
                row = self._query_for(session, user_id, key).one_or_none()
                if row:
                    row.insights = payload
                    row.generated_at = _naive_utc(generated_at)
                elif isinstance(key, SlotKey):
                    session.add(
                        SlotInsightRow(
                            user_id=user_id,
                            slot_start=_naive_utc(key.instant),
                            insights=payload,
                            generated_at=_naive_utc(generated_at),
                        )
                    )
                else:
                    session.add(
                        DailyInsightRow(
                            user_id=user_id,
                            day=key.day,
                            insights=payload,
                            generated_at=_naive_utc(generated_at),
                        )
                    )
        except SQLAlchemyError as exc:
            raise InsightStoreError(f"Could not store insights for {user_id}: {exc}") from exc

    def count_insight_sets(self, user_id: Optional[str] = None) -> dict:
        with self.session() as session:
            slot_query = session.query(SlotInsightRow)
            day_query = session.query(DailyInsightRow)
            if user_id:
                slot_query = slot_query.filter_by(user_id=user_id)
                day_query = day_query.filter_by(user_id=user_id)
            return {"slot": slot_query.count(), "day": day_query.count()}


def load_fixture_json(path: str) -> tuple[StoreConfig, List[SalesRecord]]:
    """Read a ``{"stores": [...], "sellers": [...], "records": [...]}`` file."""
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)

    config = StoreConfig.from_payload(payload.get("stores"), payload.get("sellers"))
    records = [SalesRecord.from_row(item) for item in payload.get("records", [])]
    return config, records


def load_records_csv(path: str) -> List[SalesRecord]:
    """Read a sales export with ``id, seller_id, store_id, date, visits, sales`` columns."""
    frame = pd.read_csv(path, dtype={"id": str, "seller_id": str, "store_id": str, "date": str})
    frame[["visits", "sales"]] = frame[["visits", "sales"]].fillna(0).astype(int)
    return [SalesRecord.from_row(row) for row in frame.to_dict(orient="records")]


__all__ = [
    "InsightDatabase",
    "configure_logging",
    "load_fixture_json",
    "load_records_csv",
]
