from datetime import date

import pytest

from models import InsightSet, InsightStoreError, RecordStoreError, SalesRecord, Seller, Store, StoreConfig

REFERENCE = date(2025, 6, 15)


def make_record(record_id, seller_id, store_id, day, visits, sales):
    return SalesRecord(
        id=record_id,
        seller_id=seller_id,
        store_id=store_id,
        date=date.fromisoformat(day),
        visits=visits,
        sales=sales,
    )


def build_sample():
    stores = [Store("s1", "Centro", 100.0), Store("s2", "Shopping", 50.0)]
    sellers = [Seller("v1", "Ana", "s1"), Seller("v2", "Bruno", "s2"), Seller("v3", "Carla", "s1")]
    records = [
        # current window: 2025-06-09 .. 2025-06-15
        make_record("c1", "v1", "s1", "2025-06-09", 40, 12),
        make_record("c2", "v2", "s2", "2025-06-09", 20, 4),
        make_record("c3", "v1", "s1", "2025-06-10", 30, 12),
        make_record("c4", "v2", "s2", "2025-06-11", 25, 5),
        make_record("c5", "v3", "s1", "2025-06-12", 15, 6),
        # prior window: 2025-06-02 .. 2025-06-08
        make_record("p1", "v1", "s1", "2025-06-03", 50, 10),
        make_record("p2", "v2", "s2", "2025-06-04", 30, 6),
    ]
    return stores, sellers, records


@pytest.fixture
def sample():
    return build_sample()


class FakeRecordStore:
    def __init__(self, data=None, failing=()):
        self.data = data or {}
        self.failing = set(failing)
        self.record_calls = []
        self.config_calls = []

    def list_user_ids(self):
        return list(self.data)

    def list_sales_records(self, user_id, since, until):
        self.record_calls.append((user_id, since, until))
        if user_id in self.failing:
            raise RecordStoreError(f"records unavailable for {user_id}")
        _config, records = self.data.get(user_id, (StoreConfig(), []))
        return [record for record in records if since <= record.date <= until]

    def get_store_and_seller_config(self, user_id):
        self.config_calls.append(user_id)
        if user_id in self.failing:
            raise RecordStoreError(f"config unavailable for {user_id}")
        config, _records = self.data.get(user_id, (StoreConfig(), []))
        return config


class FakeInsightStore:
    def __init__(self, fail_reads=False, fail_writes=False):
        self.sets = {}
        self.upsert_calls = []
        self.find_calls = []
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes

    def find_insight_set(self, user_id, key):
        self.find_calls.append((user_id, key))
        if self.fail_reads:
            raise InsightStoreError("read failed")
        return self.sets.get((user_id, key))

    def upsert_insight_set(self, user_id, key, insights, generated_at):
        self.upsert_calls.append((user_id, key, list(insights)))
        if self.fail_writes:
            raise InsightStoreError("write failed")
        self.sets[(user_id, key)] = InsightSet(user_id, key, list(insights), generated_at)


@pytest.fixture
def reference():
    return REFERENCE


@pytest.fixture
def record():
    return make_record


@pytest.fixture
def record_store_factory():
    return FakeRecordStore


@pytest.fixture
def insight_store_factory():
    return FakeInsightStore


@pytest.fixture
def populated_stores():
    stores, sellers, records = build_sample()
    record_store = FakeRecordStore({"u1": (StoreConfig(stores, sellers), records)})
    return record_store, FakeInsightStore()
