from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest
from postgrest.exceptions import APIError

import supabase_utils
from insight_engine import load_config
from models import DayKey, Insight, InsightStoreError, RecordStoreError, SlotKey
from scheduler import InsightScheduler
from supabase_utils import SupabaseInsightStore, SupabaseRecordStore, sanitize_for_json


class _Query:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.operation = "select"
        self.columns = None
        self.filters = []
        self.payload = None
        self.on_conflict = None
        self.orders = []
        self.bounds = None

    def select(self, columns):
        self.columns = columns
        return self

    def eq(self, column, value):
        self.filters.append(("eq", column, value))
        return self

    def gte(self, column, value):
        self.filters.append(("gte", column, value))
        return self

    def lte(self, column, value):
        self.filters.append(("lte", column, value))
        return self

    def limit(self, count):
        self.filters.append(("limit", count))
        return self

    def order(self, column):
        self.orders.append(column)
        return self

    def range(self, start, end):
        self.bounds = (start, end)
        return self

    def upsert(self, payload, on_conflict=""):
        self.operation = "upsert"
        self.payload = payload
        self.on_conflict = on_conflict
        return self

    def execute(self):
        self.client.executed.append(self)
        if self.client.error:
            raise self.client.error
        if self.operation == "upsert":
            return SimpleNamespace(data=[self.payload])
        rows = self.client.responses.get(self.table, [])
        if self.bounds is not None:
            start, end = self.bounds
            rows = rows[start : end + 1]
        return SimpleNamespace(data=rows)


class FakeClient:
    def __init__(self, responses=None, error=None):
        self.responses = responses or {}
        self.error = error
        self.executed = []

    def table(self, name):
        return _Query(self, name)


def _api_error():
    return APIError({"message": "boom", "code": "500", "hint": None, "details": None})


def test_list_sales_records_filters_by_user_and_range():
    client = FakeClient(
        {
            "sales_records": [
                {"id": "r1", "seller_id": "v1", "store_id": "s1", "date": "2025-06-10", "visits": 10, "sales": 3},
                {"id": "r2", "seller_id": "v1", "store_id": "s1", "date": "2025-06-11T00:00:00", "visits": None},
            ]
        }
    )
    store = SupabaseRecordStore(client)

    records = store.list_sales_records("u1", date(2025, 4, 16), date(2025, 6, 15))

    assert [record.id for record in records] == ["r1", "r2"]
    assert records[1].date == date(2025, 6, 11)
    assert records[1].visits == 0
    query = client.executed[0]
    assert query.table == "sales_records"
    assert query.orders == ["date", "id"]
    assert query.bounds == (0, 999)
    assert query.filters == [
        ("eq", "user_id", "u1"),
        ("gte", "date", "2025-04-16"),
        ("lte", "date", "2025-06-15"),
    ]


def test_store_config_parses_stores_and_sellers():
    client = FakeClient(
        {
            "store_configs": [
                {
                    "stores": [{"id": "s1", "name": "Centro", "average_ticket": 120.5}, {"id": "s2", "name": "Novo"}],
                    "sellers": [{"id": "v1", "name": "Ana", "store_id": "s1"}],
                }
            ]
        }
    )
    config = SupabaseRecordStore(client).get_store_and_seller_config("u1")

    assert config.stores[0].ticket == 120.5
    assert not config.stores[1].ticket_configured
    assert config.sellers[0].store_id == "s1"


def test_store_config_defaults_to_empty():
    config = SupabaseRecordStore(FakeClient()).get_store_and_seller_config("u1")
    assert config.stores == []
    assert config.sellers == []


def test_list_user_ids_deduplicates():
    client = FakeClient({"store_configs": [{"user_id": "u1"}, {"user_id": "u2"}, {"user_id": "u1"}, {}]})
    assert SupabaseRecordStore(client).list_user_ids() == ["u1", "u2"]


def test_record_errors_are_wrapped():
    store = SupabaseRecordStore(FakeClient(error=_api_error()))
    with pytest.raises(RecordStoreError):
        store.list_sales_records("u1", date(2025, 6, 1), date(2025, 6, 15))
    with pytest.raises(RecordStoreError):
        store.get_store_and_seller_config("u1")


def test_slot_and_day_keys_use_separate_tables():
    client = FakeClient()
    store = SupabaseInsightStore(client)
    insight = Insight(kind="trend", title="Up", description="d", tag="info", icon="trendingUp")
    generated_at = datetime(2025, 6, 15, 11, 0, 5, tzinfo=timezone.utc)

    store.upsert_insight_set("u1", SlotKey(datetime(2025, 6, 15, 11, 0, tzinfo=timezone.utc)), [insight], generated_at)
    store.upsert_insight_set("u1", DayKey(date(2025, 6, 15)), [insight], generated_at)

    slot_query, day_query = client.executed
    assert slot_query.table == "insights_feed"
    assert slot_query.on_conflict == "user_id,slot_start"
    assert slot_query.payload["slot_start"] == "2025-06-15T11:00:00+00:00"
    assert slot_query.payload["generated_at"] == "2025-06-15T11:00:05+00:00"
    assert slot_query.payload["insights"][0]["kind"] == "trend"
    assert day_query.table == "daily_insights"
    assert day_query.on_conflict == "user_id,day"
    assert day_query.payload["day"] == "2025-06-15"


def test_find_insight_set_reads_rows():
    client = FakeClient(
        {
            "daily_insights": [
                {
                    "insights": [{"id": "trend", "title": "Up", "description": "d", "tag": "info", "icon": "trendingUp"}],
                    "generated_at": "2025-06-15T14:00:00Z",
                }
            ]
        }
    )
    found = SupabaseInsightStore(client).find_insight_set("u1", DayKey(date(2025, 6, 15)))

    assert found.insights[0].kind == "trend"
    assert found.generated_at == datetime(2025, 6, 15, 14, 0, tzinfo=timezone.utc)
    assert ("eq", "day", "2025-06-15") in client.executed[0].filters


def test_find_insight_set_missing_returns_none():
    assert SupabaseInsightStore(FakeClient()).find_insight_set("u1", DayKey(date(2025, 6, 15))) is None


def test_insight_errors_are_wrapped():
    store = SupabaseInsightStore(FakeClient(error=_api_error()))
    with pytest.raises(InsightStoreError):
        store.find_insight_set("u1", DayKey(date(2025, 6, 15)))
    with pytest.raises(InsightStoreError):
        store.upsert_insight_set("u1", DayKey(date(2025, 6, 15)), [], datetime.now(timezone.utc))


def test_unknown_key_type_is_rejected():
    with pytest.raises(TypeError):
        SupabaseInsightStore(FakeClient()).find_insight_set("u1", "2025-06-15")


def test_get_supabase_client_requires_url(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        supabase_utils.get_supabase_client()


def test_sanitize_for_json_handles_nested_values():
    payload = {"day": date(2025, 6, 15), "items": [DayKey(date(2025, 6, 16))], "n": 1}
    assert sanitize_for_json(payload) == {"day": "2025-06-15", "items": [{"day": "2025-06-16"}], "n": 1}


def _sales_row(index, day="2025-06-10"):
    return {"id": f"r{index}", "seller_id": "v1", "store_id": "s1", "date": day, "visits": 10, "sales": 2}


def test_sales_records_are_read_page_by_page():
    client = FakeClient({"sales_records": [_sales_row(i) for i in range(5)]})
    store = SupabaseRecordStore(client, page_size=3)

    records = store.list_sales_records("u1", date(2025, 4, 16), date(2025, 6, 15))

    assert [record.id for record in records] == ["r0", "r1", "r2", "r3", "r4"]
    assert [query.bounds for query in client.executed] == [(0, 2), (3, 5)]


def test_full_last_page_triggers_one_more_read():
    client = FakeClient({"store_configs": [{"user_id": f"u{i}"} for i in range(4)]})
    store = SupabaseRecordStore(client, page_size=2)

    assert store.list_user_ids() == ["u0", "u1", "u2", "u3"]
    assert [query.bounds for query in client.executed] == [(0, 1), (2, 3), (4, 5)]
    assert client.executed[0].orders == ["user_id"]


def test_malformed_sales_row_is_a_record_store_error():
    row = _sales_row(1)
    row["date"] = None
    store = SupabaseRecordStore(FakeClient({"sales_records": [row]}))
    with pytest.raises(RecordStoreError):
        store.list_sales_records("u1", date(2025, 4, 16), date(2025, 6, 15))


def test_malformed_store_config_is_a_record_store_error():
    client = FakeClient({"store_configs": [{"stores": ["Centro"], "sellers": []}]})
    with pytest.raises(RecordStoreError):
        SupabaseRecordStore(client).get_store_and_seller_config("u1")


def test_malformed_insight_set_is_an_insight_store_error():
    client = FakeClient({"daily_insights": [{"insights": [], "generated_at": None}]})
    with pytest.raises(InsightStoreError):
        SupabaseInsightStore(client).find_insight_set("u1", DayKey(date(2025, 6, 15)))


def test_feed_reports_error_for_malformed_records(insight_store_factory, reference):
    row = _sales_row(1)
    row["date"] = None
    client = FakeClient({"sales_records": [row], "store_configs": [{"stores": [], "sellers": []}]})
    scheduler = InsightScheduler(SupabaseRecordStore(client), insight_store_factory(), cfg=load_config())

    state = scheduler.interactive_feed("u1", reference)

    assert state.status == "error"
    assert "Malformed sales record" in state.error
