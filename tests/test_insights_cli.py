import json

import pytest

import insights_cli


@pytest.fixture
def fixture_path(tmp_path, sample):
    stores, sellers, records = sample
    path = tmp_path / "fixture.json"
    path.write_text(
        json.dumps(
            {
                "stores": [
                    {"id": store.id, "name": store.name, "average_ticket": store.average_ticket} for store in stores
                ],
                "sellers": [{"id": s.id, "name": s.name, "store_id": s.store_id} for s in sellers],
                "records": [record.to_dict() for record in records],
            }
        )
    )
    return str(path)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cli.db'}"


def test_preview_json(fixture_path, capsys):
    exit_code = insights_cli.main(
        ["preview", fixture_path, "--mode", "interactive", "--date", "2025-06-15", "--format", "json"]
    )
    payload = json.loads(capsys.readouterr().out)

    assert exit_code == 0
    assert [item["kind"] for item in payload] == ["trend", "store_loss", "seller_loss", "weekday", "plus_one_point"]


def test_preview_markdown_without_data(fixture_path, capsys):
    insights_cli.main(["preview", fixture_path, "--date", "2024-01-01"])
    assert "Not enough data to generate insights yet." in capsys.readouterr().out


def test_ingest_then_feed(fixture_path, database_url, capsys):
    assert insights_cli.main(["ingest", fixture_path, "--user-id", "u1", "--database-url", database_url]) == 0
    assert "Inserted: 7" in capsys.readouterr().out

    assert insights_cli.main(["ingest", fixture_path, "--user-id", "u1", "--database-url", database_url]) == 0
    assert "Unchanged: 7" in capsys.readouterr().out

    exit_code = insights_cli.main(
        ["feed", "--user-id", "u1", "--date", "2025-06-15", "--database-url", database_url]
    )
    state = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert state["status"] == "ready"
    assert state["day"] == "2025-06-15"
    assert len(state["insights"]) == 5


def test_regenerate_prints_markdown(fixture_path, database_url, capsys):
    insights_cli.main(["ingest", fixture_path, "--user-id", "u1", "--database-url", database_url])
    capsys.readouterr()

    assert insights_cli.main(
        ["regenerate", "--user-id", "u1", "--date", "2025-06-15", "--database-url", database_url]
    ) == 0
    out = capsys.readouterr().out
    assert out.startswith("# Insights for 2025-06-15")
    assert "Conversion is up" in out


def test_batch_reports_counts(fixture_path, database_url, capsys):
    insights_cli.main(["ingest", fixture_path, "--user-id", "u1", "--database-url", database_url])
    capsys.readouterr()

    # Fixture data is far older than today, so the batch finds nothing to write.
    assert insights_cli.main(["batch", "--database-url", database_url, "--no-progress"]) == 0
    out = capsys.readouterr().out
    assert "Generated: 0" in out
    assert "Empty: 1" in out


def test_summary_writes_file(fixture_path, database_url, tmp_path, capsys):
    insights_cli.main(["ingest", fixture_path, "--user-id", "u1", "--database-url", database_url])
    out_path = tmp_path / "reports" / "summary.json"

    insights_cli.main(
        [
            "summary",
            "--user-id",
            "u1",
            "--start",
            "2025-06-09",
            "--end",
            "2025-06-15",
            "--database-url",
            database_url,
            "--out",
            str(out_path),
        ]
    )
    summary = json.loads(out_path.read_text())
    assert summary["total_visits"] == 130
    assert summary["conversion"] == 30.0
    assert summary["best_store"] == "Centro"


def test_preview_rejects_unknown_mode(fixture_path):
    with pytest.raises(SystemExit):
        insights_cli.main(["preview", fixture_path, "--mode", "weekly"])
