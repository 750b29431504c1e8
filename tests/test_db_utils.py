from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from site_analytics import db_utils
from site_analytics.models import interaction_events, visitor_analytics
from site_analytics.sink import DatabaseSink

from conftest import SESSION_ID, START


def _visit_row(path="/", **extra):
    row = {"session_id": SESSION_ID, "fingerprint": "9f3c2a71", "page_path": path,
           "device_type": "desktop", "referrer": None, "created_at": START}
    row.update(extra)
    return row


def _count(engine, table) -> int:
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar_one()


def test_insert_returns_handle_and_stores_row(engine) -> None:
    visit_id = db_utils.insert_page_visit(_visit_row("/services"), engine=engine)
    assert isinstance(visit_id, str) and len(visit_id) == 36

    (row,) = db_utils.fetch_page_visits_since(START - timedelta(days=1), engine=engine)
    assert row["id"] == visit_id
    assert row["page_path"] == "/services"
    assert row["scroll_depth"] is None


def test_update_targets_only_the_given_visit(engine) -> None:
    # two visits of the same page in the same session
    first = db_utils.insert_page_visit(_visit_row("/"), engine=engine)
    second = db_utils.insert_page_visit(_visit_row("/", created_at=START + timedelta(minutes=5)), engine=engine)

    n = db_utils.update_page_visit(first, {"scroll_depth": 64, "time_on_page": 31, "click_count": 2}, engine=engine)
    assert n == 1

    rows = {r["id"]: r for r in db_utils.fetch_page_visits_since(START - timedelta(days=1), engine=engine)}
    assert rows[first]["scroll_depth"] == 64
    assert rows[first]["click_count"] == 2
    assert rows[second]["scroll_depth"] is None


def test_update_ignores_non_patch_columns(engine) -> None:
    visit_id = db_utils.insert_page_visit(_visit_row("/"), engine=engine)
    assert db_utils.update_page_visit(visit_id, {"page_path": "/hijack"}, engine=engine) == 0
    (row,) = db_utils.fetch_page_visits_since(START - timedelta(days=1), engine=engine)
    assert row["page_path"] == "/"


def test_update_unknown_visit_touches_nothing(engine) -> None:
    assert db_utils.update_page_visit("missing", {"click_count": 1}, engine=engine) == 0


def test_events_bulk_insert_with_metadata(engine) -> None:
    rows = [
        {"session_id": SESSION_ID, "event_type": "service_click", "page_path": "/services",
         "element_id": "ai-integration", "element_type": "service_card",
         "metadata": {"service_title": "AI Integration", "category": "services"}, "created_at": START},
        {"session_id": SESSION_ID, "event_type": "click", "page_path": "/services",
         "x_position": 10, "y_position": 20, "created_at": START + timedelta(seconds=1)},
    ]
    assert db_utils.write_interaction_events(rows, engine=engine) == 2

    newest, oldest = db_utils.fetch_recent_events_since(START - timedelta(days=1), engine=engine)
    assert newest["event_type"] == "click"
    assert newest["metadata"] is None
    assert oldest["metadata"] == {"service_title": "AI Integration", "category": "services"}


def test_empty_event_batch_writes_nothing(engine) -> None:
    assert db_utils.write_interaction_events([], engine=engine) == 0
    assert _count(engine, interaction_events) == 0


def test_missing_created_at_uses_server_default(engine) -> None:
    db_utils.write_interaction_events(
        [{"session_id": SESSION_ID, "event_type": "click", "page_path": "/", "created_at": None}],
        engine=engine,
    )
    with engine.connect() as conn:
        created = conn.execute(select(interaction_events.c.created_at)).scalar_one()
    assert created is not None


@pytest.mark.parametrize("mode", ["delete", "truncate"])
def test_reset_tables(engine, mode: str) -> None:
    db_utils.insert_page_visit(_visit_row(), engine=engine)
    db_utils.write_interaction_events(
        [{"session_id": SESSION_ID, "event_type": "click", "page_path": "/"}], engine=engine
    )
    db_utils.reset_tables(mode, engine=engine)
    assert _count(engine, visitor_analytics) == 0
    assert _count(engine, interaction_events) == 0


def test_reset_tables_bad_mode(engine) -> None:
    with pytest.raises(ValueError):
        db_utils.reset_tables("drop", engine=engine)


def test_database_sink_round_trip(engine) -> None:
    sink = DatabaseSink(engine)
    visit_id = sink.open_visit(_visit_row("/contact"))
    sink.record_events([{"session_id": SESSION_ID, "event_type": "whatsapp_click",
                         "page_path": "/contact", "created_at": START}])
    sink.close_visit(visit_id, {"scroll_depth": 100, "time_on_page": 8, "click_count": 1})

    (visit,) = db_utils.fetch_page_visits_since(START - timedelta(days=1), engine=engine)
    assert (visit["scroll_depth"], visit["time_on_page"], visit["click_count"]) == (100, 8, 1)
    assert _count(engine, interaction_events) == 1


def test_database_url_from_env(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    assert db_utils.get_database_url() == "sqlite+pysqlite:///:memory:"
