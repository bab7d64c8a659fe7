from __future__ import annotations

from pathlib import Path

import pytest

from eventhub.database import Database, resolve_database_path
from eventhub.planner import Contains, Equals, KeyCondition, QueryPlan, QueryPlanner, ScanPlan
from eventhub.schema import EVENTS, REGISTRATIONS, USERS
from eventhub.storage import ConditionFailedError


def _event(event_id: str, day: int, status: str = "ACTIVE", name: str | None = None) -> dict:
    return {
        "id": event_id,
        "name": name or f"Event {event_id}",
        "status": status,
        "date": f"2026-04-{day:02d}T18:00:00.000000+00:00",
        "organizer_id": "org-1",
    }


def test_put_and_get_round_trip(database: Database) -> None:
    database.put_item(USERS, {"id": "u-1", "email": "a@example.com", "phone": None})

    assert database.get_item(USERS, {"id": "u-1"}) == {"id": "u-1", "email": "a@example.com"}
    assert database.get_item(USERS, {"id": "missing"}) is None


def test_conditional_put_rejects_existing_key(database: Database) -> None:
    database.put_item(USERS, {"id": "u-1", "name": "First"})

    with pytest.raises(ConditionFailedError):
        database.put_item(USERS, {"id": "u-1", "name": "Second"})

    database.put_item(USERS, {"id": "u-1", "name": "Second"}, if_not_exists=False)
    assert database.get_item(USERS, {"id": "u-1"})["name"] == "Second"


def test_update_merges_and_removes_none_values(database: Database) -> None:
    database.put_item(USERS, {"id": "u-1", "name": "Ada", "email_validation_token": "tok"})

    updated = database.update_item(USERS, {"id": "u-1"}, {"name": "Ada L.", "email_validation_token": None})

    assert updated == {"id": "u-1", "name": "Ada L."}
    assert database.get_item(USERS, {"id": "u-1"}) == updated


def test_update_requires_existing_item(database: Database) -> None:
    with pytest.raises(ConditionFailedError):
        database.update_item(USERS, {"id": "ghost"}, {"name": "Nobody"})


def test_update_refuses_key_changes(database: Database) -> None:
    database.put_item(REGISTRATIONS, {"user_id": "u-1", "event_id": "e-1", "status": "ACTIVE"})
    with pytest.raises(ValueError):
        database.update_item(REGISTRATIONS, {"user_id": "u-1", "event_id": "e-1"}, {"event_id": "e-2"})


def test_status_date_index_is_descending_and_range_bounded(database: Database) -> None:
    for index, day in enumerate([3, 9, 15, 21, 27]):
        database.put_item(EVENTS, _event(f"e-{index}", day))
    database.put_item(EVENTS, _event("e-off", 12, status="INACTIVE"))

    plan = QueryPlanner(EVENTS).plan([Equals("status", "ACTIVE")], limit=50)
    page = database.query(EVENTS, plan)
    assert [item["id"] for item in page.items] == ["e-4", "e-3", "e-2", "e-1", "e-0"]
    assert page.last_key is None

    bounded = QueryPlan(
        index="status-date-index",
        key_condition=KeyCondition(
            partition="status",
            value="ACTIVE",
            sort="date",
            lower="2026-04-05T00:00:00.000000+00:00",
            upper="2026-04-20T00:00:00.000000+00:00",
        ),
        limit=10,
        forward=False,
    )
    assert [item["id"] for item in database.query(EVENTS, bounded).items] == ["e-2", "e-1"]


def test_limit_bounds_evaluated_items_before_post_filters(database: Database) -> None:
    database.put_item(EVENTS, _event("e-1", 1, name="Jazz night"))
    database.put_item(EVENTS, _event("e-2", 2, name="Rock night"))
    database.put_item(EVENTS, _event("e-3", 3, name="Jazz brunch"))

    planner = QueryPlanner(EVENTS)
    first = database.query(EVENTS, planner.plan([Equals("status", "ACTIVE"), Contains("name", "Jazz")], limit=2))

    assert [item["id"] for item in first.items] == ["e-3"]
    assert first.count == 1
    assert first.last_key == {"id": "e-2", "status": "ACTIVE", "date": "2026-04-02T18:00:00.000000+00:00"}

    cursor = planner.codec.encode(first.last_key)
    second = database.query(
        EVENTS,
        planner.plan([Equals("status", "ACTIVE"), Contains("name", "Jazz")], limit=2, cursor=cursor),
    )
    assert [item["id"] for item in second.items] == ["e-1"]
    assert second.last_key is None


def test_scan_pages_in_key_order(database: Database) -> None:
    for event_id in ["c", "a", "b"]:
        database.put_item(EVENTS, _event(event_id, 5))

    first = database.scan(EVENTS, ScanPlan(limit=2))
    assert [item["id"] for item in first.items] == ["a", "b"]
    assert first.last_key == {"id": "b"}

    second = database.scan(EVENTS, ScanPlan(limit=2, start_key=first.last_key))
    assert [item["id"] for item in second.items] == ["c"]
    assert second.last_key is None


def test_base_table_query_on_composite_key(database: Database) -> None:
    for event_id in ["e-1", "e-3", "e-2"]:
        database.put_item(REGISTRATIONS, {"user_id": "u-1", "event_id": event_id, "status": "ACTIVE"})
    database.put_item(REGISTRATIONS, {"user_id": "u-2", "event_id": "e-1", "status": "ACTIVE"})

    plan = QueryPlanner(REGISTRATIONS).plan([Equals("user_id", "u-1")])
    page = database.query(REGISTRATIONS, plan)

    assert [item["event_id"] for item in page.items] == ["e-3", "e-2", "e-1"]


def test_resolve_database_path_prefers_explicit_value(tmp_path: Path) -> None:
    explicit = tmp_path / "custom.sqlite3"
    assert resolve_database_path(str(explicit)) == explicit.resolve()
    assert resolve_database_path(None).name == "eventhub.sqlite3"
