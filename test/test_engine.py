import asyncio
from datetime import date, datetime, time

import pytest

from calendar_sync.engine import SyncEngine, SyncReport
from calendar_sync.errors import CalendarApiError, NotConnectedError
from day_planner.models import SyncDirection, SyncStatus

from conftest import DAY, TZ


def _sync(store, calendar, direction=None, user_id="alice"):
    return asyncio.run(SyncEngine(store, calendar).sync(user_id, DAY, direction))


def _first_sync(store, calendar, item):
    """Export the item and return its mapping and remote event id."""
    report = _sync(store, calendar)
    assert report.created_remote == 1
    mapping = store.mapping_for(item.id)
    return mapping, mapping.remote_event_id


def test_report_summary():
    assert SyncReport().summary() == "No changes"
    report = SyncReport(created_local=2, pushed=1, errors=["x"])
    assert report.summary() == "2 imported, 1 pushed, 1 errors"
    assert report.total == 3
    assert report.to_dict()["summary"] == report.summary()


def test_sync_requires_a_connected_account(store, calendar):
    with pytest.raises(NotConnectedError):
        _sync(store, calendar)


def test_disabled_account_is_not_synced(store, calendar, account):
    account.sync_enabled = False
    store.accounts["alice"] = account
    with pytest.raises(NotConnectedError, match="disabled"):
        _sync(store, calendar)


def test_new_local_item_is_exported(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    mapping, event_id = _first_sync(store, calendar, item)

    event = calendar.events[event_id]
    assert event["summary"] == "Standup"
    assert event["start"]["dateTime"] == "2026-03-02T09:00:00"
    assert mapping.sync_status == SyncStatus.SYNCED
    assert mapping.snapshot.fields.title == "Standup"
    assert store.accounts["alice"].last_sync_at is not None


def test_new_remote_event_is_imported(store, calendar, account):
    calendar.add_event("Lunch", datetime(2026, 3, 2, 12, 0), 60, description="with Sam")
    report = _sync(store, calendar)

    assert report.created_local == 1
    (item,) = store.items.values()
    assert item.title == "Lunch"
    assert item.start_time == time(12, 0)
    assert item.duration_minutes == 60
    assert item.description == "with Sam"
    assert store.mapping_for(item.id).remote_event_id == "evt1"


def test_second_run_is_a_no_op(store, calendar, account, plan_with_item):
    _first_sync(store, calendar, plan_with_item[1])
    report = _sync(store, calendar)
    assert report.total == 0
    assert report.unchanged == 1


def test_event_from_previous_day_is_not_imported(store, calendar, account):
    calendar.add_event("Overnight", datetime(2026, 3, 1, 23, 0), 120)
    report = _sync(store, calendar)
    assert report.created_local == 0
    assert not store.items


def test_local_edit_is_pushed(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    _, event_id = _first_sync(store, calendar, item)

    asyncio.run(store.update_item("alice", item.id, title="Daily sync", start_time=time(9, 15)))
    report = _sync(store, calendar)

    assert report.pushed == 1
    assert calendar.events[event_id]["summary"] == "Daily sync"
    assert calendar.events[event_id]["start"]["dateTime"] == "2026-03-02T09:15:00"
    assert store.mapping_for(item.id).snapshot.fields.title == "Daily sync"


def test_remote_edit_is_pulled(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    _, event_id = _first_sync(store, calendar, item)

    calendar.edit_event(event_id, summary="Standup (moved)")
    report = _sync(store, calendar)

    assert report.pulled == 1
    assert store.items[item.id].title == "Standup (moved)"
    assert store.mapping_for(item.id).sync_status == SyncStatus.SYNCED


def test_remote_move_to_other_day_moves_the_item(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    _, event_id = _first_sync(store, calendar, item)

    calendar.edit_event(
        event_id,
        start={"dateTime": "2026-03-03T09:00:00", "timeZone": TZ},
        end={"dateTime": "2026-03-03T09:30:00", "timeZone": TZ},
    )
    report = _sync(store, calendar)

    assert report.pulled == 1
    moved = store.items[item.id]
    assert moved.plan_id != plan.id
    assert store.plans[moved.plan_id].plan_date == date(2026, 3, 3)


def test_both_sides_edited_is_flagged_and_left_alone(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    _, event_id = _first_sync(store, calendar, item)

    asyncio.run(store.update_item("alice", item.id, title="Local title"))
    calendar.edit_event(event_id, summary="Remote title")
    report = _sync(store, calendar)

    assert report.conflicts == 1
    assert store.mapping_for(item.id).sync_status == SyncStatus.CONFLICT
    assert store.items[item.id].title == "Local title"
    assert calendar.events[event_id]["summary"] == "Remote title"

    # later runs neither push nor pull a conflicted item
    calendar.edit_event(event_id, summary="Remote again")
    report = _sync(store, calendar)
    assert report.blocked == 1
    assert report.pulled == report.pushed == 0
    assert store.items[item.id].title == "Local title"


def test_both_sides_converging_is_not_a_conflict(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    _, event_id = _first_sync(store, calendar, item)

    asyncio.run(store.update_item("alice", item.id, title="Same"))
    calendar.edit_event(event_id, summary="Same")
    report = _sync(store, calendar)

    assert report.conflicts == 0
    mapping = store.mapping_for(item.id)
    assert mapping.sync_status == SyncStatus.SYNCED
    assert mapping.snapshot.fields.title == "Same"


def test_remote_delete_removes_untouched_item(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    _, event_id = _first_sync(store, calendar, item)

    del calendar.events[event_id]
    report = _sync(store, calendar)

    assert report.deleted_local == 1
    assert item.id not in store.items
    assert not store.mappings


def test_remote_delete_with_local_edits_recreates_event(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    _, event_id = _first_sync(store, calendar, item)

    del calendar.events[event_id]
    asyncio.run(store.update_item("alice", item.id, title="Still needed"))
    report = _sync(store, calendar)

    assert report.created_remote == 1
    new_id = store.mapping_for(item.id).remote_event_id
    assert new_id != event_id
    assert calendar.events[new_id]["summary"] == "Still needed"


def test_pull_only_never_writes_remote(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    account.sync_direction = SyncDirection.PULL_ONLY
    store.accounts["alice"] = account

    report = _sync(store, calendar)
    assert report.created_remote == 0
    assert "create" not in calendar.calls
    assert store.mapping_for(item.id) is None


def test_local_edit_stays_pending_when_not_pushing(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    _first_sync(store, calendar, item)

    asyncio.run(store.update_item("alice", item.id, title="Unpushed"))
    report = _sync(store, calendar, direction=SyncDirection.PULL_ONLY)

    assert report.pushed == 0
    assert store.mapping_for(item.id).sync_status == SyncStatus.PENDING


def test_push_only_does_not_import(store, calendar, account):
    account.sync_direction = SyncDirection.PUSH_ONLY
    store.accounts["alice"] = account
    calendar.add_event("Remote only", datetime(2026, 3, 2, 14, 0))

    report = _sync(store, calendar)
    assert report.created_local == 0
    assert not store.items


def test_completed_items_are_not_exported(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    store.items[item.id] = item.model_copy(update={"completed_at": datetime(2026, 3, 2, 10, 0)})

    report = _sync(store, calendar)
    assert report.created_remote == 0
    assert not calendar.events


def test_per_item_api_failure_is_recorded_not_raised(store, calendar, account, plan_with_item):
    calendar.fail.add("create")
    report = _sync(store, calendar)
    assert report.created_remote == 0
    assert len(report.errors) == 1


def test_overlong_remote_title_is_cut_and_run_continues(store, calendar, account):
    calendar.add_event("x" * 300, datetime(2026, 3, 2, 10, 0))
    calendar.add_event("Normal", datetime(2026, 3, 2, 11, 0))

    report = _sync(store, calendar)

    assert report.created_local == 2
    assert report.errors == []
    titles = sorted(i.title for i in store.items.values())
    assert titles == ["Normal", "x" * 255]
    assert store.accounts["alice"].last_sync_at is not None

    again = _sync(store, calendar)
    assert again.unchanged == 2
    assert again.pulled == 0
    assert calendar.events["evt1"]["summary"] == "x" * 300


def test_unexpected_import_failure_is_recorded_not_raised(store, calendar, account, monkeypatch):
    calendar.add_event("Broken", datetime(2026, 3, 2, 10, 0))
    calendar.add_event("Normal", datetime(2026, 3, 2, 11, 0))
    create_item = store.create_item

    async def flaky_create_item(user_id, plan_id, title, *args, **kwargs):
        if title == "Broken":
            raise ValueError("value too long for type character varying(255)")
        return await create_item(user_id, plan_id, title, *args, **kwargs)

    monkeypatch.setattr(store, "create_item", flaky_create_item)
    report = _sync(store, calendar)

    assert report.created_local == 1
    assert [i.title for i in store.items.values()] == ["Normal"]
    assert report.errors == ["evt1: value too long for type character varying(255)"]
    assert store.accounts["alice"].last_sync_at is not None


def test_remote_description_edit_ignored_when_descriptions_not_synced(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    _, event_id = _first_sync(store, calendar, item)
    store.accounts["alice"].preferences.include_description = False

    calendar.edit_event(event_id, description="changed remotely")
    report = _sync(store, calendar)

    assert report.unchanged == 1
    assert report.pulled == 0
    assert store.items[item.id].description == "daily"
    assert store.mapping_for(item.id).sync_status == SyncStatus.SYNCED


def test_listing_failure_aborts_the_run(store, calendar, account, plan_with_item):
    calendar.fail.add("list")
    with pytest.raises(CalendarApiError):
        _sync(store, calendar)


def test_remove_item_deletes_remote_event_and_mapping(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    _, event_id = _first_sync(store, calendar, item)

    removed = asyncio.run(SyncEngine(store, calendar).remove_item("alice", item.id))
    assert removed
    assert event_id not in calendar.events
    assert store.mapping_for(item.id) is None


def test_remove_item_survives_remote_failure(store, calendar, account, plan_with_item):
    plan, item = plan_with_item
    _first_sync(store, calendar, item)
    calendar.fail.add("delete")

    assert asyncio.run(SyncEngine(store, calendar).remove_item("alice", item.id))
    assert store.mapping_for(item.id) is None
