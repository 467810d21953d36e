"""
Tests for calendar reconciliation against a recording fake client.
"""

import json

import pytest

from app.models import ActivityLog, ActivityType
from app.services.calendar_sync import (
    CalendarReconciler,
    SyncAction,
    build_desired_events,
    parse_event_ids,
)
from support import utc


@pytest.fixture
def reconciler(calendar_client, repo, clock):
    return CalendarReconciler(calendar_client, repo, clock)


@pytest.fixture
def full_order(make_order):
    return make_order(
        delivery_date=utc(2026, 3, 20, 0, 0),
        refund_form_date=utc(2026, 3, 25, 0, 0),
        refund_form_link="https://forms.example.com/refund",
    )


def _logs(db, order, activity_type):
    return db.query(ActivityLog).filter_by(order_id=order.id, activity_type=activity_type.value).all()


@pytest.mark.unit
class TestDesiredEvents:
    def test_no_delivery_date_means_no_events(self, make_order, clock):
        order = make_order(refund_form_date=utc(2026, 3, 25, 0, 0))
        assert build_desired_events(order, clock) == {}

    def test_event_windows_in_display_timezone(self, make_order, kolkata_clock):
        order = make_order(
            delivery_date=utc(2026, 3, 20, 0, 0), refund_form_date=utc(2026, 3, 25, 0, 0)
        )
        events = build_desired_events(order, kolkata_clock)

        delivery = events["delivery"]
        assert (delivery.start.day, delivery.start.hour, delivery.end.hour) == (20, 10, 11)
        assert delivery.timezone == "Asia/Kolkata"

        review = events["review"]
        assert (review.start.day, review.start.hour, review.end.hour) == (22, 14, 15)

        refund = events["refundForm"]
        assert (refund.start.day, refund.start.hour, refund.end.hour) == (25, 15, 16)
        assert refund.title.startswith("💰")

    def test_refund_form_link_goes_into_description(self, full_order, clock):
        events = build_desired_events(full_order, clock)
        assert "Form Link: https://forms.example.com/refund" in events["refundForm"].description
        assert "Form Link" not in events["delivery"].description

    def test_parse_event_ids(self):
        assert parse_event_ids(None) == {}
        assert parse_event_ids('{"delivery": "a", "bogus": "b"}') == {"delivery": "a"}
        assert parse_event_ids("not json") == {}
        assert parse_event_ids({"review": "r", "refundForm": ""}) == {"review": "r"}


@pytest.mark.unit
class TestCalendarReconciler:
    async def test_create_stores_all_three_ids(
        self, db, reconciler, calendar_client, credentials, full_order
    ):
        result = await reconciler.reconcile(full_order, credentials, SyncAction.CREATE)

        assert result.ok
        assert result.created == ["delivery", "review", "refundForm"]
        assert calendar_client.count("create") == 3
        assert full_order.calendar_event_ids == {
            "delivery": "evt-1",
            "review": "evt-2",
            "refundForm": "evt-3",
        }
        log = _logs(db, full_order, ActivityType.CALENDAR_EVENT_CREATED)[0]
        assert json.loads(log.new_value)["delivery"] == "evt-1"

    async def test_second_reconcile_only_updates(
        self, db, reconciler, calendar_client, credentials, full_order
    ):
        await reconciler.reconcile(full_order, credentials, SyncAction.CREATE)
        ids = dict(full_order.calendar_event_ids)
        calendar_client.calls.clear()

        result = await reconciler.reconcile(
            full_order, credentials, SyncAction.UPDATE, log_when_unchanged=False
        )

        assert calendar_client.count("create") == 0
        assert calendar_client.count("update") == 3
        assert result.updated == ["delivery", "review", "refundForm"]
        assert full_order.calendar_event_ids == ids
        assert _logs(db, full_order, ActivityType.CALENDAR_EVENT_UPDATED) == []

    async def test_no_delivery_date_makes_no_calls(
        self, reconciler, calendar_client, credentials, make_order
    ):
        order = make_order(refund_form_date=utc(2026, 3, 25, 0, 0))
        result = await reconciler.reconcile(order, credentials, SyncAction.CREATE)

        assert calendar_client.calls == []
        assert result.remote_calls == 0
        assert order.calendar_event_ids is None

    async def test_delete_removes_everything(
        self, db, reconciler, calendar_client, credentials, full_order
    ):
        await reconciler.reconcile(full_order, credentials, SyncAction.CREATE)

        result = await reconciler.reconcile(full_order, credentials, SyncAction.DELETE)

        assert calendar_client.count("delete") == 3
        assert result.deleted == ["delivery", "review", "refundForm"]
        assert full_order.calendar_event_ids is None
        assert len(_logs(db, full_order, ActivityType.CALENDAR_EVENT_DELETED)) == 1

    async def test_missing_remote_event_counts_as_deleted(
        self, reconciler, calendar_client, credentials, make_order
    ):
        order = make_order(
            delivery_date=utc(2026, 3, 20, 0, 0), calendar_event_ids={"delivery": "gone"}
        )
        result = await reconciler.reconcile(order, credentials, SyncAction.DELETE)

        assert result.ok
        assert result.deleted == ["delivery"]
        assert order.calendar_event_ids is None

    async def test_partial_failure_keeps_successful_ids(
        self, reconciler, calendar_client, credentials, full_order
    ):
        calendar_client.fail_titles.add("Submit Refund Form")

        result = await reconciler.reconcile(full_order, credentials, SyncAction.CREATE)

        assert not result.ok
        assert set(result.failed) == {"refundForm"}
        assert set(full_order.calendar_event_ids) == {"delivery", "review"}

        # Next pass fills in only what is missing
        calendar_client.fail_titles.clear()
        calendar_client.calls.clear()
        result = await reconciler.reconcile(full_order, credentials, SyncAction.UPDATE)

        assert result.ok
        assert result.created == ["refundForm"]
        assert calendar_client.count("update") == 2
        assert set(full_order.calendar_event_ids) == {"delivery", "review", "refundForm"}

    async def test_failed_update_keeps_id_for_retry(
        self, reconciler, calendar_client, credentials, full_order
    ):
        await reconciler.reconcile(full_order, credentials, SyncAction.CREATE)
        ids = dict(full_order.calendar_event_ids)
        calendar_client.fail_methods.add("update")

        result = await reconciler.reconcile(full_order, credentials, SyncAction.UPDATE)

        assert set(result.failed) == {"delivery", "review", "refundForm"}
        assert full_order.calendar_event_ids == ids

    async def test_cleared_refund_form_date_deletes_that_event(
        self, repo, reconciler, calendar_client, credentials, full_order
    ):
        await reconciler.reconcile(full_order, credentials, SyncAction.CREATE)
        refund_event_id = full_order.calendar_event_ids["refundForm"]
        repo.update_order(full_order, refund_form_date=None)
        calendar_client.calls.clear()

        result = await reconciler.reconcile(full_order, credentials, SyncAction.UPDATE)

        assert ("delete", refund_event_id) in calendar_client.calls
        assert calendar_client.count("update") == 2
        assert result.deleted == ["refundForm"]
        assert set(full_order.calendar_event_ids) == {"delivery", "review"}

    async def test_cleared_delivery_date_removes_all_events(
        self, repo, reconciler, calendar_client, credentials, full_order
    ):
        await reconciler.reconcile(full_order, credentials, SyncAction.CREATE)
        repo.update_order(full_order, delivery_date=None)
        calendar_client.fail_methods.add("delete")

        result = await reconciler.reconcile(full_order, credentials, SyncAction.UPDATE)

        assert calendar_client.count("delete") == 3
        assert not result.ok
        assert full_order.calendar_event_ids is None

    async def test_event_removed_remotely_is_recreated(
        self, reconciler, calendar_client, credentials, make_order
    ):
        order = make_order(
            delivery_date=utc(2026, 3, 20, 0, 0),
            calendar_event_ids={"delivery": "stale-1", "review": "stale-2"},
        )

        result = await reconciler.reconcile(order, credentials, SyncAction.UPDATE)

        assert result.ok
        assert result.created == ["delivery", "review"]
        assert order.calendar_event_ids == {"delivery": "evt-1", "review": "evt-2"}

    async def test_legacy_json_string_ids_are_normalized(
        self, reconciler, calendar_client, credentials, make_order
    ):
        calendar_client.events.update({"d-1": True, "r-1": True})
        order = make_order(
            delivery_date=utc(2026, 3, 20, 0, 0),
            calendar_event_ids=json.dumps({"delivery": "d-1", "review": "r-1"}),
        )

        await reconciler.reconcile(order, credentials, SyncAction.UPDATE)

        assert calendar_client.count("create") == 0
        assert order.calendar_event_ids == {"delivery": "d-1", "review": "r-1"}

    async def test_no_credentials_skips(self, reconciler, calendar_client, full_order):
        result = await reconciler.reconcile(full_order, None, SyncAction.CREATE)
        assert result.skipped
        assert calendar_client.calls == []
        assert full_order.calendar_event_ids is None

    async def test_no_credentials_still_drops_ids_without_anchor(
        self, db, reconciler, calendar_client, make_order
    ):
        order = make_order(calendar_event_ids={"delivery": "a", "review": "b"})

        result = await reconciler.reconcile(order, None, SyncAction.UPDATE)

        assert result.skipped
        assert calendar_client.calls == []
        assert order.calendar_event_ids is None
        assert result.orphaned == ["delivery", "review"]
        assert len(_logs(db, order, ActivityType.CALENDAR_EVENT_DELETED)) == 1

    async def test_no_credentials_drops_only_the_cleared_slot(
        self, db, reconciler, calendar_client, make_order
    ):
        order = make_order(
            delivery_date=utc(2026, 3, 20, 0, 0),
            calendar_event_ids={"delivery": "d-1", "review": "r-1", "refundForm": "f-1"},
        )

        result = await reconciler.reconcile(order, None, SyncAction.UPDATE)

        assert calendar_client.calls == []
        assert order.calendar_event_ids == {"delivery": "d-1", "review": "r-1"}
        assert result.orphaned == ["refundForm"]

    async def test_no_credentials_keeps_ids_that_still_have_dates(
        self, db, reconciler, full_order
    ):
        ids = {"delivery": "d-1", "review": "r-1", "refundForm": "f-1"}
        full_order.calendar_event_ids = ids
        db.commit()

        result = await reconciler.reconcile(full_order, None, SyncAction.UPDATE)

        assert result.orphaned == []
        assert full_order.calendar_event_ids == ids
        assert _logs(db, full_order, ActivityType.CALENDAR_EVENT_DELETED) == []
