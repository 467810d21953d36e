"""
Calendar Sync Service
Keeps a user's Google Calendar in line with each order's milestone dates.

An order owns up to three remote events, all anchored to its delivery date:

    delivery    delivery date, 10:00-11:00
    review      delivery date + 2 days, 14:00-15:00
    refundForm  refund form date, 15:00-16:00 (only when that date is set)

The stored id map on the order is the only link to the remote events. Every
remote call is attempted independently; a failure is logged and recorded in
the SyncResult but never raised, so the local order stays authoritative and
the next pass retries whatever is missing.
"""

import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from ..domain.orders.repository import OrderRepository
from ..models import ActivityType, Order, TriggeredBy
from .clock import Clock
from .google_calendar_service import (
    CalendarClient,
    CalendarCredentials,
    CalendarEventData,
    CalendarEventNotFound,
)

logger = logging.getLogger(__name__)

DELIVERY_SLOT = "delivery"
REVIEW_SLOT = "review"
REFUND_FORM_SLOT = "refundForm"
EVENT_SLOTS = (DELIVERY_SLOT, REVIEW_SLOT, REFUND_FORM_SLOT)

REVIEW_OFFSET_DAYS = 2

# (start hour, end hour) in the display timezone
EVENT_WINDOWS = {
    DELIVERY_SLOT: (10, 11),
    REVIEW_SLOT: (14, 15),
    REFUND_FORM_SLOT: (15, 16),
}


class SyncAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class SyncResult:
    order_id: int
    action: SyncAction
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    event_ids: dict[str, str] = field(default_factory=dict)
    orphaned: list[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def remote_calls(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted) + len(self.failed)


def parse_event_ids(raw) -> dict[str, str]:
    """Normalize the stored id map; legacy rows hold a JSON string"""
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning(f"⚠️ Discarding unreadable calendar event ids: {raw[:100]}")
            return {}
    if not isinstance(raw, dict):
        return {}
    return {slot: event_id for slot, event_id in raw.items() if slot in EVENT_SLOTS and event_id}


def _event_description(order: Order, extra: Optional[str] = None) -> str:
    lines = [
        f"Product: {order.product_name}",
        f"Platform: {order.platform}",
        f"Order ID: {order.platform_order_id}",
    ]
    if extra:
        lines.append(extra)
    return "\n".join(lines)


def build_desired_events(order: Order, clock: Clock) -> dict[str, CalendarEventData]:
    """The remote events an order's dates imply; empty without a delivery date"""
    if order.delivery_date is None:
        return {}

    def window(slot: str, day) -> tuple:
        start_hour, end_hour = EVENT_WINDOWS[slot]
        return clock.at_local_time(day, start_hour), clock.at_local_time(day, end_hour)

    events = {}

    start, end = window(DELIVERY_SLOT, order.delivery_date)
    events[DELIVERY_SLOT] = CalendarEventData(
        title=f"📦 Product Delivery: {order.product_name}",
        description=_event_description(order),
        start=start,
        end=end,
        timezone=clock.timezone_name,
    )

    start, end = window(REVIEW_SLOT, order.delivery_date + timedelta(days=REVIEW_OFFSET_DAYS))
    events[REVIEW_SLOT] = CalendarEventData(
        title=f"⭐ Complete Review & Rating: {order.product_name}",
        description=_event_description(order),
        start=start,
        end=end,
        timezone=clock.timezone_name,
    )

    if order.refund_form_date is not None:
        start, end = window(REFUND_FORM_SLOT, order.refund_form_date)
        events[REFUND_FORM_SLOT] = CalendarEventData(
            title=f"💰 Submit Refund Form: {order.product_name}",
            description=_event_description(
                order, f"Form Link: {order.refund_form_link}" if order.refund_form_link else None
            ),
            start=start,
            end=end,
            timezone=clock.timezone_name,
        )

    return events


class CalendarReconciler:
    """Brings an order's remote calendar events in line with its dates"""

    def __init__(self, client: CalendarClient, repo: OrderRepository, clock: Clock):
        self.client = client
        self.repo = repo
        self.clock = clock

    async def reconcile(
        self,
        order: Order,
        credentials: Optional[CalendarCredentials],
        action: SyncAction,
        log_when_unchanged: bool = True,
    ) -> SyncResult:
        """
        Create, update or delete the order's remote events and persist the
        resulting id map.

        Remote failures are collected in the result. Database errors are not
        caught here; they belong to the caller.
        """
        action = SyncAction(action)
        result = SyncResult(order_id=order.id, action=action)

        stored = parse_event_ids(order.calendar_event_ids)

        if credentials is None:
            result.skipped = True
            self._drop_ids_locally(order, action, stored, result)
            return result

        if action == SyncAction.DELETE or (order.delivery_date is None and stored):
            await self._delete_all(order, credentials, stored, result)
            return result

        if order.delivery_date is None:
            # No anchor date, nothing to represent remotely
            if order.calendar_event_ids is not None:
                self.repo.update_order(order, calendar_event_ids=None)
            return result

        desired = build_desired_events(order, self.clock)
        new_ids: dict[str, str] = {}

        for slot, event in desired.items():
            existing_id = stored.get(slot)
            if existing_id:
                event_id = await self._update_or_recreate(credentials, slot, existing_id, event, result)
            else:
                event_id = await self._create(credentials, slot, event, result)
            if event_id:
                new_ids[slot] = event_id

        # Events whose milestone date was cleared
        for slot, event_id in stored.items():
            if slot not in desired:
                await self._delete(credentials, slot, event_id, result)

        result.event_ids = new_ids
        changed = new_ids != stored
        # Legacy JSON-string rows are rewritten in the normalized form
        if changed or order.calendar_event_ids != (new_ids or None):
            self.repo.update_order(order, calendar_event_ids=new_ids or None)

        if changed or log_when_unchanged:
            self._log_sync(order, action, result)

        if result.failed:
            logger.warning(
                f"⚠️ Calendar sync for order {order.id} incomplete: "
                f"{', '.join(f'{slot} ({error})' for slot, error in result.failed.items())}"
            )
        return result

    async def _create(
        self, credentials: CalendarCredentials, slot: str, event: CalendarEventData, result: SyncResult
    ) -> Optional[str]:
        try:
            event_id = await self.client.create_event(credentials, event)
        except Exception as e:
            logger.error(f"❌ Failed to create {slot} event for order {result.order_id}: {e}")
            result.failed[slot] = str(e)
            return None
        result.created.append(slot)
        return event_id

    async def _update_or_recreate(
        self,
        credentials: CalendarCredentials,
        slot: str,
        event_id: str,
        event: CalendarEventData,
        result: SyncResult,
    ) -> Optional[str]:
        try:
            await self.client.update_event(credentials, event_id, event)
        except CalendarEventNotFound:
            logger.info(f"🔄 {slot} event {event_id} for order {result.order_id} was removed remotely, recreating")
            return await self._create(credentials, slot, event, result)
        except Exception as e:
            # Keep the id so the next pass retries the update
            logger.error(f"❌ Failed to update {slot} event {event_id} for order {result.order_id}: {e}")
            result.failed[slot] = str(e)
            return event_id
        result.updated.append(slot)
        return event_id

    async def _delete(
        self, credentials: CalendarCredentials, slot: str, event_id: str, result: SyncResult
    ) -> None:
        try:
            await self.client.delete_event(credentials, event_id)
        except Exception as e:
            logger.error(f"❌ Failed to delete {slot} event {event_id} for order {result.order_id}: {e}")
            result.failed[slot] = str(e)
            return
        result.deleted.append(slot)

    async def _delete_all(
        self,
        order: Order,
        credentials: CalendarCredentials,
        stored: dict[str, str],
        result: SyncResult,
    ) -> None:
        for slot, event_id in stored.items():
            await self._delete(credentials, slot, event_id, result)

        if order.calendar_event_ids is not None:
            self.repo.update_order(order, calendar_event_ids=None)

        if stored or result.action == SyncAction.DELETE:
            reason = "" if result.action == SyncAction.DELETE else " (delivery date cleared)"
            self.repo.append_activity_log(
                order,
                ActivityType.CALENDAR_EVENT_DELETED,
                f"Calendar events removed{reason} for {order.product_name}",
                old_value=json.dumps(stored) if stored else None,
                triggered_by=TriggeredBy.SYSTEM,
            )

    def _drop_ids_locally(
        self, order: Order, action: SyncAction, stored: dict[str, str], result: SyncResult
    ) -> None:
        """
        Without usable credentials no remote call is made, but ids whose date
        is gone are still removed from the order. Their remote events are left
        orphaned, the same as after a failed delete.
        """
        if action == SyncAction.DELETE:
            keep = {}
        else:
            desired = build_desired_events(order, self.clock)
            keep = {slot: event_id for slot, event_id in stored.items() if slot in desired}

        dropped = {slot: event_id for slot, event_id in stored.items() if slot not in keep}
        result.event_ids = keep
        result.orphaned = list(dropped)

        if keep == stored and order.calendar_event_ids == (keep or None):
            return

        self.repo.update_order(order, calendar_event_ids=keep or None)
        if dropped:
            self.repo.append_activity_log(
                order,
                ActivityType.CALENDAR_EVENT_DELETED,
                f"Calendar events removed (calendar not connected) for {order.product_name}",
                old_value=json.dumps(dropped),
                triggered_by=TriggeredBy.SYSTEM,
            )
            logger.warning(
                f"⚠️ Dropped calendar event ids {', '.join(dropped)} for order {order.id} "
                f"without remote delete; calendar not connected"
            )

    def _log_sync(self, order: Order, action: SyncAction, result: SyncResult) -> None:
        activity_type = (
            ActivityType.CALENDAR_EVENT_CREATED
            if action == SyncAction.CREATE
            else ActivityType.CALENDAR_EVENT_UPDATED
        )
        verb = "created" if action == SyncAction.CREATE else "updated"
        description = f"Calendar events {verb} for {order.product_name}"
        if result.failed:
            description += f" ({len(result.failed)} failed: {', '.join(result.failed)})"

        self.repo.append_activity_log(
            order,
            activity_type,
            description,
            new_value=json.dumps(result.event_ids) if result.event_ids else None,
            triggered_by=TriggeredBy.SYSTEM,
        )
