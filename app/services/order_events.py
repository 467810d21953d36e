"""
Order lifecycle hooks for manual create / update / delete

The order CRUD surface calls these after (or, for delete, instead of) its own
write so that activity logs, notifications and the user's calendar follow
the change. Calendar problems are logged and never block the user's edit.
"""

import json
import logging
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..domain.orders.repository import OrderRepository
from ..models import ActivityType, Order, OrderStatus, TriggeredBy
from .calendar_sync import CalendarReconciler, SyncAction, SyncResult
from .clock import Clock
from .google_calendar_service import CalendarClient, load_calendar_credentials
from .notification_service import emit_status_echo, notify_order_created

logger = logging.getLogger(__name__)

DATE_FIELDS = {
    "delivery_date": "Delivery Date",
    "refund_form_date": "Refund Form Date",
    "remind_refund_date": "Remind Refund Date",
}
# Changes to these move, add or remove remote events
CALENDAR_FIELDS = ("delivery_date", "refund_form_date")

SNAPSHOT_FIELDS = (
    "status",
    "product_name",
    "platform",
    "platform_order_id",
    "product_link",
    "refund_form_link",
    "comments",
    "order_amount",
    "refund_amount",
    "order_date",
    *DATE_FIELDS,
)


def snapshot_order(order: Order) -> dict:
    """Field values to hand to handle_order_updated as the "before" state"""
    return {name: getattr(order, name) for name in SNAPSHOT_FIELDS}


def _json_value(value):
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class OrderEventHandler:
    def __init__(
        self,
        repo: OrderRepository,
        calendar_client: CalendarClient,
        clock: Clock,
        credentials_loader=load_calendar_credentials,
    ):
        self.repo = repo
        self.calendar_client = calendar_client
        self.clock = clock
        self.credentials_loader = credentials_loader

    async def handle_order_created(self, order: Order) -> Optional[SyncResult]:
        self.repo.append_activity_log(
            order,
            ActivityType.ORDER_CREATED,
            f"Order created for {order.product_name} on {order.platform}",
            new_value=json.dumps(
                {
                    "status": order.status,
                    "order_amount": order.order_amount,
                    "refund_amount": order.refund_amount,
                }
            ),
            triggered_by=TriggeredBy.USER,
        )
        notify_order_created(self.repo, order)
        return await self._sync(order, SyncAction.CREATE)

    async def handle_order_updated(
        self, before: dict, order: Order, changed_fields: Iterable[str]
    ) -> Optional[SyncResult]:
        """
        Log what the user changed and resync the calendar when an event date
        moved. `changed_fields` are the fields the user submitted; a field
        whose value did not actually change is ignored.
        """
        submitted = [name for name in changed_fields if name in before]
        logged = False

        if "status" in submitted and before["status"] != order.status:
            self.repo.append_activity_log(
                order,
                ActivityType.STATUS_CHANGED,
                f'Order status changed from "{before["status"]}" to "{order.status}"',
                old_value=before["status"],
                new_value=order.status,
                triggered_by=TriggeredBy.USER,
            )
            emit_status_echo(self.repo, order, OrderStatus(order.status), self.clock, TriggeredBy.USER)
            logged = True

        dates_changed = []
        for name, label in DATE_FIELDS.items():
            if name not in submitted or self._same_instant(before[name], getattr(order, name)):
                continue
            old, new = before[name], getattr(order, name)
            self.repo.append_activity_log(
                order,
                ActivityType.DATES_MODIFIED,
                f"{label} {'cleared' if new is None else 'updated'}",
                old_value=self.clock.localize(old).isoformat() if old is not None else "Not set",
                new_value=self.clock.localize(new).isoformat() if new is not None else "Not set",
                triggered_by=TriggeredBy.USER,
            )
            dates_changed.append(name)
            logged = True

        other = [
            name
            for name in submitted
            if name != "status" and name not in DATE_FIELDS and before[name] != getattr(order, name)
        ]
        if other and not logged:
            self.repo.append_activity_log(
                order,
                ActivityType.ORDER_UPDATED,
                f"Order details updated: {', '.join(other)}",
                old_value=json.dumps({name: _json_value(before[name]) for name in other}),
                new_value=json.dumps({name: _json_value(getattr(order, name)) for name in other}),
                triggered_by=TriggeredBy.USER,
            )

        if any(name in CALENDAR_FIELDS for name in dates_changed):
            return await self._sync(order, SyncAction.UPDATE)
        return None

    async def handle_order_deleted(self, order: Order) -> Optional[SyncResult]:
        """Remove the order's remote events, then the order itself"""
        order_id = order.id
        result = await self._sync(order, SyncAction.DELETE)
        self.repo.delete_order(order)
        logger.info(f"🗑️ Order {order_id} deleted")
        return result

    def _same_instant(self, a, b) -> bool:
        if a is None or b is None:
            return a is b
        return self.clock.localize(a) == self.clock.localize(b)

    async def _sync(self, order: Order, action: SyncAction) -> Optional[SyncResult]:
        try:
            credentials = await self.credentials_loader(self.repo, order.user_id)
        except SQLAlchemyError:
            raise
        except Exception as e:
            logger.error(f"❌ Calendar sync ({action.value}) skipped for order {order.id}: {e}")
            credentials = None

        # Without credentials only the local id cleanup runs
        reconciler = CalendarReconciler(self.calendar_client, self.repo, self.clock)
        return await reconciler.reconcile(order, credentials, action)
