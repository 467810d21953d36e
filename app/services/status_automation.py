"""
Automated status transitions for orders
Handles Ordered → Delivered when the delivery date arrives
Handles Delivered/Deliverables Done → Overdue when the refund form date passes

Every other transition is made by the user and only read here.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..domain.orders.repository import OrderRepository
from ..models import ActivityType, Order, OrderStatus, TriggeredBy
from .clock import Clock
from .notification_service import emit_status_echo

logger = logging.getLogger(__name__)

# Statuses from which a passed refund form deadline makes the order overdue
AWAITING_REFUND_FORM = (OrderStatus.DELIVERED, OrderStatus.DELIVERABLES_DONE)


@dataclass(frozen=True)
class StatusDecision:
    new_status: Optional[OrderStatus]
    reason: str

    @property
    def changed(self) -> bool:
        return self.new_status is not None


UNCHANGED = StatusDecision(None, "No automatic transition applies")


def next_status(order: Order, now: datetime, clock: Clock) -> StatusDecision:
    """
    Decide the automatic status for an order at `now`

    Rules, first match wins:
    1. Ordered with a delivery date falling today → Delivered
    2. Delivered / Deliverables Done with a refund form date strictly before
       today's start → Overdue Passed for Refund Form

    Pure: reads the order, writes nothing.
    """
    status = OrderStatus(order.status)

    if status == OrderStatus.ORDERED and order.delivery_date is not None:
        if clock.is_today(order.delivery_date, now):
            return StatusDecision(
                OrderStatus.DELIVERED,
                f'Order status automatically updated from "{status.value}" to '
                f'"{OrderStatus.DELIVERED.value}" - delivery date is today',
            )

    if status in AWAITING_REFUND_FORM and order.refund_form_date is not None:
        if clock.localize(order.refund_form_date) < clock.start_of_day(now):
            due = clock.localize(order.refund_form_date).strftime("%b %d, %Y")
            return StatusDecision(
                OrderStatus.OVERDUE_REFUND_FORM,
                f'Order status automatically updated to "{OrderStatus.OVERDUE_REFUND_FORM.value}" '
                f"- Refund form was due on {due}",
            )

    return UNCHANGED


def apply_status_transition(
    repo: OrderRepository, order: Order, decision: StatusDecision, clock: Clock
) -> bool:
    """
    Persist an automatic transition: new status, a System activity log entry
    and the status echo notification. Returns True when something changed.
    """
    if not decision.changed:
        return False

    old_status = order.status
    new_status = decision.new_status

    repo.update_order(order, status=new_status)
    repo.append_activity_log(
        order,
        ActivityType.STATUS_CHANGED,
        decision.reason,
        old_value=old_status,
        new_value=new_status.value,
        triggered_by=TriggeredBy.SYSTEM,
    )
    emit_status_echo(repo, order, new_status, clock, triggered_by=TriggeredBy.SYSTEM)

    logger.info(f"✅ Order {order.id} transitioned: {old_status} → {new_status.value}")
    return True
