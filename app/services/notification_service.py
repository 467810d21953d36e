"""
Order Notification Service
Generates reminder notifications from order milestone dates and the one-shot
notifications that echo a status change.

Reminder rules are independent; each produces at most one candidate per
order per pass, and a dedup policy decides whether an equivalent
notification is already stored.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from ..domain.orders.repository import OrderRepository
from ..models import (
    Notification,
    NotificationType,
    Order,
    OrderStatus,
    ReminderCategory,
    TriggeredBy,
)
from .clock import Clock

logger = logging.getLogger(__name__)

REMINDER_WINDOW_DAYS = 3
REVIEW_GRACE_DAYS = 3

# Refund form reminders stop once the form is submitted
REFUND_FORM_PENDING = (
    OrderStatus.ORDERED,
    OrderStatus.DELIVERED,
    OrderStatus.DELIVERABLES_DONE,
    OrderStatus.OVERDUE_REFUND_FORM,
)


@dataclass(frozen=True)
class ReminderCandidate:
    order: Order
    type: NotificationType
    category: ReminderCategory
    title: str
    message: str


# ============================================================================
# DEDUP POLICIES
# ============================================================================

DedupPolicy = Callable[[OrderRepository, ReminderCandidate], bool]


def dedup_by_severity(repo: OrderRepository, candidate: ReminderCandidate) -> bool:
    """
    True when the order already has any notification of the same severity.

    Coarse: a stored "delivery soon" Warning also suppresses a later
    "refund form due" Warning for the same order.
    """
    return repo.find_notification(candidate.order.id, candidate.type) is not None


def dedup_by_category(repo: OrderRepository, candidate: ReminderCandidate) -> bool:
    """True when the order already has a notification of this severity and category"""
    return repo.find_notification(candidate.order.id, candidate.type, candidate.category) is not None


DEDUP_POLICIES: dict[str, DedupPolicy] = {
    "severity": dedup_by_severity,
    "category": dedup_by_category,
}
DEFAULT_DEDUP_POLICY: DedupPolicy = dedup_by_severity


def get_dedup_policy(name: str) -> DedupPolicy:
    try:
        return DEDUP_POLICIES[name]
    except KeyError:
        raise ValueError(f"Unknown dedup policy '{name}'") from None


# ============================================================================
# REMINDER RULES
# ============================================================================


def _fmt(clock: Clock, dt: datetime, pattern: str = "%b %d") -> str:
    return clock.localize(dt).strftime(pattern)


def delivery_approaching(order: Order, now: datetime, clock: Clock) -> Optional[ReminderCandidate]:
    if order.delivery_date is None or order.status != OrderStatus.ORDERED.value:
        return None

    days = clock.days_until(order.delivery_date, now)
    if days < 1 or days > REMINDER_WINDOW_DAYS:
        return None

    if days <= 1:
        return ReminderCandidate(
            order,
            NotificationType.WARNING,
            ReminderCategory.DELIVERY,
            "Delivery Expected Soon",
            f'Product "{order.product_name}" (Order #{order.platform_order_id}) is expected '
            f"to be delivered within 24 hours.",
        )
    return ReminderCandidate(
        order,
        NotificationType.WARNING,
        ReminderCategory.DELIVERY,
        "Delivery Coming Up",
        f'Product "{order.product_name}" (Order #{order.platform_order_id}) delivery '
        f"expected in {days} day(s).",
    )


def refund_form_approaching(order: Order, now: datetime, clock: Clock) -> Optional[ReminderCandidate]:
    if order.refund_form_date is None or OrderStatus(order.status) not in REFUND_FORM_PENDING:
        return None

    days = clock.days_until(order.refund_form_date, now)
    if days < 0 or days > REMINDER_WINDOW_DAYS:
        return None

    when = "today" if days == 0 else f"in {days} day(s)"
    return ReminderCandidate(
        order,
        NotificationType.WARNING,
        ReminderCategory.REFUND_FORM,
        "Refund Form Due Soon",
        f'Refund form for "{order.product_name}" (Order #{order.platform_order_id}) is due {when}.',
    )


def refund_form_overdue(order: Order, now: datetime, clock: Clock) -> Optional[ReminderCandidate]:
    if order.refund_form_date is None or OrderStatus(order.status) not in REFUND_FORM_PENDING:
        return None

    if clock.days_until(order.refund_form_date, now) >= 0:
        return None

    return ReminderCandidate(
        order,
        NotificationType.CRITICAL,
        ReminderCategory.REFUND_FORM,
        "Refund Form Deadline Passed",
        f'Refund form for "{order.product_name}" (Order #{order.platform_order_id}) was due on '
        f"{_fmt(clock, order.refund_form_date)}. Please submit immediately!",
    )


def review_overdue(order: Order, now: datetime, clock: Clock) -> Optional[ReminderCandidate]:
    if order.delivery_date is None or order.status != OrderStatus.DELIVERED.value:
        return None

    days_since = clock.days_between(order.delivery_date, now)
    if days_since < REVIEW_GRACE_DAYS:
        return None

    return ReminderCandidate(
        order,
        NotificationType.CRITICAL,
        ReminderCategory.REVIEW_RATING,
        "Review Overdue",
        f'Product "{order.product_name}" was delivered {days_since} days ago. '
        f"Complete review & rating now!",
    )


def mediator_payment_due(order: Order, now: datetime, clock: Clock) -> Optional[ReminderCandidate]:
    if order.remind_refund_date is None or order.status != OrderStatus.REFUND_FORM_DONE.value:
        return None

    if clock.days_until(order.remind_refund_date, now) > 0:
        return None

    return ReminderCandidate(
        order,
        NotificationType.INFO,
        ReminderCategory.MEDIATOR_PAYMENT,
        "Remind Mediator for Payment",
        f'Time to contact the mediator about the refund for "{order.product_name}" '
        f"(Order #{order.platform_order_id}).",
    )


REMINDER_RULES = (
    delivery_approaching,
    refund_form_approaching,
    refund_form_overdue,
    review_overdue,
    mediator_payment_due,
)


def evaluate_reminders(order: Order, now: datetime, clock: Clock) -> list[ReminderCandidate]:
    """Run every reminder rule against an order; pure"""
    candidates = []
    for rule in REMINDER_RULES:
        candidate = rule(order, now, clock)
        if candidate is not None:
            candidates.append(candidate)
    return candidates


def generate_reminders(
    repo: OrderRepository,
    order: Order,
    now: datetime,
    clock: Clock,
    dedup_policy: DedupPolicy = DEFAULT_DEDUP_POLICY,
) -> int:
    """Store reminder notifications not suppressed by the dedup policy; returns count created"""
    created = 0
    for candidate in evaluate_reminders(order, now, clock):
        if dedup_policy(repo, candidate):
            logger.debug(
                f"ℹ️ Skipping {candidate.type.value}/{candidate.category.value} reminder "
                f"for order {order.id} - already notified"
            )
            continue

        repo.insert_notification(
            order.user_id,
            order.id,
            candidate.type,
            candidate.category,
            candidate.title,
            candidate.message,
        )
        created += 1
        logger.info(f"🔔 {candidate.title} notification created for order {order.id}")
    return created


# ============================================================================
# STATUS ECHO
# ============================================================================


def _status_echo(
    order: Order, new_status: OrderStatus, clock: Clock, triggered_by: TriggeredBy
) -> Optional[tuple[NotificationType, ReminderCategory, str, str]]:
    if new_status == OrderStatus.DELIVERED:
        if triggered_by == TriggeredBy.SYSTEM:
            return (
                NotificationType.SUCCESS,
                ReminderCategory.DELIVERY,
                "Order Delivered",
                f'Your order "{order.product_name}" from {order.platform} has been delivered. '
                f"Order ID: {order.platform_order_id}",
            )
        return (
            NotificationType.WARNING,
            ReminderCategory.REVIEW_RATING,
            "Product Delivered",
            f"{order.product_name} has been delivered. Remember to complete the review within 3 days.",
        )

    if new_status == OrderStatus.OVERDUE_REFUND_FORM:
        deadline = (
            f" Deadline was {_fmt(clock, order.refund_form_date, '%B %d, %Y')}."
            if order.refund_form_date is not None
            else ""
        )
        return (
            NotificationType.CRITICAL,
            ReminderCategory.REFUND_FORM,
            "Refund Form Deadline Passed",
            f'The refund form deadline for "{order.product_name}" has passed.{deadline} '
            f"Please contact the mediator.",
        )

    if new_status == OrderStatus.REMIND_MEDIATOR_PAYMENT:
        return (
            NotificationType.INFO,
            ReminderCategory.MEDIATOR_PAYMENT,
            "Follow Up with Mediator",
            f"Time to contact mediator for payment regarding {order.product_name}",
        )

    if new_status == OrderStatus.REFUNDED:
        return (
            NotificationType.SUCCESS,
            ReminderCategory.MEDIATOR_PAYMENT,
            "Refund Received",
            f"Refund for {order.product_name} has been received successfully",
        )

    return None


def emit_status_echo(
    repo: OrderRepository,
    order: Order,
    new_status: OrderStatus,
    clock: Clock,
    triggered_by: TriggeredBy = TriggeredBy.SYSTEM,
) -> Optional[Notification]:
    """Store the one-shot notification describing a new status, if that status has one"""
    echo = _status_echo(order, new_status, clock, triggered_by)
    if echo is None:
        return None

    notification_type, category, title, message = echo
    return repo.insert_notification(order.user_id, order.id, notification_type, category, title, message)


def notify_order_created(repo: OrderRepository, order: Order) -> Notification:
    return repo.insert_notification(
        order.user_id,
        order.id,
        NotificationType.INFO,
        ReminderCategory.GENERAL,
        "New Order Created",
        f"Order for {order.product_name} on {order.platform} has been created successfully",
    )
