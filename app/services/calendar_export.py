"""
Calendar export
Renders an order's milestone reminders as an iCalendar (.ics) document for
users who do not connect Google Calendar.
"""

from datetime import datetime
from typing import Optional

from ..models import Order
from .clock import UTC, Clock
from .google_calendar_service import CalendarEventData

PRODID = "-//ReviewPilot//Order Reminders//EN"
UID_DOMAIN = "reviewpilot.app"

# (start hour, end hour) in the display timezone
DELIVERY_WINDOW = (10, 11)
REFUND_FORM_WINDOW = (14, 15)


def _ics_datetime(dt: datetime) -> str:
    return dt.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def escape_text(text: str) -> str:
    """Escape a TEXT value (RFC 5545 section 3.3.11)"""
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def build_export_events(order: Order, clock: Clock) -> dict[str, CalendarEventData]:
    """Delivery and refund-form reminders keyed by a stable per-order slot name"""
    events = {}

    if order.delivery_date is not None:
        start_hour, end_hour = DELIVERY_WINDOW
        events["delivery"] = CalendarEventData(
            title=f"📦 Product Delivery: {order.product_name}",
            description=(
                f"Order ID: {order.platform_order_id}\n"
                f"Platform: {order.platform}\n"
                f"Expected delivery for: {order.product_name}\n\n"
                "Next Steps:\n"
                "- Check for delivery confirmation\n"
                "- Unbox and test the product\n"
                "- Prepare for review submission"
            ),
            start=clock.at_local_time(order.delivery_date, start_hour),
            end=clock.at_local_time(order.delivery_date, end_hour),
            timezone=clock.timezone_name,
        )

    if order.refund_form_date is not None:
        start_hour, end_hour = REFUND_FORM_WINDOW
        events["refundForm"] = CalendarEventData(
            title=f"💰 Submit Refund Form: {order.product_name}",
            description=(
                f"Order ID: {order.platform_order_id}\n"
                f"Platform: {order.platform}\n"
                f"Refund form deadline for: {order.product_name}\n\n"
                "Action Required:\n"
                "- Submit product review on platform\n"
                "- Fill and submit refund form\n"
                "- Upload required screenshots"
            ),
            start=clock.at_local_time(order.refund_form_date, start_hour),
            end=clock.at_local_time(order.refund_form_date, end_hour),
            timezone=clock.timezone_name,
        )

    return events


def generate_ics(
    events: dict[str, CalendarEventData],
    uid_prefix: str,
    stamp: datetime,
    location: Optional[str] = None,
) -> str:
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
    ]

    for slot, event in events.items():
        lines += [
            "BEGIN:VEVENT",
            f"UID:{uid_prefix}-{slot}@{UID_DOMAIN}",
            f"DTSTAMP:{_ics_datetime(stamp)}",
            f"DTSTART:{_ics_datetime(event.start)}",
            f"DTEND:{_ics_datetime(event.end)}",
            f"SUMMARY:{escape_text(event.title)}",
            f"DESCRIPTION:{escape_text(event.description)}",
        ]
        if location:
            lines.append(f"LOCATION:{escape_text(location)}")
        lines += [
            "STATUS:CONFIRMED",
            "BEGIN:VALARM",
            "TRIGGER:-PT1H",
            "ACTION:DISPLAY",
            "DESCRIPTION:Reminder",
            "END:VALARM",
            "END:VEVENT",
        ]

    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


def export_order_calendar(order: Order, clock: Clock) -> str:
    return generate_ics(build_export_events(order, clock), f"order-{order.id}", clock.now())
