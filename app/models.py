import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class OrderStatus(str, enum.Enum):
    ORDERED = "Ordered"
    DELIVERED = "Delivered"
    DELIVERABLES_DONE = "Deliverables Done"
    REFUND_FORM_DONE = "Refund Form Done"
    OVERDUE_REFUND_FORM = "Overdue Passed for Refund Form"
    REMIND_MEDIATOR_PAYMENT = "Remind Mediator for Payment"
    REFUNDED = "Refunded"
    CANCELLED = "Cancelled"


class NotificationType(str, enum.Enum):
    CRITICAL = "Critical"
    WARNING = "Warning"
    SUCCESS = "Success"
    INFO = "Info"


class ReminderCategory(str, enum.Enum):
    GENERAL = "General"
    DELIVERY = "Delivery"
    REVIEW_RATING = "Review_Rating"
    REFUND_FORM = "Refund_Form"
    MEDIATOR_PAYMENT = "Mediator_Payment"


class ActivityType(str, enum.Enum):
    ORDER_CREATED = "Order Created"
    STATUS_CHANGED = "Status Changed"
    ORDER_UPDATED = "Order Updated"
    DATES_MODIFIED = "Dates Modified"
    CALENDAR_EVENT_CREATED = "Calendar Event Created"
    CALENDAR_EVENT_UPDATED = "Calendar Event Updated"
    CALENDAR_EVENT_DELETED = "Calendar Event Deleted"


class TriggeredBy(str, enum.Enum):
    USER = "User"
    SYSTEM = "System"


# Orders in these states no longer get reminders or automatic transitions
CLOSED_STATUSES = (OrderStatus.REFUNDED, OrderStatus.CANCELLED)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    orders = relationship("Order", back_populates="user", cascade="all")
    notifications = relationship("Notification", back_populates="user", cascade="all")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    product_name = Column(String(255), nullable=False)
    platform = Column(String(50), nullable=False)  # Amazon, Flipkart, Myntra, ...
    platform_order_id = Column(String(100), nullable=False)  # Order number shown by the platform
    product_link = Column(Text, nullable=True)
    refund_form_link = Column(Text, nullable=True)
    comments = Column(Text, nullable=True)

    # Money is stored in minor units (paise)
    order_amount = Column(Integer, nullable=False, default=0)
    refund_amount = Column(Integer, nullable=False, default=0)

    status = Column(String(50), nullable=False, default=OrderStatus.ORDERED.value, index=True)

    # Milestone dates
    order_date = Column(DateTime(timezone=True), nullable=True)
    delivery_date = Column(DateTime(timezone=True), nullable=True)
    refund_form_date = Column(DateTime(timezone=True), nullable=True)
    remind_refund_date = Column(DateTime(timezone=True), nullable=True)

    # {"delivery": id, "review": id, "refundForm": id}; NULL when no remote events exist
    calendar_event_ids = Column(JSON(none_as_null=True), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="orders")
    activity_logs = relationship(
        "ActivityLog", back_populates="order", cascade="all", order_by="ActivityLog.id"
    )
    notifications = relationship("Notification", back_populates="order", cascade="all")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # NULL for system-wide notices
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=True, index=True)
    type = Column(String(20), nullable=False)
    reminder_category = Column(String(30), nullable=False, default=ReminderCategory.GENERAL.value)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="notifications")
    order = relationship("Order", back_populates="notifications")


class ActivityLog(Base):
    """Append-only audit trail of order changes"""

    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    activity_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    triggered_by = Column(String(10), nullable=False, default=TriggeredBy.USER.value)
    created_at = Column(DateTime, server_default=func.now())

    order = relationship("Order", back_populates="activity_logs")
