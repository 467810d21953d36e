"""Order repository - Database operations used by the lifecycle engine"""

from typing import Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import ActivityLog, Notification, Order, TriggeredBy
from ...models_google_calendar import GoogleCalendarIntegration

MILESTONE_COLUMNS = {
    "delivery_date": Order.delivery_date,
    "refund_form_date": Order.refund_form_date,
    "remind_refund_date": Order.remind_refund_date,
}


def _values(items) -> list[str]:
    return [getattr(item, "value", item) for item in items]


class OrderRepository:
    """Repository for order, notification and activity-log rows

    Every write commits immediately; a failure raises SQLAlchemyError to the
    caller after rolling back the session.
    """

    def __init__(self, db: Session):
        self.db = db

    def _matching(
        self,
        query,
        statuses: Optional[Iterable],
        exclude_statuses: Optional[Iterable],
        with_any_date: Optional[Iterable[str]],
        or_calendar_linked: bool,
    ):
        if statuses is not None:
            query = query.filter(Order.status.in_(_values(statuses)))
        if exclude_statuses:
            query = query.filter(Order.status.notin_(_values(exclude_statuses)))

        if with_any_date:
            conditions = [MILESTONE_COLUMNS[name].isnot(None) for name in with_any_date]
            if or_calendar_linked:
                conditions.append(Order.calendar_event_ids.isnot(None))
            query = query.filter(or_(*conditions))
        elif or_calendar_linked:
            query = query.filter(Order.calendar_event_ids.isnot(None))

        return query.order_by(Order.id.asc())

    def find_orders_matching(
        self,
        statuses: Optional[Iterable] = None,
        exclude_statuses: Optional[Iterable] = None,
        with_any_date: Optional[Iterable[str]] = None,
        or_calendar_linked: bool = False,
    ) -> list[Order]:
        """Load candidate orders

        `with_any_date` keeps orders where at least one of the named milestone
        columns is set; `or_calendar_linked` also keeps orders that still hold
        stored calendar event ids.
        """
        return self._matching(
            self.db.query(Order), statuses, exclude_statuses, with_any_date, or_calendar_linked
        ).all()

    def find_order_ids_matching(
        self,
        statuses: Optional[Iterable] = None,
        exclude_statuses: Optional[Iterable] = None,
        with_any_date: Optional[Iterable[str]] = None,
        or_calendar_linked: bool = False,
    ) -> list[int]:
        """Same filters as find_orders_matching, without loading the rows"""
        query = self._matching(
            self.db.query(Order.id), statuses, exclude_statuses, with_any_date, or_calendar_linked
        )
        return [order_id for (order_id,) in query.all()]

    def get_order(self, order_id: int, user_id: Optional[int] = None) -> Optional[Order]:
        query = self.db.query(Order).filter(Order.id == order_id)
        if user_id is not None:
            query = query.filter(Order.user_id == user_id)
        return query.first()

    def update_order(self, order: Order, **updates) -> Order:
        """Apply a partial update; unlike form updates, None clears a field"""
        for key, value in updates.items():
            if not hasattr(order, key):
                raise AttributeError(f"Order has no field '{key}'")
            setattr(order, key, getattr(value, "value", value))
        self._commit()
        self.db.refresh(order)
        return order

    def delete_order(self, order: Order) -> None:
        self.db.delete(order)
        self._commit()

    def append_activity_log(
        self,
        order: Order,
        activity_type,
        description: str,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
        triggered_by=TriggeredBy.SYSTEM,
    ) -> ActivityLog:
        entry = ActivityLog(
            user_id=order.user_id,
            order_id=order.id,
            activity_type=activity_type.value,
            description=description,
            old_value=old_value,
            new_value=new_value,
            triggered_by=triggered_by.value,
        )
        self.db.add(entry)
        self._commit()
        return entry

    def find_notification(
        self, order_id: int, notification_type, reminder_category=None
    ) -> Optional[Notification]:
        query = self.db.query(Notification).filter(
            Notification.order_id == order_id,
            Notification.type == notification_type.value,
        )
        if reminder_category is not None:
            query = query.filter(Notification.reminder_category == reminder_category.value)
        return query.first()

    def insert_notification(
        self,
        user_id: int,
        order_id: Optional[int],
        notification_type,
        reminder_category,
        title: str,
        message: str,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            order_id=order_id,
            type=notification_type.value,
            reminder_category=reminder_category.value,
            title=title,
            message=message,
            is_read=False,
        )
        self.db.add(notification)
        self._commit()
        return notification

    def get_calendar_integration(self, user_id: int) -> Optional[GoogleCalendarIntegration]:
        return (
            self.db.query(GoogleCalendarIntegration)
            .filter(GoogleCalendarIntegration.user_id == user_id)
            .first()
        )

    def save_calendar_integration(self, integration: GoogleCalendarIntegration) -> None:
        self._commit()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
