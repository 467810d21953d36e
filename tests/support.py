"""
Test doubles and helpers shared by the test modules
"""

from datetime import datetime, timezone

from app.services.google_calendar_service import (
    CalendarAPIError,
    CalendarClient,
    CalendarEventNotFound,
    DeleteOutcome,
)


def utc(*args) -> datetime:
    """Aware UTC datetime; SQLite keeps wall time only, so fixtures store UTC"""
    return datetime(*args, tzinfo=timezone.utc)


class FakeCalendarClient(CalendarClient):
    """Records every call; failures are configured per method or per event title"""

    def __init__(self):
        self.calls: list[tuple] = []
        self.events: dict[str, object] = {}  # remote state, seed ids to simulate existing events
        self.fail_methods: set[str] = set()
        self.fail_titles: set[str] = set()
        self._next_id = 0

    def _maybe_fail(self, method: str, title: str = "") -> None:
        if method in self.fail_methods:
            raise CalendarAPIError(f"{method} failed", 500)
        if any(fragment in title for fragment in self.fail_titles):
            raise CalendarAPIError(f"{method} failed for {title}", 500)

    async def create_event(self, credentials, event):
        self.calls.append(("create", event.title))
        self._maybe_fail("create", event.title)
        self._next_id += 1
        event_id = f"evt-{self._next_id}"
        self.events[event_id] = event
        return event_id

    async def update_event(self, credentials, event_id, event):
        self.calls.append(("update", event_id))
        self._maybe_fail("update", event.title)
        if event_id not in self.events:
            raise CalendarEventNotFound(f"Calendar event {event_id} not found", 404)
        self.events[event_id] = event

    async def delete_event(self, credentials, event_id):
        self.calls.append(("delete", event_id))
        self._maybe_fail("delete")
        if event_id not in self.events:
            return DeleteOutcome.NOT_FOUND
        del self.events[event_id]
        return DeleteOutcome.DELETED

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)
