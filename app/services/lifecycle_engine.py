"""
Order Lifecycle Engine
Runs the alerting pass and the daily status + reconciliation pass over
every open order.

Within one order the steps run in a fixed order because later steps read
what earlier ones wrote:

    status transition → reminder notifications → calendar reconciliation

Failure handling per pass:
- database errors abort the whole pass (no source of truth to work from)
- any other error skips only the offending order
- calendar errors are recorded on the order's result and never fail it
"""

import asyncio
import enum
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain.orders.repository import OrderRepository
from ..models import CLOSED_STATUSES, Order
from .calendar_sync import CalendarReconciler, SyncAction, SyncResult, parse_event_ids
from .clock import Clock
from .google_calendar_service import CalendarClient, load_calendar_credentials
from .notification_service import DEFAULT_DEDUP_POLICY, DedupPolicy, generate_reminders
from .status_automation import apply_status_transition, next_status

logger = logging.getLogger(__name__)

MILESTONE_FIELDS = ("delivery_date", "refund_form_date", "remind_refund_date")


class PassKind(str, enum.Enum):
    STARTUP = "startup"
    ALERTING = "alerting"
    DAILY = "daily"


class PassAborted(Exception):
    """The pass cannot continue (database unavailable)"""


@dataclass
class OrderResult:
    order_id: int
    ok: bool = True
    error: Optional[str] = None
    status_changed: bool = False
    notifications_created: int = 0
    calendar: Optional[SyncResult] = None
    calendar_error: Optional[str] = None

    @property
    def calendar_failed(self) -> bool:
        return self.calendar_error is not None or (self.calendar is not None and not self.calendar.ok)


@dataclass
class PassSummary:
    kind: PassKind
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    notifications_created: int = 0
    status_changes: int = 0
    calendar_synced: int = 0
    calendar_failures: int = 0
    aborted: bool = False
    abort_reason: Optional[str] = None
    skipped: bool = False
    interrupted: bool = False
    failures: list[OrderResult] = field(default_factory=list)

    def record(self, result: OrderResult) -> None:
        self.processed += 1
        if result.ok:
            self.succeeded += 1
        else:
            self.failed += 1
            self.failures.append(result)
        self.notifications_created += result.notifications_created
        self.status_changes += int(result.status_changed)
        if result.calendar is not None and not result.calendar.skipped and result.calendar.ok:
            self.calendar_synced += 1
        if result.calendar_failed:
            self.calendar_failures += 1

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        data["failures"] = [
            {"order_id": f.order_id, "error": f.error} for f in self.failures
        ]
        return data


class OrderLifecycleEngine:
    """Evaluates orders against the clock and applies the resulting side effects"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        calendar_client: CalendarClient,
        clock: Clock,
        dedup_policy: DedupPolicy = DEFAULT_DEDUP_POLICY,
        credentials_loader=load_calendar_credentials,
    ):
        self.session_factory = session_factory
        self.calendar_client = calendar_client
        self.clock = clock
        self.dedup_policy = dedup_policy
        self.credentials_loader = credentials_loader

    async def run_alerting_pass(
        self, stop_event: Optional[asyncio.Event] = None, kind: PassKind = PassKind.ALERTING
    ) -> PassSummary:
        """Reminder notifications only; never changes statuses or calendars"""
        return await self._run(kind, include_transitions=False, stop_event=stop_event)

    async def run_daily_pass(self, stop_event: Optional[asyncio.Event] = None) -> PassSummary:
        """Status transitions, reminder notifications and calendar reconciliation"""
        return await self._run(PassKind.DAILY, include_transitions=True, stop_event=stop_event)

    async def _run(
        self, kind: PassKind, include_transitions: bool, stop_event: Optional[asyncio.Event]
    ) -> PassSummary:
        summary = PassSummary(kind=kind, started_at=self.clock.now())
        logger.info(f"⏰ Running {kind.value} pass...")

        db = self.session_factory()
        repo = OrderRepository(db)
        try:
            # Ids only: each row is loaded under the per-order guard so one
            # unreadable row cannot sink the batch
            try:
                order_ids = repo.find_order_ids_matching(
                    exclude_statuses=CLOSED_STATUSES,
                    with_any_date=MILESTONE_FIELDS,
                    or_calendar_linked=True,
                )
            except SQLAlchemyError as e:
                raise PassAborted(f"Could not load orders: {e}") from e

            now = self.clock.now()
            credentials_cache: dict[int, object] = {}

            for order_id in order_ids:
                if stop_event is not None and stop_event.is_set():
                    summary.interrupted = True
                    logger.info(f"🛑 {kind.value} pass interrupted after {summary.processed} order(s)")
                    break

                try:
                    result = await self._process_order(
                        repo, order_id, now, include_transitions, credentials_cache
                    )
                except SQLAlchemyError as e:
                    db.rollback()
                    raise PassAborted(f"Database error on order {order_id}: {e}") from e

                if result is not None:
                    summary.record(result)

                # Database work is synchronous; let other requests run between orders
                await asyncio.sleep(0)

        except PassAborted as e:
            summary.aborted = True
            summary.abort_reason = str(e)
            logger.error(f"❌ {kind.value} pass aborted: {e}")
        finally:
            db.close()

        summary.finished_at = self.clock.now()
        logger.info(
            f"📊 {kind.value} pass summary: processed={summary.processed} "
            f"succeeded={summary.succeeded} failed={summary.failed} "
            f"notifications={summary.notifications_created} status_changes={summary.status_changes} "
            f"calendar_synced={summary.calendar_synced} calendar_failures={summary.calendar_failures}"
        )
        return summary

    async def _process_order(
        self,
        repo: OrderRepository,
        order_id: int,
        now: datetime,
        include_transitions: bool,
        credentials_cache: dict,
    ) -> Optional[OrderResult]:
        result = OrderResult(order_id=order_id)
        try:
            order = repo.get_order(order_id)
            if order is None:
                # Deleted since the candidate ids were read
                return None

            if include_transitions:
                decision = next_status(order, now, self.clock)
                result.status_changed = apply_status_transition(repo, order, decision, self.clock)

            result.notifications_created = generate_reminders(
                repo, order, now, self.clock, self.dedup_policy
            )

            # Only orders that already have remote events are re-synced here;
            # first-time creation follows a manual create or date change.
            if include_transitions and parse_event_ids(order.calendar_event_ids):
                await self._reconcile(repo, order, result, credentials_cache)

        except SQLAlchemyError:
            raise
        except Exception as e:
            repo.db.rollback()
            result.ok = False
            result.error = str(e)
            logger.error(f"❌ Failed to process order {order_id}: {e}")

        return result

    async def _reconcile(
        self, repo: OrderRepository, order: Order, result: OrderResult, credentials_cache: dict
    ) -> None:
        if order.user_id not in credentials_cache:
            try:
                credentials_cache[order.user_id] = await self.credentials_loader(repo, order.user_id)
            except SQLAlchemyError:
                raise
            except Exception as e:
                logger.error(f"❌ Calendar credentials unavailable for user {order.user_id}: {e}")
                credentials_cache[order.user_id] = e

        credentials = credentials_cache[order.user_id]
        if isinstance(credentials, Exception):
            result.calendar_error = str(credentials)
            # Stale ids for cleared dates are still dropped locally
            credentials = None

        reconciler = CalendarReconciler(self.calendar_client, repo, self.clock)
        result.calendar = await reconciler.reconcile(
            order, credentials, SyncAction.UPDATE, log_when_unchanged=False
        )
