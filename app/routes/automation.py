"""
API endpoints for order lifecycle automation
Manual trigger for the scheduled passes, scheduler status and ICS export
"""

import hmac
import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..config import CRON_SECRET
from ..database import get_db
from ..domain.orders.repository import OrderRepository
from ..services.calendar_export import export_order_calendar
from ..services.clock import Clock
from ..services.lifecycle_engine import PassKind, PassSummary
from ..services.lifecycle_scheduler import LifecycleScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/automation", tags=["automation"])


class OrderFailure(BaseModel):
    order_id: int
    error: Optional[str] = None


class PassSummaryResponse(BaseModel):
    kind: str
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    processed: int
    succeeded: int
    failed: int
    notifications_created: int
    status_changes: int
    calendar_synced: int
    calendar_failures: int
    aborted: bool
    abort_reason: Optional[str] = None
    skipped: bool
    interrupted: bool
    failures: list[OrderFailure]


class AutomationRunResponse(BaseModel):
    passes: list[PassSummaryResponse]


class AutomationStatus(BaseModel):
    running: bool
    current_pass: Optional[str] = None
    last_passes: dict[str, PassSummaryResponse]


def get_lifecycle_scheduler(request: Request) -> LifecycleScheduler:
    scheduler = getattr(request.app.state, "lifecycle_scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Lifecycle automation is not initialized")
    return scheduler


def get_clock(request: Request) -> Clock:
    return get_lifecycle_scheduler(request).engine.clock


def verify_cron_secret(x_cron_secret: Optional[str] = Header(default=None)) -> None:
    """Shared-secret check; open when CRON_SECRET is unset (development)"""
    if not CRON_SECRET:
        return
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, CRON_SECRET):
        logger.warning("⚠️ Rejected automation trigger with invalid cron secret")
        raise HTTPException(status_code=401, detail="Unauthorized")


def _to_response(summary: PassSummary) -> PassSummaryResponse:
    return PassSummaryResponse(**summary.to_dict())


@router.post("/run", response_model=AutomationRunResponse, dependencies=[Depends(verify_cron_secret)])
async def run_automation(
    kind: Literal["alerting", "daily", "both"] = Query(default="both"),
    scheduler: LifecycleScheduler = Depends(get_lifecycle_scheduler),
):
    """
    Manually trigger lifecycle passes
    A pass that would overlap a running one is reported with skipped=true
    """
    logger.info(f"⏰ Manual {kind} automation run requested")

    if kind == "both":
        summaries = await scheduler.run_both()
    else:
        summaries = [await scheduler.run_pass(PassKind(kind))]

    return AutomationRunResponse(passes=[_to_response(s) for s in summaries])


@router.get("/status", response_model=AutomationStatus)
async def get_automation_status(scheduler: LifecycleScheduler = Depends(get_lifecycle_scheduler)):
    return AutomationStatus(
        running=scheduler.is_running,
        current_pass=scheduler.current_kind.value if scheduler.current_kind else None,
        last_passes={
            kind.value: _to_response(summary) for kind, summary in scheduler.last_summaries.items()
        },
    )


@router.get("/orders/{order_id}/calendar.ics")
async def export_order_ics(
    order_id: int,
    user_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Download an order's delivery and refund form reminders as an .ics file"""
    order = OrderRepository(db).get_order(order_id, user_id=user_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    return Response(
        content=export_order_calendar(order, clock),
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="order-{order_id}.ics"'},
    )
