"""
Reconciliation trigger for external schedulers.

GET /api/cron/sync-roles
    Authorization: Bearer <CRON_SECRET>

401 on a missing or wrong bearer, 400 when MEMBER_ROLE_ID is missing,
200 with the run summary otherwise.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from portal.api.dependencies.providers import (
    get_role_actuator,
    require_cron_secret,
    require_member_role_id,
)
from portal.database.session import get_db_session
from portal.jobs.reconcile_roles import run_reconciliation
from portal.services.role_actuator import RoleActuator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.get("/sync-roles")
async def sync_roles(
    _authorized: None = Depends(require_cron_secret),
    role_id: str = Depends(require_member_role_id),
    db_session: Session = Depends(get_db_session),
    actuator: RoleActuator = Depends(get_role_actuator),
):
    """Run one reconciliation pass and return its counters."""
    summary = await run_reconciliation(db_session, actuator, role_id)
    counters = summary.to_dict()
    return {
        "ok": True,
        "processed": counters["processed"],
        "assigned": counters["assigned"],
        "removed": counters["removed"],
        "skipped": counters["skipped"],
        "errored": counters["errored"],
    }
