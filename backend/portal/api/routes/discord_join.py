"""
Join flow routes.

Handles:
- GET /api/discord/join: start the OAuth round trip for an application
- GET /api/discord/join/callback: claim membership and redirect to the
  result page with joined=0|1 and an optional error code

SECURITY: The state token is verified before any side effect.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from portal.api.dependencies.providers import get_join_flow_service
from portal.config.settings import PortalSettings, get_settings
from portal.services.join_flow import JoinFlowService, JoinOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/discord", tags=["join"])


def build_result_url(app_url: str, outcome: JoinOutcome) -> str:
    params = {"joined": "1" if outcome.joined else "0"}
    if outcome.error is not None:
        params["error"] = outcome.error.value
    return f"{app_url}/success?{urlencode(params)}"


@router.get("/join")
async def start_join(
    application_id: str = Query(..., min_length=1),
    service: JoinFlowService = Depends(get_join_flow_service),
):
    """Redirect to the OAuth authorize page with a fresh state token."""
    return RedirectResponse(url=service.build_authorize_url(application_id), status_code=302)


@router.get("/join/callback")
async def join_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    service: JoinFlowService = Depends(get_join_flow_service),
    settings: PortalSettings = Depends(get_settings),
):
    """Complete the OAuth round trip and redirect to the result page."""
    outcome = await service.claim_membership(code, state)
    logger.info("Join callback finished", extra={
        "joined": outcome.joined,
        "reason_code": outcome.error.value if outcome.error else None,
    })
    return RedirectResponse(url=build_result_url(settings.app_url, outcome), status_code=302)
