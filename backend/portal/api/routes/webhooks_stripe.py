"""
Stripe webhook endpoint.

SECURITY:
- Every delivery MUST carry a valid Stripe-Signature
- No user authentication (deliveries come from the billing provider)
- The identity is derived from stored or provider-side customer data,
  never from the request itself

Responses:
- 200 {"received": true} on success, duplicate or ignored event type
- 400 on bad signature or unrecoverable handler error (provider redelivers)
- 503 when billing or role configuration is missing
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from portal.api.dependencies.providers import get_webhook_gateway
from portal.services.webhook_gateway import BillingWebhookGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def handle_stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    gateway: BillingWebhookGateway = Depends(get_webhook_gateway),
):
    """Verify, deduplicate and process one billing event."""
    body = await request.body()
    result = await gateway.handle(body, stripe_signature)

    response = {"received": True}
    if result.duplicate:
        response["duplicate"] = True
    return response
