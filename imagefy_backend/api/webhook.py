"""
Stripe webhook endpoint.

POST /webhook
- Signature is verified against the raw body before anything is parsed
- Verified events are always acknowledged with {"received": true}, even when
  the reconciler had to discard them or hit an internal failure
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from imagefy_backend.api.deps import get_billing_provider, get_reconciler
from imagefy_backend.features.billing.provider import BillingProvider, BillingWebhookError
from imagefy_backend.features.billing.reconciler import Reconciler
from imagefy_backend.features.billing.service import process_webhook


router = APIRouter(tags=["billing"])
logger = logging.getLogger("imagefy.webhook")


@router.post("/webhook")
async def handle_webhook(
    request: Request,
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
    reconciler: Reconciler = Depends(get_reconciler),
):
    """
    Handle Stripe webhook events.

    Returns:
        {"received": true}

    Errors:
        400: Invalid signature or payload (nothing is processed)
    """
    # Read raw body (required for signature verification)
    body = await request.body()
    headers = dict(request.headers)

    try:
        await process_webhook(provider, reconciler, headers, body)
    except BillingWebhookError as e:
        logger.warning("webhook.rejected", extra={"reason": str(e)})
        raise HTTPException(status_code=400, detail=f"Webhook Error: {e}")

    return {"received": True}
