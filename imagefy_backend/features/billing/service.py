"""
Billing service helpers.

Coordinates the synchronous, user-facing Stripe calls that are not part of the
entitlement override paths:
- Webhook verification + hand-off to the reconciler
- Checkout session email lookup after the client is redirected back

All Stripe-specific code is in stripe_provider.py.
"""
import logging
from typing import Dict, Optional

from imagefy_backend.core.blocking import run_blocking
from imagefy_backend.core.errors import ServiceUnavailableError, UpstreamTimeoutError, ValidationError
from imagefy_backend.features.billing.events import BillingEvent
from imagefy_backend.features.billing.provider import BillingProvider, BillingProviderError, BillingWebhookError
from imagefy_backend.features.billing.reconciler import Reconciler, ReconcileOutcome


logger = logging.getLogger("imagefy.billing")


async def process_webhook(
    provider: Optional[BillingProvider],
    reconciler: Reconciler,
    headers: Dict[str, str],
    body: bytes,
) -> ReconcileOutcome:
    """
    Verify a webhook delivery and reconcile it.

    Verification is CPU-only (HMAC over the raw body), so it runs inline.

    Raises:
        BillingWebhookError: If the signature is invalid or billing is disabled
    """
    if provider is None:
        raise BillingWebhookError("Billing not enabled")

    event = BillingEvent.from_stripe(provider.construct_event(headers, body))
    return await reconciler.handle(event)


async def lookup_session_email(provider: Optional[BillingProvider], session_id: Optional[str], *, timeout: float) -> Optional[str]:
    """
    Resolve a Checkout Session id into the buyer's email.

    Raises:
        ValidationError: Missing or unknown session id
        ServiceUnavailableError: Billing disabled
    """
    if not session_id:
        raise ValidationError("Invalid session", code="invalid_session")
    if provider is None:
        raise ServiceUnavailableError("Billing disabled", code="billing_disabled")

    try:
        return await run_blocking(
            provider.checkout_session_email,
            session_id,
            timeout=timeout,
            label="Stripe session lookup",
        )
    except (BillingProviderError, UpstreamTimeoutError) as e:
        logger.error("billing.session_lookup_failed", extra={"reason": str(e)})
        raise ValidationError("Invalid session", code="invalid_session") from e
