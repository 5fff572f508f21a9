"""
Entitlement query + override service.

Handles:
- Pro status queries (degrade to isPro=false, never fail the request)
- Lifetime code redemption
- User-initiated subscription cancellation (at period end)
- Billing portal sessions for Stripe customers
- Diagnostic user info

These paths write the same records as the webhook reconciler and race with it;
the last write wins.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, Optional

from imagefy_backend.core.blocking import run_blocking
from imagefy_backend.core.config import normalize_code
from imagefy_backend.core.errors import (
    NotFoundError,
    ServiceUnavailableError,
    UpstreamError,
    ValidationError,
)
from imagefy_backend.core.logging import log_event
from imagefy_backend.features.billing.provider import BillingProvider, BillingProviderError
from imagefy_backend.features.entitlements import transitions
from imagefy_backend.features.entitlements.models import EntitlementRecord
from imagefy_backend.features.entitlements.store import EntitlementStore


INVALID_CODE_MESSAGE = "Invalid code"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_plausible_email(email: Optional[str]) -> bool:
    """Minimal format check: contains both '@' and '.'."""
    return bool(email) and "@" in email and "." in email


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class EntitlementService:
    def __init__(
        self,
        store: EntitlementStore,
        provider: Optional[BillingProvider],
        *,
        redemption_codes: FrozenSet[str],
        portal_return_url: str,
        provider_timeout: float = 10.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.provider = provider
        self.redemption_codes = frozenset(normalize_code(code) for code in redemption_codes)
        self.portal_return_url = portal_return_url
        self.provider_timeout = provider_timeout
        self.clock = clock

    async def query(self, email: Optional[str]) -> Dict[str, Any]:
        """Pro status for an email. Any failure reads as not pro."""
        if not email:
            return {"isPro": False}

        try:
            record = await self.store.get(email)
        except Exception as e:
            log_event("error", "entitlement.query_failed", email=email, error_code=getattr(e, "code", None), extra={"reason": str(e)})
            return {"isPro": False}

        if record is None:
            return {"isPro": False}

        return {
            "isPro": record.is_pro,
            "subscriptionStatus": record.subscription_status,
            "method": record.method.value,
        }

    async def redeem_code(self, email: Optional[str], code: Optional[str]) -> Dict[str, Any]:
        """
        Grant lifetime access for a valid code.

        Raises:
            ValidationError: Missing fields or implausible email
        """
        if not email or not code:
            raise ValidationError("Email and code are required", code="missing_fields")
        if not is_plausible_email(email):
            raise ValidationError("Invalid email address", code="invalid_email")

        if normalize_code(code) not in self.redemption_codes:
            log_event("warning", "entitlement.code_rejected", email=email)
            return {"success": False, "isPro": False, "message": INVALID_CODE_MESSAGE}

        await self.store.apply(transitions.code_redeemed(email, self.clock()))
        log_event("info", "entitlement.code_redeemed", email=email)
        return {"success": True, "isPro": True, "message": "Lifetime Pro access activated"}

    async def _require_record(self, email: Optional[str]) -> EntitlementRecord:
        if not email:
            raise ValidationError("Email is required", code="missing_fields")
        record = await self.store.get(email)
        if record is None:
            raise NotFoundError("User not found")
        return record

    def _require_provider(self) -> BillingProvider:
        if self.provider is None:
            raise ServiceUnavailableError("Billing disabled", code="billing_disabled")
        return self.provider

    async def request_cancellation(self, email: Optional[str]) -> Dict[str, Any]:
        """
        Schedule the user's subscription to end at the current period end.

        Raises:
            ValidationError: Missing email, lifetime user, or no subscription
            NotFoundError: No record for the email
            UpstreamError: Stripe rejected or failed the update
            UpstreamTimeoutError: Stripe did not answer in time
        """
        record = await self._require_record(email)
        if record.is_lifetime:
            raise ValidationError("Lifetime access has no subscription to cancel", code="lifetime_access")
        if not record.subscription_id:
            raise ValidationError("No active subscription found", code="no_subscription")

        provider = self._require_provider()
        try:
            period_end = await run_blocking(
                provider.cancel_at_period_end,
                record.subscription_id,
                timeout=self.provider_timeout,
                label="Stripe subscription cancellation",
            )
        except BillingProviderError as e:
            log_event("error", "entitlement.cancel_failed", email=record.email, extra={"reason": str(e)})
            raise UpstreamError("Failed to cancel subscription") from e

        await self.store.apply(transitions.cancellation_requested(record.email, self.clock()))
        log_event("info", "entitlement.cancel_requested", email=record.email)

        return {
            "success": True,
            "message": "Subscription will be cancelled at the end of the billing period",
            "periodEnd": _iso(period_end),
            "accessUntil": period_end.strftime("%B %d, %Y") if period_end else None,
        }

    async def create_portal_session(self, email: Optional[str]) -> Dict[str, Any]:
        """
        Raises:
            ValidationError: Missing email, lifetime user, or no Stripe customer
            NotFoundError: No record for the email
            UpstreamError: Stripe failed to create the session
        """
        record = await self._require_record(email)
        if record.is_lifetime:
            raise ValidationError("Lifetime access is not managed through billing", code="lifetime_access")
        if not record.stripe_customer_id:
            raise ValidationError("No billing account found", code="no_customer")

        provider = self._require_provider()
        try:
            url = await run_blocking(
                provider.create_portal_session,
                record.stripe_customer_id,
                self.portal_return_url,
                timeout=self.provider_timeout,
                label="Stripe portal session",
            )
        except BillingProviderError as e:
            log_event("error", "entitlement.portal_failed", email=record.email, extra={"reason": str(e)})
            raise UpstreamError("Failed to create portal session") from e

        return {"url": url}

    async def user_info(self, email: Optional[str]) -> Dict[str, Any]:
        if not email:
            return {"found": False}

        try:
            record = await self.store.get(email)
        except Exception as e:
            log_event("error", "entitlement.user_info_failed", email=email, extra={"reason": str(e)})
            return {"found": False}

        if record is None:
            return {"found": False}

        return {
            "found": True,
            "isPro": record.is_pro,
            "activatedAt": _iso(record.activated_at),
            "method": record.method.value,
            "subscriptionStatus": record.subscription_status,
            "lifetimeAccess": record.lifetime_access,
        }
