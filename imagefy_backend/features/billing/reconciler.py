"""
Billing event reconciler.

Turns verified Stripe events into entitlement mutations. Delivery is
at-least-once and unordered, so every handler is safe to repeat: a redelivered
event rewrites the same fields and only refreshes timestamps.

Failures never propagate out of `handle`. The webhook endpoint acknowledges
every verified event so Stripe does not retry in a loop; events that cannot be
acted on are logged with their id for manual replay.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from imagefy_backend.core.blocking import run_blocking
from imagefy_backend.core.logging import log_event
from imagefy_backend.features.billing.events import BillingEvent, EventKind, email_from_checkout_session
from imagefy_backend.features.billing.provider import BillingProvider
from imagefy_backend.features.entitlements import transitions
from imagefy_backend.features.entitlements.models import Mutation
from imagefy_backend.features.entitlements.store import EntitlementStore


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    NO_MATCH = "no_match"
    DISCARDED = "discarded"
    IGNORED = "ignored"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    """Applies billing events to the entitlement store."""

    def __init__(
        self,
        store: EntitlementStore,
        provider: Optional[BillingProvider],
        *,
        provider_timeout: float = 10.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.provider = provider
        self.provider_timeout = provider_timeout
        self.clock = clock
        self._handlers: Dict[EventKind, Callable[[BillingEvent], Awaitable[ReconcileOutcome]]] = {
            EventKind.CHECKOUT_COMPLETED: self._on_checkout_completed,
            EventKind.INVOICE_PAID: self._on_invoice_paid,
            EventKind.SUBSCRIPTION_UPDATED: self._on_subscription_updated,
            EventKind.SUBSCRIPTION_DELETED: self._on_subscription_deleted,
        }

    async def handle(self, event: BillingEvent) -> ReconcileOutcome:
        handler = self._handlers.get(event.kind)
        if handler is None:
            log_event("info", "webhook.ignored", event_id=event.event_id, event_type=event.event_type)
            return ReconcileOutcome.IGNORED

        try:
            outcome = await handler(event)
        except Exception as e:
            log_event(
                "error",
                "webhook.failed",
                event_id=event.event_id,
                event_type=event.event_type,
                error_code=getattr(e, "code", "reconcile_error"),
                extra={"reason": str(e)},
                exc_info=True,
            )
            return ReconcileOutcome.FAILED

        log_event(
            "info",
            "webhook.reconciled",
            event_id=event.event_id,
            event_type=event.event_type,
            extra={"outcome": outcome.value},
        )
        return outcome

    # -- helpers --------------------------------------------------------------------

    def _discard(self, event: BillingEvent, reason: str) -> ReconcileOutcome:
        log_event(
            "warning",
            "webhook.discarded",
            event_id=event.event_id,
            event_type=event.event_type,
            extra={"reason": reason},
        )
        return ReconcileOutcome.DISCARDED

    async def _resolve_customer_email(self, event: BillingEvent) -> Optional[str]:
        customer_id = event.customer_id
        if not customer_id or self.provider is None:
            return None
        return await run_blocking(
            self.provider.customer_email,
            customer_id,
            timeout=self.provider_timeout,
            label="Stripe customer lookup",
        )

    async def _persist(self, mutation: Mutation) -> ReconcileOutcome:
        written = await self.store.apply(mutation)
        return ReconcileOutcome.APPLIED if written else ReconcileOutcome.NO_MATCH

    # -- handlers -------------------------------------------------------------------

    async def _on_checkout_completed(self, event: BillingEvent) -> ReconcileOutcome:
        email = email_from_checkout_session(event.payload)
        if not email:
            return self._discard(event, "checkout session has no customer email")
        current = await self.store.get(email)
        mutation = transitions.checkout_completed(event.payload, self.clock(), current)
        log_event("info", "entitlement.stripe_activated", email=mutation.email, event_id=event.event_id)
        return await self._persist(mutation)

    async def _on_invoice_paid(self, event: BillingEvent) -> ReconcileOutcome:
        email = await self._resolve_customer_email(event)
        if not email:
            return self._discard(event, "customer email not resolvable")
        current = await self.store.get(email)
        return await self._persist(transitions.invoice_paid(email, self.clock(), current))

    async def _on_subscription_updated(self, event: BillingEvent) -> ReconcileOutcome:
        email = await self._resolve_customer_email(event)
        if not email:
            return self._discard(event, "customer email not resolvable")
        current = await self.store.get(email)
        return await self._persist(transitions.subscription_updated(email, event.payload.get("status"), current))

    async def _on_subscription_deleted(self, event: BillingEvent) -> ReconcileOutcome:
        email = await self._resolve_customer_email(event)
        if not email:
            return self._discard(event, "customer email not resolvable")
        # Not transactional: a write landing between this read and the update wins or loses by order
        current = await self.store.get(email)
        mutation = transitions.subscription_deleted(email, current, self.clock())
        if current is not None and current.is_lifetime:
            log_event("info", "entitlement.lifetime_retained", email=email, event_id=event.event_id)
        return await self._persist(mutation)
