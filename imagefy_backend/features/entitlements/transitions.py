"""
Entitlement transitions.

Pure functions from (event data, current record, now) to the Mutation that
should be persisted. No I/O happens here, so the precedence rules can be
tested without a database or Stripe.

Precedence: a lifetime grant (method=secret_code) is never revoked or
relabelled by a billing signal. Stripe events for such a user only mirror the
subscription status, attach or drop Stripe references and refresh timestamps.
"""

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from imagefy_backend.features.billing.events import email_from_checkout_session
from imagefy_backend.features.entitlements.models import (
    ACCESS_GRANTING_STATUSES,
    EntitlementRecord,
    GrantMethod,
    Mutation,
    SubscriptionStatus,
)


STRIPE_REFERENCE_FIELDS = ("stripe_customer_id", "subscription_id")


def _is_lifetime(current: Optional[EntitlementRecord]) -> bool:
    return current is not None and current.is_lifetime


def checkout_completed(
    payload: Mapping[str, Any],
    now: datetime,
    current: Optional[EntitlementRecord] = None,
) -> Optional[Mutation]:
    """
    Grant via Stripe checkout. Returns None when no email can key the write.

    A lifetime record keeps its method; only the Stripe references are attached.
    """
    email = email_from_checkout_session(payload)
    if not email:
        return None

    customer = payload.get("customer")
    if isinstance(customer, Mapping):
        customer = customer.get("id")
    subscription = payload.get("subscription")
    if isinstance(subscription, Mapping):
        subscription = subscription.get("id")

    set_fields: Dict[str, Any] = {
        "is_pro": True,
        "stripe_customer_id": customer,
        "subscription_id": subscription,
    }
    if not _is_lifetime(current):
        set_fields.update(method=GrantMethod.STRIPE.value, lifetime_access=False, activated_at=now)
    return Mutation(email=email, set_fields=set_fields)


def invoice_paid(email: str, now: datetime, current: Optional[EntitlementRecord] = None) -> Mutation:
    """Recurring payment keeps the Stripe grant alive."""
    set_fields: Dict[str, Any] = {"is_pro": True, "last_payment": now}
    if not _is_lifetime(current):
        set_fields.update(method=GrantMethod.STRIPE.value, lifetime_access=False)
    return Mutation(email=email, set_fields=set_fields)


def subscription_updated(email: str, status: Optional[str], current: Optional[EntitlementRecord] = None) -> Mutation:
    """Mirror the subscription status; update only, never creates a record."""
    set_fields: Dict[str, Any] = {"subscription_status": status}
    if not _is_lifetime(current):
        set_fields["is_pro"] = status in ACCESS_GRANTING_STATUSES
    return Mutation(email=email, set_fields=set_fields, upsert=False)


def subscription_deleted(email: str, current: Optional[EntitlementRecord], now: datetime) -> Mutation:
    """Revoke a Stripe grant, or only detach Stripe from a lifetime grant."""
    if _is_lifetime(current):
        return Mutation(
            email=email,
            set_fields={
                "subscription_status": SubscriptionStatus.CANCELLED.value,
                "cancelled_at": now,
            },
            clear_fields=STRIPE_REFERENCE_FIELDS,
            upsert=False,
        )

    return Mutation(
        email=email,
        set_fields={
            "is_pro": False,
            "subscription_status": SubscriptionStatus.CANCELLED.value,
            "cancelled_at": now,
        },
        upsert=False,
    )


def code_redeemed(email: str, now: datetime) -> Mutation:
    return Mutation(
        email=email,
        set_fields={
            "is_pro": True,
            "method": GrantMethod.SECRET_CODE.value,
            "lifetime_access": True,
            "activated_at": now,
            "code_used_at": now,
        },
    )


def cancellation_requested(email: str, now: datetime) -> Mutation:
    """Access stays on until Stripe sends subscription_deleted at period end."""
    return Mutation(
        email=email,
        set_fields={
            "subscription_status": SubscriptionStatus.CANCELLING.value,
            "cancel_requested_at": now,
        },
        upsert=False,
    )
