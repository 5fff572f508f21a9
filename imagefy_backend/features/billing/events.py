"""Verified Stripe events, tagged by the handler that should process them."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class EventKind(str, Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    INVOICE_PAID = "invoice_paid"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    IGNORED = "ignored"


STRIPE_EVENT_KINDS: Dict[str, EventKind] = {
    "checkout.session.completed": EventKind.CHECKOUT_COMPLETED,
    "invoice.paid": EventKind.INVOICE_PAID,
    "invoice.payment_succeeded": EventKind.INVOICE_PAID,
    "customer.subscription.updated": EventKind.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": EventKind.SUBSCRIPTION_DELETED,
}


def read_field(obj: Any, name: str) -> Any:
    """Read a field from a plain dict or a StripeObject."""
    if obj is None:
        return None
    try:
        return obj[name]
    except (KeyError, TypeError):
        return None


def email_from_checkout_session(session: Any) -> Optional[str]:
    """`customer_email` if present, else `customer_details.email`."""
    email = read_field(session, "customer_email")
    if email:
        return email
    return read_field(read_field(session, "customer_details"), "email") or None


@dataclass(frozen=True)
class BillingEvent:
    event_id: str
    event_type: str
    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_stripe(cls, event: Mapping[str, Any]) -> "BillingEvent":
        event_type = str(event.get("type") or "")
        data = event.get("data") or {}
        payload = data.get("object") or {}
        return cls(
            event_id=str(event.get("id") or ""),
            event_type=event_type,
            kind=STRIPE_EVENT_KINDS.get(event_type, EventKind.IGNORED),
            payload=dict(payload),
        )

    @property
    def customer_id(self) -> Optional[str]:
        customer = self.payload.get("customer")
        # Expanded customer objects carry the id inside
        if isinstance(customer, Mapping):
            return customer.get("id")
        return customer or None
