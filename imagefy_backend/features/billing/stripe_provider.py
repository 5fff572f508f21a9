"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API.
The API key is passed per request rather than set on the stripe module.
"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import stripe

from imagefy_backend.features.billing.events import read_field, email_from_checkout_session
from imagefy_backend.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
)


def _period_end(subscription: Any) -> Optional[datetime]:
    # Newer API versions report the period per subscription item
    ts = read_field(subscription, "current_period_end")
    if not ts:
        items = read_field(read_field(subscription, "items"), "data") or []
        if items:
            ts = read_field(items[0], "current_period_end")
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key
            webhook_secret: Stripe webhook signing secret
        """
        if not secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def construct_event(self, headers: Dict[str, str], body: bytes) -> Mapping[str, Any]:
        """Verify Stripe webhook signature, then parse the raw body."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
            return json.loads(body)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

    def customer_email(self, customer_id: str) -> Optional[str]:
        """Retrieve the email on a Stripe customer."""
        try:
            customer = stripe.Customer.retrieve(customer_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer lookup failed: {e}")
        if read_field(customer, "deleted"):
            return None
        return read_field(customer, "email") or None

    def checkout_session_email(self, session_id: str) -> Optional[str]:
        """Retrieve a Checkout Session and return the buyer's email."""
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe session lookup failed: {e}")
        return email_from_checkout_session(session)

    def cancel_at_period_end(self, subscription_id: str) -> Optional[datetime]:
        """Set cancel_at_period_end on a Stripe subscription."""
        try:
            subscription = stripe.Subscription.modify(
                subscription_id,
                cancel_at_period_end=True,
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription cancellation failed: {e}")
        return _period_end(subscription)

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create Stripe billing portal session."""
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                api_key=self.secret_key,
            )
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe portal session creation failed: {e}")
