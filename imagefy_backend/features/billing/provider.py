"""
Billing provider protocol.

Defines the interface the reconciler and services need from the payment
processor, so Stripe can be swapped (or faked in tests) without touching
business logic. Implementations are synchronous; callers run them through
`run_blocking` with a deadline.
"""
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Protocol


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Webhook signature verification and parsing
    - Customer and checkout-session email lookups
    - Scheduling subscription cancellation at period end
    - Billing portal session creation
    """

    def construct_event(self, headers: Dict[str, str], body: bytes) -> Mapping[str, Any]:
        """
        Verify webhook signature and parse the event.

        Args:
            headers: HTTP headers (must include signature header)
            body: Raw webhook body (for signature verification)

        Returns:
            The verified event (`id`, `type`, `data.object`)

        Raises:
            BillingWebhookError: If signature invalid or payload malformed
        """
        ...

    def customer_email(self, customer_id: str) -> Optional[str]:
        """
        Look up the email on a provider customer.

        Returns:
            The email, or None if the customer has none

        Raises:
            BillingProviderError: If the lookup fails
        """
        ...

    def checkout_session_email(self, session_id: str) -> Optional[str]:
        """
        Resolve a checkout session id into the buyer's email.

        Raises:
            BillingProviderError: If the session cannot be retrieved
        """
        ...

    def cancel_at_period_end(self, subscription_id: str) -> Optional[datetime]:
        """
        Flag a subscription to cancel at the end of the current billing period.

        Returns:
            The period end (UTC), or None if the provider did not report one

        Raises:
            BillingProviderError: If the update fails
        """
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a billing portal session for customer self-service.

        Returns:
            Portal session URL

        Raises:
            BillingProviderError: If portal session creation fails
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook processing errors."""
    pass
