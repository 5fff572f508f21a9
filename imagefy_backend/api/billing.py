"""
Billing API routes.

Minimal surface:
- POST /get-session-email:     Resolve a checkout session id into an email
- POST /cancel-subscription:   Cancel at period end (access kept until then)
- POST /create-portal-session: Stripe billing portal URL
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from imagefy_backend.api.deps import get_billing_provider, get_entitlement_service, get_settings
from imagefy_backend.api.entitlements import EmailRequest
from imagefy_backend.core.config import Settings
from imagefy_backend.features.billing.provider import BillingProvider
from imagefy_backend.features.billing.service import lookup_session_email
from imagefy_backend.features.entitlements.service import EntitlementService


router = APIRouter(tags=["billing"])


class SessionEmailRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")


class SessionEmailResponse(BaseModel):
    email: Optional[str]


class CancelSubscriptionResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    periodEnd: Optional[str] = None  # ISO8601
    accessUntil: Optional[str] = None


class PortalResponse(BaseModel):
    url: str


@router.post("/get-session-email", response_model=SessionEmailResponse)
async def get_session_email(
    body: SessionEmailRequest,
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
    settings: Settings = Depends(get_settings),
):
    """
    Called by the client right after the checkout redirect.

    Errors:
        400: Missing or invalid session id
    """
    email = await lookup_session_email(provider, body.session_id, timeout=settings.STRIPE_TIMEOUT_SECONDS)
    return {"email": email}


@router.post("/cancel-subscription", response_model=CancelSubscriptionResponse, response_model_exclude_none=True)
async def cancel_subscription(body: EmailRequest, service: EntitlementService = Depends(get_entitlement_service)):
    """
    Errors:
        400: Missing email, lifetime user, or no subscription on record
        404: No record for the email
        502/504: Stripe failed or timed out
    """
    return await service.request_cancellation(body.email)


@router.post("/create-portal-session", response_model=PortalResponse)
async def create_portal_session(body: EmailRequest, service: EntitlementService = Depends(get_entitlement_service)):
    """
    Errors:
        400: Missing email, lifetime user, or no Stripe customer on record
        404: No record for the email
        502/504: Stripe failed or timed out
    """
    return await service.create_portal_session(body.email)
