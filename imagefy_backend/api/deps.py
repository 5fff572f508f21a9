"""
FastAPI dependencies resolving the components built in the application lifespan.

Routes never reach a half-initialized app: until startup has finished (or
after shutdown began) every dependency raises a 503.
"""
from typing import Any, Optional

from fastapi import Request

from imagefy_backend.core.config import Settings
from imagefy_backend.core.errors import ServiceUnavailableError
from imagefy_backend.features.billing.provider import BillingProvider
from imagefy_backend.features.billing.reconciler import Reconciler
from imagefy_backend.features.entitlements.service import EntitlementService
from imagefy_backend.features.images.service import ImageSearchClient


def _ready_state(request: Request) -> Any:
    state = request.app.state
    if not getattr(state, "ready", False):
        raise ServiceUnavailableError("Service is starting up, retry shortly", code="not_ready")
    return state


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_billing_provider(request: Request) -> Optional[BillingProvider]:
    return _ready_state(request).billing_provider


def get_reconciler(request: Request) -> Reconciler:
    return _ready_state(request).reconciler


def get_entitlement_service(request: Request) -> EntitlementService:
    return _ready_state(request).entitlements


def get_image_search(request: Request) -> ImageSearchClient:
    return _ready_state(request).image_search
