"""
Entitlement API routes.

- POST /check-pro:   Pro status for an email (never errors, degrades to false)
- POST /verify-code: Redeem a lifetime code (rate-limited per client address)
- POST /user-info:   Diagnostic view of a record
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from imagefy_backend.api.deps import get_entitlement_service
from imagefy_backend.features.entitlements.service import EntitlementService


router = APIRouter(tags=["entitlements"])


class EmailRequest(BaseModel):
    email: Optional[str] = None


class RedeemCodeRequest(BaseModel):
    email: Optional[str] = None
    code: Optional[str] = None


class ProStatusResponse(BaseModel):
    isPro: bool
    subscriptionStatus: Optional[str] = None
    method: Optional[str] = None


class RedeemCodeResponse(BaseModel):
    success: bool
    isPro: Optional[bool] = None
    message: Optional[str] = None


class UserInfoResponse(BaseModel):
    found: bool
    isPro: Optional[bool] = None
    activatedAt: Optional[str] = None  # ISO8601
    method: Optional[str] = None
    subscriptionStatus: Optional[str] = None
    lifetimeAccess: Optional[bool] = None


@router.post("/check-pro", response_model=ProStatusResponse, response_model_exclude_none=True)
async def check_pro(body: EmailRequest, service: EntitlementService = Depends(get_entitlement_service)):
    """
    Returns:
        {"isPro": bool, "subscriptionStatus"?: str, "method"?: str}
    """
    return await service.query(body.email)


@router.post("/verify-code", response_model=RedeemCodeResponse, response_model_exclude_none=True)
async def verify_code(body: RedeemCodeRequest, service: EntitlementService = Depends(get_entitlement_service)):
    """
    Redeem a lifetime access code.

    Returns:
        {"success": true, "isPro": true} on a valid code,
        {"success": false, "isPro": false, "message": "Invalid code"} otherwise

    Errors:
        400: Missing email/code or malformed email
        429: Too many attempts from this address
    """
    return await service.redeem_code(body.email, body.code)


@router.post("/user-info", response_model=UserInfoResponse, response_model_exclude_none=True)
async def user_info(body: EmailRequest, service: EntitlementService = Depends(get_entitlement_service)):
    return await service.user_info(body.email)
