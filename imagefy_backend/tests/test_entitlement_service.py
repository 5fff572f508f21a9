from datetime import datetime, timezone

import pytest

from imagefy_backend.core.errors import (
    NotFoundError,
    ServiceUnavailableError,
    StoreError,
    UpstreamError,
    ValidationError,
)
from imagefy_backend.features.entitlements import transitions
from imagefy_backend.features.entitlements.models import GrantMethod
from imagefy_backend.features.entitlements.service import EntitlementService, is_plausible_email
from imagefy_backend.tests.mocks import checkout_session


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(store, provider):
    return EntitlementService(
        store,
        provider,
        redemption_codes=frozenset({"imagefy2025pro", " SECOND "}),
        portal_return_url="https://imagefy.test",
        clock=lambda: NOW,
    )


async def _subscriber(store, email="sub@example.com"):
    await store.apply(transitions.checkout_completed(checkout_session(email=email), NOW))
    return email


class BrokenStore:
    async def get(self, email):
        raise StoreError("database down")

    async def apply(self, mutation):
        raise StoreError("database down")


def test_is_plausible_email():
    assert is_plausible_email("a@b.co")
    assert not is_plausible_email("ab.co")
    assert not is_plausible_email("a@bco")
    assert not is_plausible_email("")
    assert not is_plausible_email(None)


@pytest.mark.asyncio
async def test_query_unknown_email(service):
    assert await service.query("nobody@example.com") == {"isPro": False}


@pytest.mark.asyncio
async def test_query_missing_email_skips_lookup(provider):
    service = EntitlementService(BrokenStore(), provider, redemption_codes=frozenset(), portal_return_url="")
    assert await service.query(None) == {"isPro": False}


@pytest.mark.asyncio
async def test_query_degrades_on_store_failure(provider):
    service = EntitlementService(BrokenStore(), provider, redemption_codes=frozenset(), portal_return_url="")
    assert await service.query("a@example.com") == {"isPro": False}


@pytest.mark.asyncio
async def test_query_subscriber(service, store):
    email = await _subscriber(store)
    result = await service.query(email)
    assert result == {"isPro": True, "subscriptionStatus": None, "method": "stripe"}


@pytest.mark.asyncio
async def test_redeem_normalizes_code(service, store):
    result = await service.redeem_code("vip@example.com", "  imagefy2025PRO ")

    assert result["success"] is True
    assert result["isPro"] is True
    record = await store.get("vip@example.com")
    assert record.method is GrantMethod.SECRET_CODE
    assert record.lifetime_access is True


@pytest.mark.asyncio
async def test_configured_codes_are_normalized(service):
    result = await service.redeem_code("vip@example.com", "second")
    assert result["success"] is True


@pytest.mark.asyncio
async def test_invalid_code_never_mutates(service, store):
    result = await service.redeem_code("vip@example.com", "WRONG")

    assert result == {"success": False, "isPro": False, "message": "Invalid code"}
    assert await store.get("vip@example.com") is None


@pytest.mark.asyncio
async def test_invalid_code_keeps_existing_grant(service, store):
    email = await _subscriber(store)

    await service.redeem_code(email, "WRONG")

    record = await store.get(email)
    assert record.is_pro is True
    assert record.method is GrantMethod.STRIPE


@pytest.mark.asyncio
@pytest.mark.parametrize("email,code,error_code", [
    (None, "IMAGEFY2025PRO", "missing_fields"),
    ("vip@example.com", None, "missing_fields"),
    ("not-an-email", "IMAGEFY2025PRO", "invalid_email"),
])
async def test_redeem_validation(service, email, code, error_code):
    with pytest.raises(ValidationError) as exc:
        await service.redeem_code(email, code)
    assert exc.value.code == error_code


@pytest.mark.asyncio
async def test_cancel_schedules_period_end(service, store, provider):
    email = await _subscriber(store)

    result = await service.request_cancellation(email)

    assert result["success"] is True
    assert result["periodEnd"] == "2026-11-19T00:00:00+00:00"
    assert result["accessUntil"] == "November 19, 2026"
    assert provider.called("cancel_at_period_end") == [("cancel_at_period_end", "sub_123")]
    record = await store.get(email)
    assert record.is_pro is True
    assert record.subscription_status == "cancelling"
    assert record.cancel_requested_at is not None


@pytest.mark.asyncio
async def test_cancel_lifetime_user_does_not_contact_stripe(service, store, provider):
    await service.redeem_code("vip@example.com", "IMAGEFY2025PRO")

    with pytest.raises(ValidationError) as exc:
        await service.request_cancellation("vip@example.com")

    assert exc.value.code == "lifetime_access"
    assert provider.calls == []


@pytest.mark.asyncio
async def test_cancel_unknown_user(service):
    with pytest.raises(NotFoundError):
        await service.request_cancellation("nobody@example.com")


@pytest.mark.asyncio
async def test_cancel_without_subscription(service, store):
    await store.apply(transitions.invoice_paid("inv@example.com", NOW))

    with pytest.raises(ValidationError) as exc:
        await service.request_cancellation("inv@example.com")
    assert exc.value.code == "no_subscription"


@pytest.mark.asyncio
async def test_cancel_stripe_failure_leaves_record(service, store, provider):
    email = await _subscriber(store)
    provider.fail = True

    with pytest.raises(UpstreamError):
        await service.request_cancellation(email)

    record = await store.get(email)
    assert record.subscription_status is None


@pytest.mark.asyncio
async def test_cancel_with_billing_disabled(store):
    service = EntitlementService(store, None, redemption_codes=frozenset(), portal_return_url="")
    email = await _subscriber(store)

    with pytest.raises(ServiceUnavailableError):
        await service.request_cancellation(email)


@pytest.mark.asyncio
async def test_portal_session(service, store, provider):
    email = await _subscriber(store)

    result = await service.create_portal_session(email)

    assert result == {"url": "https://billing.stripe.test/session/cus_123"}
    assert provider.called("create_portal_session") == [("create_portal_session", "cus_123", "https://imagefy.test")]


@pytest.mark.asyncio
async def test_portal_refused_for_lifetime(service, provider):
    await service.redeem_code("vip@example.com", "IMAGEFY2025PRO")

    with pytest.raises(ValidationError) as exc:
        await service.create_portal_session("vip@example.com")
    assert exc.value.code == "lifetime_access"
    assert provider.calls == []


@pytest.mark.asyncio
async def test_user_info(service, store):
    assert await service.user_info("nobody@example.com") == {"found": False}

    await service.redeem_code("vip@example.com", "IMAGEFY2025PRO")
    info = await service.user_info("vip@example.com")

    assert info["found"] is True
    assert info["isPro"] is True
    assert info["method"] == "secret_code"
    assert info["lifetimeAccess"] is True
    assert info["activatedAt"]
