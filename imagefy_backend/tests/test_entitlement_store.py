from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from imagefy_backend.core.errors import StoreError
from imagefy_backend.features.entitlements.models import GrantMethod, Mutation
from imagefy_backend.features.entitlements.store import EntitlementStore


class UnreachableEngine:
    def connect(self):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    begin = connect


@pytest.mark.asyncio
async def test_get_missing_record_returns_none(store):
    assert await store.get("nobody@example.com") is None


@pytest.mark.asyncio
async def test_upsert_creates_then_updates(store):
    created = await store.apply(Mutation(email="a@example.com", set_fields={"is_pro": True, "method": "stripe"}))
    assert created is True

    record = await store.get("a@example.com")
    assert record.is_pro is True
    assert record.method is GrantMethod.STRIPE
    assert record.lifetime_access is False

    await store.apply(Mutation(email="a@example.com", set_fields={"subscription_status": "active"}))
    record = await store.get("a@example.com")
    assert record.is_pro is True
    assert record.subscription_status == "active"


@pytest.mark.asyncio
async def test_update_without_record_matches_nothing(store):
    written = await store.apply(
        Mutation(email="ghost@example.com", set_fields={"is_pro": False}, upsert=False)
    )

    assert written is False
    assert await store.get("ghost@example.com") is None


@pytest.mark.asyncio
async def test_clear_fields_reset_to_null(store):
    await store.apply(
        Mutation(email="a@example.com", set_fields={"is_pro": True, "stripe_customer_id": "cus_1", "subscription_id": "sub_1"})
    )
    await store.apply(
        Mutation(email="a@example.com", set_fields={}, clear_fields=("stripe_customer_id", "subscription_id"), upsert=False)
    )

    record = await store.get("a@example.com")
    assert record.stripe_customer_id is None
    assert record.subscription_id is None
    assert record.is_pro is True


@pytest.mark.asyncio
async def test_database_failure_raises_store_error():
    store = EntitlementStore(UnreachableEngine())

    with pytest.raises(StoreError):
        await store.get("a@example.com")
    with pytest.raises(StoreError):
        await store.ping()


@pytest.mark.asyncio
async def test_ping(store):
    assert await store.ping() is True


@pytest.mark.asyncio
async def test_timestamps_read_back_in_utc(store):
    activated = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    await store.apply(Mutation(email="a@example.com", set_fields={"is_pro": True, "activated_at": activated}))

    record = await store.get("a@example.com")

    assert record.activated_at.tzinfo is not None
    assert record.activated_at == activated
    assert record.activated_at.isoformat().endswith("+00:00")
