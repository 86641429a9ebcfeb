"""Correlation store tests, run against every backend available locally."""

import asyncio
import os
import uuid
from datetime import timedelta

import pytest
import pytest_asyncio

from nebula_hitl.config import HitlConfig
from nebula_hitl.contracts import PendingRequest, RequestStatus, Resolution, ResponseShape
from nebula_hitl.store import (
    ClaimStatus,
    InMemoryCorrelationStore,
    RegisterStatus,
    SQLiteCorrelationStore,
    get_store,
)
from nebula_hitl.store.redis import RedisCorrelationStore
from nebula_hitl.utils.clock import utc_now

FORM_SCHEMA = {
    "elements": [
        {"type": "radiogroup", "name": "decision", "choices": []},
        {"type": "comment", "name": "notes", "validators": [], "meta": {}},
    ]
}


async def _redis_store() -> RedisCorrelationStore:
    try:
        store = RedisCorrelationStore(
            host=os.getenv("TEST_REDIS_HOST", "localhost"),
            port=int(os.getenv("TEST_REDIS_PORT", "6379")),
            key_prefix=f"nebula-hitl-test-{uuid.uuid4().hex[:8]}",
        )
        await store.connect()
    except Exception:
        pytest.skip("Redis server not available")
    return store


@pytest_asyncio.fixture(params=["inmemory", "sqlite", "redis"])
async def any_store(request, tmp_path):
    if request.param == "inmemory":
        yield InMemoryCorrelationStore()
    elif request.param == "sqlite":
        yield SQLiteCorrelationStore(tmp_path / "hitl.db")
    else:
        store = await _redis_store()
        yield store
        for pending in await store.list_requests():
            await store.discard(pending.correlation_token)
        await store.disconnect()


def _pending(token=None, handle="E", shape=ResponseShape.ACK) -> PendingRequest:
    now = utc_now()
    return PendingRequest(
        correlation_token=token or str(uuid.uuid4()),
        execution_handle=handle,
        callback_url=f"https://host/webhook-waiting/{handle}/nebula-hitl-response",
        response_shape=shape,
        form_schema=FORM_SCHEMA if shape == ResponseShape.STRUCTURED_FORM else None,
        created_at=now,
        wait_until=now + timedelta(minutes=5),
    )


@pytest.mark.asyncio
async def test_register_rejects_duplicate_token(any_store):
    request = _pending("T")
    assert await any_store.register(request) == RegisterStatus.OK
    assert await any_store.register(_pending("T", handle="other")) == RegisterStatus.DUPLICATE

    stored = await any_store.get("T")
    assert stored.execution_handle == "E"
    assert stored.status == RequestStatus.PENDING


@pytest.mark.asyncio
async def test_claim_succeeds_once(any_store):
    await any_store.register(_pending("T", shape=ResponseShape.STRUCTURED_FORM))

    first = await any_store.claim("T")
    second = await any_store.claim("T")

    assert first.status == ClaimStatus.CLAIMED
    assert first.request.resolution == Resolution.WEBHOOK
    assert first.request.resolved_at is not None
    assert second.status == ClaimStatus.ALREADY_RESOLVED
    assert (await any_store.get("T")).is_resolved


@pytest.mark.asyncio
async def test_form_schema_is_kept_verbatim_through_resolution(any_store):
    await any_store.register(_pending("T", shape=ResponseShape.STRUCTURED_FORM))

    claimed = await any_store.claim("T")
    again = await any_store.claim("T")

    assert claimed.request.form_schema == FORM_SCHEMA
    assert again.request.form_schema == FORM_SCHEMA
    assert (await any_store.get("T")).form_schema == FORM_SCHEMA


@pytest.mark.asyncio
async def test_claim_unknown_token(any_store):
    result = await any_store.claim("missing")
    assert result.status == ClaimStatus.NOT_FOUND
    assert result.request is None


@pytest.mark.asyncio
async def test_claim_with_wrong_handle_consumes_nothing(any_store):
    await any_store.register(_pending("T", handle="E"))

    assert (await any_store.claim("T", "other")).status == ClaimStatus.NOT_FOUND
    assert not (await any_store.get("T")).is_resolved
    assert (await any_store.claim("T", "E")).status == ClaimStatus.CLAIMED


@pytest.mark.asyncio
async def test_expire_and_claim_first_wins(any_store):
    await any_store.register(_pending("A"))
    await any_store.register(_pending("B"))

    assert (await any_store.expire("A")).won
    assert (await any_store.claim("A")).status == ClaimStatus.ALREADY_RESOLVED

    assert (await any_store.claim("B")).won
    expired = await any_store.expire("B")
    assert expired.status == ClaimStatus.ALREADY_RESOLVED
    assert expired.request.resolution == Resolution.WEBHOOK


@pytest.mark.asyncio
async def test_discard_removes_entry(any_store):
    await any_store.register(_pending("T"))
    await any_store.discard("T")
    await any_store.discard("T")

    assert await any_store.get("T") is None
    assert (await any_store.claim("T")).status == ClaimStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_list_requests_filters_by_status(any_store):
    await any_store.register(_pending("A"))
    await any_store.register(_pending("B"))
    await any_store.claim("B")

    all_tokens = {r.correlation_token for r in await any_store.list_requests()}
    pending = await any_store.list_requests(RequestStatus.PENDING)
    resolved = await any_store.list_requests(RequestStatus.RESOLVED)

    assert all_tokens == {"A", "B"}
    assert [r.correlation_token for r in pending] == ["A"]
    assert [r.correlation_token for r in resolved] == ["B"]


@pytest.mark.asyncio
async def test_concurrent_claims_have_one_winner(any_store):
    await any_store.register(_pending("T"))

    results = await asyncio.gather(*(any_store.claim("T") for _ in range(10)))

    assert sum(1 for r in results if r.won) == 1
    assert all(
        r.status == ClaimStatus.ALREADY_RESOLVED for r in results if not r.won
    )


@pytest.mark.asyncio
async def test_redis_resolution_keeps_key_ttl():
    store = await _redis_store()
    try:
        await store.register(_pending("T"))
        ttl_before = await store.ttl("T")

        assert (await store.claim("T")).won
        ttl_after = await store.ttl("T")

        # five minute deadline plus one day of grace
        assert 86400 < ttl_before <= 86400 + 300
        assert 86400 < ttl_after <= ttl_before
    finally:
        await store.discard("T")
        await store.disconnect()


def test_sqlite_store_survives_reopen(tmp_path):
    db_path = tmp_path / "hitl.db"
    asyncio.run(SQLiteCorrelationStore(db_path).register(_pending("T")))

    reopened = SQLiteCorrelationStore(db_path)
    assert asyncio.run(reopened.claim("T")).won


def test_get_store_selects_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("NEBULA_HITL_STORE", raising=False)
    config = HitlConfig()
    config.store.sqlite_path = str(tmp_path / "hitl.db")

    assert isinstance(get_store("inmemory", config), InMemoryCorrelationStore)
    assert isinstance(get_store("sqlite", config), SQLiteCorrelationStore)
    with pytest.raises(ValueError):
        get_store("postgres", config)
