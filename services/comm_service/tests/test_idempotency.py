import asyncio

import pytest

from comm_service.core.exceptions import ConflictError
from comm_service.core.idempotency import IdempotencyGuard
from comm_service.core.lock import DistributedLock


def make_guard(store):
    return IdempotencyGuard(store, DistributedLock(store, prefix=""), ttl=86400, lock_ttl=30)


@pytest.mark.asyncio
async def test_concurrent_duplicates_run_operation_once(store):
    guard = make_guard(store)
    calls = []

    async def operation():
        calls.append(1)
        await asyncio.sleep(0.01)
        return {"command_id": "cmd_1", "status": "queued"}

    results = await asyncio.gather(
        *[guard.execute("key-1", operation) for _ in range(10)], return_exceptions=True
    )

    assert len(calls) == 1
    successes = [r for r in results if not isinstance(r, Exception)]
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert successes == [{"command_id": "cmd_1", "status": "queued"}]
    assert len(conflicts) == 9
    assert all(c.status_code == 409 for c in conflicts)


@pytest.mark.asyncio
async def test_completed_key_replays_cached_response(store):
    guard = make_guard(store)
    calls = []

    async def operation():
        calls.append(1)
        return {"message_id": f"msg_{len(calls)}"}

    first = await guard.execute("key-2", operation)
    second = await guard.execute("key-2", operation)

    assert first == second == {"message_id": "msg_1"}
    assert len(calls) == 1
    assert store.ttl("idempotency:key-2") == pytest.approx(86400)
    assert not await store.exists("idempotency:key-2:lock")


@pytest.mark.asyncio
async def test_lock_is_held_during_operation_and_released_on_failure(store):
    guard = make_guard(store)
    seen = {}

    async def failing():
        seen["locked"] = await store.exists("idempotency:key-3:lock")
        raise RuntimeError("downstream exploded")

    with pytest.raises(RuntimeError):
        await guard.execute("key-3", failing)

    assert seen["locked"] is True
    assert not await store.exists("idempotency:key-3:lock")
    assert await store.get("idempotency:key-3") is None

    async def succeeding():
        return {"ok": True}

    assert await guard.execute("key-3", succeeding) == {"ok": True}


@pytest.mark.asyncio
async def test_without_key_every_call_runs(store):
    guard = make_guard(store)
    calls = []

    async def operation():
        calls.append(1)
        return {"n": len(calls)}

    await guard.execute(None, operation)
    await guard.execute("", operation)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_crashed_holder_blocks_until_lock_ttl(store, clock):
    guard = make_guard(store)
    await store.set_if_absent("idempotency:key-4:lock", "someone-else", 30)

    async def operation():
        return {"ok": True}

    with pytest.raises(ConflictError):
        await guard.execute("key-4", operation)

    clock.advance(30)
    assert await guard.execute("key-4", operation) == {"ok": True}
