import asyncio

import pytest

from caseshield.core.exceptions import NotFoundError
from caseshield.infrastructure.session_store import InMemorySessionStore

from fakes import make_session


async def test_put_and_get(store):
    session = make_session()
    await store.put(session)

    assert await store.get("session-1") == session
    assert await store.get("missing") is None
    assert len(store) == 1


async def test_put_rejects_duplicate_id(store):
    await store.put(make_session())
    with pytest.raises(ValueError):
        await store.put(make_session())


async def test_update_bumps_version(store):
    await store.put(make_session())

    updated = await store.update("session-1", lambda s: s.model_copy(update={"error": "x"}))

    assert updated.version == 1
    assert updated.error == "x"
    assert (await store.get("session-1")).version == 1


async def test_update_with_no_change_keeps_version(store):
    await store.put(make_session())
    unchanged = await store.update("session-1", lambda s: None)
    assert unchanged.version == 0


async def test_update_missing_session(store):
    with pytest.raises(NotFoundError):
        await store.update("missing", lambda s: s)


async def test_mutator_exception_leaves_session_untouched(store):
    await store.put(make_session())

    def boom(session):
        raise RuntimeError("rejected")

    with pytest.raises(RuntimeError):
        await store.update("session-1", boom)
    assert (await store.get("session-1")).version == 0


async def test_compare_and_swap(store):
    session = make_session()
    await store.put(session)

    assert await store.compare_and_swap("session-1", 0, session.model_copy(update={"error": "a"}))
    # stale version loses
    assert not await store.compare_and_swap("session-1", 0, session.model_copy(update={"error": "b"}))

    stored = await store.get("session-1")
    assert stored.error == "a"
    assert stored.version == 1


async def test_delete_checks_version(store):
    await store.put(make_session())
    await store.update("session-1", lambda s: s.model_copy(update={"error": "x"}))

    assert not await store.delete("session-1", expected_version=0)
    assert await store.delete("session-1", expected_version=1)
    assert not await store.delete("session-1")
    assert len(store) == 0


async def test_concurrent_updates_are_serialized():
    store = InMemorySessionStore()
    await store.put(make_session())

    async def bump():
        await store.update(
            "session-1",
            lambda s: s.model_copy(update={"justification": s.justification + "+"}),
        )

    await asyncio.gather(*(bump() for _ in range(20)))

    stored = await store.get("session-1")
    assert stored.version == 20
    assert stored.justification.endswith("+" * 20)


async def test_locks_do_not_outlive_operations(store):
    for i in range(10):
        await store.put(make_session(f"s-{i}"))
        await store.update(f"s-{i}", lambda s: s.model_copy(update={"error": "done"}))
    await store.compare_and_swap("s-0", 1, make_session("s-0"))
    await store.delete("s-1")

    assert len(store) == 9
    assert len(store._locks) == 0


async def test_find_by_record(store):
    await store.put(make_session("a", record_id="rec-1"))
    await store.put(make_session("b", record_id="rec-2"))
    await store.put(make_session("c", record_id="rec-1"))

    found = await store.find_by_record("rec-1")
    assert sorted(s.id for s in found) == ["a", "c"]
