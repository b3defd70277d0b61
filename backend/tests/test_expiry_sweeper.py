import asyncio

from caseshield.schemas.access import SessionStatus
from caseshield.services.expiry_sweeper import ExpirySweeper

from fakes import JUSTIFICATION


async def test_run_once_counts_expired(access, clock):
    session = await access.request_access("researcher-1", "rec-1", JUSTIFICATION)
    sweeper = ExpirySweeper(access, interval=60)

    assert await sweeper.run_once() == 0
    clock.advance(hours=25)
    assert await sweeper.run_once() == 1
    assert await sweeper.run_once() == 0

    assert sweeper.runs == 3
    assert sweeper.expired_total == 1
    assert (await access.get_session(session.id)).status is SessionStatus.EXPIRED


async def test_loop_sweeps_until_stopped(access, clock):
    session = await access.request_access("researcher-1", "rec-1", JUSTIFICATION)
    clock.advance(hours=25)
    sweeper = ExpirySweeper(access, interval=0.01)

    await sweeper.start()
    assert sweeper.running
    for _ in range(100):
        if sweeper.expired_total:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert not sweeper.running
    assert sweeper.expired_total == 1
    assert (await access.get_session(session.id)).status is SessionStatus.EXPIRED


async def test_start_is_idempotent(access):
    sweeper = ExpirySweeper(access, interval=10)
    await sweeper.start()
    first_task = sweeper._task
    await sweeper.start()

    assert sweeper._task is first_task
    await sweeper.stop()


async def test_loop_survives_sweep_errors(access, monkeypatch):
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("store offline")
        return []

    monkeypatch.setattr(access, "sweep_expired", flaky)
    sweeper = ExpirySweeper(access, interval=0.01)

    await sweeper.start()
    for _ in range(100):
        if len(calls) >= 2:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert len(calls) >= 2
    assert sweeper.runs >= 1
