import asyncio

import pytest

from gallery_backend.features.index.background import BackgroundTasks


@pytest.mark.asyncio
async def test_join_waits_for_all_jobs_and_respects_limit():
    tasks = BackgroundTasks(limit=2)
    active = 0
    peak = 0
    done: list[int] = []

    def _job(i: int):
        async def _run():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            done.append(i)
        return _run

    for i in range(6):
        tasks.add_work(_job(i))
    assert tasks.running == 2
    assert tasks.pending == 4

    await tasks.join()

    assert sorted(done) == list(range(6))
    assert peak == 2
    assert tasks.completed == 6
    assert tasks.added == 6


@pytest.mark.asyncio
async def test_failing_job_does_not_stall_the_queue():
    tasks = BackgroundTasks(limit=1)
    ran: list[str] = []

    async def _boom():
        raise RuntimeError("bad file")

    async def _ok():
        ran.append("ok")

    tasks.add_work(_boom)
    tasks.add_work(_ok)
    await asyncio.wait_for(tasks.join(), timeout=1)

    assert ran == ["ok"]
    assert tasks.failed == 1
    assert tasks.completed == 2


@pytest.mark.asyncio
async def test_raising_limit_starts_queued_jobs():
    tasks = BackgroundTasks(limit=1)
    gate = asyncio.Event()

    async def _wait():
        await gate.wait()

    for _ in range(3):
        tasks.add_work(_wait)
    assert tasks.running == 1

    tasks.limit = 3
    assert tasks.running == 3
    gate.set()
    await tasks.join()
    assert tasks.completed == 3


@pytest.mark.asyncio
async def test_join_on_idle_executor_returns_immediately():
    await asyncio.wait_for(BackgroundTasks().join(), timeout=0.5)


@pytest.mark.asyncio
async def test_cancel_drops_queue():
    tasks = BackgroundTasks(limit=1)
    gate = asyncio.Event()

    async def _wait():
        await gate.wait()

    tasks.add_work(_wait)
    tasks.add_work(_wait)
    await tasks.cancel()
    assert tasks.pending == 0
    await asyncio.wait_for(tasks.join(), timeout=0.5)
