"""Background job runner"""

import asyncio

import pytest

from services.async_processor import AsyncJobProcessor


async def test_jobs_run_and_are_forgotten_when_done():
    processor = AsyncJobProcessor(max_workers=2)
    done = []

    async def work(name):
        await asyncio.sleep(0)
        done.append(name)

    processor.submit("a", work("a"))
    processor.submit("b", work("b"))
    await processor.wait("a")
    await processor.wait("b")

    assert sorted(done) == ["a", "b"]
    assert not processor.is_running("a")


async def test_duplicate_submission_is_rejected():
    processor = AsyncJobProcessor()
    gate = asyncio.Event()

    processor.submit("job", gate.wait())
    with pytest.raises(RuntimeError):
        processor.submit("job", gate.wait())

    gate.set()
    await processor.wait("job")


async def test_cancel_stops_a_running_job():
    processor = AsyncJobProcessor()
    started = asyncio.Event()

    async def forever():
        started.set()
        await asyncio.sleep(3600)

    processor.submit("job", forever())
    await started.wait()

    assert processor.cancel("job")
    await processor.wait("job")
    assert not processor.is_running("job")
    assert not processor.cancel("job")


async def test_concurrency_is_bounded():
    processor = AsyncJobProcessor(max_workers=1)
    running = 0
    peak = 0

    async def work():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    for i in range(3):
        processor.submit(f"job-{i}", work())
    for i in range(3):
        await processor.wait(f"job-{i}")

    assert peak == 1


async def test_failing_job_does_not_propagate():
    processor = AsyncJobProcessor()

    async def boom():
        raise ValueError("boom")

    processor.submit("job", boom())
    await processor.wait("job")

    assert not processor.is_running("job")
