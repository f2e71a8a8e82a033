"""
Tests for the cancel token.
"""

import asyncio

import pytest

from admiral.agent.cancellation import CancelToken
from admiral.errors import AgentCancelledError, OperationTimeoutError


@pytest.mark.asyncio
async def test_run_returns_result():
    token = CancelToken()

    async def work():
        return 42

    assert await token.run(work(), timeout=1) == 42


@pytest.mark.asyncio
async def test_run_times_out():
    token = CancelToken()

    with pytest.raises(OperationTimeoutError):
        await token.run(asyncio.sleep(5), timeout=0.01)


@pytest.mark.asyncio
async def test_cancel_aborts_in_flight_call():
    token = CancelToken()
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def slow():
        started.set()
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    async def stop_soon():
        await started.wait()
        token.cancel()

    asyncio.create_task(stop_soon())
    with pytest.raises(AgentCancelledError):
        await token.run(slow(), timeout=10)
    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_sleep_is_interruptible():
    token = CancelToken()
    loop = asyncio.get_running_loop()
    loop.call_later(0.01, token.cancel)

    start = loop.time()
    with pytest.raises(AgentCancelledError):
        await token.sleep(5)
    assert loop.time() - start < 1


@pytest.mark.asyncio
async def test_sleep_completes_when_not_cancelled():
    token = CancelToken()
    await token.sleep(0.01)
    assert not token.cancelled
