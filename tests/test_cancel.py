import asyncio
import time

import pytest

from transcript_toolchain.cancel import CancelToken
from transcript_toolchain.errors import RunCancelled, describe_rewrite_error


def test_sleep_wakes_up_on_cancel() -> None:
    async def scenario() -> float:
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)
        started = time.monotonic()
        with pytest.raises(RunCancelled):
            await token.sleep(10)
        return time.monotonic() - started

    assert asyncio.run(scenario()) < 1


def test_sleep_returns_normally_without_cancel() -> None:
    async def scenario() -> bool:
        token = CancelToken()
        await token.sleep(0.01)
        await token.sleep(0)
        return token.cancelled

    assert asyncio.run(scenario()) is False


def test_guard_passes_results_through() -> None:
    async def answer() -> int:
        await asyncio.sleep(0)
        return 42

    async def scenario() -> int:
        return await CancelToken().guard(answer())

    assert asyncio.run(scenario()) == 42


def test_guard_aborts_pending_work() -> None:
    finished = []

    async def slow() -> None:
        await asyncio.sleep(3600)
        finished.append(True)

    async def scenario() -> None:
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)
        await token.guard(slow())

    with pytest.raises(RunCancelled):
        asyncio.run(scenario())
    assert finished == []


def test_raise_if_cancelled() -> None:
    token = CancelToken()
    token.raise_if_cancelled()
    token.cancel()
    token.cancel()
    with pytest.raises(RunCancelled):
        token.raise_if_cancelled()


@pytest.mark.parametrize(
    "error, fragment",
    [
        (asyncio.TimeoutError(), "did not answer in time"),
        (RuntimeError("Error code: 401 - invalid api key"), "API key"),
        (RuntimeError("HTTP 429 rate limit reached"), "quota"),
        (RuntimeError("503 service overloaded"), "overloaded"),
        (RuntimeError("connection reset"), "Network error"),
        (RuntimeError("boom"), "Unexpected rewrite failure: boom"),
    ],
)
def test_describe_rewrite_error(error: BaseException, fragment: str) -> None:
    assert fragment in describe_rewrite_error(error)
