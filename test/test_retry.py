from unittest.mock import AsyncMock

import pytest

from unistore.core.retry import call_with_retry
from unistore.storage.cloud_storage import BackendTransientError, NotFoundError


@pytest.mark.asyncio
async def test_retry_until_success() -> None:
    func = AsyncMock(side_effect=[BackendTransientError("busy"), BackendTransientError("busy"), "ok"])
    assert await call_with_retry(func, max_retries=3, backoff_factor=0) == "ok"
    assert func.await_count == 3


@pytest.mark.asyncio
async def test_retry_budget_exhausted() -> None:
    func = AsyncMock(side_effect=BackendTransientError("busy"))
    with pytest.raises(BackendTransientError):
        await call_with_retry(func, max_retries=2, backoff_factor=0)
    assert func.await_count == 3


@pytest.mark.asyncio
async def test_non_transient_errors_not_retried() -> None:
    func = AsyncMock(side_effect=NotFoundError("missing"))
    with pytest.raises(NotFoundError):
        await call_with_retry(func, max_retries=3, backoff_factor=0)
    assert func.await_count == 1


@pytest.mark.asyncio
async def test_backoff_is_capped(mocker) -> None:
    sleep = mocker.patch("unistore.core.retry.asyncio.sleep", AsyncMock())
    func = AsyncMock(side_effect=[BackendTransientError("busy")] * 3 + ["ok"])

    await call_with_retry(func, max_retries=3, backoff_factor=1.0, backoff_max=3.0)

    assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0, 3.0]
