# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
# SPDX-License-Identifier: Apache-2.0

"""Tests for maybe_await."""

import asyncio

import pytest

from loomgraph.core.async_utils import maybe_await


class TestMaybeAwait:
    """Normalizing sync and async callback results."""

    @pytest.mark.asyncio
    async def test_plain_value_is_returned(self):
        """Non-awaitables pass through unchanged."""
        value = {"n": 1}
        assert await maybe_await(value) is value
        assert await maybe_await(None) is None

    @pytest.mark.asyncio
    async def test_coroutine_is_awaited(self):
        async def produce():
            return 42

        assert await maybe_await(produce()) == 42

    @pytest.mark.asyncio
    async def test_future_is_awaited(self):
        """Futures from create_future() resolve to their result."""
        fut = asyncio.get_running_loop().create_future()
        fut.set_result("done")
        assert await maybe_await(fut) == "done"

    @pytest.mark.asyncio
    async def test_task_is_awaited(self):
        task = asyncio.ensure_future(asyncio.sleep(0, result="slept"))
        assert await maybe_await(task) == "slept"

    @pytest.mark.asyncio
    async def test_custom_awaitable_is_awaited(self):
        """Objects implementing __await__ are awaited too."""

        class Deferred:
            def __await__(self):
                return asyncio.sleep(0, result="custom").__await__()

        assert await maybe_await(Deferred()) == "custom"

    @pytest.mark.asyncio
    async def test_future_exception_propagates(self):
        fut = asyncio.get_running_loop().create_future()
        fut.set_exception(RuntimeError("boom"))
        with pytest.raises(RuntimeError, match="boom"):
            await maybe_await(fut)
