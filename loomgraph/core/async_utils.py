# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Async helpers shared by graph nodes, branches and tool callbacks.

User-supplied callables may be plain functions or coroutine functions;
maybe_await() normalizes their return value.
"""

from __future__ import annotations

import inspect
from typing import Awaitable, TypeVar, Union

T = TypeVar("T")


async def maybe_await(value: Union[T, Awaitable[T]]) -> T:
    """Await coroutines, tasks and futures; return anything else unchanged."""
    if inspect.isawaitable(value):
        return await value  # type: ignore[misc]
    return value  # type: ignore[return-value]


__all__ = ["maybe_await"]
