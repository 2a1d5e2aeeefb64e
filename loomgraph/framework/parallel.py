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

"""Parallel branch execution for agent state.

Forks an AgentState into isolated branch copies, runs them concurrently
with fail-fast cancellation, and merges the results deterministically.

Isolation per branch:
    - messages: cloned per ContentKind and stamped (branch_index, local_index)
    - skills, usage: copied
    - tools, approval_config: shared by reference (read-only during fan-out)
    - cancellation_token: replaced by a group token shared by all branches

Ordering of the merged messages depends only on the stamps, never on the
order in which branches finish.

Example:
    config = ParallelConfig(
        branches=[
            ParallelBranch("search", run_search),
            ParallelBranch("summarize", run_summary),
        ],
        max_concurrency=2,
    )
    result = await execute_parallel(state, config)
    merged = result.state
"""

from __future__ import annotations

import asyncio
import collections
import copy
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Deque, List, Optional, Union

from loomgraph.core.async_utils import maybe_await
from loomgraph.core.cancellation import CancellationToken
from loomgraph.core.errors import BranchCancelledError, CancellationError
from loomgraph.core.logging_config import trace
from loomgraph.framework.state import AgentState, Message, MessageMeta, TokenUsage

if TYPE_CHECKING:
    from loomgraph.config.settings import Settings

logger = logging.getLogger(__name__)

BranchFunc = Callable[[AgentState], Union[AgentState, Awaitable[AgentState]]]
Reducer = Callable[[List[AgentState]], AgentState]


@dataclass
class ParallelBranch:
    """A named unit of parallel work.

    Attributes:
        name: Branch name for logging and cancellation errors
        execute: state -> state (sync or async)
    """

    name: str
    execute: BranchFunc


@dataclass
class ParallelConfig:
    """Configuration for execute_parallel().

    Attributes:
        branches: Branches to run, in branch-index order
        max_concurrency: Permit count; None means unbounded
        reducer: Merge function; defaults to default_parallel_reducer
    """

    branches: List[ParallelBranch] = field(default_factory=list)
    max_concurrency: Optional[int] = None
    reducer: Optional[Reducer] = None

    def __post_init__(self) -> None:
        if self.max_concurrency is not None and self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")

    @classmethod
    def from_settings(
        cls,
        branches: List[ParallelBranch],
        settings: "Settings",
        reducer: Optional[Reducer] = None,
    ) -> "ParallelConfig":
        return cls(
            branches=branches,
            max_concurrency=settings.parallel_max_concurrency,
            reducer=reducer,
        )


@dataclass
class ParallelResult:
    """Outcome of a parallel fan-out."""

    state: AgentState
    interrupted: bool = False


class FifoSemaphore:
    """Counting semaphore that grants permits in arrival order.

    A released permit is handed directly to the oldest waiter, so a
    newcomer can never overtake a task that is already queued.
    """

    def __init__(self, permits: int):
        if permits < 1:
            raise ValueError(f"permits must be >= 1, got {permits}")
        self._value = permits
        self._waiters: Deque[asyncio.Future] = collections.deque()

    @property
    def available(self) -> int:
        return self._value

    def locked(self) -> bool:
        return self._value == 0

    async def acquire(self) -> None:
        if self._value > 0 and not self._waiters:
            self._value -= 1
            return

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Permit was handed over just before cancellation
                self.release()
            elif fut in self._waiters:
                self._waiters.remove(fut)
            raise

    def release(self) -> None:
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)
                return
        self._value += 1

    async def __aenter__(self) -> "FifoSemaphore":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


# =============================================================================
# Cloning and ordering
# =============================================================================


def stamp_message(message: Message, branch_index: int, local_index: int) -> Message:
    """Return a copy of message stamped with (branch_index, local_index)."""
    meta = message.meta or MessageMeta()
    return message.with_meta(meta.stamped(branch_index, local_index))


def clone_state_for_branch(
    state: AgentState,
    branch_index: int,
    group_token: Optional[CancellationToken] = None,
) -> AgentState:
    """Clone state for one branch.

    Messages are cloned according to their ContentKind and stamped with
    their position. tools and approval_config stay shared.
    """
    messages = [
        stamp_message(msg.clone(), branch_index, local_index)
        for local_index, msg in enumerate(state.messages)
    ]
    return dataclasses.replace(
        state,
        messages=messages,
        skills=list(state.skills),
        usage=copy.copy(state.usage) if state.usage else None,
        cancellation_token=group_token if group_token is not None else state.cancellation_token,
        branch_index=branch_index,
    )


def _sort_key(message: Message) -> tuple:
    return (message.branch_index or 0, message.local_index or 0)


def sort_messages_by_branch(messages: List[Message]) -> List[Message]:
    """Stable sort by (branch_index, local_index); missing stamps sort as 0."""
    return sorted(messages, key=_sort_key)


def strip_branch_meta(messages: List[Message]) -> List[Message]:
    """Remove branch stamps, keeping any other meta."""
    stripped = []
    for msg in messages:
        if msg.meta is None:
            stripped.append(msg)
        else:
            stripped.append(msg.with_meta(msg.meta.without_branch_stamp()))
    return stripped


def _stamp_branch_result(result: AgentState, branch_index: int) -> AgentState:
    """Stamp messages a branch appended without a stamp of their own."""
    messages = [
        msg if msg.is_stamped() else stamp_message(msg, branch_index, local_index)
        for local_index, msg in enumerate(result.messages)
    ]
    return dataclasses.replace(result, messages=messages)


def _join_non_empty(values: List[str]) -> str:
    return "\n".join(v for v in values if v)


def default_parallel_reducer(results: List[AgentState]) -> AgentState:
    """Merge branch results.

    - messages: all branches concatenated, sorted by stamp, stamps stripped
    - step_count: max over branches + 1
    - usage: summed over branches that report usage
    - done: any branch done
    - output/reasoning: non-empty values newline-joined in branch order
    - everything else: from the first branch
    """
    if not results:
        raise ValueError("Cannot reduce empty parallel results")
    if len(results) == 1:
        return results[0]

    all_messages = [msg for result in results for msg in result.messages]
    messages = strip_branch_meta(sort_messages_by_branch(all_messages))

    usage: Optional[TokenUsage] = None
    for result in results:
        if result.usage is not None:
            usage = result.usage if usage is None else usage + result.usage

    first = results[0]
    return dataclasses.replace(
        first,
        messages=messages,
        step_count=max(r.step_count for r in results) + 1,
        usage=usage,
        done=any(r.done for r in results),
        output=_join_non_empty([r.output for r in results]),
        reasoning=_join_non_empty([r.reasoning for r in results]),
        branch_index=None,
    )


# =============================================================================
# Executor
# =============================================================================


async def execute_parallel(state: AgentState, config: ParallelConfig) -> ParallelResult:
    """Run branches concurrently and merge their results.

    Every branch is awaited to settlement before the outcome is decided.
    If any branch raised, the failure of the lowest-indexed failing branch
    is re-raised unchanged.

    Raises:
        CancellationError: The parent token was already cancelled
        BranchCancelledError: (from a branch) the group token was tripped
            before that branch started
    """
    branches = config.branches
    if not branches:
        return ParallelResult(state=state, interrupted=False)

    parent_token = state.cancellation_token
    if parent_token is not None and parent_token.is_cancelled:
        raise CancellationError("Execution aborted before parallel start")

    group_token = CancellationToken()
    unlink = parent_token.add_listener(group_token.cancel) if parent_token is not None else None
    semaphore = FifoSemaphore(config.max_concurrency) if config.max_concurrency else None

    logger.debug(
        f"Starting parallel execution: {len(branches)} branches, "
        f"max_concurrency={config.max_concurrency}"
    )

    async def run_branch(index: int, branch: ParallelBranch) -> AgentState:
        if semaphore is not None:
            await semaphore.acquire()
        try:
            if group_token.is_cancelled:
                raise BranchCancelledError(branch.name, index)

            branch_state = clone_state_for_branch(state, index, group_token)
            trace(logger, "Branch %s[%d] started", branch.name, index)
            result = await maybe_await(branch.execute(branch_state))
            return _stamp_branch_result(result, index)
        except BaseException as e:
            if not isinstance(e, BranchCancelledError):
                logger.warning(f"Parallel branch '{branch.name}' [{index}] failed: {e}")
            group_token.cancel(f"branch '{branch.name}' failed")
            raise
        finally:
            if semaphore is not None:
                semaphore.release()

    try:
        settled = await asyncio.gather(
            *(run_branch(i, b) for i, b in enumerate(branches)),
            return_exceptions=True,
        )
    finally:
        if unlink is not None:
            unlink()

    for outcome in settled:
        if isinstance(outcome, BaseException):
            raise outcome

    results: List[AgentState] = list(settled)  # type: ignore[arg-type]
    if len(results) == 1:
        merged = results[0]
    else:
        reducer = config.reducer or default_parallel_reducer
        merged = reducer(results)

    merged = dataclasses.replace(merged, cancellation_token=parent_token, branch_index=None)
    logger.debug(f"Parallel execution finished: {len(results)} branches merged")
    return ParallelResult(state=merged, interrupted=False)


__all__ = [
    "ParallelBranch",
    "ParallelConfig",
    "ParallelResult",
    "FifoSemaphore",
    "stamp_message",
    "clone_state_for_branch",
    "sort_messages_by_branch",
    "strip_branch_meta",
    "default_parallel_reducer",
    "execute_parallel",
]
