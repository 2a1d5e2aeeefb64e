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

"""Human-in-the-Loop resume of approval-pending checkpoints.

A run that needs a human decision stops and saves a checkpoint with
status "pending_approval". resume_with_approval() takes that checkpoint
plus the decision and returns a state that can keep running:

    - approved, with executor: every pending call is executed
    - approved, no executor:  a synthetic approval result is recorded
    - rejected:               a fixed rejection text is recorded

Exactly one tool message is appended per pending call, in call order.
Executor failures never propagate; they become "[Execution Error] ..."
tool results so the conversation stays structurally valid.

Example:
    checkpoint = await checkpointer.load("session-123")
    resumed = await resume_with_approval(checkpoint, approved=True, tool_executor=run_tool)
    state = resumed.state
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from loomgraph.core.async_utils import maybe_await
from loomgraph.core.cancellation import CancellationToken
from loomgraph.core.errors import NoPendingApprovalError
from loomgraph.framework.checkpoint import Checkpoint, deserialize_checkpoint
from loomgraph.framework.state import AgentState, Message, ToolCall
from loomgraph.framework.tools import REJECTION_MESSAGE

logger = logging.getLogger(__name__)

ToolExecutor = Callable[
    [str, Dict[str, Any], Optional[CancellationToken]],
    Union[Any, Awaitable[Any]],
]


@dataclass
class ToolResultEntry:
    """Result text recorded for one pending call."""

    tool_call_id: str
    result: str

    def to_dict(self) -> Dict[str, str]:
        return {"tool_call_id": self.tool_call_id, "result": self.result}


@dataclass
class ResumeWithApprovalResult:
    """Outcome of resume_with_approval().

    Attributes:
        approved: The decision that was applied
        state: Reconstructed state with the tool messages appended
        tool_result: Result text (single mode, and rejected batches)
        tool_results: Per-call results (batch mode)
        tool_executed: Whether the executor ran at least once
    """

    approved: bool
    state: AgentState
    tool_result: Optional[str] = None
    tool_results: Optional[List[ToolResultEntry]] = None
    tool_executed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approved": self.approved,
            "tool_result": self.tool_result,
            "tool_results": [r.to_dict() for r in self.tool_results] if self.tool_results else None,
            "tool_executed": self.tool_executed,
        }


def _result_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result if result is not None else {"success": True})


async def _execute(
    executor: ToolExecutor,
    name: str,
    args: Dict[str, Any],
    cancellation_token: Optional[CancellationToken],
) -> str:
    try:
        result = await maybe_await(executor(name, args, cancellation_token))
        return _result_text(result)
    except Exception as e:
        logger.warning(f"Approved tool {name} failed during resume: {e}")
        return f"[Execution Error] {e}"


async def _resolve_call(
    tool_call: ToolCall,
    args: Optional[Dict[str, Any]],
    tool_executor: Optional[ToolExecutor],
    cancellation_token: Optional[CancellationToken],
) -> str:
    """Execute an approved call; arguments are parsed here so bad JSON is reported in-band."""
    try:
        call_args = args if args is not None else tool_call.parsed_arguments()
    except json.JSONDecodeError as e:
        return f"[Execution Error] {e}"
    return await _execute(tool_executor, tool_call.function.name, call_args, cancellation_token)  # type: ignore[arg-type]


async def resume_with_approval(
    checkpoint: Checkpoint,
    approved: bool,
    tool_executor: Optional[ToolExecutor] = None,
    tools: Optional[Dict[str, Any]] = None,
    cancellation_token: Optional[CancellationToken] = None,
) -> ResumeWithApprovalResult:
    """Resolve the pending approval of a checkpoint.

    Args:
        checkpoint: Checkpoint carrying a pending approval record
        approved: The human decision
        tool_executor: (name, args, token) -> result; optional
        tools: Tool registry for the reconstructed state (not persisted)
        cancellation_token: Passed through to the executor

    Returns:
        ResumeWithApprovalResult; the stored checkpoint is never modified

    Raises:
        NoPendingApprovalError: The checkpoint has no pending approval
    """
    pending = checkpoint.metadata.pending_approval
    if pending is None:
        raise NoPendingApprovalError(checkpoint.metadata.id)

    state = deserialize_checkpoint(checkpoint, tools)
    calls = pending.pending_calls
    logger.info(
        f"Resuming checkpoint {checkpoint.metadata.id}: "
        f"{'approved' if approved else 'rejected'} {len(calls)} tool call(s)"
    )

    tool_executed = False
    tool_result: Optional[str] = None
    tool_results: Optional[List[ToolResultEntry]] = None

    if not approved:
        tool_result = REJECTION_MESSAGE
        results = [ToolResultEntry(tc.id, REJECTION_MESSAGE) for tc in calls]
        if pending.is_batch:
            tool_results = results
    elif pending.is_batch:
        results = []
        for tc in calls:
            if tool_executor is not None:
                text = await _resolve_call(tc, None, tool_executor, cancellation_token)
                tool_executed = True
            else:
                text = json.dumps({"approved": True})
            results.append(ToolResultEntry(tc.id, text))
        tool_results = results
    else:
        tc = calls[0]
        if tool_executor is not None:
            tool_result = await _resolve_call(tc, pending.args, tool_executor, cancellation_token)
            tool_executed = True
        else:
            tool_result = json.dumps({"approved": True, "args": pending.args})
        results = [ToolResultEntry(tc.id, tool_result)]

    for entry in results:
        state.append_message(Message.tool(entry.result, entry.tool_call_id))

    return ResumeWithApprovalResult(
        approved=approved,
        state=state,
        tool_result=tool_result,
        tool_results=tool_results,
        tool_executed=tool_executed,
    )


__all__ = [
    "ToolExecutor",
    "ToolResultEntry",
    "ResumeWithApprovalResult",
    "resume_with_approval",
]
