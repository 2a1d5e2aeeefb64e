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

"""Resumable tool-calling agent runner.

The runner alternates two steps until the model stops calling tools:

    predict  -> ask the model (an injected predict function) for the next message
    execute  -> run the tool calls of that message, append tool results

invoke() drives this loop through a compiled StateGraph. invoke_resumable()
runs the same steps with checkpoints around them:

    - before execute, the batch is pre-checked; if any tool needs approval a
      "pending_approval" checkpoint is saved and the run returns interrupted
    - after every execute an "active" checkpoint is saved (crash recovery)
    - at the end a "completed" checkpoint is saved

Example:
    runner = ResumableAgentRunner(predict=call_model, tools=tools)
    result = await runner.invoke_resumable(messages, "session-1", checkpointer)
    if result.interrupted:
        result = await runner.invoke_resumable(
            [], "session-1", checkpointer,
            resume=True, approval_decision=True, tool_executor=run_tool,
        )
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Union,
)

from loomgraph.config.settings import CheckpointErrorPolicy
from loomgraph.core.async_utils import maybe_await
from loomgraph.core.cancellation import CancellationToken
from loomgraph.core.errors import (
    CheckpointBackendError,
    CheckpointNotFoundError,
    InvalidCheckpointStateError,
)
from loomgraph.framework.checkpoint import (
    CheckpointerProtocol,
    CheckpointMetadata,
    CheckpointSaveOptions,
    CheckpointStatus,
    PendingApproval,
    deserialize_checkpoint,
)
from loomgraph.framework.graph import END, CompiledGraph, StateGraph, merge_state_update
from loomgraph.framework.hitl import ToolExecutor, ToolResultEntry, resume_with_approval
from loomgraph.framework.state import AgentState, Message, TokenUsage, ToolCall, strip_meta
from loomgraph.framework.tools import (
    ApprovalConfig,
    RegisteredTool,
    check_approval_batch,
    execute_tool_calls,
)

if TYPE_CHECKING:
    from loomgraph.config.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class Prediction:
    """One model response, as returned by the predict function."""

    message: Message
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None
    reasoning: str = ""


PredictFunc = Callable[[AgentState], Union[Prediction, Awaitable[Prediction]]]


class StepType(str, Enum):
    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"


@dataclass
class StepResult:
    """A recorded step of a run."""

    type: StepType
    content: str
    reasoning: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_results: Optional[List[ToolResultEntry]] = None


@dataclass
class ResumableResult:
    """Outcome of invoke() / invoke_resumable().

    Attributes:
        text: Final output text
        reasoning: Accumulated reasoning, None if empty
        usage: Accumulated token usage
        finish_reason: Finish reason of the last prediction (None when interrupted)
        state: Final (or paused) state
        interrupted: True when the run paused for approval
        pending_approval: The approval record saved with the pause
        steps: Steps recorded during this call
    """

    text: str
    state: AgentState
    reasoning: Optional[str] = None
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None
    interrupted: bool = False
    pending_approval: Optional[PendingApproval] = None
    steps: List[StepResult] = field(default_factory=list)


def _as_registry(
    tools: Union[None, Mapping[str, RegisteredTool], Iterable[RegisteredTool]],
) -> Dict[str, RegisteredTool]:
    if tools is None:
        return {}
    if isinstance(tools, Mapping):
        return dict(tools)
    return {tool.name: tool for tool in tools}


class ResumableAgentRunner:
    """Runs a predict/execute tool loop with optional checkpointing.

    A runner records steps on the instance; do not share one runner
    between concurrent invocations.
    """

    def __init__(
        self,
        predict: PredictFunc,
        tools: Union[None, Mapping[str, RegisteredTool], Iterable[RegisteredTool]] = None,
        approval_config: Optional[ApprovalConfig] = None,
        max_steps: Optional[int] = None,
        cancellation_token: Optional[CancellationToken] = None,
        error_policy: Optional[CheckpointErrorPolicy] = None,
        settings: Optional["Settings"] = None,
    ):
        if max_steps is None or error_policy is None:
            if settings is None:
                from loomgraph.config.settings import Settings

                settings = Settings()
            max_steps = max_steps if max_steps is not None else settings.agent_max_steps
            error_policy = error_policy or settings.checkpoint_error_policy

        self._predict = predict
        self.tools = _as_registry(tools)
        self.approval_config = approval_config
        self.max_steps = max_steps
        self.cancellation_token = cancellation_token
        self.error_policy = CheckpointErrorPolicy(error_policy)
        self._steps: List[StepResult] = []

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def predict_node(self, state: AgentState) -> Dict[str, Any]:
        """Ask the model for the next message."""
        if state.cancellation_token is not None:
            state.cancellation_token.raise_if_cancelled()

        if state.step_count >= state.max_steps:
            return {"done": True}

        prediction = await maybe_await(self._predict(state))

        message = prediction.message
        content = message.content if isinstance(message.content, str) else ""
        self._steps.append(
            StepResult(
                type=StepType.TEXT,
                content=content,
                reasoning=prediction.reasoning,
                tool_calls=message.tool_calls,
            )
        )

        done = not message.tool_calls
        usage = state.usage
        if prediction.usage is not None:
            usage = prediction.usage if usage is None else usage + prediction.usage

        return {
            "messages": [*state.messages, message],
            "step_count": state.step_count + 1,
            "output": (content or state.output) if done else state.output,
            "reasoning": state.reasoning + (prediction.reasoning or ""),
            "finish_reason": prediction.finish_reason,
            "usage": usage,
            "done": done,
        }

    async def execute_node(self, state: AgentState) -> Dict[str, Any]:
        """Run the tool calls of the last message and append their results."""
        last = state.last_message
        tool_calls = last.tool_calls if last is not None else None
        if not tool_calls:
            return {}

        for tc in tool_calls:
            self._steps.append(
                StepResult(type=StepType.TOOL_CALL, content=tc.function.arguments, tool_calls=[tc])
            )

        results = await execute_tool_calls(
            tool_calls,
            state.tools,
            messages=strip_meta(state.messages),
            approval_config=state.approval_config,
            cancellation_token=state.cancellation_token,
        )

        tool_messages = []
        for result in results:
            entry = ToolResultEntry(result.tool_call_id, result.result)
            self._steps.append(
                StepResult(type=StepType.TOOL_RESULT, content=result.result, tool_results=[entry])
            )
            tool_messages.append(Message.tool(result.result, result.tool_call_id))

        return {"messages": [*state.messages, *tool_messages]}

    def build_graph(self) -> CompiledGraph:
        """Compile predict -> (END | execute) -> predict."""
        graph = StateGraph()
        graph.add_node("predict", self.predict_node)
        graph.add_node("execute", self.execute_node)
        graph.add_conditional_edge("predict", lambda state: END if state.done else "execute")
        graph.add_edge("execute", "predict")
        graph.set_entry_point("predict")
        # Two graph steps per loop iteration, plus the final predict
        return graph.compile(max_steps=2 * self.max_steps + 2)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def _initial_state(self, messages: List[Message]) -> AgentState:
        return AgentState(
            messages=list(messages),
            tools=self.tools,
            max_steps=self.max_steps,
            approval_config=self.approval_config,
            cancellation_token=self.cancellation_token,
        )

    def _result(
        self,
        state: AgentState,
        interrupted: bool = False,
        pending_approval: Optional[PendingApproval] = None,
    ) -> ResumableResult:
        return ResumableResult(
            text=state.output,
            state=state,
            reasoning=state.reasoning or None,
            usage=state.usage,
            finish_reason=None if interrupted else state.finish_reason,
            interrupted=interrupted,
            pending_approval=pending_approval,
            steps=list(self._steps),
        )

    async def invoke(self, messages: List[Message]) -> ResumableResult:
        """Run the tool loop without checkpoints."""
        self._steps = []
        state = await self.build_graph().invoke(self._initial_state(messages))
        return self._result(state)

    async def _save(
        self,
        checkpointer: CheckpointerProtocol,
        thread_id: str,
        state: AgentState,
        options: CheckpointSaveOptions,
    ) -> Optional[CheckpointMetadata]:
        if state.branch_index is not None:
            options = dataclasses.replace(options, suppress_checkpoint=True)
        try:
            try:
                return await checkpointer.save(thread_id, state, options)
            except CheckpointBackendError:
                raise
            except Exception as e:
                raise CheckpointBackendError(
                    f"Checkpoint save failed: {e}",
                    backend=type(checkpointer).__name__,
                    cause=e,
                ) from e
        except CheckpointBackendError as e:
            if self.error_policy == CheckpointErrorPolicy.RAISE:
                raise
            logger.warning(f"Checkpoint save for thread {thread_id} failed, continuing: {e.message}")
            return None

    async def _resume_state(
        self,
        thread_id: str,
        checkpointer: CheckpointerProtocol,
        approval_decision: Optional[bool],
        tool_executor: Optional[ToolExecutor],
    ) -> AgentState:
        checkpoint = await checkpointer.load(thread_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(thread_id)

        status = checkpoint.metadata.status
        if status == CheckpointStatus.COMPLETED:
            raise InvalidCheckpointStateError(
                "Cannot resume completed checkpoint",
                details={"checkpoint_id": checkpoint.metadata.id},
            )

        if status == CheckpointStatus.PENDING_APPROVAL:
            if approval_decision is None:
                raise ValueError("approval_decision required for pending_approval checkpoint")
            if approval_decision and tool_executor is None:
                raise ValueError("tool_executor required when approving")

            resumed = await resume_with_approval(
                checkpoint,
                approval_decision,
                tool_executor,
                self.tools,
                self.cancellation_token,
            )
            entries = resumed.tool_results or [
                ToolResultEntry(m.tool_call_id or "", m.content) for m in resumed.state.messages[-1:]
            ]
            for entry in entries:
                self._steps.append(
                    StepResult(type=StepType.TOOL_RESULT, content=entry.result, tool_results=[entry])
                )
            state = resumed.state
        else:
            logger.info(f"Recovering thread {thread_id} from active checkpoint {checkpoint.metadata.id}")
            state = deserialize_checkpoint(checkpoint, self.tools)

        return dataclasses.replace(
            state,
            approval_config=self.approval_config,
            cancellation_token=self.cancellation_token,
        )

    async def invoke_resumable(
        self,
        messages: List[Message],
        thread_id: str,
        checkpointer: CheckpointerProtocol,
        resume: bool = False,
        approval_decision: Optional[bool] = None,
        tool_executor: Optional[ToolExecutor] = None,
    ) -> ResumableResult:
        """Run (or resume) the tool loop with checkpoints.

        Args:
            messages: Initial messages (ignored when resuming)
            thread_id: Checkpoint thread
            checkpointer: Checkpoint store
            resume: Continue from the latest checkpoint of the thread
            approval_decision: Decision for a pending_approval checkpoint
            tool_executor: Executor for approved calls (required when approving)

        Raises:
            CheckpointNotFoundError: resume with no checkpoint for the thread
            InvalidCheckpointStateError: resume of a completed thread
            ValueError: Missing approval_decision or tool_executor
            CheckpointBackendError: A save failed under the raise policy
        """
        self._steps = []

        if resume:
            if messages:
                logger.warning(f"Ignoring {len(messages)} messages while resuming thread {thread_id}")
            state = await self._resume_state(thread_id, checkpointer, approval_decision, tool_executor)
        else:
            state = self._initial_state(messages)

        while not state.done and state.step_count < state.max_steps:
            state = merge_state_update(state, await self.predict_node(state))
            if state.done:
                break

            tool_calls = state.last_message.tool_calls if state.last_message else None
            if tool_calls and not state.skip_approval_check:
                batch = check_approval_batch(tool_calls, state.tools, state.approval_config)
                if batch.deferred_tools:
                    pending = PendingApproval.batch(tool_calls, batch.deferred_tools)
                    await self._save(
                        checkpointer,
                        thread_id,
                        state,
                        CheckpointSaveOptions(
                            status=CheckpointStatus.PENDING_APPROVAL,
                            pending_approval=pending,
                        ),
                    )
                    logger.info(
                        f"Thread {thread_id} paused for approval of {', '.join(batch.deferred_tools)}"
                    )
                    return self._result(state, interrupted=True, pending_approval=pending)

            state = merge_state_update(state, await self.execute_node(state))
            await self._save(
                checkpointer,
                thread_id,
                state,
                CheckpointSaveOptions(status=CheckpointStatus.ACTIVE),
            )

        await self._save(
            checkpointer,
            thread_id,
            state,
            CheckpointSaveOptions(status=CheckpointStatus.COMPLETED),
        )
        logger.info(f"Thread {thread_id} completed after {state.step_count} steps")
        return self._result(state)


__all__ = [
    "Prediction",
    "PredictFunc",
    "StepType",
    "StepResult",
    "ResumableResult",
    "ResumableAgentRunner",
]
