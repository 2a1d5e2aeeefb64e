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

"""Tool registry and approval policy.

Tools are registered by name. A tool that requires approval runs only
when its source is auto-approved or an approval handler says yes. For
resumable runs, check_approval_batch() pre-checks a whole batch so
execution can pause before any call in it runs.

Example:
    tools = {
        "read_file": RegisteredTool("read_file", execute=read_file),
        "delete_file": RegisteredTool(
            "delete_file", execute=delete_file, requires_approval=True,
            source=ToolSource("mcp", "filesystem"),
        ),
    }
    config = ApprovalConfig(auto_approve_sources=["builtin", "mcp:github"])
    batch = check_approval_batch(message.tool_calls, tools, config)
    if batch.deferred_tools:
        ...  # pause for a human decision
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from loomgraph.core.async_utils import maybe_await
from loomgraph.core.cancellation import CancellationToken
from loomgraph.core.errors import ToolError, ToolExecutionError, ToolNotFoundError
from loomgraph.framework.state import ToolCall

logger = logging.getLogger(__name__)

REJECTION_MESSAGE = "[Approval Rejected] Tool execution was denied by user."
NO_HANDLER_MESSAGE = "[Approval Required] No handler configured. Tool execution denied."


@dataclass(frozen=True)
class ToolSource:
    """Where a tool comes from, e.g. ToolSource("mcp", "github")."""

    type: str
    namespace: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.type}:{self.namespace}" if self.namespace else self.type


@dataclass
class ToolExecutionContext:
    """Context passed to RegisteredTool.execute."""

    tool_call_id: str
    messages: List[Dict[str, Any]] = field(default_factory=list)
    cancellation_token: Optional[CancellationToken] = None


@dataclass
class ApprovalContext:
    """What an approval handler gets to decide on."""

    tool_call: ToolCall
    tool_name: str
    tool_description: str
    args: Dict[str, Any]
    messages: List[Dict[str, Any]] = field(default_factory=list)


ApprovalHandler = Callable[[ApprovalContext], Union[bool, Awaitable[bool]]]
ToolFunc = Callable[[Dict[str, Any], ToolExecutionContext], Any]


@dataclass
class RegisteredTool:
    """A tool available to the agent.

    Attributes:
        name: Tool name as the model calls it
        description: Human readable description
        execute: (args, context) -> result, sync or async
        parameters: JSON schema of the arguments
        requires_approval: Whether a human must approve each call
        source: Origin used for auto-approval matching
        approval_handler: Per-tool handler, overrides the global one
    """

    name: str
    description: str = ""
    execute: Optional[ToolFunc] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    requires_approval: bool = False
    source: Optional[ToolSource] = None
    approval_handler: Optional[ApprovalHandler] = None


ToolRegistry = Dict[str, RegisteredTool]


@dataclass
class ApprovalConfig:
    """Approval policy shared by every branch of a run.

    Attributes:
        on_approval_required: Global approval handler
        auto_approve_sources: Patterns "type" or "type:namespace" to skip approval
    """

    on_approval_required: Optional[ApprovalHandler] = None
    auto_approve_sources: List[str] = field(default_factory=list)


@dataclass
class ApprovalResult:
    approved: bool
    rejection_message: Optional[str] = None


@dataclass
class ApprovalBatchResult:
    """Outcome of pre-checking a batch of tool calls.

    Attributes:
        deferred_tools: Names of tools that need a human decision
        approved_calls: Calls that may run without one
    """

    deferred_tools: List[str] = field(default_factory=list)
    approved_calls: List[ToolCall] = field(default_factory=list)

    @property
    def needs_approval(self) -> bool:
        return bool(self.deferred_tools)


@dataclass
class ToolCallResult:
    """In-band result of one executed tool call."""

    tool_call_id: str
    tool_name: str
    result: str
    is_error: bool = False
    is_rejected: bool = False


def is_source_auto_approved(source: ToolSource, patterns: List[str]) -> bool:
    """Match a source against "type" or "type:namespace" patterns."""
    for pattern in patterns:
        if pattern == source.type:
            return True
        if source.namespace and pattern == f"{source.type}:{source.namespace}":
            return True
    return False


def requires_approval(tool: RegisteredTool, config: Optional[ApprovalConfig]) -> bool:
    """Whether a call to tool needs a decision under config."""
    if not tool.requires_approval:
        return False
    if config is not None and config.auto_approve_sources and tool.source is not None:
        if is_source_auto_approved(tool.source, config.auto_approve_sources):
            return False
    return True


def check_approval_batch(
    tool_calls: List[ToolCall],
    tools: Mapping[str, RegisteredTool],
    approval_config: Optional[ApprovalConfig] = None,
) -> ApprovalBatchResult:
    """Split a batch into deferred tool names and calls that may run.

    Unknown tools are never deferred; execution reports them in-band.
    """
    result = ApprovalBatchResult()
    for tc in tool_calls:
        tool = tools.get(tc.function.name)
        if tool is not None and requires_approval(tool, approval_config):
            if tc.function.name not in result.deferred_tools:
                result.deferred_tools.append(tc.function.name)
        else:
            result.approved_calls.append(tc)
    return result


async def check_approval(
    tool: RegisteredTool,
    tool_call: ToolCall,
    args: Dict[str, Any],
    messages: List[Dict[str, Any]],
    config: Optional[ApprovalConfig] = None,
) -> ApprovalResult:
    """Decide a single call synchronously through the approval handler.

    With no handler configured, a call that needs approval is denied.
    A handler that raises counts as a rejection.
    """
    if not requires_approval(tool, config):
        return ApprovalResult(approved=True)

    handler = tool.approval_handler or (config.on_approval_required if config else None)
    if handler is None:
        return ApprovalResult(approved=False, rejection_message=NO_HANDLER_MESSAGE)

    context = ApprovalContext(
        tool_call=tool_call,
        tool_name=tool.name,
        tool_description=tool.description,
        args=args,
        messages=messages,
    )
    try:
        approved = await maybe_await(handler(context))
    except Exception as e:
        logger.warning(f"Approval handler for {tool.name} failed: {e}")
        return ApprovalResult(approved=False, rejection_message=f"[Approval Error] {e}")

    logger.info(f"Tool {tool.name} {'approved' if approved else 'rejected'} by handler")
    return ApprovalResult(
        approved=bool(approved),
        rejection_message=None if approved else REJECTION_MESSAGE,
    )


def serialize_tool_result(result: Any) -> str:
    """Render a tool return value as message text."""
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, indent=2)
    except (TypeError, ValueError):
        return str(result)


async def _run_tool(
    tool: RegisteredTool,
    tool_call: ToolCall,
    args: Dict[str, Any],
    context: ToolExecutionContext,
) -> str:
    if tool.execute is None:
        raise ToolExecutionError(f"Tool {tool.name} has no execute function", tool_name=tool.name)
    try:
        result = await maybe_await(tool.execute(args, context))
    except ToolError:
        raise
    except Exception as e:
        raise ToolExecutionError(str(e), tool_name=tool.name, cause=e) from e
    return serialize_tool_result(result)


async def execute_tool_call(
    tool_call: ToolCall,
    tools: Mapping[str, RegisteredTool],
    messages: Optional[List[Dict[str, Any]]] = None,
    approval_config: Optional[ApprovalConfig] = None,
    cancellation_token: Optional[CancellationToken] = None,
) -> ToolCallResult:
    """Run one tool call, reporting every failure in-band."""
    name = tool_call.function.name
    messages = messages or []

    def failed(text: str) -> ToolCallResult:
        return ToolCallResult(tool_call_id=tool_call.id, tool_name=name, result=text, is_error=True)

    try:
        tool = tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        try:
            args = tool_call.parsed_arguments()
        except json.JSONDecodeError as e:
            raise ToolExecutionError(f"Invalid arguments for {name}: {e}", tool_name=name) from e

        approval = await check_approval(tool, tool_call, args, messages, approval_config)
        if not approval.approved:
            return ToolCallResult(
                tool_call_id=tool_call.id,
                tool_name=name,
                result=approval.rejection_message or REJECTION_MESSAGE,
                is_rejected=True,
            )

        if cancellation_token is not None and cancellation_token.is_cancelled:
            return failed("Execution cancelled")

        context = ToolExecutionContext(
            tool_call_id=tool_call.id,
            messages=messages,
            cancellation_token=cancellation_token,
        )
        text = await _run_tool(tool, tool_call, args, context)
    except ToolError as e:
        logger.warning(f"Tool call {tool_call.id} ({name}) failed: {e.message}")
        return failed(f"Error: {e.message}")

    return ToolCallResult(tool_call_id=tool_call.id, tool_name=name, result=text)


async def execute_tool_calls(
    tool_calls: List[ToolCall],
    tools: Mapping[str, RegisteredTool],
    messages: Optional[List[Dict[str, Any]]] = None,
    approval_config: Optional[ApprovalConfig] = None,
    cancellation_token: Optional[CancellationToken] = None,
) -> List[ToolCallResult]:
    """Run tool calls one after another, in call order."""
    results = []
    for tc in tool_calls:
        results.append(
            await execute_tool_call(tc, tools, messages, approval_config, cancellation_token)
        )
    return results


__all__ = [
    "REJECTION_MESSAGE",
    "NO_HANDLER_MESSAGE",
    "ToolSource",
    "ToolExecutionContext",
    "ApprovalContext",
    "ApprovalHandler",
    "RegisteredTool",
    "ToolRegistry",
    "ApprovalConfig",
    "ApprovalResult",
    "ApprovalBatchResult",
    "ToolCallResult",
    "is_source_auto_approved",
    "requires_approval",
    "check_approval_batch",
    "check_approval",
    "serialize_tool_result",
    "execute_tool_call",
    "execute_tool_calls",
]
