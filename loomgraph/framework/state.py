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

"""Conversation and agent state model.

Every other framework component operates on these types:

    - Message: one conversation entry with optional tool calls and meta
    - MessageMeta: internal metadata (branch stamps, skill markers), never sent to an API
    - AgentState: the running state of an agent loop
    - TokenUsage: prompt/completion/total token counts

Message content carries a ContentKind assigned when the message is built.
Cloning consults the kind instead of probing whether a deep copy works:

    TEXT        -> strings, copied by value
    STRUCTURED  -> JSON-like parts (dict/list/scalars/bytes), deep-copied
    OPAQUE      -> anything else, shared by reference
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from loomgraph.core.cancellation import CancellationToken


class Role(str, Enum):
    """Conversation roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ContentKind(str, Enum):
    """Value-kind classification of message content."""

    TEXT = "text"
    STRUCTURED = "structured"
    OPAQUE = "opaque"


_SCALARS = (str, int, float, bool, type(None), bytes)


def _is_structured(value: Any) -> bool:
    if isinstance(value, _SCALARS):
        return True
    if isinstance(value, (list, tuple)):
        return all(_is_structured(v) for v in value)
    if isinstance(value, dict):
        return all(isinstance(k, str) and _is_structured(v) for k, v in value.items())
    return False


def classify_content(content: Any) -> ContentKind:
    """Classify message content once, at construction."""
    if isinstance(content, str):
        return ContentKind.TEXT
    if _is_structured(content):
        return ContentKind.STRUCTURED
    return ContentKind.OPAQUE


@dataclass
class ToolCallFunction:
    """Function name plus JSON-encoded arguments."""

    name: str
    arguments: str = "{}"


@dataclass
class ToolCall:
    """A tool invocation requested by the assistant."""

    id: str
    function: ToolCallFunction
    type: str = "function"

    @property
    def name(self) -> str:
        return self.function.name

    def parsed_arguments(self) -> Dict[str, Any]:
        """Decode the JSON arguments (empty text means no arguments).

        Raises:
            json.JSONDecodeError: If the arguments are not valid JSON
        """
        return json.loads(self.function.arguments or "{}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.function.name, "arguments": self.function.arguments},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCall":
        fn = data.get("function") or {}
        return cls(
            id=data["id"],
            function=ToolCallFunction(name=fn["name"], arguments=fn.get("arguments", "{}")),
            type=data.get("type", "function"),
        )


@dataclass
class MessageMeta:
    """Internal message metadata.

    Attributes:
        branch_index: Parallel branch that owns the message (ordering key 1)
        local_index: Position within the branch (ordering key 2)
        skill_id: Skill that injected the message
        droppable: Whether compaction may drop the message
        priority: Compaction priority (lower = drop first)
        original_index: Message index before skill injection
    """

    branch_index: Optional[int] = None
    local_index: Optional[int] = None
    skill_id: Optional[str] = None
    droppable: Optional[bool] = None
    priority: Optional[int] = None
    original_index: Optional[int] = None

    def is_empty(self) -> bool:
        return all(v is None for v in self.to_dict().values())

    def stamped(self, branch_index: int, local_index: int) -> "MessageMeta":
        return MessageMeta(
            branch_index=branch_index,
            local_index=local_index,
            skill_id=self.skill_id,
            droppable=self.droppable,
            priority=self.priority,
            original_index=self.original_index,
        )

    def without_branch_stamp(self) -> Optional["MessageMeta"]:
        """Drop branch/local indices; None if nothing else remains."""
        rest = MessageMeta(
            skill_id=self.skill_id,
            droppable=self.droppable,
            priority=self.priority,
            original_index=self.original_index,
        )
        return None if rest.is_empty() else rest

    def to_dict(self) -> Dict[str, Any]:
        return {
            "branch_index": self.branch_index,
            "local_index": self.local_index,
            "skill_id": self.skill_id,
            "droppable": self.droppable,
            "priority": self.priority,
            "original_index": self.original_index,
        }

    def to_compact_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.to_dict().items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageMeta":
        return cls(**{k: data.get(k) for k in cls().to_dict()})


@dataclass
class Message:
    """A single conversation message.

    Attributes:
        role: Who produced the message
        content: Text, or an ordered sequence of typed parts
        tool_calls: Tool calls requested by an assistant message
        tool_call_id: Call this tool message answers
        meta: Internal metadata (stripped before API calls)
        content_kind: Cloning classification; derived from content when omitted
    """

    role: Role
    content: Any = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    meta: Optional[MessageMeta] = None
    content_kind: Optional[ContentKind] = None

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            self.role = Role(self.role)
        if self.content_kind is None:
            self.content_kind = classify_content(self.content)

    # -- constructors -----------------------------------------------------

    @classmethod
    def system(cls, content: Any) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: Any) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: Any = "", tool_calls: Optional[List[ToolCall]] = None) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls)

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> "Message":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)

    # -- branch stamps ----------------------------------------------------

    @property
    def branch_index(self) -> Optional[int]:
        return self.meta.branch_index if self.meta else None

    @property
    def local_index(self) -> Optional[int]:
        return self.meta.local_index if self.meta else None

    def is_stamped(self) -> bool:
        return self.branch_index is not None and self.local_index is not None

    def clone(self) -> "Message":
        """Copy the message, deep-copying content unless it is OPAQUE."""
        if self.content_kind == ContentKind.OPAQUE:
            content = self.content
        elif self.content_kind == ContentKind.TEXT:
            content = self.content
        else:
            content = copy.deepcopy(self.content)
        return Message(
            role=self.role,
            content=content,
            tool_calls=copy.deepcopy(self.tool_calls) if self.tool_calls else None,
            tool_call_id=self.tool_call_id,
            meta=copy.copy(self.meta) if self.meta else None,
            content_kind=self.content_kind,
        )

    def with_meta(self, meta: Optional[MessageMeta]) -> "Message":
        """Return a shallow copy carrying different meta."""
        return Message(
            role=self.role,
            content=self.content,
            tool_calls=self.tool_calls,
            tool_call_id=self.tool_call_id,
            meta=meta,
            content_kind=self.content_kind,
        )

    # -- serialization ----------------------------------------------------

    def to_api_dict(self) -> Dict[str, Any]:
        """API-bound shape: no internal meta, no empty optional keys."""
        data: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        return data

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe projection used by checkpoints."""
        data = self.to_api_dict()
        if self.meta is not None and not self.meta.is_empty():
            data["meta"] = self.meta.to_compact_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        tool_calls = data.get("tool_calls")
        meta = data.get("meta")
        return cls(
            role=Role(data["role"]),
            content=data.get("content", ""),
            tool_calls=[ToolCall.from_dict(tc) for tc in tool_calls] if tool_calls else None,
            tool_call_id=data.get("tool_call_id"),
            meta=MessageMeta.from_dict(meta) if meta else None,
        )


def strip_meta(messages: List[Message]) -> List[Dict[str, Any]]:
    """Strip internal metadata from messages before an API call."""
    return [m.to_api_dict() for m in messages]


@dataclass
class TokenUsage:
    """Token counts reported by a completion."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenUsage":
        return cls(
            prompt_tokens=int(data.get("prompt_tokens", 0)),
            completion_tokens=int(data.get("completion_tokens", 0)),
            total_tokens=int(data.get("total_tokens", 0)),
        )


@dataclass
class InjectedSkill:
    """Skill injected into the conversation, tracked for compaction."""

    name: str
    priority: int
    message_index: int
    token_count: int


@dataclass
class AgentState:
    """Agent state for graph execution.

    tools and approval_config are shared by reference across parallel
    branches and must be treated as read-only while a fan-out is running.
    cancellation_token, tools and branch_index are never persisted.
    """

    messages: List[Message] = field(default_factory=list)
    step_count: int = 0
    max_steps: int = 10
    done: bool = False
    output: str = ""
    reasoning: str = ""
    finish_reason: Optional[str] = None
    usage: Optional[TokenUsage] = None
    tools: Dict[str, Any] = field(default_factory=dict)
    approval_config: Optional[Any] = None
    cancellation_token: Optional["CancellationToken"] = None
    skills: List[InjectedSkill] = field(default_factory=list)
    skip_approval_check: bool = False
    branch_index: Optional[int] = None

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    def append_message(self, message: Message) -> None:
        self.messages = [*self.messages, message]


__all__ = [
    "Role",
    "ContentKind",
    "classify_content",
    "ToolCallFunction",
    "ToolCall",
    "MessageMeta",
    "Message",
    "strip_meta",
    "TokenUsage",
    "InjectedSkill",
    "AgentState",
]
