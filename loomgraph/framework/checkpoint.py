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

"""Checkpoint model and the checkpoint store contract.

A checkpoint is an immutable snapshot of agent state plus metadata. Every
backend implements the same operations:

    save(thread_id, state, options)  -> CheckpointMetadata
    load(thread_id)                  -> latest Checkpoint or None
    list(thread_id)                  -> metadata, newest first
    delete(checkpoint_id)            -> bool
    clear(thread_id)                 -> removed count
    clear_history(thread_id, keep_id=None) -> removed count

BaseCheckpointer implements save() and clear_history() once; backends
provide storage primitives. Backends without structured status columns
use encode_metadata_blob()/decode_metadata_blob(), an exactly invertible
pair over the reserved keys "__status" and "__pending_approval".
"""

from __future__ import annotations

import builtins
import copy
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union, runtime_checkable

from loomgraph.framework.state import AgentState, InjectedSkill, Message, ToolCall, TokenUsage

logger = logging.getLogger(__name__)

STATUS_KEY = "__status"
PENDING_APPROVAL_KEY = "__pending_approval"
RESERVED_PREFIX = "__"


def _now_ms() -> int:
    return int(time.time() * 1000)


class CheckpointStatus(str, Enum):
    """Lifecycle status of a checkpoint."""

    ACTIVE = "active"
    PENDING_APPROVAL = "pending_approval"
    COMPLETED = "completed"


@dataclass(frozen=True)
class PendingApproval:
    """Tool call(s) awaiting an external approval decision.

    Exactly one shape is populated: a single tool_call, or a non-empty
    tool_calls batch.

    Attributes:
        requested_at: Epoch ms when approval was requested
        tool_call: The single call awaiting approval
        tool_calls: Every call of the interrupted batch, in original order
        deferred_tools: Names of the tools that required approval
        tool_name: Tool name of the single call
        args: Parsed arguments of the single call
    """

    requested_at: int
    tool_call: Optional[ToolCall] = None
    tool_calls: Optional[Tuple[ToolCall, ...]] = None
    deferred_tools: Optional[Tuple[str, ...]] = None
    tool_name: Optional[str] = None
    args: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        if self.tool_calls is not None:
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        if self.deferred_tools is not None:
            object.__setattr__(self, "deferred_tools", tuple(self.deferred_tools))

        has_single = self.tool_call is not None
        has_batch = bool(self.tool_calls)
        if has_single == has_batch:
            raise ValueError("PendingApproval requires exactly one of tool_call or tool_calls")
        if has_single and self.tool_name is None:
            object.__setattr__(self, "tool_name", self.tool_call.function.name)

    @classmethod
    def single(
        cls,
        tool_call: ToolCall,
        args: Optional[Dict[str, Any]] = None,
        requested_at: Optional[int] = None,
    ) -> "PendingApproval":
        return cls(
            requested_at=requested_at if requested_at is not None else _now_ms(),
            tool_call=tool_call,
            tool_name=tool_call.function.name,
            args=args,
        )

    @classmethod
    def batch(
        cls,
        tool_calls: List[ToolCall],
        deferred_tools: Optional[List[str]] = None,
        requested_at: Optional[int] = None,
    ) -> "PendingApproval":
        return cls(
            requested_at=requested_at if requested_at is not None else _now_ms(),
            tool_calls=tuple(tool_calls),
            deferred_tools=tuple(deferred_tools) if deferred_tools is not None else None,
        )

    @property
    def is_batch(self) -> bool:
        return bool(self.tool_calls)

    @property
    def pending_calls(self) -> List[ToolCall]:
        """Calls to resolve, in original order."""
        if self.tool_calls:
            return list(self.tool_calls)
        return [self.tool_call]  # type: ignore[list-item]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"requested_at": self.requested_at}
        if self.tool_call is not None:
            data["tool_call"] = self.tool_call.to_dict()
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.deferred_tools is not None:
            data["deferred_tools"] = list(self.deferred_tools)
        if self.tool_name is not None:
            data["tool_name"] = self.tool_name
        if self.args is not None:
            data["args"] = copy.deepcopy(self.args)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingApproval":
        tool_call = data.get("tool_call")
        tool_calls = data.get("tool_calls")
        deferred = data.get("deferred_tools")
        return cls(
            requested_at=int(data["requested_at"]),
            tool_call=ToolCall.from_dict(tool_call) if tool_call else None,
            tool_calls=tuple(ToolCall.from_dict(tc) for tc in tool_calls) if tool_calls else None,
            deferred_tools=tuple(deferred) if deferred is not None else None,
            tool_name=data.get("tool_name"),
            args=data.get("args"),
        )


@dataclass(frozen=True)
class CheckpointMetadata:
    """Metadata describing one stored checkpoint."""

    id: str
    thread_id: str
    created_at: int
    step_count: int
    status: CheckpointStatus = CheckpointStatus.ACTIVE
    pending_approval: Optional[PendingApproval] = None
    custom: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "created_at": self.created_at,
            "step_count": self.step_count,
            "status": self.status.value,
            "pending_approval": self.pending_approval.to_dict() if self.pending_approval else None,
            "custom": copy.deepcopy(self.custom),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckpointMetadata":
        pending = data.get("pending_approval")
        return cls(
            id=data["id"],
            thread_id=data["thread_id"],
            created_at=int(data["created_at"]),
            step_count=int(data["step_count"]),
            status=CheckpointStatus(data.get("status") or CheckpointStatus.ACTIVE.value),
            pending_approval=PendingApproval.from_dict(pending) if pending else None,
            custom=data.get("custom") or None,
        )


@dataclass
class SerializedAgentState:
    """JSON-safe projection of AgentState.

    Cancellation tokens, tool handles, approval config and branch index
    are not part of the projection.
    """

    messages: List[Dict[str, Any]] = field(default_factory=list)
    step_count: int = 0
    max_steps: int = 10
    done: bool = False
    output: str = ""
    reasoning: str = ""
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, int]] = None
    skills: List[Dict[str, Any]] = field(default_factory=list)
    skip_approval_check: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "messages": copy.deepcopy(self.messages),
            "step_count": self.step_count,
            "max_steps": self.max_steps,
            "done": self.done,
            "output": self.output,
            "reasoning": self.reasoning,
            "finish_reason": self.finish_reason,
            "usage": dict(self.usage) if self.usage is not None else None,
            "skills": copy.deepcopy(self.skills),
            "skip_approval_check": self.skip_approval_check,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SerializedAgentState":
        return cls(
            messages=list(data.get("messages") or []),
            step_count=int(data.get("step_count", 0)),
            max_steps=int(data.get("max_steps", 10)),
            done=bool(data.get("done", False)),
            output=data.get("output") or "",
            reasoning=data.get("reasoning") or "",
            finish_reason=data.get("finish_reason"),
            usage=data.get("usage"),
            skills=list(data.get("skills") or []),
            skip_approval_check=bool(data.get("skip_approval_check", False)),
        )


@dataclass(frozen=True)
class Checkpoint:
    """A stored snapshot: metadata plus serialized state."""

    metadata: CheckpointMetadata
    state: SerializedAgentState

    def to_dict(self) -> Dict[str, Any]:
        return {"metadata": self.metadata.to_dict(), "state": self.state.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            metadata=CheckpointMetadata.from_dict(data["metadata"]),
            state=SerializedAgentState.from_dict(data["state"]),
        )


# =============================================================================
# State (de)serialization
# =============================================================================


def serialize_state(state: AgentState) -> SerializedAgentState:
    """Project AgentState onto its JSON-safe form."""
    return SerializedAgentState(
        messages=[msg.to_dict() for msg in state.messages],
        step_count=state.step_count,
        max_steps=state.max_steps,
        done=state.done,
        output=state.output,
        reasoning=state.reasoning,
        finish_reason=state.finish_reason,
        usage=state.usage.to_dict() if state.usage is not None else None,
        skills=[
            {
                "name": s.name,
                "priority": s.priority,
                "message_index": s.message_index,
                "token_count": s.token_count,
            }
            for s in state.skills
        ],
        skip_approval_check=state.skip_approval_check,
    )


def deserialize_checkpoint(
    checkpoint: Checkpoint,
    tools: Optional[Dict[str, Any]] = None,
) -> AgentState:
    """Rebuild AgentState from a checkpoint.

    The tool registry is not persisted and must be supplied again; the
    cancellation token is always reset.
    """
    s = checkpoint.state
    return AgentState(
        messages=[Message.from_dict(m) for m in copy.deepcopy(s.messages)],
        step_count=s.step_count,
        max_steps=s.max_steps,
        done=s.done,
        output=s.output,
        reasoning=s.reasoning,
        finish_reason=s.finish_reason,
        usage=TokenUsage.from_dict(s.usage) if s.usage is not None else None,
        tools=tools if tools is not None else {},
        cancellation_token=None,
        skills=[InjectedSkill(**skill) for skill in s.skills],
        skip_approval_check=s.skip_approval_check,
    )


def is_pending_approval(checkpoint: Checkpoint) -> bool:
    """True when the checkpoint is paused awaiting an approval decision."""
    return (
        checkpoint.metadata.status == CheckpointStatus.PENDING_APPROVAL
        and checkpoint.metadata.pending_approval is not None
    )


def get_pending_approval(checkpoint: Checkpoint) -> Optional[PendingApproval]:
    if not is_pending_approval(checkpoint):
        return None
    return checkpoint.metadata.pending_approval


# =============================================================================
# Save options
# =============================================================================


class SaveOptionsKind(Enum):
    """How the caller expressed save options."""

    STRUCTURED = "structured"
    LEGACY = "legacy"  # a bare mapping, taken as custom metadata


@dataclass(frozen=True)
class CheckpointSaveOptions:
    """Options for CheckpointerProtocol.save().

    Attributes:
        status: Status recorded on the checkpoint
        pending_approval: Approval record for pending_approval checkpoints
        custom: Opaque user metadata (keys must not start with "__")
        suppress_checkpoint: Skip persistence, still return valid metadata
        kind: STRUCTURED, or LEGACY when built from a bare mapping
    """

    status: CheckpointStatus = CheckpointStatus.ACTIVE
    pending_approval: Optional[PendingApproval] = None
    custom: Optional[Dict[str, Any]] = None
    suppress_checkpoint: bool = False
    kind: SaveOptionsKind = SaveOptionsKind.STRUCTURED

    def __post_init__(self) -> None:
        if not isinstance(self.status, CheckpointStatus):
            object.__setattr__(self, "status", CheckpointStatus(self.status))
        if self.custom is not None:
            reserved = [k for k in self.custom if str(k).startswith(RESERVED_PREFIX)]
            if reserved:
                raise ValueError(f"Custom metadata keys may not start with '{RESERVED_PREFIX}': {reserved}")
            object.__setattr__(self, "custom", dict(self.custom) or None)

    @classmethod
    def legacy(cls, custom: Mapping[str, Any]) -> "CheckpointSaveOptions":
        """Options from the legacy form where the whole mapping is custom metadata."""
        return cls(custom=dict(custom), kind=SaveOptionsKind.LEGACY)

    @classmethod
    def coerce(
        cls, options: Union[None, "CheckpointSaveOptions", Mapping[str, Any]]
    ) -> "CheckpointSaveOptions":
        """Resolve caller input to CheckpointSaveOptions once, at the API boundary."""
        if options is None:
            return cls()
        if isinstance(options, CheckpointSaveOptions):
            return options
        if isinstance(options, Mapping):
            return cls.legacy(options)
        raise TypeError(f"Unsupported checkpoint options: {type(options).__name__}")


# =============================================================================
# Metadata side-channel codec
# =============================================================================


def encode_metadata_blob(metadata: CheckpointMetadata) -> Dict[str, Any]:
    """Fold status/pending approval into the custom metadata mapping."""
    blob: Dict[str, Any] = dict(metadata.custom or {})
    blob[STATUS_KEY] = metadata.status.value
    if metadata.pending_approval is not None:
        blob[PENDING_APPROVAL_KEY] = metadata.pending_approval.to_dict()
    return blob


def decode_metadata_blob(
    blob: Optional[Dict[str, Any]],
) -> Tuple[CheckpointStatus, Optional[PendingApproval], Optional[Dict[str, Any]]]:
    """Inverse of encode_metadata_blob(): (status, pending_approval, custom)."""
    blob = blob or {}
    status = CheckpointStatus(blob.get(STATUS_KEY, CheckpointStatus.ACTIVE.value))
    pending_data = blob.get(PENDING_APPROVAL_KEY)
    pending = PendingApproval.from_dict(pending_data) if pending_data else None
    custom = {k: v for k, v in blob.items() if not k.startswith(RESERVED_PREFIX)}
    return status, pending, custom or None


# =============================================================================
# Store contract
# =============================================================================


@runtime_checkable
class CheckpointerProtocol(Protocol):
    """Operations every checkpoint backend provides."""

    async def save(
        self,
        thread_id: str,
        state: AgentState,
        options: Union[None, CheckpointSaveOptions, Mapping[str, Any]] = None,
    ) -> CheckpointMetadata: ...

    async def load(self, thread_id: str) -> Optional[Checkpoint]: ...

    async def list(self, thread_id: str) -> builtins.list[CheckpointMetadata]: ...

    async def delete(self, checkpoint_id: str) -> bool: ...

    async def clear(self, thread_id: str) -> int: ...

    async def clear_history(self, thread_id: str, keep_id: Optional[str] = None) -> int: ...


class BaseCheckpointer(ABC):
    """Shared save/clear_history logic for checkpoint backends.

    created_at values are epoch milliseconds, strictly increasing per
    instance so the latest checkpoint of a thread is unambiguous.
    """

    backend_name = "base"

    def __init__(self) -> None:
        self._last_created_at = 0

    def _next_created_at(self) -> int:
        now = _now_ms()
        if now <= self._last_created_at:
            now = self._last_created_at + 1
        self._last_created_at = now
        return now

    async def save(
        self,
        thread_id: str,
        state: AgentState,
        options: Union[None, CheckpointSaveOptions, Mapping[str, Any]] = None,
    ) -> CheckpointMetadata:
        """Persist a new checkpoint for thread_id.

        Args:
            thread_id: Thread to append to
            state: State to snapshot
            options: CheckpointSaveOptions, or a bare mapping of custom metadata

        Returns:
            Metadata of the stored checkpoint (synthetic when suppressed)

        Raises:
            CheckpointBackendError: The backend failed to write
        """
        opts = CheckpointSaveOptions.coerce(options)

        if opts.suppress_checkpoint:
            now = _now_ms()
            logger.debug(f"Checkpoint suppressed for thread {thread_id}")
            return CheckpointMetadata(
                id=f"suppressed_{now}_{uuid.uuid4().hex[:6]}",
                thread_id=thread_id,
                created_at=now,
                step_count=state.step_count,
                status=CheckpointStatus.ACTIVE,
            )

        created_at = self._next_created_at()
        metadata = CheckpointMetadata(
            id=f"ckpt_{thread_id}_{created_at}_{uuid.uuid4().hex[:6]}",
            thread_id=thread_id,
            created_at=created_at,
            step_count=state.step_count,
            status=opts.status,
            pending_approval=opts.pending_approval,
            custom=opts.custom,
        )
        await self._put(Checkpoint(metadata=metadata, state=serialize_state(state)))
        logger.debug(
            f"Saved checkpoint {metadata.id} (thread={thread_id}, "
            f"step={metadata.step_count}, status={metadata.status.value})"
        )
        return metadata

    async def clear_history(self, thread_id: str, keep_id: Optional[str] = None) -> int:
        """Delete every checkpoint of the thread except one.

        Args:
            thread_id: Thread to prune
            keep_id: Checkpoint to keep; defaults to the latest

        Returns:
            Number of checkpoints removed (0 if at most one exists)

        Raises:
            ValueError: keep_id does not belong to the thread
        """
        entries = await self.list(thread_id)
        if len(entries) <= 1:
            return 0

        keep = keep_id if keep_id is not None else entries[0].id
        if keep not in {m.id for m in entries}:
            raise ValueError(f"Checkpoint {keep} does not belong to thread {thread_id}")

        removed = 0
        for meta in entries:
            if meta.id != keep and await self.delete(meta.id):
                removed += 1
        logger.debug(f"Cleared {removed} checkpoints from thread {thread_id}, kept {keep}")
        return removed

    @abstractmethod
    async def _put(self, checkpoint: Checkpoint) -> None:
        """Store a fully built checkpoint."""

    @abstractmethod
    async def load(self, thread_id: str) -> Optional[Checkpoint]: ...

    @abstractmethod
    async def list(self, thread_id: str) -> builtins.list[CheckpointMetadata]: ...

    @abstractmethod
    async def delete(self, checkpoint_id: str) -> bool: ...

    @abstractmethod
    async def clear(self, thread_id: str) -> int: ...


class MemoryCheckpointer(BaseCheckpointer):
    """In-memory checkpointer for tests and short-lived sessions.

    Holds at most max_items checkpoints across all threads; the oldest by
    created_at are evicted after each save that exceeds the limit.
    """

    backend_name = "memory"

    def __init__(self, max_items: int = 100):
        super().__init__()
        if max_items < 1:
            raise ValueError(f"max_items must be >= 1, got {max_items}")
        self.max_items = max_items
        self._checkpoints: Dict[str, Checkpoint] = {}

    async def _put(self, checkpoint: Checkpoint) -> None:
        self._checkpoints[checkpoint.metadata.id] = copy.deepcopy(checkpoint)
        self._evict()

    def _evict(self) -> None:
        overflow = len(self._checkpoints) - self.max_items
        if overflow <= 0:
            return
        oldest = sorted(self._checkpoints.values(), key=lambda c: c.metadata.created_at)[:overflow]
        for checkpoint in oldest:
            del self._checkpoints[checkpoint.metadata.id]
        logger.debug(f"Evicted {overflow} checkpoints (max_items={self.max_items})")

    async def load(self, thread_id: str) -> Optional[Checkpoint]:
        latest: Optional[Checkpoint] = None
        for checkpoint in self._checkpoints.values():
            if checkpoint.metadata.thread_id != thread_id:
                continue
            if latest is None or checkpoint.metadata.created_at > latest.metadata.created_at:
                latest = checkpoint
        return copy.deepcopy(latest) if latest is not None else None

    async def list(self, thread_id: str) -> builtins.list[CheckpointMetadata]:
        entries = [
            copy.deepcopy(c.metadata) for c in self._checkpoints.values() if c.metadata.thread_id == thread_id
        ]
        return sorted(entries, key=lambda m: m.created_at, reverse=True)

    async def delete(self, checkpoint_id: str) -> bool:
        return self._checkpoints.pop(checkpoint_id, None) is not None

    async def clear(self, thread_id: str) -> int:
        ids = [cid for cid, c in self._checkpoints.items() if c.metadata.thread_id == thread_id]
        for cid in ids:
            del self._checkpoints[cid]
        return len(ids)

    def __len__(self) -> int:
        return len(self._checkpoints)


__all__ = [
    "CheckpointStatus",
    "PendingApproval",
    "CheckpointMetadata",
    "SerializedAgentState",
    "Checkpoint",
    "serialize_state",
    "deserialize_checkpoint",
    "is_pending_approval",
    "get_pending_approval",
    "SaveOptionsKind",
    "CheckpointSaveOptions",
    "encode_metadata_blob",
    "decode_metadata_blob",
    "CheckpointerProtocol",
    "BaseCheckpointer",
    "MemoryCheckpointer",
    "STATUS_KEY",
    "PENDING_APPROVAL_KEY",
]
