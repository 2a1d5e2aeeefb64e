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

"""Centralized error types for loomgraph.

This module provides:
- Error categories and severities for classification
- A structured base exception with correlation IDs
- The graph, parallel, checkpoint, approval and tool error taxonomy
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


# =============================================================================
# Error Categories
# =============================================================================


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""

    # Graph execution
    GRAPH_STEP_LIMIT = "graph_step_limit"
    GRAPH_NODE_NOT_FOUND = "graph_node_not_found"

    # Concurrency
    CANCELLED = "cancelled"

    # Checkpointing
    CHECKPOINT_BACKEND = "checkpoint_backend"
    CHECKPOINT_NOT_FOUND = "checkpoint_not_found"
    CHECKPOINT_STATE = "checkpoint_state"

    # Approval
    NO_PENDING_APPROVAL = "no_pending_approval"

    # Tools
    TOOL_NOT_FOUND = "tool_not_found"
    TOOL_EXECUTION = "tool_execution"

    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# =============================================================================
# Base Exception
# =============================================================================


class LoomGraphError(Exception):
    """Base exception for all loomgraph errors.

    Provides structured error information including:
    - Error category and severity
    - Correlation ID for tracking
    - Recovery suggestions
    - Original exception chain
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        recovery_hint: Optional[str] = None,
        correlation_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.recovery_hint = recovery_hint
        self.correlation_id = correlation_id or str(uuid.uuid4())[:8]
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
            "recovery_hint": self.recovery_hint,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        result = f"[{self.correlation_id}] {self.message}"
        if self.recovery_hint:
            result += f"\nRecovery hint: {self.recovery_hint}"
        return result


# =============================================================================
# Graph Errors
# =============================================================================


class GraphError(LoomGraphError):
    """Errors raised by the graph step loop."""


class StepLimitExceededError(GraphError):
    """The step loop reached max_steps without reaching a terminal."""

    def __init__(self, max_steps: int, **kwargs: Any):
        super().__init__(
            f"Graph execution exceeded maximum steps: {max_steps}",
            category=ErrorCategory.GRAPH_STEP_LIMIT,
            recovery_hint="Add a terminal condition or raise max_steps.",
            **kwargs,
        )
        self.max_steps = max_steps
        self.details["max_steps"] = max_steps


class NodeNotFoundError(GraphError):
    """An edge pointed at a node that was never registered."""

    def __init__(self, node_name: str, **kwargs: Any):
        super().__init__(
            f"Node not found: {node_name}",
            category=ErrorCategory.GRAPH_NODE_NOT_FOUND,
            **kwargs,
        )
        self.node_name = node_name
        self.details["node_name"] = node_name


# =============================================================================
# Cancellation
# =============================================================================


class CancellationError(LoomGraphError):
    """Cooperative cancellation was observed."""

    def __init__(self, message: str = "Execution cancelled", **kwargs: Any):
        kwargs.setdefault("category", ErrorCategory.CANCELLED)
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        super().__init__(message, **kwargs)


class BranchCancelledError(CancellationError):
    """A parallel branch saw the group token tripped at its start boundary."""

    def __init__(self, branch_name: str, branch_index: int, **kwargs: Any):
        super().__init__(f'Branch "{branch_name}" cancelled', **kwargs)
        self.branch_name = branch_name
        self.branch_index = branch_index
        self.details.update({"branch_name": branch_name, "branch_index": branch_index})


# =============================================================================
# Checkpoint Errors
# =============================================================================


class CheckpointError(LoomGraphError):
    """Errors related to checkpoint persistence."""


class CheckpointBackendError(CheckpointError):
    """Persistence I/O failure in a checkpoint backend."""

    def __init__(
        self,
        message: str,
        backend: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            category=ErrorCategory.CHECKPOINT_BACKEND,
            **kwargs,
        )
        self.backend = backend
        self.details["backend"] = backend


class CheckpointNotFoundError(CheckpointError):
    """No checkpoint exists for the requested thread."""

    def __init__(self, thread_id: str, **kwargs: Any):
        super().__init__(
            f"No checkpoint found for thread: {thread_id}",
            category=ErrorCategory.CHECKPOINT_NOT_FOUND,
            **kwargs,
        )
        self.thread_id = thread_id
        self.details["thread_id"] = thread_id


class InvalidCheckpointStateError(CheckpointError):
    """The checkpoint is in a status that does not allow the operation."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, category=ErrorCategory.CHECKPOINT_STATE, **kwargs)


# =============================================================================
# Approval Errors
# =============================================================================


class NoPendingApprovalError(LoomGraphError):
    """Resume was invoked on a checkpoint without a pending approval record."""

    def __init__(self, checkpoint_id: Optional[str] = None, **kwargs: Any):
        super().__init__(
            "Checkpoint does not have pending approval",
            category=ErrorCategory.NO_PENDING_APPROVAL,
            recovery_hint="Only checkpoints saved with status 'pending_approval' can be resumed with a decision.",
            **kwargs,
        )
        self.checkpoint_id = checkpoint_id
        self.details["checkpoint_id"] = checkpoint_id


# =============================================================================
# Tool Errors
# =============================================================================


class ToolError(LoomGraphError):
    """Errors related to tool execution."""

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.tool_name = tool_name
        self.details["tool_name"] = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str, **kwargs: Any):
        super().__init__(
            f"Tool not found: {tool_name}",
            tool_name=tool_name,
            category=ErrorCategory.TOOL_NOT_FOUND,
            **kwargs,
        )


class ToolExecutionError(ToolError):
    """Tool execution failures."""

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            tool_name=tool_name,
            category=ErrorCategory.TOOL_EXECUTION,
            **kwargs,
        )


__all__ = [
    "ErrorCategory",
    "ErrorSeverity",
    "LoomGraphError",
    "GraphError",
    "StepLimitExceededError",
    "NodeNotFoundError",
    "CancellationError",
    "BranchCancelledError",
    "CheckpointError",
    "CheckpointBackendError",
    "CheckpointNotFoundError",
    "InvalidCheckpointStateError",
    "NoPendingApprovalError",
    "ToolError",
    "ToolNotFoundError",
    "ToolExecutionError",
]
