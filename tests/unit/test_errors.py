# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
# SPDX-License-Identifier: Apache-2.0

"""Tests for the structured error hierarchy."""

from loomgraph.core.errors import (
    BranchCancelledError,
    CancellationError,
    CheckpointBackendError,
    CheckpointError,
    CheckpointNotFoundError,
    ErrorCategory,
    ErrorSeverity,
    GraphError,
    InvalidCheckpointStateError,
    LoomGraphError,
    NodeNotFoundError,
    NoPendingApprovalError,
    StepLimitExceededError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
)


class TestLoomGraphError:
    """Tests for the base error."""

    def test_str_includes_correlation_id(self):
        """Rendered errors carry their correlation id."""
        error = LoomGraphError("boom", correlation_id="abc12345")
        assert str(error) == "[abc12345] boom"

    def test_recovery_hint_rendered(self):
        """A recovery hint is appended on its own line."""
        error = LoomGraphError("boom", correlation_id="x", recovery_hint="retry")
        assert str(error) == "[x] boom\nRecovery hint: retry"

    def test_to_dict(self):
        """Errors serialize with category and severity values."""
        data = LoomGraphError("boom", details={"k": 1}).to_dict()

        assert data["error"] == "boom"
        assert data["category"] == ErrorCategory.UNKNOWN.value
        assert data["severity"] == ErrorSeverity.ERROR.value
        assert data["details"] == {"k": 1}
        assert len(data["correlation_id"]) == 8

    def test_cause_kept(self):
        """The original exception is available on the error."""
        cause = OSError("disk")
        assert LoomGraphError("wrapped", cause=cause).cause is cause


class TestSpecificErrors:
    """Messages and attributes of the concrete errors."""

    def test_step_limit(self):
        error = StepLimitExceededError(25)
        assert isinstance(error, GraphError)
        assert error.message == "Graph execution exceeded maximum steps: 25"
        assert error.details["max_steps"] == 25
        assert error.category == ErrorCategory.GRAPH_STEP_LIMIT

    def test_node_not_found(self):
        error = NodeNotFoundError("ghost")
        assert error.message == "Node not found: ghost"
        assert error.node_name == "ghost"

    def test_cancellation(self):
        """Cancellation defaults to a warning-level message."""
        error = CancellationError()
        assert error.message == "Execution cancelled"
        assert error.severity == ErrorSeverity.WARNING

    def test_branch_cancelled(self):
        error = BranchCancelledError("search", 2)
        assert isinstance(error, CancellationError)
        assert error.message == 'Branch "search" cancelled'
        assert error.details == {"branch_name": "search", "branch_index": 2}

    def test_checkpoint_errors(self):
        """Checkpoint errors share a base class."""
        backend = CheckpointBackendError("write failed", backend="sqlite")
        missing = CheckpointNotFoundError("t-1")
        invalid = InvalidCheckpointStateError("Cannot resume completed checkpoint")

        assert all(isinstance(e, CheckpointError) for e in (backend, missing, invalid))
        assert backend.backend == "sqlite"
        assert missing.message == "No checkpoint found for thread: t-1"
        assert missing.thread_id == "t-1"

    def test_no_pending_approval(self):
        error = NoPendingApprovalError("ckpt_1")
        assert error.message == "Checkpoint does not have pending approval"
        assert error.checkpoint_id == "ckpt_1"

    def test_tool_errors(self):
        """Tool errors remember the tool name."""
        missing = ToolNotFoundError("grep")
        failed = ToolExecutionError("bad args", tool_name="grep")

        assert isinstance(missing, ToolError)
        assert missing.message == "Tool not found: grep"
        assert failed.tool_name == "grep"
        assert failed.category == ErrorCategory.TOOL_EXECUTION

    def test_every_category_is_raised_somewhere(self):
        """Each non-default category belongs to a concrete error type."""
        raised = {
            StepLimitExceededError(3).category,
            NodeNotFoundError("x").category,
            CancellationError().category,
            BranchCancelledError("b", 0).category,
            CheckpointBackendError("disk full", backend="json").category,
            CheckpointNotFoundError("t").category,
            InvalidCheckpointStateError("bad").category,
            NoPendingApprovalError().category,
            ToolNotFoundError("grep").category,
            ToolExecutionError("bad args").category,
        }
        assert raised | {ErrorCategory.UNKNOWN} == set(ErrorCategory)
