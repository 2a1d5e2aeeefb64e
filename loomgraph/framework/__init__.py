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

"""Agent execution framework: graph executor, parallel branches, checkpoints, approval resume."""

from loomgraph.framework.checkpoint import (
    BaseCheckpointer,
    Checkpoint,
    CheckpointerProtocol,
    CheckpointMetadata,
    CheckpointSaveOptions,
    CheckpointStatus,
    MemoryCheckpointer,
    PendingApproval,
    deserialize_checkpoint,
    get_pending_approval,
    is_pending_approval,
    serialize_state,
)
from loomgraph.framework.checkpointer import (
    JSONFileCheckpointer,
    SQLiteCheckpointer,
    create_checkpointer,
)
from loomgraph.framework.graph import END, CompiledGraph, Edge, EdgeKind, StateGraph, StepEvent
from loomgraph.framework.hitl import ResumeWithApprovalResult, resume_with_approval
from loomgraph.framework.parallel import (
    ParallelBranch,
    ParallelConfig,
    ParallelResult,
    default_parallel_reducer,
    execute_parallel,
)
from loomgraph.framework.resumable import (
    Prediction,
    ResumableAgentRunner,
    ResumableResult,
    StepResult,
)
from loomgraph.framework.state import (
    AgentState,
    ContentKind,
    Message,
    MessageMeta,
    Role,
    TokenUsage,
    ToolCall,
    ToolCallFunction,
)
from loomgraph.framework.tools import (
    ApprovalConfig,
    RegisteredTool,
    ToolSource,
    check_approval_batch,
)

__all__ = [
    # State
    "AgentState",
    "ContentKind",
    "Message",
    "MessageMeta",
    "Role",
    "TokenUsage",
    "ToolCall",
    "ToolCallFunction",
    # Graph
    "END",
    "CompiledGraph",
    "Edge",
    "EdgeKind",
    "StateGraph",
    "StepEvent",
    # Parallel
    "ParallelBranch",
    "ParallelConfig",
    "ParallelResult",
    "default_parallel_reducer",
    "execute_parallel",
    # Checkpoints
    "BaseCheckpointer",
    "Checkpoint",
    "CheckpointerProtocol",
    "CheckpointMetadata",
    "CheckpointSaveOptions",
    "CheckpointStatus",
    "MemoryCheckpointer",
    "PendingApproval",
    "JSONFileCheckpointer",
    "SQLiteCheckpointer",
    "create_checkpointer",
    "deserialize_checkpoint",
    "get_pending_approval",
    "is_pending_approval",
    "serialize_state",
    # Approval
    "ApprovalConfig",
    "RegisteredTool",
    "ToolSource",
    "check_approval_batch",
    "ResumeWithApprovalResult",
    "resume_with_approval",
    # Runner
    "Prediction",
    "ResumableAgentRunner",
    "ResumableResult",
    "StepResult",
]
