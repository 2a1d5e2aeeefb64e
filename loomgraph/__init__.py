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

"""loomgraph - bounded graph execution, parallel branches and resumable agent checkpoints."""

__version__ = "0.1.0"

from loomgraph.core.cancellation import CancellationToken
from loomgraph.framework import (
    END,
    AgentState,
    ApprovalConfig,
    CheckpointSaveOptions,
    CheckpointStatus,
    JSONFileCheckpointer,
    MemoryCheckpointer,
    Message,
    ParallelBranch,
    ParallelConfig,
    RegisteredTool,
    ResumableAgentRunner,
    SQLiteCheckpointer,
    StateGraph,
    execute_parallel,
    resume_with_approval,
)

__all__ = [
    "__version__",
    "CancellationToken",
    "END",
    "AgentState",
    "ApprovalConfig",
    "CheckpointSaveOptions",
    "CheckpointStatus",
    "JSONFileCheckpointer",
    "MemoryCheckpointer",
    "Message",
    "ParallelBranch",
    "ParallelConfig",
    "RegisteredTool",
    "ResumableAgentRunner",
    "SQLiteCheckpointer",
    "StateGraph",
    "execute_parallel",
    "resume_with_approval",
]
