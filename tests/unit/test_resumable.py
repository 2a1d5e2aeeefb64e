# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
# SPDX-License-Identifier: Apache-2.0

"""Tests for the resumable tool-calling runner."""

import logging

import pytest

from loomgraph.config.settings import CheckpointErrorPolicy, Settings
from loomgraph.core.cancellation import CancellationToken
from loomgraph.core.errors import (
    CancellationError,
    CheckpointBackendError,
    CheckpointNotFoundError,
    InvalidCheckpointStateError,
)
from loomgraph.framework.checkpoint import (
    CheckpointSaveOptions,
    CheckpointStatus,
    MemoryCheckpointer,
)
from loomgraph.framework.resumable import (
    Prediction,
    ResumableAgentRunner,
    StepType,
)
from loomgraph.framework.state import (
    AgentState,
    Message,
    Role,
    TokenUsage,
    ToolCall,
    ToolCallFunction,
)
from loomgraph.framework.tools import REJECTION_MESSAGE, RegisteredTool


def _tool_message(*calls):
    return Message.assistant(
        "",
        tool_calls=[
            ToolCall(id=call_id, function=ToolCallFunction(name=name, arguments='{"path": "a.txt"}'))
            for call_id, name in calls
        ],
    )


class ScriptedModel:
    """Predict function that replays canned predictions."""

    def __init__(self, *messages):
        self.messages = list(messages)
        self.calls = 0

    async def __call__(self, state):
        message = self.messages[min(self.calls, len(self.messages) - 1)]
        self.calls += 1
        finish = "tool_calls" if message.tool_calls else "stop"
        return Prediction(
            message=message,
            usage=TokenUsage(1, 2, 3),
            finish_reason=finish,
            reasoning=f"r{self.calls}",
        )


class FailingCheckpointer(MemoryCheckpointer):
    """Memory store whose writes always fail."""

    async def _put(self, checkpoint):
        raise OSError("disk full")


@pytest.fixture
def tools():
    def read_file(args, ctx):
        return f"contents of {args['path']}"

    def delete_file(args, ctx):
        return "deleted"

    return [
        RegisteredTool("read_file", "Read a file", execute=read_file),
        RegisteredTool("delete_file", "Delete a file", execute=delete_file, requires_approval=True),
    ]


class TestInvoke:
    """Tests for the graph-driven invoke()."""

    @pytest.mark.asyncio
    async def test_plain_answer(self):
        """A response without tool calls finishes the run."""
        runner = ResumableAgentRunner(ScriptedModel(Message.assistant("hello")), max_steps=5)
        result = await runner.invoke([Message.user("hi")])

        assert result.text == "hello"
        assert result.finish_reason == "stop"
        assert result.interrupted is False
        assert result.usage == TokenUsage(1, 2, 3)
        assert [s.type for s in result.steps] == [StepType.TEXT]

    @pytest.mark.asyncio
    async def test_tool_loop(self, tools):
        """Tool results are fed back before the next prediction."""
        model = ScriptedModel(_tool_message(("c1", "read_file")), Message.assistant("done"))
        runner = ResumableAgentRunner(model, tools=tools, max_steps=5)

        result = await runner.invoke([Message.user("read it")])

        roles = [m.role for m in result.state.messages]
        assert roles == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
        assert result.state.messages[2].content == "contents of a.txt"
        assert result.text == "done"
        assert result.reasoning == "r1r2"
        assert result.usage == TokenUsage(2, 4, 6)
        assert [s.type for s in result.steps] == [
            StepType.TEXT,
            StepType.TOOL_CALL,
            StepType.TOOL_RESULT,
            StepType.TEXT,
        ]

    @pytest.mark.asyncio
    async def test_loop_bound(self, tools):
        """The model is consulted at most max_steps times."""
        model = ScriptedModel(_tool_message(("c1", "read_file")))
        runner = ResumableAgentRunner(model, tools=tools, max_steps=2)

        result = await runner.invoke([Message.user("loop")])

        assert model.calls == 2
        assert result.state.step_count == 2
        assert result.state.done is True

    @pytest.mark.asyncio
    async def test_cancelled_token_stops_run(self):
        """A tripped token aborts before the next prediction."""
        token = CancellationToken()
        token.cancel("stop")
        runner = ResumableAgentRunner(
            ScriptedModel(Message.assistant("x")), max_steps=3, cancellation_token=token
        )

        with pytest.raises(CancellationError):
            await runner.invoke([Message.user("hi")])

    def test_defaults_from_settings(self):
        """Loop bound and error policy fall back to settings."""
        settings = Settings(agent_max_steps=4, checkpoint_error_policy="raise")
        runner = ResumableAgentRunner(ScriptedModel(Message.assistant("x")), settings=settings)

        assert runner.max_steps == 4
        assert runner.error_policy == CheckpointErrorPolicy.RAISE


class TestInvokeResumable:
    """Tests for checkpointed runs."""

    @pytest.mark.asyncio
    async def test_checkpoints_each_execute_and_completion(self, tools):
        """An active checkpoint follows every execute; the last one is completed."""
        saver = MemoryCheckpointer()
        model = ScriptedModel(_tool_message(("c1", "read_file")), Message.assistant("done"))
        runner = ResumableAgentRunner(model, tools=tools, max_steps=5)

        result = await runner.invoke_resumable([Message.user("go")], "t", saver)

        statuses = [m.status for m in await saver.list("t")]
        assert statuses == [CheckpointStatus.COMPLETED, CheckpointStatus.ACTIVE]
        assert result.text == "done"

    @pytest.mark.asyncio
    async def test_interrupt_and_approve(self, tools):
        """A gated call pauses the run; approval executes it and continues."""
        saver = MemoryCheckpointer()
        model = ScriptedModel(
            _tool_message(("c1", "delete_file"), ("c2", "read_file")),
            Message.assistant("all clean"),
        )
        runner = ResumableAgentRunner(model, tools=tools, max_steps=5)

        paused = await runner.invoke_resumable([Message.user("clean")], "t", saver)

        assert paused.interrupted is True
        assert paused.finish_reason is None
        assert paused.pending_approval.deferred_tools == ("delete_file",)
        checkpoint = await saver.load("t")
        assert checkpoint.metadata.status == CheckpointStatus.PENDING_APPROVAL

        executed = []

        def executor(name, args, token):
            executed.append(name)
            return f"{name} ok"

        resumed = await runner.invoke_resumable(
            [], "t", saver, resume=True, approval_decision=True, tool_executor=executor
        )

        assert executed == ["delete_file", "read_file"]
        assert resumed.interrupted is False
        assert resumed.text == "all clean"
        tool_messages = [m for m in resumed.state.messages if m.role == Role.TOOL]
        assert [m.content for m in tool_messages] == ["delete_file ok", "read_file ok"]
        assert resumed.steps[0].type == StepType.TOOL_RESULT
        assert (await saver.load("t")).metadata.status == CheckpointStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_interrupt_and_reject(self, tools):
        """Rejection records the rejection text and lets the model respond."""
        saver = MemoryCheckpointer()
        model = ScriptedModel(_tool_message(("c1", "delete_file")), Message.assistant("ok, skipped"))
        runner = ResumableAgentRunner(model, tools=tools, max_steps=5)

        await runner.invoke_resumable([Message.user("clean")], "t", saver)
        resumed = await runner.invoke_resumable([], "t", saver, resume=True, approval_decision=False)

        tool_messages = [m for m in resumed.state.messages if m.role == Role.TOOL]
        assert [m.content for m in tool_messages] == [REJECTION_MESSAGE]
        assert resumed.text == "ok, skipped"

    @pytest.mark.asyncio
    async def test_resume_requires_decision(self, tools):
        """Pending checkpoints need a decision, and approval needs an executor."""
        saver = MemoryCheckpointer()
        runner = ResumableAgentRunner(
            ScriptedModel(_tool_message(("c1", "delete_file"))), tools=tools, max_steps=5
        )
        await runner.invoke_resumable([Message.user("clean")], "t", saver)

        with pytest.raises(ValueError, match="approval_decision"):
            await runner.invoke_resumable([], "t", saver, resume=True)
        with pytest.raises(ValueError, match="tool_executor"):
            await runner.invoke_resumable([], "t", saver, resume=True, approval_decision=True)

    @pytest.mark.asyncio
    async def test_resume_completed_thread(self):
        """Completed threads cannot be resumed."""
        saver = MemoryCheckpointer()
        runner = ResumableAgentRunner(ScriptedModel(Message.assistant("done")), max_steps=3)
        await runner.invoke_resumable([Message.user("hi")], "t", saver)

        with pytest.raises(InvalidCheckpointStateError, match="Cannot resume completed checkpoint"):
            await runner.invoke_resumable([], "t", saver, resume=True)

    @pytest.mark.asyncio
    async def test_resume_unknown_thread(self):
        """Resuming without a checkpoint fails."""
        runner = ResumableAgentRunner(ScriptedModel(Message.assistant("x")), max_steps=3)
        with pytest.raises(CheckpointNotFoundError):
            await runner.invoke_resumable([], "missing", MemoryCheckpointer(), resume=True)

    @pytest.mark.asyncio
    async def test_resume_active_checkpoint(self, tools):
        """An active checkpoint continues where it stopped."""
        saver = MemoryCheckpointer()
        state = AgentState(
            messages=[Message.user("hi"), _tool_message(("c1", "read_file")), Message.tool("x", "c1")],
            step_count=1,
            max_steps=5,
        )
        await saver.save("t", state, CheckpointSaveOptions(status=CheckpointStatus.ACTIVE))

        runner = ResumableAgentRunner(ScriptedModel(Message.assistant("recovered")), tools=tools, max_steps=5)
        result = await runner.invoke_resumable([], "t", saver, resume=True)

        assert result.text == "recovered"
        assert result.state.step_count == 2
        assert len(result.state.messages) == 4

    @pytest.mark.asyncio
    async def test_warn_policy_continues(self, caplog):
        """Under the warn policy a failing store only logs."""
        runner = ResumableAgentRunner(
            ScriptedModel(Message.assistant("fine")),
            max_steps=3,
            error_policy=CheckpointErrorPolicy.WARN,
        )

        with caplog.at_level(logging.WARNING):
            result = await runner.invoke_resumable([Message.user("hi")], "t", FailingCheckpointer())

        assert result.text == "fine"
        assert any("Checkpoint save for thread t failed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_raise_policy_propagates(self):
        """Under the raise policy a failing store stops the run."""
        runner = ResumableAgentRunner(
            ScriptedModel(Message.assistant("fine")),
            max_steps=3,
            error_policy=CheckpointErrorPolicy.RAISE,
        )

        with pytest.raises(CheckpointBackendError) as exc_info:
            await runner.invoke_resumable([Message.user("hi")], "t", FailingCheckpointer())
        assert isinstance(exc_info.value.cause, OSError)

    @pytest.mark.asyncio
    async def test_branch_state_saves_are_suppressed(self):
        """States running inside a parallel branch never persist."""
        saver = MemoryCheckpointer()
        runner = ResumableAgentRunner(ScriptedModel(Message.assistant("x")), max_steps=3)

        meta = await runner._save(
            saver, "t", AgentState(branch_index=1), CheckpointSaveOptions(status="active")
        )

        assert meta.id.startswith("suppressed_")
        assert len(saver) == 0
