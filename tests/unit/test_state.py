# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
# SPDX-License-Identifier: Apache-2.0

"""Tests for messages and agent state."""

import json

import pytest

from loomgraph.framework.state import (
    AgentState,
    ContentKind,
    Message,
    MessageMeta,
    Role,
    TokenUsage,
    ToolCall,
    ToolCallFunction,
    classify_content,
    strip_meta,
)


class TestClassifyContent:
    """Tests for content classification."""

    def test_kinds(self):
        assert classify_content("text") == ContentKind.TEXT
        assert classify_content([{"type": "text", "text": "hi"}]) == ContentKind.STRUCTURED
        assert classify_content({"data": b"\x00"}) == ContentKind.STRUCTURED
        assert classify_content(object()) == ContentKind.OPAQUE
        assert classify_content([{"handle": object()}]) == ContentKind.OPAQUE

    def test_non_string_keys_are_opaque(self):
        """Only string-keyed mappings are JSON-like."""
        assert classify_content({1: "x"}) == ContentKind.OPAQUE


class TestToolCall:
    """Tests for ToolCall."""

    def test_parsed_arguments(self):
        call = ToolCall(id="c", function=ToolCallFunction("grep", '{"q": "x"}'))
        assert call.name == "grep"
        assert call.parsed_arguments() == {"q": "x"}

    def test_empty_arguments(self):
        """Empty argument text means no arguments."""
        assert ToolCall(id="c", function=ToolCallFunction("ls", "")).parsed_arguments() == {}

    def test_invalid_arguments(self):
        with pytest.raises(json.JSONDecodeError):
            ToolCall(id="c", function=ToolCallFunction("ls", "{")).parsed_arguments()

    def test_dict_round_trip(self):
        call = ToolCall(id="c", function=ToolCallFunction("ls", '{"a": 1}'))
        assert ToolCall.from_dict(call.to_dict()) == call


class TestMessage:
    """Tests for Message."""

    def test_role_coerced(self):
        """String roles are converted to Role."""
        assert Message(role="user", content="x").role == Role.USER

    def test_api_dict_strips_meta(self):
        """API-bound messages never carry internal meta."""
        msg = Message.tool("result", "call_1").with_meta(MessageMeta(branch_index=0, local_index=1))

        assert msg.to_api_dict() == {"role": "tool", "content": "result", "tool_call_id": "call_1"}
        assert msg.to_dict()["meta"] == {"branch_index": 0, "local_index": 1}
        assert strip_meta([msg]) == [msg.to_api_dict()]

    def test_dict_round_trip(self):
        """Messages survive to_dict/from_dict including meta."""
        msg = Message.assistant(
            "", tool_calls=[ToolCall(id="c", function=ToolCallFunction("ls"))]
        ).with_meta(MessageMeta(skill_id="s"))
        restored = Message.from_dict(msg.to_dict())

        assert restored.to_dict() == msg.to_dict()
        assert restored.meta.skill_id == "s"

    def test_clone_deep_copies_structured_content(self):
        parts = [{"type": "text", "text": "a"}]
        clone = Message.user(parts).clone()
        clone.content[0]["text"] = "b"
        assert parts[0]["text"] == "a"

    def test_clone_shares_opaque_content(self):
        handle = object()
        assert Message.user(handle).clone().content is handle

    def test_stamp_helpers(self):
        msg = Message.user("x")
        assert msg.is_stamped() is False

        stamped = msg.with_meta(MessageMeta().stamped(3, 4))
        assert (stamped.branch_index, stamped.local_index) == (3, 4)
        assert stamped.is_stamped() is True
        assert stamped.meta.without_branch_stamp() is None


class TestAgentState:
    """Tests for AgentState helpers."""

    def test_append_message_rebinds_list(self):
        """Appending never mutates a list another state may share."""
        shared = [Message.user("a")]
        state = AgentState(messages=shared)
        state.append_message(Message.assistant("b"))

        assert len(shared) == 1
        assert state.last_message.content == "b"

    def test_empty_state(self):
        assert AgentState().last_message is None

    def test_usage_addition(self):
        assert TokenUsage(1, 2, 3) + TokenUsage(4, 5, 6) == TokenUsage(5, 7, 9)
