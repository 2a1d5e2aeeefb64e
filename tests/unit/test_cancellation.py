# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
# SPDX-License-Identifier: Apache-2.0

"""Tests for cooperative cancellation tokens."""

import pytest

from loomgraph.core.cancellation import CancellationToken
from loomgraph.core.errors import CancellationError


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_cancel_is_one_shot(self):
        """The first reason sticks; later calls are no-ops."""
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")

        assert token.is_cancelled is True
        assert token.reason == "first"

    def test_listeners_fire_once(self):
        """Listeners run once, in registration order."""
        token = CancellationToken()
        calls = []
        token.add_listener(lambda reason: calls.append(("a", reason)))
        token.add_listener(lambda reason: calls.append(("b", reason)))

        token.cancel("stop")
        token.cancel("again")

        assert calls == [("a", "stop"), ("b", "stop")]

    def test_listener_on_cancelled_token_fires_immediately(self):
        """Late listeners still observe the cancellation."""
        token = CancellationToken()
        token.cancel("done")
        calls = []
        token.add_listener(calls.append)
        assert calls == ["done"]

    def test_remove_listener(self):
        """The returned remover unregisters the callback."""
        token = CancellationToken()
        calls = []
        remove = token.add_listener(calls.append)
        remove()
        remove()

        token.cancel()
        assert calls == []

    def test_child_propagation_is_one_way(self):
        """Parents cancel children; children never cancel parents."""
        parent = CancellationToken()
        child = parent.create_child()
        child.cancel("child only")
        assert parent.is_cancelled is False

        other = parent.create_child()
        parent.cancel("parent")
        assert other.is_cancelled is True
        assert other.reason == "parent"

    def test_raise_if_cancelled(self):
        """raise_if_cancelled only raises once tripped."""
        token = CancellationToken()
        token.raise_if_cancelled()

        token.cancel("user abort")
        with pytest.raises(CancellationError) as exc_info:
            token.raise_if_cancelled("Stopped")
        assert exc_info.value.message == "Stopped"
        assert exc_info.value.details == {"reason": "user abort"}
