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

"""Cooperative cancellation tokens.

Cancellation never preempts running work. Holders of a token check it at
their own boundaries (e.g. before a parallel branch starts) and stop there.

Example:
    parent = CancellationToken()
    group = parent.create_child()

    group.cancel("branch 2 failed")   # does not touch parent
    parent.cancel()                   # propagates to group
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from loomgraph.core.errors import CancellationError

logger = logging.getLogger(__name__)

CancelListener = Callable[[Optional[str]], None]


class CancellationToken:
    """A one-shot, cooperative cancellation flag.

    Attributes:
        reason: Optional text describing why the token was cancelled
    """

    __slots__ = ("_cancelled", "_listeners", "reason")

    def __init__(self) -> None:
        self._cancelled = False
        self._listeners: List[CancelListener] = []
        self.reason: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        """Check whether cancellation has been requested."""
        return self._cancelled

    def cancel(self, reason: Optional[str] = None) -> None:
        """Trip the token. Subsequent calls are no-ops.

        Listeners run synchronously, in registration order.
        """
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(reason)

    def add_listener(self, listener: CancelListener) -> Callable[[], None]:
        """Register a callback fired once on cancellation.

        If the token is already cancelled the callback fires immediately.

        Returns:
            A function that unregisters the callback
        """
        if self._cancelled:
            listener(self.reason)
            return lambda: None

        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def create_child(self) -> "CancellationToken":
        """Create a token that is cancelled whenever this one is.

        Propagation is one-directional: cancelling the child leaves the
        parent untouched.
        """
        child = CancellationToken()
        self.add_listener(child.cancel)
        return child

    def raise_if_cancelled(self, message: str = "Execution cancelled") -> None:
        """Raise CancellationError if the token has been tripped."""
        if self._cancelled:
            raise CancellationError(message, details={"reason": self.reason})

    def __repr__(self) -> str:
        status = "cancelled" if self._cancelled else "active"
        return f"CancellationToken({status})"


__all__ = ["CancellationToken", "CancelListener"]
