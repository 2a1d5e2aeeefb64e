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

"""StateGraph - bounded step-loop graph executor.

A graph is a set of named nodes plus at most one outgoing edge per node.
Nodes map state to a partial update which is merged shallowly onto the
running state. Edges are an explicit tagged variant:

    - Edge.fixed(source, target): always continue at target
    - Edge.conditional(source, resolver, branches=None): resolver(state)
      picks the next node (or END)

Execution stops when the current node has no outgoing edge, when an edge
resolves to END, or fails with StepLimitExceededError once max_steps
steps have run without reaching either.

Example:
    from loomgraph.framework.graph import StateGraph, END

    graph = StateGraph()
    graph.add_node("plan", plan)
    graph.add_node("act", act)
    graph.add_edge("plan", "act")
    graph.add_conditional_edge("act", lambda s: END if s["done"] else "plan")

    app = graph.compile()
    result = await app.invoke({"done": False})

    async for event in app.stream({"done": False}):
        print(event.node_name)
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable, Optional, Union

from loomgraph.core.async_utils import maybe_await
from loomgraph.core.errors import NodeNotFoundError, StepLimitExceededError
from loomgraph.core.logging_config import trace

if TYPE_CHECKING:
    from loomgraph.config.settings import Settings

logger = logging.getLogger(__name__)

# Terminal sentinel returned by edge resolvers
END = "__end__"

NodeFunc = Callable[[Any], Union[Optional[Mapping[str, Any]], Awaitable[Optional[Mapping[str, Any]]]]]
EdgeResolver = Callable[[Any], Union[str, Awaitable[str]]]


def merge_state_update(state: Any, update: Optional[Mapping[str, Any]]) -> Any:
    """Shallow-merge a partial update onto state.

    Later fields overwrite same-named earlier fields. Mapping states yield a
    new dict; dataclass states (e.g. AgentState) yield a replaced copy.

    Raises:
        TypeError: If the update is not a mapping, or names a field the
            dataclass state does not have
    """
    if update is None:
        return state
    if not isinstance(update, Mapping):
        raise TypeError(f"Node update must be a mapping or None, got {type(update).__name__}")
    if isinstance(state, Mapping):
        return {**state, **update}
    if dataclasses.is_dataclass(state) and not isinstance(state, type):
        return dataclasses.replace(state, **dict(update))
    raise TypeError(f"Unsupported state type: {type(state).__name__}")


class EdgeKind(Enum):
    """Edge variant tag."""

    FIXED = "fixed"
    CONDITIONAL = "conditional"


@dataclass(frozen=True)
class Edge:
    """Outgoing edge of a node.

    Attributes:
        source: Source node name
        kind: FIXED or CONDITIONAL
        target: Next node name (FIXED only)
        resolver: state -> key or node name (CONDITIONAL only)
        branches: Optional mapping from resolver key to node name
    """

    source: str
    kind: EdgeKind
    target: Optional[str] = None
    resolver: Optional[EdgeResolver] = None
    branches: Optional[dict[str, str]] = None

    @classmethod
    def fixed(cls, source: str, target: str) -> "Edge":
        return cls(source=source, kind=EdgeKind.FIXED, target=target)

    @classmethod
    def conditional(
        cls,
        source: str,
        resolver: EdgeResolver,
        branches: Optional[dict[str, str]] = None,
    ) -> "Edge":
        return cls(
            source=source,
            kind=EdgeKind.CONDITIONAL,
            resolver=resolver,
            branches=dict(branches) if branches is not None else None,
        )

    async def resolve(self, state: Any) -> str:
        """Resolve the next node name (or END) for the given state.

        Raises:
            NodeNotFoundError: If a branches mapping has no entry for the
                resolver's key
        """
        if self.kind is EdgeKind.FIXED:
            return self.target  # type: ignore[return-value]

        key = await maybe_await(self.resolver(state))  # type: ignore[misc]
        if key == END or self.branches is None:
            return key
        if key not in self.branches:
            raise NodeNotFoundError(str(key), details={"source": self.source})
        return self.branches[key]


@dataclass
class Node:
    """A named state transformer.

    Attributes:
        name: Unique node name
        func: state -> partial update (sync or async)
    """

    name: str
    func: NodeFunc

    async def execute(self, state: Any) -> Optional[Mapping[str, Any]]:
        """Execute node function, awaiting it if it is a coroutine."""
        return await maybe_await(self.func(state))


@dataclass
class StepEvent:
    """One completed step of a streamed execution."""

    node_name: str
    state: Any


class CompiledGraph:
    """Executable graph produced by StateGraph.compile().

    Both invoke() and stream() run the same state machine; stream() surfaces
    the state after every step and suspends between steps so the caller can
    checkpoint or stop consuming.
    """

    def __init__(
        self,
        nodes: dict[str, Node],
        edges: dict[str, Edge],
        entry_point: str,
        default_max_steps: int = 100,
    ):
        self._nodes = nodes
        self._edges = edges
        self._entry_point = entry_point
        self._default_max_steps = default_max_steps

    @property
    def entry_point(self) -> str:
        return self._entry_point

    @property
    def node_names(self) -> list[str]:
        return list(self._nodes)

    async def invoke(self, initial_state: Any, max_steps: Optional[int] = None) -> Any:
        """Run the graph to a terminal and return the final state.

        Args:
            initial_state: Starting state (dict or dataclass state)
            max_steps: Step bound (defaults to the compiled default)

        Raises:
            StepLimitExceededError: max_steps steps ran without a terminal
            NodeNotFoundError: The next node is not registered
        """
        state = initial_state
        async for event in self.stream(initial_state, max_steps=max_steps):
            state = event.state
        return state

    async def stream(
        self,
        initial_state: Any,
        max_steps: Optional[int] = None,
    ) -> AsyncIterator[StepEvent]:
        """Run the graph, yielding a StepEvent after each executed node.

        The iterator is lazy and finite; it raises StepLimitExceededError
        after yielding the max_steps-th event if no terminal was reached.
        """
        limit = self._default_max_steps if max_steps is None else max_steps
        if limit < 1:
            raise ValueError(f"max_steps must be >= 1, got {limit}")

        state = initial_state
        current = self._entry_point
        steps = 0

        while steps < limit:
            node = self._nodes.get(current)
            if node is None:
                raise NodeNotFoundError(current)

            logger.debug(f"Executing node: {current} (step {steps + 1}/{limit})")
            update = await node.execute(state)
            state = merge_state_update(state, update)
            steps += 1
            trace(logger, "State after %s: %r", current, state)

            yield StepEvent(node_name=current, state=state)

            edge = self._edges.get(current)
            if edge is None:
                logger.debug(f"Node {current} has no outgoing edge, finishing after {steps} steps")
                return

            next_node = await edge.resolve(state)
            if next_node == END:
                logger.debug(f"Reached END after {steps} steps")
                return
            current = next_node

        logger.warning(f"Graph execution hit step limit ({limit}) at node {current}")
        raise StepLimitExceededError(limit)


class StateGraph:
    """Builder for step-loop graphs.

    Example:
        graph = StateGraph()
        graph.add_node("agent", call_model)
        graph.add_node("tools", run_tools)
        graph.add_conditional_edge("agent", route, {"tools": "tools", "end": END})
        graph.add_edge("tools", "agent")
        app = graph.compile()
    """

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, Edge] = {}
        self._entry_point: Optional[str] = None

    def add_node(self, name: str, func: NodeFunc) -> "StateGraph":
        """Add a node to the graph.

        Returns:
            Self for chaining

        Raises:
            ValueError: If the name is taken or is the END sentinel
        """
        if name == END:
            raise ValueError(f"'{END}' is reserved")
        if name in self._nodes:
            raise ValueError(f"Node '{name}' already exists")

        self._nodes[name] = Node(name=name, func=func)
        logger.debug(f"Added node: {name}")
        return self

    def _set_edge(self, edge: Edge) -> "StateGraph":
        if edge.source in self._edges:
            raise ValueError(f"Node '{edge.source}' already has an outgoing edge")
        self._edges[edge.source] = edge
        return self

    def add_edge(self, source: str, target: str) -> "StateGraph":
        """Add a fixed edge. Targets are checked when they execute, not here."""
        logger.debug(f"Added edge: {source} -> {target}")
        return self._set_edge(Edge.fixed(source, target))

    def add_conditional_edge(
        self,
        source: str,
        resolver: EdgeResolver,
        branches: Optional[dict[str, str]] = None,
    ) -> "StateGraph":
        """Add a conditional edge.

        Args:
            source: Source node name
            resolver: state -> node name, END, or a key into branches
            branches: Optional mapping from resolver keys to node names
        """
        logger.debug(f"Added conditional edge: {source}")
        return self._set_edge(Edge.conditional(source, resolver, branches))

    def set_entry_point(self, name: str) -> "StateGraph":
        """Override the entry point (defaults to the first added node)."""
        self._entry_point = name
        return self

    def compile(
        self,
        max_steps: Optional[int] = None,
        settings: Optional["Settings"] = None,
    ) -> CompiledGraph:
        """Freeze the graph for execution.

        Args:
            max_steps: Default step bound; falls back to settings.default_max_steps

        Raises:
            ValueError: If no nodes were added
        """
        if not self._nodes:
            raise ValueError("Invalid graph: Graph has no nodes")

        if max_steps is None:
            if settings is None:
                from loomgraph.config.settings import Settings

                settings = Settings()
            max_steps = settings.default_max_steps

        entry_point = self._entry_point or next(iter(self._nodes))
        return CompiledGraph(
            nodes=dict(self._nodes),
            edges=dict(self._edges),
            entry_point=entry_point,
            default_max_steps=max_steps,
        )


__all__ = [
    "END",
    "EdgeKind",
    "Edge",
    "Node",
    "StepEvent",
    "CompiledGraph",
    "StateGraph",
    "merge_state_update",
]
