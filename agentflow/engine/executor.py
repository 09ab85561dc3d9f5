"""
Async Flow Executor.

The executor walks a flow graph from its START node, handing the carried
text to each agent in turn, resolving conditional branches from the agent
output, and emitting an ordered stream of events until the run reaches END
or fails.
"""

from typing import Any, AsyncIterator, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import asyncio
import inspect
import time
import logging

from agentflow.agents.base import AgentInvocationError, AgentInvoker, AgentResponse
from agentflow.engine.events import EventKind, FailureKind, FlowEvent, FlowFailure
from agentflow.engine.graph import FlowEdge, FlowNode, Graph, NodeKind
from agentflow.engine.state import NodeTrace, RunState


logger = logging.getLogger(__name__)


DEFAULT_EXTRA_STEPS = 10


class ExecutionStatus(str, Enum):
    """Status of a flow run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BranchPolicy(str, Enum):
    """What to do when a START or plain AGENT node has several outgoing edges."""
    FAIL = "fail"    # Report INVALID_GRAPH at that node
    FIRST = "first"  # Follow the first edge in declaration order


class FlowHalted(Exception):
    """Raised inside the traversal loop to stop a run with a classified failure."""

    def __init__(self, kind: FailureKind, node_id: Optional[str], message: str):
        super().__init__(message)
        self.failure = FlowFailure(kind=kind, node_id=node_id, message=message)


def _preview(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


@dataclass
class FlowResult:
    """Result of a flow run."""
    run_id: str
    status: ExecutionStatus
    output: Optional[str] = None
    failure: Optional[FlowFailure] = None
    events: List[FlowEvent] = field(default_factory=list)
    node_traces: Dict[str, NodeTrace] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_duration_ms: Optional[float] = None
    steps: int = 0

    @classmethod
    def from_state(cls, state: RunState, duration_ms: float) -> "FlowResult":
        if state.failure is not None:
            status = ExecutionStatus.FAILED
        elif state.finished:
            status = ExecutionStatus.COMPLETED
        else:
            status = ExecutionStatus.CANCELLED
        return cls(
            run_id=state.run_id,
            status=status,
            output=state.output,
            failure=state.failure,
            events=list(state.events),
            node_traces=dict(state.traces),
            started_at=state.started_at,
            completed_at=state.completed_at,
            total_duration_ms=duration_ms,
            steps=state.steps,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "output": self.output,
            "failure": self.failure.model_dump(mode="json") if self.failure else None,
            "events": [e.to_dict() for e in self.events],
            "node_traces": {k: v.model_dump(mode="json") for k, v in self.node_traces.items()},
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_ms": self.total_duration_ms,
            "steps": self.steps,
        }


class FlowEngine:
    """
    Async flow engine.

    Runs one node at a time; the only suspension point is the awaited
    agent invocation. The engine keeps no state between runs, so a single
    instance can serve any number of runs, concurrently or not.

    Usage:
        engine = FlowEngine(invoker)
        async for event in engine.run(graph, "What is the capital of France?"):
            print(event.kind, event.message)
    """

    def __init__(
        self,
        invoker: AgentInvoker,
        branch_policy: BranchPolicy = BranchPolicy.FAIL,
        extra_steps: int = DEFAULT_EXTRA_STEPS,
        invocation_timeout: Optional[float] = None,
        max_steps: Optional[int] = None,
    ):
        """
        Initialize the engine.

        Args:
            invoker: Service that runs agent steps
            branch_policy: Handling of plain nodes with several outgoing edges
            extra_steps: Iterations allowed beyond the node count
            invocation_timeout: Seconds before an agent call counts as failed
            max_steps: Explicit iteration bound, overriding node count + extra_steps
        """
        self.invoker = invoker
        self.branch_policy = BranchPolicy(branch_policy)
        self.extra_steps = extra_steps
        self.invocation_timeout = invocation_timeout
        self.max_steps = max_steps

    async def run(
        self,
        graph: Graph,
        initial_input: str,
        state: Optional[RunState] = None,
    ) -> AsyncIterator[FlowEvent]:
        """
        Execute the flow, yielding events as they happen.

        The stream always ends with exactly one COMPLETED or FAILED event,
        unless the caller stops iterating first.

        Args:
            graph: The flow to run (never modified)
            initial_input: Text handed to the START node
            state: Run state to fill in (a fresh one is created if omitted)
        """
        state = state if state is not None else RunState()

        try:
            async for event in self._traverse(graph, initial_input, state):
                yield event
        except FlowHalted as halt:
            failure = halt.failure
            logger.warning(
                f"Run {state.run_id} failed with {failure.kind.value} "
                f"at node {failure.node_id}: {failure.message}"
            )
            yield self._emit(state, EventKind.ERROR, failure.node_id, failure.message)
            failed = self._emit(
                state,
                EventKind.FAILED,
                failure.node_id,
                failure.message,
                failure_kind=failure.kind,
            )
            state.fail(failure)
            yield failed

    async def _traverse(
        self,
        graph: Graph,
        initial_input: str,
        state: RunState,
    ) -> AsyncIterator[FlowEvent]:
        # Per-run copies: the caller's graph is never touched.
        nodes: Dict[str, FlowNode] = dict(graph.nodes)
        outgoing: Dict[str, List[FlowEdge]] = {}
        for edge in list(graph.edges):
            outgoing.setdefault(edge.source_id, []).append(edge)

        if not initial_input or not initial_input.strip():
            raise FlowHalted(FailureKind.EMPTY_INPUT, None, "Initial input cannot be empty.")

        starts = [n for n in nodes.values() if n.kind == NodeKind.START]
        if not starts:
            raise FlowHalted(FailureKind.INVALID_GRAPH, None, "START node not found.")
        if len(starts) > 1:
            raise FlowHalted(
                FailureKind.INVALID_GRAPH,
                None,
                f"Flow must have exactly one START node, found {len(starts)}.",
            )

        yield self._emit(state, EventKind.INFO, None, f'Starting flow with input: "{initial_input}"')

        current = starts[0]
        state.payload = initial_input
        limit = self.max_steps if self.max_steps is not None else len(nodes) + self.extra_steps

        for _ in range(limit):
            state.steps += 1

            # A second visit to any node other than END means the flow loops.
            if current.id in state.visited and current.kind != NodeKind.END:
                raise FlowHalted(
                    FailureKind.CYCLE_DETECTED,
                    current.id,
                    f"Cycle detected at node '{current.description or current.id}'. Halting.",
                )
            state.enter(current.id)

            if current.kind == NodeKind.END:
                completed = self._emit(
                    state,
                    EventKind.COMPLETED,
                    current.id,
                    "Reached END node.",
                    text=state.payload,
                )
                state.complete()
                logger.info(f"Run {state.run_id} reached END after {state.steps} steps")
                yield completed
                return

            if current.kind == NodeKind.START:
                yield self._emit(state, EventKind.INFO, current.id, "START node passes on the initial input.")
            else:
                async for event in self._process_agent(current, state):
                    yield event

            edge = self._select_edge(current, outgoing.get(current.id, []), state.payload)
            if current.kind == NodeKind.CONDITIONAL_AGENT:
                yield self._emit(
                    state,
                    EventKind.INFO,
                    current.id,
                    f"Conditional agent '{current.description}' matched keyword "
                    f'"{edge.condition_keyword}".',
                )

            target = nodes.get(edge.target_id)
            if target is None:
                raise FlowHalted(
                    FailureKind.CORRUPT_GRAPH,
                    current.id,
                    f"Target node '{edge.target_id}' for edge '{edge.id}' not found. Flow corrupted.",
                )
            if target.kind == NodeKind.START:
                raise FlowHalted(
                    FailureKind.INVALID_GRAPH,
                    current.id,
                    f"Edge '{edge.id}' leads back into the START node.",
                )
            current = target

        raise FlowHalted(
            FailureKind.FLOW_TOO_LONG,
            current.id,
            f"Flow did not reach an END node within {limit} steps.",
        )

    async def _process_agent(self, node: FlowNode, state: RunState) -> AsyncIterator[FlowEvent]:
        """Invoke the agent for a node and carry its output forward."""
        label = f"{node.kind.value.replace('_', ' ')} '{node.description}'"
        logger.info(f"Executing node: {node.id} (step {state.steps})")
        yield self._emit(state, EventKind.PROCESSING, node.id, f"Processing {label}...")

        try:
            response = await self._invoke(node, state.payload)
        except Exception as e:
            if isinstance(e, asyncio.TimeoutError) and self.invocation_timeout is not None:
                reason = f"timed out after {self.invocation_timeout}s"
            else:
                reason = str(e) or type(e).__name__
            raise FlowHalted(
                FailureKind.AGENT_INVOCATION_FAILED,
                node.id,
                f"Error processing agent '{node.description}': {reason}",
            ) from e

        state.set_output(node.id, response.text, response.citations)
        yield self._emit(
            state,
            EventKind.NODE_OUTPUT,
            node.id,
            f'{label} output: "{_preview(response.text)}"',
            text=response.text,
            citations=response.citations,
        )

    async def _invoke(self, node: FlowNode, payload: str) -> AgentResponse:
        call = self.invoker.invoke(node.description, payload, node.use_search)
        if self.invocation_timeout is None:
            response = await call
        else:
            response = await asyncio.wait_for(call, timeout=self.invocation_timeout)
        if not isinstance(response, AgentResponse):
            raise AgentInvocationError(
                f"invoker returned {type(response).__name__}, expected AgentResponse"
            )
        return response

    def _select_edge(self, node: FlowNode, edges: List[FlowEdge], output: str) -> FlowEdge:
        """Pick the edge to follow out of a node."""
        if not edges:
            raise FlowHalted(
                FailureKind.DEAD_END,
                node.id,
                f"Node {node.kind.value} '{node.description}' has no outgoing connection. Flow halted.",
            )

        if node.kind == NodeKind.CONDITIONAL_AGENT:
            # Declaration order breaks ties between several matching keywords.
            for edge in edges:
                if edge.matches(output):
                    logger.debug(f"Node {node.id} matched keyword '{edge.condition_keyword}'")
                    return edge
            raise FlowHalted(
                FailureKind.NO_MATCHING_BRANCH,
                node.id,
                f"Conditional agent '{node.description}' output \"{_preview(output)}\" "
                f"did not match any path keywords. Flow halted.",
            )

        if len(edges) > 1:
            if self.branch_policy == BranchPolicy.FAIL:
                raise FlowHalted(
                    FailureKind.INVALID_GRAPH,
                    node.id,
                    f"{node.kind.value} node '{node.description}' has {len(edges)} "
                    f"outgoing connections, expected one.",
                )
            logger.warning(f"Node {node.id} has {len(edges)} outgoing edges, following the first")
        return edges[0]

    @staticmethod
    def _emit(
        state: RunState,
        kind: EventKind,
        node_id: Optional[str],
        message: str,
        **extra: Any,
    ) -> FlowEvent:
        return state.record(FlowEvent(kind=kind, node_id=node_id, message=message, **extra))


async def execute_flow(
    graph: Graph,
    initial_input: str,
    invoker: AgentInvoker,
    run_id: Optional[str] = None,
    on_event: Optional[Callable[[FlowEvent], Any]] = None,
    **engine_options: Any,
) -> FlowResult:
    """
    Convenience function to run a flow to the end.

    Args:
        graph: The flow graph
        initial_input: Text handed to the START node
        invoker: Agent invocation service
        run_id: Optional run ID
        on_event: Optional callback for each event, sync or async (for streaming)
        **engine_options: Passed to FlowEngine

    Returns:
        FlowResult
    """
    engine = FlowEngine(invoker, **engine_options)
    state = RunState(run_id=run_id) if run_id else RunState()
    start_time = time.time()

    async for event in engine.run(graph, initial_input, state):
        if on_event:
            try:
                outcome = on_event(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning(f"Event callback failed: {e}")

    return FlowResult.from_state(state, (time.time() - start_time) * 1000)
