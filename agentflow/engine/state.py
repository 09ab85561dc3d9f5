"""
Run State for the Flow Engine.

Each run owns one RunState. It is mutated only by the engine's traversal
loop and frozen once the run reaches END or fails.
"""

from typing import Dict, List, Optional, Set
from pydantic import BaseModel, Field
from datetime import datetime
import uuid

from agentflow.agents.base import Citation
from agentflow.engine.events import FlowEvent, FlowFailure


class NodeTrace(BaseModel):
    """What a node received and produced during a run."""
    node_id: str
    input: Optional[str] = None
    output: Optional[str] = None
    citations: List[Citation] = Field(default_factory=list)


class RunState(BaseModel):
    """
    Mutable state of a single run.

    Attributes:
        run_id: Unique identifier of the run
        current_node: Node the traversal is at
        payload: Text currently carried from node to node
        events: Append-only event log
        visited: Ids of nodes already visited (cycle detection)
        traces: Per-node input/output, keyed by node id
        steps: Number of traversal iterations performed
        output: Final payload received by END
        failure: Classified failure, if the run failed
    """

    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    current_node: Optional[str] = None
    payload: str = ""
    events: List[FlowEvent] = Field(default_factory=list)
    visited: Set[str] = Field(default_factory=set)
    traces: Dict[str, NodeTrace] = Field(default_factory=dict)
    steps: int = 0
    output: Optional[str] = None
    failure: Optional[FlowFailure] = None
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def finished(self) -> bool:
        return self.completed_at is not None

    def record(self, event: FlowEvent) -> FlowEvent:
        """Append an event to the log."""
        self._check_open()
        self.events.append(event)
        return event

    def enter(self, node_id: str) -> None:
        """Move to a node, marking it visited and noting the payload it received."""
        self._check_open()
        self.current_node = node_id
        self.visited.add(node_id)
        self.traces[node_id] = NodeTrace(node_id=node_id, input=self.payload)

    def set_output(self, node_id: str, text: str, citations: List[Citation]) -> None:
        """Store an agent's output and carry it forward as the new payload."""
        self._check_open()
        self.payload = text
        trace = self.traces.setdefault(node_id, NodeTrace(node_id=node_id))
        trace.output = text
        trace.citations = list(citations)

    def complete(self) -> None:
        self._check_open()
        self.output = self.payload
        if self.current_node is not None:
            self.traces[self.current_node].output = self.payload
        self.completed_at = datetime.now()

    def fail(self, failure: FlowFailure) -> None:
        self._check_open()
        self.failure = failure
        self.completed_at = datetime.now()

    def _check_open(self) -> None:
        if self.finished:
            raise RuntimeError(f"Run '{self.run_id}' has already finished")
