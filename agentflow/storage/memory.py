"""
In-Memory Run Storage for AgentFlow.

Keeps a record of every run started through the API so clients can poll
its progress and read its event log. Graphs themselves are never stored;
they travel inline with each run request.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
import asyncio
from dataclasses import dataclass, field

from agentflow.config import settings
from agentflow.engine.events import FlowEvent
from agentflow.engine.executor import ExecutionStatus, FlowResult


@dataclass
class StoredRun:
    """A stored flow run."""
    run_id: str
    graph_name: str
    input: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    current_node: Optional[str] = None
    events: List[Dict[str, Any]] = field(default_factory=list)
    output: Optional[str] = None
    failure: Optional[Dict[str, Any]] = None
    node_traces: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "graph_name": self.graph_name,
            "input": self.input,
            "status": self.status.value,
            "current_node": self.current_node,
            "events": self.events,
            "output": self.output,
            "failure": self.failure,
            "node_traces": self.node_traces,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class RunStorage:
    """
    Lock-guarded in-memory storage for flow runs.

    Stores run progress, allowing real-time updates and queries
    for ongoing and finished runs.
    """

    def __init__(self, max_runs: Optional[int] = None):
        """
        Args:
            max_runs: Keep at most this many runs; the oldest finished runs
                are evicted first. Unbounded when None.
        """
        self._runs: Dict[str, StoredRun] = {}
        self._lock = asyncio.Lock()
        self.max_runs = max_runs

    async def create(self, run_id: str, graph_name: str, input: str) -> StoredRun:
        """
        Create a new run record.

        Args:
            run_id: Unique run identifier
            graph_name: Name of the flow being run
            input: Initial input text

        Returns:
            The stored run
        """
        async with self._lock:
            stored = StoredRun(run_id=run_id, graph_name=graph_name, input=input)
            self._runs[run_id] = stored
            self._evict()
            return stored

    async def get(self, run_id: str) -> Optional[StoredRun]:
        """Get a run by ID."""
        async with self._lock:
            return self._runs.get(run_id)

    async def add_event(self, run_id: str, event: FlowEvent) -> Optional[StoredRun]:
        """Append an event to a running run's log."""
        async with self._lock:
            stored = self._runs.get(run_id)
            if stored is None:
                return None
            stored.events.append(event.to_dict())
            stored.status = ExecutionStatus.RUNNING
            if event.node_id is not None:
                stored.current_node = event.node_id
            return stored

    async def finish(self, run_id: str, result: FlowResult) -> Optional[StoredRun]:
        """Record the final result of a run."""
        async with self._lock:
            stored = self._runs.get(run_id)
            if stored is None:
                return None
            stored.status = result.status
            stored.output = result.output
            stored.failure = result.failure.model_dump(mode="json") if result.failure else None
            stored.events = [e.to_dict() for e in result.events]
            stored.node_traces = {
                node_id: trace.model_dump(mode="json")
                for node_id, trace in result.node_traces.items()
            }
            stored.completed_at = result.completed_at or datetime.now()
            return stored

    async def list_all(self) -> List[StoredRun]:
        """List all runs."""
        async with self._lock:
            return list(self._runs.values())

    async def delete(self, run_id: str) -> bool:
        """Delete a run."""
        async with self._lock:
            if run_id in self._runs:
                del self._runs[run_id]
                return True
            return False

    def _evict(self) -> None:
        if self.max_runs is None:
            return
        # Insertion order is creation order; runs still in progress are kept.
        finished = [run_id for run_id, run in self._runs.items() if run.completed_at is not None]
        for run_id in finished[: max(0, len(self._runs) - self.max_runs)]:
            del self._runs[run_id]

    def __len__(self) -> int:
        return len(self._runs)


# Global storage instance
run_storage = RunStorage(max_runs=settings.MAX_STORED_RUNS)
