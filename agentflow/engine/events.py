"""
Events and Failures emitted by the Flow Engine.

A run produces an ordered, append-only stream of events. Presentation
layers (log panels, node highlighting, output panels) subscribe to this
stream instead of the engine touching any UI state.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

from agentflow.agents.base import Citation


class EventKind(str, Enum):
    """Kinds of events in a run's log."""
    INFO = "info"
    PROCESSING = "processing"
    NODE_OUTPUT = "node_output"
    ERROR = "error"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_KINDS = (EventKind.COMPLETED, EventKind.FAILED)


class FailureKind(str, Enum):
    """Why a run stopped without reaching END."""
    INVALID_GRAPH = "InvalidGraph"
    EMPTY_INPUT = "EmptyInput"
    CYCLE_DETECTED = "CycleDetected"
    DEAD_END = "DeadEnd"
    NO_MATCHING_BRANCH = "NoMatchingBranch"
    AGENT_INVOCATION_FAILED = "AgentInvocationFailed"
    CORRUPT_GRAPH = "CorruptGraph"
    FLOW_TOO_LONG = "FlowTooLong"


class FlowFailure(BaseModel):
    """A classified failure, attached to the node where execution stopped."""
    kind: FailureKind
    node_id: Optional[str] = None
    message: str


class FlowEvent(BaseModel):
    """
    A single entry in a run's event log.

    Attributes:
        kind: What happened
        node_id: Node the event concerns (None for run-level events)
        message: Human-readable description
        text: Agent output (NODE_OUTPUT) or final output (COMPLETED)
        citations: Grounding sources returned with an agent output
        failure_kind: Classification of a FAILED event
        timestamp: When the event was emitted
    """

    kind: EventKind
    node_id: Optional[str] = None
    message: str = ""
    text: Optional[str] = None
    citations: List[Citation] = Field(default_factory=list)
    failure_kind: Optional[FailureKind] = None
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    def signature(self) -> Dict[str, Any]:
        """Event content without the timestamp, for comparing runs."""
        return self.model_dump(exclude={"timestamp"})

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
