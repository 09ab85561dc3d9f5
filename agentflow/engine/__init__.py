"""
Engine package - Flow graph model and execution.
"""

from agentflow.engine.graph import Graph, FlowNode, FlowEdge, NodeKind
from agentflow.engine.events import EventKind, FailureKind, FlowEvent, FlowFailure
from agentflow.engine.state import RunState, NodeTrace
from agentflow.engine.executor import (
    BranchPolicy,
    ExecutionStatus,
    FlowEngine,
    FlowResult,
    execute_flow,
)

__all__ = [
    "Graph",
    "FlowNode",
    "FlowEdge",
    "NodeKind",
    "EventKind",
    "FailureKind",
    "FlowEvent",
    "FlowFailure",
    "RunState",
    "NodeTrace",
    "BranchPolicy",
    "ExecutionStatus",
    "FlowEngine",
    "FlowResult",
    "execute_flow",
]
