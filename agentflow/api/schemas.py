"""
Pydantic Schemas for API Request/Response Models.

These schemas define the structure of data flowing through the API,
providing automatic validation and documentation.
"""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from agentflow.engine.events import FlowEvent, FlowFailure
from agentflow.engine.executor import BranchPolicy, ExecutionStatus, FlowResult
from agentflow.engine.graph import Graph, NodeKind
from agentflow.engine.state import NodeTrace


# ============================================================
# Graph Schemas
# ============================================================

class NodeDefinition(BaseModel):
    """Definition of a node in the flow."""
    id: str = Field(..., description="Unique id of the node")
    kind: NodeKind = Field(..., description="START, END, AGENT or CONDITIONAL_AGENT")
    description: str = Field("", description="Agent role/task, or label for START/END")
    use_search: bool = Field(False, description="Ground agent output with web search")

    class Config:
        json_schema_extra = {
            "example": {
                "id": "summarize",
                "kind": "AGENT",
                "description": "Summarize the input in two sentences.",
                "use_search": False,
            }
        }


class EdgeDefinition(BaseModel):
    """Definition of an edge between two nodes."""
    id: Optional[str] = Field(None, description="Edge id (generated if omitted)")
    source_id: str = Field(..., description="Source node id")
    target_id: str = Field(..., description="Target node id")
    condition_keyword: Optional[str] = Field(
        None,
        description="Keyword a conditional agent's output must contain to take this edge",
    )


class GraphDefinition(BaseModel):
    """A complete flow graph, submitted inline."""
    name: str = Field("Untitled Flow", description="Name of the flow")
    description: str = Field("", description="What this flow does")
    nodes: List[NodeDefinition] = Field(..., description="Nodes of the flow")
    edges: List[EdgeDefinition] = Field(default_factory=list, description="Edges in declaration order")

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Summarize",
                "nodes": [
                    {"id": "start", "kind": "START", "description": "Workflow Start"},
                    {"id": "summarize", "kind": "AGENT", "description": "Summarize the input."},
                    {"id": "end", "kind": "END", "description": "Workflow End"},
                ],
                "edges": [
                    {"source_id": "start", "target_id": "summarize"},
                    {"source_id": "summarize", "target_id": "end"},
                ],
            }
        }

    def to_graph(self) -> Graph:
        """Build an engine graph (raises ValueError on duplicate node ids)."""
        return Graph.from_dict(self.model_dump(mode="json"))

    @classmethod
    def from_graph(cls, graph: Graph) -> "GraphDefinition":
        return cls.model_validate(graph.to_dict())


class ValidateResponse(BaseModel):
    """Result of linting a graph."""
    valid: bool
    errors: List[str]


class MermaidResponse(BaseModel):
    """Mermaid diagram of a graph."""
    mermaid: str


# ============================================================
# Run Schemas
# ============================================================

class FlowRunRequest(BaseModel):
    """Request to run a flow."""
    graph: GraphDefinition = Field(..., description="The flow to run")
    input: str = Field(..., description="Initial input handed to the START node")
    branch_policy: Optional[BranchPolicy] = Field(
        None,
        description="Handling of plain nodes with several outgoing edges (defaults to server setting)",
    )


class FlowRunResponse(BaseModel):
    """Response after running a flow."""
    run_id: str = Field(..., description="Unique identifier for this run")
    status: ExecutionStatus
    output: Optional[str] = None
    failure: Optional[FlowFailure] = None
    events: List[FlowEvent]
    node_traces: Dict[str, NodeTrace]
    started_at: Optional[str]
    completed_at: Optional[str]
    total_duration_ms: Optional[float]
    steps: int

    @classmethod
    def from_result(cls, result: FlowResult) -> "FlowRunResponse":
        return cls(
            run_id=result.run_id,
            status=result.status,
            output=result.output,
            failure=result.failure,
            events=result.events,
            node_traces=result.node_traces,
            started_at=result.started_at.isoformat() if result.started_at else None,
            completed_at=result.completed_at.isoformat() if result.completed_at else None,
            total_duration_ms=result.total_duration_ms,
            steps=result.steps,
        )


class RunRecordResponse(BaseModel):
    """A stored run record."""
    run_id: str
    graph_name: str
    input: str
    status: ExecutionStatus
    current_node: Optional[str]
    events: List[FlowEvent]
    output: Optional[str]
    failure: Optional[FlowFailure]
    node_traces: Dict[str, NodeTrace]
    started_at: str
    completed_at: Optional[str]


class RunListResponse(BaseModel):
    """Response listing runs."""
    runs: List[RunRecordResponse]
    total: int


# ============================================================
# Template Schemas
# ============================================================

class TemplateListResponse(BaseModel):
    """Names of the available flow templates."""
    templates: List[str]
    total: int


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int
