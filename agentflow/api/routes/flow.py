"""
Flow API Routes.

Endpoints for linting, visualising and running flow graphs, and for
reading back the records of past runs.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from uuid import uuid4
import logging

from agentflow.agents import AgentInvoker
from agentflow.api.dependencies import engine_options, get_invoker
from agentflow.api.schemas import (
    ErrorResponse,
    FlowRunRequest,
    FlowRunResponse,
    GraphDefinition,
    MermaidResponse,
    RunListResponse,
    RunRecordResponse,
    TemplateListResponse,
    ValidateResponse,
)
from agentflow.engine.events import FlowEvent
from agentflow.engine.executor import execute_flow
from agentflow.engine.graph import Graph
from agentflow.storage.memory import StoredRun, run_storage
from agentflow.workflows.templates import get_template, list_templates


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/flow", tags=["Flow"])


def _build_graph(definition: GraphDefinition) -> Graph:
    try:
        return definition.to_graph()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ============================================================
# Graph Endpoints
# ============================================================

@router.post(
    "/validate",
    response_model=ValidateResponse,
    responses={400: {"model": ErrorResponse, "description": "Malformed graph"}},
)
async def validate_flow(definition: GraphDefinition) -> ValidateResponse:
    """
    Lint a flow graph.

    Reports structural problems (missing START, dangling edges, unreachable
    nodes, ...) without running anything.
    """
    graph = _build_graph(definition)
    errors = graph.validate()
    return ValidateResponse(valid=not errors, errors=errors)


@router.post(
    "/mermaid",
    response_model=MermaidResponse,
    responses={400: {"model": ErrorResponse, "description": "Malformed graph"}},
)
async def flow_mermaid(definition: GraphDefinition) -> MermaidResponse:
    """Render a flow graph as a Mermaid diagram."""
    graph = _build_graph(definition)
    return MermaidResponse(mermaid=graph.to_mermaid())


# ============================================================
# Execution Endpoints
# ============================================================

@router.post(
    "/run",
    response_model=FlowRunResponse,
    responses={400: {"model": ErrorResponse, "description": "Malformed graph"}},
)
async def run_flow(
    request: FlowRunRequest,
    invoker: AgentInvoker = Depends(get_invoker),
) -> FlowRunResponse:
    """
    Run a flow with the given input.

    A run that stops early (cycle, dead end, unmatched branch, agent error)
    is still a successful request: the response carries status `failed`
    and the classified failure, with the node where execution stopped.
    """
    graph = _build_graph(request.graph)
    run_id = str(uuid4())
    await run_storage.create(run_id, graph.name, request.input)

    async def on_event(event: FlowEvent) -> None:
        await run_storage.add_event(run_id, event)

    result = await execute_flow(
        graph,
        request.input,
        invoker,
        run_id=run_id,
        on_event=on_event,
        **engine_options(request.branch_policy),
    )
    await run_storage.finish(run_id, result)

    logger.info(f"Run {run_id} finished with status {result.status.value}")
    return FlowRunResponse.from_result(result)


# ============================================================
# Run Record Endpoints
# ============================================================

def _record_to_response(stored: StoredRun) -> RunRecordResponse:
    return RunRecordResponse.model_validate(stored.to_dict())


@router.get(
    "/runs",
    response_model=RunListResponse,
)
async def list_runs() -> RunListResponse:
    """List all recorded runs."""
    runs = [_record_to_response(stored) for stored in await run_storage.list_all()]
    return RunListResponse(runs=runs, total=len(runs))


@router.get(
    "/runs/{run_id}",
    response_model=RunRecordResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run(run_id: str) -> RunRecordResponse:
    """Get the record of a single run, including its event log."""
    stored = await run_storage.get(run_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return _record_to_response(stored)


@router.delete(
    "/runs/{run_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_run(run_id: str):
    """Delete the record of a run."""
    deleted = await run_storage.delete(run_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    logger.info(f"Deleted run: {run_id}")


# ============================================================
# Template Endpoints
# ============================================================

@router.get(
    "/templates",
    response_model=TemplateListResponse,
)
async def get_templates() -> TemplateListResponse:
    """List the names of the available flow templates."""
    names = list_templates()
    return TemplateListResponse(templates=names, total=len(names))


@router.get(
    "/templates/{name}",
    response_model=GraphDefinition,
    responses={404: {"model": ErrorResponse}},
)
async def get_template_graph(name: str) -> GraphDefinition:
    """Get a fresh copy of a flow template."""
    try:
        graph = get_template(name)
    except KeyError:
        raise HTTPException(
            status_code=404,
            detail=f"Template '{name}' not found. Available: {list_templates()}",
        )
    return GraphDefinition.from_graph(graph)
