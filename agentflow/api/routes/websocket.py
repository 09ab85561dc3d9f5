"""
WebSocket Routes for Real-time Run Streaming.

Streams engine events to the client as they are produced, so a log panel
or canvas can highlight each node while the flow runs. Disconnecting
abandons the run between steps.
"""

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from typing import AsyncGenerator, Optional
from uuid import uuid4
import logging
import time

from agentflow.agents import AgentInvoker
from agentflow.api.dependencies import engine_options, get_invoker
from agentflow.api.schemas import FlowRunRequest
from agentflow.engine.events import FlowEvent
from agentflow.engine.executor import FlowEngine, FlowResult
from agentflow.engine.state import RunState
from agentflow.storage.memory import run_storage


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])


@router.websocket("/ws/run")
async def websocket_run(
    websocket: WebSocket,
    invoker: AgentInvoker = Depends(get_invoker),
):
    """
    WebSocket endpoint for real-time flow execution.

    Connect to this endpoint and send the flow with its input as JSON.
    You'll receive one message per engine event while the flow runs.

    Message format (client -> server):
    ```json
    {"action": "start", "graph": {"nodes": [...], "edges": [...]}, "input": "..."}
    ```

    Message format (server -> client):
    ```json
    {"type": "event", "run_id": "...", "event": {"kind": "processing", "node_id": "...", ...}}
    ```
    """
    await websocket.accept()
    run_id = str(uuid4())
    state: Optional[RunState] = None
    stream: Optional[AsyncGenerator[FlowEvent, None]] = None
    start_time = time.time()

    try:
        data = await websocket.receive_json()

        if data.get("action") != "start":
            await websocket.send_json({
                "type": "error",
                "error": "Expected 'start' action",
            })
            return

        try:
            request = FlowRunRequest.model_validate(data)
            graph = request.graph.to_graph()
        except (ValidationError, ValueError) as e:
            await websocket.send_json({
                "type": "error",
                "error": str(e),
            })
            return

        await run_storage.create(run_id, graph.name, request.input)
        await websocket.send_json({
            "type": "started",
            "run_id": run_id,
            "graph_name": graph.name,
        })
        logger.info(f"WebSocket run started: {run_id}")

        engine = FlowEngine(invoker, **engine_options(request.branch_policy))
        state = RunState(run_id=run_id)

        stream = engine.run(graph, request.input, state)
        async for event in stream:
            await run_storage.add_event(run_id, event)
            await websocket.send_json({
                "type": "event",
                "run_id": run_id,
                "event": event.to_dict(),
            })

        result = FlowResult.from_state(state, (time.time() - start_time) * 1000)
        await run_storage.finish(run_id, result)

        await websocket.send_json({
            "type": "completed",
            **result.to_dict(),
        })

    except WebSocketDisconnect:
        logger.info(f"Client disconnected from run {run_id}")
        if stream is not None:
            await stream.aclose()
        if state is not None and not state.finished:
            # Recorded as cancelled: no terminal event was produced.
            await run_storage.finish(
                run_id, FlowResult.from_state(state, (time.time() - start_time) * 1000)
            )
    finally:
        try:
            await websocket.close()
        except RuntimeError:
            pass
