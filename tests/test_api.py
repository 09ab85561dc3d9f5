"""
Tests for the FastAPI endpoints.
"""

import pytest
from fastapi import WebSocketDisconnect
from pydantic import ValidationError
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport

from agentflow.agents.base import AgentInvocationError, AgentResponse
from agentflow.api.dependencies import get_invoker
from agentflow.api.routes.websocket import websocket_run
from agentflow.config import Settings
from agentflow.engine.executor import ExecutionStatus, FlowResult
from agentflow.main import app
from agentflow.storage.memory import RunStorage, run_storage


# ============================================================
# Fixtures
# ============================================================

class ScriptedInvoker:
    """Answers each role with a fixed text, or echoes the input."""

    def __init__(self, responses=None, errors=None):
        self.responses = responses or {}
        self.errors = errors or {}

    async def invoke(self, role, input_text, use_search=False):
        if role in self.errors:
            raise self.errors[role]
        return AgentResponse(text=self.responses.get(role, input_text))


@pytest.fixture
def use_invoker():
    """Swap the Gemini invoker for a scripted one."""
    def install(invoker):
        app.dependency_overrides[get_invoker] = lambda: invoker
        return invoker

    yield install
    app.dependency_overrides.pop(get_invoker, None)


def linear_flow():
    return {
        "name": "Shout",
        "nodes": [
            {"id": "start", "kind": "START", "description": "Workflow Start"},
            {"id": "shout", "kind": "AGENT", "description": "Uppercase the text"},
            {"id": "end", "kind": "END", "description": "Workflow End"},
        ],
        "edges": [
            {"source_id": "start", "target_id": "shout"},
            {"source_id": "shout", "target_id": "end"},
        ],
    }


def branching_flow():
    return {
        "name": "Decide",
        "nodes": [
            {"id": "start", "kind": "START"},
            {"id": "cond", "kind": "CONDITIONAL_AGENT", "description": "decide"},
            {"id": "yes", "kind": "END"},
            {"id": "no", "kind": "END"},
        ],
        "edges": [
            {"source_id": "start", "target_id": "cond"},
            {"source_id": "cond", "target_id": "yes", "condition_keyword": "YES"},
            {"source_id": "cond", "target_id": "no", "condition_keyword": "NO"},
        ],
    }


# ============================================================
# Sync Test Client (for simple tests)
# ============================================================

client = TestClient(app)


class TestRootEndpoints:
    """Tests for root endpoints."""

    def test_root(self):
        """Test root endpoint."""
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert "name" in data
        assert "version" in data
        assert data["endpoints"]["run"] == "/flow/run"

    def test_health(self):
        """Test health endpoint."""
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert "runs_count" in data


class TestGraphEndpoints:
    """Tests for validate and mermaid endpoints."""

    def test_validate_valid_flow(self):
        """Test linting a well-formed flow."""
        response = client.post("/flow/validate", json=linear_flow())
        assert response.status_code == 200
        assert response.json() == {"valid": True, "errors": []}

    def test_validate_broken_flow(self):
        """Test linting a flow with problems."""
        flow = linear_flow()
        flow["nodes"] = [n for n in flow["nodes"] if n["kind"] != "END"]

        response = client.post("/flow/validate", json=flow)
        assert response.status_code == 200

        data = response.json()
        assert data["valid"] is False
        assert any("END" in e for e in data["errors"])

    def test_duplicate_node_ids(self):
        """Test that duplicate node ids are a bad request."""
        flow = linear_flow()
        flow["nodes"].append({"id": "shout", "kind": "AGENT"})

        response = client.post("/flow/validate", json=flow)
        assert response.status_code == 400

    def test_unknown_node_kind(self):
        """Test that unknown node kinds fail request validation."""
        flow = linear_flow()
        flow["nodes"][1]["kind"] = "ROBOT"

        response = client.post("/flow/validate", json=flow)
        assert response.status_code == 422

    def test_mermaid(self):
        """Test Mermaid rendering."""
        response = client.post("/flow/mermaid", json=branching_flow())
        assert response.status_code == 200

        mermaid = response.json()["mermaid"]
        assert mermaid.startswith("graph TD")
        assert "|YES|" in mermaid


class TestTemplateEndpoints:
    """Tests for template endpoints."""

    def test_list_templates(self):
        """Test listing templates."""
        response = client.get("/flow/templates")
        assert response.status_code == 200

        data = response.json()
        assert "default" in data["templates"]
        assert "triage" in data["templates"]
        assert data["total"] == len(data["templates"])

    def test_get_template(self):
        """Test fetching a template as a graph definition."""
        response = client.get("/flow/templates/triage")
        assert response.status_code == 200

        data = response.json()
        kinds = [n["kind"] for n in data["nodes"]]
        assert "CONDITIONAL_AGENT" in kinds

        lint = client.post("/flow/validate", json=data)
        assert lint.json()["valid"] is True

    def test_get_nonexistent_template(self):
        """Test fetching a template that doesn't exist."""
        response = client.get("/flow/templates/nonexistent")
        assert response.status_code == 404


class TestRunEndpoints:
    """Tests for running flows over the sync client."""

    def test_run_flow(self, use_invoker):
        """Test a completed run."""
        use_invoker(ScriptedInvoker(responses={"Uppercase the text": "HELLO"}))

        response = client.post("/flow/run", json={"graph": linear_flow(), "input": "hello"})
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "completed"
        assert data["output"] == "HELLO"
        assert data["failure"] is None
        assert data["events"][-1]["kind"] == "completed"
        assert data["node_traces"]["shout"]["input"] == "hello"

    def test_failed_run_is_not_an_http_error(self, use_invoker):
        """Test that a failed run is reported in the body."""
        use_invoker(ScriptedInvoker(responses={"decide": "MAYBE"}))

        response = client.post("/flow/run", json={"graph": branching_flow(), "input": "q"})
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "failed"
        assert data["failure"]["kind"] == "NoMatchingBranch"
        assert data["failure"]["node_id"] == "cond"
        assert [e["kind"] for e in data["events"][-2:]] == ["error", "failed"]

    def test_agent_error(self, use_invoker):
        """Test an agent invocation failure."""
        use_invoker(ScriptedInvoker(errors={"Uppercase the text": AgentInvocationError("Gemini API Error: quota")}))

        response = client.post("/flow/run", json={"graph": linear_flow(), "input": "hello"})
        data = response.json()

        assert data["failure"]["kind"] == "AgentInvocationFailed"
        assert "quota" in data["failure"]["message"]

    def test_branch_policy_override(self, use_invoker):
        """Test the per-request branch policy."""
        use_invoker(ScriptedInvoker())
        flow = linear_flow()
        flow["nodes"].append({"id": "other_end", "kind": "END"})
        flow["edges"].append({"source_id": "shout", "target_id": "other_end"})

        strict = client.post("/flow/run", json={"graph": flow, "input": "x"}).json()
        lenient = client.post(
            "/flow/run", json={"graph": flow, "input": "x", "branch_policy": "first"}
        ).json()

        assert strict["failure"]["kind"] == "InvalidGraph"
        assert lenient["status"] == "completed"

    def test_run_record(self, use_invoker):
        """Test reading back a finished run."""
        use_invoker(ScriptedInvoker())
        run_id = client.post("/flow/run", json={"graph": linear_flow(), "input": "hi"}).json()["run_id"]

        response = client.get(f"/flow/runs/{run_id}")
        assert response.status_code == 200

        data = response.json()
        assert data["graph_name"] == "Shout"
        assert data["input"] == "hi"
        assert data["status"] == "completed"
        assert data["current_node"] == "end"
        assert data["output"] == "hi"
        assert data["events"][-1]["kind"] == "completed"

        listing = client.get("/flow/runs").json()
        assert run_id in [r["run_id"] for r in listing["runs"]]

    def test_delete_run(self, use_invoker):
        """Test deleting a run record."""
        use_invoker(ScriptedInvoker())
        run_id = client.post("/flow/run", json={"graph": linear_flow(), "input": "hi"}).json()["run_id"]

        response = client.delete(f"/flow/runs/{run_id}")
        assert response.status_code == 204

        assert client.get(f"/flow/runs/{run_id}").status_code == 404
        assert client.delete(f"/flow/runs/{run_id}").status_code == 404

    def test_get_nonexistent_run(self):
        """Test fetching a run that doesn't exist."""
        response = client.get("/flow/runs/nonexistent")
        assert response.status_code == 404


# ============================================================
# WebSocket Tests
# ============================================================

class TestWebSocket:
    """Tests for the streaming endpoint."""

    def test_stream_run(self, use_invoker):
        """Test that events are streamed in order."""
        use_invoker(ScriptedInvoker())

        with client.websocket_connect("/ws/run") as ws:
            ws.send_json({"action": "start", "graph": linear_flow(), "input": "hello"})

            started = ws.receive_json()
            assert started["type"] == "started"
            run_id = started["run_id"]

            events = []
            while True:
                message = ws.receive_json()
                if message["type"] == "completed":
                    break
                assert message["type"] == "event"
                events.append(message["event"])

        assert [e["kind"] for e in events] == [
            "info", "info", "processing", "node_output", "completed",
        ]
        assert message["status"] == "completed"
        assert message["output"] == "hello"
        assert client.get(f"/flow/runs/{run_id}").json()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_disconnect_abandons_run(self):
        """Test that a client leaving mid-run stops the flow and records it as cancelled."""
        class LeavingSocket:
            """Socket whose client goes away once an agent starts processing."""

            def __init__(self, message):
                self.message = message
                self.sent = []
                self.closed = False

            async def accept(self):
                pass

            async def receive_json(self):
                return self.message

            async def send_json(self, data):
                if data.get("type") == "event" and data["event"]["kind"] == "processing":
                    raise WebSocketDisconnect(code=1001)
                self.sent.append(data)

            async def close(self):
                self.closed = True

        calls = []

        class RecordingInvoker:
            async def invoke(self, role, input_text, use_search=False):
                calls.append(role)
                return AgentResponse(text=input_text)

        socket = LeavingSocket({"action": "start", "graph": linear_flow(), "input": "hello"})
        await websocket_run(socket, RecordingInvoker())

        run_id = socket.sent[0]["run_id"]
        stored = await run_storage.get(run_id)

        assert calls == []
        assert stored.status == ExecutionStatus.CANCELLED
        assert stored.completed_at is not None
        assert socket.closed

    def test_wrong_action(self):
        """Test that the first message must start a run."""
        with client.websocket_connect("/ws/run") as ws:
            ws.send_json({"action": "stop"})
            message = ws.receive_json()

        assert message["type"] == "error"

    def test_invalid_request(self):
        """Test that a malformed request is reported."""
        with client.websocket_connect("/ws/run") as ws:
            ws.send_json({"action": "start", "input": "no graph"})
            message = ws.receive_json()

        assert message["type"] == "error"


# ============================================================
# Storage and Settings Tests
# ============================================================

class TestRunStorage:
    """Tests for the bounded run store."""

    @pytest.mark.asyncio
    async def test_evicts_oldest_finished_runs(self):
        """Test that the store drops finished runs once it is full."""
        storage = RunStorage(max_runs=2)
        await storage.create("a", "flow", "x")
        await storage.finish("a", FlowResult(run_id="a", status=ExecutionStatus.COMPLETED, output="x"))
        await storage.create("b", "flow", "y")
        await storage.create("c", "flow", "z")

        assert await storage.get("a") is None
        assert await storage.get("b") is not None
        assert await storage.get("c") is not None
        assert len(storage) == 2

    @pytest.mark.asyncio
    async def test_keeps_runs_in_progress(self):
        """Test that unfinished runs are never evicted."""
        storage = RunStorage(max_runs=1)
        await storage.create("a", "flow", "x")
        await storage.create("b", "flow", "y")

        assert len(storage) == 2

    @pytest.mark.asyncio
    async def test_delete(self):
        """Test deleting records."""
        storage = RunStorage()
        await storage.create("a", "flow", "x")

        assert await storage.delete("a") is True
        assert await storage.delete("a") is False


class TestSettings:
    """Tests for settings validation."""

    def test_unknown_branch_policy_rejected(self):
        """Test that a bad BRANCH_POLICY fails at load time."""
        with pytest.raises(ValidationError):
            Settings(BRANCH_POLICY="pick")

    def test_branch_policy_accepted(self):
        """Test the supported branch policies."""
        assert Settings(BRANCH_POLICY="first").BRANCH_POLICY == "first"


# ============================================================
# Async Tests (for async endpoints)
# ============================================================

@pytest.mark.asyncio
async def test_run_flow_async(use_invoker):
    """Test running a branching flow over the async client."""
    use_invoker(ScriptedInvoker(responses={"decide": "answer: yes"}))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.post("/flow/run", json={"graph": branching_flow(), "input": "q"})
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "completed"
        assert data["events"][-1]["node_id"] == "yes"


@pytest.mark.asyncio
async def test_empty_input_async(use_invoker):
    """Test that a blank input fails the run."""
    use_invoker(ScriptedInvoker())
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.post("/flow/run", json={"graph": linear_flow(), "input": "  "})

        data = response.json()
        assert data["status"] == "failed"
        assert data["failure"]["kind"] == "EmptyInput"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
