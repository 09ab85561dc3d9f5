"""
Tests for the Gemini agent invoker and the flow templates.
"""

import json

import httpx
import pytest

from agentflow.agents import AgentInvocationError, AgentInvoker, GeminiInvoker
from agentflow.agents.gemini import parse_response
from agentflow.engine.graph import NodeKind
from agentflow.workflows.templates import get_template, list_templates


def make_invoker(handler, api_key="test-key") -> GeminiInvoker:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiInvoker(
        api_key=api_key,
        model="gemini-test",
        base_url="https://gemini.test/v1beta",
        timeout=5,
        client=client,
    )


def text_payload(text, chunks=None):
    candidate = {"content": {"parts": [{"text": text}]}}
    if chunks is not None:
        candidate["groundingMetadata"] = {"groundingChunks": chunks}
    return {"candidates": [candidate]}


# ============================================================
# Gemini Invoker Tests
# ============================================================

class TestGeminiInvoker:
    """Tests for GeminiInvoker against a mocked transport."""

    def test_satisfies_protocol(self):
        """Test that the invoker can be injected into the engine."""
        assert isinstance(GeminiInvoker(api_key="k"), AgentInvoker)

    @pytest.mark.asyncio
    async def test_request_shape(self):
        """Test endpoint, headers and body of the request."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get("x-goog-api-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=text_payload("done"))

        response = await make_invoker(handler).invoke("Summarize", "long text")

        assert response.text == "done"
        assert response.citations == []
        assert seen["url"] == "https://gemini.test/v1beta/models/gemini-test:generateContent"
        assert seen["key"] == "test-key"

        body = seen["body"]
        assert '"Summarize"' in body["systemInstruction"]["parts"][0]["text"]
        assert body["contents"][0]["parts"][0]["text"] == 'Input to process: "long text"'
        assert "tools" not in body

    @pytest.mark.asyncio
    async def test_search_and_citations(self):
        """Test that search attaches the tool and returns citations."""
        seen = {}
        chunks = [
            {"web": {"uri": "https://example.com/a", "title": "A"}},
            {"web": {"uri": "https://example.com/b"}},
            {"retrievedContext": {"uri": "ignored"}},
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=text_payload("grounded", chunks))

        response = await make_invoker(handler).invoke("Research", "topic", use_search=True)

        assert seen["body"]["tools"] == [{"google_search": {}}]
        assert [c.uri for c in response.citations] == ["https://example.com/a", "https://example.com/b"]
        assert response.citations[0].title == "A"
        assert response.citations[1].title == ""

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        """Test that no request is made without a key."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("request should not be sent")

        with pytest.raises(AgentInvocationError, match="API key"):
            await make_invoker(handler, api_key="").invoke("role", "text")

    @pytest.mark.asyncio
    async def test_error_status(self):
        """Test that API errors carry the service message."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": {"code": 429, "message": "Quota exceeded"}})

        with pytest.raises(AgentInvocationError, match="Quota exceeded"):
            await make_invoker(handler).invoke("role", "text")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        """Test that connection failures become invocation errors."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AgentInvocationError, match="Gemini API Error"):
            await make_invoker(handler).invoke("role", "text")

    @pytest.mark.asyncio
    async def test_blocked_prompt(self):
        """Test a response without candidates."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})

        with pytest.raises(AgentInvocationError, match="SAFETY"):
            await make_invoker(handler).invoke("role", "text")


class TestParseResponse:
    """Tests for response parsing."""

    def test_joins_parts(self):
        """Test that multi-part text is concatenated."""
        payload = {"candidates": [{"content": {"parts": [{"text": "Hello, "}, {"text": "world"}]}}]}
        assert parse_response(payload).text == "Hello, world"

    def test_empty_text(self):
        """Test a candidate without text."""
        payload = {"candidates": [{"content": {"parts": []}, "finishReason": "MAX_TOKENS"}]}
        with pytest.raises(AgentInvocationError, match="MAX_TOKENS"):
            parse_response(payload)

    def test_citations_only_with_search(self):
        """Test that grounding is ignored when search was off."""
        payload = text_payload("x", [{"web": {"uri": "https://example.com"}}])
        assert parse_response(payload, use_search=False).citations == []


# ============================================================
# Template Tests
# ============================================================

class TestTemplates:
    """Tests for the built-in flow templates."""

    def test_list(self):
        """Test the template names."""
        assert list_templates() == ["default", "triage"]

    def test_default_flow(self):
        """Test the starter flow."""
        graph = get_template("default")

        assert len(graph.nodes_of_kind(NodeKind.START)) == 1
        assert len(graph.nodes_of_kind(NodeKind.END)) == 1
        assert graph.edges == []

    def test_triage_flow_is_valid(self):
        """Test that the triage example passes lint."""
        assert get_template("triage").validate() == []

    def test_fresh_copies(self):
        """Test that each call builds an independent graph."""
        first = get_template("triage")
        first.remove_node("general")
        assert "general" in get_template("triage").nodes

    def test_unknown_template(self):
        """Test an unknown template name."""
        with pytest.raises(KeyError):
            get_template("missing")
