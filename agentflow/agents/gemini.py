"""
Gemini Agent Invoker.

Runs an agent step against the Gemini `generateContent` REST endpoint.
The agent's role becomes the system instruction and the carried payload
the user prompt. With search enabled, the Google Search tool is attached
and the returned grounding chunks are surfaced as citations.
"""

from typing import Any, Dict, List, Optional
import logging

import httpx

from agentflow.agents.base import AgentInvocationError, AgentResponse, Citation
from agentflow.config import settings


logger = logging.getLogger(__name__)


SYSTEM_INSTRUCTION_TEMPLATE = (
    'You are an AI agent. Your defined role/task is: "{role}". '
    "Process the given input according to this role and provide a concise output."
)
USER_PROMPT_TEMPLATE = 'Input to process: "{input}"'


class GeminiInvoker:
    """
    Agent invoker backed by the Gemini API.

    Usage:
        invoker = GeminiInvoker(api_key="...")
        response = await invoker.invoke("Summarize the text", "long text...")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            api_key: Gemini API key (defaults to GEMINI_API_KEY setting)
            model: Model name (defaults to GEMINI_MODEL setting)
            base_url: API root (defaults to GEMINI_BASE_URL setting)
            timeout: Request timeout in seconds
            client: Shared httpx client; a short-lived one is used per call otherwise
        """
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.model = model or settings.GEMINI_MODEL
        self.base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.INVOCATION_TIMEOUT
        self._client = client

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def build_request(self, role: str, input_text: str, use_search: bool) -> Dict[str, Any]:
        """Build the generateContent request body."""
        body: Dict[str, Any] = {
            "systemInstruction": {
                "parts": [{"text": SYSTEM_INSTRUCTION_TEMPLATE.format(role=role)}],
            },
            "contents": [
                {"role": "user", "parts": [{"text": USER_PROMPT_TEMPLATE.format(input=input_text)}]},
            ],
        }
        # No responseMimeType here: it is not allowed together with the search tool.
        if use_search:
            body["tools"] = [{"google_search": {}}]
        return body

    async def invoke(self, role: str, input_text: str, use_search: bool = False) -> AgentResponse:
        """
        Run one agent step.

        Raises:
            AgentInvocationError: On missing key, transport errors, error
                statuses or responses without text.
        """
        if not self.api_key:
            raise AgentInvocationError(
                "Gemini API key is not configured. Set the GEMINI_API_KEY environment variable."
            )

        body = self.build_request(role, input_text, use_search)
        headers = {"x-goog-api-key": self.api_key}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.endpoint, json=body, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.endpoint, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Gemini request failed: {e!r}")
            raise AgentInvocationError(f"Gemini API Error: {e}") from e

        if response.status_code >= 400:
            message = _error_message(response)
            logger.error(f"Gemini returned {response.status_code}: {message}")
            raise AgentInvocationError(f"Gemini API Error: {message}")

        try:
            payload = response.json()
        except ValueError as e:
            raise AgentInvocationError("Gemini API Error: response was not valid JSON") from e

        return parse_response(payload, use_search)


def parse_response(payload: Dict[str, Any], use_search: bool = False) -> AgentResponse:
    """Extract text and grounding citations from a generateContent response."""
    candidates = payload.get("candidates") or []
    if not candidates:
        reason = (payload.get("promptFeedback") or {}).get("blockReason")
        detail = f"prompt blocked ({reason})" if reason else "no candidates returned"
        raise AgentInvocationError(f"Gemini API Error: {detail}")

    candidate = candidates[0]
    parts = (candidate.get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts)
    if not text:
        reason = candidate.get("finishReason", "unknown")
        raise AgentInvocationError(f"Gemini API Error: empty response (finishReason={reason})")

    citations: List[Citation] = []
    if use_search:
        chunks = (candidate.get("groundingMetadata") or {}).get("groundingChunks") or []
        for chunk in chunks:
            web = chunk.get("web")
            if web and web.get("uri"):
                citations.append(Citation(uri=web["uri"], title=web.get("title", "")))

    return AgentResponse(text=text, citations=citations)


def _error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error") or {}
        return error.get("message") or f"HTTP {response.status_code}"
    except ValueError:
        return f"HTTP {response.status_code}"
