"""
Agent Invocation Interface.

The engine talks to language models only through an `AgentInvoker`,
passed in explicitly so tests and alternative backends can substitute
their own implementation.
"""

from typing import List, Protocol, runtime_checkable
from pydantic import BaseModel, Field


class Citation(BaseModel):
    """A web source the model grounded its answer on."""
    uri: str
    title: str = ""


class AgentResponse(BaseModel):
    """Text generated by an agent plus any grounding sources."""
    text: str
    citations: List[Citation] = Field(default_factory=list)


class AgentInvocationError(Exception):
    """Raised when the model backend cannot produce a response."""


@runtime_checkable
class AgentInvoker(Protocol):
    """
    Anything that can run an agent step.

    Implementations raise on network, auth or model errors; the engine
    turns any exception into an AGENT_INVOCATION_FAILED failure.
    """

    async def invoke(self, role: str, input_text: str, use_search: bool = False) -> AgentResponse:
        ...
