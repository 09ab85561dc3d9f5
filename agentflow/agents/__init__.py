"""
Agents package - Language-model invocation for agent nodes.
"""

from agentflow.agents.base import AgentInvoker, AgentResponse, AgentInvocationError, Citation
from agentflow.agents.gemini import GeminiInvoker

__all__ = [
    "AgentInvoker",
    "AgentResponse",
    "AgentInvocationError",
    "Citation",
    "GeminiInvoker",
]
