"""
Shared FastAPI dependencies.

Routes receive their agent invoker through `get_invoker`, so tests can swap
in a stub with `app.dependency_overrides[get_invoker]`.
"""

from typing import Any, Dict, Optional

from agentflow.agents import AgentInvoker, GeminiInvoker
from agentflow.config import settings
from agentflow.engine.executor import BranchPolicy


def get_invoker() -> AgentInvoker:
    """Agent invoker used for runs started through the API."""
    return GeminiInvoker()


def engine_options(branch_policy: Optional[BranchPolicy] = None) -> Dict[str, Any]:
    """FlowEngine keyword arguments built from the settings."""
    return {
        "branch_policy": branch_policy or BranchPolicy(settings.BRANCH_POLICY),
        "extra_steps": settings.EXTRA_STEPS,
        "invocation_timeout": settings.INVOCATION_TIMEOUT,
    }
