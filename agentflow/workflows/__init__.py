"""
Workflows package - Ready-made flow templates.
"""

from agentflow.workflows.templates import (
    create_default_flow,
    create_triage_flow,
    get_template,
    list_templates,
)

__all__ = [
    "create_default_flow",
    "create_triage_flow",
    "get_template",
    "list_templates",
]
