"""
Flow Templates.

Ready-made graphs an editor can start from:
1. default - an empty canvas with just START and END
2. triage  - classify a question, then route it to a specialist agent
"""

from typing import Callable, Dict, List
import logging

from agentflow.engine.graph import Graph, NodeKind


logger = logging.getLogger(__name__)


# ============================================================
# Template Factories
# ============================================================

def create_default_flow() -> Graph:
    """
    Create the starting flow of a fresh canvas.

    Only START and END exist; the user wires agents in between.
    """
    graph = Graph(name="New Flow", description="Empty flow with a START and an END node.")
    graph.add_node(NodeKind.START, description="Workflow Start")
    graph.add_node(NodeKind.END, description="Workflow End")
    return graph


def create_triage_flow() -> Graph:
    """
    Create a question triage flow.

    Workflow flow:
    ```
    START → classify ─┬─→ technical → END   (output contains "TECHNICAL")
                      │
                      └─→ general   → END   (output contains "GENERAL")
    ```

    Returns:
        Configured Graph instance
    """
    graph = Graph(
        name="Question Triage",
        description=(
            "Classifies the incoming question and hands it to a technical "
            "or a general-purpose agent."
        ),
    )

    start = graph.add_node(NodeKind.START, description="Workflow Start", node_id="start")
    classify = graph.add_node(
        NodeKind.CONDITIONAL_AGENT,
        description=(
            "Classify the question. Answer with exactly one word: TECHNICAL if it is "
            "about software, hardware or engineering, GENERAL otherwise."
        ),
        node_id="classify",
    )
    technical = graph.add_node(
        NodeKind.AGENT,
        description="You are a senior engineer. Answer the technical question precisely.",
        node_id="technical",
    )
    general = graph.add_node(
        NodeKind.AGENT,
        description="Answer the question in plain language, citing current sources.",
        use_search=True,
        node_id="general",
    )
    end = graph.add_node(NodeKind.END, description="Workflow End", node_id="end")

    graph.add_edge(start.id, classify.id)
    graph.add_edge(classify.id, technical.id, condition_keyword="TECHNICAL")
    graph.add_edge(classify.id, general.id, condition_keyword="GENERAL")
    graph.add_edge(technical.id, end.id)
    graph.add_edge(general.id, end.id)

    return graph


# ============================================================
# Registry
# ============================================================

_templates: Dict[str, Callable[[], Graph]] = {
    "default": create_default_flow,
    "triage": create_triage_flow,
}


def list_templates() -> List[str]:
    """Names of all available templates."""
    return list(_templates)


def get_template(name: str) -> Graph:
    """
    Build a fresh copy of a template.

    Raises:
        KeyError: If no template has that name
    """
    factory = _templates[name]
    logger.debug(f"Building template: {name}")
    return factory()
