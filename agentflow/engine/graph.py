"""
Graph Definition for the Flow Engine.

A flow is a directed graph of agent steps: a START node that receives the
user's input, agent nodes that transform it, conditional agent nodes that
branch on keywords, and an END node that collects the final output.
"""

from typing import Any, Dict, List, Optional, Set
from dataclasses import dataclass, field
from enum import Enum
import uuid


class NodeKind(str, Enum):
    """Kinds of nodes in a flow."""
    START = "START"
    END = "END"
    AGENT = "AGENT"
    CONDITIONAL_AGENT = "CONDITIONAL_AGENT"


AGENT_KINDS = (NodeKind.AGENT, NodeKind.CONDITIONAL_AGENT)


@dataclass(frozen=True)
class FlowNode:
    """
    A node in the flow graph.

    Attributes:
        id: Unique identifier for the node
        kind: START, END, AGENT or CONDITIONAL_AGENT
        description: Role/task text handed to the model (label for START/END)
        use_search: Enable search grounding (agent nodes only)
    """
    id: str
    kind: NodeKind
    description: str = ""
    use_search: bool = False

    @property
    def is_agent(self) -> bool:
        return self.kind in AGENT_KINDS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "description": self.description,
            "use_search": self.use_search,
        }


@dataclass(frozen=True)
class FlowEdge:
    """An edge connecting two nodes, optionally labelled with a branch keyword."""
    id: str
    source_id: str
    target_id: str
    condition_keyword: Optional[str] = None

    def matches(self, text: str) -> bool:
        """Case-insensitive substring match of the keyword against text."""
        if not self.condition_keyword:
            return False
        return self.condition_keyword.lower() in text.lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "condition_keyword": self.condition_keyword,
        }


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Graph:
    """
    A flow graph consisting of nodes and edges.

    The builder methods (`add_node`, `add_edge`) enforce the editor rules:
    no edges out of END or into START, and a single outgoing edge for START
    and plain AGENT nodes. Graphs built from raw data (`from_dict` or the
    constructor) skip these checks; the engine detects violations at run time.

    Attributes:
        nodes: Dict of node id -> FlowNode, in insertion order
        edges: List of edges, in declaration order
        name: Human-readable name
        description: What the flow does
    """

    nodes: Dict[str, FlowNode] = field(default_factory=dict)
    edges: List[FlowEdge] = field(default_factory=list)
    name: str = "Untitled Flow"
    description: str = ""

    def add_node(
        self,
        kind: NodeKind,
        description: str = "",
        use_search: bool = False,
        node_id: Optional[str] = None,
    ) -> FlowNode:
        """
        Add a node to the graph.

        Args:
            kind: Node kind
            description: Role text for agents, label for START/END
            use_search: Enable search grounding (ignored for START/END)
            node_id: Explicit id (generated if not provided)

        Returns:
            The created node
        """
        node_id = node_id or _new_id()
        if node_id in self.nodes:
            raise ValueError(f"Node '{node_id}' already exists in the graph")

        kind = NodeKind(kind)
        node = FlowNode(
            id=node_id,
            kind=kind,
            description=description,
            use_search=use_search if kind in AGENT_KINDS else False,
        )
        self.nodes[node_id] = node
        return node

    def add_edge(
        self,
        source_id: str,
        target_id: str,
        condition_keyword: Optional[str] = None,
        edge_id: Optional[str] = None,
    ) -> FlowEdge:
        """
        Connect two nodes.

        Args:
            source_id: Source node id
            target_id: Target node id
            condition_keyword: Branch keyword (conditional sources only)
            edge_id: Explicit id (generated if not provided)

        Returns:
            The created edge
        """
        source = self.nodes.get(source_id)
        target = self.nodes.get(target_id)
        if source is None:
            raise ValueError(f"Source node '{source_id}' not found in graph")
        if target is None:
            raise ValueError(f"Target node '{target_id}' not found in graph")
        if source_id == target_id:
            raise ValueError(f"Node '{source_id}' cannot connect to itself")
        if source.kind == NodeKind.END:
            raise ValueError("END nodes cannot have outgoing connections")
        if target.kind == NodeKind.START:
            raise ValueError("START nodes cannot have incoming connections")
        if source.kind in (NodeKind.START, NodeKind.AGENT) and self.outgoing_edges(source_id):
            raise ValueError(
                f"{source.kind.value} nodes can only have one outgoing connection. "
                f"Delete the existing one first."
            )

        edge = FlowEdge(
            id=edge_id or _new_id(),
            source_id=source_id,
            target_id=target_id,
            condition_keyword=condition_keyword or None,
        )
        self.edges.append(edge)
        return edge

    def remove_node(self, node_id: str) -> None:
        """Remove a node together with every edge touching it."""
        if node_id not in self.nodes:
            raise ValueError(f"Node '{node_id}' not found in graph")
        del self.nodes[node_id]
        self.edges = [
            e for e in self.edges
            if e.source_id != node_id and e.target_id != node_id
        ]

    def remove_edge(self, edge_id: str) -> None:
        """Remove a single edge."""
        remaining = [e for e in self.edges if e.id != edge_id]
        if len(remaining) == len(self.edges):
            raise ValueError(f"Edge '{edge_id}' not found in graph")
        self.edges = remaining

    def nodes_of_kind(self, kind: NodeKind) -> List[FlowNode]:
        return [n for n in self.nodes.values() if n.kind == kind]

    def outgoing_edges(self, node_id: str) -> List[FlowEdge]:
        """Outgoing edges of a node, in declaration order."""
        return [e for e in self.edges if e.source_id == node_id]

    def validate(self) -> List[str]:
        """
        Lint the graph structure.

        The engine does not rely on this; it is meant for editors that want
        to warn before running.

        Returns:
            List of problems (empty if none found)
        """
        errors = []

        starts = self.nodes_of_kind(NodeKind.START)
        if not starts:
            errors.append("Graph must have a START node")
        elif len(starts) > 1:
            errors.append(f"Graph must have exactly one START node, found {len(starts)}")

        if not self.nodes_of_kind(NodeKind.END):
            errors.append("Graph must have an END node")

        for edge in self.edges:
            source = self.nodes.get(edge.source_id)
            target = self.nodes.get(edge.target_id)
            if source is None:
                errors.append(f"Edge '{edge.id}' references missing source '{edge.source_id}'")
            elif source.kind == NodeKind.END:
                errors.append(f"Edge '{edge.id}' leaves END node '{source.id}'")
            elif source.kind == NodeKind.CONDITIONAL_AGENT and not edge.condition_keyword:
                errors.append(f"Conditional edge '{edge.id}' has no keyword and will never match")
            if target is None:
                errors.append(f"Edge '{edge.id}' references missing target '{edge.target_id}'")
            elif target.kind == NodeKind.START:
                errors.append(f"Edge '{edge.id}' enters START node '{target.id}'")

        for node in self.nodes.values():
            if node.kind in (NodeKind.START, NodeKind.AGENT):
                count = len(self.outgoing_edges(node.id))
                if count > 1:
                    errors.append(
                        f"{node.kind.value} node '{node.id}' has {count} outgoing edges, expected one"
                    )

        if len(starts) == 1:
            orphans = set(self.nodes) - self._get_reachable_nodes(starts[0].id)
            if orphans:
                errors.append(f"Orphan nodes (not reachable): {sorted(orphans)}")

        return errors

    def _get_reachable_nodes(self, start_id: str) -> Set[str]:
        """Get all nodes reachable from the given node."""
        reachable = set()
        to_visit = [start_id]

        while to_visit:
            node_id = to_visit.pop()
            if node_id in reachable or node_id not in self.nodes:
                continue
            reachable.add(node_id)
            to_visit.extend(e.target_id for e in self.outgoing_edges(node_id))

        return reachable

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the graph to a dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "nodes": [node.to_dict() for node in self.nodes.values()],
            "edges": [edge.to_dict() for edge in self.edges],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Graph":
        """
        Build a graph from raw data without applying the editor rules.

        Duplicate node ids and unknown node kinds still raise ValueError,
        since they cannot be represented at all.
        """
        graph = cls(
            name=data.get("name", "Untitled Flow"),
            description=data.get("description", ""),
        )
        for raw in data.get("nodes", []):
            node_id = raw.get("id") or _new_id()
            if node_id in graph.nodes:
                raise ValueError(f"Node '{node_id}' already exists in the graph")
            try:
                kind = NodeKind(raw["kind"])
            except (KeyError, ValueError):
                raise ValueError(f"Node '{node_id}' has invalid kind {raw.get('kind')!r}")
            graph.nodes[node_id] = FlowNode(
                id=node_id,
                kind=kind,
                description=raw.get("description", ""),
                use_search=bool(raw.get("use_search", False)) and kind in AGENT_KINDS,
            )
        for raw in data.get("edges", []):
            graph.edges.append(FlowEdge(
                id=raw.get("id") or _new_id(),
                source_id=raw["source_id"],
                target_id=raw["target_id"],
                condition_keyword=raw.get("condition_keyword") or None,
            ))
        return graph

    def to_mermaid(self) -> str:
        """Generate a Mermaid diagram of the graph."""
        lines = ["graph TD"]
        aliases = {node_id: f"n{i}" for i, node_id in enumerate(self.nodes)}

        for node_id, node in self.nodes.items():
            label = (node.description or node.kind.value).replace('"', "'")
            alias = aliases[node_id]
            if node.kind in (NodeKind.START, NodeKind.END):
                lines.append(f'    {alias}(("{label}"))')
            elif node.kind == NodeKind.CONDITIONAL_AGENT:
                lines.append(f'    {alias}{{"{label}"}}')
            else:
                lines.append(f'    {alias}["{label}"]')

        for edge in self.edges:
            if edge.source_id not in aliases or edge.target_id not in aliases:
                continue
            source = aliases[edge.source_id]
            target = aliases[edge.target_id]
            if edge.condition_keyword:
                lines.append(f"    {source} -->|{edge.condition_keyword}| {target}")
            else:
                lines.append(f"    {source} --> {target}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"Graph(name='{self.name}', nodes={len(self.nodes)}, "
            f"edges={len(self.edges)})"
        )
