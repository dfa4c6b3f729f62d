"""
Mermaid flowchart rendering of graph IR.

Lives outside the core: it only consumes the neutral IR, so any other diagram
generator can be swapped in.
"""

import re
from typing import Optional

from arazzo_workbench.core.graph import EdgeKind, NodeKind
from arazzo_workbench.core.ir import GraphIR, IRNode

DIRECTIONS = ("TB", "LR", "BT", "RL")

CLASS_DEFS: dict[str, str] = {
    "inputNode": "fill:#d1fae5,stroke:#10b981,stroke-width:2px,color:#065f46",
    "stepNode": "fill:#e0e7ff,stroke:#6366f1,stroke-width:2px,color:#3730a3",
    "outputNode": "fill:#fef3c7,stroke:#f59e0b,stroke-width:2px,color:#92400e",
    "errorNode": "fill:#fee2e2,stroke:#ef4444,stroke-width:2px,color:#991b1b",
}

# Fixed Mermaid ids for synthetic nodes
SYNTHETIC_IDS = {
    NodeKind.INPUT: "INPUT",
    NodeKind.OUTPUT: "OUTPUT",
    NodeKind.ERROR_SINK: "END_ERROR",
}

UNSAFE_ID_PATTERN = re.compile(r"[^a-zA-Z0-9_]")

# Lowercase words Mermaid treats as keywords in flowcharts
RESERVED_WORDS = frozenset({"end", "graph", "flowchart", "subgraph", "class", "classdef", "style", "click"})


def sanitize_id(value: str) -> str:
    return UNSAFE_ID_PATTERN.sub("_", value)


def sanitize_label(label: str) -> str:
    """Replace characters that break Mermaid label syntax."""
    text = (
        label.replace('"', "'")
        .replace("$", "")
        .replace("[", "(")
        .replace("]", ")")
    )
    text = re.sub(r"[<>]", "", text)
    text = re.sub(r"[:;]", " ", text)
    text = text.replace("||", " OR ").replace("&&", " AND ").replace("|", "/")
    return text.replace("\n", " ").strip()


class MermaidRenderer:
    """Renders a GraphIR as a Mermaid flowchart."""

    def __init__(self, direction: str = "TB", hide_error_flows: bool = False):
        if direction not in DIRECTIONS:
            raise ValueError(f"Unsupported direction {direction!r}; expected one of {', '.join(DIRECTIONS)}")
        self.direction = direction
        self.hide_error_flows = hide_error_flows
        self._ids: dict[str, str] = {}

    def render(self, ir: GraphIR) -> str:
        edges = [
            edge for edge in ir.edges
            if not (self.hide_error_flows and edge.kind == EdgeKind.FAILURE)
        ]
        referenced = {edge.source for edge in edges} | {edge.target for edge in edges}
        nodes = [node for node in ir.nodes if self._visible(node, referenced)]

        self._ids = {}
        used: set[str] = set(SYNTHETIC_IDS.values())
        for node in nodes:
            self._ids[node.id] = self._mermaid_id(node, used)

        lines = [f"flowchart {self.direction}", "", "  %% Styles"]
        lines.extend(f"  classDef {name} {style}" for name, style in CLASS_DEFS.items())
        lines.append("")

        lines.append("  %% Nodes")
        lines.extend(self._node_line(node) for node in nodes)
        lines.append("")

        lines.append("  %% Connections")
        for edge in edges:
            if edge.source not in self._ids or edge.target not in self._ids:
                continue
            lines.append(self._edge_line(self._ids[edge.source], self._ids[edge.target], edge.kind, edge.label))

        return "\n".join(lines) + "\n"

    def _visible(self, node: IRNode, referenced: set[str]) -> bool:
        if node.kind in (NodeKind.ERROR_SINK, NodeKind.WORKFLOW):
            return node.id in referenced
        return True

    def _mermaid_id(self, node: IRNode, used: set[str]) -> str:
        if node.kind in SYNTHETIC_IDS:
            return SYNTHETIC_IDS[node.kind]

        if node.kind == NodeKind.WORKFLOW:
            base = "WF_" + sanitize_id(node.id.split(":", 1)[-1])
        else:
            base = sanitize_id(node.id)
        if base.lower() in RESERVED_WORDS or base[:1].isdigit() or not base:
            base = f"s_{base}"

        candidate = base
        suffix = 2
        while candidate in used:
            candidate = f"{base}_{suffix}"
            suffix += 1
        used.add(candidate)
        return candidate

    def _node_line(self, node: IRNode) -> str:
        node_id = self._ids[node.id]
        label = sanitize_label(node.label)
        if node.kind == NodeKind.INPUT:
            return f'  {node_id}[/"{label}"/]:::inputNode'
        if node.kind == NodeKind.OUTPUT:
            return f'  {node_id}[/"{label}"/]:::outputNode'
        if node.kind == NodeKind.ERROR_SINK:
            return f'  {node_id}["{label}"]:::errorNode'
        if node.kind == NodeKind.WORKFLOW:
            return f'  {node_id}[["{label}"]]:::stepNode'
        return f'  {node_id}["{label}"]:::stepNode'

    def _edge_line(self, source: str, target: str, kind: EdgeKind, label: Optional[str]) -> str:
        if kind == EdgeKind.SEQUENTIAL:
            return f"  {source} --> {target}"
        if kind == EdgeKind.SUCCESS:
            return f'  {source} -->|"✓ {sanitize_label(label or "success")}"| {target}'
        return f'  {source} -.->|"✗ {sanitize_label(label or "failure")}"| {target}'


def ir_to_mermaid(ir: GraphIR, direction: str = "TB", hide_error_flows: bool = False) -> str:
    """
    Render graph IR as Mermaid flowchart text.

    Raises:
        ValueError: If direction is not one of TB, LR, BT, RL
    """
    return MermaidRenderer(direction=direction, hide_error_flows=hide_error_flows).render(ir)
