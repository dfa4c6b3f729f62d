"""
Graph IR emitter.

Serializes a transition graph into a neutral node/edge structure for external
diagram renderers. Ordering follows the graph exactly, so emitting twice from
an unchanged graph yields identical output.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from arazzo_workbench.core.graph import EdgeKind, NodeKind, TransitionGraph


class IRNode(BaseModel):
    """A node in the graph IR."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: NodeKind
    label: str


class IREdge(BaseModel):
    """An edge in the graph IR; serialized with "from"/"to" keys."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: str = Field(..., alias="from")
    target: str = Field(..., alias="to")
    kind: EdgeKind
    label: Optional[str] = None


class GraphIR(BaseModel):
    """Neutral graph structure handed to diagram renderers."""

    model_config = ConfigDict(frozen=True)

    workflow_id: Optional[str] = None
    nodes: tuple[IRNode, ...] = ()
    edges: tuple[IREdge, ...] = ()

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self, indent: Optional[int] = None) -> str:
        """Deterministic JSON form."""
        return self.model_dump_json(by_alias=True, indent=indent)


def to_ir(graph: TransitionGraph, include_failure_edges: bool = True) -> GraphIR:
    """
    Convert a transition graph to IR.

    Args:
        graph: Graph produced by the transition graph builder
        include_failure_edges: When False, failure edges are dropped along
            with any node that is only reachable through them

    Returns:
        GraphIR with nodes and edges in graph order
    """
    edges = [
        edge for edge in graph.edges
        if include_failure_edges or edge.kind != EdgeKind.FAILURE
    ]

    nodes = list(graph.nodes)
    if not include_failure_edges:
        referenced = {edge.source for edge in edges} | {edge.target for edge in edges}
        nodes = [
            node for node in nodes
            if node.kind in (NodeKind.INPUT, NodeKind.STEP, NodeKind.OUTPUT) or node.id in referenced
        ]

    return GraphIR(
        workflow_id=graph.workflow_id,
        nodes=tuple(IRNode(id=node.id, kind=node.kind, label=node.label) for node in nodes),
        edges=tuple(
            IREdge(source=edge.source, target=edge.target, kind=edge.kind, label=edge.label)
            for edge in edges
        ),
    )
