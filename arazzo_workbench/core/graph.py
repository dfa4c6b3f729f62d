"""
Transition graph construction.

Derives a directed control-flow graph per workflow, combining the implicit
sequential flow with explicit success/failure actions. Cycles introduced by
goto and retry actions are legitimate; dangling targets omit their edge and
produce a reference diagnostic instead of aborting the build.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from arazzo_workbench.core.actions import (
    ActionTarget,
    Outcome,
    dereference_action,
    effective_actions,
    resolve_action_target,
)
from arazzo_workbench.core.diagnostics import Diagnostic, DiagnosticCollector, DiagnosticKind, dedupe_diagnostics
from arazzo_workbench.core.models import Action, DocumentModel, Step, UnknownAction, Workflow
from arazzo_workbench.core.tree import EMPTY_RANGE, Range

logger = logging.getLogger(__name__)


class NodeKind(str, Enum):
    """Kinds of graph nodes."""

    INPUT = "input"
    STEP = "step"
    OUTPUT = "output"
    ERROR_SINK = "errorSink"
    WORKFLOW = "workflow"  # Cross-workflow goto/retry target


class EdgeKind(str, Enum):
    """Kinds of graph edges."""

    SEQUENTIAL = "sequential"
    SUCCESS = "success"
    FAILURE = "failure"


INPUT_ID = "input"
OUTPUT_ID = "output"
ERROR_SINK_ID = "errorSink"
RESERVED_IDS = frozenset({INPUT_ID, OUTPUT_ID, ERROR_SINK_ID})

WORKFLOW_NODE_PREFIX = "workflow:"

# Keyword -> HTTP method, checked in order against the operation name
HTTP_METHOD_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("GET", ("get", "find", "list", "search", "retrieve", "verify")),
    ("POST", ("post", "create", "place", "add", "log", "upsert")),
    ("PUT", ("put", "update")),
    ("DELETE", ("delete", "remove")),
    ("PATCH", ("patch",)),
)


@dataclass(frozen=True)
class GraphNode:
    """A node of the transition graph."""

    id: str
    kind: NodeKind
    label: str
    step_id: Optional[str] = None
    range: Range = EMPTY_RANGE


@dataclass(frozen=True)
class GraphEdge:
    """A directed transition between two nodes."""

    source: str
    target: str
    kind: EdgeKind
    label: Optional[str] = None
    # Action type that produced the edge; None for default edges
    action: Optional[str] = None


@dataclass(frozen=True)
class TransitionGraph:
    """Immutable control-flow graph of one workflow."""

    workflow_id: Optional[str]
    nodes: tuple[GraphNode, ...] = ()
    edges: tuple[GraphEdge, ...] = ()

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    @property
    def node_ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    def successors(self, node_id: str) -> list[str]:
        """Targets of outgoing edges, in edge order."""
        return [edge.target for edge in self.edges if edge.source == node_id]


@dataclass(frozen=True)
class GraphBuildResult:
    """Output of the transition graph builder."""

    graph: TransitionGraph
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)


def infer_http_method(operation_id: Optional[str]) -> Optional[str]:
    """
    Guess the HTTP method from an operationId naming convention.

    Only the last dotted segment is considered, so "petApi.getPetById"
    yields "GET".
    """
    if not operation_id:
        return None
    operation = operation_id.rsplit(".", 1)[-1].lower()
    for method, keywords in HTTP_METHOD_KEYWORDS:
        if any(keyword in operation for keyword in keywords):
            return method
    return None


class TransitionGraphBuilder:
    """
    Builds the transition graph of a workflow.

    Edges are emitted in phases: default edges, explicit success edges,
    explicit failure edges, then retry edges. Node order is input, steps in
    declared order, output, errorSink, then cross-workflow placeholders.
    """

    def __init__(
        self,
        workflow: Workflow,
        model: DocumentModel,
        warn_unreachable_steps: bool = True,
        warn_redundant_goto: bool = True,
    ):
        self.workflow = workflow
        self.model = model
        self.warn_unreachable_steps = warn_unreachable_steps
        self.warn_redundant_goto = warn_redundant_goto

        self._collector = DiagnosticCollector()
        self._edges: list[GraphEdge] = []
        self._placeholders: dict[str, GraphNode] = {}
        self._step_node_ids: list[str] = []
        self._node_by_step_id: dict[str, str] = {}
        self._actions: dict[Outcome, list[list[Action]]] = {}

    def build(self) -> GraphBuildResult:
        """
        Build the graph.

        Returns:
            GraphBuildResult with the graph and graph/reference diagnostics
        """
        self._collector = DiagnosticCollector()
        self._edges = []
        self._placeholders = {}

        self._assign_step_ids()
        self._actions = {
            "success": [self._resolved_actions(step, "success") for step in self.workflow.steps],
            "failure": [self._resolved_actions(step, "failure") for step in self.workflow.steps],
        }

        has_output = bool(self.workflow.outputs) or any(
            action.type == "end" for actions in self._actions["success"] for action in actions
        )
        has_error_sink = any(
            action.type == "end" for actions in self._actions["failure"] for action in actions
        )

        self._add_default_edges(has_output)
        self._add_action_edges("success")
        self._add_action_edges("failure")
        self._add_retry_edges()

        nodes = self._build_nodes(has_output, has_error_sink)
        graph = TransitionGraph(
            workflow_id=self.workflow.workflow_id,
            nodes=tuple(nodes),
            edges=tuple(self._edges),
        )

        if self.warn_unreachable_steps:
            self._check_reachability(graph)

        diagnostics = dedupe_diagnostics(self._collector.diagnostics)
        logger.debug(
            f"Built graph for workflow {self.workflow.workflow_id}: "
            f"{len(graph.nodes)} nodes, {len(graph.edges)} edges"
        )
        return GraphBuildResult(graph=graph, diagnostics=tuple(diagnostics))

    # ==================== Nodes ====================

    def _assign_step_ids(self) -> None:
        """Give every step a unique node id, keeping stepIds where possible."""
        self._step_node_ids = []
        self._node_by_step_id = {}
        used: set[str] = set(RESERVED_IDS)

        for index, step in enumerate(self.workflow.steps):
            base = step.step_id if step.step_id is not None else f"step[{index}]"
            if base in RESERVED_IDS or base.startswith(WORKFLOW_NODE_PREFIX):
                self._collector.add_warning(
                    DiagnosticKind.GRAPH,
                    "RESERVED_STEP_ID",
                    f'stepId "{base}" collides with a reserved graph node; using "step:{base}"',
                    step.range_of("stepId"),
                )
                base = f"step:{base}"

            node_id = base
            suffix = 2
            while node_id in used:
                node_id = f"{base}~{suffix}"
                suffix += 1
            used.add(node_id)

            self._step_node_ids.append(node_id)
            if step.step_id is not None:
                self._node_by_step_id.setdefault(step.step_id, node_id)

    def _build_nodes(self, has_output: bool, has_error_sink: bool) -> list[GraphNode]:
        nodes = [GraphNode(id=INPUT_ID, kind=NodeKind.INPUT, label=self._input_label())]

        for index, step in enumerate(self.workflow.steps):
            node_id = self._step_node_ids[index]
            method = infer_http_method(step.operation_id)
            name = step.step_id if step.step_id is not None else node_id
            label = f"{index + 1}. [{method}] {name}" if method else f"{index + 1}. {name}"
            nodes.append(GraphNode(
                id=node_id,
                kind=NodeKind.STEP,
                label=label,
                step_id=step.step_id,
                range=step.range,
            ))

        if has_output:
            names = ", ".join(self.workflow.output_names)
            nodes.append(GraphNode(
                id=OUTPUT_ID,
                kind=NodeKind.OUTPUT,
                label=f"Outputs: {names}" if names else "Outputs",
            ))
        if has_error_sink:
            nodes.append(GraphNode(id=ERROR_SINK_ID, kind=NodeKind.ERROR_SINK, label="Error"))

        nodes.extend(self._placeholders.values())
        return nodes

    def _input_label(self) -> str:
        inputs = self.workflow.inputs
        properties = inputs.get("properties") if isinstance(inputs, dict) else None
        if isinstance(properties, dict) and properties:
            return f"Inputs: {', '.join(str(name) for name in properties)}"
        return "Inputs: none"

    def _placeholder(self, workflow_id: str) -> str:
        node_id = f"{WORKFLOW_NODE_PREFIX}{workflow_id}"
        if node_id not in self._placeholders:
            workflow = self.model.get_workflow(workflow_id)
            self._placeholders[node_id] = GraphNode(
                id=node_id,
                kind=NodeKind.WORKFLOW,
                label=f"Workflow: {workflow_id}",
                range=workflow.range if workflow is not None else EMPTY_RANGE,
            )
        return node_id

    # ==================== Actions ====================

    def _resolved_actions(self, step: Step, outcome: Outcome) -> list[Action]:
        """Effective, dereferenced actions with a known type."""
        actions = []
        for entry in effective_actions(step, self.workflow, outcome):
            action = dereference_action(entry, self.model, outcome)
            if action is None or isinstance(action, UnknownAction):
                continue
            actions.append(action)
        return actions

    def _target_node(self, action: Action) -> Optional[str]:
        target, diagnostics = resolve_action_target(action, self.workflow, self.model)
        self._collector.extend(diagnostics)
        if target is None:
            return None
        return self._node_for(target)

    def _node_for(self, target: ActionTarget) -> str:
        if target.kind == "step":
            return self._node_by_step_id[target.id]
        return self._placeholder(target.id)

    # ==================== Edges ====================

    def _add_edge(
        self,
        source: str,
        target: str,
        kind: EdgeKind,
        label: Optional[str] = None,
        action: Optional[str] = None,
    ) -> None:
        self._edges.append(GraphEdge(source=source, target=target, kind=kind, label=label, action=action))

    def _add_default_edges(self, has_output: bool) -> None:
        step_ids = self._step_node_ids
        if not step_ids:
            return

        self._add_edge(INPUT_ID, step_ids[0], EdgeKind.SEQUENTIAL)

        for index in range(len(step_ids) - 1):
            # Presence of goto/end suppresses the default edge, whatever its criteria
            if any(action.type in ("goto", "end") for action in self._actions["success"][index]):
                continue
            self._add_edge(step_ids[index], step_ids[index + 1], EdgeKind.SEQUENTIAL)

        last_actions = self._actions["success"][-1]
        if has_output and not any(action.type == "end" for action in last_actions):
            self._add_edge(step_ids[-1], OUTPUT_ID, EdgeKind.SEQUENTIAL)

    def _add_action_edges(self, outcome: Outcome) -> None:
        kind = EdgeKind.SUCCESS if outcome == "success" else EdgeKind.FAILURE
        terminal = OUTPUT_ID if outcome == "success" else ERROR_SINK_ID

        for index, actions in enumerate(self._actions[outcome]):
            source = self._step_node_ids[index]
            for action in actions:
                if action.type == "end":
                    self._add_edge(source, terminal, kind, action.name or "end", "end")
                elif action.type == "goto":
                    target = self._target_node(action)
                    if target is None:
                        continue
                    self._add_edge(source, target, kind, action.name or outcome, "goto")
                    if outcome == "success":
                        self._check_redundant_goto(index, action, target)

    def _add_retry_edges(self) -> None:
        for index, actions in enumerate(self._actions["failure"]):
            source = self._step_node_ids[index]
            for action in actions:
                if action.type != "retry":
                    continue
                target = self._target_node(action)
                if target is not None:
                    self._add_edge(source, target, EdgeKind.FAILURE, action.name or "retry", "retry")

    def _check_redundant_goto(self, index: int, action: Action, target: str) -> None:
        if not self.warn_redundant_goto or action.criteria:
            return
        if index + 1 < len(self._step_node_ids) and target == self._step_node_ids[index + 1]:
            self._collector.add_warning(
                DiagnosticKind.GRAPH,
                "REDUNDANT_GOTO",
                f'Unconditional goto to the next step "{action.step_id}" duplicates the default transition',
                action.range,
            )

    # ==================== Reachability ====================

    def _check_reachability(self, graph: TransitionGraph) -> None:
        """Flag step nodes not reachable from the input node."""
        adjacency: dict[str, list[str]] = {}
        for edge in graph.edges:
            adjacency.setdefault(edge.source, []).append(edge.target)

        visited = {INPUT_ID}
        queue = deque([INPUT_ID])
        while queue:
            current = queue.popleft()
            for target in adjacency.get(current, []):
                if target not in visited:
                    visited.add(target)
                    queue.append(target)

        for index, step in enumerate(self.workflow.steps):
            node_id = self._step_node_ids[index]
            if node_id not in visited:
                name = step.step_id if step.step_id is not None else node_id
                self._collector.add_warning(
                    DiagnosticKind.GRAPH,
                    "UNREACHABLE_STEP",
                    f'Step "{name}" is unreachable',
                    step.range,
                )


def build_graph(
    workflow: Workflow,
    model: DocumentModel,
    warn_unreachable_steps: bool = True,
    warn_redundant_goto: bool = True,
) -> GraphBuildResult:
    """
    Build the transition graph of one workflow.

    Convenience function for the session pipeline.
    """
    return TransitionGraphBuilder(
        workflow,
        model,
        warn_unreachable_steps=warn_unreachable_steps,
        warn_redundant_goto=warn_redundant_goto,
    ).build()
