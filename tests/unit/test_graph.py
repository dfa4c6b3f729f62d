"""
Unit tests for transition graph construction.
"""

import pytest

from arazzo_workbench.core.diagnostics import DiagnosticKind, Severity
from arazzo_workbench.core.graph import (
    EdgeKind,
    NodeKind,
    TransitionGraphBuilder,
    build_graph,
    infer_http_method,
)


def _edges(graph):
    return [(edge.source, edge.target, edge.kind) for edge in graph.edges]


def _codes(diagnostics):
    return [d.code for d in diagnostics]


@pytest.fixture
def graph_of(build_model, with_header):
    """Build the graph of the first workflow in a workflows section."""
    def _graph_of(workflows_yaml: str, **kwargs):
        model = build_model(with_header(workflows_yaml))
        return build_graph(model.workflows[0], model, **kwargs)
    return _graph_of


def _steps(count: int, actions: dict = None, outputs: bool = True) -> str:
    """Workflow with `count` steps s1..sN; actions maps step number to YAML."""
    actions = actions or {}
    text = "workflows:\n  - workflowId: wf\n    steps:\n"
    for number in range(1, count + 1):
        text += f"      - stepId: s{number}\n        operationId: getPet{number}\n"
        text += actions.get(number, "")
    if outputs:
        text += "    outputs:\n      result: $steps.s1.outputs.id\n"
    return text


class TestDefaultEdges:
    """Tests for the implicit sequential flow."""

    @pytest.mark.parametrize("count", [1, 2, 5])
    def test_linear_workflow(self, graph_of, count):
        """Test N steps with outputs yield N+2 nodes and N+1 sequential edges."""
        result = graph_of(_steps(count))
        graph = result.graph

        step_ids = [f"s{n}" for n in range(1, count + 1)]
        assert graph.node_ids == ["input", *step_ids, "output"]
        expected = [("input", "s1")]
        expected += list(zip(step_ids, step_ids[1:]))
        expected.append((step_ids[-1], "output"))
        assert [(e.source, e.target) for e in graph.edges] == expected
        assert all(e.kind == EdgeKind.SEQUENTIAL for e in graph.edges)
        assert result.diagnostics == ()

    def test_no_outputs_no_output_node(self, graph_of):
        """Test that the output node only exists when something leads to it."""
        graph = graph_of(_steps(2, outputs=False)).graph

        assert graph.node_ids == ["input", "s1", "s2"]
        assert _edges(graph) == [
            ("input", "s1", EdgeKind.SEQUENTIAL),
            ("s1", "s2", EdgeKind.SEQUENTIAL),
        ]

    def test_empty_workflow(self, graph_of):
        """Test a workflow without steps."""
        graph = graph_of("workflows:\n  - workflowId: wf\n    steps: []\n").graph

        assert graph.node_ids == ["input"]
        assert graph.edges == ()


class TestActionEdges:
    """Tests for explicit success and failure actions."""

    def test_backward_goto_creates_cycle(self, graph_of):
        """Test that a backward goto replaces the default edge and forms a cycle."""
        result = graph_of(_steps(3, actions={
            3: (
                "        onSuccess:\n"
                "          - name: loop\n"
                "            type: goto\n"
                "            stepId: s1\n"
            ),
        }))
        graph = result.graph

        assert ("s3", "s1", EdgeKind.SUCCESS) in _edges(graph)
        assert ("s3", "output", EdgeKind.SEQUENTIAL) in _edges(graph)
        assert graph.successors("s1") == ["s2"]
        assert result.diagnostics == ()

    def test_goto_suppresses_default_edge(self, graph_of):
        """Test that a goto on a middle step removes its sequential edge."""
        result = graph_of(_steps(3, actions={
            2: (
                "        onSuccess:\n"
                "          - name: back\n"
                "            type: goto\n"
                "            stepId: s1\n"
            ),
        }))

        assert ("s2", "s3", EdgeKind.SEQUENTIAL) not in _edges(result.graph)
        assert ("s2", "s1", EdgeKind.SUCCESS) in _edges(result.graph)
        assert _codes(result.diagnostics) == ["UNREACHABLE_STEP"]
        assert result.diagnostics[0].message == 'Step "s3" is unreachable'
        assert result.diagnostics[0].kind == DiagnosticKind.GRAPH

    def test_end_actions(self, graph_of):
        """Test success end goes to output and failure end to the error sink."""
        graph = graph_of(_steps(1, outputs=False, actions={
            1: (
                "        onSuccess:\n"
                "          - name: done\n"
                "            type: end\n"
                "        onFailure:\n"
                "          - name: fail\n"
                "            type: end\n"
            ),
        })).graph

        assert graph.node_ids == ["input", "s1", "output", "errorSink"]
        assert _edges(graph) == [
            ("input", "s1", EdgeKind.SEQUENTIAL),
            ("s1", "output", EdgeKind.SUCCESS),
            ("s1", "errorSink", EdgeKind.FAILURE),
        ]
        assert [edge.label for edge in graph.edges] == [None, "done", "fail"]
        assert graph.get_node("errorSink").label == "Error"

    def test_unnamed_end_action_label(self, graph_of):
        """Test that an end action without a name is labelled "end"."""
        graph = graph_of(_steps(1, outputs=False, actions={
            1: (
                "        onFailure:\n"
                "          - type: end\n"
            ),
        })).graph

        assert graph.edges[-1].label == "end"

    def test_retry_edge(self, graph_of):
        """Test that retry produces a failure edge back to its target."""
        graph = graph_of(_steps(1, actions={
            1: (
                "        onFailure:\n"
                "          - name: tryAgain\n"
                "            type: retry\n"
                "            stepId: s1\n"
                "            retryLimit: 3\n"
            ),
        })).graph

        retry = [e for e in graph.edges if e.action == "retry"]
        assert len(retry) == 1
        assert (retry[0].source, retry[0].target, retry[0].kind) == ("s1", "s1", EdgeKind.FAILURE)
        assert retry[0].label == "tryAgain"

    def test_dangling_target(self, graph_of):
        """Test that an unknown goto target adds no edge but still builds the rest."""
        result = graph_of(_steps(2, actions={
            1: (
                "        onFailure:\n"
                "          - name: jump\n"
                "            type: goto\n"
                "            stepId: ghost\n"
                "          - name: again\n"
                "            type: retry\n"
                "            stepId: nowhere\n"
            ),
        }))

        assert _edges(result.graph) == [
            ("input", "s1", EdgeKind.SEQUENTIAL),
            ("s1", "s2", EdgeKind.SEQUENTIAL),
            ("s2", "output", EdgeKind.SEQUENTIAL),
        ]
        assert _codes(result.diagnostics) == ["UNKNOWN_STEP", "UNKNOWN_STEP"]
        assert all(d.kind == DiagnosticKind.REFERENCE for d in result.diagnostics)

    def test_cross_workflow_goto(self, build_model, with_header):
        """Test that a goto to another workflow targets a placeholder node."""
        model = build_model(with_header(
            "workflows:\n"
            "  - workflowId: wf\n"
            "    steps:\n"
            "      - stepId: s1\n"
            "        operationId: getPet\n"
            "        onFailure:\n"
            "          - name: recover\n"
            "            type: goto\n"
            "            workflowId: cleanup\n"
            "  - workflowId: cleanup\n"
            "    steps:\n"
            "      - stepId: c1\n"
            "        operationId: deletePet\n"
        ))
        graph = build_graph(model.workflows[0], model).graph

        assert graph.node_ids == ["input", "s1", "workflow:cleanup"]
        node = graph.get_node("workflow:cleanup")
        assert node.kind == NodeKind.WORKFLOW
        assert node.label == "Workflow: cleanup"
        assert ("s1", "workflow:cleanup", EdgeKind.FAILURE) in _edges(graph)

    def test_workflow_default_actions_apply(self, graph_of):
        """Test that workflow-level actions apply to steps without their own."""
        text = _steps(2, outputs=False).replace(
            "    steps:\n",
            "    failureActions:\n"
            "      - name: fail\n"
            "        type: end\n"
            "    steps:\n",
        )
        graph = graph_of(text).graph

        assert ("s1", "errorSink", EdgeKind.FAILURE) in _edges(graph)
        assert ("s2", "errorSink", EdgeKind.FAILURE) in _edges(graph)

    def test_step_actions_override_defaults(self, graph_of):
        """Test that an empty step list disables the workflow defaults."""
        text = _steps(1, outputs=False, actions={1: "        onFailure: []\n"}).replace(
            "    steps:\n",
            "    failureActions:\n"
            "      - name: fail\n"
            "        type: end\n"
            "    steps:\n",
        )
        graph = graph_of(text).graph

        assert "errorSink" not in graph.node_ids

    def test_reusable_action(self, build_model, with_header):
        """Test that component action references are dereferenced."""
        model = build_model(with_header(
            _steps(1, outputs=False, actions={
                1: "        onFailure:\n          - reference: $components.failureActions.giveUp\n",
            })
            + "components:\n"
            "  failureActions:\n"
            "    giveUp:\n"
            "      name: giveUp\n"
            "      type: end\n"
        ))
        graph = build_graph(model.workflows[0], model).graph

        assert ("s1", "errorSink", EdgeKind.FAILURE) in _edges(graph)


class TestGraphWarnings:
    """Tests for graph-level warnings."""

    def test_redundant_goto(self, graph_of):
        """Test that an unconditional goto to the next step is flagged."""
        result = graph_of(_steps(2, actions={
            1: (
                "        onSuccess:\n"
                "          - name: next\n"
                "            type: goto\n"
                "            stepId: s2\n"
            ),
        }))

        assert _codes(result.diagnostics) == ["REDUNDANT_GOTO"]
        assert result.diagnostics[0].severity == Severity.WARNING

    def test_warnings_can_be_disabled(self, graph_of):
        """Test that unreachable and redundant-goto checks are configurable."""
        actions = {
            1: (
                "        onSuccess:\n"
                "          - name: done\n"
                "            type: end\n"
            ),
        }
        assert _codes(graph_of(_steps(2, actions=actions)).diagnostics) == ["UNREACHABLE_STEP"]
        assert graph_of(_steps(2, actions=actions), warn_unreachable_steps=False).diagnostics == ()

    def test_reserved_step_id(self, graph_of):
        """Test that a stepId colliding with a synthetic node is renamed."""
        text = _steps(1).replace("stepId: s1", "stepId: output")
        result = graph_of(text)

        assert result.graph.node_ids == ["input", "step:output", "output"]
        assert _codes(result.diagnostics) == ["RESERVED_STEP_ID"]

    def test_workflow_prefixed_step_id(self, graph_of):
        """Test that a stepId shaped like a workflow placeholder is renamed."""
        text = (
            _steps(1, actions={
                1: (
                    "        onSuccess:\n"
                    "          - name: hop\n"
                    "            type: goto\n"
                    "            workflowId: other\n"
                ),
            }).replace("stepId: s1", "stepId: workflow:other")
            + "  - workflowId: other\n"
            "    steps:\n"
            "      - stepId: t1\n"
            "        operationId: getPet\n"
        )
        result = graph_of(text)

        assert result.graph.node_ids == ["input", "step:workflow:other", "output", "workflow:other"]
        assert ("step:workflow:other", "workflow:other", EdgeKind.SUCCESS) in _edges(result.graph)
        assert "RESERVED_STEP_ID" in _codes(result.diagnostics)

    def test_unnamed_and_duplicate_steps(self, graph_of):
        """Test node ids for stub and duplicate steps stay unique."""
        text = (
            "workflows:\n"
            "  - workflowId: wf\n"
            "    steps:\n"
            "      - operationId: getPet\n"
            "      - stepId: s1\n"
            "        operationId: getPet\n"
            "      - stepId: s1\n"
            "        operationId: getPet\n"
        )
        graph = graph_of(text).graph

        assert graph.node_ids == ["input", "step[0]", "s1", "s1~2"]


class TestLabels:
    """Tests for node labels."""

    def test_input_and_step_labels(self, build_model, pet_purchase_document):
        """Test input names and HTTP method hints in labels."""
        model = build_model(pet_purchase_document)
        graph = build_graph(model.workflows[0], model).graph

        assert graph.get_node("input").label == "Inputs: username, password, petId"
        assert graph.get_node("getPetStep").label == "2. [GET] getPetStep"
        assert graph.get_node("output").label == "Outputs: available"

    @pytest.mark.parametrize("operation_id, method", [
        ("getPetById", "GET"),
        ("petStore.findPetsByStatus", "GET"),
        ("addPet", "POST"),
        ("updatePet", "PUT"),
        ("deletePet", "DELETE"),
        ("patchOrder", "PATCH"),
        ("doSomething", None),
        (None, None),
    ])
    def test_infer_http_method(self, operation_id, method):
        """Test the operationId naming heuristic."""
        assert infer_http_method(operation_id) == method


class TestScenario:
    """End-to-end graph scenarios."""

    def test_pet_purchase(self, build_model, pet_purchase_document):
        """Test the two-step pet purchase graph."""
        model = build_model(pet_purchase_document)
        result = build_graph(model.get_workflow("purchasePet"), model)

        assert result.graph.node_ids == ["input", "loginStep", "getPetStep", "output"]
        assert [(e.source, e.target) for e in result.graph.edges] == [
            ("input", "loginStep"),
            ("loginStep", "getPetStep"),
            ("getPetStep", "output"),
        ]
        assert result.diagnostics == ()

    def test_build_is_idempotent(self, build_model, pet_purchase_document):
        """Test that building twice yields identical graphs."""
        model = build_model(pet_purchase_document)
        builder = TransitionGraphBuilder(model.workflows[0], model)

        assert builder.build() == builder.build()
