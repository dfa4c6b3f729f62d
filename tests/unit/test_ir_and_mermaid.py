"""
Unit tests for the graph IR emitter and the Mermaid renderer.
"""

import json

import pytest

from arazzo_workbench.core.graph import EdgeKind, NodeKind, build_graph
from arazzo_workbench.core.ir import GraphIR, IREdge, IRNode, to_ir
from arazzo_workbench.render import ir_to_mermaid
from arazzo_workbench.render.mermaid import sanitize_id, sanitize_label


@pytest.fixture
def pet_ir(build_model, pet_purchase_document) -> GraphIR:
    model = build_model(pet_purchase_document)
    return to_ir(build_graph(model.workflows[0], model).graph)


@pytest.fixture
def failing_ir() -> GraphIR:
    """Two steps with a retry loop and a failure end."""
    return GraphIR(
        workflow_id="wf",
        nodes=(
            IRNode(id="input", kind=NodeKind.INPUT, label="Inputs: none"),
            IRNode(id="s1", kind=NodeKind.STEP, label="1. [GET] s1"),
            IRNode(id="end", kind=NodeKind.STEP, label="2. end"),
            IRNode(id="output", kind=NodeKind.OUTPUT, label="Outputs: result"),
            IRNode(id="errorSink", kind=NodeKind.ERROR_SINK, label="Error"),
        ),
        edges=(
            IREdge(source="input", target="s1", kind=EdgeKind.SEQUENTIAL),
            IREdge(source="s1", target="end", kind=EdgeKind.SEQUENTIAL),
            IREdge(source="end", target="output", kind=EdgeKind.SEQUENTIAL),
            IREdge(source="s1", target="s1", kind=EdgeKind.FAILURE, label="retry"),
            IREdge(source="end", target="errorSink", kind=EdgeKind.FAILURE, label="end"),
        ),
    )


class TestGraphIR:
    """Tests for IR emission."""

    def test_pet_purchase_ir(self, pet_ir):
        """Test the IR of the two-step pet purchase example."""
        data = pet_ir.to_dict()

        assert data["workflow_id"] == "purchasePet"
        assert [n["id"] for n in data["nodes"]] == ["input", "loginStep", "getPetStep", "output"]
        assert [(e["from"], e["to"]) for e in data["edges"]] == [
            ("input", "loginStep"),
            ("loginStep", "getPetStep"),
            ("getPetStep", "output"),
        ]
        assert data["edges"][0]["kind"] == "sequential"

    def test_json_is_stable(self, build_model, pet_purchase_document):
        """Test that emitting twice from the same model is byte-identical."""
        model = build_model(pet_purchase_document)
        first = to_ir(build_graph(model.workflows[0], model).graph).to_json()
        second = to_ir(build_graph(model.workflows[0], model).graph).to_json()

        assert first == second
        assert json.loads(first)["edges"][0] == {
            "from": "input",
            "to": "loginStep",
            "kind": "sequential",
            "label": None,
        }

    def test_edge_accepts_field_names_and_aliases(self):
        """Test that edges can be built from either spelling."""
        by_alias = IREdge.model_validate({"from": "a", "to": "b", "kind": "success"})
        by_name = IREdge(source="a", target="b", kind=EdgeKind.SUCCESS)

        assert by_alias == by_name

    def test_drop_failure_edges(self, build_model, with_header):
        """Test that failure-only nodes disappear with their edges."""
        model = build_model(with_header(
            "workflows:\n"
            "  - workflowId: wf\n"
            "    steps:\n"
            "      - stepId: s1\n"
            "        operationId: getPet\n"
            "        onFailure:\n"
            "          - name: fail\n"
            "            type: end\n"
        ))
        graph = build_graph(model.workflows[0], model).graph

        full = to_ir(graph)
        trimmed = to_ir(graph, include_failure_edges=False)

        assert [n.id for n in full.nodes] == ["input", "s1", "errorSink"]
        assert [n.id for n in trimmed.nodes] == ["input", "s1"]
        assert all(e.kind != EdgeKind.FAILURE for e in trimmed.edges)


class TestMermaid:
    """Tests for Mermaid rendering."""

    def test_pet_purchase_flowchart(self, pet_ir):
        """Test node shapes and connections of a sequential workflow."""
        text = ir_to_mermaid(pet_ir)
        lines = text.splitlines()

        assert lines[0] == "flowchart TB"
        assert '  INPUT[/"Inputs  username, password, petId"/]:::inputNode' in lines
        assert '  getPetStep["2. (GET) getPetStep"]:::stepNode' in lines
        assert "  INPUT --> loginStep" in lines
        assert "  getPetStep --> OUTPUT" in lines
        assert text.endswith("\n")

    def test_sections_and_styles(self, pet_ir):
        """Test the section comments and class definitions."""
        text = ir_to_mermaid(pet_ir, direction="LR")

        assert text.startswith("flowchart LR\n")
        for section in ("%% Styles", "%% Nodes", "%% Connections"):
            assert f"  {section}" in text
        assert "classDef errorNode" in text

    def test_failure_edges(self, failing_ir):
        """Test dashed failure edges and reserved-word ids."""
        text = ir_to_mermaid(failing_ir)

        assert '  s1 -.->|"✗ retry"| s1' in text
        assert '  s_end -.->|"✗ end"| END_ERROR' in text
        assert '  END_ERROR["Error"]:::errorNode' in text

    def test_hide_error_flows(self, failing_ir):
        """Test that hidden failure edges also hide the error sink."""
        text = ir_to_mermaid(failing_ir, hide_error_flows=True)

        assert "-.->" not in text
        assert "END_ERROR" not in text
        assert "  s_end --> OUTPUT" in text

    def test_invalid_direction(self, pet_ir):
        """Test that unknown directions are rejected."""
        with pytest.raises(ValueError):
            ir_to_mermaid(pet_ir, direction="UP")

    def test_sanitizers(self):
        """Test id and label sanitizing."""
        assert sanitize_id("step[0]") == "step_0_"
        assert sanitize_label('say "hi" [now]') == "say 'hi' (now)"
        assert sanitize_label("$statusCode == 200 && ok") == "statusCode == 200  AND  ok"
        assert sanitize_label("a: b; c") == "a  b  c"
