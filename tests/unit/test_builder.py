"""
Unit tests for the document model builder.
"""

from arazzo_workbench.core.builder import DocumentModelBuilder, build_document_model
from arazzo_workbench.core.models import (
    EndAction,
    GotoAction,
    RetryAction,
    ReusableRef,
    UnknownAction,
)
from arazzo_workbench.core.tree import MISSING
from arazzo_workbench.parsing import load_document


def _build(text: str, **kwargs):
    return build_document_model(load_document(text).tree, **kwargs)


class TestDocumentRoot:
    """Tests for root-level model building."""

    def test_minimal_document(self, minimal_document):
        """Test building a well-formed minimal document."""
        result = _build(minimal_document)
        model = result.model

        assert model.root_kind == "map"
        assert model.arazzo == "1.0.1"
        assert model.info.title == "Minimal"
        assert model.source_names == ["petStore"]
        assert model.workflow_ids == ["minimal"]
        assert model.issues == ()
        assert result.stubs == ()

    def test_section_ranges(self, minimal_document):
        """Test that top-level sections record key-through-value ranges."""
        model = _build(minimal_document).model

        start, _ = model.section_ranges["workflows"]
        assert minimal_document[start:].startswith("workflows:")
        assert set(model.section_ranges) == {"info", "sourceDescriptions", "workflows"}

    def test_missing_tree(self):
        """Test that a MISSING tree yields an invalid stub document."""
        result = build_document_model(MISSING)

        assert result.model.root_kind == "missing"
        assert result.model.is_valid is False
        assert [stub.kind for stub in result.stubs] == ["document"]

    def test_root_not_mapping(self):
        """Test that a sequence root is reported once."""
        result = _build("- a\n- b\n")

        assert result.model.root_kind == "seq"
        assert [d.code for d in result.model.issues] == ["ROOT_NOT_MAPPING"]
        assert result.model.issues[0].message == "Arazzo document root must be a mapping"

    def test_numeric_arazzo_version(self):
        """Test that an unquoted numeric version is kept as text and flagged."""
        model = _build("arazzo: 1.0\n").model

        assert model.arazzo == "1.0"
        assert [d.message for d in model.issues] == ["arazzo must be a string"]

    def test_null_value_counts_as_absent(self):
        """Test that `key:` with no value is not a present field."""
        model = _build("arazzo: 1.0.1\ninfo:\n").model

        assert not model.has_field("info")
        assert model.info is None

    def test_builder_is_reusable(self, minimal_document):
        """Test that build() starts fresh every call."""
        builder = DocumentModelBuilder()
        first = builder.build(load_document("- a\n").tree)
        second = builder.build(load_document(minimal_document).tree)

        assert len(first.model.issues) == 1
        assert second.model.issues == ()


class TestWorkflowsAndSteps:
    """Tests for workflow and step entities."""

    def test_steps_keep_document_order(self, pet_purchase_document):
        """Test step order and step fields."""
        workflow = _build(pet_purchase_document).model.get_workflow("purchasePet")

        assert workflow.step_ids == ["loginStep", "getPetStep"]
        login = workflow.steps[0]
        assert login.operation_id == "loginUser"
        assert login.operation_refs == ["operationId"]
        assert login.output_names == ["sessionToken"]
        assert [p.name for p in login.parameters] == ["username", "password"]
        assert login.success_criteria[0].condition == "$statusCode == 200"
        assert login.on_success is None

    def test_workflow_outputs_and_inputs(self, pet_purchase_document):
        """Test outputs carry name/value ranges and inputs stay plain data."""
        text = pet_purchase_document
        workflow = _build(text).model.get_workflow("purchasePet")

        assert workflow.output_names == ["available"]
        output = workflow.outputs[0]
        start, end = output.range_of("value")
        assert text[start:end] == "$steps.getPetStep.outputs.status"
        assert set(workflow.inputs["properties"]) == {"username", "password", "petId"}

    def test_step_without_step_id_is_stub(self, with_header):
        """Test that a step missing stepId is kept as an invalid stub."""
        text = with_header(
            "workflows:\n"
            "  - workflowId: wf\n"
            "    steps:\n"
            "      - operationId: getPet\n"
        )
        result = _build(text)
        step = result.model.workflows[0].steps[0]

        assert step.is_valid is False
        assert step.operation_id == "getPet"
        assert text[step.range[0]:].startswith("operationId")
        assert [stub.kind for stub in result.stubs] == ["step"]

    def test_step_with_two_operations_is_stub(self, with_header):
        """Test that mutually exclusive operation references invalidate the step."""
        text = with_header(
            "workflows:\n"
            "  - workflowId: wf\n"
            "    steps:\n"
            "      - stepId: s1\n"
            "        operationId: getPet\n"
            "        workflowId: other\n"
        )
        step = _build(text).model.workflows[0].steps[0]

        assert step.is_valid is False
        assert step.operation_refs == ["operationId", "workflowId"]

    def test_non_mapping_step(self, with_header):
        """Test that a scalar step entry becomes a wrong-kind stub."""
        text = with_header(
            "workflows:\n"
            "  - workflowId: wf\n"
            "    steps:\n"
            "      - just-a-string\n"
        )
        model = _build(text).model
        step = model.workflows[0].steps[0]

        assert step.wrong_kind is True
        assert step.is_valid is False
        assert [d.message for d in model.issues] == ["steps entry must be a mapping"]

    def test_wrong_kind_field(self, with_header):
        """Test that a field with the wrong node kind is recorded as malformed."""
        text = with_header(
            "workflows:\n"
            "  - workflowId: wf\n"
            "    steps: not-a-list\n"
        )
        model = _build(text).model
        workflow = model.workflows[0]

        assert "steps" in workflow.malformed_fields
        assert workflow.steps == ()
        assert [d.message for d in model.issues] == ["steps must be an array"]

    def test_depends_on(self, with_header):
        """Test dependsOn entries keep their own ranges."""
        text = with_header(
            "workflows:\n"
            "  - workflowId: a\n"
            "    steps: []\n"
            "  - workflowId: b\n"
            "    dependsOn: [a]\n"
            "    steps: []\n"
        )
        workflow = _build(text).model.get_workflow("b")

        assert workflow.depends_on_ids == ["a"]
        start, end = workflow.depends_on[0].range
        assert text[start:end] == "a"


class TestActions:
    """Tests for action variants."""

    def _actions(self, with_header, actions_yaml: str, key: str = "onFailure"):
        text = with_header(
            "workflows:\n"
            "  - workflowId: wf\n"
            "    steps:\n"
            "      - stepId: s1\n"
            "        operationId: getPet\n"
            f"        {key}:\n" + actions_yaml
        )
        return _build(text, default_retry_limit=3)

    def test_action_variants(self, with_header):
        """Test that each action type maps to its own class."""
        result = self._actions(
            with_header,
            "          - name: stop\n"
            "            type: end\n"
            "          - name: again\n"
            "            type: goto\n"
            "            stepId: s1\n"
            "          - name: retry\n"
            "            type: retry\n"
            "            stepId: s1\n"
            "            retryAfter: 1.5\n"
            "          - reference: $components.failureActions.shared\n",
        )
        actions = result.model.workflows[0].steps[0].on_failure

        assert isinstance(actions[0], EndAction)
        assert isinstance(actions[1], GotoAction)
        assert actions[1].step_id == "s1"
        assert isinstance(actions[2], RetryAction)
        assert actions[2].retry_after == 1.5
        assert isinstance(actions[3], ReusableRef)
        assert actions[3].reference == "$components.failureActions.shared"

    def test_default_retry_limit(self, with_header):
        """Test that an omitted retryLimit uses the configured default."""
        result = self._actions(
            with_header,
            "          - name: retry\n"
            "            type: retry\n"
            "            stepId: s1\n",
        )
        action = result.model.workflows[0].steps[0].on_failure[0]

        assert action.retry_limit == 3
        assert action.retry_limit_declared is False

    def test_unknown_action_type(self, with_header):
        """Test that an unrecognized type yields an invalid UnknownAction."""
        result = self._actions(
            with_header,
            "          - name: jump\n"
            "            type: teleport\n",
        )
        action = result.model.workflows[0].steps[0].on_failure[0]

        assert isinstance(action, UnknownAction)
        assert action.type == "teleport"
        assert action.is_valid is False

    def test_goto_without_target_is_invalid(self, with_header):
        """Test that goto needs exactly one target to be valid."""
        result = self._actions(
            with_header,
            "          - name: nowhere\n"
            "            type: goto\n",
            key="onSuccess",
        )
        action = result.model.workflows[0].steps[0].on_success[0]

        assert isinstance(action, GotoAction)
        assert action.is_valid is False
        assert [stub.kind for stub in result.stubs] == ["action"]

    def test_empty_action_list_is_declared(self, with_header):
        """Test that an empty onSuccess list is kept distinct from an absent one."""
        text = with_header(
            "workflows:\n"
            "  - workflowId: wf\n"
            "    steps:\n"
            "      - stepId: s1\n"
            "        operationId: getPet\n"
            "        onSuccess: []\n"
        )
        step = _build(text).model.workflows[0].steps[0]

        assert step.on_success == ()
        assert step.on_failure is None


class TestComponents:
    """Tests for the components section."""

    def test_components(self, with_header):
        """Test component categories and their name ranges."""
        text = with_header(
            "workflows: []\n"
            "components:\n"
            "  inputs:\n"
            "    credentials:\n"
            "      type: object\n"
            "  parameters:\n"
            "    pageSize:\n"
            "      name: limit\n"
            "      in: query\n"
            "      value: 10\n"
            "  failureActions:\n"
            "    giveUp:\n"
            "      name: giveUp\n"
            "      type: end\n"
        )
        components = _build(text).model.components

        assert components.inputs == {"credentials": {"type": "object"}}
        assert components.parameters["pageSize"].location == "query"
        assert isinstance(components.failure_actions["giveUp"], EndAction)
        start, end = components.range_of("failureActions.giveUp")
        assert text[start:end] == "giveUp"

    def test_component_action_reference_is_rejected(self, with_header):
        """Test that a component action cannot itself be a reference."""
        text = with_header(
            "workflows: []\n"
            "components:\n"
            "  successActions:\n"
            "    loop:\n"
            "      reference: $components.successActions.loop\n"
        )
        model = _build(text).model

        assert [d.code for d in model.issues] == ["INVALID_COMPONENT"]
        assert model.components.success_actions["loop"].is_valid is False
