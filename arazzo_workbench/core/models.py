"""
Domain models for Arazzo descriptions.

All entities are frozen Pydantic models. The model is rebuilt from scratch on
every document change and handed to consumers as an immutable snapshot.

Every entity carries:
- range: source range of the node it was built from
- is_valid: False for stubs (wrong node kind, missing identifying key)
- field_ranges: per-key value ranges for precise diagnostics
- present_fields: keys that were present (and not null) in the source mapping
- malformed_fields: present keys whose value had the wrong node kind
- wrong_kind: the node itself was not a mapping
"""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from arazzo_workbench.core.diagnostics import Diagnostic
from arazzo_workbench.core.tree import EMPTY_RANGE, Range

# Mutually exclusive operation references of a step, in message order
OPERATION_FIELDS: tuple[str, ...] = ("operationId", "operationPath", "workflowId")

SOURCE_TYPES: frozenset[str] = frozenset({"openapi", "arazzo"})
PARAMETER_LOCATIONS: frozenset[str] = frozenset({"path", "query", "header", "cookie"})
CRITERION_TYPES: frozenset[str] = frozenset({"simple", "regex", "jsonpath", "xpath"})
CRITERION_EXPRESSION_VERSIONS: dict[str, frozenset[str]] = {
    "jsonpath": frozenset({"draft-goessner-dispatch-jsonpath-00"}),
    "xpath": frozenset({"xpath-30", "xpath-20", "xpath-10"}),
}

SUCCESS_ACTION_TYPES: tuple[str, ...] = ("end", "goto")
FAILURE_ACTION_TYPES: tuple[str, ...] = ("end", "goto", "retry")

DEFAULT_RETRY_LIMIT = 1


class Entity(BaseModel):
    """Base for every model entity."""

    model_config = ConfigDict(frozen=True)

    range: Range = Field(default=EMPTY_RANGE)
    is_valid: bool = Field(default=True)
    field_ranges: dict[str, Range] = Field(default_factory=dict)
    present_fields: frozenset[str] = Field(default_factory=frozenset)
    # Present keys whose value had the wrong node kind
    malformed_fields: frozenset[str] = Field(default_factory=frozenset)
    # The source node was not a mapping; already reported while building
    wrong_kind: bool = Field(default=False)

    def range_of(self, key: str) -> Range:
        """Range of a field's value, falling back to the entity range."""
        return self.field_ranges.get(key, self.range)

    def has_field(self, key: str) -> bool:
        """Check whether the key was present in the source mapping."""
        return key in self.present_fields


class Info(Entity):
    """Metadata about the Arazzo description."""

    title: Optional[str] = None
    version: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None


class SourceDescription(Entity):
    """Reference to an external API description (OpenAPI or Arazzo)."""

    name: Optional[str] = None
    url: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None


class IdRef(Entity):
    """A bare identifier with its own range (e.g. a dependsOn entry)."""

    value: Optional[str] = None


class Output(Entity):
    """A named output binding; value is normally a runtime expression."""

    name: str
    value: Any = None


class CriterionExpressionType(Entity):
    """Typed criterion with an explicit expression language version."""

    type: Optional[str] = None
    version: Optional[str] = None


class Criterion(Entity):
    """A condition deciding step success or whether an action fires."""

    condition: Optional[str] = None
    context: Optional[str] = None
    type: Union[str, CriterionExpressionType, None] = None

    @property
    def type_name(self) -> str:
        """Effective criterion language (defaults to simple)."""
        if isinstance(self.type, CriterionExpressionType):
            return self.type.type or ""
        return self.type or "simple"


class ReusableRef(Entity):
    """Reference to a reusable component ($components.<category>.<name>)."""

    kind: Literal["reference"] = "reference"
    reference: Optional[str] = None
    value: Any = None


class ActionBase(Entity):
    """Fields shared by every action variant."""

    name: Optional[str] = None
    step_id: Optional[str] = None
    workflow_id: Optional[str] = None
    criteria: tuple[Criterion, ...] = ()
    outputs: tuple[Output, ...] = ()

    @property
    def declared_targets(self) -> list[str]:
        """Target keys declared on the action."""
        return [key for key in ("stepId", "workflowId") if self.has_field(key)]


class EndAction(ActionBase):
    """Terminate the workflow."""

    type: Literal["end"] = "end"


class GotoAction(ActionBase):
    """Transfer control to a step or workflow."""

    type: Literal["goto"] = "goto"


class RetryAction(ActionBase):
    """Retry by transferring control back to a step or workflow."""

    type: Literal["retry"] = "retry"
    retry_after: Optional[float] = None
    retry_limit: int = DEFAULT_RETRY_LIMIT
    retry_limit_declared: bool = False


class UnknownAction(ActionBase):
    """Stub for an action whose type is missing or not recognized."""

    type: Optional[str] = None


Action = Union[EndAction, GotoAction, RetryAction, UnknownAction]
ActionEntry = Union[EndAction, GotoAction, RetryAction, UnknownAction, ReusableRef]


class Parameter(Entity):
    """A parameter passed to an operation or workflow."""

    name: Optional[str] = None
    location: Optional[str] = None
    value: Any = None


ParameterEntry = Union[Parameter, ReusableRef]


class PayloadReplacement(Entity):
    """A value to set at a location inside a request payload."""

    target: Optional[str] = None
    value: Any = None


class RequestBody(Entity):
    """Request body for an operation."""

    content_type: Optional[str] = None
    payload: Any = None
    replacements: tuple[PayloadReplacement, ...] = ()


class Step(Entity):
    """One operation (or sub-workflow) invocation within a workflow."""

    step_id: Optional[str] = None
    description: Optional[str] = None
    operation_id: Optional[str] = None
    operation_path: Optional[str] = None
    workflow_id: Optional[str] = None
    parameters: tuple[ParameterEntry, ...] = ()
    request_body: Optional[RequestBody] = None
    success_criteria: tuple[Criterion, ...] = ()
    # None means "not declared": workflow-level actions apply instead
    on_success: Optional[tuple[ActionEntry, ...]] = None
    on_failure: Optional[tuple[ActionEntry, ...]] = None
    outputs: tuple[Output, ...] = ()

    @property
    def operation_refs(self) -> list[str]:
        """Operation reference keys declared on the step."""
        return [key for key in OPERATION_FIELDS if self.has_field(key)]

    @property
    def output_names(self) -> list[str]:
        return [output.name for output in self.outputs]

    @property
    def targets_operation(self) -> bool:
        return self.has_field("operationId") or self.has_field("operationPath")


class Workflow(Entity):
    """A named, ordered sequence of steps."""

    workflow_id: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    inputs: Any = None
    depends_on: tuple[IdRef, ...] = ()
    steps: tuple[Step, ...] = ()
    steps_range: Range = EMPTY_RANGE
    parameters: tuple[ParameterEntry, ...] = ()
    success_actions: Optional[tuple[ActionEntry, ...]] = None
    failure_actions: Optional[tuple[ActionEntry, ...]] = None
    outputs: tuple[Output, ...] = ()

    def get_step(self, step_id: str) -> Optional[Step]:
        """Get the first step declared with the given stepId."""
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None

    @property
    def step_ids(self) -> list[str]:
        return [step.step_id for step in self.steps if step.step_id is not None]

    @property
    def output_names(self) -> list[str]:
        return [output.name for output in self.outputs]

    @property
    def depends_on_ids(self) -> list[str]:
        return [ref.value for ref in self.depends_on if ref.value is not None]


class Components(Entity):
    """Reusable objects referenced via $components expressions."""

    inputs: dict[str, Any] = Field(default_factory=dict)
    parameters: dict[str, Parameter] = Field(default_factory=dict)
    success_actions: dict[str, Action] = Field(default_factory=dict)
    failure_actions: dict[str, Action] = Field(default_factory=dict)

    def category(self, name: str) -> Optional[dict[str, Any]]:
        """Look up a component category by its document key."""
        return {
            "inputs": self.inputs,
            "parameters": self.parameters,
            "successActions": self.success_actions,
            "failureActions": self.failure_actions,
        }.get(name)


class DocumentModel(Entity):
    """Typed model of a complete Arazzo description."""

    root_kind: Literal["map", "seq", "scalar", "missing"] = "map"
    arazzo: Optional[str] = None
    info: Optional[Info] = None
    source_descriptions: tuple[SourceDescription, ...] = ()
    workflows: tuple[Workflow, ...] = ()
    components: Optional[Components] = None
    section_ranges: dict[str, Range] = Field(default_factory=dict)
    # Node-kind mismatches found while building, reported by the validator
    issues: tuple[Diagnostic, ...] = ()

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        """Get the first workflow declared with the given workflowId."""
        for workflow in self.workflows:
            if workflow.workflow_id == workflow_id:
                return workflow
        return None

    def get_source(self, name: str) -> Optional[SourceDescription]:
        for source in self.source_descriptions:
            if source.name == name:
                return source
        return None

    @property
    def workflow_ids(self) -> list[str]:
        return [wf.workflow_id for wf in self.workflows if wf.workflow_id is not None]

    @property
    def source_names(self) -> list[str]:
        return [s.name for s in self.source_descriptions if s.name is not None]


class EntityRef(BaseModel):
    """Pointer to a stub entity (is_valid=False) with its preserved range."""

    model_config = ConfigDict(frozen=True)

    kind: str
    name: Optional[str] = None
    range: Range = EMPTY_RANGE


class BuildResult(BaseModel):
    """Output of the document model builder."""

    model_config = ConfigDict(frozen=True)

    model: DocumentModel
    stubs: tuple[EntityRef, ...] = ()
