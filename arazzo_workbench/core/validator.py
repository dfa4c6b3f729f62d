"""
Structural and referential validation of Arazzo document models.

Checks presence, type and mutual-exclusion rules, resolves every
expression-valued field and reports dangling references. Validation never
short-circuits: every entity is visited once regardless of earlier failures.
"""

import logging
import re
from typing import Any, Optional

from arazzo_workbench.core.actions import (
    OUTCOME_CATEGORIES,
    Outcome,
    dereference_action,
    parse_component_reference,
    resolve_action_target,
    source_name_of,
)
from arazzo_workbench.core.diagnostics import Diagnostic, DiagnosticCollector, DiagnosticKind, dedupe_diagnostics
from arazzo_workbench.core.models import (
    CRITERION_EXPRESSION_VERSIONS,
    CRITERION_TYPES,
    FAILURE_ACTION_TYPES,
    PARAMETER_LOCATIONS,
    SOURCE_TYPES,
    SUCCESS_ACTION_TYPES,
    Action,
    ActionEntry,
    Criterion,
    CriterionExpressionType,
    DocumentModel,
    Entity,
    Output,
    ParameterEntry,
    RequestBody,
    RetryAction,
    ReusableRef,
    Step,
    UnknownAction,
    Workflow,
)
from arazzo_workbench.core.tree import Range
from arazzo_workbench.expression.resolver import ExpressionResolver, ResolutionContext

logger = logging.getLogger(__name__)

STRUCTURAL = DiagnosticKind.STRUCTURAL
REFERENCE = DiagnosticKind.REFERENCE


class StructuralValidator:
    """
    Validates a DocumentModel.

    Node-kind issues recorded by the model builder are reported first,
    followed by rule violations in document order.
    """

    # Names and ids should use this shape; violations are warnings
    IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")

    # Output and component names
    NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\.\-_]+$")

    ARAZZO_VERSION_PATTERN = re.compile(r"^1\.0\.\d+(-.+)?$")

    OPERATION_PATH_PATTERN = re.compile(r"^\{\$sourceDescriptions\.([^.}]+)\.url\}")

    # Runtime expressions inside simple conditions, e.g. "$statusCode == 200"
    CONDITION_EXPRESSION_PATTERN = re.compile(r"\$[A-Za-z][\w.\-#/~]*")

    def __init__(
        self,
        model: DocumentModel,
        resolver: Optional[ExpressionResolver] = None,
        partial: bool = False,
    ):
        self.model = model
        self.resolver = resolver or ExpressionResolver()
        # Built from text cut short by a syntax error; absent root fields are not reported
        self.partial = partial
        self._collector = DiagnosticCollector()

    def validate(self) -> list[Diagnostic]:
        """
        Run every rule over the model.

        Returns:
            Diagnostics in document order, exact duplicates removed
        """
        self._collector = DiagnosticCollector()
        self._collector.extend(self.model.issues)

        if self.model.root_kind in ("map", "missing"):
            self._validate_root()
            self._validate_info()
            self._validate_sources()
            self._validate_workflows()
            self._validate_components()

        diagnostics = dedupe_diagnostics(self._collector.diagnostics)
        logger.debug(f"Validation produced {len(diagnostics)} diagnostics")
        return diagnostics

    # ==================== Helpers ====================

    def _error(self, code: str, message: str, range: Range, kind: DiagnosticKind = STRUCTURAL) -> None:
        self._collector.add_error(kind, code, message, range)

    def _warning(self, code: str, message: str, range: Range, kind: DiagnosticKind = STRUCTURAL) -> None:
        self._collector.add_warning(kind, code, message, range)

    def _require(self, entity: Entity, *keys: str) -> None:
        """Report each missing key at the owning entity's range."""
        for key in keys:
            if not entity.has_field(key):
                self._error("MISSING_FIELD", f"Missing required field: {key}", entity.range)

    def _require_entries(self, entity: Entity, key: str, count: int) -> None:
        """A present, well-formed list must not be empty."""
        if entity.has_field(key) and key not in entity.malformed_fields and count == 0:
            self._error("EMPTY_LIST", f"{key} must have at least one entry", entity.range_of(key))

    def _check_identifier(self, label: str, value: Optional[str], range: Range) -> None:
        if value is not None and not self.IDENTIFIER_PATTERN.match(value):
            self._warning(
                "IDENTIFIER_FORMAT",
                f'{label} "{value}" should only contain letters, digits, "_" and "-"',
                range,
            )

    def _check_name(self, label: str, name: str, range: Range) -> None:
        if not self.NAME_PATTERN.match(name):
            self._error("INVALID_NAME", f'{label} "{name}" must match {self.NAME_PATTERN.pattern}', range)

    def _check_source_reference(self, reference: str, range: Range) -> None:
        name = source_name_of(reference)
        if name is None:
            self._error("INVALID_REFERENCE", f'Invalid source description reference "{reference}"', range)
        elif self.model.get_source(name) is None:
            self._error("UNKNOWN_SOURCE", f'Unknown source description "{name}"', range, REFERENCE)

    def _resolve(self, expression: str, context: ResolutionContext) -> None:
        result = self.resolver.resolve(expression, context)
        self._collector.extend(result.diagnostics)

    def _check_value(self, value: Any, range: Range, workflow: Optional[Workflow], step: Optional[Step]) -> None:
        """Resolve expressions in a constant-or-expression value, including nested {$...} ones."""
        context = ResolutionContext(model=self.model, workflow=workflow, step=step, range=range)
        if isinstance(value, str):
            if value.startswith("$"):
                self._resolve(value, context)
            else:
                for embedded in self.resolver.find_embedded(value):
                    self._resolve(embedded.expression, context)
        elif isinstance(value, dict):
            for item in value.values():
                self._check_value(item, range, workflow, step)
        elif isinstance(value, list):
            for item in value:
                self._check_value(item, range, workflow, step)

    # ==================== Root ====================

    def _validate_root(self) -> None:
        model = self.model
        if not self.partial:
            self._require(model, "arazzo", "info", "sourceDescriptions", "workflows")

        if model.arazzo is not None and not self.ARAZZO_VERSION_PATTERN.match(model.arazzo):
            self._warning(
                "UNSUPPORTED_VERSION",
                f'Unsupported Arazzo version "{model.arazzo}"; expected 1.0.x',
                model.range_of("arazzo"),
            )

        if not self.partial:
            self._require_entries(model, "sourceDescriptions", len(model.source_descriptions))
            self._require_entries(model, "workflows", len(model.workflows))

    def _validate_info(self) -> None:
        info = self.model.info
        if info is None:
            return
        self._require(info, "title", "version")

    def _validate_sources(self) -> None:
        seen: set[str] = set()
        for source in self.model.source_descriptions:
            if source.wrong_kind:
                continue
            self._require(source, "name", "url")

            if source.name is not None:
                self._check_identifier("Source description name", source.name, source.range_of("name"))
                if source.name in seen:
                    self._error(
                        "DUPLICATE_NAME",
                        f'Duplicate source description name "{source.name}"',
                        source.range_of("name"),
                    )
                seen.add(source.name)

            if source.type is not None and source.type not in SOURCE_TYPES:
                self._error("INVALID_SOURCE_TYPE", 'Type must be "openapi" or "arazzo"', source.range_of("type"))

    # ==================== Workflows ====================

    def _validate_workflows(self) -> None:
        seen: set[str] = set()
        for workflow in self.model.workflows:
            if workflow.wrong_kind:
                continue
            if workflow.workflow_id is not None:
                if workflow.workflow_id in seen:
                    self._error(
                        "DUPLICATE_ID",
                        f'Duplicate workflowId "{workflow.workflow_id}"',
                        workflow.range_of("workflowId"),
                    )
                seen.add(workflow.workflow_id)
            self._validate_workflow(workflow)

    def _validate_workflow(self, workflow: Workflow) -> None:
        self._require(workflow, "workflowId", "steps")
        self._check_identifier("workflowId", workflow.workflow_id, workflow.range_of("workflowId"))
        self._require_entries(workflow, "steps", len(workflow.steps))

        if workflow.has_field("inputs") and not isinstance(workflow.inputs, dict):
            self._error("INVALID_TYPE", "inputs must be a mapping", workflow.range_of("inputs"))

        for ref in workflow.depends_on:
            if ref.wrong_kind or ref.value is None:
                continue
            if ref.value.startswith("$"):
                self._check_source_reference(ref.value, ref.range)
            elif ref.value == workflow.workflow_id:
                self._error(
                    "SELF_DEPENDENCY",
                    f'Workflow "{ref.value}" cannot depend on itself',
                    ref.range,
                )
            elif self.model.get_workflow(ref.value) is None:
                self._error("UNKNOWN_WORKFLOW", f'Unknown workflow "{ref.value}" in dependsOn', ref.range, REFERENCE)

        for parameter in workflow.parameters:
            self._validate_parameter(parameter, workflow, None, location_required=False)

        for entry in workflow.success_actions or ():
            self._validate_action(entry, "success", workflow, None, "successActions")
        for entry in workflow.failure_actions or ():
            self._validate_action(entry, "failure", workflow, None, "failureActions")

        seen_steps: set[str] = set()
        for step in workflow.steps:
            if step.wrong_kind:
                continue
            if step.step_id is not None:
                if step.step_id in seen_steps:
                    self._error(
                        "DUPLICATE_ID",
                        f'Duplicate stepId "{step.step_id}" in workflow "{workflow.workflow_id}"',
                        step.range_of("stepId"),
                    )
                seen_steps.add(step.step_id)
            self._validate_step(step, workflow)

        self._validate_outputs(workflow.outputs, workflow, None, allow_depends_on=True)

    def _validate_outputs(
        self,
        outputs: tuple[Output, ...],
        workflow: Optional[Workflow],
        step: Optional[Step],
        allow_depends_on: bool = False,
    ) -> None:
        for output in outputs:
            value_range = output.range_of("value")
            self._check_name("Output name", output.name, output.range_of("name"))
            if not isinstance(output.value, str) or not output.value.startswith("$"):
                self._error(
                    "INVALID_OUTPUT",
                    f'Output "{output.name}" must be a runtime expression',
                    value_range,
                    DiagnosticKind.EXPRESSION,
                )
                continue
            self._resolve(
                output.value,
                ResolutionContext(
                    model=self.model,
                    workflow=workflow,
                    step=step,
                    range=value_range,
                    allow_depends_on=allow_depends_on,
                ),
            )

    # ==================== Steps ====================

    def _validate_step(self, step: Step, workflow: Workflow) -> None:
        self._require(step, "stepId")
        self._check_identifier("stepId", step.step_id, step.range_of("stepId"))

        refs = step.operation_refs
        if not refs:
            self._error(
                "NO_OPERATION",
                'Step must contain one of "operationId", "operationPath", or "workflowId"',
                step.range,
            )
        elif len(refs) > 1:
            self._error(
                "MULTIPLE_OPERATIONS",
                'Step must contain only one of "operationId", "operationPath", or "workflowId" '
                f"(found: {', '.join(refs)})",
                step.range,
            )

        self._validate_operation_ref(step)

        for parameter in step.parameters:
            self._validate_parameter(parameter, workflow, step, location_required=step.targets_operation)

        if step.request_body is not None:
            self._validate_request_body(step.request_body, workflow, step)

        for criterion in step.success_criteria:
            self._validate_criterion(criterion, workflow, step)

        for entry in step.on_success or ():
            self._validate_action(entry, "success", workflow, step, "onSuccess")
        for entry in step.on_failure or ():
            self._validate_action(entry, "failure", workflow, step, "onFailure")

        self._validate_outputs(step.outputs, workflow, step)

    def _validate_operation_ref(self, step: Step) -> None:
        if step.operation_id is not None and step.operation_id.startswith("$"):
            self._check_source_reference(step.operation_id, step.range_of("operationId"))

        if step.operation_path is not None:
            match = self.OPERATION_PATH_PATTERN.match(step.operation_path)
            if not match:
                self._error(
                    "INVALID_OPERATION_PATH",
                    'operationPath must start with "{$sourceDescriptions.<name>.url}"',
                    step.range_of("operationPath"),
                )
            elif self.model.get_source(match.group(1)) is None:
                self._error(
                    "UNKNOWN_SOURCE",
                    f'Unknown source description "{match.group(1)}"',
                    step.range_of("operationPath"),
                    REFERENCE,
                )

        if step.workflow_id is not None:
            if step.workflow_id.startswith("$"):
                self._check_source_reference(step.workflow_id, step.range_of("workflowId"))
            elif self.model.get_workflow(step.workflow_id) is None:
                self._error(
                    "UNKNOWN_WORKFLOW",
                    f'Unknown workflow "{step.workflow_id}"',
                    step.range_of("workflowId"),
                    REFERENCE,
                )

    def _validate_request_body(self, body: RequestBody, workflow: Workflow, step: Step) -> None:
        if body.has_field("payload"):
            self._check_value(body.payload, body.range_of("payload"), workflow, step)
        for replacement in body.replacements:
            if replacement.wrong_kind:
                continue
            self._require(replacement, "target", "value")
            self._check_value(replacement.value, replacement.range_of("value"), workflow, step)

    # ==================== Parameters ====================

    def _validate_parameter(
        self,
        entry: ParameterEntry,
        workflow: Optional[Workflow],
        step: Optional[Step],
        location_required: bool,
    ) -> None:
        if entry.wrong_kind:
            return
        if isinstance(entry, ReusableRef):
            self._validate_reusable_ref(entry, "parameters", workflow, step)
            return

        self._require(entry, "name", "value")
        if entry.location is not None and entry.location not in PARAMETER_LOCATIONS:
            self._error(
                "INVALID_PARAMETER_LOCATION",
                'Parameter "in" must be one of "path", "query", "header" or "cookie"',
                entry.range_of("in"),
            )
        elif location_required and not entry.has_field("in"):
            self._error("MISSING_FIELD", "Missing required field: in", entry.range)

        if entry.has_field("value"):
            self._check_value(entry.value, entry.range_of("value"), workflow, step)

    def _validate_reusable_ref(
        self,
        ref: ReusableRef,
        category: str,
        workflow: Optional[Workflow],
        step: Optional[Step],
    ) -> None:
        self._require(ref, "reference")
        if ref.reference is None:
            return
        parsed = parse_component_reference(ref.reference)
        if parsed is None or parsed[0] != category:
            self._error(
                "INVALID_REFERENCE",
                f'Reference must point to "$components.{category}.<name>"',
                ref.range_of("reference"),
            )
            return
        self._resolve(
            ref.reference,
            ResolutionContext(model=self.model, workflow=workflow, step=step, range=ref.range_of("reference")),
        )

    # ==================== Criteria ====================

    def _validate_criterion(self, criterion: Criterion, workflow: Optional[Workflow], step: Optional[Step]) -> None:
        if criterion.wrong_kind:
            return
        self._require(criterion, "condition")

        criterion_type = criterion.type
        if isinstance(criterion_type, CriterionExpressionType):
            self._require(criterion_type, "type", "version")
            versions = CRITERION_EXPRESSION_VERSIONS.get(criterion_type.type or "")
            if criterion_type.type is not None and versions is None:
                self._error(
                    "INVALID_CRITERION_TYPE",
                    'Criterion expression type must be "jsonpath" or "xpath"',
                    criterion_type.range_of("type"),
                )
            elif versions is not None and criterion_type.version is not None and criterion_type.version not in versions:
                self._error(
                    "INVALID_CRITERION_VERSION",
                    f'Unsupported {criterion_type.type} version "{criterion_type.version}"; '
                    f"expected one of {', '.join(sorted(versions))}",
                    criterion_type.range_of("version"),
                )
        elif criterion_type is not None and criterion_type not in CRITERION_TYPES:
            self._error(
                "INVALID_CRITERION_TYPE",
                'Criterion type must be one of "simple", "regex", "jsonpath" or "xpath"',
                criterion.range_of("type"),
            )

        if criterion.has_field("type") and not criterion.has_field("context"):
            self._error("MISSING_FIELD", "Missing required field: context", criterion.range)

        if criterion.context is not None:
            self._check_value(criterion.context, criterion.range_of("context"), workflow, step)

        if criterion.condition is None:
            return
        condition_range = criterion.range_of("condition")
        if criterion.type_name == "simple":
            context = ResolutionContext(model=self.model, workflow=workflow, step=step, range=condition_range)
            for match in self.CONDITION_EXPRESSION_PATTERN.finditer(criterion.condition):
                self._resolve(match.group(0).rstrip("."), context)
        elif criterion.type_name == "regex":
            try:
                re.compile(criterion.condition)
            except re.error as e:
                self._error("INVALID_REGEX", f"Invalid regular expression: {e}", condition_range)

    # ==================== Actions ====================

    def _validate_action(
        self,
        entry: ActionEntry,
        outcome: Outcome,
        workflow: Optional[Workflow],
        step: Optional[Step],
        list_name: str,
    ) -> None:
        """
        Validate one success or failure action.

        Args:
            entry: Action or reusable reference
            outcome: "success" or "failure"
            workflow: Workflow that step targets resolve in; None for components
            step: Owning step, if any
            list_name: Key the action was declared under, used in messages
        """
        if entry.wrong_kind:
            return
        if isinstance(entry, ReusableRef):
            self._validate_reusable_ref(entry, OUTCOME_CATEGORIES[outcome], workflow, step)
            action = dereference_action(entry, self.model, outcome)
            if action is not None and action.is_valid and workflow is not None:
                self._validate_target(action, workflow)
            return

        allowed = SUCCESS_ACTION_TYPES if outcome == "success" else FAILURE_ACTION_TYPES
        if isinstance(entry, UnknownAction):
            if entry.type is None:
                self._require(entry, "type")
            else:
                self._error(
                    "INVALID_ACTION_TYPE",
                    f'Action type must be one of {", ".join(allowed)}',
                    entry.range_of("type"),
                )
        elif entry.type not in allowed:
            self._error(
                "RETRY_NOT_ALLOWED",
                f"Retry actions are not allowed in {list_name}",
                entry.range_of("type"),
            )

        if entry.name is None:
            self._warning("MISSING_ACTION_NAME", "Action should have a name", entry.range)
        else:
            self._check_identifier("Action name", entry.name, entry.range_of("name"))

        targets = entry.declared_targets
        if entry.type == "end":
            for key in targets:
                self._error("UNEXPECTED_TARGET", f"End actions must not specify {key}", entry.range_of(key))
        elif entry.type in ("goto", "retry"):
            if not targets:
                self._error(
                    "MISSING_TARGET",
                    f'{entry.type} action requires one of "stepId" or "workflowId"',
                    entry.range,
                )
            elif len(targets) > 1:
                self._error(
                    "MULTIPLE_TARGETS",
                    f'{entry.type} action must specify only one of "stepId" or "workflowId"',
                    entry.range,
                )
            elif workflow is not None:
                self._validate_target(entry, workflow)

        if isinstance(entry, RetryAction):
            if entry.retry_after is not None and entry.retry_after < 0:
                self._error("INVALID_RETRY_AFTER", "retryAfter must be a non-negative number", entry.range_of("retryAfter"))
            if entry.retry_limit_declared and entry.retry_limit < 1:
                self._error("INVALID_RETRY_LIMIT", "retryLimit must be an integer >= 1", entry.range_of("retryLimit"))
        else:
            for key in ("retryAfter", "retryLimit"):
                if entry.has_field(key):
                    self._warning("IGNORED_FIELD", f"{key} only applies to retry actions", entry.range_of(key))

        for criterion in entry.criteria:
            self._validate_criterion(criterion, workflow, step)

    def _validate_target(self, action: Action, workflow: Workflow) -> None:
        _, diagnostics = resolve_action_target(action, workflow, self.model)
        self._collector.extend(diagnostics)

    # ==================== Components ====================

    def _validate_components(self) -> None:
        components = self.model.components
        if components is None:
            return

        for category in ("inputs", "parameters", "successActions", "failureActions"):
            for name in components.category(category):
                self._check_name("Component name", name, components.range_of(f"{category}.{name}"))

        for parameter in components.parameters.values():
            self._validate_parameter(parameter, None, None, location_required=False)
        for action in components.success_actions.values():
            self._validate_action(action, "success", None, None, "successActions")
        for action in components.failure_actions.values():
            self._validate_action(action, "failure", None, None, "failureActions")


def validate(
    model: DocumentModel,
    resolver: Optional[ExpressionResolver] = None,
    partial: bool = False,
) -> list[Diagnostic]:
    """
    Validate a document model.

    Convenience function for the session pipeline. Pass partial=True when the
    model was built from a tree recovered after a syntax error.
    """
    return StructuralValidator(model, resolver, partial=partial).validate()
