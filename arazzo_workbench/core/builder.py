"""
Document model builder.

Normalizes a range-annotated tree into typed entities. Pure transform: any
entity whose shape cannot be interpreted is still emitted as a stub
(is_valid=False) with its original range, so later stages can continue and
still report a source location. No entity is dropped silently.
"""

import logging
from typing import Any, Optional

from arazzo_workbench.core.diagnostics import Diagnostic, DiagnosticCollector, DiagnosticKind
from arazzo_workbench.core.models import (
    DEFAULT_RETRY_LIMIT,
    ActionEntry,
    BuildResult,
    Components,
    Criterion,
    CriterionExpressionType,
    DocumentModel,
    EndAction,
    EntityRef,
    GotoAction,
    IdRef,
    Info,
    Output,
    Parameter,
    ParameterEntry,
    PayloadReplacement,
    RequestBody,
    RetryAction,
    ReusableRef,
    SourceDescription,
    Step,
    UnknownAction,
    Workflow,
)
from arazzo_workbench.core.tree import MapNode, Node, Range, to_plain

logger = logging.getLogger(__name__)

SECTION_KEYS = ("info", "sourceDescriptions", "workflows", "components")


class _MapReader:
    """Typed accessors over one mapping node, tracking per-field metadata."""

    def __init__(self, node: MapNode, builder: "DocumentModelBuilder"):
        self.node = node
        self.builder = builder
        self.malformed: set[str] = set()
        self.field_ranges: dict[str, Range] = {}
        self.present: set[str] = set()

        for entry in node.entries:
            key = str(entry.key.value)
            value = entry.value
            # A null value counts as absent
            if value.is_scalar and value.value is None:
                continue
            self.present.add(key)
            self.field_ranges[key] = value.range if not value.is_missing else entry.key.range

    def meta(self) -> dict[str, Any]:
        """Keyword arguments common to every Entity."""
        return {
            "range": self.node.range,
            "field_ranges": dict(self.field_ranges),
            "present_fields": frozenset(self.present),
            "malformed_fields": frozenset(self.malformed),
        }

    def has(self, key: str) -> bool:
        return key in self.present

    def _malformed(self, key: str, message: str) -> None:
        self.malformed.add(key)
        self.builder._issue("INVALID_TYPE", message, self.field_ranges[key])

    def string(self, key: str) -> Optional[str]:
        """Read a scalar as a string; numbers and booleans are stringified."""
        if not self.has(key):
            return None
        value = self.node.get(key)
        if not value.is_scalar:
            self._malformed(key, f"{key} must be a string")
            return None
        return value.text

    def number(self, key: str) -> Optional[float]:
        if not self.has(key):
            return None
        value = self.node.get(key)
        if value.is_scalar and isinstance(value.value, (int, float)) and not isinstance(value.value, bool):
            return float(value.value)
        self._malformed(key, f"{key} must be a number")
        return None

    def integer(self, key: str) -> Optional[int]:
        if not self.has(key):
            return None
        value = self.node.get(key)
        if value.is_scalar and isinstance(value.value, int) and not isinstance(value.value, bool):
            return value.value
        self._malformed(key, f"{key} must be an integer")
        return None

    def sequence(self, key: str) -> Optional[list[Node]]:
        """Items of a sequence field, or None when absent or malformed."""
        if not self.has(key):
            return None
        value = self.node.get(key)
        if not value.is_seq:
            self._malformed(key, f"{key} must be an array")
            return None
        return list(value.items)

    def mapping(self, key: str) -> Optional[MapNode]:
        if not self.has(key):
            return None
        value = self.node.get(key)
        if not value.is_map:
            self._malformed(key, f"{key} must be a mapping")
            return None
        return value

    def plain(self, key: str) -> Any:
        return to_plain(self.node.get(key)) if self.has(key) else None

    def entry_range(self, key: str) -> Range:
        """Range spanning the key and its value."""
        entry = self.node.get_entry(key)
        return entry.range if entry is not None else self.node.range


class DocumentModelBuilder:
    """
    Builds a DocumentModel from a range-annotated tree.

    A builder instance can be reused; every call to build() starts fresh.
    """

    def __init__(self, default_retry_limit: int = DEFAULT_RETRY_LIMIT):
        self.default_retry_limit = default_retry_limit
        self._issues = DiagnosticCollector()
        self._stubs: list[EntityRef] = []

    def build(self, tree: Node) -> BuildResult:
        """
        Build the typed model.

        Args:
            tree: Root node produced by a parser adapter

        Returns:
            BuildResult with the model and references to every stub entity
        """
        self._issues = DiagnosticCollector()
        self._stubs = []

        if tree.is_missing:
            model = DocumentModel(range=tree.range, is_valid=False, root_kind="missing")
            self._stub("document", None, tree.range)
        elif not tree.is_map:
            self._issue("ROOT_NOT_MAPPING", "Arazzo document root must be a mapping", tree.range)
            model = DocumentModel(
                range=tree.range,
                is_valid=False,
                root_kind="seq" if tree.is_seq else "scalar",
                issues=tuple(self._issues.diagnostics),
            )
            self._stub("document", None, tree.range)
        else:
            model = self._document(tree)

        logger.debug(
            f"Built document model: {len(model.workflows)} workflows, "
            f"{len(self._stubs)} stubs"
        )
        return BuildResult(model=model, stubs=tuple(self._stubs))

    # ==================== Bookkeeping ====================

    def _issue(self, code: str, message: str, range: Range) -> Diagnostic:
        return self._issues.add_error(DiagnosticKind.STRUCTURAL, code, message, range)

    def _stub(self, kind: str, name: Optional[str], range: Range) -> None:
        self._stubs.append(EntityRef(kind=kind, name=name, range=range))

    def _not_a_mapping(self, label: str, node: Node) -> None:
        self._issue("INVALID_TYPE", f"{label} entry must be a mapping", node.range)

    # ==================== Root ====================

    def _document(self, root: MapNode) -> DocumentModel:
        reader = _MapReader(root, self)
        arazzo = reader.string("arazzo")
        arazzo_node = root.get("arazzo")
        if arazzo is not None and not isinstance(arazzo_node.value, str):
            # Unquoted versions like 1.0 load as numbers
            self._issue("INVALID_TYPE", "arazzo must be a string", arazzo_node.range)

        info = None
        info_node = reader.mapping("info")
        if info_node is not None:
            info = self._info(info_node)
        elif reader.has("info"):
            self._stub("info", None, reader.field_ranges["info"])

        sources = tuple(
            self._source(item) if item.is_map else self._invalid_source(item)
            for item in reader.sequence("sourceDescriptions") or []
        )
        workflows = tuple(
            self._workflow(item) if item.is_map else self._invalid_workflow(item)
            for item in reader.sequence("workflows") or []
        )

        components = None
        components_node = reader.mapping("components")
        if components_node is not None:
            components = self._components(components_node)

        section_ranges = {
            key: reader.entry_range(key) for key in SECTION_KEYS if root.has(key)
        }

        return DocumentModel(
            **reader.meta(),
            arazzo=arazzo,
            info=info,
            source_descriptions=sources,
            workflows=workflows,
            components=components,
            section_ranges=section_ranges,
            issues=tuple(self._issues.diagnostics),
        )

    def _info(self, node: MapNode) -> Info:
        reader = _MapReader(node, self)
        return Info(
            title=reader.string("title"),
            version=reader.string("version"),
            summary=reader.string("summary"),
            description=reader.string("description"),
            **reader.meta(),
        )

    def _source(self, node: MapNode) -> SourceDescription:
        reader = _MapReader(node, self)
        name = reader.string("name")
        url = reader.string("url")
        is_valid = name is not None and url is not None
        if not is_valid:
            self._stub("sourceDescription", name, node.range)
        return SourceDescription(
            name=name,
            url=url,
            type=reader.string("type"),
            description=reader.string("description"),
            is_valid=is_valid,
            **reader.meta(),
        )

    def _invalid_source(self, node: Node) -> SourceDescription:
        self._not_a_mapping("sourceDescriptions", node)
        self._stub("sourceDescription", None, node.range)
        return SourceDescription(range=node.range, is_valid=False, wrong_kind=True)

    # ==================== Workflows and steps ====================

    def _workflow(self, node: MapNode) -> Workflow:
        reader = _MapReader(node, self)
        workflow_id = reader.string("workflowId")

        depends_on = tuple(self._id_ref(item) for item in reader.sequence("dependsOn") or [])
        steps = tuple(
            self._step(item) if item.is_map else self._invalid_step(item)
            for item in reader.sequence("steps") or []
        )

        is_valid = workflow_id is not None
        if not is_valid:
            self._stub("workflow", workflow_id, node.range)

        return Workflow(
            workflow_id=workflow_id,
            summary=reader.string("summary"),
            description=reader.string("description"),
            inputs=reader.plain("inputs"),
            depends_on=depends_on,
            steps=steps,
            steps_range=reader.entry_range("steps"),
            parameters=self._parameters(reader),
            success_actions=self._actions(reader, "successActions"),
            failure_actions=self._actions(reader, "failureActions"),
            outputs=self._outputs(reader),
            is_valid=is_valid,
            **reader.meta(),
        )

    def _invalid_workflow(self, node: Node) -> Workflow:
        self._not_a_mapping("workflows", node)
        self._stub("workflow", None, node.range)
        return Workflow(range=node.range, is_valid=False, wrong_kind=True)

    def _id_ref(self, node: Node) -> IdRef:
        if node.is_scalar and node.value is not None:
            return IdRef(value=node.text, range=node.range)
        self._issue("INVALID_TYPE", "dependsOn entries must be strings", node.range)
        return IdRef(range=node.range, is_valid=False, wrong_kind=True)

    def _step(self, node: MapNode) -> Step:
        reader = _MapReader(node, self)
        step_id = reader.string("stepId")

        request_body = None
        body_node = reader.mapping("requestBody")
        if body_node is not None:
            request_body = self._request_body(body_node)

        step = Step(
            step_id=step_id,
            description=reader.string("description"),
            operation_id=reader.string("operationId"),
            operation_path=reader.string("operationPath"),
            workflow_id=reader.string("workflowId"),
            parameters=self._parameters(reader),
            request_body=request_body,
            success_criteria=self._criteria(reader, "successCriteria"),
            on_success=self._actions(reader, "onSuccess"),
            on_failure=self._actions(reader, "onFailure"),
            outputs=self._outputs(reader),
            **reader.meta(),
        )
        if step_id is None or len(step.operation_refs) != 1:
            self._stub("step", step_id, node.range)
            step = step.model_copy(update={"is_valid": False})
        return step

    def _invalid_step(self, node: Node) -> Step:
        self._not_a_mapping("steps", node)
        self._stub("step", None, node.range)
        return Step(range=node.range, is_valid=False, wrong_kind=True)

    def _request_body(self, node: MapNode) -> RequestBody:
        reader = _MapReader(node, self)
        replacements = []
        for item in reader.sequence("replacements") or []:
            if not item.is_map:
                self._not_a_mapping("replacements", item)
                replacements.append(PayloadReplacement(range=item.range, is_valid=False, wrong_kind=True))
                continue
            item_reader = _MapReader(item, self)
            replacements.append(PayloadReplacement(
                target=item_reader.string("target"),
                value=item_reader.plain("value"),
                is_valid=item_reader.has("target") and item_reader.has("value"),
                **item_reader.meta(),
            ))
        return RequestBody(
            content_type=reader.string("contentType"),
            payload=reader.plain("payload"),
            replacements=tuple(replacements),
            **reader.meta(),
        )

    def _outputs(self, reader: _MapReader, key: str = "outputs") -> tuple[Output, ...]:
        node = reader.mapping(key)
        if node is None:
            return ()
        outputs = []
        for entry in node.entries:
            outputs.append(Output(
                name=str(entry.key.value),
                value=to_plain(entry.value),
                range=entry.range,
                field_ranges={"name": entry.key.range, "value": entry.value.range},
                present_fields=frozenset({"name", "value"}),
            ))
        return tuple(outputs)

    # ==================== Parameters ====================

    def _parameters(self, reader: _MapReader) -> tuple[ParameterEntry, ...]:
        entries: list[ParameterEntry] = []
        for item in reader.sequence("parameters") or []:
            if not item.is_map:
                self._not_a_mapping("parameters", item)
                self._stub("parameter", None, item.range)
                entries.append(Parameter(range=item.range, is_valid=False, wrong_kind=True))
            elif item.has("reference"):
                entries.append(self._reusable(item))
            else:
                entries.append(self._parameter(item))
        return tuple(entries)

    def _parameter(self, node: MapNode) -> Parameter:
        reader = _MapReader(node, self)
        name = reader.string("name")
        is_valid = name is not None and reader.has("value")
        if not is_valid:
            self._stub("parameter", name, node.range)
        return Parameter(
            name=name,
            location=reader.string("in"),
            value=reader.plain("value"),
            is_valid=is_valid,
            **reader.meta(),
        )

    def _reusable(self, node: MapNode) -> ReusableRef:
        reader = _MapReader(node, self)
        reference = reader.string("reference")
        if reference is None:
            self._stub("reference", None, node.range)
        return ReusableRef(
            reference=reference,
            value=reader.plain("value"),
            is_valid=reference is not None,
            **reader.meta(),
        )

    # ==================== Criteria ====================

    def _criteria(self, reader: _MapReader, key: str) -> tuple[Criterion, ...]:
        criteria = []
        for item in reader.sequence(key) or []:
            if item.is_map:
                criteria.append(self._criterion(item))
            else:
                self._not_a_mapping(key, item)
                self._stub("criterion", None, item.range)
                criteria.append(Criterion(range=item.range, is_valid=False, wrong_kind=True))
        return tuple(criteria)

    def _criterion(self, node: MapNode) -> Criterion:
        reader = _MapReader(node, self)
        condition = reader.string("condition")

        criterion_type: Any = None
        if reader.has("type"):
            type_node = node.get("type")
            if type_node.is_map:
                type_reader = _MapReader(type_node, self)
                criterion_type = CriterionExpressionType(
                    type=type_reader.string("type"),
                    version=type_reader.string("version"),
                    **type_reader.meta(),
                )
            else:
                criterion_type = reader.string("type")

        if condition is None:
            self._stub("criterion", None, node.range)
        return Criterion(
            condition=condition,
            context=reader.string("context"),
            type=criterion_type,
            is_valid=condition is not None,
            **reader.meta(),
        )

    # ==================== Actions ====================

    def _actions(self, reader: _MapReader, key: str) -> Optional[tuple[ActionEntry, ...]]:
        items = reader.sequence(key)
        if items is None:
            return None
        entries: list[ActionEntry] = []
        for item in items:
            if not item.is_map:
                self._not_a_mapping(key, item)
                self._stub("action", None, item.range)
                entries.append(UnknownAction(range=item.range, is_valid=False, wrong_kind=True))
            elif item.has("reference"):
                entries.append(self._reusable(item))
            else:
                entries.append(self._action(item))
        return tuple(entries)

    def _action(self, node: MapNode) -> ActionEntry:
        reader = _MapReader(node, self)
        action_type = reader.string("type")
        common: dict[str, Any] = {
            "name": reader.string("name"),
            "step_id": reader.string("stepId"),
            "workflow_id": reader.string("workflowId"),
            "criteria": self._criteria(reader, "criteria"),
            "outputs": self._outputs(reader),
        }

        if action_type == "end":
            action: ActionEntry = EndAction(**common, **reader.meta())
        elif action_type == "goto":
            action = GotoAction(**common, **reader.meta())
        elif action_type == "retry":
            retry_after = reader.number("retryAfter")
            retry_limit = reader.integer("retryLimit")
            action = RetryAction(
                **common,
                retry_after=retry_after,
                retry_limit=retry_limit if retry_limit is not None else self.default_retry_limit,
                retry_limit_declared=retry_limit is not None,
                **reader.meta(),
            )
        else:
            action = UnknownAction(**common, type=action_type, is_valid=False, **reader.meta())

        if action.is_valid and action.type in ("goto", "retry") and len(action.declared_targets) != 1:
            action = action.model_copy(update={"is_valid": False})
        if not action.is_valid:
            self._stub("action", action.name, node.range)
        return action

    # ==================== Components ====================

    def _components(self, node: MapNode) -> Components:
        reader = _MapReader(node, self)
        field_ranges = dict(reader.field_ranges)

        inputs: dict[str, Any] = {}
        inputs_node = reader.mapping("inputs")
        if inputs_node is not None:
            for entry in inputs_node.entries:
                name = str(entry.key.value)
                inputs[name] = to_plain(entry.value)
                field_ranges[f"inputs.{name}"] = entry.key.range

        parameters: dict[str, Parameter] = {}
        parameters_node = reader.mapping("parameters")
        if parameters_node is not None:
            for entry in parameters_node.entries:
                name = str(entry.key.value)
                field_ranges[f"parameters.{name}"] = entry.key.range
                if entry.value.is_map:
                    parameters[name] = self._parameter(entry.value)
                else:
                    self._not_a_mapping("components.parameters", entry.value)
                    self._stub("parameter", name, entry.value.range)
                    parameters[name] = Parameter(name=name, range=entry.value.range, is_valid=False, wrong_kind=True)

        action_maps: dict[str, dict[str, Any]] = {"successActions": {}, "failureActions": {}}
        for category, actions in action_maps.items():
            category_node = reader.mapping(category)
            if category_node is None:
                continue
            for entry in category_node.entries:
                name = str(entry.key.value)
                field_ranges[f"{category}.{name}"] = entry.key.range
                action = self._component_action(category, name, entry.value)
                actions[name] = action

        return Components(
            inputs=inputs,
            parameters=parameters,
            success_actions=action_maps["successActions"],
            failure_actions=action_maps["failureActions"],
            range=node.range,
            field_ranges=field_ranges,
            present_fields=frozenset(reader.present),
            malformed_fields=frozenset(reader.malformed),
        )

    def _component_action(self, category: str, name: str, node: Node) -> ActionEntry:
        if not node.is_map:
            self._not_a_mapping(f"components.{category}", node)
            self._stub("action", name, node.range)
            return UnknownAction(name=name, range=node.range, is_valid=False, wrong_kind=True)
        if node.has("reference"):
            self._issue(
                "INVALID_COMPONENT",
                f"components.{category}.{name} must be an action object, not a reference",
                node.range,
            )
            self._stub("action", name, node.range)
            return UnknownAction(name=name, range=node.range, is_valid=False, wrong_kind=True)
        return self._action(node)


def build_document_model(tree: Node, default_retry_limit: int = DEFAULT_RETRY_LIMIT) -> BuildResult:
    """
    Build a typed document model from a range-annotated tree.

    Convenience function for the session pipeline.
    """
    return DocumentModelBuilder(default_retry_limit=default_retry_limit).build(tree)
