"""
Action helpers shared by the structural validator and the graph builder.

Both stages resolve action targets through resolve_action_target() so they
report identical reference diagnostics, which the session de-duplicates.
"""

import re
from dataclasses import dataclass
from typing import Literal, Optional

from arazzo_workbench.core.diagnostics import Diagnostic, DiagnosticCollector, DiagnosticKind
from arazzo_workbench.core.models import (
    Action,
    ActionEntry,
    DocumentModel,
    ReusableRef,
    Step,
    Workflow,
)

Outcome = Literal["success", "failure"]

# Components category an outcome's reusable actions must live in
OUTCOME_CATEGORIES: dict[str, str] = {
    "success": "successActions",
    "failure": "failureActions",
}

COMPONENT_REFERENCE_PATTERN = re.compile(r"^\$components\.([^.]+)\.([^.]+)$")
SOURCE_REFERENCE_PREFIX = "$sourceDescriptions."


@dataclass(frozen=True)
class ActionTarget:
    """A resolved goto/retry target."""

    kind: Literal["step", "workflow"]
    id: str


def parse_component_reference(reference: Optional[str]) -> Optional[tuple[str, str]]:
    """Split "$components.<category>.<name>" into (category, name)."""
    if not reference:
        return None
    match = COMPONENT_REFERENCE_PATTERN.match(reference)
    if not match:
        return None
    return match.group(1), match.group(2)


def source_name_of(reference: str) -> Optional[str]:
    """Source name from a "$sourceDescriptions.<name>[.<ref>]" reference."""
    if not reference.startswith(SOURCE_REFERENCE_PREFIX):
        return None
    name = reference[len(SOURCE_REFERENCE_PREFIX):].split(".", 1)[0]
    return name or None


def dereference_action(entry: ActionEntry, model: DocumentModel, outcome: Outcome) -> Optional[Action]:
    """
    Resolve a reusable action reference to the component it names.

    Returns None when the reference does not point into the outcome's
    components category or names a missing component.
    """
    if not isinstance(entry, ReusableRef):
        return entry
    parsed = parse_component_reference(entry.reference)
    if parsed is None or model.components is None:
        return None
    category, name = parsed
    if category != OUTCOME_CATEGORIES[outcome]:
        return None
    return model.components.category(category).get(name)


def effective_actions(step: Step, workflow: Workflow, outcome: Outcome) -> tuple[ActionEntry, ...]:
    """
    Actions that apply to a step for an outcome.

    A step's own list, when declared, overrides the workflow defaults.
    """
    own = step.on_success if outcome == "success" else step.on_failure
    if own is not None:
        return own
    defaults = workflow.success_actions if outcome == "success" else workflow.failure_actions
    return defaults or ()


def resolve_action_target(
    action: Action,
    workflow: Workflow,
    model: DocumentModel,
) -> tuple[Optional[ActionTarget], list[Diagnostic]]:
    """
    Resolve the stepId/workflowId target of a goto or retry action.

    Args:
        action: The (dereferenced) action
        workflow: Workflow whose steps a stepId target is looked up in
        model: Document model for workflow and source lookups

    Returns:
        (target, diagnostics); target is None when the action declares no
        single target or the target does not exist
    """
    collector = DiagnosticCollector()
    if len(action.declared_targets) != 1:
        return None, collector.diagnostics

    if action.has_field("stepId"):
        step_id = action.step_id
        if step_id is not None and workflow.get_step(step_id) is not None:
            return ActionTarget(kind="step", id=step_id), collector.diagnostics
        collector.add_error(
            DiagnosticKind.REFERENCE,
            "UNKNOWN_STEP",
            f'Unknown step "{step_id}" in workflow "{workflow.workflow_id}"',
            action.range_of("stepId"),
        )
        return None, collector.diagnostics

    workflow_id = action.workflow_id or ""
    source_name = source_name_of(workflow_id)
    if source_name is not None:
        if model.get_source(source_name) is not None:
            return ActionTarget(kind="workflow", id=workflow_id), collector.diagnostics
        collector.add_error(
            DiagnosticKind.REFERENCE,
            "UNKNOWN_SOURCE",
            f'Unknown source description "{source_name}"',
            action.range_of("workflowId"),
        )
        return None, collector.diagnostics

    if model.get_workflow(workflow_id) is not None:
        return ActionTarget(kind="workflow", id=workflow_id), collector.diagnostics
    collector.add_error(
        DiagnosticKind.REFERENCE,
        "UNKNOWN_WORKFLOW",
        f'Unknown workflow "{workflow_id}"',
        action.range_of("workflowId"),
    )
    return None, collector.diagnostics
