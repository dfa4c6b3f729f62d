"""
Runtime expression resolution.

Parses ``$``-prefixed runtime expressions and checks them against a document
model without evaluating anything.

Supported forms:
- $url, $method, $statusCode
- $request.header.<name>, $request.query.<name>, $request.path.<name>, $request.body[#/pointer]
- $response.header.<name>, $response.query.<name>, $response.body[#/pointer]
- $inputs.<name>, $outputs.<name>
- $steps.<stepId>.outputs.<name>
- $workflows.<workflowId>.inputs|outputs.<name>
- $sourceDescriptions.<name>[.<reference>]
- $components.<category>.<name>
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from arazzo_workbench.core.diagnostics import Diagnostic, DiagnosticCollector, DiagnosticKind
from arazzo_workbench.core.models import DocumentModel, Step, Workflow
from arazzo_workbench.core.tree import EMPTY_RANGE, Range

logger = logging.getLogger(__name__)


class ExpressionSyntaxError(Exception):
    """Raised when a runtime expression cannot be parsed."""

    def __init__(self, message: str, expression: str, position: Optional[int] = None):
        self.expression = expression
        self.position = position
        super().__init__(message)


class ExpressionKind(str, Enum):
    """What a runtime expression refers to."""

    URL = "url"
    METHOD = "method"
    STATUS_CODE = "statusCode"
    REQUEST = "request"
    RESPONSE = "response"
    INPUTS = "inputs"
    OUTPUTS = "outputs"
    STEPS = "steps"
    WORKFLOWS = "workflows"
    SOURCE_DESCRIPTIONS = "sourceDescriptions"
    COMPONENTS = "components"
    UNKNOWN = "unknown"


PREFIXES = frozenset(kind.value for kind in ExpressionKind if kind is not ExpressionKind.UNKNOWN)

# Prefixes that take no segments
SCALAR_PREFIXES = frozenset({"url", "method", "statusCode"})

COMPONENT_CATEGORIES = ("inputs", "parameters", "successActions", "failureActions")

REQUEST_SOURCES = ("header", "query", "path", "body")
RESPONSE_SOURCES = ("header", "query", "body")


@dataclass
class ParsedExpression:
    """Parsed form of a runtime expression."""

    expression: str
    prefix: str
    segments: list[str]  # Dotted segments after the prefix
    pointer: Optional[str] = None  # JSON pointer after '#', including the leading '/'

    @property
    def kind(self) -> ExpressionKind:
        return ExpressionKind(self.prefix)


@dataclass
class EmbeddedExpression:
    """A {$...} expression found inside a larger string."""

    expression: str
    start: int  # Offset of the '$' in the containing string
    end: int


@dataclass
class ResolutionContext:
    """Scope in which an expression is resolved."""

    model: DocumentModel
    workflow: Optional[Workflow] = None
    step: Optional[Step] = None
    # Range that diagnostics are attached to
    range: Range = EMPTY_RANGE
    # Workflow-level outputs may reference steps of dependsOn workflows
    allow_depends_on: bool = False


@dataclass
class ResolutionResult:
    """Outcome of resolving one expression."""

    valid: bool
    kind: ExpressionKind
    expression: str
    diagnostics: list[Diagnostic] = field(default_factory=list)


class ExpressionResolver:
    """
    Parses and validates runtime expressions.

    Syntax problems and unresolvable well-known segments are errors; output
    and input names that may legitimately come from an external operation are
    only warnings.
    """

    PREFIX_PATTERN = re.compile(r"^\$([A-Za-z]+)")

    # {$...} occurrences inside strings; braces cannot nest
    EMBEDDED_PATTERN = re.compile(r"\{(\$[^{}\s]*)\}")

    INVALID_SEGMENT_PATTERN = re.compile(r"[\s{}]")

    def parse(self, expression: str) -> ParsedExpression:
        """
        Parse an expression into prefix, segments and pointer.

        Raises:
            ExpressionSyntaxError: If the expression is malformed
        """
        if not expression.startswith("$"):
            raise ExpressionSyntaxError("Runtime expression must start with '$'", expression, 0)

        match = self.PREFIX_PATTERN.match(expression)
        if not match:
            raise ExpressionSyntaxError("Missing runtime expression prefix after '$'", expression, 1)

        prefix = match.group(1)
        if prefix not in PREFIXES:
            raise ExpressionSyntaxError(f'Unknown runtime expression prefix "${prefix}"', expression, 1)

        rest = expression[match.end():]
        pointer = None
        if "#" in rest:
            rest, pointer = rest.split("#", 1)
            self._check_pointer(expression, pointer)

        segments: list[str] = []
        if rest:
            if not rest.startswith("."):
                raise ExpressionSyntaxError(
                    f'Unexpected "{rest[0]}" after "${prefix}"', expression, match.end()
                )
            segments = rest[1:].split(".")
            position = match.end() + 1
            for segment in segments:
                if not segment:
                    raise ExpressionSyntaxError("Empty segment in runtime expression", expression, position)
                bad = self.INVALID_SEGMENT_PATTERN.search(segment)
                if bad:
                    raise ExpressionSyntaxError(
                        f'Invalid character "{bad.group(0)}" in runtime expression',
                        expression,
                        position + bad.start(),
                    )
                position += len(segment) + 1

        if prefix in SCALAR_PREFIXES and (segments or pointer is not None):
            raise ExpressionSyntaxError(f'"${prefix}" does not take segments', expression, match.end())

        return ParsedExpression(expression=expression, prefix=prefix, segments=segments, pointer=pointer)

    def _check_pointer(self, expression: str, pointer: str) -> None:
        if not pointer.startswith("/"):
            raise ExpressionSyntaxError("JSON pointer must start with '/'", expression, expression.index("#") + 1)
        for index, char in enumerate(pointer):
            if char == "~" and pointer[index + 1:index + 2] not in ("0", "1"):
                raise ExpressionSyntaxError(
                    "Invalid escape in JSON pointer", expression, expression.index("#") + 1 + index
                )

    def find_embedded(self, text: str) -> list[EmbeddedExpression]:
        """Find all {$...} expressions in a string."""
        return [
            EmbeddedExpression(expression=match.group(1), start=match.start(1), end=match.end(1))
            for match in self.EMBEDDED_PATTERN.finditer(text)
        ]

    def resolve(self, expression: str, context: ResolutionContext) -> ResolutionResult:
        """
        Resolve an expression against the model.

        Args:
            expression: The runtime expression, including the leading '$'
            context: Model and scope to resolve in

        Returns:
            ResolutionResult; valid is False only when an error was emitted
        """
        collector = DiagnosticCollector()
        try:
            parsed = self.parse(expression)
        except ExpressionSyntaxError as e:
            collector.add_error(
                DiagnosticKind.EXPRESSION,
                "INVALID_EXPRESSION",
                f'Invalid runtime expression "{expression}": {e}',
                context.range,
            )
            return ResolutionResult(
                valid=False,
                kind=ExpressionKind.UNKNOWN,
                expression=expression,
                diagnostics=collector.diagnostics,
            )

        checker = {
            "request": self._check_request,
            "response": self._check_response,
            "inputs": self._check_inputs,
            "outputs": self._check_outputs,
            "steps": self._check_steps,
            "workflows": self._check_workflows,
            "sourceDescriptions": self._check_source,
            "components": self._check_components,
        }.get(parsed.prefix)
        if checker is not None:
            checker(parsed, context, collector)

        logger.debug(f"Resolved {expression}: {len(collector.diagnostics)} diagnostics")
        return ResolutionResult(
            valid=not collector.has_errors,
            kind=parsed.kind,
            expression=expression,
            diagnostics=collector.diagnostics,
        )

    # ==================== Prefix checks ====================

    def _error(self, collector: DiagnosticCollector, context: ResolutionContext, code: str, message: str) -> None:
        collector.add_error(DiagnosticKind.EXPRESSION, code, message, context.range)

    def _warning(self, collector: DiagnosticCollector, context: ResolutionContext, code: str, message: str) -> None:
        collector.add_warning(DiagnosticKind.EXPRESSION, code, message, context.range)

    def _check_source(self, parsed: ParsedExpression, context: ResolutionContext, collector: DiagnosticCollector) -> None:
        if not parsed.segments:
            self._error(collector, context, "INCOMPLETE_EXPRESSION",
                        f'Expected "$sourceDescriptions.<name>" in "{parsed.expression}"')
            return
        name = parsed.segments[0]
        if context.model.get_source(name) is None:
            self._error(collector, context, "UNKNOWN_SOURCE", f'Unknown source description "{name}"')

    def _check_message(
        self,
        parsed: ParsedExpression,
        context: ResolutionContext,
        collector: DiagnosticCollector,
        sources: tuple[str, ...],
    ) -> None:
        if not parsed.segments:
            if parsed.pointer is None:
                self._error(collector, context, "INCOMPLETE_EXPRESSION",
                            f'Expected one of {", ".join(sources)} after "${parsed.prefix}"')
            else:
                self._error(collector, context, "INVALID_EXPRESSION",
                            f'JSON pointer is only allowed after "${parsed.prefix}.body"')
            return

        source = parsed.segments[0]
        if source not in sources:
            self._error(collector, context, "UNKNOWN_SOURCE_FIELD",
                        f'Unknown ${parsed.prefix} field "{source}"; expected one of {", ".join(sources)}')
        elif source == "body":
            if len(parsed.segments) > 1:
                self._warning(collector, context, "BODY_DOT_ACCESS",
                              f'Use a JSON pointer ("${parsed.prefix}.body#/...") to address body fields')
        elif len(parsed.segments) < 2:
            self._error(collector, context, "INCOMPLETE_EXPRESSION",
                        f'Expected a name after "${parsed.prefix}.{source}"')
        elif parsed.pointer is not None:
            self._error(collector, context, "INVALID_EXPRESSION",
                        f'JSON pointer is only allowed after "${parsed.prefix}.body"')

    def _check_request(self, parsed: ParsedExpression, context: ResolutionContext, collector: DiagnosticCollector) -> None:
        self._check_message(parsed, context, collector, REQUEST_SOURCES)

    def _check_response(self, parsed: ParsedExpression, context: ResolutionContext, collector: DiagnosticCollector) -> None:
        self._check_message(parsed, context, collector, RESPONSE_SOURCES)

    def _check_inputs(self, parsed: ParsedExpression, context: ResolutionContext, collector: DiagnosticCollector) -> None:
        if not parsed.segments:
            self._error(collector, context, "INCOMPLETE_EXPRESSION", 'Expected "$inputs.<name>"')
            return
        if context.workflow is None:
            return
        declared = declared_input_names(context.workflow)
        name = parsed.segments[0]
        if declared is not None and name not in declared:
            self._warning(collector, context, "UNDECLARED_INPUT",
                          f'Input "{name}" is not declared in workflow "{context.workflow.workflow_id}" inputs')

    def _check_outputs(self, parsed: ParsedExpression, context: ResolutionContext, collector: DiagnosticCollector) -> None:
        if not parsed.segments:
            self._error(collector, context, "INCOMPLETE_EXPRESSION", 'Expected "$outputs.<name>"')

    def _check_steps(self, parsed: ParsedExpression, context: ResolutionContext, collector: DiagnosticCollector) -> None:
        segments = parsed.segments
        if len(segments) < 3 or segments[1] != "outputs":
            self._error(collector, context, "INCOMPLETE_EXPRESSION",
                        f'Expected "$steps.<stepId>.outputs.<name>" but got "{parsed.expression}"')
            return

        step_id, output_name = segments[0], segments[2]
        step = self._find_step(step_id, context)
        if step is None:
            self._error(collector, context, "UNKNOWN_STEP_REFERENCE",
                        f'Unknown step "{step_id}" in runtime expression "{parsed.expression}"')
        elif output_name not in step.output_names:
            self._warning(collector, context, "UNDECLARED_STEP_OUTPUT",
                          f'Step "{step_id}" does not declare output "{output_name}"')

    def _find_step(self, step_id: str, context: ResolutionContext) -> Optional[Step]:
        if context.workflow is None:
            for workflow in context.model.workflows:
                step = workflow.get_step(step_id)
                if step is not None:
                    return step
            return None

        step = context.workflow.get_step(step_id)
        if step is None and context.allow_depends_on:
            for dependency_id in context.workflow.depends_on_ids:
                dependency = context.model.get_workflow(dependency_id)
                if dependency is not None:
                    step = dependency.get_step(step_id)
                    if step is not None:
                        break
        return step

    def _check_workflows(self, parsed: ParsedExpression, context: ResolutionContext, collector: DiagnosticCollector) -> None:
        segments = parsed.segments
        if len(segments) < 3 or segments[1] not in ("inputs", "outputs"):
            self._error(collector, context, "INCOMPLETE_EXPRESSION",
                        f'Expected "$workflows.<workflowId>.inputs|outputs.<name>" but got "{parsed.expression}"')
            return

        workflow_id, field_name, name = segments[0], segments[1], segments[2]
        workflow = context.model.get_workflow(workflow_id)
        if workflow is None:
            self._error(collector, context, "UNKNOWN_WORKFLOW_REFERENCE",
                        f'Unknown workflow "{workflow_id}" in runtime expression "{parsed.expression}"')
        elif field_name == "outputs" and name not in workflow.output_names:
            self._warning(collector, context, "UNDECLARED_WORKFLOW_OUTPUT",
                          f'Workflow "{workflow_id}" does not declare output "{name}"')

    def _check_components(self, parsed: ParsedExpression, context: ResolutionContext, collector: DiagnosticCollector) -> None:
        segments = parsed.segments
        if len(segments) < 2:
            self._error(collector, context, "INCOMPLETE_EXPRESSION",
                        f'Expected "$components.<category>.<name>" but got "{parsed.expression}"')
            return

        category, name = segments[0], segments[1]
        if category not in COMPONENT_CATEGORIES:
            self._error(collector, context, "UNKNOWN_COMPONENT_CATEGORY",
                        f'Unknown components category "{category}"; expected one of {", ".join(COMPONENT_CATEGORIES)}')
            return

        components = context.model.components
        entries = components.category(category) if components is not None else None
        if not entries or name not in entries:
            self._error(collector, context, "UNKNOWN_COMPONENT",
                        f'Component "{name}" is not defined in components.{category}')


def declared_input_names(workflow: Workflow) -> Optional[set[str]]:
    """Property names of a workflow's inputs schema, or None if not declared."""
    inputs = workflow.inputs
    if not isinstance(inputs, dict):
        return None
    properties = inputs.get("properties")
    if not isinstance(properties, dict):
        return None
    return set(properties)


def is_expression(value: object) -> bool:
    """Check whether a value is a runtime expression string."""
    return isinstance(value, str) and value.startswith("$")


_default_resolver = ExpressionResolver()


def parse_expression(expression: str) -> ParsedExpression:
    """Parse an expression; raises ExpressionSyntaxError when malformed."""
    return _default_resolver.parse(expression)


def resolve(expression: str, context: ResolutionContext) -> ResolutionResult:
    """
    Resolve a runtime expression against a model.

    Exposed for on-demand checks outside the full rebuild cycle.
    """
    return _default_resolver.resolve(expression, context)


def find_embedded_expressions(text: str) -> list[EmbeddedExpression]:
    return _default_resolver.find_embedded(text)
