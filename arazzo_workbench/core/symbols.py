"""
Symbol tree builder.

Projects a document model into a navigable outline. No validation happens
here: stub entities still produce symbols at their preserved ranges, named by
position when their identifying key is missing.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict

from arazzo_workbench.core.models import DocumentModel, SourceDescription, Step, Workflow
from arazzo_workbench.core.tree import EMPTY_RANGE, Range


class SymbolKind(str, Enum):
    """Outline symbol kinds, named after editor conventions."""

    MODULE = "module"
    NAMESPACE = "namespace"
    CLASS = "class"
    METHOD = "method"
    FUNCTION = "function"
    INTERFACE = "interface"
    FIELD = "field"
    ARRAY = "array"


class SymbolNode(BaseModel):
    """One entry of the outline."""

    model_config = ConfigDict(frozen=True)

    name: str
    detail: str = ""
    kind: SymbolKind
    range: Range = EMPTY_RANGE
    children: tuple["SymbolNode", ...] = ()


def _source_symbol(index: int, source: SourceDescription) -> SymbolNode:
    if source.name is None:
        return SymbolNode(name=str(index), kind=SymbolKind.ARRAY, range=source.range)
    return SymbolNode(
        name=source.name,
        detail=source.url or "",
        kind=SymbolKind.INTERFACE,
        range=source.range,
    )


def _step_symbol(index: int, step: Step) -> SymbolNode:
    if step.step_id is None:
        return SymbolNode(name=str(index), kind=SymbolKind.ARRAY, range=step.range)
    return SymbolNode(
        name=step.step_id,
        detail=step.description or "",
        kind=SymbolKind.FUNCTION,
        range=step.range,
    )


def _workflow_symbol(index: int, workflow: Workflow) -> SymbolNode:
    children = []
    if workflow.has_field("steps"):
        children.append(SymbolNode(
            name="steps",
            kind=SymbolKind.METHOD,
            range=workflow.steps_range,
            children=tuple(_step_symbol(i, step) for i, step in enumerate(workflow.steps)),
        ))
    if workflow.outputs:
        children.append(SymbolNode(
            name="outputs",
            kind=SymbolKind.FIELD,
            range=(workflow.outputs[0].range[0], workflow.outputs[-1].range[1]),
            children=tuple(
                SymbolNode(name=output.name, kind=SymbolKind.FIELD, range=output.range)
                for output in workflow.outputs
            ),
        ))

    if workflow.workflow_id is None:
        return SymbolNode(name=str(index), kind=SymbolKind.ARRAY, range=workflow.range, children=tuple(children))
    return SymbolNode(
        name=workflow.workflow_id,
        detail=workflow.summary or "",
        kind=SymbolKind.CLASS,
        range=workflow.range,
        children=tuple(children),
    )


def _components_symbol(model: DocumentModel) -> SymbolNode:
    components = model.components
    children = []
    for category in ("inputs", "parameters", "successActions", "failureActions"):
        if not components.has_field(category):
            continue
        names = list(components.category(category))
        children.append(SymbolNode(
            name=category,
            kind=SymbolKind.FIELD,
            range=components.range_of(category),
            children=tuple(
                SymbolNode(name=name, kind=SymbolKind.FIELD, range=components.range_of(f"{category}.{name}"))
                for name in names
            ),
        ))
    return SymbolNode(
        name="components",
        kind=SymbolKind.NAMESPACE,
        range=model.section_ranges.get("components", components.range),
        children=tuple(children),
    )


def build_symbols(model: DocumentModel) -> list[SymbolNode]:
    """
    Build the outline of a document.

    Top-level groups follow document key order. sourceDescriptions is a
    module, workflows a class whose "steps" group (method) holds one
    function per step.
    """
    groups: list[tuple[int, SymbolNode]] = []
    sections = model.section_ranges

    if model.info is not None:
        groups.append((sections["info"][0], SymbolNode(
            name="info",
            detail=model.info.title or "",
            kind=SymbolKind.NAMESPACE,
            range=sections["info"],
        )))

    if "sourceDescriptions" in sections:
        groups.append((sections["sourceDescriptions"][0], SymbolNode(
            name="sourceDescriptions",
            kind=SymbolKind.MODULE,
            range=sections["sourceDescriptions"],
            children=tuple(_source_symbol(i, s) for i, s in enumerate(model.source_descriptions)),
        )))

    if "workflows" in sections:
        groups.append((sections["workflows"][0], SymbolNode(
            name="workflows",
            kind=SymbolKind.CLASS,
            range=sections["workflows"],
            children=tuple(_workflow_symbol(i, w) for i, w in enumerate(model.workflows)),
        )))

    if model.components is not None:
        components = _components_symbol(model)
        groups.append((components.range[0], components))

    groups.sort(key=lambda group: group[0])
    return [symbol for _, symbol in groups]
