"""
YAML parser adapter.

Composes source text with PyYAML and converts the node graph into the closed
range-annotated tree from ``arazzo_workbench.core.tree``. Parser failures are
reported as syntax diagnostics, never raised.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import yaml
from yaml.constructor import ConstructorError, SafeConstructor

from arazzo_workbench.core.diagnostics import Diagnostic, DiagnosticKind, Severity
from arazzo_workbench.core.tree import MISSING, MapEntry, MapNode, Node, Range, ScalarNode, SeqNode

logger = logging.getLogger(__name__)

# Scalars with these tags keep their source text instead of a constructed value
RAW_SCALAR_TAGS = frozenset({
    "tag:yaml.org,2002:timestamp",
    "tag:yaml.org,2002:binary",
})

# Upper bound on tree nodes once aliases are expanded
DEFAULT_MAX_NODES = 200_000


@dataclass(frozen=True)
class ParseResult:
    """Tree plus any syntax diagnostics produced while parsing."""

    tree: Node
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)
    # True when a syntax error cut the tree short
    partial: bool = False

    @property
    def has_errors(self) -> bool:
        return any(d.is_error for d in self.diagnostics)


def _syntax_error(message: str, range: Range, code: str = "YAML_SYNTAX") -> Diagnostic:
    return Diagnostic(
        severity=Severity.ERROR,
        message=message,
        range=range,
        kind=DiagnosticKind.SYNTAX,
        code=code,
    )


class _TreeConverter:
    """
    Converts a composed PyYAML node graph into tree nodes.

    Each YAML node is converted once; aliases reuse the converted subtree. The
    expanded size of the tree is tracked so a handful of nested anchors cannot
    blow up into millions of nodes.
    """

    def __init__(self, max_nodes: int = DEFAULT_MAX_NODES) -> None:
        self.constructor = SafeConstructor()
        self.diagnostics: list[Diagnostic] = []
        self.max_nodes = max_nodes
        # Ids of nodes on the current path; an alias back into it is recursive
        self._active: set[int] = set()
        # id -> (converted node, expanded size)
        self._converted: dict[int, tuple[Node, int]] = {}
        self._expanded = 0
        self._limit_reported = False

    def convert(self, node: Optional[yaml.Node]) -> Node:
        if node is None:
            return MISSING

        key = id(node)
        if key in self._converted:
            tree, size = self._converted[key]
            if self._expanded + size > self.max_nodes:
                self._report_alias_limit(node)
                return MISSING
            self._expanded += size
            return tree
        if key in self._active:
            self.diagnostics.append(
                _syntax_error("Recursive alias is not supported", self._range(node), "YAML_RECURSIVE_ALIAS")
            )
            return MISSING

        start = self._expanded
        self._expanded += 1
        self._active.add(key)
        try:
            if isinstance(node, yaml.MappingNode):
                tree = self._mapping(node)
            elif isinstance(node, yaml.SequenceNode):
                tree = SeqNode(
                    items=tuple(self.convert(item) for item in node.value),
                    range=self._range(node),
                )
            else:
                tree = ScalarNode(value=self._scalar_value(node), range=self._range(node))
        finally:
            self._active.discard(key)

        self._converted[key] = (tree, self._expanded - start)
        return tree

    def _report_alias_limit(self, node: yaml.Node) -> None:
        if self._limit_reported:
            return
        self._limit_reported = True
        logger.debug(f"Alias expansion stopped at {self._expanded} nodes")
        self.diagnostics.append(_syntax_error(
            f"Alias expansion exceeds {self.max_nodes} nodes; remaining aliases are ignored",
            self._range(node),
            "YAML_ALIAS_LIMIT",
        ))

    def _mapping(self, node: yaml.MappingNode) -> MapNode:
        entries: list[MapEntry] = []
        seen: set[str] = set()
        for key_node, value_node in node.value:
            if not isinstance(key_node, yaml.ScalarNode):
                self.diagnostics.append(
                    _syntax_error("Map keys must be scalars", self._range(key_node), "YAML_COMPLEX_KEY")
                )
                continue
            key = ScalarNode(value=key_node.value, range=self._range(key_node))
            if key_node.value in seen:
                self.diagnostics.append(
                    _syntax_error("Map keys must be unique", key.range, "YAML_DUPLICATE_KEY")
                )
            seen.add(key_node.value)
            entries.append(MapEntry(key=key, value=self.convert(value_node)))
        return MapNode(entries=tuple(entries), range=self._range(node))

    def _scalar_value(self, node: yaml.ScalarNode):
        if node.tag in RAW_SCALAR_TAGS:
            return node.value
        try:
            return self.constructor.construct_object(node, deep=True)
        except ConstructorError:
            # Unknown local tags (e.g. !Ref) keep their raw text
            return node.value

    @staticmethod
    def _range(node: yaml.Node) -> Range:
        return (node.start_mark.index, node.end_mark.index)


def _recovery_cuts(text: str, error: yaml.MarkedYAMLError) -> list[int]:
    """Starts of the lines holding the error marks, last first."""
    cuts: set[int] = set()
    for mark in (error.problem_mark, error.context_mark):
        if mark is None:
            continue
        cut = min(mark.index, len(text)) - mark.column
        if 0 <= cut < len(text):
            cuts.add(cut)
    return sorted(cuts, reverse=True)


def _recover(text: str, error: yaml.MarkedYAMLError, max_nodes: int) -> tuple[Node, list[Diagnostic]]:
    """
    Re-compose the text before the broken line.

    Everything above the error keeps its offsets, so sibling sections still
    build. Returns MISSING when no prefix parses.
    """
    for cut in _recovery_cuts(text, error):
        try:
            composed = yaml.compose(text[:cut], Loader=yaml.SafeLoader)
        except yaml.YAMLError:
            continue
        logger.debug(f"Recovered YAML prefix of {cut} characters")
        converter = _TreeConverter(max_nodes)
        return converter.convert(composed), converter.diagnostics
    return MISSING, []


def load_document(text: str, max_nodes: int = DEFAULT_MAX_NODES) -> ParseResult:
    """
    Parse YAML (or JSON) text into a range-annotated tree.

    Args:
        text: Full document text
        max_nodes: Alias expansion stops once the tree would exceed this size

    Returns:
        ParseResult. On a syntax error the error is reported at the parser's
        problem mark and the tree holds whatever precedes the broken line
        (MISSING if nothing does), with partial set.
    """
    try:
        composed = yaml.compose(text, Loader=yaml.SafeLoader)
    except yaml.MarkedYAMLError as e:
        mark = e.problem_mark or e.context_mark
        offset = min(mark.index, len(text)) if mark is not None else 0
        message = e.problem or "Invalid YAML"
        if e.context:
            message = f"{message} ({e.context})"
        logger.debug(f"YAML syntax error at offset {offset}: {message}")
        tree, diagnostics = _recover(text, e, max_nodes)
        return ParseResult(
            tree=tree,
            diagnostics=(_syntax_error(message, (offset, min(offset + 1, len(text)))), *diagnostics),
            partial=True,
        )
    except yaml.YAMLError as e:
        logger.debug(f"YAML error without position: {e}")
        return ParseResult(tree=MISSING, diagnostics=(_syntax_error(str(e), (0, 0)),), partial=True)

    converter = _TreeConverter(max_nodes)
    tree = converter.convert(composed)
    return ParseResult(tree=tree, diagnostics=tuple(converter.diagnostics))


def offset_to_position(text: str, offset: int) -> tuple[int, int]:
    """
    Convert a character offset into a 0-based (line, column) pair.

    Offsets past the end of the text clamp to the last position.
    """
    offset = max(0, min(offset, len(text)))
    line = text.count("\n", 0, offset)
    line_start = text.rfind("\n", 0, offset) + 1
    return (line, offset - line_start)
