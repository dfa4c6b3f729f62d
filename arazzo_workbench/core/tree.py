"""
Range-annotated document tree.

A closed tagged union (MapNode | SeqNode | ScalarNode | MissingNode) that the
model builder walks. It is independent of any concrete parsing library; the
YAML adapter in ``arazzo_workbench.parsing`` produces it.
"""

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Union

# (start, end) character offsets into the source text
Range = tuple[int, int]

EMPTY_RANGE: Range = (0, 0)


@dataclass(frozen=True)
class MissingNode:
    """Stands in for an absent key or a subtree the parser could not produce."""

    range: Range = EMPTY_RANGE

    is_map = False
    is_seq = False
    is_scalar = False
    is_missing = True

    def get(self, key: str) -> "Node":
        return MISSING

    def has(self, key: str) -> bool:
        return False


MISSING = MissingNode()


@dataclass(frozen=True)
class ScalarNode:
    """A leaf value (string, number, boolean or null)."""

    value: Any
    range: Range = EMPTY_RANGE

    is_map = False
    is_seq = False
    is_scalar = True
    is_missing = False

    def get(self, key: str) -> "Node":
        return MISSING

    def has(self, key: str) -> bool:
        return False

    @property
    def text(self) -> Optional[str]:
        """Scalar value as a string, or None for null."""
        if self.value is None:
            return None
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return str(self.value)


@dataclass(frozen=True)
class MapEntry:
    """A key/value pair of a MapNode."""

    key: ScalarNode
    value: "Node"

    @property
    def range(self) -> Range:
        """Range spanning the key through the end of the value."""
        end = self.value.range[1] if not self.value.is_missing else self.key.range[1]
        return (self.key.range[0], max(end, self.key.range[1]))


@dataclass(frozen=True)
class MapNode:
    """A mapping with string keys, in document order."""

    entries: tuple[MapEntry, ...] = ()
    range: Range = EMPTY_RANGE
    _index: dict[str, MapEntry] = field(default_factory=dict, init=False, repr=False, compare=False)

    is_map = True
    is_seq = False
    is_scalar = False
    is_missing = False

    def __post_init__(self) -> None:
        # First occurrence wins for duplicate keys
        for entry in self.entries:
            self._index.setdefault(str(entry.key.value), entry)

    def get(self, key: str) -> "Node":
        """Get the value node for a key, or MISSING."""
        entry = self._index.get(key)
        return entry.value if entry is not None else MISSING

    def get_entry(self, key: str) -> Optional[MapEntry]:
        """Get the full key/value entry for a key."""
        return self._index.get(key)

    def has(self, key: str) -> bool:
        return key in self._index

    def keys(self) -> list[str]:
        return list(self._index.keys())

    @property
    def items(self) -> tuple[MapEntry, ...]:
        return self.entries

    def __iter__(self) -> Iterator[MapEntry]:
        return iter(self.entries)


@dataclass(frozen=True)
class SeqNode:
    """An ordered sequence of nodes."""

    items: tuple["Node", ...] = ()
    range: Range = EMPTY_RANGE

    is_map = False
    is_seq = True
    is_scalar = False
    is_missing = False

    def get(self, key: str) -> "Node":
        return MISSING

    def has(self, key: str) -> bool:
        return False

    def __iter__(self) -> Iterator["Node"]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


Node = Union[MapNode, SeqNode, ScalarNode, MissingNode]


def to_plain(node: Node) -> Any:
    """Convert a node subtree into plain Python dicts, lists and scalars."""
    if node.is_map:
        return {str(entry.key.value): to_plain(entry.value) for entry in node.entries}
    if node.is_seq:
        return [to_plain(item) for item in node.items]
    if node.is_scalar:
        return node.value
    return None
