from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .schema import REFERENCE_INDEX, ObjectType, ReferenceSource
from .tree import DocumentTree

ObjectKey = Tuple[ObjectType, str]


def object_key(object_type: ObjectType, object_id: str) -> ObjectKey:
    """Identity used for liveness: ids compare case-insensitively."""

    return object_type, object_id.lower()


@dataclass(frozen=True, slots=True)
class Reference:
    """A directed edge from a source element to an object (type + id)."""

    object_type: ObjectType
    object_id: str
    source: int

    @property
    def key(self) -> ObjectKey:
        return object_key(self.object_type, self.object_id)


def _sources_by_leaf() -> Dict[str, List[Tuple[ObjectType, ReferenceSource]]]:
    table: Dict[str, List[Tuple[ObjectType, ReferenceSource]]] = {}
    for object_type, sources in REFERENCE_INDEX.items():
        for source in sources:
            table.setdefault(source.path.leaf, []).append((object_type, source))
    return table


_SOURCES_BY_LEAF = _sources_by_leaf()


def references_from(tree: DocumentTree, index: int, *, shallow: bool = False) -> Iterator[Reference]:
    """Yield every reference held by ``index`` and its descendants.

    With ``shallow=True`` only the element's own attributes are read (the
    element stands in for an empty copy of itself). Multi-step source paths
    are matched against the element's real ancestors.
    """

    elements: Iterable[int] = (index,) if shallow else tree.iter_elements(index)
    for element in elements:
        for object_type, source in _SOURCES_BY_LEAF.get(tree.local_name(element), ()):
            if shallow and source.locator.is_text:
                continue
            if not source.path.matches(tree, element):
                continue
            value = source.locator.read(tree, element)
            if value:
                yield Reference(object_type=object_type, object_id=value, source=element)


def objects_of_type(tree: DocumentTree, object_type: ObjectType, within: Optional[int] = None) -> List[int]:
    """Definitions of ``object_type`` (elements on its path carrying an ``Id``)."""

    path = object_type.path
    return [
        i
        for i in tree.iter_elements(within)
        if tree.local_name(i) == path.leaf and tree.get(i, "Id") and path.matches(tree, i)
    ]


def objects_with_id(
    tree: DocumentTree,
    object_type: ObjectType,
    object_id: str,
    within: Optional[int] = None,
) -> List[int]:
    """Every definition of ``object_type`` whose ``Id`` matches case-insensitively.

    Overrides mean one id may be defined once per policy in a chain, so this
    returns all of them.
    """

    wanted = object_id.lower()
    return [i for i in objects_of_type(tree, object_type, within) if (tree.get(i, "Id") or "").lower() == wanted]


class ReferenceLedger:
    """Live count of references per object key across the whole document.

    Built by one scan of the document; callers report the references of each
    subtree they remove through :meth:`discard`, so lookups stay equivalent to
    rescanning the document without paying for it.
    """

    def __init__(self, tree: DocumentTree) -> None:
        self._counts: Counter[ObjectKey] = Counter()
        if tree.root is not None:
            for ref in references_from(tree, tree.root):
                self._counts[ref.key] += 1

    def count(self, object_type: ObjectType, object_id: str) -> int:
        return self._counts.get(object_key(object_type, object_id), 0)

    def is_referenced(self, object_type: ObjectType, object_id: str) -> bool:
        return self.count(object_type, object_id) > 0

    def discard(self, refs: Iterable[Reference]) -> None:
        for ref in refs:
            remaining = self._counts.get(ref.key, 0) - 1
            if remaining > 0:
                self._counts[ref.key] = remaining
            else:
                self._counts.pop(ref.key, None)


def is_referenced(tree: DocumentTree, object_type: ObjectType, object_id: str) -> bool:
    """Scan the whole document for a reference to ``object_type``/``object_id``."""

    wanted = object_key(object_type, object_id)
    if tree.root is None:
        return False
    return any(ref.key == wanted for ref in references_from(tree, tree.root))
