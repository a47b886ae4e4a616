from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Set

from .policy_set import POLICY_ID, policy_of
from .references import ObjectKey, Reference, ReferenceLedger, objects_of_type, objects_with_id, references_from
from .runtime import ConversionContext, ObjectRemovedEvent
from .schema import REFERENCE_INDEX, ObjectType
from .tree import DocumentTree

log = logging.getLogger("policyfold.sweeper")

RELYING_PARTY_TAG = "RelyingParty"


@dataclass(frozen=True, slots=True)
class RemovedObject:
    object_type: ObjectType
    object_id: str
    policy_id: Optional[str]
    cascade: bool


class UnreferencedObjectSweeper:
    """Removes every policy object nothing references, cascading the removal
    through the objects the removed element itself referenced.

    Liveness is decided per object set, not per instance: an id that is
    defined in several policies of the chain (an override) stays as long as
    one reference to it exists, and every definition goes once none does.

    Each type is scanned once, in reference index order. Cascades are driven
    by recursion from the removal that dropped the last reference, not by
    rescanning.
    """

    def __init__(self, tree: DocumentTree, context: Optional[ConversionContext] = None) -> None:
        self._tree = tree
        self._context = context
        self._ledger = ReferenceLedger(tree)
        self._removed: List[RemovedObject] = []

    def sweep(self) -> List[RemovedObject]:
        tree = self._tree
        for object_type in REFERENCE_INDEX:
            log.info("Searching unreferenced objects of type %s", object_type.label)
            dead = [
                element
                for element in objects_of_type(tree, object_type)
                if not self._is_root(element)
                and not self._ledger.is_referenced(object_type, tree.get(element, "Id") or "")
            ]
            for element in dead:
                # an earlier cascade may already have taken it out
                if tree.is_attached(element):
                    self._remove(element, object_type, cascade=False)
        return list(self._removed)

    def _is_root(self, element: int) -> bool:
        # the relying party's protocol profile is used, never referenced
        return any(self._tree.local_name(a) == RELYING_PARTY_TAG for a in self._tree.ancestors(element))

    def _remove(self, element: int, object_type: ObjectType, *, cascade: bool) -> None:
        tree = self._tree
        object_id = tree.get(element, "Id") or ""
        owner = policy_of(tree, element)
        policy_id = tree.get(owner, POLICY_ID) if owner is not None else None
        log.info("Removing unreferenced %s '%s'", object_type.label, object_id)

        outgoing = list(references_from(tree, element))
        tree.detach(element)
        self._ledger.discard(outgoing)
        self._record(RemovedObject(object_type, object_id, policy_id, cascade))

        for ref in self._dereferenced(outgoing):
            log.info("%s '%s' has been de-referenced", ref.object_type.label, ref.object_id)
            # overrides: the same id may be defined in several policies
            for obj in objects_with_id(tree, ref.object_type, ref.object_id):
                if tree.is_attached(obj) and not self._is_root(obj):
                    self._remove(obj, ref.object_type, cascade=True)

    def _dereferenced(self, outgoing: List[Reference]) -> List[Reference]:
        seen: Set[ObjectKey] = set()
        out: List[Reference] = []
        for ref in outgoing:
            if ref.key in seen:
                continue
            seen.add(ref.key)
            if not self._ledger.is_referenced(ref.object_type, ref.object_id):
                out.append(ref)
        return out

    def _record(self, removed: RemovedObject) -> None:
        self._removed.append(removed)
        if self._context is not None:
            self._context.emit_event(
                ObjectRemovedEvent(
                    object_type=removed.object_type.label,
                    object_id=removed.object_id,
                    policy_id=removed.policy_id,
                    cascade=removed.cascade,
                )
            )


def remove_unreferenced_objects(
    tree: DocumentTree,
    context: Optional[ConversionContext] = None,
) -> List[RemovedObject]:
    """Run one full sweep over ``tree``; returns what was removed, in order."""

    return UnreferencedObjectSweeper(tree, context).sweep()
