from __future__ import annotations

import logging
from typing import List, Optional

from .errors import ProgressError
from .normalizer import retarget_base_references, update_base_reference
from .policy_set import BASE_POLICY_TAG, POLICY_ID, POLICY_TAG, find_base_policy, policy_of
from .references import objects_with_id, references_from
from .runtime import ConversionContext, PolicyForkedEvent, PolicySplitEvent
from .tree import DocumentTree

log = logging.getLogger("policyfold.splitter")


class PolicySplitter:
    """Keeps policies under a serialized size budget by forking base fragments.

    Splitting ``P`` (base ``B``) into three parts yields the chain
    ``P_3 -> P_2 -> P_1 -> B``: each fork takes over the base the policy had
    when it was created, and the original policy, renamed last, stays the
    most specific fragment.

    Content moves greedily into each fork, subtree by subtree. A subtree is
    never moved if it references an object still defined in the policy it
    leaves, since the fork would then depend on its own descendant. A
    container that does not fit whole is split: an empty copy (tag and
    attributes) goes into the fork and its children are moved one by one.

    A split policy is measured against the budget minus the suffix its final
    rename adds. Policies derived from it are retargeted at the new id and
    grow by that suffix too; :meth:`settle` splits those that no longer fit.

    Sizes are measured by serializing the current tree on every check.
    """

    def __init__(
        self,
        tree: DocumentTree,
        max_policy_bytes: int,
        tenant: str,
        context: Optional[ConversionContext] = None,
    ) -> None:
        self._tree = tree
        self._max_bytes = max_policy_bytes
        self._tenant = tenant
        self._context = context
        self._pending: List[int] = []

    @property
    def enabled(self) -> bool:
        return self._max_bytes > 0

    def fits(self, policy: int) -> bool:
        return not self.enabled or self._tree.byte_size(policy) <= self._max_bytes

    def split(self, policy: int) -> List[int]:
        """Split ``policy`` until it fits. Returns the created forks, oldest first.

        Policies whose BasePolicy is retargeted at the renamed policy grow by
        the id suffix; they are queued for :meth:`settle`.
        """

        tree = self._tree
        if self.fits(policy):
            return []

        policy_id = tree.get(policy, POLICY_ID) or ""
        log.info(
            "   ...Policy '%s' is too large to be a custom policy (%d bytes). It will be split into smaller files",
            policy_id,
            tree.byte_size(policy),
        )

        forks: List[int] = []
        while True:
            forks.append(self._fork(policy, f"{policy_id}_{len(forks) + 1}"))
            # measured with the suffix the final rename adds
            if self._fits_with_suffix(policy, f"_{len(forks) + 1}"):
                break

        final_id = f"{policy_id}_{len(forks) + 1}"
        tree.set(policy, POLICY_ID, final_id)
        self._pending.extend(retarget_base_references(tree, policy_id, final_id, exclude=policy))

        fork_ids = tuple(tree.get(f, POLICY_ID) or "" for f in forks)
        log.info("   ...Policy '%s' was split into %d parts; leaf part is '%s'", policy_id, len(forks) + 1, final_id)
        if self._context is not None:
            self._context.emit_event(
                PolicySplitEvent(
                    original_policy_id=policy_id,
                    final_policy_id=final_id,
                    fork_policy_ids=fork_ids,
                    size_bytes=tree.byte_size(policy),
                )
            )
        return forks

    def settle(self) -> List[int]:
        """Split the retargeted policies that no longer fit. Returns the new forks."""

        forks: List[int] = []
        while self._pending:
            policy = self._pending.pop(0)
            if self._tree.is_attached(policy) and not self.fits(policy):
                log.info(
                    "   ...Policy '%s' outgrew the budget after its base was renamed",
                    self._tree.get(policy, POLICY_ID),
                )
                forks.extend(self.split(policy))
        return forks

    def _fits_with_suffix(self, policy: int, suffix: str) -> bool:
        return self._tree.byte_size(policy) + len(suffix.encode("utf-8")) <= self._max_bytes

    def _fork(self, policy: int, fork_id: str) -> int:
        tree = self._tree
        fork = tree.clone(policy, deep=False)
        tree.set(fork, POLICY_ID, fork_id)
        base = find_base_policy(tree, policy)
        if base is not None:
            tree.append(fork, tree.clone(base, deep=True))
        tree.insert_after(policy, fork)

        update_base_reference(tree, policy, self._tenant, fork_id)

        if not self._move_children(policy, fork, fork):
            raise ProgressError(f"Unable to move any children from policy '{tree.get(policy, POLICY_ID)}'.")

        log.info("   ...Created base policy '%s' (%d bytes)", fork_id, tree.byte_size(fork))
        if self._context is not None:
            self._context.emit_event(
                PolicyForkedEvent(
                    policy_id=tree.get(policy, POLICY_ID) or "",
                    fork_policy_id=fork_id,
                    fork_size_bytes=tree.byte_size(fork),
                    remaining_size_bytes=tree.byte_size(policy),
                )
            )
        return fork

    def _move_children(self, source: int, target: int, fork: int) -> bool:
        """Move as many children of ``source`` into ``target`` as the fork can hold.

        Returns True if any content moved.
        """

        tree = self._tree
        moved = False
        for child in tree.element_children(source):
            if tree.local_name(source) == POLICY_TAG and tree.local_name(child) == BASE_POLICY_TAG:
                continue
            if tree.byte_size(fork) >= self._max_bytes:
                break

            if self._can_move(child) and self._try_append(target, child, fork):
                moved = True
                continue

            # too big (or not movable) as a whole: try to split it across the boundary
            if not self._can_move(child, shallow=True):
                continue
            shell = tree.clone(child, deep=False)
            if not self._try_append(target, shell, fork):
                continue
            if self._move_children(child, shell, fork):
                moved = True
                if not tree.children(child):
                    tree.detach(child)
            else:
                tree.detach(shell)
        return moved

    def _try_append(self, target: int, element: int, fork: int) -> bool:
        """Append ``element`` to ``target``; undo and return False if the fork overflows."""

        tree = self._tree
        old_parent, old_position = tree.detach(element)
        tree.append(target, element)
        if tree.byte_size(fork) <= self._max_bytes:
            return True
        tree.detach(element)
        if old_parent is not None:
            tree.insert(old_parent, old_position, element)
        return False

    def _can_move(self, element: int, *, shallow: bool = False) -> bool:
        """Reference integrity check for moving ``element`` out of its policy.

        Fails if ``element`` (or, with ``shallow``, just its own attributes)
        references an object whose definition stays behind in the source
        policy, i.e. outside ``element``.
        """

        tree = self._tree
        source_policy = policy_of(tree, element)
        if source_policy is None:
            return True
        for ref in references_from(tree, element, shallow=shallow):
            for definition in objects_with_id(tree, ref.object_type, ref.object_id, within=source_policy):
                if shallow or not tree.is_descendant(definition, element):
                    log.debug(
                        "Keeping <%s> in place: it references %s '%s' defined in the same policy",
                        tree.local_name(element),
                        ref.object_type.label,
                        ref.object_id,
                    )
                    return False
        return True


def split_policy(
    tree: DocumentTree,
    policy: int,
    *,
    max_policy_bytes: int,
    tenant: str,
    context: Optional[ConversionContext] = None,
) -> List[int]:
    """Split one policy, then any policy its rename pushed over the budget."""

    splitter = PolicySplitter(tree, max_policy_bytes, tenant, context)
    return splitter.split(policy) + splitter.settle()
