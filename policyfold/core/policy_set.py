from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import StructuralError
from .references import objects_of_type
from .schema import ObjectType
from .tree import DocumentTree, parse_document, tag_prefix

log = logging.getLogger("policyfold.policy_set")

POLICY_SET_TAG = "TrustFrameworkPolicies"
POLICY_TAG = "TrustFrameworkPolicy"
BASE_POLICY_TAG = "BasePolicy"
TENANT_ID = "TenantId"
POLICY_ID = "PolicyId"


def load_policy_set(text: str) -> DocumentTree:
    """Parse an exported policy set and check its outer shape.

    Raises StructuralError if the XML is malformed, the root is not a
    ``TrustFrameworkPolicies`` container, or it holds no policy.
    """

    tree = parse_document(text)
    if tree.local_name(tree.root) != POLICY_SET_TAG:
        raise StructuralError(
            "Invalid policy set xml. This doesn't appear to be an exported user flow "
            f"(root element is '{tree.local_name(tree.root)}', expected '{POLICY_SET_TAG}')."
        )
    policies = find_policies(tree)
    if not policies:
        raise StructuralError("No policies found in the policy set")
    log.info("There are %d policies in this policy set.", len(policies))
    return tree


def find_policies(tree: DocumentTree) -> List[int]:
    """Policies in document order."""

    if tree.root is None:
        return []
    return [c for c in tree.element_children(tree.root) if tree.local_name(c) == POLICY_TAG]


def policy_of(tree: DocumentTree, index: int) -> Optional[int]:
    """The policy element that owns ``index`` (``index`` itself if it is one)."""

    if tree.is_element(index) and tree.local_name(index) == POLICY_TAG:
        return index
    for ancestor in tree.ancestors(index):
        if tree.local_name(ancestor) == POLICY_TAG:
            return ancestor
    return None


def make_element(tree: DocumentTree, name: str, like: int, text: Optional[str] = None) -> int:
    """Create an element in the same namespace prefix as ``like``."""

    prefix = tag_prefix(tree.node(like).tag)
    tag = f"{prefix}:{name}" if prefix else name
    if text is None:
        return tree.new_element(tag)
    return tree.new_text_element(tag, text)


def find_base_policy(tree: DocumentTree, policy: int) -> Optional[int]:
    return tree.find_child(policy, BASE_POLICY_TAG)


def base_policy_id(tree: DocumentTree, policy: int) -> Optional[str]:
    base = find_base_policy(tree, policy)
    if base is None:
        return None
    id_element = tree.find_child(base, POLICY_ID)
    if id_element is None:
        return None
    return tree.text(id_element).strip() or None


@dataclass(frozen=True, slots=True)
class PolicySummary:
    """Shape of one policy, as reported by ``inspect`` and conversion results."""

    policy_id: Optional[str]
    tenant_id: Optional[str]
    base_policy_id: Optional[str]
    size_bytes: int
    object_counts: Dict[str, int]


def summarize_policy(tree: DocumentTree, policy: int) -> PolicySummary:
    counts: Counter[str] = Counter()
    for object_type in ObjectType:
        found = len(objects_of_type(tree, object_type, within=policy))
        if found:
            counts[object_type.label] = found
    return PolicySummary(
        policy_id=tree.get(policy, POLICY_ID),
        tenant_id=tree.get(policy, TENANT_ID),
        base_policy_id=base_policy_id(tree, policy),
        size_bytes=tree.byte_size(policy),
        object_counts=dict(counts),
    )


def describe_policy_set(tree: DocumentTree) -> Dict[str, Any]:
    """Plain-data description of every policy in the set."""

    policies = [summarize_policy(tree, p) for p in find_policies(tree)]
    return {
        "policy_count": len(policies),
        "total_bytes": tree.byte_size(),
        "policies": policies,
    }
