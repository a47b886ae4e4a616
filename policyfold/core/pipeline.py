from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import ConversionOptions
from .languages import remove_unsupported_language_resources
from .normalizer import normalize_policy, resolve_home_tenant
from .policy_set import PolicySummary, find_policies, load_policy_set, summarize_policy
from .runtime import ConversionContext
from .splitter import PolicySplitter
from .sweeper import RemovedObject, remove_unreferenced_objects
from .tokenizer import remove_policy_constraints, replace_first_party_object_refs
from .tree import DocumentTree

log = logging.getLogger("policyfold.pipeline")


@dataclass
class ConversionResult:
    """Converted policy set plus what happened to it."""

    tree: DocumentTree
    context: ConversionContext
    removed_objects: List[RemovedObject] = field(default_factory=list)

    def to_xml(self) -> str:
        return self.tree.to_pretty_string()

    def policies(self) -> List[PolicySummary]:
        return [summarize_policy(self.tree, p) for p in find_policies(self.tree)]

    def report(self) -> Dict[str, Any]:
        return {
            "context_id": self.context.context_id,
            "policies": self.policies(),
            "removed_objects": self.removed_objects,
            "event_counts": self.context.event_counts(),
            "events": [e.to_payload() for e in self.context.get_events()],
        }


def convert_policy_set(
    text: str,
    options: Optional[ConversionOptions] = None,
    *,
    context: Optional[ConversionContext] = None,
) -> ConversionResult:
    """Turn an exported user-flow policy set into an importable custom policy set.

    Steps, in order: text tokenizing, parsing, PolicyConstraints removal,
    optional unsupported-language and unreferenced-object removal, then per
    original policy (document order) renaming, tenant reconciliation and
    splitting to the size budget. Forks created by splitting are inserted
    next to their policy and are not processed again. A last pass splits
    policies that outgrew the budget when their base was renamed.

    Raises ConversionError subclasses; the tree is not usable after one.
    """

    options = options or ConversionOptions()
    context = context or ConversionContext(operation_name="convert")

    log.info("Tokenizing non-local object references...")
    text = replace_first_party_object_refs(text, options.tenant_domain)

    tree = load_policy_set(text)
    remove_policy_constraints(tree)

    removed: List[RemovedObject] = []
    if options.remove_unreferenced_objects:
        remove_unsupported_language_resources(tree, context)
        removed = remove_unreferenced_objects(tree, context)
        log.info("Removed %d unreferenced object(s)", len(removed))

    home_tenant = resolve_home_tenant(tree, tokenize=options.tokenize_tenant_id)
    splitter = PolicySplitter(tree, options.max_policy_bytes, home_tenant, context)

    for policy in find_policies(tree):
        normalize_policy(tree, policy, home_tenant, tokenize=options.tokenize_tenant_id, context=context)
        splitter.split(policy)
    # policies already measured may have grown when their base was renamed
    splitter.settle()

    return ConversionResult(tree=tree, context=context, removed_objects=removed)


def convert_policy_set_to_string(text: str, options: Optional[ConversionOptions] = None) -> str:
    return convert_policy_set(text, options).to_xml()
