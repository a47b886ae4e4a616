from __future__ import annotations

import logging
from typing import List, Optional

from .errors import StructuralError
from .policy_set import (
    BASE_POLICY_TAG,
    POLICY_ID,
    TENANT_ID,
    find_base_policy,
    find_policies,
    make_element,
)
from .runtime import ConversionContext, PolicyRenamedEvent, TenantReconciledEvent
from .tree import DocumentTree

log = logging.getLogger("policyfold.normalizer")

CUSTOM_POLICY_PREFIX = "B2C_1A_"
USER_FLOW_PREFIX = "B2C_1_"
TENANT_PLACEHOLDER = "{{config.tenantDomain}}"


def compliant_policy_id(policy_id: str) -> str:
    """Return ``policy_id`` in the custom policy naming convention.

    >>> compliant_policy_id("B2C_1_signup")
    'B2C_1A_signup'
    >>> compliant_policy_id("signup")
    'B2C_1A_signup'
    """

    if policy_id.startswith(CUSTOM_POLICY_PREFIX):
        return policy_id
    if policy_id.startswith(USER_FLOW_PREFIX):
        return CUSTOM_POLICY_PREFIX + policy_id[len(USER_FLOW_PREFIX):]
    return CUSTOM_POLICY_PREFIX + policy_id


def _rename(policy_id: str) -> str:
    renamed = compliant_policy_id(policy_id)
    if renamed != policy_id:
        log.info(
            "   ...Policy '%s' will be renamed to '%s' to be compliant with custom policy naming requirements.",
            policy_id,
            renamed,
        )
    return renamed


def resolve_home_tenant(tree: DocumentTree, *, tokenize: bool = False) -> str:
    """Tenant every policy in the set must belong to.

    The first policy in document order is the leaf the user exported, so its
    TenantId is authoritative. With ``tokenize`` the placeholder is used
    instead and the leaf tenant may be missing.
    """

    if tokenize:
        return TENANT_PLACEHOLDER
    policies = find_policies(tree)
    if not policies:
        raise StructuralError("No policies found in the policy set")
    home = tree.get(policies[0], TENANT_ID)
    if not home:
        raise StructuralError("Unable to determine home tenant id from the leaf policy.")
    return home


def update_base_reference(
    tree: DocumentTree,
    policy: int,
    tenant: str,
    base_policy_id: Optional[str] = None,
) -> None:
    """Point ``policy``'s BasePolicy at ``tenant`` and a compliant policy id.

    A BasePolicy without a TenantId gets one as its first child.

    An explicit ``base_policy_id`` (supplied when splitting) wins over the
    current value. A policy without a BasePolicy only gets one when an explicit
    id is given; it is inserted as the first child.
    """

    base = find_base_policy(tree, policy)
    if base is not None:
        tenant_element = tree.find_child(base, TENANT_ID)
        if tenant_element is None:
            tree.insert(base, 0, make_element(tree, TENANT_ID, like=policy, text=tenant))
        elif tree.text(tenant_element).strip().lower() != tenant.lower():
            tree.set_text(tenant_element, tenant)

        id_element = tree.find_child(base, POLICY_ID)
        if id_element is None:
            raise StructuralError(
                f"BasePolicy of policy '{tree.get(policy, POLICY_ID)}' has no {POLICY_ID} element"
            )
        if base_policy_id is None:
            base_policy_id = _rename(tree.text(id_element).strip())
        tree.set_text(id_element, base_policy_id)
    elif base_policy_id is not None:
        base = make_element(tree, BASE_POLICY_TAG, like=policy)
        tree.append(base, make_element(tree, TENANT_ID, like=policy, text=tenant))
        tree.append(base, make_element(tree, POLICY_ID, like=policy, text=base_policy_id))
        # first child keeps the file readable
        tree.insert(policy, 0, base)


def retarget_base_references(
    tree: DocumentTree,
    old_policy_id: str,
    new_policy_id: str,
    *,
    exclude: Optional[int] = None,
) -> List[int]:
    """Repoint every BasePolicy that names ``old_policy_id`` at ``new_policy_id``.

    Base ids are compared in their compliant form, so references not yet
    normalized are found too. Returns the policies that were updated.
    """

    wanted = compliant_policy_id(old_policy_id).lower()
    updated: List[int] = []
    for policy in find_policies(tree):
        if policy == exclude:
            continue
        base = find_base_policy(tree, policy)
        id_element = tree.find_child(base, POLICY_ID) if base is not None else None
        if id_element is None:
            continue
        current = tree.text(id_element).strip()
        if current and compliant_policy_id(current).lower() == wanted:
            tree.set_text(id_element, new_policy_id)
            updated.append(policy)
    return updated


def normalize_policy(
    tree: DocumentTree,
    policy: int,
    home_tenant: str,
    *,
    tokenize: bool = False,
    context: Optional[ConversionContext] = None,
) -> str:
    """Rename the policy, reconcile its tenant and fix its base reference.

    Returns the compliant policy id.
    """

    policy_id = tree.get(policy, POLICY_ID)
    if not policy_id:
        raise StructuralError(f"Policy at position {find_policies(tree).index(policy)} has no {POLICY_ID}")
    log.info("Processing policy '%s'.", policy_id)

    new_id = _rename(policy_id)
    if new_id != policy_id:
        tree.set(policy, POLICY_ID, new_id)
        if context is not None:
            context.emit_event(PolicyRenamedEvent(policy_id=policy_id, new_policy_id=new_id))

    tenant_id = tree.get(policy, TENANT_ID)
    if not tenant_id or tenant_id.lower() != home_tenant.lower():
        if not tenant_id:
            mode = "assigned"
            log.info("   ...Policy '%s' has no %s; assigning '%s'.", new_id, TENANT_ID, home_tenant)
        elif tokenize:
            mode = "tokenized"
            log.info("   ...Tokenizing tenant value '%s' for policy '%s'.", tenant_id, new_id)
        else:
            mode = "import"
            log.info("   ...Policy '%s' will be imported from tenant '%s'.", new_id, tenant_id)
        tree.set(policy, TENANT_ID, home_tenant)
        if context is not None:
            context.emit_event(
                TenantReconciledEvent(
                    policy_id=new_id,
                    tenant_id=tenant_id,
                    resolved_tenant_id=home_tenant,
                    mode=mode,
                )
            )

    update_base_reference(tree, policy, home_tenant)
    return new_id
