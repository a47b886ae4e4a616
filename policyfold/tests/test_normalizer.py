import pytest

from policyfold.core.errors import StructuralError
from policyfold.core.normalizer import (
    TENANT_PLACEHOLDER,
    compliant_policy_id,
    normalize_policy,
    resolve_home_tenant,
    retarget_base_references,
    update_base_reference,
)
from policyfold.core.policy_set import base_policy_id, find_base_policy, find_policies, load_policy_set
from policyfold.core.runtime import ConversionContext, PolicyRenamedEvent, TenantReconciledEvent

THREE_TENANTS = """
<TrustFrameworkPolicies>
  <TrustFrameworkPolicy PolicyId="B2C_1_signin" TenantId="T1">
    <BasePolicy><TenantId>T2</TenantId><PolicyId>signin_base</PolicyId></BasePolicy>
  </TrustFrameworkPolicy>
  <TrustFrameworkPolicy PolicyId="signin_base" TenantId="T2">
    <BasePolicy><TenantId>T1</TenantId><PolicyId>B2C_1A_root</PolicyId></BasePolicy>
  </TrustFrameworkPolicy>
  <TrustFrameworkPolicy PolicyId="B2C_1A_root" TenantId="t1" />
</TrustFrameworkPolicies>
"""


def _normalize_all(tree, *, tokenize=False, ctx=None):
    home = resolve_home_tenant(tree, tokenize=tokenize)
    return [normalize_policy(tree, p, home, tokenize=tokenize, context=ctx) for p in find_policies(tree)]


@pytest.mark.parametrize(
    "policy_id, expected",
    [
        ("B2C_1A_x", "B2C_1A_x"),
        ("B2C_1_x", "B2C_1A_x"),
        ("x", "B2C_1A_x"),
        ("b2c_1_x", "B2C_1A_b2c_1_x"),
    ],
)
def test_compliant_policy_id(policy_id, expected):
    assert compliant_policy_id(policy_id) == expected


def test_tenants_and_base_references_are_reconciled_to_the_leaf_tenant():
    tree = load_policy_set(THREE_TENANTS)
    ctx = ConversionContext()

    ids = _normalize_all(tree, ctx=ctx)

    assert ids == ["B2C_1A_signin", "B2C_1A_signin_base", "B2C_1A_root"]
    policies = find_policies(tree)
    assert [tree.get(p, "TenantId") for p in policies] == ["T1", "T1", "t1"]
    assert base_policy_id(tree, policies[0]) == "B2C_1A_signin_base"
    assert tree.text(tree.find_child(find_base_policy(tree, policies[0]), "TenantId")) == "T1"

    reconciled = ctx.events_of(TenantReconciledEvent)
    assert [(e.policy_id, e.tenant_id, e.mode) for e in reconciled] == [("B2C_1A_signin_base", "T2", "import")]
    assert [e.new_policy_id for e in ctx.events_of(PolicyRenamedEvent)] == ["B2C_1A_signin", "B2C_1A_signin_base"]


def test_tokenizing_replaces_every_tenant_with_the_placeholder():
    tree = load_policy_set(THREE_TENANTS)
    ctx = ConversionContext()

    _normalize_all(tree, tokenize=True, ctx=ctx)

    assert {tree.get(p, "TenantId") for p in find_policies(tree)} == {TENANT_PLACEHOLDER}
    assert {e.mode for e in ctx.events_of(TenantReconciledEvent)} == {"tokenized"}


def test_missing_leaf_tenant_is_fatal_without_tokenizing():
    tree = load_policy_set('<TrustFrameworkPolicies><TrustFrameworkPolicy PolicyId="p" /></TrustFrameworkPolicies>')

    with pytest.raises(StructuralError):
        resolve_home_tenant(tree)
    assert resolve_home_tenant(tree, tokenize=True) == TENANT_PLACEHOLDER


def test_policy_without_tenant_is_assigned_the_home_tenant():
    tree = load_policy_set(
        "<TrustFrameworkPolicies>"
        '<TrustFrameworkPolicy PolicyId="leaf" TenantId="home" />'
        '<TrustFrameworkPolicy PolicyId="base" />'
        "</TrustFrameworkPolicies>"
    )
    ctx = ConversionContext()

    _normalize_all(tree, ctx=ctx)

    assert tree.get(find_policies(tree)[1], "TenantId") == "home"
    assert ctx.events_of(TenantReconciledEvent)[0].mode == "assigned"


def test_policy_without_policy_id_is_fatal():
    tree = load_policy_set('<TrustFrameworkPolicies><TrustFrameworkPolicy TenantId="t" /></TrustFrameworkPolicies>')

    with pytest.raises(StructuralError, match="PolicyId"):
        _normalize_all(tree)


def test_base_policy_without_policy_id_is_fatal():
    tree = load_policy_set(
        "<TrustFrameworkPolicies>"
        '<TrustFrameworkPolicy PolicyId="p" TenantId="t"><BasePolicy><TenantId>t</TenantId></BasePolicy>'
        "</TrustFrameworkPolicy></TrustFrameworkPolicies>"
    )

    with pytest.raises(StructuralError):
        update_base_reference(tree, find_policies(tree)[0], "t")


def test_base_reference_is_synthesized_with_the_policy_prefix():
    tree = load_policy_set(
        '<c:TrustFrameworkPolicies xmlns:c="urn:cpim">'
        '<c:TrustFrameworkPolicy PolicyId="B2C_1A_root" TenantId="t"><c:BuildingBlocks /></c:TrustFrameworkPolicy>'
        "</c:TrustFrameworkPolicies>"
    )
    policy = find_policies(tree)[0]

    update_base_reference(tree, policy, "t", "B2C_1A_root_1")

    assert tree.to_string(policy) == (
        '<c:TrustFrameworkPolicy PolicyId="B2C_1A_root" TenantId="t">'
        "<c:BasePolicy><c:TenantId>t</c:TenantId><c:PolicyId>B2C_1A_root_1</c:PolicyId></c:BasePolicy>"
        "<c:BuildingBlocks/></c:TrustFrameworkPolicy>"
    )


def test_retarget_matches_unnormalized_base_ids():
    tree = load_policy_set(THREE_TENANTS)

    updated = retarget_base_references(tree, "B2C_1_signin_base", "B2C_1A_signin_base_2")

    assert updated == [find_policies(tree)[0]]
    assert base_policy_id(tree, find_policies(tree)[0]) == "B2C_1A_signin_base_2"


def test_base_policy_without_tenant_gets_the_home_tenant():
    tree = load_policy_set(
        "<TrustFrameworkPolicies>"
        '<TrustFrameworkPolicy PolicyId="B2C_1A_leaf" TenantId="home">'
        "<BasePolicy><PolicyId>B2C_1A_base</PolicyId></BasePolicy>"
        "</TrustFrameworkPolicy></TrustFrameworkPolicies>"
    )
    policy = find_policies(tree)[0]

    normalize_policy(tree, policy, "home")

    assert tree.to_string(find_base_policy(tree, policy)) == (
        "<BasePolicy><TenantId>home</TenantId><PolicyId>B2C_1A_base</PolicyId></BasePolicy>"
    )
