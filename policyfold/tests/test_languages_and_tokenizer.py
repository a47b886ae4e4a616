from policyfold.core.languages import remove_unsupported_language_resources, supported_languages
from policyfold.core.runtime import ConversionContext, LanguageReferenceRemovedEvent
from policyfold.core.tokenizer import remove_policy_constraints, replace_first_party_object_refs
from policyfold.core.tree import parse_document

LOCALIZED = """
<TrustFrameworkPolicies>
  <TrustFrameworkPolicy PolicyId="B2C_1_edit" TenantId="contoso.onmicrosoft.com">
    <BuildingBlocks>
      <ContentDefinitions>
        <ContentDefinition Id="api.selfasserted">
          <LocalizedResourcesReferences>
            <LocalizedResourcesReference Language="en-US" LocalizedResourcesReferenceId="api.selfasserted.en" />
            <LocalizedResourcesReference Language="de" LocalizedResourcesReferenceId="api.selfasserted.de" />
            <LocalizedResourcesReference Language="fr" LocalizedResourcesReferenceId="api.selfasserted.fr" />
          </LocalizedResourcesReferences>
        </ContentDefinition>
      </ContentDefinitions>
      <Localization>
        <SupportedLanguages DefaultLanguage="en-us">
          <SupportedLanguage>en-us</SupportedLanguage>
          <SupportedLanguage>FR</SupportedLanguage>
        </SupportedLanguages>
        <LocalizedResources Id="api.selfasserted.de" />
      </Localization>
    </BuildingBlocks>
  </TrustFrameworkPolicy>
</TrustFrameworkPolicies>
"""


def test_supported_languages_are_case_insensitive():
    tree = parse_document(LOCALIZED)

    assert supported_languages(tree) == {"en-us", "fr"}


def test_unsupported_language_reference_is_removed_but_resource_kept():
    tree = parse_document(LOCALIZED)
    ctx = ConversionContext()

    removed = remove_unsupported_language_resources(tree, ctx)

    assert len(removed) == 1
    remaining = [tree.get(r, "Language") for r in tree.find_all("LocalizedResourcesReference")]
    assert remaining == ["en-US", "fr"]
    # the resource itself is left for the sweeper
    assert len(tree.find_all("LocalizedResources")) == 1

    (event,) = ctx.events_of(LanguageReferenceRemovedEvent)
    assert event.language == "de"
    assert event.resource_id == "api.selfasserted.de"
    assert event.policy_id == "B2C_1_edit"


def test_no_declared_languages_keeps_every_reference():
    tree = parse_document(
        "<TrustFrameworkPolicies><TrustFrameworkPolicy PolicyId=\"p\">"
        '<LocalizedResourcesReference Language="de" LocalizedResourcesReferenceId="x" />'
        "</TrustFrameworkPolicy></TrustFrameworkPolicies>"
    )

    assert remove_unsupported_language_resources(tree) == []
    assert len(tree.find_all("LocalizedResourcesReference")) == 1


def test_first_party_ids_and_key_containers_are_tokenized_case_insensitively():
    text = (
        '<Item Key="client_id">BB2A2E3A-C5E7-4F0A-88E0-8E01FD3FC1F4</Item>'
        '<Item Key="IdTokenAudience">1d2e42b6-7685-4d2c-82c2-7318fce0d740</Item>'
        '<Key Id="issuer_secret" StorageReferenceId="JwtTokenSigningKeyContainer" />'
        '<Key Id="id_token" storagereferenceid="idtokensigningkeycontainer" />'
        '<Key Id="sk" StorageReferenceId="SigningKeyContainer" />'
        '<Key Id="refresh" StorageReferenceId="RefreshTokenEncryptionKeyContainer" />'
    )

    out = replace_first_party_object_refs(text)

    assert out == (
        '<Item Key="client_id">{{config.proxyIdentityExperienceFrameworkAppId}}</Item>'
        '<Item Key="IdTokenAudience">{{config.identityExperienceFrameworkAppId}}</Item>'
        '<Key Id="issuer_secret" StorageReferenceId="{{config.tokenSigningKeyContainerName}}" />'
        '<Key Id="id_token" StorageReferenceId="{{config.tokenSigningKeyContainerName}}" />'
        '<Key Id="sk" StorageReferenceId="{{config.tokenSigningKeyContainerName}}" />'
        '<Key Id="refresh" StorageReferenceId="{{config.tokenEncryptionKeyContainerName}}" />'
    )


def test_tenant_domain_is_tokenized_only_when_given():
    text = '<TrustFrameworkPolicy TenantId="Contoso.onmicrosoft.com" />'

    assert replace_first_party_object_refs(text) == text
    assert replace_first_party_object_refs(text, "contoso.onmicrosoft.com") == (
        '<TrustFrameworkPolicy TenantId="{{config.tenantDomain}}" />'
    )


def test_policy_constraints_are_removed():
    tree = parse_document(
        "<TrustFrameworkPolicies><TrustFrameworkPolicy PolicyId=\"p\">"
        "<PolicyConstraints><AllowedClientApplication>web</AllowedClientApplication></PolicyConstraints>"
        "<BuildingBlocks/>"
        "</TrustFrameworkPolicy></TrustFrameworkPolicies>"
    )

    assert remove_policy_constraints(tree) == 1
    assert tree.to_string() == (
        '<TrustFrameworkPolicies><TrustFrameworkPolicy PolicyId="p"><BuildingBlocks/>'
        "</TrustFrameworkPolicy></TrustFrameworkPolicies>"
    )
