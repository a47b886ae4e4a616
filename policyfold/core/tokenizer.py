from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from .tree import DocumentTree

log = logging.getLogger("policyfold.tokenizer")

IEF_APP_ID = "1d2e42b6-7685-4d2c-82c2-7318fce0d740"
PROXY_IEF_APP_ID = "bb2a2e3a-c5e7-4f0a-88e0-8e01fd3fc1f4"

SIGNING_KEY_CONTAINERS = ("JwtTokenSigningKeyContainer", "SigningKeyContainer", "IdTokenSigningKeyContainer")
ENCRYPTION_KEY_CONTAINERS = ("RefreshTokenEncryptionKeyContainer",)

_STORAGE_REFERENCE = 'StorageReferenceId="{}"'


def _substitutions(tenant_domain: Optional[str]) -> List[Tuple[str, str]]:
    pairs: List[Tuple[str, str]] = [
        (IEF_APP_ID, "{{config.identityExperienceFrameworkAppId}}"),
        (PROXY_IEF_APP_ID, "{{config.proxyIdentityExperienceFrameworkAppId}}"),
    ]
    pairs += [
        (_STORAGE_REFERENCE.format(name), _STORAGE_REFERENCE.format("{{config.tokenSigningKeyContainerName}}"))
        for name in SIGNING_KEY_CONTAINERS
    ]
    pairs += [
        (_STORAGE_REFERENCE.format(name), _STORAGE_REFERENCE.format("{{config.tokenEncryptionKeyContainerName}}"))
        for name in ENCRYPTION_KEY_CONTAINERS
    ]
    if tenant_domain:
        pairs.append((tenant_domain, "{{config.tenantDomain}}"))
    return pairs


def replace_first_party_object_refs(text: str, tenant_domain: Optional[str] = None) -> str:
    """Replace tenant-specific identifiers in raw policy text with config tokens.

    Matching is case-insensitive. Runs on the serialized document, before
    parsing, so identifiers are replaced wherever they occur.
    """

    for value, token in _substitutions(tenant_domain):
        text, count = re.subn(re.escape(value), lambda _m, token=token: token, text, flags=re.IGNORECASE)
        if count:
            log.debug("Replaced %d occurrence(s) of '%s' with '%s'", count, value, token)
    return text


def remove_policy_constraints(tree: DocumentTree) -> int:
    """Drop every ``PolicyConstraints`` element; returns how many were removed."""

    removed = 0
    for element in tree.find_all("PolicyConstraints"):
        tree.detach(element)
        removed += 1
    if removed:
        log.info("Removed %d PolicyConstraints element(s)", removed)
    return removed
