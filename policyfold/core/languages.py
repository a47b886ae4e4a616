from __future__ import annotations

import logging
from typing import List, Optional, Set

from .policy_set import POLICY_ID, policy_of
from .runtime import ConversionContext, LanguageReferenceRemovedEvent
from .tree import DocumentTree

log = logging.getLogger("policyfold.languages")


def supported_languages(tree: DocumentTree) -> Set[str]:
    """Language codes declared under any ``SupportedLanguages/SupportedLanguage``.

    Codes are lower-cased (RFC 5646 tags are case-insensitive).
    """

    languages: Set[str] = set()
    for element in tree.find_all("SupportedLanguage"):
        parent = tree.parent(element)
        if parent is None or tree.local_name(parent) != "SupportedLanguages":
            continue
        code = tree.text(element).strip()
        if code:
            languages.add(code.lower())
    return languages


def remove_unsupported_language_resources(
    tree: DocumentTree,
    context: Optional[ConversionContext] = None,
) -> List[int]:
    """Remove localized resource references for languages the set does not support.

    For simplicity this ignores merge-behavior options and treats the
    superset of supported languages across all content definitions as
    supported. Only the ``LocalizedResourcesReference`` is removed, never the
    resource itself; the sweeper collects resources left unreferenced.

    A document that declares no supported language at all is left untouched.

    Returns the removed reference elements (now detached).
    """

    log.info("Removing unsupported language resources references")
    languages = supported_languages(tree)
    if not languages:
        log.info("No supported languages declared; keeping all localized resource references")
        return []

    removed: List[int] = []
    for reference in tree.find_all("LocalizedResourcesReference"):
        language = tree.get(reference, "Language")
        if not language or language.lower() in languages:
            continue
        resource_id = tree.get(reference, "LocalizedResourcesReferenceId")
        log.info(
            "Removing reference to LocalizedResource '%s' for language '%s'",
            resource_id or "unknown",
            language,
        )
        owner = policy_of(tree, reference)
        tree.detach(reference)
        removed.append(reference)
        if context is not None:
            context.emit_event(
                LanguageReferenceRemovedEvent(
                    resource_id=resource_id,
                    language=language,
                    policy_id=tree.get(owner, POLICY_ID) if owner is not None else None,
                )
            )
    return removed
