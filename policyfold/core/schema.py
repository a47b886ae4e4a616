from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import SchemaLookupError

if TYPE_CHECKING:
    from .tree import DocumentTree

_STEP_RE = re.compile(r'^(?P<name>[A-Za-z_][\w.-]*)(?:\[@(?P<attr>[A-Za-z_][\w.-]*)="(?P<value>[^"]*)"\])?$')

TEXT_LOCATOR = "text()"


class ObjectType(Enum):
    """Closed set of identifiable policy object types.

    The value is the element path that locates a definition of the object
    (definitions carry an ``Id`` attribute).
    """

    USER_JOURNEY = "UserJourney"
    TECHNICAL_PROFILE = "TechnicalProfile"
    CLIENT_DEFINITION = "ClientDefinitions/ClientDefinition"
    CLAIMS_TRANSFORMATION = "ClaimsTransformation"
    CLAIM_TYPE = "ClaimType"
    CONTENT_DEFINITION = "ContentDefinition"
    LOCALIZED_RESOURCES = "LocalizedResources"

    @property
    def path(self) -> "ElementPath":
        return _OBJECT_PATHS[self]

    @property
    def label(self) -> str:
        return self.path.leaf


@dataclass(frozen=True, slots=True)
class PathStep:
    name: str
    attribute: Optional[str] = None
    value: Optional[str] = None

    def __str__(self) -> str:
        if self.attribute is None:
            return self.name
        return f'{self.name}[@{self.attribute}="{self.value}"]'


@dataclass(frozen=True, slots=True)
class ElementPath:
    """A relative element path: local-name steps, the last one being the
    element itself and the earlier ones its nearest ancestors."""

    steps: Tuple[PathStep, ...]

    @property
    def leaf(self) -> str:
        return self.steps[-1].name

    def matches(self, tree: "DocumentTree", index: int) -> bool:
        current: Optional[int] = index
        for step in reversed(self.steps):
            if current is None or not tree.is_element(current):
                return False
            if tree.local_name(current) != step.name:
                return False
            if step.attribute is not None and tree.get(current, step.attribute) != step.value:
                return False
            current = tree.parent(current)
        return True

    def __str__(self) -> str:
        return "/".join(str(s) for s in self.steps)


def parse_path(expression: str) -> ElementPath:
    steps: List[PathStep] = []
    for raw in expression.split("/"):
        m = _STEP_RE.match(raw.strip())
        if m is None:
            raise SchemaLookupError(f"Unexpected path '{expression}'")
        steps.append(PathStep(name=m.group("name"), attribute=m.group("attr"), value=m.group("value")))
    return ElementPath(steps=tuple(steps))


@dataclass(frozen=True, slots=True)
class Locator:
    """Where a reference keeps the target id: an attribute or the element text."""

    expression: str

    @property
    def attribute(self) -> Optional[str]:
        if self.expression.startswith("@") and len(self.expression) > 1:
            return self.expression[1:]
        return None

    @property
    def is_text(self) -> bool:
        return self.expression == TEXT_LOCATOR

    def read(self, tree: "DocumentTree", index: int) -> Optional[str]:
        attribute = self.attribute
        if attribute is not None:
            return tree.get(index, attribute)
        if self.is_text:
            value = tree.text(index).strip()
            return value or None
        raise SchemaLookupError(f"Unexpected path '{self.expression}'")


def parse_locator(expression: str) -> Locator:
    locator = Locator(expression)
    if locator.attribute is None and not locator.is_text:
        raise SchemaLookupError(f"Unexpected path '{expression}'")
    return locator


@dataclass(frozen=True, slots=True)
class ReferenceTarget:
    object_type: ObjectType
    source_paths: Tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ReferenceRule:
    locator: str
    targets: Tuple[ReferenceTarget, ...]


@dataclass(frozen=True, slots=True)
class ReferenceSource:
    """One incoming reference location for an object type."""

    path: ElementPath
    locator: Locator


# Every object reference the converter tracks.
REFERENCE_SCHEMA: Tuple[ReferenceRule, ...] = (
    ReferenceRule(
        "@ReferenceId",
        (
            ReferenceTarget(ObjectType.USER_JOURNEY, ("DefaultUserJourney",)),
            ReferenceTarget(
                ObjectType.TECHNICAL_PROFILE,
                (
                    "AuthorizationTechnicalProfile",
                    "ValidationTechnicalProfile",
                    "IncludeTechnicalProfile",
                    "UseTechnicalProfileForSessionManagement",
                ),
            ),
            ReferenceTarget(ObjectType.CLIENT_DEFINITION, ("OrchestrationStep/ClientDefinition",)),
            ReferenceTarget(
                ObjectType.CLAIMS_TRANSFORMATION,
                ("OutputClaimsTransformation", "InputClaimsTransformation"),
            ),
        ),
    ),
    ReferenceRule(
        "@TechnicalProfileReferenceId",
        (ReferenceTarget(ObjectType.TECHNICAL_PROFILE, ("ClaimsExchange",)),),
    ),
    ReferenceRule(
        "@CpimIssuerTechnicalProfileReferenceId",
        (ReferenceTarget(ObjectType.TECHNICAL_PROFILE, ("OrchestrationStep",)),),
    ),
    ReferenceRule(
        "@ClaimTypeReferenceId",
        (ReferenceTarget(ObjectType.CLAIM_TYPE, ("InputClaim", "OutputClaim", "PersistedClaim")),),
    ),
    ReferenceRule(
        TEXT_LOCATOR,
        (
            ReferenceTarget(ObjectType.CLAIM_TYPE, ("Value",)),
            ReferenceTarget(
                ObjectType.CONTENT_DEFINITION,
                ('TechnicalProfile/Metadata/Item[@Key="ContentDefinitionReferenceId"]',),
            ),
        ),
    ),
    ReferenceRule(
        "@ElementId",
        (
            ReferenceTarget(ObjectType.CLAIM_TYPE, ("LocalizedCollection", "LocalizedString")),
            ReferenceTarget(ObjectType.CONTENT_DEFINITION, ("Item",)),
        ),
    ),
    ReferenceRule(
        "@ContentDefinitionReferenceId",
        (ReferenceTarget(ObjectType.CONTENT_DEFINITION, ("OrchestrationStep",)),),
    ),
    ReferenceRule(
        "@LocalizedResourcesReferenceId",
        (ReferenceTarget(ObjectType.LOCALIZED_RESOURCES, ("LocalizedResourcesReference",)),),
    ),
)


def build_reference_index(
    schema: Sequence[ReferenceRule] = REFERENCE_SCHEMA,
) -> Dict[ObjectType, Tuple[ReferenceSource, ...]]:
    """Invert the reference table into ``ObjectType -> incoming locations``.

    Key order follows the first appearance of each type in ``schema``; the
    sweeper scans types in that order.

    Raises SchemaLookupError for a locator or path the matcher cannot read.
    """

    inverted: Dict[ObjectType, List[ReferenceSource]] = {}
    for rule in schema:
        locator = parse_locator(rule.locator)
        for target in rule.targets:
            inverted.setdefault(target.object_type, []).extend(
                ReferenceSource(path=parse_path(p), locator=locator) for p in target.source_paths
            )
    return {object_type: tuple(sources) for object_type, sources in inverted.items()}


_OBJECT_PATHS: Dict[ObjectType, ElementPath] = {t: parse_path(t.value) for t in ObjectType}

REFERENCE_INDEX: Mapping[ObjectType, Tuple[ReferenceSource, ...]] = MappingProxyType(
    build_reference_index()
)
