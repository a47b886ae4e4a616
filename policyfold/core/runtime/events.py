from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from uuid import UUID, uuid4


def _json_safe(value: Any) -> Any:
    """Convert values into deterministic, JSON-safe representations.

    Only a small whitelist of types is handled; everything else passes
    through unchanged.
    """

    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_json_safe(v) for v in value)
    return value


@dataclass(frozen=True)
class ConversionEvent:
    """Immutable record of one observable step of a conversion.

    Events are the structured side channel next to the log: tests and callers
    read them from the :class:`ConversionContext` instead of parsing log text.
    """

    event_id: UUID = field(default_factory=uuid4, init=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC), init=False)

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"event_type": self.event_type}
        for f in fields(self):
            payload[f.name] = _json_safe(getattr(self, f.name))
        return payload

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(event_id={self.event_id}, "
            f"event_type={self.event_type}, created_at={self.created_at})"
        )


@dataclass(frozen=True)
class PolicyRenamedEvent(ConversionEvent):
    """A policy id was rewritten to the custom-policy naming convention."""

    policy_id: str
    new_policy_id: str


@dataclass(frozen=True)
class TenantReconciledEvent(ConversionEvent):
    """A policy's TenantId was rewritten to the home tenant (or placeholder).

    mode is ``"import"`` when the policy will be imported from another tenant,
    ``"tokenized"`` when the tenant was replaced by the placeholder and
    ``"assigned"`` when the policy declared no tenant at all.
    """

    policy_id: str
    tenant_id: Optional[str]
    resolved_tenant_id: str
    mode: str


@dataclass(frozen=True)
class LanguageReferenceRemovedEvent(ConversionEvent):
    resource_id: Optional[str]
    language: str
    policy_id: Optional[str] = None


@dataclass(frozen=True)
class ObjectRemovedEvent(ConversionEvent):
    """An unreferenced object was removed; ``cascade`` marks removals caused
    by an earlier removal dropping the last reference."""

    object_type: str
    object_id: str
    policy_id: Optional[str] = None
    cascade: bool = False


@dataclass(frozen=True)
class PolicyForkedEvent(ConversionEvent):
    policy_id: str
    fork_policy_id: str
    fork_size_bytes: int
    remaining_size_bytes: int


@dataclass(frozen=True)
class PolicySplitEvent(ConversionEvent):
    original_policy_id: str
    final_policy_id: str
    fork_policy_ids: Tuple[str, ...]
    size_bytes: int
