from __future__ import annotations

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class ApiError(BaseModel):
    """Error payload for a rejected conversion."""

    error: str
    message: Optional[str] = None


class PolicySummaryOut(BaseModel):
    """One policy of a (converted) policy set."""

    policy_id: Optional[str] = None
    tenant_id: Optional[str] = None
    base_policy_id: Optional[str] = None
    size_bytes: int
    object_counts: Dict[str, int] = Field(default_factory=dict)


class RemovedObjectOut(BaseModel):
    object_type: str
    object_id: str
    policy_id: Optional[str] = None
    cascade: bool = False


class InspectOut(BaseModel):
    """Shape of an uploaded policy set."""

    policy_count: int
    total_bytes: int
    policies: List[PolicySummaryOut] = Field(default_factory=list)


class ConvertOut(BaseModel):
    """Conversion result: the converted xml plus what the run did."""

    context_id: str
    xml: str
    policies: List[PolicySummaryOut] = Field(default_factory=list)
    removed_objects: List[RemovedObjectOut] = Field(default_factory=list)
    event_counts: Dict[str, int] = Field(default_factory=dict)
    events: List[Dict[str, Any]] = Field(default_factory=list)
