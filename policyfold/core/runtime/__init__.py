from .context import ConversionContext
from .events import (
    ConversionEvent,
    LanguageReferenceRemovedEvent,
    ObjectRemovedEvent,
    PolicyForkedEvent,
    PolicyRenamedEvent,
    PolicySplitEvent,
    TenantReconciledEvent,
)

__all__ = [
    "ConversionContext",
    "ConversionEvent",
    "LanguageReferenceRemovedEvent",
    "ObjectRemovedEvent",
    "PolicyForkedEvent",
    "PolicyRenamedEvent",
    "PolicySplitEvent",
    "TenantReconciledEvent",
]
