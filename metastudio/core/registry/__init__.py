from .concepts import ConceptRegistry, WriteGuard, find_concept
from .events import METADATA_CHANGED, MetadataChanged, NotificationBus
from .models import (
    Alias,
    AliasCreate,
    AliasType,
    AuthorityLevel,
    Concept,
    ConceptCreate,
    Domain,
    PackField,
    QualityRule,
    StandardPack,
)
from .packs import StandardPackRegistry
from .store import MetadataStore, TenantPartition

__all__ = [
    "Alias",
    "AliasCreate",
    "AliasType",
    "AuthorityLevel",
    "Concept",
    "ConceptCreate",
    "ConceptRegistry",
    "Domain",
    "METADATA_CHANGED",
    "MetadataChanged",
    "MetadataStore",
    "NotificationBus",
    "PackField",
    "QualityRule",
    "StandardPack",
    "StandardPackRegistry",
    "TenantPartition",
    "WriteGuard",
    "find_concept",
]
