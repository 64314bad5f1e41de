"""
esupgrade Migration Module
==========================
Versioned model upgrades of the analytics indices.

    - controller: MigrationController state machine (OK / PENDING / ERROR)
    - transformer: Transformer interface and the per-run MigrationContext
    - transformers: the known model version steps (TRANSFORMERS)
    - classifier: sorts indices into categories
    - reindex / retry: scroll + bulk copy with per-document backoff
    - rewriter: moves extension fields under `ext`
    - checker: verifies live indices against their backups
"""

from .controller import MigrationController, MigrationStatus, RefreshResult, TransformResult
from .registry import ExtensionFieldRegistry, IndexCategory, IndexDescriptor, MigrationRegistry
from .transformer import MigrationContext, Transformer, TransformerVersion
from .transformers import TRANSFORMERS, find_transformer

__all__ = [
    "MigrationController",
    "MigrationStatus",
    "RefreshResult",
    "TransformResult",
    "ExtensionFieldRegistry",
    "IndexCategory",
    "IndexDescriptor",
    "MigrationRegistry",
    "MigrationContext",
    "Transformer",
    "TransformerVersion",
    "TRANSFORMERS",
    "find_transformer",
]
