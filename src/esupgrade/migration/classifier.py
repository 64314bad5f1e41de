"""
Index Classifier
================
Sorts the store's indices into the categories the migration treats
differently.

Kibana configuration indices are recognised by exact name; backups,
staging indices, per-game, results and opaque-value indices by prefix.
Everything else is named after a MongoDB ObjectId, so the metadata store
is asked which collection that id belongs to: `sessions` means a trace
index, `versions` a version-snapshot index.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from esupgrade.core.concurrency import join_all
from esupgrade.core.exceptions import ClassificationError
from esupgrade.core.metadata_store import MetadataStore, parse_object_id
from .registry import (
    BACKUP_PREFIX,
    STAGING_PREFIX,
    IndexCategory,
    IndexDescriptor,
    MigrationRegistry,
)

KIBANA_INDEX = ".kibana"
TEMPLATE_INDEX = ".template"
DEFAULT_KIBANA_INDEX = "default-kibana-index"

SESSIONS_COLLECTION = "sessions"
VERSIONS_COLLECTION = "versions"

EXACT_NAMES: Dict[str, IndexCategory] = {
    KIBANA_INDEX: IndexCategory.KIBANA,
    TEMPLATE_INDEX: IndexCategory.TEMPLATE,
    DEFAULT_KIBANA_INDEX: IndexCategory.DEFAULT_KIBANA_INDEX,
}

# Checked in order; first match wins
PREFIXES: Tuple[Tuple[str, IndexCategory], ...] = (
    (BACKUP_PREFIX, IndexCategory.BACKUP),
    (STAGING_PREFIX, IndexCategory.UPGRADE),
    (".games", IndexCategory.GAMES),
    ("opaque-values-", IndexCategory.OPAQUE_VALUES),
    ("results-", IndexCategory.RESULTS),
)


def category_by_name(name: str) -> Optional[IndexCategory]:
    """Category implied by the index name alone, or None when a probe is needed."""
    if name in EXACT_NAMES:
        return EXACT_NAMES[name]
    for prefix, category in PREFIXES:
        if name.startswith(prefix):
            return category
    return None


class IndexClassifier:
    """Classifies every listed index exactly once, concurrently."""

    def __init__(self, metadata_store: MetadataStore, model_index: Optional[str] = None):
        self.metadata_store = metadata_store
        self.model_index = model_index

    async def probe(self, name: str) -> IndexCategory:
        """Ask the metadata store what the ObjectId-named index holds."""
        if parse_object_id(name) is None:
            return IndexCategory.OTHER
        if await self.metadata_store.find_one(SESSIONS_COLLECTION, name):
            return IndexCategory.TRACES
        if await self.metadata_store.find_one(VERSIONS_COLLECTION, name):
            return IndexCategory.VERSIONS
        return IndexCategory.OTHER

    async def classify_one(self, descriptor: IndexDescriptor) -> IndexCategory:
        category = category_by_name(descriptor.name)
        if category is not None:
            return category
        try:
            return await self.probe(descriptor.name)
        except Exception as e:
            error = ClassificationError(descriptor.name, str(e))
            logger.warning(f"{error}; filing it as uncategorized")
            return IndexCategory.OTHER

    async def classify(
        self, descriptors: Iterable[IndexDescriptor], registry: MigrationRegistry
    ) -> MigrationRegistry:
        """
        Classify `descriptors` into `registry`.

        The model version index is left out. Metadata lookup failures never
        escape: such an index is filed as OTHER.
        """
        candidates: List[IndexDescriptor] = [
            d for d in descriptors if d.name and d.name != self.model_index
        ]
        categories = await join_all(self.classify_one(d) for d in candidates)

        for descriptor, category in zip(candidates, categories):
            registry.add(descriptor, category)

        counts: Dict[str, int] = {}
        for category in categories:
            counts[category.value] = counts.get(category.value, 0) + 1
        logger.info(f"Classified {len(candidates)} index(es): {counts}")
        return registry
