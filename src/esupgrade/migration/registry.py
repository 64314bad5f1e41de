"""
Run-scoped migration state.

`MigrationRegistry` holds the classified indices of one controller run and
the bookkeeping needed to finish or undo it. `ExtensionFieldRegistry`
collects the document fields found outside the core schema. Both are
created per run, only ever appended to while the run is in flight, and
cleared when it ends.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple


BACKUP_PREFIX = "backup_"
STAGING_PREFIX = "upgrade_"


class IndexCategory(Enum):
    """What an index holds, as far as the migration is concerned."""
    KIBANA = "kibana"
    TEMPLATE = "template"
    DEFAULT_KIBANA_INDEX = "default_kibana_index"
    GAMES = "games"
    RESULTS = "results"
    OPAQUE_VALUES = "opaque_values"
    TRACES = "traces"
    VERSIONS = "versions"
    BACKUP = "backup"
    UPGRADE = "upgrade"
    OTHER = "other"

    @property
    def is_config(self) -> bool:
        return self in (
            IndexCategory.KIBANA,
            IndexCategory.TEMPLATE,
            IndexCategory.DEFAULT_KIBANA_INDEX,
        )


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class IndexDescriptor:
    """One row of the store's index listing."""
    name: str
    health: Optional[str] = None
    status: Optional[str] = None
    docs_count: int = 0
    stats: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_cat(cls, row: Dict[str, Any]) -> "IndexDescriptor":
        """Build from a `_cat/indices?format=json` row."""
        return cls(
            name=row.get("index", ""),
            health=row.get("health"),
            status=row.get("status"),
            docs_count=_to_int(row.get("docs.count")),
            stats=dict(row),
        )

    def renamed(self, name: str) -> "IndexDescriptor":
        return replace(self, name=name)

    @property
    def backup_name(self) -> str:
        return BACKUP_PREFIX + self.name

    @property
    def staging_name(self) -> str:
        return STAGING_PREFIX + self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.name,
            "health": self.health,
            "status": self.status,
            "docs.count": self.docs_count,
        }


class MigrationRegistry:
    """
    Classified indices plus the source -> backup and source -> staging pairs
    created by the current run.
    """

    def __init__(self):
        self._categories: Dict[IndexCategory, List[IndexDescriptor]] = {}
        self._by_name: Dict[str, IndexDescriptor] = {}
        self.backed_up: Dict[str, str] = {}
        self.in_progress: Dict[str, str] = {}
        self.deleted_staging: Set[str] = set()
        # Documents written into indices that have no backup: index -> [(type, id)]
        self.seeded: Dict[str, List[Tuple[str, str]]] = {}

    def add(self, descriptor: IndexDescriptor, category: IndexCategory) -> None:
        self._categories.setdefault(category, []).append(descriptor)
        self._by_name[descriptor.name] = descriptor

    def get(self, category: IndexCategory) -> List[IndexDescriptor]:
        return list(self._categories.get(category, []))

    def first(self, category: IndexCategory) -> Optional[IndexDescriptor]:
        found = self._categories.get(category)
        return found[0] if found else None

    def descriptor(self, name: str) -> Optional[IndexDescriptor]:
        return self._by_name.get(name)

    def category_of(self, name: str) -> Optional[IndexCategory]:
        for category, descriptors in self._categories.items():
            if any(d.name == name for d in descriptors):
                return category
        return None

    def __iter__(self) -> Iterator[IndexDescriptor]:
        return iter(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)

    def record_backup(self, source: str, backup: str) -> None:
        self.backed_up[source] = backup

    def record_staging(self, source: str, staging: str) -> None:
        self.in_progress.setdefault(source, staging)

    def mark_staging_deleted(self, staging: str) -> None:
        self.deleted_staging.add(staging)

    def record_seed(self, index: str, doc_type: str, doc_id: str) -> None:
        self.seeded.setdefault(index, []).append((doc_type, doc_id))

    def pending_staging(self) -> List[str]:
        """Staging indices created by this run and not yet reclaimed."""
        return [s for s in self.in_progress.values() if s not in self.deleted_staging]

    def clear(self) -> None:
        self._categories.clear()
        self._by_name.clear()
        self.backed_up.clear()
        self.in_progress.clear()
        self.deleted_staging.clear()
        self.seeded.clear()

    def summary(self) -> Dict[str, Any]:
        return {
            "categories": {
                category.value: [d.name for d in descriptors]
                for category, descriptors in self._categories.items()
            },
            "backed_up": dict(self.backed_up),
            "in_progress": dict(self.in_progress),
            "deleted_staging": sorted(self.deleted_staging),
            "seeded": {k: list(v) for k, v in self.seeded.items()},
        }


class ExtensionFieldRegistry:
    """Insertion-ordered set of field names found outside the core schema."""

    def __init__(self, names: Iterable[str] = ()):
        self._names: Dict[str, None] = {}
        for name in names:
            self.add(name)

    def add(self, name: str) -> bool:
        """Record `name`; returns True when it was not known yet."""
        if name in self._names:
            return False
        self._names[name] = None
        return True

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._names))

    def __len__(self) -> int:
        return len(self._names)

    def __bool__(self) -> bool:
        return bool(self._names)

    def clear(self) -> None:
        self._names.clear()

    def to_list(self) -> List[str]:
        return list(self._names)
