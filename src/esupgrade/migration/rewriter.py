"""
Schema Rewriter
===============
Moves document fields outside the core trace schema under an `ext`
object, and keeps the dashboard artifacts that name those fields in step.

Two kinds of artifacts reference document fields:
    - saved visualizations: `visState` is a JSON string whose
      `aggs[].params.field` names the aggregated field
    - index patterns: `fields` is a JSON string listing field entries,
      each with a `name`

A referenced field that is neither a core attribute nor its `.keyword`
variant is rewritten to `ext.<field>`.

Rewritten indices are written to a staging index (`upgrade_<name>`), never
in place. `promote()` later swaps the staging copy in for the source.
"""

from contextlib import aclosing
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from loguru import logger

from esupgrade.core.exceptions import ExtensionConflictError
from esupgrade.core.store import DocumentStore
from esupgrade.utils.json_compat import dumps, loads
from .registry import ExtensionFieldRegistry, IndexDescriptor, MigrationRegistry
from .reindex import ReindexEngine
from .retry import BulkDocument

EXTENSION_CONTAINER = "ext"
KEYWORD_SUFFIX = ".keyword"

VISUALIZATION_TYPE = "visualization"
# The template and game dashboards indices also store patterns as type "index"
INDEX_PATTERN_TYPES = ("index-pattern", "index")

CORE_ATTRIBUTES: Tuple[str, ...] = (
    "name", "timestamp", "event",
    "target", "type",
    "gameplayId", "versionId", "session",
    "firstSessionStarted", "currentSessionStarted",
    "score", "success", "completion", "response",
    "stored", "gameplayId_hashCode", "event_hashCode",
    "type_hashCode", "target_hashCode",
)


def parse_serialized(text: Any) -> Optional[Any]:
    """
    Decode a JSON string stored inside a document.

    Some artifacts were saved with their quotes escaped twice; those are
    decoded again after unescaping. Returns None when neither works.
    """
    if not isinstance(text, (str, bytes)):
        return None
    try:
        return loads(text)
    except ValueError:
        pass
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    try:
        return loads(text.replace('\\"', '"'))
    except ValueError:
        return None


class SchemaRewriter:
    """Rewrites documents and dashboard artifacts to the extension layout."""

    def __init__(
        self,
        engine: ReindexEngine,
        extensions: ExtensionFieldRegistry,
        core_attributes: Iterable[str] = CORE_ATTRIBUTES,
    ):
        self.engine = engine
        self.extensions = extensions
        self.core_attributes: FrozenSet[str] = frozenset(core_attributes)

    @property
    def store(self) -> DocumentStore:
        return self.engine.store

    # ------------------------------------------------------------------
    # Field rules
    # ------------------------------------------------------------------

    def is_core_field(self, name: str) -> bool:
        if name in self.core_attributes:
            return True
        return name.endswith(KEYWORD_SUFFIX) and name[: -len(KEYWORD_SUFFIX)] in self.core_attributes

    def rewrite_field_name(self, name: str) -> str:
        """`ext.`-prefixed path for an extension field; other names unchanged."""
        if (
            self.is_core_field(name)
            or name == EXTENSION_CONTAINER
            or name.startswith(EXTENSION_CONTAINER + ".")
            or name.startswith("_")
        ):
            return name
        return f"{EXTENSION_CONTAINER}.{name}"

    def relocate_extensions(
        self, source: Dict[str, Any], context: Optional[dict] = None
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Move every non-core field of `source` under `ext`.

        An `ext` object already present is kept and extended. Each moved
        field name is added to the extension registry.

        Returns:
            (new source, whether any field moved)

        Raises:
            ExtensionConflictError: a moved field would replace a different
                value already stored under `ext`.
        """
        result: Dict[str, Any] = {}
        ext: Dict[str, Any] = {}
        existing = source.get(EXTENSION_CONTAINER)
        if isinstance(existing, dict):
            ext.update(existing)

        moved = False
        for key, value in source.items():
            if key in self.core_attributes:
                result[key] = value
            elif key == EXTENSION_CONTAINER and isinstance(value, dict):
                continue
            else:
                if key in ext and ext[key] != value:
                    raise ExtensionConflictError(key, ext[key], value, context)
                ext[key] = value
                self.extensions.add(key)
                moved = True

        if ext:
            result[EXTENSION_CONTAINER] = ext
        return result, moved

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def rewrite_visualization(self, source: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Return a copy of the visualization with its aggregation fields
        rewritten, or None when nothing needs to change.
        """
        if not self.extensions or not source:
            return None
        raw = source.get("visState")
        if not raw:
            return None

        vis_state = parse_serialized(raw)
        if not isinstance(vis_state, dict):
            logger.warning(f"Unreadable visState in '{source.get('title')}'; copying it verbatim")
            return None

        changed = False
        for agg in vis_state.get("aggs") or []:
            if not isinstance(agg, dict):
                continue
            params = agg.get("params")
            if not isinstance(params, dict) or not params.get("field"):
                continue
            field = params["field"]
            rewritten = self.rewrite_field_name(field)
            if rewritten != field:
                params["field"] = rewritten
                changed = True

        if not changed:
            return None
        updated = dict(source)
        updated["visState"] = dumps(vis_state)
        return updated

    def rewrite_index_pattern(self, source: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Return a copy of the index pattern with its field catalog rewritten,
        or None when nothing needs to change.
        """
        if not source:
            return None
        raw = source.get("fields")
        if not raw:
            return None

        fields = parse_serialized(raw)
        if not isinstance(fields, list):
            logger.warning(f"Unreadable field list in '{source.get('title')}'; copying it verbatim")
            return None

        changed = False
        for entry in fields:
            if not isinstance(entry, dict) or not entry.get("name"):
                continue
            name = entry["name"]
            rewritten = self.rewrite_field_name(name)
            if rewritten != name:
                entry["name"] = rewritten
                changed = True

        if not changed:
            return None
        updated = dict(source)
        updated["fields"] = dumps(fields)
        return updated

    def rewrite_artifact(self, hit: Dict[str, Any]) -> Tuple[BulkDocument, bool]:
        doc = BulkDocument.from_hit(hit)
        if doc.doc_type == VISUALIZATION_TYPE:
            updated = self.rewrite_visualization(doc.source)
        elif doc.doc_type in INDEX_PATTERN_TYPES:
            updated = self.rewrite_index_pattern(doc.source)
        else:
            updated = None
        if updated is None:
            return doc, False
        return BulkDocument(doc.doc_type, doc.doc_id, updated), True

    # ------------------------------------------------------------------
    # Indices
    # ------------------------------------------------------------------

    async def _stage(self, registry: MigrationRegistry, descriptor: IndexDescriptor, rewrite) -> bool:
        """
        Copy `descriptor` into its staging index, passing each hit through
        `rewrite`. An unchanged copy is dropped again.

        Returns:
            True when the staging index holds a changed copy to promote.
        """
        if descriptor.docs_count == 0:
            return False

        source = descriptor.name
        staging = descriptor.staging_name
        registry.record_staging(source, staging)

        await self.store.refresh(source)
        written = 0
        changed = 0
        async with aclosing(self.engine.scan(source)) as pages:
            async for page in pages:
                documents: List[BulkDocument] = []
                for hit in page:
                    doc, modified = rewrite(hit)
                    documents.append(doc)
                    changed += int(modified)
                written += await self.engine.write_documents(staging, documents)

        if not changed:
            logger.debug(f"Nothing to rewrite in '{source}'")
            if written:
                await self.store.delete_index(staging)
            registry.mark_staging_deleted(staging)
            return False

        logger.info(f"Staged '{source}' as '{staging}': {changed}/{written} document(s) rewritten")
        return True

    async def rewrite_documents(self, registry: MigrationRegistry, descriptor: IndexDescriptor) -> bool:
        """Stage a trace or version-snapshot index with extensions relocated."""
        def rewrite(hit: Dict[str, Any]) -> Tuple[BulkDocument, bool]:
            doc = BulkDocument.from_hit(hit)
            source, moved = self.relocate_extensions(
                doc.source,
                {"index": descriptor.name, "type": doc.doc_type, "id": doc.doc_id},
            )
            return BulkDocument(doc.doc_type, doc.doc_id, source), moved

        return await self._stage(registry, descriptor, rewrite)

    async def rewrite_artifacts(self, registry: MigrationRegistry, descriptor: IndexDescriptor) -> bool:
        """
        Stage a dashboards index with its visualizations and index patterns
        rewritten. Every other document is copied verbatim, so the staging
        index is a complete replacement for the source.
        """
        return await self._stage(registry, descriptor, self.rewrite_artifact)

    async def promote(self, registry: MigrationRegistry, source: str, staging: str) -> str:
        """Replace `source` by the contents of `staging`, then drop `staging`."""
        if await self.store.index_exists(source):
            await self.store.delete_index(source)
        await self.engine.reindex(staging, source)
        await self.store.delete_index(staging)
        registry.mark_staging_deleted(staging)
        logger.info(f"Promoted '{staging}' over '{source}'")
        return source
