"""
Model version 1 -> 2: extension fields.

Version 2 keeps only the core trace attributes at the top level of trace
and version-snapshot documents; everything else moves under `ext`. Saved
visualizations and index patterns that aggregate on a moved field are
rewritten to its `ext.` path, and every game dashboards index receives the
two default visualizations introduced with version 2.

Classification needs the analytics MongoDB database, hence `requires`.
"""

from typing import Any, Dict, List

from loguru import logger

from esupgrade.core.concurrency import join_all
from esupgrade.core.exceptions import StaleMigrationError, VerificationError
from ..registry import (
    BACKUP_PREFIX,
    STAGING_PREFIX,
    IndexCategory,
    IndexDescriptor,
)
from ..transformer import MigrationContext, Transformer, TransformerVersion

_SEARCH_SOURCE = (
    '{"index":"57604f53f552624300d9caa6",'
    '"query":{"query_string":{"query":"*","analyze_wildcard":true}},'
    '"filter":[]}'
)

DEFAULT_GAME_VISUALIZATIONS: Dict[str, Dict[str, Any]] = {
    "TotalSessionPlayers-Cmn": {
        "title": "TotalSessionPlayers-Cmn",
        "visState": (
            '{"title":"Total Session Players",'
            '"type":"metric","params":{"handleNoResults":true,'
            '"fontSize":60},"aggs":[{"id":"1","type":"cardinality",'
            '"schema":"metric","params":{"field":"name.keyword",'
            '"customLabel":"SessionPlayers"}}],"listeners":{}}'
        ),
        "uiStateJSON": "{}",
        "description": "",
        "version": 1,
        "kibanaSavedObjectMeta": {"searchSourceJSON": _SEARCH_SOURCE},
        "author": "_default_",
        "isTeacher": True,
        "isDeveloper": True,
    },
    "xAPIVerbsActivity": {
        "title": "xAPIVerbsActivity",
        "visState": (
            '{"title":"xAPI Verbs Activity",'
            '"type":"histogram","params":{"shareYAxis":true,'
            '"addTooltip":true,"addLegend":true,"scale":"linear",'
            '"mode":"stacked","times":[],"addTimeMarker":false,'
            '"defaultYExtents":false,"setYExtents":false,"yAxis":{}},'
            '"aggs":[{"id":"1","type":"count","schema":"metric",'
            '"params":{"customLabel":"Activity Count"}},{"id":"2",'
            '"type":"terms","schema":"segment","params":{'
            '"field":"event.keyword","size":15,"order":"desc",'
            '"orderBy":"1","customLabel":"xAPI Verb"}}],"listeners":{}}'
        ),
        "uiStateJSON": "{}",
        "description": "",
        "version": 1,
        "kibanaSavedObjectMeta": {"searchSourceJSON": _SEARCH_SOURCE},
        "author": "_default_",
        "isTeacher": False,
        "isDeveloper": True,
    },
}

# Indices copied aside before the upgrade
_NOT_BACKED_UP = (IndexCategory.BACKUP, IndexCategory.UPGRADE)
_DOCUMENT_CATEGORIES = (IndexCategory.TRACES, IndexCategory.VERSIONS)
_ARTIFACT_CATEGORIES = (IndexCategory.KIBANA, IndexCategory.TEMPLATE, IndexCategory.GAMES)


async def _existing(ctx: MigrationContext, names: List[str]) -> List[str]:
    found = []
    for name in names:
        if await ctx.store.index_exists(name):
            found.append(name)
    return found


class TransformToVersion2(Transformer):
    version = TransformerVersion("1", "2")
    requires = {"mongo": "1"}

    # ------------------------------------------------------------------
    # backup
    # ------------------------------------------------------------------

    async def backup(self, ctx: MigrationContext) -> None:
        ctx.reset()
        descriptors = [IndexDescriptor.from_cat(row) for row in await ctx.store.list_indices()]

        stale = [d.name for d in descriptors if d.name.startswith(BACKUP_PREFIX)]
        if stale:
            raise StaleMigrationError(stale)

        leftovers = [d.name for d in descriptors if d.name.startswith(STAGING_PREFIX)]
        if leftovers:
            logger.warning(f"Deleting {len(leftovers)} staging index(es) left by a previous run")
            await ctx.store.delete_index(leftovers)

        live = [d for d in descriptors if not d.name.startswith(STAGING_PREFIX)]
        await ctx.classifier.classify(live, ctx.registry)

        targets = [
            d for d in ctx.registry
            if d.docs_count > 0 and ctx.registry.category_of(d.name) not in _NOT_BACKED_UP
        ]
        await join_all(self._backup_index(ctx, d) for d in targets)
        logger.info(f"Backed up {len(targets)} index(es)")

    async def _backup_index(self, ctx: MigrationContext, descriptor: IndexDescriptor) -> None:
        backup = descriptor.backup_name
        try:
            await ctx.engine.reindex(descriptor, backup)
        except BaseException:
            # A partial backup must not be taken for a complete one later
            if await ctx.store.index_exists(backup):
                await ctx.store.delete_index(backup)
            raise
        ctx.registry.record_backup(descriptor.name, backup)

    # ------------------------------------------------------------------
    # upgrade
    # ------------------------------------------------------------------

    async def upgrade(self, ctx: MigrationContext) -> None:
        registry = ctx.registry

        games = registry.get(IndexCategory.GAMES)
        await join_all(self._seed_game_index(ctx, d.name) for d in games)

        documents = [d for c in _DOCUMENT_CATEGORIES for d in registry.get(c)]
        await join_all(ctx.rewriter.rewrite_documents(registry, d) for d in documents)
        logger.info(f"Extension fields found: {ctx.extensions.to_list()}")

        artifacts = [d for c in _ARTIFACT_CATEGORIES for d in registry.get(c)]
        await join_all(ctx.rewriter.rewrite_artifacts(registry, d) for d in artifacts)

        pairs = [
            (source, staging)
            for source, staging in registry.in_progress.items()
            if staging not in registry.deleted_staging
        ]
        await join_all(ctx.rewriter.promote(registry, source, staging) for source, staging in pairs)
        logger.info(f"Promoted {len(pairs)} staging index(es)")

    async def _seed_game_index(self, ctx: MigrationContext, index: str) -> None:
        backed_up = index in ctx.registry.backed_up
        for doc_id, body in DEFAULT_GAME_VISUALIZATIONS.items():
            if not backed_up:
                # Recorded first so restore also undoes a half-written seed
                ctx.registry.record_seed(index, "visualization", doc_id)
            await ctx.store.put(index, "visualization", doc_id, dict(body))
        logger.debug(f"Seeded default visualizations into '{index}'")

    # ------------------------------------------------------------------
    # check
    # ------------------------------------------------------------------

    async def check(self, ctx: MigrationContext) -> None:
        pairs = list(ctx.registry.backed_up.items())
        if not pairs:
            return

        await ctx.store.refresh()
        counts = {
            row.get("index"): IndexDescriptor.from_cat(row).docs_count
            for row in await ctx.store.list_indices()
        }

        for source, backup in pairs:
            if source not in counts:
                raise VerificationError(source, f"live index for backup '{backup}' is missing")
            expected = counts.get(backup, 0)
            if counts[source] < expected:
                raise VerificationError(
                    source,
                    f"holds {counts[source]} document(s), backup '{backup}' holds {expected}",
                    path="docs.count",
                    expected=expected,
                    actual=counts[source],
                )

        await join_all(ctx.checker.check(backup, source) for source, backup in pairs)
        logger.info(f"Checked {len(pairs)} index(es) against their backups")

    # ------------------------------------------------------------------
    # clean / restore
    # ------------------------------------------------------------------

    async def clean(self, ctx: MigrationContext) -> None:
        to_remove = list(ctx.registry.backed_up.values())
        to_remove += await _existing(ctx, ctx.registry.pending_staging())
        if to_remove:
            await ctx.store.delete_index(to_remove)
            logger.info(f"Removed {len(to_remove)} temporary index(es)")
        ctx.reset()

    async def restore(self, ctx: MigrationContext) -> None:
        pairs = list(ctx.registry.backed_up.items())
        await join_all(self._restore_index(ctx, source, backup) for source, backup in pairs)
        await join_all(
            self._unseed_index(ctx, index, keys) for index, keys in ctx.registry.seeded.items()
        )

        leftovers = await _existing(ctx, ctx.registry.pending_staging())
        if leftovers:
            await ctx.store.delete_index(leftovers)
        logger.info(f"Restored {len(pairs)} index(es) from backup")
        ctx.reset()

    async def _unseed_index(self, ctx: MigrationContext, index: str, keys) -> None:
        for doc_type, doc_id in keys:
            await ctx.store.delete(index, doc_type, doc_id)
        logger.debug(f"Removed {len(keys)} seeded document(s) from '{index}'")

    async def _restore_index(self, ctx: MigrationContext, source: str, backup: str) -> None:
        if await ctx.store.index_exists(source):
            await ctx.store.delete_index(source)
        await ctx.engine.reindex(backup, source)
        await ctx.store.delete_index(backup)
        logger.debug(f"Restored '{source}' from '{backup}'")
