"""
Reindex Engine
==============
Copies an index document by document through a scroll cursor.

Pages are read and written strictly in order: a cursor is only advanced
once the previous page's bulk write was acknowledged. Destination documents
keep their `(type, id)`, so running a copy twice overwrites rather than
duplicates.
"""

from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from loguru import logger

from esupgrade.core.store import DocumentStore, hits_total
from .registry import IndexDescriptor
from .retry import BulkDocument, RetryPolicy


class ReindexEngine:
    """Cursor-paginated copy and bulk write primitives."""

    def __init__(
        self,
        store: DocumentStore,
        retry_policy: Optional[RetryPolicy] = None,
        keep_alive: str = "5m",
        page_size: int = 100,
    ):
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.keep_alive = keep_alive
        self.page_size = page_size

    async def scan(
        self, index: str, doc_type: Optional[str] = None
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Yield the hits of `index` page by page.

        Iteration ends on an empty page, when the cursor stops advancing,
        or once the number of scanned hits reaches the reported total.
        The cursor is released when iteration ends.
        """
        response = await self.store.search_scroll(
            index, self.keep_alive, self.page_size, doc_type=doc_type
        )
        scroll_id = response.get("_scroll_id")
        hits = response.get("hits") or {}
        total = hits_total(hits)
        page = hits.get("hits") or []
        scanned = 0

        try:
            while page:
                scanned += len(page)
                logger.debug(f"Scanned {scanned}/{total} document(s) of '{index}'")
                yield page

                if scanned >= total or not scroll_id:
                    break
                response = await self.store.scroll(scroll_id, self.keep_alive)
                scroll_id = response.get("_scroll_id") or scroll_id
                page = (response.get("hits") or {}).get("hits") or []
        finally:
            if scroll_id:
                await self.store.clear_scroll(scroll_id)

    async def write_documents(self, destination: str, documents: List[BulkDocument]) -> int:
        """Bulk-write one page into `destination`, retrying rejected documents."""
        return await self.retry_policy.write(self.store, destination, documents)

    async def reindex(
        self, source: Union[IndexDescriptor, str], destination: str
    ) -> str:
        """
        Copy every document of `source` into `destination`.

        Args:
            source: Index descriptor, or a bare index name.
            destination: Target index; created implicitly by the first write.

        Returns:
            The source index name.
        """
        if isinstance(source, IndexDescriptor):
            name = source.name
            if source.docs_count == 0:
                logger.debug(f"Skipping reindex of empty index '{name}'")
                return name
        else:
            name = source

        await self.store.refresh(name)

        copied = 0
        async with aclosing(self.scan(name)) as pages:
            async for page in pages:
                copied += await self.write_documents(
                    destination, [BulkDocument.from_hit(hit) for hit in page]
                )

        logger.info(f"Reindexed {copied} document(s) from '{name}' into '{destination}'")
        return name
