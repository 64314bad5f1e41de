"""
Mock Elasticsearch Store
========================
In-memory implementation of DocumentStore for offline testing.

Behaves like the REST store where the migration relies on it:
    - a scroll search snapshots the hits at search time and pages through
      that snapshot
    - bulk replies report per-item status; tests can make chosen documents
      fail with a capacity rejection or a hard error
    - deleting or refreshing a missing index is a 404
Any operation can also be made to raise once, on its n-th call.
"""

import copy
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from esupgrade.core.exceptions import StoreRequestError
from esupgrade.core.store import REJECTED_EXECUTION, DocumentStore

DocKey = Tuple[str, str]


class MockElasticStore(DocumentStore):
    """Dict-backed document store with scroll cursors and bulk writes."""

    def __init__(self):
        self._indices: Dict[str, Dict[DocKey, Dict[str, Any]]] = {}
        self._scrolls: Dict[str, Tuple[List[Dict[str, Any]], int, int]] = {}
        self._scroll_counter = 0
        self._reject_plan: List[Set[DocKey]] = []
        self._errors: Dict[DocKey, str] = {}
        self._failures: Dict[str, List[Tuple[int, Exception]]] = {}

        self.calls: Counter = Counter()
        self.bulk_requests: List[List[Dict[str, Any]]] = []
        self.cleared_scrolls: List[str] = []
        self.closed = False

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def add_index(self, name: str, documents: Iterable[Tuple[str, str, Dict[str, Any]]] = ()) -> None:
        index = self._indices.setdefault(name, {})
        for doc_type, doc_id, source in documents:
            index[(doc_type, doc_id)] = copy.deepcopy(source)

    def documents(self, name: str) -> Dict[DocKey, Dict[str, Any]]:
        return copy.deepcopy(self._indices.get(name, {}))

    def source(self, name: str, doc_type: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._indices.get(name, {}).get((doc_type, doc_id))
        return copy.deepcopy(doc) if doc is not None else None

    def index_names(self) -> List[str]:
        return sorted(self._indices)

    def count(self, name: str) -> int:
        return len(self._indices.get(name, {}))

    def reject_on_next_bulks(self, *plans: Iterable[DocKey]) -> None:
        """Each plan is the set of documents rejected (429) by one upcoming bulk call."""
        self._reject_plan.extend(set(plan) for plan in plans)

    def fail_documents(self, keys: Iterable[DocKey], error_type: str = "mapper_parsing_exception") -> None:
        """Make every bulk write of these documents fail with a hard error."""
        for key in keys:
            self._errors[key] = error_type

    def fail_on(self, operation: str, exc: Exception, call: int = 1) -> None:
        """Raise `exc` from the `call`-th invocation of `operation`."""
        self._failures.setdefault(operation, []).append((call, exc))

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        for planned in self._failures.get(operation, []):
            call, exc = planned
            if call == self.calls[operation]:
                self._failures[operation].remove(planned)
                raise exc

    def _missing(self, operation: str, index: str) -> StoreRequestError:
        return StoreRequestError(
            operation, 404, {"error": {"type": "index_not_found_exception", "index": index}}
        )

    @staticmethod
    def _hit(index: str, key: DocKey, source: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "_index": index,
            "_type": key[0],
            "_id": key[1],
            "_source": copy.deepcopy(source),
        }

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        self._enter("ping")
        return True

    async def list_indices(self) -> List[Dict[str, Any]]:
        self._enter("list_indices")
        return [
            {
                "health": "green",
                "status": "open",
                "index": name,
                "docs.count": str(len(docs)),
                "docs.deleted": "0",
            }
            for name, docs in self._indices.items()
        ]

    async def search_scroll(
        self,
        index: str,
        keep_alive: str,
        size: int,
        doc_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        self._enter("search_scroll")
        if index not in self._indices:
            raise self._missing("search_scroll", index)
        snapshot = [
            self._hit(index, key, source)
            for key, source in self._indices[index].items()
            if doc_type is None or key[0] == doc_type
        ]
        self._scroll_counter += 1
        scroll_id = f"scroll-{self._scroll_counter}"
        self._scrolls[scroll_id] = (snapshot, size, size)
        return {
            "_scroll_id": scroll_id,
            "hits": {"total": len(snapshot), "hits": snapshot[:size]},
        }

    async def scroll(self, scroll_id: str, keep_alive: str) -> Dict[str, Any]:
        self._enter("scroll")
        if scroll_id not in self._scrolls:
            raise StoreRequestError("scroll", 404, {"error": {"type": "search_context_missing_exception"}})
        snapshot, size, offset = self._scrolls[scroll_id]
        self._scrolls[scroll_id] = (snapshot, size, offset + size)
        return {
            "_scroll_id": scroll_id,
            "hits": {"total": len(snapshot), "hits": snapshot[offset:offset + size]},
        }

    async def clear_scroll(self, scroll_id: str) -> None:
        self._enter("clear_scroll")
        self._scrolls.pop(scroll_id, None)
        self.cleared_scrolls.append(scroll_id)

    async def search(
        self, index: str, doc_type: Optional[str] = None, size: int = 10
    ) -> Dict[str, Any]:
        self._enter("search")
        if index not in self._indices:
            raise self._missing("search", index)
        hits = [
            self._hit(index, key, source)
            for key, source in self._indices[index].items()
            if doc_type is None or key[0] == doc_type
        ]
        return {"hits": {"total": len(hits), "hits": hits[:size]}}

    async def bulk(self, operations: List[Dict[str, Any]]) -> Dict[str, Any]:
        self._enter("bulk")
        self.bulk_requests.append(copy.deepcopy(operations))
        rejected = self._reject_plan.pop(0) if self._reject_plan else set()

        items = []
        errors = False
        for action, source in zip(operations[::2], operations[1::2]):
            header = action["index"]
            key = (header["_type"], header["_id"])
            result = {"_index": header["_index"], "_type": key[0], "_id": key[1]}
            if key in rejected:
                errors = True
                result.update(status=429, error={
                    "type": REJECTED_EXECUTION,
                    "reason": "rejected execution of bulk item",
                })
            elif key in self._errors:
                errors = True
                result.update(status=400, error={
                    "type": self._errors[key],
                    "reason": f"failed to parse {key[1]}",
                })
            else:
                index = self._indices.setdefault(header["_index"], {})
                result["status"] = 200 if key in index else 201
                index[key] = copy.deepcopy(source)
            items.append({"index": result})

        return {"took": 1, "errors": errors, "items": items}

    async def get(self, index: str, doc_type: str, doc_id: str) -> Optional[Dict[str, Any]]:
        self._enter("get")
        source = self._indices.get(index, {}).get((doc_type, doc_id))
        if source is None:
            return None
        hit = self._hit(index, (doc_type, doc_id), source)
        hit["found"] = True
        return hit

    async def put(
        self, index: str, doc_type: str, doc_id: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        self._enter("put")
        docs = self._indices.setdefault(index, {})
        created = (doc_type, doc_id) not in docs
        docs[(doc_type, doc_id)] = copy.deepcopy(body)
        return {"_index": index, "_type": doc_type, "_id": doc_id, "created": created}

    async def delete(self, index: str, doc_type: str, doc_id: str) -> bool:
        self._enter("delete")
        return self._indices.get(index, {}).pop((doc_type, doc_id), None) is not None

    async def index_exists(self, index: str) -> bool:
        self._enter("index_exists")
        return index in self._indices

    async def delete_index(self, indices: Union[str, Sequence[str]]) -> Dict[str, Any]:
        self._enter("delete_index")
        names = indices.split(",") if isinstance(indices, str) else list(indices)
        for name in names:
            if name not in self._indices:
                raise self._missing("delete_index", name)
        for name in names:
            del self._indices[name]
        return {"acknowledged": True}

    async def refresh(self, index: Optional[str] = None) -> None:
        self._enter("refresh")
        if index is not None and index not in self._indices:
            raise self._missing("refresh", index)

    async def close(self) -> None:
        self.closed = True
