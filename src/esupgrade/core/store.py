"""
Document Store Layer
====================
Async access to the Elasticsearch-like document store over its REST protocol.

`DocumentStore` is the surface the migration engine consumes:

    list_indices, search_scroll/scroll/clear_scroll, search, bulk,
    get, put, delete, index_exists, delete_index, refresh

`ElasticStore` implements it with a single shared aiohttp session. Documents
travel as search hits: {"_index", "_type", "_id", "_source"}.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Union
from urllib.parse import quote

import aiohttp
from loguru import logger

from esupgrade.core.exceptions import (
    StoreConnectionError,
    StoreRequestError,
    wrap_store_exception,
)
from esupgrade.utils.json_compat import dumps_bytes, loads


# Error type the store reports when its bulk queue is full
REJECTED_EXECUTION = "es_rejected_execution_exception"


def hits_total(hits: Dict[str, Any]) -> int:
    """Read `hits.total` from both the 5.x (int) and 7.x ({"value": n}) shapes."""
    total = hits.get("total", 0)
    if isinstance(total, dict):
        return int(total.get("value", 0))
    return int(total or 0)


class DocumentStore(ABC):
    """Operations of the document store used by the migration engine."""

    @abstractmethod
    async def ping(self) -> bool:
        ...

    @abstractmethod
    async def list_indices(self) -> List[Dict[str, Any]]:
        """Return `_cat/indices` rows: {"index", "health", "status", "docs.count", ...}."""

    @abstractmethod
    async def search_scroll(
        self,
        index: str,
        keep_alive: str,
        size: int,
        doc_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Open a cursor; returns {"_scroll_id", "hits": {"total", "hits"}}."""

    @abstractmethod
    async def scroll(self, scroll_id: str, keep_alive: str) -> Dict[str, Any]:
        """Continue a cursor; same shape as `search_scroll`."""

    @abstractmethod
    async def clear_scroll(self, scroll_id: str) -> None:
        ...

    @abstractmethod
    async def search(
        self, index: str, doc_type: Optional[str] = None, size: int = 10
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def bulk(self, operations: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Submit alternating action/document lines; returns {"errors", "items"}."""

    @abstractmethod
    async def get(self, index: str, doc_type: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return the document as a hit, or None when it does not exist."""

    @abstractmethod
    async def put(
        self, index: str, doc_type: str, doc_id: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def delete(self, index: str, doc_type: str, doc_id: str) -> bool:
        """Delete one document; False when it did not exist."""

    @abstractmethod
    async def index_exists(self, index: str) -> bool:
        ...

    @abstractmethod
    async def delete_index(self, indices: Union[str, Sequence[str]]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def refresh(self, index: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class ElasticStore(DocumentStore):
    """
    REST client for the document store.

    One aiohttp session is shared by every request of a run; many requests
    may be in flight at once.
    """

    backend = "elasticsearch"

    def __init__(
        self,
        url: str,
        request_timeout: float = 60.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url.rstrip("/")
        self.request_timeout = request_timeout
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        body: Any = None,
        params: Optional[Dict[str, str]] = None,
        ndjson: Optional[bytes] = None,
        allowed: Sequence[int] = (),
    ) -> tuple:
        """
        Issue one request and decode the JSON reply.

        Returns:
            (status, decoded body or None)

        Raises:
            StoreRequestError: non-2xx status that is not in `allowed`.
            StoreConnectionError / StoreTimeoutError: transport failures.
        """
        headers = {}
        data = None
        if ndjson is not None:
            data = ndjson
            headers["Content-Type"] = "application/x-ndjson"
        elif body is not None:
            data = dumps_bytes(body)
            headers["Content-Type"] = "application/json"

        try:
            async with self.session.request(
                method,
                f"{self.url}{path}",
                params=params,
                data=data,
                headers=headers,
            ) as response:
                raw = await response.read()
                status = response.status
        except aiohttp.ClientConnectionError as e:
            logger.error(f"Store {operation} could not reach {self.url}: {e}")
            raise StoreConnectionError(self.backend, str(e) or type(e).__name__) from e
        except Exception as e:
            raise wrap_store_exception(self.backend, operation, e) from e

        decoded = None
        if raw:
            try:
                decoded = loads(raw)
            except ValueError:
                decoded = raw.decode("utf-8", errors="replace")

        if status >= 300 and status not in allowed:
            raise StoreRequestError(operation, status, decoded)
        return status, decoded

    async def ping(self) -> bool:
        status, _ = await self._request("GET", "/", "ping")
        return status < 300

    async def list_indices(self) -> List[Dict[str, Any]]:
        _, rows = await self._request(
            "GET", "/_cat/indices", "list_indices", params={"format": "json"}
        )
        return rows or []

    async def search_scroll(
        self,
        index: str,
        keep_alive: str,
        size: int,
        doc_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        path = f"/{quote(index)}"
        if doc_type:
            path += f"/{quote(doc_type)}"
        _, body = await self._request(
            "POST",
            f"{path}/_search",
            "search_scroll",
            body={"size": size, "sort": ["_doc"]},
            params={"scroll": keep_alive},
        )
        return body

    async def scroll(self, scroll_id: str, keep_alive: str) -> Dict[str, Any]:
        _, body = await self._request(
            "POST",
            "/_search/scroll",
            "scroll",
            body={"scroll": keep_alive, "scroll_id": scroll_id},
        )
        return body

    async def clear_scroll(self, scroll_id: str) -> None:
        # The cursor may already have expired
        await self._request(
            "DELETE",
            "/_search/scroll",
            "clear_scroll",
            body={"scroll_id": [scroll_id]},
            allowed=(404,),
        )

    async def search(
        self, index: str, doc_type: Optional[str] = None, size: int = 10
    ) -> Dict[str, Any]:
        path = f"/{quote(index)}"
        if doc_type:
            path += f"/{quote(doc_type)}"
        _, body = await self._request(
            "POST", f"{path}/_search", "search", body={"size": size}
        )
        return body

    async def bulk(self, operations: List[Dict[str, Any]]) -> Dict[str, Any]:
        payload = b"".join(dumps_bytes(line) + b"\n" for line in operations)
        _, body = await self._request("POST", "/_bulk", "bulk", ndjson=payload)
        return body

    async def get(self, index: str, doc_type: str, doc_id: str) -> Optional[Dict[str, Any]]:
        status, body = await self._request(
            "GET",
            f"/{quote(index)}/{quote(doc_type)}/{quote(doc_id, safe='')}",
            "get",
            allowed=(404,),
        )
        if status == 404 or not body or not body.get("found", True):
            return None
        return body

    async def put(
        self, index: str, doc_type: str, doc_id: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        _, reply = await self._request(
            "PUT",
            f"/{quote(index)}/{quote(doc_type)}/{quote(doc_id, safe='')}",
            "put",
            body=body,
        )
        return reply

    async def delete(self, index: str, doc_type: str, doc_id: str) -> bool:
        status, _ = await self._request(
            "DELETE",
            f"/{quote(index)}/{quote(doc_type)}/{quote(doc_id, safe='')}",
            "delete",
            allowed=(404,),
        )
        return status != 404

    async def index_exists(self, index: str) -> bool:
        status, _ = await self._request(
            "HEAD", f"/{quote(index)}", "index_exists", allowed=(404,)
        )
        return status == 200

    async def delete_index(self, indices: Union[str, Sequence[str]]) -> Dict[str, Any]:
        names = indices if isinstance(indices, str) else ",".join(indices)
        _, reply = await self._request("DELETE", f"/{quote(names, safe=',')}", "delete_index")
        return reply

    async def refresh(self, index: Optional[str] = None) -> None:
        path = f"/{quote(index)}/_refresh" if index else "/_refresh"
        await self._request("POST", path, "refresh")

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
