"""
Bulk writes with per-document retry.

A bulk reply reports success or failure per item. Items the store rejected
because its write queue was full (HTTP 429, `es_rejected_execution_exception`)
are resubmitted with exponential backoff; any other per-item error fails the
write at once.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from esupgrade.core.config import RetryConfig
from esupgrade.core.exceptions import (
    BulkWriteError,
    InconsistentBulkResponseError,
    RetryExhaustedError,
)
from esupgrade.core.store import REJECTED_EXECUTION, DocumentStore


@dataclass(frozen=True)
class BulkDocument:
    """A document headed for a bulk write, keyed by `(type, id)`."""
    doc_type: str
    doc_id: str
    source: Dict[str, Any] = field(compare=False)

    @classmethod
    def from_hit(cls, hit: Dict[str, Any]) -> "BulkDocument":
        return cls(hit.get("_type"), hit.get("_id"), hit.get("_source") or {})

    @property
    def key(self) -> Tuple[str, str]:
        return (self.doc_type, self.doc_id)


def build_operations(index: str, documents: Iterable[BulkDocument]) -> List[Dict[str, Any]]:
    """Bulk body: an `index` action line followed by the source, per document."""
    operations: List[Dict[str, Any]] = []
    for doc in documents:
        operations.append({"index": {"_index": index, "_type": doc.doc_type, "_id": doc.doc_id}})
        operations.append(doc.source)
    return operations


def _item_result(item: Dict[str, Any]) -> Dict[str, Any]:
    # Items are keyed by their action name; only `index` is ever sent
    if "index" in item:
        return item["index"] or {}
    return next(iter(item.values()), None) or {}


def is_rejected(result: Dict[str, Any]) -> bool:
    """True for the retryable capacity rejection."""
    error = result.get("error")
    return (
        result.get("status") == 429
        and isinstance(error, dict)
        and error.get("type") == REJECTED_EXECUTION
    )


@dataclass
class RetryPolicy:
    """
    Backoff for documents rejected by a bulk write.

    The delay before retry `n` (1-based) is
    `min_delay * factor ** (n - 1)`, multiplied by a random value in
    [1, 2) when `randomize` is set, and capped at `max_delay`.

    Attributes:
        max_attempts: Resubmissions after the initial write.
        factor: Geometric growth of the delay.
        min_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for any delay, in seconds.
        randomize: Apply jitter.
    """
    max_attempts: int = 5
    factor: float = 3.0
    min_delay: float = 1.0
    max_delay: float = 60.0
    randomize: bool = True

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            factor=config.factor,
            min_delay=config.min_delay_seconds,
            max_delay=config.max_delay_seconds,
            randomize=config.randomize,
        )

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay for a given retry attempt.

        Args:
            attempt: Attempt number (1 = first retry)

        Returns:
            Delay in seconds
        """
        jitter = random.uniform(1.0, 2.0) if self.randomize else 1.0
        delay = self.min_delay * (self.factor ** (attempt - 1)) * jitter
        return min(delay, self.max_delay)

    async def write(
        self, store: DocumentStore, index: str, documents: List[BulkDocument]
    ) -> int:
        """
        Bulk-write `documents` into `index`, retrying rejected ones.

        Returns:
            Number of documents written.

        Raises:
            BulkWriteError: An item failed with a non-retryable error.
            InconsistentBulkResponseError: A rejected item matches no sent document.
            RetryExhaustedError: Items were still rejected after the last retry.
        """
        if not documents:
            return 0

        reply = await store.bulk(build_operations(index, documents))
        pending = self.rejected_documents(index, reply, documents)

        attempt = 0
        while pending:
            if attempt >= self.max_attempts:
                logger.error(
                    f"Giving up on {len(pending)} rejected document(s) for '{index}' "
                    f"after {attempt} retries"
                )
                raise RetryExhaustedError(index, attempt, len(pending))

            attempt += 1
            delay = self.get_delay(attempt)
            logger.warning(
                f"Store rejected {len(pending)} document(s) for '{index}'; "
                f"retry {attempt}/{self.max_attempts} in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

            reply = await store.bulk(build_operations(index, pending))
            pending = self.rejected_documents(index, reply, pending)

        return len(documents)

    @staticmethod
    def rejected_documents(
        index: str, reply: Optional[Dict[str, Any]], sent: List[BulkDocument]
    ) -> List[BulkDocument]:
        """
        Return the sent documents a bulk reply rejected for capacity reasons.

        Raises on any other per-item error, and on a rejected item that
        matches none of the sent documents.
        """
        if not reply or not reply.get("errors"):
            return []

        by_key = {doc.key: doc for doc in sent}
        rejected: List[BulkDocument] = []
        failures: List[Dict[str, Any]] = []

        for item in reply.get("items") or []:
            if not item:
                continue
            result = _item_result(item)
            if is_rejected(result):
                doc = by_key.get((result.get("_type"), result.get("_id")))
                if doc is None:
                    raise InconsistentBulkResponseError(
                        index, result.get("_type"), result.get("_id")
                    )
                rejected.append(doc)
            elif result.get("error"):
                failures.append(result)

        if failures:
            error = failures[0].get("error")
            reason = error.get("reason", error) if isinstance(error, dict) else error
            raise BulkWriteError(index, str(reason), failures)
        if not rejected:
            raise BulkWriteError(index, "reply reported errors without failed items")
        return rejected
