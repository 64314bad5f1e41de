"""
Consistency Checker
===================
Proves a migrated index against its backup.

Every backed-up document is fetched from the live index by `(type, id)` and
compared structurally. Differences the migration makes on purpose are
exempted through a predicate over field paths, so a transformer can
declare its own exemptions without touching the comparison.
"""

from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

from loguru import logger

from esupgrade.core.concurrency import join_all
from esupgrade.core.exceptions import VerificationError
from .registry import ExtensionFieldRegistry
from .reindex import ReindexEngine

PathElement = Union[str, int]
Path = Tuple[PathElement, ...]
ExemptionPredicate = Callable[[Path], bool]

# Serialized sub-documents the rewriter changes; checked by the rewriter itself
REWRITTEN_FIELDS = frozenset({"fields", "visState"})


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


@dataclass(frozen=True)
class Mismatch:
    path: Path
    expected: Any
    actual: Any

    @property
    def dotted_path(self) -> str:
        return format_path(self.path)


def format_path(path: Sequence[PathElement]) -> str:
    out = ""
    for element in path:
        if isinstance(element, int):
            out += f"[{element}]"
        else:
            out += f".{element}" if out else element
    return out or "<root>"


def _never_exempt(path: Path) -> bool:
    return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def structural_diff(
    expected: Any,
    actual: Any,
    exempt: ExemptionPredicate = _never_exempt,
    path: Path = (),
) -> Optional[Mismatch]:
    """
    Return the first difference between two decoded JSON values, or None.

    Objects are compared over the union of their keys, skipping keys whose
    path `exempt` accepts; an absent key compares as MISSING. Arrays must
    have equal length and equal elements in order. Numbers compare by
    value regardless of int/float, but booleans never equal numbers.
    """
    if isinstance(expected, dict) and isinstance(actual, dict):
        keys = list(expected)
        keys.extend(k for k in actual if k not in expected)
        for key in keys:
            child = path + (key,)
            if exempt(child):
                continue
            found = structural_diff(
                expected.get(key, MISSING), actual.get(key, MISSING), exempt, child
            )
            if found is not None:
                return found
        return None

    if isinstance(expected, list) and isinstance(actual, list):
        if len(expected) != len(actual):
            return Mismatch(path, expected, actual)
        for i, (left, right) in enumerate(zip(expected, actual)):
            found = structural_diff(left, right, exempt, path + (i,))
            if found is not None:
                return found
        return None

    if _is_number(expected) and _is_number(actual):
        return None if expected == actual else Mismatch(path, expected, actual)

    if type(expected) is not type(actual) or expected != actual:
        return Mismatch(path, expected, actual)
    return None


def default_exemptions(extensions: ExtensionFieldRegistry) -> ExemptionPredicate:
    """
    Top-level exemptions of the extension-field migration: the rewritten
    serialized fields, the `ext` container, and every relocated field.
    """
    def exempt(path: Path) -> bool:
        if len(path) != 1:
            return False
        key = path[0]
        return key in REWRITTEN_FIELDS or key == "ext" or key in extensions

    return exempt


class ConsistencyChecker:
    """Compares every document of a backup index with its live counterpart."""

    def __init__(self, engine: ReindexEngine, exempt: ExemptionPredicate = _never_exempt):
        self.engine = engine
        self.exempt = exempt

    async def _check_hit(self, live: str, hit: Dict[str, Any], exempt: ExemptionPredicate) -> None:
        doc_type, doc_id = hit.get("_type"), hit.get("_id")
        current = await self.engine.store.get(live, doc_type, doc_id)
        if current is None:
            raise VerificationError(
                live, f"document {doc_type}/{doc_id} is missing", doc_type, doc_id
            )

        mismatch = structural_diff(hit.get("_source") or {}, current.get("_source") or {}, exempt)
        if mismatch is not None:
            logger.error(
                f"'{live}' {doc_type}/{doc_id} differs at {mismatch.dotted_path}: "
                f"expected {mismatch.expected!r}, found {mismatch.actual!r}"
            )
            raise VerificationError(
                live,
                f"document {doc_type}/{doc_id} differs at '{mismatch.dotted_path}'",
                doc_type,
                doc_id,
                path=mismatch.dotted_path,
                expected=mismatch.expected,
                actual=mismatch.actual,
            )

    async def check(
        self, backup: str, live: str, exempt: Optional[ExemptionPredicate] = None
    ) -> int:
        """
        Verify `live` against `backup`.

        Returns:
            Number of documents checked.

        Raises:
            VerificationError: on the first missing or differing document.
        """
        exempt = exempt or self.exempt
        await self.engine.store.refresh(live)

        checked = 0
        async with aclosing(self.engine.scan(backup)) as pages:
            async for page in pages:
                await join_all(self._check_hit(live, hit, exempt) for hit in page)
                checked += len(page)

        logger.info(f"Verified {checked} document(s) of '{live}' against '{backup}'")
        return checked
