"""
Known transformers, one per model version step.
"""

from typing import List, Optional

from ..transformer import Transformer
from .to_version2 import TransformToVersion2

TRANSFORMERS: List[Transformer] = [
    TransformToVersion2(),
]


def find_transformer(origin: str, transformers: Optional[List[Transformer]] = None) -> Optional[Transformer]:
    """Return the transformer upgrading from `origin`, if any."""
    for transformer in TRANSFORMERS if transformers is None else transformers:
        if transformer.origin == str(origin):
            return transformer
    return None


__all__ = ["TRANSFORMERS", "TransformToVersion2", "find_transformer"]
