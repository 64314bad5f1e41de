"""
Mock Infrastructure for esupgrade Tests
=======================================
In-memory implementations of the document store and the metadata store
for offline testing without Elasticsearch or MongoDB.

Usage:
    from tests.mocks import MockElasticStore, MockMetadataStore
"""

from .mock_elastic import MockElasticStore
from .mock_metadata import MockMetadataStore

__all__ = ["MockElasticStore", "MockMetadataStore"]
