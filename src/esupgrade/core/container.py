"""
Dependency Injection Container
==============================
Builds and wires the store handles an upgrade run needs.
"""

from dataclasses import dataclass
from typing import Optional

from .config import UpgradeConfig
from .metadata_store import MetadataStore, MongoMetadataStore
from .store import DocumentStore, ElasticStore


@dataclass
class Container:
    """
    Container holding all wired run dependencies.
    """
    config: UpgradeConfig
    store: Optional[DocumentStore] = None
    metadata_store: Optional[MetadataStore] = None

    async def close(self) -> None:
        if self.store is not None:
            await self.store.close()
        if self.metadata_store is not None:
            await self.metadata_store.close()


def build_container(config: UpgradeConfig) -> Container:
    """
    Build and wire all run dependencies.

    Args:
        config: Validated UpgradeConfig instance.

    Returns:
        Container with the document store and metadata store clients.
    """
    container = Container(config=config)

    container.store = ElasticStore(
        url=config.elasticsearch.url,
        request_timeout=config.elasticsearch.request_timeout,
    )

    container.metadata_store = MongoMetadataStore(
        uri=config.mongodb.uri,
        database=config.mongodb.database,
        server_selection_timeout_ms=config.mongodb.server_selection_timeout_ms,
    )

    return container
