"""
esupgrade Core Module
=====================
Infrastructure shared by every migration component.

    - config: YAML + environment configuration (UpgradeConfig)
    - logging_config: loguru setup
    - exceptions: error hierarchy, one type per failure category
    - store: DocumentStore interface and the REST-backed ElasticStore
    - metadata_store: MongoDB lookups used for index classification
    - container: wiring of the store handles for one run
    - concurrency: join_all fan-out / fan-in
"""

from .config import UpgradeConfig, get_config, load_config, reset_config
from .container import Container, build_container
from .store import DocumentStore, ElasticStore
from .metadata_store import MetadataStore, MongoMetadataStore
from .concurrency import join_all

__all__ = [
    "UpgradeConfig",
    "get_config",
    "load_config",
    "reset_config",
    "Container",
    "build_container",
    "DocumentStore",
    "ElasticStore",
    "MetadataStore",
    "MongoMetadataStore",
    "join_all",
]
