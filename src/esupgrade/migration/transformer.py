"""
Transformer interface and the per-run context handed to it.

A transformer upgrades the deployment from its `origin` model version to
its `destination`. The controller drives its five phases:

    backup -> upgrade -> check -> clean      (restore on failure)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional

from esupgrade.core.config import UpgradeConfig
from esupgrade.core.container import Container
from esupgrade.core.metadata_store import MetadataStore
from esupgrade.core.store import DocumentStore
from .checker import ConsistencyChecker, default_exemptions
from .classifier import IndexClassifier
from .registry import ExtensionFieldRegistry, MigrationRegistry
from .reindex import ReindexEngine
from .retry import RetryPolicy
from .rewriter import SchemaRewriter


@dataclass(frozen=True)
class TransformerVersion:
    origin: str
    destination: str

    def __str__(self) -> str:
        return f"{self.origin} -> {self.destination}"


@dataclass
class MigrationContext:
    """Everything one migration run works with. Built fresh per run."""
    config: UpgradeConfig
    store: DocumentStore
    metadata_store: Optional[MetadataStore]
    registry: MigrationRegistry = field(default_factory=MigrationRegistry)
    extensions: ExtensionFieldRegistry = field(default_factory=ExtensionFieldRegistry)
    engine: ReindexEngine = field(init=False)
    classifier: IndexClassifier = field(init=False)
    rewriter: SchemaRewriter = field(init=False)
    checker: ConsistencyChecker = field(init=False)

    def __post_init__(self):
        es = self.config.elasticsearch
        self.engine = ReindexEngine(
            self.store,
            RetryPolicy.from_config(self.config.retry),
            keep_alive=es.keep_alive,
            page_size=es.scroll_size,
        )
        self.classifier = IndexClassifier(self.metadata_store, model_index=es.model_index)
        self.rewriter = SchemaRewriter(self.engine, self.extensions)
        self.checker = ConsistencyChecker(self.engine, default_exemptions(self.extensions))

    @classmethod
    def from_container(cls, container: Container) -> "MigrationContext":
        return cls(
            config=container.config,
            store=container.store,
            metadata_store=container.metadata_store,
        )

    def reset(self) -> None:
        self.registry.clear()
        self.extensions.clear()


class Transformer(ABC):
    """One model version upgrade."""

    version: TransformerVersion
    # Upstream dependencies, e.g. {"mongo": "1"}
    requires: Dict[str, str] = {}

    @property
    def origin(self) -> str:
        return self.version.origin

    @property
    def destination(self) -> str:
        return self.version.destination

    @abstractmethod
    async def backup(self, ctx: MigrationContext) -> None:
        """Copy every index the upgrade may touch."""

    @abstractmethod
    async def upgrade(self, ctx: MigrationContext) -> None:
        """Rewrite the live indices to the destination model."""

    @abstractmethod
    async def check(self, ctx: MigrationContext) -> None:
        """Verify the live indices against their backups."""

    @abstractmethod
    async def clean(self, ctx: MigrationContext) -> None:
        """Drop backups and leftover staging indices."""

    @abstractmethod
    async def restore(self, ctx: MigrationContext) -> None:
        """Put the backups back in place of the live indices."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.version})"
