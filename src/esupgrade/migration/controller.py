"""
Migration Controller
====================
Decides whether the deployment needs an upgrade and drives the matching
transformer through its phases:

    connect -> refresh -> transform

`transform` runs backup, upgrade and check in order. If any of them fails
the transformer's restore runs at once; the model version only advances
after check passed and the clean phase ran.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Dict, List, Optional

from loguru import logger

from esupgrade.core.config import UpgradeConfig
from esupgrade.core.container import Container, build_container
from esupgrade.core.exceptions import (
    MigrationFailedError,
    RestoreFailedError,
    TransformerNotFoundError,
    UpgradeError,
)
from .transformer import MigrationContext, Transformer
from .transformers import TRANSFORMERS, find_transformer
from .version_store import ModelVersionStore

PIPELINE = ("backup", "upgrade", "check")


class MigrationStatus(IntEnum):
    OK = 0  # at the target version
    PENDING = 1  # a transformer must run
    ERROR = 2  # no transformer leads away from the current version


@dataclass
class RefreshResult:
    status: MigrationStatus
    current_version: str
    target_version: str
    transformer: Optional[Transformer] = None
    requirements: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "status": self.status.name,
            "current_version": self.current_version,
            "target_version": self.target_version,
            "transformer": str(self.transformer.version) if self.transformer else None,
            "requirements": dict(self.requirements),
        }


@dataclass
class TransformResult:
    origin: str
    destination: str
    phases: List[str] = field(default_factory=list)
    clean_error: Optional[str] = None


class MigrationController:
    """State machine over the registered transformers."""

    def __init__(self, transformers: Optional[List[Transformer]] = None):
        self.transformers: List[Transformer] = list(
            TRANSFORMERS if transformers is None else transformers
        )
        self.status = MigrationStatus.PENDING
        self.transformer: Optional[Transformer] = None
        self.config: Optional[UpgradeConfig] = None
        self.container: Optional[Container] = None
        self.version_store: Optional[ModelVersionStore] = None
        self.current_version: Optional[str] = None

    async def connect(self, config: UpgradeConfig, container: Optional[Container] = None) -> Container:
        """
        Open and verify the store connections. Does not retry.

        On failure the controller stays PENDING without a transformer and
        the connection error propagates.
        """
        self.config = config
        self.status = MigrationStatus.PENDING
        self.transformer = None

        owned = container is None
        container = container or build_container(config)
        try:
            await container.store.ping()
            if container.metadata_store is not None:
                await container.metadata_store.ping()
        except Exception as e:
            logger.error(f"Could not connect to the stores: {e}")
            if owned:
                await container.close()
            raise

        self.container = container
        self.version_store = ModelVersionStore(container.store, config.elasticsearch.model_index)
        logger.info(f"Connected to {config.elasticsearch.url}")
        return container

    def _require_connection(self) -> None:
        if self.container is None or self.config is None:
            raise UpgradeError("Controller is not connected", error_code="NOT_CONNECTED")

    async def refresh(self) -> RefreshResult:
        """Read the deployment's model version and pick the transformer to run."""
        self._require_connection()
        current = await self.version_store.read()
        target = str(self.config.model_version)
        self.current_version = current

        if current == target:
            self.status, self.transformer = MigrationStatus.OK, None
            logger.info(f"Model version {current} is up to date")
            return RefreshResult(self.status, current, target)

        transformer = find_transformer(current, self.transformers)
        if transformer is None:
            self.status, self.transformer = MigrationStatus.ERROR, None
            logger.error(f"No transformer upgrades model version {current} towards {target}")
            return RefreshResult(self.status, current, target)

        self.status, self.transformer = MigrationStatus.PENDING, transformer
        logger.info(f"Model version {current} needs {transformer!r} (target {target})")
        return RefreshResult(
            self.status, current, target, transformer, dict(transformer.requires)
        )

    async def transform(self, callback: Optional[Callable[[str], None]] = None) -> TransformResult:
        """
        Run the selected transformer.

        Args:
            callback: Called with each phase name once that phase succeeded.

        Raises:
            TransformerNotFoundError: refresh() found no transformer.
            MigrationFailedError: a phase failed and the deployment was restored.
            RestoreFailedError: restoring after a failed phase failed too.
            ModelVersionError: the new model version could not be persisted.
        """
        self._require_connection()
        transformer = self.transformer
        if transformer is None:
            raise TransformerNotFoundError(
                str(self.current_version), str(self.config.model_version)
            )

        ctx = MigrationContext.from_container(self.container)
        result = TransformResult(transformer.origin, transformer.destination)

        for phase in PIPELINE:
            logger.info(f"[{transformer.version}] {phase} started")
            try:
                await getattr(transformer, phase)(ctx)
            except Exception as e:
                logger.error(f"[{transformer.version}] {phase} failed: {e}; restoring")
                try:
                    await transformer.restore(ctx)
                except Exception as restore_error:
                    logger.critical(
                        f"[{transformer.version}] restore failed: {restore_error}; "
                        f"deployment state is unknown"
                    )
                    raise RestoreFailedError(phase, e, restore_error) from restore_error
                logger.info(f"[{transformer.version}] restore completed")
                raise MigrationFailedError(phase, e) from e
            logger.info(f"[{transformer.version}] {phase} finished")
            result.phases.append(phase)
            if callback:
                callback(phase)

        try:
            await transformer.clean(ctx)
            result.phases.append("clean")
            if callback:
                callback("clean")
        except Exception as e:
            logger.warning(f"[{transformer.version}] clean failed, temporary indices remain: {e}")
            result.clean_error = str(e)

        await self.version_store.write(transformer.destination)
        self.current_version = transformer.destination

        target = str(self.config.model_version)
        if self.current_version == target:
            self.status, self.transformer = MigrationStatus.OK, None
        else:
            self.transformer = find_transformer(self.current_version, self.transformers)
            self.status = MigrationStatus.PENDING if self.transformer else MigrationStatus.ERROR
        return result

    async def close(self) -> None:
        if self.container is not None:
            await self.container.close()
            self.container = None
