"""
Deployment model version, persisted as a single document in the store.
"""

from loguru import logger

from esupgrade.core.exceptions import ModelVersionError, StoreError
from esupgrade.core.store import DocumentStore

VERSION_TYPE = "version"
VERSION_ID = "1"
# A deployment that never recorded a version is on the first model
INITIAL_VERSION = "1"


class ModelVersionStore:
    """Reads and writes `{index: <model_index>, type: version, id: 1}`."""

    def __init__(self, store: DocumentStore, model_index: str = ".model"):
        self.store = store
        self.model_index = model_index

    async def read(self) -> str:
        try:
            doc = await self.store.get(self.model_index, VERSION_TYPE, VERSION_ID)
        except StoreError as e:
            raise ModelVersionError("read", str(e)) from e
        if doc is None:
            logger.debug(f"No model version in '{self.model_index}'; assuming {INITIAL_VERSION}")
            return INITIAL_VERSION
        version = (doc.get("_source") or {}).get("version")
        if version is None or str(version) == "":
            return INITIAL_VERSION
        return str(version)

    async def write(self, version: str) -> None:
        try:
            await self.store.put(
                self.model_index, VERSION_TYPE, VERSION_ID, {"version": str(version)}
            )
            await self.store.refresh(self.model_index)
        except StoreError as e:
            raise ModelVersionError("write", str(e)) from e
        logger.info(f"Model version is now {version}")
