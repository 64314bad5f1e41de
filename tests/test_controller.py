"""
Tests for the Migration Controller state machine
"""

from dataclasses import replace

import pytest

from esupgrade.core.exceptions import (
    MigrationFailedError,
    ModelVersionError,
    RestoreFailedError,
    StoreConnectionError,
    StoreRequestError,
    TransformerNotFoundError,
    UpgradeError,
)
from esupgrade.migration import MigrationController, MigrationStatus
from esupgrade.migration.transformer import Transformer, TransformerVersion


class FakeTransformer(Transformer):
    requires = {"mongo": "1"}

    def __init__(self, origin="1", destination="2", fail=None, fail_restore=False):
        self.version = TransformerVersion(origin, destination)
        self.fail = fail
        self.fail_restore = fail_restore
        self.calls = []

    async def _run(self, phase):
        self.calls.append(phase)
        if phase == self.fail:
            raise RuntimeError(f"{phase} exploded")

    async def backup(self, ctx):
        await self._run("backup")

    async def upgrade(self, ctx):
        await self._run("upgrade")

    async def check(self, ctx):
        await self._run("check")

    async def clean(self, ctx):
        await self._run("clean")

    async def restore(self, ctx):
        self.calls.append("restore")
        if self.fail_restore:
            raise RuntimeError("restore exploded")


async def _pending(config, container, *transformers):
    controller = MigrationController(list(transformers))
    await controller.connect(config, container)
    result = await controller.refresh()
    return controller, result


class TestConnect:

    async def test_connect_pings_both_stores(self, config, container, es_store, metadata_store):
        controller = MigrationController([])
        assert await controller.connect(config, container) is container
        assert es_store.calls["ping"] == 1
        assert metadata_store.calls["ping"] == 1

    async def test_unreachable_store(self, config, container, es_store):
        es_store.fail_on("ping", StoreConnectionError("elasticsearch", "refused"))
        controller = MigrationController([FakeTransformer()])

        with pytest.raises(StoreConnectionError):
            await controller.connect(config, container)

        assert controller.status is MigrationStatus.PENDING
        assert controller.transformer is None
        # A container handed in by the caller stays open
        assert es_store.closed is False

    async def test_unreachable_metadata_store(self, config, container, metadata_store):
        metadata_store.unreachable = True
        with pytest.raises(StoreConnectionError):
            await MigrationController([]).connect(config, container)

    async def test_refresh_before_connect(self):
        with pytest.raises(UpgradeError) as exc_info:
            await MigrationController([]).refresh()
        assert exc_info.value.error_code == "NOT_CONNECTED"


class TestRefresh:

    async def test_pending(self, config, container):
        transformer = FakeTransformer()
        controller, result = await _pending(config, container, transformer)

        assert result.status is MigrationStatus.PENDING
        assert (result.current_version, result.target_version) == ("1", "2")
        assert result.transformer is transformer
        assert result.requirements == {"mongo": "1"}
        assert result.to_dict()["transformer"] == "1 -> 2"

    async def test_up_to_date(self, config, container, es_store):
        es_store.add_index(".model", [("version", "1", {"version": "2"})])
        controller, result = await _pending(config, container, FakeTransformer())

        assert result.status is MigrationStatus.OK
        assert result.transformer is None
        assert result.to_dict()["status"] == "OK"

    async def test_no_transformer(self, config, container, es_store):
        es_store.add_index(".model", [("version", "1", {"version": "7"})])
        controller, result = await _pending(config, container, FakeTransformer())

        assert result.status is MigrationStatus.ERROR
        assert controller.transformer is None


class TestTransform:

    async def test_runs_phases_in_order(self, config, container, es_store):
        transformer = FakeTransformer()
        controller, _ = await _pending(config, container, transformer)
        seen = []

        result = await controller.transform(callback=seen.append)

        assert transformer.calls == ["backup", "upgrade", "check", "clean"]
        assert seen == result.phases == ["backup", "upgrade", "check", "clean"]
        assert controller.status is MigrationStatus.OK
        assert controller.current_version == "2"
        assert es_store.source(".model", "version", "1") == {"version": "2"}

    @pytest.mark.parametrize("phase", ["backup", "upgrade", "check"])
    async def test_failed_phase_restores(self, config, container, es_store, phase):
        transformer = FakeTransformer(fail=phase)
        controller, _ = await _pending(config, container, transformer)

        with pytest.raises(MigrationFailedError) as exc_info:
            await controller.transform()

        error = exc_info.value
        assert error.phase == phase
        assert isinstance(error.__cause__, RuntimeError)
        assert transformer.calls[-1] == "restore"
        assert "clean" not in transformer.calls
        assert es_store.source(".model", "version", "1") is None
        assert controller.status is MigrationStatus.PENDING

    async def test_failed_restore_takes_priority(self, config, container, es_store):
        transformer = FakeTransformer(fail="check", fail_restore=True)
        controller, _ = await _pending(config, container, transformer)

        with pytest.raises(RestoreFailedError) as exc_info:
            await controller.transform()

        error = exc_info.value
        assert error.phase == "check"
        assert str(error.original) == "check exploded"
        assert str(error.restore_error) == "restore exploded"
        assert error.restored is False
        assert es_store.source(".model", "version", "1") is None

    async def test_failed_clean_is_not_fatal(self, config, container, es_store):
        transformer = FakeTransformer(fail="clean")
        controller, _ = await _pending(config, container, transformer)

        result = await controller.transform()

        assert result.clean_error == "clean exploded"
        assert "restore" not in transformer.calls
        assert es_store.source(".model", "version", "1") == {"version": "2"}
        assert controller.status is MigrationStatus.OK

    async def test_chained_upgrades(self, config, container, es_store):
        config = replace(config, model_version="3")
        first, second = FakeTransformer("1", "2"), FakeTransformer("2", "3")
        controller, _ = await _pending(config, container, first, second)

        await controller.transform()
        assert controller.status is MigrationStatus.PENDING
        assert controller.transformer is second

        await controller.transform()
        assert controller.status is MigrationStatus.OK
        assert es_store.source(".model", "version", "1") == {"version": "3"}

    async def test_dead_end_after_upgrade(self, config, container):
        config = replace(config, model_version="3")
        controller, _ = await _pending(config, container, FakeTransformer("1", "2"))

        await controller.transform()

        assert controller.status is MigrationStatus.ERROR
        assert controller.current_version == "2"

    async def test_without_transformer(self, config, container, es_store):
        es_store.add_index(".model", [("version", "1", {"version": "7"})])
        controller, _ = await _pending(config, container, FakeTransformer())

        with pytest.raises(TransformerNotFoundError):
            await controller.transform()

    async def test_version_write_failure(self, config, container, es_store):
        transformer = FakeTransformer()
        controller, _ = await _pending(config, container, transformer)
        es_store.fail_on("put", StoreRequestError("put", 503, "unavailable"))

        with pytest.raises(ModelVersionError):
            await controller.transform()

        assert transformer.calls == ["backup", "upgrade", "check", "clean"]

    async def test_close_closes_container(self, config, container, es_store, metadata_store):
        controller, _ = await _pending(config, container, FakeTransformer())
        await controller.close()

        assert es_store.closed and metadata_store.closed
        assert controller.container is None
