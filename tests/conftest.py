import sys
from pathlib import Path

import pytest
from unittest.mock import AsyncMock, patch


# Ensure local src/ package and tests.mocks imports work without editable install.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for path in (SRC, ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """
    Configure custom pytest markers.

    This function is called by pytest at startup to register custom markers.
    """
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires Elasticsearch and MongoDB)"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow-running (use pytest -m 'not slow' to skip)"
    )


def pytest_collection_modifyitems(config, items):
    """
    Skip integration tests unless --run-integration is passed, and slow
    tests unless --run-slow is passed.
    """
    run_integration = config.getoption("--run-integration", default=False)
    run_slow = config.getoption("--run-slow", default=False)

    skip_integration = pytest.mark.skip(
        reason="Integration test skipped. Use --run-integration to run."
    )
    skip_slow = pytest.mark.skip(
        reason="Slow test skipped. Use --run-slow to run."
    )

    for item in items:
        if "integration" in item.keywords and not run_integration:
            item.add_marker(skip_integration)
        if "slow" in item.keywords and not run_slow:
            item.add_marker(skip_slow)


def pytest_addoption(parser):
    """Add custom command-line options for pytest."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires Elasticsearch and MongoDB)"
    )
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests"
    )


# =============================================================================
# Mock Infrastructure Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def _reset_config():
    from esupgrade.core.config import reset_config

    reset_config()
    yield
    reset_config()


@pytest.fixture
def es_store():
    """In-memory document store. Usage: es_store.add_index("idx", [(type, id, source)])."""
    from tests.mocks import MockElasticStore

    return MockElasticStore()


@pytest.fixture
def metadata_store():
    """In-memory metadata store with empty `sessions` and `versions` collections."""
    from tests.mocks import MockMetadataStore

    return MockMetadataStore({"sessions": [], "versions": []})


@pytest.fixture
def config():
    """
    Test configuration: two hits per scroll page so paging is exercised,
    and deterministic retry delays.
    """
    from esupgrade.core.config import ElasticsearchConfig, RetryConfig, UpgradeConfig

    return UpgradeConfig(
        model_version="2",
        elasticsearch=ElasticsearchConfig(url="http://mock:9200", scroll_size=2),
        retry=RetryConfig(randomize=False),
    )


@pytest.fixture
def no_sleep():
    """Patch asyncio.sleep so retry backoff does not wait."""
    with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


@pytest.fixture
def container(config, es_store, metadata_store):
    from esupgrade.core.container import Container

    return Container(config=config, store=es_store, metadata_store=metadata_store)


@pytest.fixture
def ctx(config, es_store, metadata_store):
    """A fresh MigrationContext over the mock stores."""
    from esupgrade.migration import MigrationContext

    return MigrationContext(config=config, store=es_store, metadata_store=metadata_store)
