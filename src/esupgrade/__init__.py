"""
esupgrade - Versioned Schema Migrations for Analytics Indices
=============================================================

Upgrades a running deployment's Elasticsearch indices from one internal
model version to the next without downtime or data loss.

Each upgrade is a transformer pipeline driven by the migration controller:

    backup -> upgrade -> check -> clean      (restore on failure)

Main Packages:
    - core: configuration, logging, errors, store and metadata clients
    - migration: controller, index classifier, reindex engine,
      schema rewriter, consistency checker, transformers
    - cli: Command-line interface

Quick Start:
    from esupgrade.core.config import load_config
    from esupgrade.migration import MigrationController, MigrationStatus, TRANSFORMERS

    controller = MigrationController(TRANSFORMERS)
    await controller.connect(load_config())
    result = await controller.refresh()
    if result.status is MigrationStatus.PENDING:
        await controller.transform()

Version: 0.3.0
"""

__version__ = "0.3.0"
