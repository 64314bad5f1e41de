"""
esupgrade CLI - Main Entry Point

Command-line interface for model upgrades of a deployment.

Usage:
    esupgrade status                    # Current and target model version
    esupgrade upgrade                   # Run every pending transformer
    esupgrade indices                   # Show how indices are classified
    esupgrade setup-kibana              # Configure the default Kibana index

Exit codes of `upgrade`:
    0  up to date, or upgraded
    1  upgrade failed (the message tells whether the deployment was restored)
    2  no transformer upgrades the current model version
"""

import asyncio
import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import click

from loguru import logger

from esupgrade.core.config import UpgradeConfig, load_config
from esupgrade.core.container import build_container
from esupgrade.core.exceptions import (
    ConfigurationError,
    MigrationFailedError,
    RestoreFailedError,
    UpgradeError,
)
from esupgrade.core.logging_config import configure_logging


# ============================================================================
# Controller Lifecycle
# ============================================================================

@asynccontextmanager
async def controller_context(config: UpgradeConfig):
    """
    Async context manager for a connected MigrationController.

    Usage:
        async with controller_context(config) as controller:
            result = await controller.refresh()
    """
    from esupgrade.migration import MigrationController

    controller = MigrationController()
    await controller.connect(config)
    try:
        yield controller
    finally:
        await controller.close()


def _load(ctx) -> UpgradeConfig:
    config_path = Path(ctx.obj["config_path"]) if ctx.obj.get("config_path") else None
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        ctx.exit(1)
    logger.debug(f"Target model version {config.model_version} at {config.elasticsearch.url}")
    return config


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


# ============================================================================
# CLI Group and Main Entry
# ============================================================================

@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Path to config.yaml file",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool):
    """
    esupgrade - Versioned model upgrades for analytics indices

    Backs up, rewrites and verifies the Elasticsearch indices of a
    deployment, restoring them if anything goes wrong.
    """
    ctx.ensure_object(dict)

    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config

    configure_logging(level="DEBUG" if verbose else "INFO")


# ============================================================================
# CLI Commands
# ============================================================================

@cli.command()
@click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output as JSON",
)
@click.pass_context
def status(ctx, output_json: bool):
    """
    Show the model version state of the deployment.

    Example:
        esupgrade status
    """
    config = _load(ctx)

    async def _status():
        async with controller_context(config) as controller:
            return await controller.refresh()

    try:
        result = asyncio.run(_status())
    except UpgradeError as e:
        click.echo(f"Error: {e.message}", err=True)
        ctx.exit(1)

    if output_json:
        _echo_json(result.to_dict())
        return

    click.echo(f"State:           {result.status.name}")
    click.echo(f"Current version: {result.current_version}")
    click.echo(f"Target version:  {result.target_version}")
    if result.transformer is not None:
        click.echo(f"Transformer:     {result.transformer.version}")
        if result.requirements:
            requirements = ", ".join(f"{k} {v}" for k, v in result.requirements.items())
            click.echo(f"Requires:        {requirements}")


def _missing_requirements(config: UpgradeConfig, requirements: dict) -> list:
    missing = []
    if "mongo" in requirements and not (config.mongodb.uri and config.mongodb.database):
        missing.append("mongo")
    return missing


@cli.command()
@click.pass_context
def upgrade(ctx):
    """
    Run every pending transformer up to the target model version.

    Example:
        esupgrade upgrade
    """
    from esupgrade.migration import MigrationStatus

    config = _load(ctx)

    async def _upgrade() -> int:
        async with controller_context(config) as controller:
            result = await controller.refresh()
            if result.status is MigrationStatus.OK:
                click.echo(f"Model version {result.current_version} is up to date")
                return 0

            while controller.status is MigrationStatus.PENDING:
                transformer = controller.transformer
                missing = _missing_requirements(config, transformer.requires)
                if missing:
                    click.echo(
                        f"Transformer {transformer.version} needs {', '.join(missing)}, "
                        f"which is not configured",
                        err=True,
                    )
                    return 1

                click.echo(f"Upgrading model version {transformer.version}...")
                done = await controller.transform(
                    callback=lambda phase: click.echo(f"  {phase}: done")
                )
                if done.clean_error:
                    click.echo(f"  clean failed, temporary indices remain: {done.clean_error}")

            if controller.status is MigrationStatus.ERROR:
                click.echo(
                    f"No transformer upgrades model version {controller.current_version} "
                    f"towards {config.model_version}",
                    err=True,
                )
                return 2

            click.echo(f"Model version is now {controller.current_version}")
            return 0

    try:
        code = asyncio.run(_upgrade())
    except RestoreFailedError as e:
        click.echo(f"Upgrade failed during {e.phase}: {e.original}", err=True)
        click.echo(f"Restore FAILED as well: {e.restore_error}", err=True)
        click.echo("The deployment needs manual intervention.", err=True)
        ctx.exit(1)
    except MigrationFailedError as e:
        click.echo(f"Upgrade failed during {e.phase}: {e.original}", err=True)
        click.echo("The deployment was restored; the model version is unchanged.", err=True)
        ctx.exit(1)
    except UpgradeError as e:
        click.echo(f"Error: {e.message}", err=True)
        ctx.exit(1)

    ctx.exit(code)


@cli.command()
@click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output as JSON",
)
@click.pass_context
def indices(ctx, output_json: bool):
    """
    Classify the current indices and list them per category.

    Example:
        esupgrade indices
    """
    from esupgrade.migration import IndexDescriptor, MigrationRegistry
    from esupgrade.migration.classifier import IndexClassifier

    config = _load(ctx)

    async def _indices() -> MigrationRegistry:
        container = build_container(config)
        try:
            rows = await container.store.list_indices()
            classifier = IndexClassifier(
                container.metadata_store, model_index=config.elasticsearch.model_index
            )
            return await classifier.classify(
                [IndexDescriptor.from_cat(row) for row in rows], MigrationRegistry()
            )
        finally:
            await container.close()

    try:
        registry = asyncio.run(_indices())
    except UpgradeError as e:
        click.echo(f"Error: {e.message}", err=True)
        ctx.exit(1)

    categories = registry.summary()["categories"]
    if output_json:
        _echo_json(categories)
        return

    if not categories:
        click.echo("No indices found.")
        return
    for category, names in sorted(categories.items()):
        click.echo(f"{category} ({len(names)}):")
        for name in sorted(names):
            descriptor = registry.descriptor(name)
            click.echo(f"  {name}  docs={descriptor.docs_count}")


@cli.command("setup-kibana")
@click.pass_context
def setup_kibana(ctx):
    """
    Create the default Kibana index pattern and make it the default.

    Example:
        esupgrade setup-kibana
    """
    from esupgrade.kibana import setup_default_kibana_index

    config = _load(ctx)

    async def _setup() -> bool:
        container = build_container(config)
        try:
            return await setup_default_kibana_index(container.store)
        finally:
            await container.close()

    if asyncio.run(_setup()):
        click.echo("Default Kibana index setup complete.")
    else:
        click.echo("Did not configure the Kibana default index, continuing anyway.")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
