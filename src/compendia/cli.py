"""Command-line interface for Compendia.

Operator commands for inspecting and configuring compendium packs stored
in the SQL backend.
"""

import asyncio
from typing import Any, Awaitable, Callable, NoReturn, Optional

import click

from compendia.core.config import get_settings
from compendia.core.exceptions import CompendiaError
from compendia.core.logging import configure_logging, get_logger

# Acting user of CLI operations
CLI_USER_ID = "cli"


@click.group()
@click.version_option(version="0.1.0", prog_name="Compendia")
@click.option(
    "--database-url",
    type=str,
    default=None,
    help="Database URL (overrides COMPENDIA_DATABASE_URL)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    default=None,
    help="Set log level (overrides config)",
)
@click.pass_context
def cli(ctx: click.Context, database_url: Optional[str], log_level: Optional[str]) -> None:
    """Compendia - document lifecycle and compendium caching layer."""
    settings = get_settings()
    if log_level is not None:
        settings = settings.model_copy(update={"log_level": log_level})
    configure_logging(settings)
    ctx.ensure_object(dict)
    ctx.obj["database_url"] = database_url or settings.database_url


def _split_collection(collection: str) -> tuple[str, str]:
    package, _, name = collection.partition(".")
    if not package or not name:
        raise click.BadParameter("expected PACKAGE.NAME", param_hint="COLLECTION")
    return package, name


def _document_class(document_name: str) -> type:
    from compendia.domain.entities.document import Document

    return type(document_name, (Document,), {"document_name": document_name})


def _run_with_pack(
    database_url: str,
    collection: str,
    document_name: str,
    action: Callable[[Any, Any], Awaitable[None]],
) -> None:
    """Open the SQL backend, register one pack, and run ``action(pack, user)`` on it."""
    from compendia.application.services.collection_registry import CollectionRegistry
    from compendia.domain.entities.compendium import CompendiumMetadata
    from compendia.domain.entities.permission import UserRole
    from compendia.domain.entities.user import User
    from compendia.infrastructure.persistence.database import DatabaseManager, init_database
    from compendia.infrastructure.persistence.settings_store import SqlSettingsStore
    from compendia.infrastructure.persistence.sql_backend import SqlDocumentBackend

    package, name = _split_collection(collection)
    logger = get_logger(__name__)

    async def run() -> None:
        db = DatabaseManager(database_url)
        registry = None
        try:
            await init_database(db)
            registry = CollectionRegistry(SqlDocumentBackend(db), SqlSettingsStore(db))
            registry.register_document_class(_document_class(document_name))
            user = User(id=CLI_USER_ID, name="Command line", role=UserRole.GAMEMASTER)
            registry.register_user(user)
            pack = await registry.add_pack(
                CompendiumMetadata(name=name, package=package, document_name=document_name)
            )
            await action(pack, user)
        finally:
            if registry is not None:
                await registry.close()
            await db.disconnect()

    try:
        asyncio.run(run())
    except CompendiaError as e:
        logger.error("Command failed", collection=collection, error=str(e))
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


@cli.command()
@click.pass_context
def info(ctx: click.Context) -> None:
    """Display Compendia configuration."""
    settings = get_settings()
    click.echo(f"""
Compendia v{settings.app_version}
{'=' * 40}

Configuration:
  Environment:  {settings.environment}

Database:
  URL:          {ctx.obj["database_url"]}
  Echo:         {settings.db_echo}

Compendium:
  Cache TTL:    {settings.compendium_cache_lifetime_seconds} seconds
  Sweep Every:  {settings.compendium_sweep_interval_seconds} seconds
  Config Key:   {settings.compendium_config_setting}
  World Pkg:    {settings.world_package}
  Index Fields: {', '.join(settings.default_index_fields)}

Logging:
  Level:        {settings.log_level}
  Format:       {settings.log_format}
""")


@cli.command()
@click.option(
    "--force",
    is_flag=True,
    help="Skip confirmation prompt",
)
@click.pass_context
def init_db(ctx: click.Context, force: bool) -> None:
    """Create the documents and settings tables."""
    from compendia.infrastructure.persistence.database import DatabaseManager, init_database

    if not force:
        click.confirm(
            "This will create all database tables. Continue?",
            abort=True,
            default=False,
        )

    async def initialize() -> None:
        db = DatabaseManager(ctx.obj["database_url"])
        try:
            await init_database(db)
            click.echo("Database initialized successfully.")
        finally:
            await db.disconnect()

    asyncio.run(initialize())


@cli.command("pack-index")
@click.argument("collection")
@click.option(
    "--type",
    "document_name",
    type=str,
    required=True,
    help="Document type stored in the pack",
)
@click.pass_context
def pack_index(ctx: click.Context, collection: str, document_name: str) -> None:
    """List the index entries of pack COLLECTION (PACKAGE.NAME)."""

    async def show(pack: Any, user: Any) -> None:
        index = await pack.get_index()
        for document_id, entry in index.items():
            click.echo(f"{document_id}  {entry.get('name') or ''}")
        click.echo(f"{len(index)} entries in {pack.collection} (locked={pack.locked})")

    _run_with_pack(ctx.obj["database_url"], collection, document_name, show)


@cli.command("configure-pack")
@click.argument("collection")
@click.option("--locked/--unlocked", default=None, help="Lock or unlock the pack")
@click.option("--private/--public", default=None, help="Hide the pack from non-gamemasters")
@click.option(
    "--type",
    "document_name",
    type=str,
    default="Document",
    show_default=True,
    help="Document type stored in the pack",
)
@click.pass_context
def configure_pack(
    ctx: click.Context,
    collection: str,
    locked: Optional[bool],
    private: Optional[bool],
    document_name: str,
) -> None:
    """Set the locked and private flags of pack COLLECTION (PACKAGE.NAME)."""
    changes = {key: value for key, value in (("locked", locked), ("private", private)) if value is not None}
    if not changes:
        raise click.UsageError("Nothing to configure: pass --locked/--unlocked or --private/--public")

    async def apply(pack: Any, user: Any) -> None:
        config = await pack.configure(user, **changes)
        click.echo(f"{pack.collection}: locked={config.locked} private={config.private}")

    _run_with_pack(ctx.obj["database_url"], collection, document_name, apply)


def main() -> NoReturn:
    """Main entry point for the CLI.

    This function is called when the `compendia` command is run
    or when using `python -m compendia`.
    """
    cli()
