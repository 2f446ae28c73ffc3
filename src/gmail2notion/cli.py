"""CLI commands using click."""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from gmail2notion import __version__
from gmail2notion.config import Settings, get_settings
from gmail2notion.mapping.builder import PropertyValueBuilder
from gmail2notion.mapping.engine import MappingEngine
from gmail2notion.models import EmailMessage, MappingSet
from gmail2notion.notion.client import NotionClient
from gmail2notion.notion.schema import SchemaService
from gmail2notion.storage.config_store import ConfigStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything one invocation needs, wired from settings."""

    client: NotionClient
    store: ConfigStore
    schema: SchemaService
    engine: MappingEngine
    builder: PropertyValueBuilder


def build_services(settings: Settings) -> Services:
    client = NotionClient(settings.notion_token, settings.rate_limit_delay)
    store = ConfigStore.from_settings(settings)
    schema = SchemaService(client, ttl=settings.schema_cache_ttl_seconds)
    engine = MappingEngine(store, schema)
    return Services(client, store, schema, engine, PropertyValueBuilder())


def _require_settings(ctx: click.Context) -> Settings:
    settings: Settings | None = ctx.obj.get("settings")
    if settings is None:
        click.echo(f"Error loading settings: {ctx.obj.get('settings_error')}", err=True)
        ctx.exit(1)
    return settings


def _database_id(ctx: click.Context, settings: Settings) -> str:
    database_id = ctx.obj.get("database_id") or settings.notion_database_id
    if not database_id:
        click.echo("No database configured: set NOTION_DATABASE_ID or pass --database-id", err=True)
        ctx.exit(1)
    return database_id


def _echo_mappings(mapping_set: MappingSet) -> None:
    if mapping_set.is_empty:
        click.echo("  (no mappings)")
        return
    for mapping_id, mapping in mapping_set.mappings.items():
        source = "static: " + json.dumps(mapping.static_value) if mapping.is_static else mapping.source_field
        flags = []
        if not mapping.enabled:
            flags.append("disabled")
        if mapping.is_required:
            flags.append("required")
        if mapping.transform not in ("none", ""):
            flags.append(f"transform={mapping.transform}")
        suffix = f"  [{', '.join(flags)}]" if flags else ""
        click.echo(
            f"  {mapping_id}: {source} -> {mapping.destination_property_name} "
            f"({mapping.destination_type.value}){suffix}"
        )


@click.group()
@click.version_option(version=__version__)
@click.option("--database-id", help="Notion database ID (defaults to NOTION_DATABASE_ID)")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, database_id: str | None, verbose: bool) -> None:
    """Save Gmail messages to a Notion database."""
    ctx.ensure_object(dict)
    ctx.obj["database_id"] = database_id
    try:
        ctx.obj["settings"] = get_settings()
    except Exception as e:
        ctx.obj["settings"] = None
        ctx.obj["settings_error"] = str(e)

    settings = ctx.obj["settings"]
    level = "DEBUG" if verbose else (settings.log_level if settings else "INFO")
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# =============================================================================
# Mappings
# =============================================================================


@main.group()
def mappings() -> None:
    """Inspect and manage field mappings."""


@mappings.command("show")
@click.pass_context
def mappings_show(ctx: click.Context) -> None:
    """Show the mappings that would be used for the next save."""
    settings = _require_settings(ctx)
    asyncio.run(_mappings_show(settings, _database_id(ctx, settings)))


async def _mappings_show(settings: Settings, database_id: str) -> None:
    services = build_services(settings)
    try:
        result = await services.engine.resolve(database_id)
        click.echo(f"Mappings for {database_id} (source: {result.source})")
        _echo_mappings(result.mapping_set)
        if result.errors:
            click.echo("\nDisabled invalid mappings:")
            for error in result.errors:
                click.echo(f"  - {error}")
    finally:
        await services.client.close()


@mappings.command("detect")
@click.option("--dry-run", is_flag=True, help="Show detected mappings without saving")
@click.pass_context
def mappings_detect(ctx: click.Context, dry_run: bool) -> None:
    """Auto-detect mappings from the database property names and save them."""
    settings = _require_settings(ctx)
    asyncio.run(_mappings_detect(ctx, settings, _database_id(ctx, settings), dry_run))


async def _mappings_detect(
    ctx: click.Context, settings: Settings, database_id: str, dry_run: bool
) -> None:
    services = build_services(settings)
    try:
        schema = await services.schema.get_schema(database_id)
        mapping_set = await services.engine.auto_detect(database_id)
        if mapping_set.is_empty:
            mapping_set = services.engine.minimal_default(database_id, schema)
            click.echo("No properties matched; using the title-only default")
        mapping_set, _ = await services.engine.ensure_required(mapping_set)

        click.echo(f"Detected {len(mapping_set.mappings)} mappings for '{schema.title or database_id}':")
        _echo_mappings(mapping_set)
        if dry_run:
            return

        result = services.engine.save(database_id, mapping_set, schema)
        for warning in result.warnings:
            click.echo(f"Warning: {warning}", err=True)
        if not result.success:
            for error in result.errors:
                click.echo(f"  - {error}", err=True)
            click.echo(f"Not saved: {result.message}", err=True)
            ctx.exit(1)
        click.echo("\nSaved.")
    finally:
        await services.client.close()


@mappings.command("reset")
@click.confirmation_option(prompt="Delete the saved mappings for this database?")
@click.pass_context
def mappings_reset(ctx: click.Context) -> None:
    """Delete saved mappings from every storage tier."""
    settings = _require_settings(ctx)
    database_id = _database_id(ctx, settings)
    store = ConfigStore.from_settings(settings)
    MappingEngine(store, SchemaService(NotionClient(settings.notion_token))).reset(database_id)
    click.echo(f"Mappings for {database_id} deleted.")


# =============================================================================
# Schema
# =============================================================================


@main.command()
@click.option("--init", "init_schema", is_flag=True, help="Add the suggested properties")
@click.pass_context
def schema(ctx: click.Context, init_schema: bool) -> None:
    """Show the database properties that can be mapped."""
    settings = _require_settings(ctx)
    asyncio.run(_schema(settings, _database_id(ctx, settings), init_schema))


async def _schema(settings: Settings, database_id: str, init_schema: bool) -> None:
    from gmail2notion.notion.schema import SCHEMA, mappable_properties

    services = build_services(settings)
    try:
        if init_schema:
            click.echo("Updating Notion database schema...")
            await services.client.update_database(database_id, SCHEMA)
            services.schema.invalidate(database_id)
            for name, config in SCHEMA.items():
                click.echo(f"  + {name}: {next(iter(config))}")

        db_schema = await services.schema.get_schema(database_id)
        click.echo(f"\nDatabase: {db_schema.title or 'Unknown'}")
        mappable = mappable_properties(db_schema)
        for prop in db_schema.properties:
            marker = " " if prop in mappable else "x"
            options = f" [{', '.join(prop.option_names)}]" if prop.options else ""
            click.echo(f"  {marker} {prop.name}: {prop.type.value}{options}")
        click.echo(f"\n{len(mappable)} of {len(db_schema.properties)} properties can be mapped")
    finally:
        await services.client.close()


# =============================================================================
# Saving
# =============================================================================


def _load_messages(path: Path) -> list[EmailMessage]:
    """Messages from a JSON file: one object or a list of them."""
    data: Any = json.loads(path.read_text(encoding="utf-8"))
    items = data if isinstance(data, list) else [data]
    return [
        EmailMessage.from_gmail_api(item) if "payload" in item else EmailMessage.model_validate(item)
        for item in items
    ]


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--dry-run", is_flag=True, help="Show the properties without creating pages")
@click.pass_context
def save(ctx: click.Context, file: Path, dry_run: bool) -> None:
    """Save messages from a JSON FILE (Gmail API or flat format) to Notion."""
    settings = _require_settings(ctx)
    try:
        messages = _load_messages(file)
    except (ValueError, KeyError, TypeError) as e:
        click.echo(f"Could not read messages from {file}: {e}", err=True)
        ctx.exit(1)
    asyncio.run(_save(ctx, settings, _database_id(ctx, settings), messages, dry_run))


async def _save(
    ctx: click.Context,
    settings: Settings,
    database_id: str,
    messages: list[EmailMessage],
    dry_run: bool,
) -> None:
    from gmail2notion.exceptions import SaveError
    from gmail2notion.notion.saver import MessageSaver

    services = build_services(settings)
    saver = MessageSaver(services.client, services.engine, services.builder, database_id)
    try:
        if dry_run:
            mapping_set = await saver.prepare_mappings()
            for message in messages:
                result = services.builder.build_all(message.to_record(), mapping_set)
                click.echo(f"{message.subject}:")
                click.echo(json.dumps(result.properties, indent=2))
            return

        def on_progress(message: EmailMessage, action: str) -> None:
            symbol = "+" if action == "created" else "="
            click.echo(f"  [{symbol}] {message.subject}")

        try:
            counts = await saver.save_messages(messages, on_progress=on_progress)
        except SaveError as e:
            click.echo(str(e), err=True)
            ctx.exit(1)
        click.echo(f"\nDone: {counts['created']} created, {counts['skipped']} already saved")
    finally:
        await services.client.close()


# =============================================================================
# Status
# =============================================================================


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show configuration and stored mapping status."""
    settings = _require_settings(ctx)
    store = ConfigStore.from_settings(settings)
    record = store.load_config()
    if not record.api_key:
        record.api_key = settings.notion_token
    if not record.database_id and settings.notion_database_id:
        record.database_id = settings.notion_database_id

    click.echo(f"gmail2notion {__version__}")
    click.echo(f"Data directory: {settings.data_dir}")
    click.echo(f"Config version: {record.system.config_version}")
    click.echo(f"Database: {record.database_name or record.database_id or '(not set)'}")

    issues = record.check()
    click.echo(f"Key format: {record.system.last_validated_key_format or 'unknown'}")
    for issue in issues:
        click.echo(f"  ! {issue}")

    destination_ids = store.destination_ids()
    click.echo(f"\nStored mapping sets: {len(destination_ids)}")
    for destination_id in destination_ids:
        mapping_set = store.load_mapping_set(destination_id)
        if mapping_set is None:
            click.echo(f"  {destination_id}: (empty)")
            continue
        updated = mapping_set.metadata.last_updated
        click.echo(
            f"  {destination_id}: {len(mapping_set.enabled())}/{len(mapping_set.mappings)} enabled, "
            f"updated {updated.isoformat() if updated else 'never'}"
        )


if __name__ == "__main__":
    main()
