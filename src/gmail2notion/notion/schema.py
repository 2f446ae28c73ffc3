"""Destination database schema: fetching, caching and property definitions."""

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from gmail2notion.exceptions import NotionAPIError, SchemaFetchError, SchemaNotFoundError
from gmail2notion.models import DestinationProperty, DestinationSchema, OptionDef, PropertyType
from gmail2notion.notion.client import NotionClient
from gmail2notion.storage.backends import TTLCache

logger = logging.getLogger(__name__)

# Properties the save flow cannot work without, by the source field that fills them
REQUIRED_PROPERTIES: dict[str, tuple[str, PropertyType]] = {
    "uniqueMessageId": ("Unique Message ID", PropertyType.RICH_TEXT),  # For deduplication
    "gmailLink": ("Gmail Link", PropertyType.URL),
}

# Suggested database layout for a fresh Notion database
SCHEMA = {
    "Name": {"title": {}},
    "From": {"email": {}},
    "To": {"rich_text": {}},
    "Date": {"date": {}},
    "Labels": {"multi_select": {}},
    "Has Attachments": {"checkbox": {}},
    "Gmail Link": {"url": {}},
    "Unique Message ID": {"rich_text": {}},
}

_OPTION_TYPES = (PropertyType.SELECT, PropertyType.MULTI_SELECT, PropertyType.STATUS)


def _plain_text(rich_text: list[dict[str, Any]]) -> str:
    return "".join(part.get("plain_text") or part.get("text", {}).get("content", "") for part in rich_text)


def normalize(payload: dict[str, Any]) -> DestinationSchema:
    """Turn a ``GET /databases/{id}`` response into a DestinationSchema."""
    properties = []
    for name, raw in payload.get("properties", {}).items():
        prop_type = PropertyType(raw.get("type", ""))
        options: tuple[OptionDef, ...] = ()
        if prop_type in _OPTION_TYPES:
            config = raw.get(prop_type.value) or {}
            options = tuple(
                OptionDef(name=option["name"], id=option.get("id"), color=option.get("color"))
                for option in config.get("options", [])
                if option.get("name")
            )
        properties.append(
            DestinationProperty(
                id=raw.get("id", name),
                name=raw.get("name", name),
                type=prop_type,
                options=options,
            )
        )
    return DestinationSchema(
        id=payload.get("id", ""),
        title=_plain_text(payload.get("title", [])),
        properties=tuple(properties),
    )


def mappable_properties(schema: DestinationSchema) -> list[DestinationProperty]:
    """Properties a mapping may target; computed and unknown types are dropped."""
    return [prop for prop in schema.properties if prop.type.is_mappable]


class SchemaService:
    """Fetches database schemas through a short-lived cache."""

    def __init__(
        self,
        client: NotionClient,
        ttl: float = 120,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self._cache = TTLCache(default_ttl=ttl, clock=clock)

    async def get_schema(self, database_id: str) -> DestinationSchema:
        """Cached schema for a database.

        Raises:
            SchemaNotFoundError: The database does not exist or is not shared.
            SchemaFetchError: Any other API or network failure.
        """
        cached = self._cache.get(database_id)
        if cached is not None:
            logger.debug("Schema cache hit for %s", database_id)
            return DestinationSchema.model_validate(cached)

        try:
            payload = await self.client.get_database(database_id)
        except NotionAPIError as e:
            if e.status_code == 404:
                raise SchemaNotFoundError(database_id) from e
            raise SchemaFetchError(database_id, str(e)) from e
        except httpx.HTTPError as e:
            raise SchemaFetchError(database_id, str(e)) from e

        schema = normalize(payload)
        if not schema.id:
            schema = schema.model_copy(update={"id": database_id})
        self._cache.set(database_id, schema.model_dump(mode="json"))
        logger.debug("Fetched schema for %s: %d properties", database_id, len(schema.properties))
        return schema

    def mappable_properties(self, schema: DestinationSchema) -> list[DestinationProperty]:
        return mappable_properties(schema)

    def invalidate(self, database_id: str) -> None:
        """Force the next ``get_schema`` to hit the API."""
        self._cache.delete(database_id)

    async def add_property(
        self,
        database_id: str,
        name: str,
        property_type: PropertyType,
    ) -> DestinationProperty:
        """Create a property on the database and return it from the fresh schema."""
        try:
            await self.client.update_database(database_id, {name: {property_type.value: {}}})
        finally:
            self.invalidate(database_id)
        logger.info("Created %s property '%s' on %s", property_type.value, name, database_id)

        schema = await self.get_schema(database_id)
        prop = schema.by_name(name)
        if prop is None:
            raise SchemaFetchError(database_id, f"property '{name}' missing after creation")
        return prop
