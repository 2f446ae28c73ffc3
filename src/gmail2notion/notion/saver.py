"""Save Gmail messages as pages of a Notion database."""

import logging
from collections.abc import Callable

from gmail2notion.exceptions import Gmail2NotionError, NotionAPIError, SaveError
from gmail2notion.mapping.builder import PropertyValueBuilder
from gmail2notion.mapping.engine import MappingEngine
from gmail2notion.models import EmailMessage, MappingSet, PropertyType
from gmail2notion.notion.client import NotionClient

logger = logging.getLogger(__name__)

DEDUP_SOURCE_FIELD = "uniqueMessageId"


class MessageSaver:
    """Creates one page per message, skipping messages already saved."""

    def __init__(
        self,
        client: NotionClient,
        engine: MappingEngine,
        builder: PropertyValueBuilder,
        database_id: str,
        create_missing: bool = True,
    ):
        self.client = client
        self.engine = engine
        self.builder = builder
        self.database_id = database_id
        self.create_missing = create_missing
        self._unique_id_to_page_id: dict[str, str] = {}

    async def prepare_mappings(self) -> MappingSet:
        """Resolve the mapping set and add required mappings, persisting changes.

        Mapping problems are logged and never stop a save.
        """
        resolved = await self.engine.resolve(self.database_id)
        mapping_set = resolved.mapping_set

        changed = False
        try:
            mapping_set, changed = await self.engine.ensure_required(
                mapping_set, create_missing=self.create_missing
            )
        except Gmail2NotionError as e:
            logger.warning("Could not add required mappings for %s: %s", self.database_id, e)

        if changed or resolved.source == "auto_detected":
            result = self.engine.save(self.database_id, mapping_set)
            if not result.success:
                logger.warning("Mappings for %s not persisted: %s", self.database_id, result.message)
            elif result.mapping_set is not None:
                mapping_set = result.mapping_set
        return mapping_set

    @staticmethod
    def _dedup_property(mapping_set: MappingSet) -> str | None:
        for mapping in mapping_set.enabled().values():
            if (
                not mapping.is_static
                and mapping.source_field == DEDUP_SOURCE_FIELD
                and mapping.destination_type is PropertyType.RICH_TEXT
            ):
                return mapping.destination_property_name
        return None

    async def _find_existing_page(self, mapping_set: MappingSet, unique_id: str) -> str | None:
        """Page id already holding this message, if any."""
        if unique_id in self._unique_id_to_page_id:
            return self._unique_id_to_page_id[unique_id]

        property_name = self._dedup_property(mapping_set)
        if property_name is None or not unique_id:
            return None
        page = await self.client.find_page_by_text(self.database_id, property_name, unique_id)
        if page is None:
            return None
        self._unique_id_to_page_id[unique_id] = page["id"]
        return page["id"]

    async def save_message(self, message: EmailMessage) -> tuple[str, str]:
        """
        Save a single message to Notion.

        Returns:
            Tuple of (page_id, action) where action is "created" or "skipped"

        Raises:
            SaveError: Notion rejected the lookup or the page.
        """
        mapping_set = await self.prepare_mappings()
        unique_id = message.unique_message_id

        try:
            existing_page_id = await self._find_existing_page(mapping_set, unique_id)
            if existing_page_id:
                logger.info("Skipping '%s': already saved as %s", message.subject, existing_page_id)
                return existing_page_id, "skipped"

            result = self.builder.build_all(message.to_record(), mapping_set)
            if result.skipped:
                logger.debug("No value for mappings: %s", ", ".join(result.skipped))
            page = await self.client.create_page(self.database_id, result.properties)
        except NotionAPIError as e:
            raise SaveError(message.message_id, message.subject, e) from e

        page_id = page["id"]
        self._unique_id_to_page_id[unique_id] = page_id
        logger.info("Saved '%s' as %s (%d properties)", message.subject, page_id, result.mapped_count)
        return page_id, "created"

    async def save_messages(
        self,
        messages: list[EmailMessage],
        on_progress: Callable[[EmailMessage, str], None] | None = None,
    ) -> dict[str, int]:
        """
        Save multiple messages.

        Returns:
            Dict with counts: {"created": N, "skipped": N}
        """
        counts = {"created": 0, "skipped": 0}

        for message in messages:
            _, action = await self.save_message(message)
            counts[action] += 1

            if on_progress:
                on_progress(message, action)

        return counts
