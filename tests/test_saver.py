"""Tests for saving messages as Notion pages."""

from unittest.mock import AsyncMock

import pytest

from conftest import DATABASE_ID, SUGGESTED_PROPERTIES, database_payload
from gmail2notion.exceptions import NotionAPIError, SaveError
from gmail2notion.mapping.builder import PropertyValueBuilder
from gmail2notion.mapping.engine import MappingEngine
from gmail2notion.models import EmailMessage, FieldMapping, MappingSet
from gmail2notion.notion.saver import MessageSaver
from gmail2notion.storage.config_store import ConfigStore


@pytest.fixture
def saver(
    mock_client: AsyncMock, engine: MappingEngine, builder: PropertyValueBuilder
) -> MessageSaver:
    return MessageSaver(mock_client, engine, builder, DATABASE_ID)


class TestSaveMessage:
    @pytest.mark.asyncio
    async def test_creates_page_with_detected_mappings(
        self,
        saver: MessageSaver,
        mock_client: AsyncMock,
        store: ConfigStore,
        message: EmailMessage,
    ) -> None:
        page_id, action = await saver.save_message(message)

        assert (page_id, action) == ("page-1", "created")
        database_id, properties = mock_client.create_page.await_args.args
        assert database_id == DATABASE_ID
        assert properties["Name"] == {"title": [{"text": {"content": "Re: Quarterly report"}}]}
        assert properties["Sender"] == {"email": "ada@example.com"}
        assert properties["Received"] == {"date": {"start": "2024-03-01T09:30:00.000Z"}}
        assert properties["Gmail Link"] == {
            "url": "https://mail.google.com/mail/u/0/#inbox/18c0ffee"
        }
        assert properties["Unique Message ID"] == {
            "rich_text": [{"text": {"content": "CAF=abc@mail.gmail.com"}}]
        }

        mock_client.find_page_by_text.assert_awaited_once_with(
            DATABASE_ID, "Unique Message ID", "CAF=abc@mail.gmail.com"
        )
        saved = store.load_mapping_set(DATABASE_ID)
        assert saved is not None
        assert "uniqueMessageId" in saved.mappings

    @pytest.mark.asyncio
    async def test_suggested_layout_dedups_on_message_id(
        self, saver: MessageSaver, mock_client: AsyncMock, message: EmailMessage
    ) -> None:
        mock_client.get_database.return_value = database_payload(SUGGESTED_PROPERTIES)

        await saver.save_message(message)

        mock_client.find_page_by_text.assert_awaited_once_with(
            DATABASE_ID, "Unique Message ID", "CAF=abc@mail.gmail.com"
        )
        _, properties = mock_client.create_page.await_args.args
        assert properties["Unique Message ID"] == {
            "rich_text": [{"text": {"content": "CAF=abc@mail.gmail.com"}}]
        }
        assert properties["From"] == {"email": "ada@example.com"}
        mock_client.update_database.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_saved_mapping_to_deleted_property_is_not_sent(
        self,
        saver: MessageSaver,
        mock_client: AsyncMock,
        store: ConfigStore,
        message: EmailMessage,
    ) -> None:
        stale = MappingSet(
            destination_id=DATABASE_ID,
            mappings={
                "subject": FieldMapping(
                    source_field="subject",
                    destination_property_id="title",
                    destination_property_name="Name",
                    destination_type="title",
                ),
                "snippet": FieldMapping(
                    source_field="snippet",
                    destination_property_id="old_notes",
                    destination_property_name="Old Notes",
                    destination_type="rich_text",
                ),
            },
        )
        store.save_mapping_set(DATABASE_ID, stale)

        page_id, action = await saver.save_message(message)

        assert (page_id, action) == ("page-1", "created")
        _, properties = mock_client.create_page.await_args.args
        assert "Old Notes" not in properties
        assert properties["Name"] == {"title": [{"text": {"content": "Re: Quarterly report"}}]}

    @pytest.mark.asyncio
    async def test_existing_message_is_skipped(
        self, saver: MessageSaver, mock_client: AsyncMock, message: EmailMessage
    ) -> None:
        mock_client.find_page_by_text.return_value = {"id": "page-old"}

        page_id, action = await saver.save_message(message)

        assert (page_id, action) == ("page-old", "skipped")
        mock_client.create_page.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_second_save_in_same_run_is_skipped(
        self, saver: MessageSaver, mock_client: AsyncMock, message: EmailMessage
    ) -> None:
        await saver.save_message(message)
        page_id, action = await saver.save_message(message)

        assert (page_id, action) == ("page-1", "skipped")
        assert mock_client.create_page.await_count == 1
        assert mock_client.find_page_by_text.await_count == 1

    @pytest.mark.asyncio
    async def test_api_failure_raises_save_error(
        self, saver: MessageSaver, mock_client: AsyncMock, message: EmailMessage
    ) -> None:
        mock_client.create_page.side_effect = NotionAPIError(400, "validation failed")

        with pytest.raises(SaveError) as exc_info:
            await saver.save_message(message)

        assert exc_info.value.message_id == "18c0ffee"
        assert isinstance(exc_info.value.original_error, NotionAPIError)

    @pytest.mark.asyncio
    async def test_schema_outage_still_saves_title(
        self, saver: MessageSaver, mock_client: AsyncMock, store: ConfigStore, message: EmailMessage
    ) -> None:
        mock_client.get_database.side_effect = NotionAPIError(0, "network down")

        page_id, action = await saver.save_message(message)

        assert action == "created"
        _, properties = mock_client.create_page.await_args.args
        assert properties == {"Name": {"title": [{"text": {"content": "Re: Quarterly report"}}]}}
        mock_client.find_page_by_text.assert_not_awaited()
        assert store.load_mapping_set(DATABASE_ID) is None


class TestSaveMessages:
    @pytest.mark.asyncio
    async def test_counts_and_progress(
        self, saver: MessageSaver, mock_client: AsyncMock, message: EmailMessage
    ) -> None:
        other = message.model_copy(update={"message_id": "18c0ffef", "header_message_id": ""})
        mock_client.create_page.side_effect = [{"id": "page-1"}, {"id": "page-2"}]
        seen: list[tuple[str, str]] = []

        counts = await saver.save_messages(
            [message, other, message],
            on_progress=lambda m, action: seen.append((m.message_id, action)),
        )

        assert counts == {"created": 2, "skipped": 1}
        assert seen == [
            ("18c0ffee", "created"),
            ("18c0ffef", "created"),
            ("18c0ffee", "skipped"),
        ]
