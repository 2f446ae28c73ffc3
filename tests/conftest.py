"""Shared fixtures for the gmail2notion test suite.

Everything is built from in-memory stores and a mocked Notion client, so no
test touches the network or the real data directory.
"""

from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest

from gmail2notion.mapping.builder import PropertyValueBuilder
from gmail2notion.mapping.engine import MappingEngine
from gmail2notion.models import DestinationSchema, EmailMessage
from gmail2notion.notion.schema import SCHEMA, SchemaService, normalize
from gmail2notion.storage.backends import MemoryStore, TTLCache
from gmail2notion.storage.config_store import ConfigStore

DATABASE_ID = "db-123"


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingStore(MemoryStore):
    """Store whose writes (and optionally reads) raise."""

    def __init__(self, fail_reads: bool = False):
        super().__init__()
        self.fail_reads = fail_reads

    def get(self, key: str) -> Any | None:
        if self.fail_reads:
            raise OSError("read failed")
        return super().get(key)

    def set(self, key: str, value: Any) -> None:
        raise OSError("quota exceeded")


def database_payload(properties: dict[str, dict[str, Any]], title: str = "Inbox") -> dict[str, Any]:
    """A ``GET /databases/{id}`` response with the given properties."""
    return {
        "object": "database",
        "id": DATABASE_ID,
        "title": [{"type": "text", "plain_text": title, "text": {"content": title}}],
        "properties": {
            name: {"id": config.get("id", name.lower().replace(" ", "_")), "name": name, **config}
            for name, config in properties.items()
        },
    }


INBOX_PROPERTIES: dict[str, dict[str, Any]] = {
    "Name": {"id": "title", "type": "title", "title": {}},
    "Sender": {"type": "email", "email": {}},
    "Received": {"type": "date", "date": {}},
    "Content": {"type": "rich_text", "rich_text": {}},
    "Gmail Link": {"type": "url", "url": {}},
    "Unique Message ID": {"type": "rich_text", "rich_text": {}},
    "Priority": {
        "type": "select",
        "select": {"options": [{"id": "p1", "name": "High", "color": "red"}, {"id": "p2", "name": "Low"}]},
    },
    "Tags": {"type": "multi_select", "multi_select": {"options": [{"name": "work"}, {"name": "home"}]}},
    "Created": {"type": "created_time", "created_time": {}},
    "Score": {"type": "formula", "formula": {"expression": "1"}},
}

# The layout `schema --init` creates
SUGGESTED_PROPERTIES: dict[str, dict[str, Any]] = {
    name: {"type": next(iter(config)), **config} for name, config in SCHEMA.items()
}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def inbox_payload() -> dict[str, Any]:
    return database_payload(INBOX_PROPERTIES)


@pytest.fixture
def inbox_schema(inbox_payload: dict[str, Any]) -> DestinationSchema:
    return normalize(inbox_payload)


@pytest.fixture
def mock_client(inbox_payload: dict[str, Any]) -> AsyncMock:
    """NotionClient double; every coroutine method is an AsyncMock."""
    client = AsyncMock()
    client.get_database = AsyncMock(return_value=inbox_payload)
    client.update_database = AsyncMock(return_value={})
    client.find_page_by_text = AsyncMock(return_value=None)
    client.create_page = AsyncMock(return_value={"id": "page-1"})
    return client


@pytest.fixture
def store(clock: FakeClock) -> ConfigStore:
    return ConfigStore(TTLCache(clock=clock), MemoryStore(), MemoryStore())


@pytest.fixture
def schema_service(mock_client: AsyncMock, clock: FakeClock) -> SchemaService:
    return SchemaService(mock_client, ttl=120, clock=clock)


@pytest.fixture
def engine(store: ConfigStore, schema_service: SchemaService) -> MappingEngine:
    return MappingEngine(store, schema_service)


@pytest.fixture
def builder() -> PropertyValueBuilder:
    return PropertyValueBuilder()


@pytest.fixture
def message() -> EmailMessage:
    return EmailMessage(
        message_id="18c0ffee",
        thread_id="18c0ffee",
        header_message_id="<CAF=abc@mail.gmail.com>",
        subject="Re: Quarterly report",
        sender="Ada Lovelace <ada@example.com>",
        to="team@example.com",
        date_sent=datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc),
        body="<p>Hello<br>team</p>",
        plain_body="Hello\nteam",
        snippet="Hello team",
        labels=["INBOX", "IMPORTANT"],
        in_inbox=True,
        attachment_names=["report.pdf"],
    )
