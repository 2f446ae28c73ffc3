"""Data models for gmail2notion."""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

MAPPING_VERSION = "2.0"
CONFIG_VERSION = "3.0"
METADATA_KEY = "_metadata"

# Known Notion integration token prefixes
KEY_FORMATS = {
    "secret_": "internal_integration",
    "ntn_": "ntn_token",
}

GMAIL_LINK_TEMPLATE = "https://mail.google.com/mail/u/0/#inbox/{message_id}"

_EMAIL_RE = re.compile(r"[^\s@<>]+@[^\s@<>]+\.[^\s@<>]+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PropertyType(str, Enum):
    """Notion property types, by their wire names."""

    TITLE = "title"
    RICH_TEXT = "rich_text"
    EMAIL = "email"
    URL = "url"
    DATE = "date"
    NUMBER = "number"
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    STATUS = "status"
    CHECKBOX = "checkbox"
    PEOPLE = "people"
    RELATION = "relation"
    PHONE_NUMBER = "phone_number"
    FILES = "files"

    # Computed by Notion, never written
    FORMULA = "formula"
    ROLLUP = "rollup"
    CREATED_TIME = "created_time"
    CREATED_BY = "created_by"
    LAST_EDITED_TIME = "last_edited_time"
    LAST_EDITED_BY = "last_edited_by"
    UNIQUE_ID = "unique_id"

    # Anything this version does not know about
    UNSUPPORTED = "unsupported"

    @classmethod
    def _missing_(cls, value: object) -> "PropertyType":
        return cls.UNSUPPORTED

    @property
    def is_auto_managed(self) -> bool:
        return self in AUTO_MANAGED_TYPES

    @property
    def is_mappable(self) -> bool:
        return self not in AUTO_MANAGED_TYPES and self is not PropertyType.UNSUPPORTED

    @property
    def is_static_capable(self) -> bool:
        """Types that can be set to a fixed value instead of a source field."""
        return self in STATIC_TYPES


AUTO_MANAGED_TYPES = frozenset(
    {
        PropertyType.FORMULA,
        PropertyType.ROLLUP,
        PropertyType.CREATED_TIME,
        PropertyType.CREATED_BY,
        PropertyType.LAST_EDITED_TIME,
        PropertyType.LAST_EDITED_BY,
        PropertyType.UNIQUE_ID,
    }
)

STATIC_TYPES = frozenset(
    {
        PropertyType.SELECT,
        PropertyType.STATUS,
        PropertyType.CHECKBOX,
        PropertyType.MULTI_SELECT,
        PropertyType.PEOPLE,
        PropertyType.RELATION,
    }
)


def _coerce_property_type(value: Any) -> Any:
    if isinstance(value, str) and not isinstance(value, PropertyType):
        return PropertyType(value)
    return value


class OptionDef(BaseModel):
    """One option of a select, multi-select or status property."""

    model_config = ConfigDict(frozen=True)

    name: str
    id: str | None = None
    color: str | None = None


class DestinationProperty(BaseModel):
    """One column of a Notion database schema."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: PropertyType
    options: tuple[OptionDef, ...] = ()

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, value: Any) -> Any:
        return _coerce_property_type(value)

    @property
    def is_title(self) -> bool:
        return self.type is PropertyType.TITLE

    @property
    def is_auto_managed(self) -> bool:
        return self.type.is_auto_managed

    @property
    def option_names(self) -> list[str]:
        return [option.name for option in self.options]


class DestinationSchema(BaseModel):
    """Snapshot of a Notion database's properties."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    properties: tuple[DestinationProperty, ...] = ()
    fetched_at: datetime = Field(default_factory=utcnow)

    def by_id(self, property_id: str) -> DestinationProperty | None:
        for prop in self.properties:
            if prop.id == property_id:
                return prop
        return None

    def by_name(self, name: str) -> DestinationProperty | None:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def title_property(self) -> DestinationProperty | None:
        for prop in self.properties:
            if prop.is_title:
                return prop
        return None


class FieldMapping(BaseModel):
    """Binding from a source field (or a static value) to one destination property."""

    source_field: str = ""
    destination_property_id: str
    destination_property_name: str
    destination_type: PropertyType
    transform: str = "none"
    enabled: bool = True
    is_static: bool = False
    static_value: bool | str | list[str] | None = None
    is_required: bool = False
    auto_created: bool = False

    @field_validator("destination_type", mode="before")
    @classmethod
    def coerce_type(cls, value: Any) -> Any:
        return _coerce_property_type(value)

    @property
    def is_title(self) -> bool:
        return self.destination_type is PropertyType.TITLE


class MappingMetadata(BaseModel):
    """Bookkeeping stored next to the mappings under ``_metadata``."""

    last_updated: datetime | None = None
    version: str = MAPPING_VERSION
    mapping_count: int = 0
    source: str | None = None


class MappingSet(BaseModel):
    """All field mappings for one destination database."""

    destination_id: str
    mappings: dict[str, FieldMapping] = Field(default_factory=dict)
    metadata: MappingMetadata = Field(default_factory=MappingMetadata)

    @property
    def is_empty(self) -> bool:
        return not self.mappings

    def enabled(self) -> dict[str, FieldMapping]:
        """Mappings that are applied when building a page."""
        return {key: mapping for key, mapping in self.mappings.items() if mapping.enabled}

    def enabled_titles(self) -> list[str]:
        return [key for key, mapping in self.enabled().items() if mapping.is_title]

    def find_source_field(self, source_field: str) -> FieldMapping | None:
        """Enabled mapping filled from ``source_field``, if any."""
        for mapping in self.enabled().values():
            if not mapping.is_static and mapping.source_field == source_field:
                return mapping
        return None

    def touch(self, source: str | None = None) -> None:
        """Refresh metadata after a mutation."""
        self.metadata.last_updated = utcnow()
        self.metadata.mapping_count = len(self.mappings)
        if source is not None:
            self.metadata.source = source

    def to_storage(self) -> dict[str, Any]:
        """Encode as ``{mapping id: mapping, "_metadata": {...}}``."""
        data: dict[str, Any] = {
            key: mapping.model_dump(mode="json") for key, mapping in self.mappings.items()
        }
        metadata = self.metadata.model_dump(mode="json")
        metadata["destination_id"] = self.destination_id
        data[METADATA_KEY] = metadata
        return data

    @classmethod
    def from_storage(cls, destination_id: str, data: dict[str, Any]) -> "MappingSet":
        """Decode the storage encoding produced by ``to_storage``."""
        raw_metadata = dict(data.get(METADATA_KEY) or {})
        raw_metadata.pop("destination_id", None)
        mappings = {
            key: FieldMapping.model_validate(value)
            for key, value in data.items()
            if key != METADATA_KEY
        }
        return cls(
            destination_id=destination_id,
            mappings=mappings,
            metadata=MappingMetadata.model_validate(raw_metadata),
        )


class UserSettings(BaseModel):
    """User preferences carried in the config record."""

    auto_save: bool = False
    notifications: bool = True


class SystemMetadata(BaseModel):
    initialized: bool = False
    config_version: str = CONFIG_VERSION
    last_validated_key_format: str | None = None
    last_validated: datetime | None = None


class ConfigRecord(BaseModel):
    """The full persisted configuration.

    Mapping sets are held in ``mappings`` for the life of one invocation but are
    persisted under their own keys; the stored blob only carries ``mapping_index``.
    """

    api_key: str = ""
    database_id: str = ""
    database_name: str = ""
    mapping_index: list[str] = Field(default_factory=list)
    settings: UserSettings = Field(default_factory=UserSettings)
    system: SystemMetadata = Field(default_factory=SystemMetadata)
    mappings: dict[str, MappingSet] = Field(default_factory=dict, exclude=True)

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_storage(cls, data: dict[str, Any]) -> "ConfigRecord":
        return cls.model_validate(data)

    def index_mapping(self, destination_id: str) -> None:
        if destination_id not in self.mapping_index:
            self.mapping_index.append(destination_id)

    def unindex_mapping(self, destination_id: str) -> None:
        if destination_id in self.mapping_index:
            self.mapping_index.remove(destination_id)
        self.mappings.pop(destination_id, None)

    def check(self) -> list[str]:
        """Return configuration problems; also records the detected key format."""
        issues = []
        if not self.api_key:
            issues.append("API key is required")
        else:
            key_format = next(
                (name for prefix, name in KEY_FORMATS.items() if self.api_key.startswith(prefix)),
                None,
            )
            if key_format is None:
                issues.append("API key does not match a known Notion token format")
            self.system.last_validated_key_format = key_format
        if not self.database_id:
            issues.append("Database ID is required")
        self.system.last_validated = utcnow()
        return issues


class EmailMessage(BaseModel):
    """A Gmail message, reduced to the fields that can be mapped."""

    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(description="Gmail message ID")
    thread_id: str = ""
    header_message_id: str = Field(default="", description="RFC 822 Message-ID header")

    subject: str = "(No Subject)"
    sender: str = Field(default="", alias="from")
    to: str = ""
    cc: str = ""
    bcc: str = ""
    reply_to: str = ""
    date_sent: datetime = Field(default_factory=utcnow)

    body: str = ""
    plain_body: str = ""
    snippet: str = ""

    labels: list[str] = Field(default_factory=list)
    starred: bool = False
    in_inbox: bool = False
    unread: bool = False
    attachment_names: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def from_email(self) -> str:
        """Bare address from the From header."""
        match = _EMAIL_RE.search(self.sender)
        return match.group(0) if match else ""

    @computed_field
    @property
    def from_name(self) -> str:
        """Display name from a ``Name <address>`` From header."""
        if "<" in self.sender:
            return self.sender.split("<", 1)[0].strip().strip('"')
        return "" if self.from_email else self.sender.strip()

    @computed_field
    @property
    def gmail_link(self) -> str:
        """URL to the message in the Gmail web UI."""
        if not self.message_id:
            return ""
        return GMAIL_LINK_TEMPLATE.format(message_id=self.message_id)

    @computed_field
    @property
    def unique_message_id(self) -> str:
        """Stable identifier used to avoid saving the same message twice."""
        return self.header_message_id.strip().strip("<>") or self.message_id

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachment_names)

    @property
    def attachment_count(self) -> int:
        return len(self.attachment_names)

    def to_record(self) -> dict[str, Any]:
        """Flatten into a record keyed by source-field identifiers."""
        return {
            "subject": self.subject,
            "from": self.sender,
            "fromEmail": self.from_email,
            "fromName": self.from_name,
            "to": self.to,
            "cc": self.cc,
            "bcc": self.bcc,
            "replyTo": self.reply_to,
            "dateSent": self.date_sent,
            "date": self.date_sent,
            "body": self.body,
            "plainBody": self.plain_body,
            "snippet": self.snippet,
            "messageId": self.message_id,
            "threadId": self.thread_id,
            "uniqueMessageId": self.unique_message_id,
            "gmailLink": self.gmail_link,
            "gmailLinkUrl": self.gmail_link,
            "labels": list(self.labels),
            "starred": self.starred,
            "inInbox": self.in_inbox,
            "unread": self.unread,
            "hasAttachments": self.has_attachments,
            "attachmentCount": self.attachment_count,
            "attachmentNames": list(self.attachment_names),
        }

    @classmethod
    def from_gmail_api(cls, data: dict[str, Any]) -> "EmailMessage":
        """Create EmailMessage from a Gmail API ``users.messages.get`` response."""
        payload = data.get("payload", {})
        headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
        label_ids = data.get("labelIds", [])
        internal_date = data.get("internalDate")
        date_sent = (
            datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
            if internal_date
            else utcnow()
        )
        return cls(
            message_id=data["id"],
            thread_id=data.get("threadId", ""),
            header_message_id=headers.get("message-id", ""),
            subject=headers.get("subject") or "(No Subject)",
            sender=headers.get("from", ""),
            to=headers.get("to", ""),
            cc=headers.get("cc", ""),
            bcc=headers.get("bcc", ""),
            reply_to=headers.get("reply-to", ""),
            date_sent=date_sent,
            snippet=data.get("snippet", ""),
            labels=label_ids,
            starred="STARRED" in label_ids,
            in_inbox="INBOX" in label_ids,
            unread="UNREAD" in label_ids,
            attachment_names=[
                part["filename"] for part in payload.get("parts", []) if part.get("filename")
            ],
        )
