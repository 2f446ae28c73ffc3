"""Which Notion property types each Gmail field may populate."""

from gmail2notion.exceptions import MappingValidationError
from gmail2notion.models import FieldMapping, PropertyType

T = PropertyType

# Source field id -> property types it can legally fill
COMPATIBILITY: dict[str, tuple[PropertyType, ...]] = {
    # Identification
    "subject": (T.TITLE, T.RICH_TEXT, T.URL),
    "from": (T.EMAIL, T.RICH_TEXT, T.TITLE),
    "fromEmail": (T.EMAIL, T.RICH_TEXT),
    "fromName": (T.TITLE, T.RICH_TEXT),
    "to": (T.EMAIL, T.RICH_TEXT),
    "cc": (T.EMAIL, T.RICH_TEXT),
    "bcc": (T.EMAIL, T.RICH_TEXT),
    "replyTo": (T.EMAIL, T.RICH_TEXT),
    # Dates
    "dateSent": (T.DATE, T.RICH_TEXT),
    "date": (T.DATE, T.RICH_TEXT),
    "internalDate": (T.DATE, T.RICH_TEXT, T.NUMBER),
    # Content
    "body": (T.RICH_TEXT,),
    "plainBody": (T.RICH_TEXT,),
    "snippet": (T.TITLE, T.RICH_TEXT),
    # Links and IDs
    "messageId": (T.RICH_TEXT, T.URL),
    "threadId": (T.RICH_TEXT, T.URL),
    "uniqueMessageId": (T.RICH_TEXT,),
    "gmailLink": (T.URL, T.RICH_TEXT),
    "gmailLinkUrl": (T.URL, T.RICH_TEXT),
    "historyId": (T.RICH_TEXT, T.NUMBER),
    # Status
    "labels": (T.MULTI_SELECT, T.SELECT, T.RICH_TEXT),
    "starred": (T.CHECKBOX, T.RICH_TEXT),
    "inInbox": (T.CHECKBOX, T.RICH_TEXT),
    "unread": (T.CHECKBOX, T.RICH_TEXT),
    "hasAttachments": (T.CHECKBOX, T.RICH_TEXT),
    # Attachments
    "attachmentCount": (T.NUMBER, T.RICH_TEXT, T.CHECKBOX),
    "attachmentNames": (T.RICH_TEXT, T.MULTI_SELECT),
}

DEFAULT_ALLOWED: tuple[PropertyType, ...] = (T.RICH_TEXT,)

# Field id -> display label, in menu order
SOURCE_FIELDS: dict[str, str] = {
    "subject": "Subject",
    "from": "From",
    "fromEmail": "From (email only)",
    "fromName": "From (name only)",
    "to": "To",
    "cc": "CC",
    "bcc": "BCC",
    "replyTo": "Reply-To",
    "dateSent": "Date Sent",
    "body": "Body (HTML)",
    "plainBody": "Body (plain)",
    "snippet": "Snippet",
    "messageId": "Message ID",
    "threadId": "Thread ID",
    "uniqueMessageId": "Unique Message ID",
    "gmailLink": "Gmail Link",
    "labels": "Labels",
    "starred": "Starred",
    "inInbox": "In Inbox",
    "unread": "Unread",
    "hasAttachments": "Has Attachments",
    "attachmentCount": "Attachment Count",
    "attachmentNames": "Attachment Names",
}

# Filled by the save flow itself, not offered in field menus
INTERNAL_FIELDS = frozenset({"gmailLink", "gmailLinkUrl", "uniqueMessageId"})

RECOMMENDED_FIELDS: dict[PropertyType, str] = {
    T.TITLE: "subject",
    T.RICH_TEXT: "plainBody",
    T.EMAIL: "fromEmail",
    T.URL: "gmailLink",
    T.DATE: "dateSent",
    T.NUMBER: "attachmentCount",
    T.CHECKBOX: "hasAttachments",
    T.MULTI_SELECT: "labels",
    T.SELECT: "labels",
}


class PropertyTypeCompatibility:
    """Lookup and save-time validation over ``COMPATIBILITY``."""

    def __init__(self, table: dict[str, tuple[PropertyType, ...]] | None = None):
        self._table = table if table is not None else COMPATIBILITY

    def allowed_types(self, source_field: str) -> list[PropertyType]:
        """Property types a source field may populate; rich text for unknown fields."""
        return list(self._table.get(source_field, DEFAULT_ALLOWED))

    def is_compatible(self, source_field: str, property_type: PropertyType) -> bool:
        return property_type in self.allowed_types(source_field)

    def fields_for_type(self, property_type: PropertyType) -> list[str]:
        """Source fields a user may pick for a property of ``property_type``."""
        return [
            field
            for field in SOURCE_FIELDS
            if field not in INTERNAL_FIELDS and self.is_compatible(field, property_type)
        ]

    def recommended_field(self, property_type: PropertyType) -> str:
        return RECOMMENDED_FIELDS.get(property_type, "subject")

    def validate(self, mapping_id: str, mapping: FieldMapping) -> list[MappingValidationError]:
        """Check one mapping against the table.

        Static mappings never read a source field and are not checked here.
        """
        if mapping.is_static:
            return []

        errors = []
        if not mapping.source_field:
            errors.append(
                MappingValidationError(
                    mapping_id,
                    "no source field selected",
                    destination_type=mapping.destination_type.value,
                )
            )
        elif not self.is_compatible(mapping.source_field, mapping.destination_type):
            allowed = ", ".join(t.value for t in self.allowed_types(mapping.source_field))
            errors.append(
                MappingValidationError(
                    mapping_id,
                    f"field '{mapping.source_field}' cannot fill a "
                    f"{mapping.destination_type.value} property (allowed: {allowed})",
                    source_field=mapping.source_field,
                    destination_type=mapping.destination_type.value,
                )
            )
        return errors

    def validate_all(self, mappings: dict[str, FieldMapping]) -> list[MappingValidationError]:
        errors: list[MappingValidationError] = []
        for mapping_id, mapping in mappings.items():
            errors.extend(self.validate(mapping_id, mapping))
        return errors
