"""Custom exceptions for gmail2notion."""


class Gmail2NotionError(Exception):
    """Base exception for gmail2notion."""


class ConfigurationError(Gmail2NotionError):
    """Missing or invalid configuration."""


class NotionAPIError(Gmail2NotionError):
    """Error from Notion API."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Notion API error ({status_code}): {message}")


class RateLimitError(NotionAPIError):
    """Notion API rate limit exceeded."""

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(429, f"Rate limited. Retry after {retry_after}s")


class SchemaFetchError(Gmail2NotionError):
    """The destination database schema could not be fetched."""

    def __init__(self, database_id: str, message: str):
        self.database_id = database_id
        super().__init__(f"Failed to fetch schema for database {database_id}: {message}")


class SchemaNotFoundError(SchemaFetchError):
    """The destination database does not exist or is not shared with the integration."""

    def __init__(self, database_id: str):
        super().__init__(database_id, "database not found or not accessible")


class MappingValidationError(Gmail2NotionError):
    """A single invalid mapping.

    These are collected into lists and reported together, never raised one at a time.
    """

    def __init__(
        self,
        mapping_id: str,
        message: str,
        source_field: str | None = None,
        destination_type: str | None = None,
    ):
        self.mapping_id = mapping_id
        self.message = message
        self.source_field = source_field
        self.destination_type = destination_type
        super().__init__(f"Mapping '{mapping_id}': {message}")


class PersistenceWarning(Gmail2NotionError):
    """A storage tier write failed while at least one durable copy succeeded."""

    def __init__(self, tier: str, original_error: Exception):
        self.tier = tier
        self.original_error = original_error
        super().__init__(f"Write to {tier} failed: {original_error}")


class PersistenceError(Gmail2NotionError):
    """Every durable tier failed; the mapping set was not saved."""

    def __init__(self, destination_id: str, warnings: list[PersistenceWarning]):
        self.destination_id = destination_id
        self.warnings = warnings
        tiers = ", ".join(w.tier for w in warnings) or "no durable tiers"
        super().__init__(f"Failed to persist mappings for {destination_id} ({tiers})")


class SaveError(Gmail2NotionError):
    """Error saving a message as a Notion page."""

    def __init__(self, message_id: str, subject: str, original_error: Exception):
        self.message_id = message_id
        self.subject = subject
        self.original_error = original_error
        super().__init__(f"Failed to save '{subject}' (ID: {message_id}): {original_error}")
