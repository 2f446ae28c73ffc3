"""Save Gmail messages into Notion databases with configurable field mappings."""

__version__ = "0.3.0"
