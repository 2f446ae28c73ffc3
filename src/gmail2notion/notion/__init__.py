"""Notion API access: HTTP client, schema service and page saving."""
