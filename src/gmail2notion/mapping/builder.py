"""Encode record values as Notion property payloads."""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from gmail2notion.mapping.transformers import TransformerRegistry, parse_datetime, to_iso8601
from gmail2notion.models import FieldMapping, MappingSet, PropertyType, utcnow

logger = logging.getLogger(__name__)

TEXT_LIMIT = 2000  # Notion rich text content limit
OPTION_NAME_LIMIT = 100
DEFAULT_TITLE = "(No Subject)"

_FALSE_STRINGS = frozenset({"", "false", "0", "no", "off", "none"})


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple, set)):
        return ", ".join(_as_text(item) for item in value)
    if isinstance(value, datetime):
        return to_iso8601(value)
    return str(value)


def _as_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple, set)):
        items = [_as_text(item) for item in value]
    else:
        items = _as_text(value).split(",")
    names: list[str] = []
    for item in items:
        name = item.strip()[:OPTION_NAME_LIMIT]
        if name and name not in names:
            names.append(name)
    return names


def _rich_text(value: Any) -> list[dict[str, Any]]:
    return [{"text": {"content": _as_text(value)[:TEXT_LIMIT]}}]


def _encode_title(value: Any) -> dict[str, Any] | None:
    return {"title": _rich_text(value)}


def _encode_rich_text(value: Any) -> dict[str, Any] | None:
    return {"rich_text": _rich_text(value)}


def _encode_email(value: Any) -> dict[str, Any] | None:
    return {"email": _as_text(value).strip()}


def _encode_phone_number(value: Any) -> dict[str, Any] | None:
    return {"phone_number": _as_text(value).strip()}


def _encode_url(value: Any) -> dict[str, Any] | None:
    url = _as_text(value).strip()
    if "://" not in url and not url.startswith("mailto:"):
        url = "https://" + url
    return {"url": url}


def _encode_date(value: Any) -> dict[str, Any] | None:
    parsed = parse_datetime(value) or utcnow()
    return {"date": {"start": to_iso8601(parsed)}}


def _encode_number(value: Any) -> dict[str, Any] | None:
    if isinstance(value, bool):
        return {"number": int(value)}
    if isinstance(value, (int, float)):
        number: int | float = value
    else:
        text = _as_text(value).strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                return None
    if isinstance(number, float) and not math.isfinite(number):
        return None
    return {"number": number}


def _first_option(value: Any) -> str | None:
    names = _as_list(value)
    return names[0] if names else None


def _encode_select(value: Any) -> dict[str, Any] | None:
    name = _first_option(value)
    return {"select": {"name": name}} if name else None


def _encode_status(value: Any) -> dict[str, Any] | None:
    name = _first_option(value)
    return {"status": {"name": name}} if name else None


def _encode_multi_select(value: Any) -> dict[str, Any] | None:
    names = _as_list(value)
    return {"multi_select": [{"name": name} for name in names]} if names else None


def _encode_checkbox(value: Any) -> dict[str, Any] | None:
    if isinstance(value, str):
        return {"checkbox": value.strip().lower() not in _FALSE_STRINGS}
    return {"checkbox": bool(value)}


def _encode_people(value: Any) -> dict[str, Any] | None:
    ids = _as_list(value)
    return {"people": [{"id": user_id} for user_id in ids]} if ids else None


def _encode_relation(value: Any) -> dict[str, Any] | None:
    # Page ids are passed through; related pages are not looked up or created.
    ids = _as_list(value)
    return {"relation": [{"id": page_id} for page_id in ids]} if ids else None


def _encode_files(value: Any) -> dict[str, Any] | None:
    urls = [url for url in _as_list(value) if url.startswith(("http://", "https://"))]
    if not urls:
        return None
    return {
        "files": [
            {
                "name": url.rstrip("/").rsplit("/", 1)[-1][:OPTION_NAME_LIMIT] or url,
                "type": "external",
                "external": {"url": url},
            }
            for url in urls
        ]
    }


def _encode_nothing(value: Any) -> dict[str, Any] | None:
    return None


ENCODERS: dict[PropertyType, Callable[[Any], dict[str, Any] | None]] = {
    PropertyType.TITLE: _encode_title,
    PropertyType.RICH_TEXT: _encode_rich_text,
    PropertyType.EMAIL: _encode_email,
    PropertyType.URL: _encode_url,
    PropertyType.DATE: _encode_date,
    PropertyType.NUMBER: _encode_number,
    PropertyType.SELECT: _encode_select,
    PropertyType.MULTI_SELECT: _encode_multi_select,
    PropertyType.STATUS: _encode_status,
    PropertyType.CHECKBOX: _encode_checkbox,
    PropertyType.PEOPLE: _encode_people,
    PropertyType.RELATION: _encode_relation,
    PropertyType.PHONE_NUMBER: _encode_phone_number,
    PropertyType.FILES: _encode_files,
    # Notion computes these; a page create must not include them
    PropertyType.FORMULA: _encode_nothing,
    PropertyType.ROLLUP: _encode_nothing,
    PropertyType.CREATED_TIME: _encode_nothing,
    PropertyType.CREATED_BY: _encode_nothing,
    PropertyType.LAST_EDITED_TIME: _encode_nothing,
    PropertyType.LAST_EDITED_BY: _encode_nothing,
    PropertyType.UNIQUE_ID: _encode_nothing,
    PropertyType.UNSUPPORTED: _encode_rich_text,
}


@dataclass
class BuildResult:
    """Properties ready for ``POST /pages``, keyed by property name."""

    properties: dict[str, Any] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def mapped_count(self) -> int:
        return len(self.properties)


class PropertyValueBuilder:
    """Turns a record plus a mapping into a type-tagged property payload."""

    def __init__(self, transformers: TransformerRegistry | None = None):
        self.transformers = transformers or TransformerRegistry()

    def build(self, record: dict[str, Any], mapping: FieldMapping) -> dict[str, Any] | None:
        """Payload for one mapping, or None when the property should be omitted.

        Never raises.
        """
        if not mapping.enabled:
            return None

        if mapping.is_static:
            value = mapping.static_value
        else:
            value = record.get(mapping.source_field)
            if value is None:
                return None
            value = self.transformers.apply(value, mapping.transform)

        if value is None or (isinstance(value, str) and not value.strip()):
            if mapping.destination_type is not PropertyType.CHECKBOX:
                return None

        encoder = ENCODERS.get(mapping.destination_type, _encode_rich_text)
        try:
            return encoder(value)
        except Exception as e:
            logger.warning(
                "Could not encode %s for %s property '%s': %s",
                mapping.source_field or "static value",
                mapping.destination_type.value,
                mapping.destination_property_name,
                e,
            )
            return None

    def build_all(self, record: dict[str, Any], mapping_set: MappingSet) -> BuildResult:
        """Build every enabled mapping; a title is always present if one is mapped."""
        result = BuildResult()
        title_name: str | None = None

        for mapping_id, mapping in mapping_set.enabled().items():
            if mapping.is_title:
                title_name = mapping.destination_property_name
            payload = self.build(record, mapping)
            if payload is None:
                result.skipped.append(mapping_id)
                continue
            result.properties[mapping.destination_property_name] = payload
            logger.debug(
                "Mapped %s -> %s (%s)",
                mapping.source_field or "static",
                mapping.destination_property_name,
                mapping.destination_type.value,
            )

        if title_name and title_name not in result.properties:
            result.properties[title_name] = _encode_title(self.default_title(record))

        return result

    @staticmethod
    def default_title(record: dict[str, Any]) -> str:
        subject = record.get("subject")
        if subject:
            return _as_text(subject)
        sender = record.get("from")
        return f"Email from {sender}" if sender else DEFAULT_TITLE
