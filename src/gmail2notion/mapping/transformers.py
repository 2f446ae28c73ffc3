"""Named value transformations applied before a value is encoded for Notion."""

import html
import logging
import re
from collections.abc import Callable
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from gmail2notion.models import PropertyType

logger = logging.getLogger(__name__)

_PREFIX_RE = re.compile(r"^((re|fwd?|aw|wg)\s*:\s*)+", re.IGNORECASE)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"[ \t\f\v]+")
_LINK_RE = re.compile(r"https?://[^\s\]()<>\"']+")
_EMAIL_RE = re.compile(r"[^\s@<>]+@[^\s@<>]+\.[^\s@<>]+")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")

# Transforms that hand the value through untouched, keeping its type
IDENTITY_TRANSFORMS = frozenset({"none", "keep_full"})


def parse_datetime(value: Any) -> datetime | None:
    """Best-effort parse of ISO 8601 and RFC 2822 dates; naive results are UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # epoch milliseconds, as Gmail reports internalDate
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso8601(value: datetime) -> str:
    """UTC ISO 8601 with millisecond precision, e.g. ``2024-01-01T00:00:00.000Z``."""
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def _truncate(limit: int) -> Callable[[str], str]:
    def truncate(value: str) -> str:
        return value if len(value) <= limit else value[: limit - 3] + "..."

    return truncate


def _remove_prefixes(value: str) -> str:
    return _PREFIX_RE.sub("", value).strip()


def _html_to_text(value: str) -> str:
    text = _BR_RE.sub("\n", value)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text).replace("\xa0", " ")
    lines = (_SPACE_RE.sub(" ", line).strip() for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def _extract_links(value: str) -> str:
    return ", ".join(_LINK_RE.findall(value))


def _extract_email(value: str) -> str:
    match = _EMAIL_RE.search(value)
    return match.group(0) if match else value


def _parse_date(value: str) -> str:
    parsed = parse_datetime(value)
    return to_iso8601(parsed) if parsed else value


def _count_items(value: str) -> int:
    return len([part for part in value.split(",") if part.strip()])


def _extract_number(value: str) -> float:
    match = _NUMBER_RE.search(value)
    return float(match.group(0)) if match else 0


TRANSFORMERS: dict[str, Callable[[str], Any]] = {
    # Title
    "remove_prefixes": _remove_prefixes,
    "truncate_100": _truncate(100),
    # Text
    "html_to_text": _html_to_text,
    "truncate_500": _truncate(500),
    "extract_links": _extract_links,
    # Email
    "extract_email": _extract_email,
    # Date
    "parse_date": _parse_date,
    # Number
    "count_items": _count_items,
    "extract_number": _extract_number,
}

NO_PROCESSING = {"label": "No processing", "value": "none"}

OPTIONS_BY_TYPE: dict[PropertyType, list[dict[str, str]]] = {
    PropertyType.TITLE: [
        {"label": "Use as-is", "value": "none"},
        {"label": "Remove 'Re:'/'Fwd:'", "value": "remove_prefixes"},
        {"label": "Truncate (100 chars)", "value": "truncate_100"},
    ],
    PropertyType.RICH_TEXT: [
        {"label": "Use as-is", "value": "none"},
        {"label": "HTML to plain text", "value": "html_to_text"},
        {"label": "First 500 chars", "value": "truncate_500"},
        {"label": "Extract links", "value": "extract_links"},
    ],
    PropertyType.EMAIL: [
        {"label": "Extract email address", "value": "extract_email"},
        {"label": "Keep full format", "value": "keep_full"},
    ],
    PropertyType.DATE: [
        {"label": "Parse to ISO 8601", "value": "parse_date"},
    ],
    PropertyType.URL: [
        {"label": "Use as-is", "value": "none"},
    ],
    PropertyType.NUMBER: [
        {"label": "Extract number", "value": "extract_number"},
        {"label": "Count items", "value": "count_items"},
    ],
}


class TransformerRegistry:
    """Flat name -> function registry; unknown names are the identity."""

    def __init__(
        self,
        transformers: dict[str, Callable[[str], Any]] | None = None,
        options: dict[PropertyType, list[dict[str, str]]] | None = None,
    ):
        self._transformers = dict(TRANSFORMERS if transformers is None else transformers)
        self._options = dict(OPTIONS_BY_TYPE if options is None else options)

    def register(self, name: str, func: Callable[[str], Any]) -> None:
        self._transformers[name] = func

    def names(self) -> list[str]:
        return sorted(IDENTITY_TRANSFORMS | set(self._transformers))

    def apply(self, value: Any, transform_name: str | None) -> Any:
        """Apply a named transform; never raises."""
        if value is None or (isinstance(value, str) and value == ""):
            return value
        if not transform_name or transform_name in IDENTITY_TRANSFORMS:
            return value

        transformer = self._transformers.get(transform_name)
        if transformer is None:
            return value

        if isinstance(value, str):
            text = value
        elif isinstance(value, (list, tuple, set)):
            text = ", ".join(str(item) for item in value)
        elif isinstance(value, datetime):
            text = value.isoformat()
        else:
            text = str(value)

        try:
            return transformer(text)
        except Exception as e:
            logger.debug("Transform %s failed on %r: %s", transform_name, value, e)
            return value

    def options_for(self, property_type: PropertyType) -> list[dict[str, str]]:
        """Transform menu for a property type."""
        return [dict(option) for option in self._options.get(property_type, [NO_PROCESSING])]

    def is_valid_for(self, transform_name: str, property_type: PropertyType) -> bool:
        return transform_name in {option["value"] for option in self.options_for(property_type)}
