"""Tests for named value transforms."""

from datetime import datetime, timezone

import pytest

from gmail2notion.mapping.transformers import (
    TRANSFORMERS,
    TransformerRegistry,
    parse_datetime,
    to_iso8601,
)
from gmail2notion.models import PropertyType


@pytest.fixture
def registry() -> TransformerRegistry:
    return TransformerRegistry()


# =============================================================================
# Dates
# =============================================================================


class TestParseDatetime:
    def test_iso_with_z(self) -> None:
        assert parse_datetime("2024-01-01T00:00:00Z") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_rfc_2822(self) -> None:
        parsed = parse_datetime("Mon, 01 Jan 2024 10:00:00 +0100")
        assert parsed is not None
        assert parsed.astimezone(timezone.utc) == datetime(2024, 1, 1, 9, tzinfo=timezone.utc)

    def test_epoch_milliseconds(self) -> None:
        assert parse_datetime(1704067200000) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_naive_is_utc(self) -> None:
        assert parse_datetime(datetime(2024, 1, 1)).tzinfo is timezone.utc

    @pytest.mark.parametrize("value", ["", "not a date", None, True, [1]])
    def test_garbage_is_none(self, value) -> None:
        assert parse_datetime(value) is None

    def test_to_iso8601_has_millis(self) -> None:
        value = datetime(2024, 1, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
        assert to_iso8601(value) == "2024-01-01T12:00:00.123Z"


# =============================================================================
# Registry
# =============================================================================


class TestApply:
    def test_remove_prefixes(self, registry: TransformerRegistry) -> None:
        assert registry.apply("Re: Fwd: RE: Lunch", "remove_prefixes") == "Lunch"

    def test_truncate_100(self, registry: TransformerRegistry) -> None:
        result = registry.apply("x" * 150, "truncate_100")
        assert len(result) == 100
        assert result.endswith("...")

    def test_html_to_text(self, registry: TransformerRegistry) -> None:
        assert registry.apply("<p>Hello<br>&amp; bye</p>", "html_to_text") == "Hello\n& bye"

    def test_extract_email(self, registry: TransformerRegistry) -> None:
        assert registry.apply("Ada <ada@example.com>", "extract_email") == "ada@example.com"

    def test_extract_email_without_address_is_unchanged(self, registry: TransformerRegistry) -> None:
        assert registry.apply("Ada", "extract_email") == "Ada"

    def test_extract_links(self, registry: TransformerRegistry) -> None:
        text = "see https://a.example/x and http://b.example."
        assert registry.apply(text, "extract_links") == "https://a.example/x, http://b.example."

    def test_parse_date(self, registry: TransformerRegistry) -> None:
        assert registry.apply("2024-01-01T00:00:00Z", "parse_date") == "2024-01-01T00:00:00.000Z"

    def test_count_items_joins_lists_first(self, registry: TransformerRegistry) -> None:
        assert registry.apply(["a.pdf", "b.png"], "count_items") == 2

    def test_extract_number(self, registry: TransformerRegistry) -> None:
        assert registry.apply("Invoice total: 42.50 EUR", "extract_number") == 42.5

    @pytest.mark.parametrize("name", ["none", "keep_full", "", None, "no_such_transform"])
    def test_identity_names_keep_type(self, registry: TransformerRegistry, name) -> None:
        value = ["a", "b"]
        assert registry.apply(value, name) is value

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_values_pass_through(self, registry: TransformerRegistry, value) -> None:
        assert registry.apply(value, "html_to_text") == value

    def test_failing_transform_returns_input(self, registry: TransformerRegistry) -> None:
        def explode(value: str) -> str:
            raise RuntimeError("boom")

        registry.register("explode", explode)
        assert registry.apply("keep me", "explode") == "keep me"

    @pytest.mark.parametrize("name", sorted(TRANSFORMERS))
    def test_every_transform_is_total(self, registry: TransformerRegistry, name: str) -> None:
        for value in ["", "plain", "<b>x</b>", 12, 3.5, True, ["a", 1], datetime(2024, 1, 1)]:
            registry.apply(value, name)


class TestOptions:
    def test_email_options(self, registry: TransformerRegistry) -> None:
        values = [option["value"] for option in registry.options_for(PropertyType.EMAIL)]
        assert values == ["extract_email", "keep_full"]

    def test_unknown_type_gets_no_processing(self, registry: TransformerRegistry) -> None:
        assert registry.options_for(PropertyType.CHECKBOX) == [
            {"label": "No processing", "value": "none"}
        ]

    def test_is_valid_for(self, registry: TransformerRegistry) -> None:
        assert registry.is_valid_for("remove_prefixes", PropertyType.TITLE)
        assert not registry.is_valid_for("remove_prefixes", PropertyType.DATE)

    def test_names_include_identities(self, registry: TransformerRegistry) -> None:
        names = registry.names()
        assert "none" in names
        assert "keep_full" in names
        assert "html_to_text" in names
