"""Resolve, validate and persist the field mappings of a destination database."""

import logging
from dataclasses import dataclass, field
from enum import Enum

from gmail2notion.exceptions import (
    MappingValidationError,
    PersistenceError,
    PersistenceWarning,
    SchemaFetchError,
)
from gmail2notion.mapping.compatibility import SOURCE_FIELDS, PropertyTypeCompatibility
from gmail2notion.models import (
    DestinationProperty,
    DestinationSchema,
    FieldMapping,
    MappingSet,
    PropertyType,
)
from gmail2notion.notion.schema import REQUIRED_PROPERTIES, SchemaService, mappable_properties
from gmail2notion.storage.config_store import ConfigStore

logger = logging.getLogger(__name__)

# Case-insensitive substrings of a property name that suggest a source field.
# Fields are tried in this order; the first compatible, unused property wins.
SOURCE_FIELD_KEYWORDS: dict[str, tuple[str, ...]] = {
    "subject": ("subject", "title", "name", "email"),
    "from": ("from", "sender", "author", "email"),
    "dateSent": ("date", "sent", "created", "received"),
    "body": ("body", "content", "description", "message", "email body"),
    "gmailLink": ("link", "url"),
}

REQUIRED_SOURCE_FIELDS: tuple[str, ...] = tuple(REQUIRED_PROPERTIES)

DEFAULT_TITLE_PROPERTY = DestinationProperty(id="title", name="Name", type=PropertyType.TITLE)


class MappingState(str, Enum):
    UNINITIALIZED = "uninitialized"
    RESOLVED = "resolved"
    VALIDATED = "validated"
    PERSISTED = "persisted"


@dataclass
class ResolveResult:
    """The usable mapping set for a destination and where it came from."""

    mapping_set: MappingSet
    source: str
    errors: list[MappingValidationError] = field(default_factory=list)


@dataclass
class SaveResult:
    success: bool
    errors: list[MappingValidationError] = field(default_factory=list)
    warnings: list[PersistenceWarning] = field(default_factory=list)
    mapping_set: MappingSet | None = None
    message: str = ""


def _mapping_for(
    source_field: str,
    prop: DestinationProperty,
    is_required: bool = False,
    auto_created: bool = False,
) -> FieldMapping:
    return FieldMapping(
        source_field=source_field,
        destination_property_id=prop.id,
        destination_property_name=prop.name,
        destination_type=prop.type,
        transform="extract_email" if prop.type is PropertyType.EMAIL else "none",
        is_required=is_required,
        auto_created=auto_created,
    )


def match_property(
    source_field: str,
    properties: list[DestinationProperty],
    used: set[str] | None = None,
    compatibility: PropertyTypeCompatibility | None = None,
    allow_title: bool = True,
) -> DestinationProperty | None:
    """Property whose name suggests ``source_field``.

    Keywords are tried in order, each against the properties in schema order.
    Properties named for another field's required property are never candidates.
    """
    compatibility = compatibility or PropertyTypeCompatibility()
    used = used or set()
    reserved = {
        name.lower()
        for field_id, (name, _) in REQUIRED_PROPERTIES.items()
        if field_id != source_field
    }
    candidates = [
        prop
        for prop in properties
        if prop.id not in used
        and prop.name.lower() not in reserved
        and (allow_title or not prop.is_title)
        and compatibility.is_compatible(source_field, prop.type)
    ]
    for keyword in SOURCE_FIELD_KEYWORDS.get(source_field, ()):
        for prop in candidates:
            if keyword in prop.name.lower():
                return prop
    return None


def detect_mappings(
    schema: DestinationSchema,
    compatibility: PropertyTypeCompatibility | None = None,
) -> MappingSet:
    """Keyword-match source fields to properties.

    A property is bound to at most one field and only one field takes the
    title. Deterministic for a given schema.
    """
    properties = mappable_properties(schema)
    mapping_set = MappingSet(destination_id=schema.id)
    used: set[str] = set()
    title_bound = False

    for source_field in SOURCE_FIELD_KEYWORDS:
        prop = match_property(source_field, properties, used, compatibility, allow_title=not title_bound)
        if prop is None:
            continue
        used.add(prop.id)
        title_bound = title_bound or prop.is_title
        mapping_set.mappings[source_field] = _mapping_for(source_field, prop)
        logger.debug("Detected %s -> %s", source_field, prop.name)

    mapping_set.touch(source="auto_detected")
    return mapping_set


def minimal_default(destination_id: str, schema: DestinationSchema | None = None) -> MappingSet:
    """Only the title property, filled from the subject."""
    title = (schema.title_property() if schema else None) or DEFAULT_TITLE_PROPERTY
    mapping_set = MappingSet(
        destination_id=destination_id,
        mappings={"subject": _mapping_for("subject", title)},
    )
    mapping_set.touch(source="minimal_default")
    return mapping_set


def _static_value_errors(
    mapping_id: str, mapping: FieldMapping, prop: DestinationProperty | None
) -> list[MappingValidationError]:
    prop_type = mapping.destination_type
    value = mapping.static_value
    options = prop.option_names if prop is not None else []

    def error(message: str) -> list[MappingValidationError]:
        return [MappingValidationError(mapping_id, message, destination_type=prop_type.value)]

    if not prop_type.is_static_capable:
        return error(f"{prop_type.value} properties cannot hold a static value")
    if prop_type is PropertyType.CHECKBOX:
        if not isinstance(value, bool):
            return error("checkbox static value must be true or false")
    elif prop_type in (PropertyType.SELECT, PropertyType.STATUS):
        if not isinstance(value, str) or not value:
            return error("no option selected")
        if options and value not in options:
            return error(f"option '{value}' does not exist")
    elif prop_type is PropertyType.MULTI_SELECT:
        if not isinstance(value, list) or not value:
            return error("no options selected")
        missing = [name for name in value if options and name not in options]
        if missing:
            return error(f"options do not exist: {', '.join(missing)}")
    elif prop_type is PropertyType.PEOPLE:
        if not value or not isinstance(value, (str, list)):
            return error("no people selected")
    elif prop_type is PropertyType.RELATION:
        if value is not None and not isinstance(value, (str, list)):
            return error("relation static value must be page ids")
    return []


class MappingEngine:
    """Per-destination state machine over the stored mapping set.

    UNINITIALIZED -> RESOLVED -> VALIDATED -> PERSISTED, where PERSISTED is
    re-entered on every save.
    """

    def __init__(
        self,
        store: ConfigStore,
        schema_service: SchemaService,
        compatibility: PropertyTypeCompatibility | None = None,
    ):
        self.store = store
        self.schema_service = schema_service
        self.compatibility = compatibility or PropertyTypeCompatibility()
        self._states: dict[str, MappingState] = {}

    def state(self, destination_id: str) -> MappingState:
        return self._states.get(destination_id, MappingState.UNINITIALIZED)

    async def resolve(
        self, destination_id: str, schema: DestinationSchema | None = None
    ) -> ResolveResult:
        """Always returns a usable set: saved, else auto-detected, else minimal.

        Invalid mappings in the result are disabled and reported in ``errors``.
        Saved sets are checked against the live schema when it can be fetched.
        """
        mapping_set = self.store.load_mapping_set(destination_id)
        source = "saved"
        if schema is None:
            try:
                schema = await self.schema_service.get_schema(destination_id)
            except SchemaFetchError as e:
                logger.warning("Schema unavailable for %s: %s", destination_id, e)

        if mapping_set is None:
            if schema is None:
                mapping_set = minimal_default(destination_id)
                source = "minimal_default"
            else:
                mapping_set = detect_mappings(schema, self.compatibility)
                mapping_set.destination_id = destination_id
                source = "auto_detected"
                if mapping_set.is_empty:
                    mapping_set = minimal_default(destination_id, schema)
                    source = "minimal_default"
        self._states[destination_id] = MappingState.RESOLVED

        errors = self.validate(mapping_set, schema)
        for error in errors:
            mapping = mapping_set.mappings.get(error.mapping_id)
            if mapping is not None and mapping.enabled:
                mapping.enabled = False
                logger.warning("Disabled invalid mapping: %s", error)

        if source == "saved" and not errors:
            self._states[destination_id] = MappingState.PERSISTED
        else:
            self._states[destination_id] = MappingState.VALIDATED
        logger.debug("Resolved %d mappings for %s from %s", len(mapping_set.mappings), destination_id, source)
        return ResolveResult(mapping_set, source, errors)

    async def auto_detect(self, destination_id: str) -> MappingSet:
        """Keyword-match the current schema; schema errors propagate."""
        schema = await self.schema_service.get_schema(destination_id)
        mapping_set = detect_mappings(schema, self.compatibility)
        mapping_set.destination_id = destination_id
        logger.info("Auto-detected %d mappings for %s", len(mapping_set.mappings), destination_id)
        return mapping_set

    def minimal_default(
        self, destination_id: str, schema: DestinationSchema | None = None
    ) -> MappingSet:
        return minimal_default(destination_id, schema)

    def validate(
        self, mapping_set: MappingSet, schema: DestinationSchema | None = None
    ) -> list[MappingValidationError]:
        """Every violation in the enabled mappings, reported together.

        With a schema, mappings are also checked against the live properties.
        """
        errors: list[MappingValidationError] = []
        title_seen = False

        for mapping_id, mapping in mapping_set.enabled().items():
            if not mapping.destination_property_id or not mapping.destination_property_name:
                errors.append(MappingValidationError(mapping_id, "no destination property"))
                continue
            if mapping.destination_type.is_auto_managed:
                errors.append(
                    MappingValidationError(
                        mapping_id,
                        f"{mapping.destination_type.value} properties are computed by Notion",
                        destination_type=mapping.destination_type.value,
                    )
                )
                continue

            prop = None
            if schema is not None:
                prop = schema.by_id(mapping.destination_property_id) or schema.by_name(
                    mapping.destination_property_name
                )
                if prop is None:
                    errors.append(
                        MappingValidationError(
                            mapping_id,
                            f"property '{mapping.destination_property_name}' no longer exists",
                        )
                    )
                    continue
                if prop.type is not mapping.destination_type:
                    errors.append(
                        MappingValidationError(
                            mapping_id,
                            f"property '{prop.name}' is now {prop.type.value}, "
                            f"mapped as {mapping.destination_type.value}",
                            source_field=mapping.source_field or None,
                            destination_type=mapping.destination_type.value,
                        )
                    )
                    continue

            if mapping.is_static:
                errors.extend(_static_value_errors(mapping_id, mapping, prop))
            else:
                errors.extend(self.compatibility.validate(mapping_id, mapping))

            if mapping.is_title:
                if title_seen:
                    errors.append(
                        MappingValidationError(
                            mapping_id,
                            "only one mapping may fill the title property",
                            destination_type=PropertyType.TITLE.value,
                        )
                    )
                title_seen = True

        return errors

    def save(
        self,
        destination_id: str,
        mapping_set: MappingSet,
        schema: DestinationSchema | None = None,
    ) -> SaveResult:
        """Validate then persist. Nothing is written when validation fails."""
        errors = self.validate(mapping_set, schema)
        if errors:
            logger.info("Rejected mappings for %s: %d error(s)", destination_id, len(errors))
            return SaveResult(
                success=False,
                errors=errors,
                mapping_set=mapping_set,
                message=f"{len(errors)} invalid mapping(s)",
            )
        self._states[destination_id] = MappingState.VALIDATED

        to_save = mapping_set.model_copy(deep=True)
        to_save.destination_id = destination_id
        to_save.touch()
        try:
            warnings = self.store.save_mapping_set(destination_id, to_save)
        except PersistenceError as e:
            return SaveResult(success=False, warnings=e.warnings, mapping_set=mapping_set, message=str(e))

        self._states[destination_id] = MappingState.PERSISTED
        return SaveResult(success=True, warnings=warnings, mapping_set=to_save)

    async def ensure_required(
        self,
        mapping_set: MappingSet,
        required_field_ids: tuple[str, ...] | list[str] = REQUIRED_SOURCE_FIELDS,
        create_missing: bool = False,
    ) -> tuple[MappingSet, bool]:
        """Add a mapping for each required field that lacks one.

        Returns the set (a copy when changed) and whether it needs writing back.
        Idempotent: a second call with the result reports no change.
        """
        destination_id = mapping_set.destination_id
        missing = [
            field_id
            for field_id in required_field_ids
            if mapping_set.find_source_field(field_id) is None
        ]
        if not missing:
            return mapping_set, False

        try:
            schema = await self.schema_service.get_schema(destination_id)
        except SchemaFetchError as e:
            logger.warning("Cannot add required mappings for %s: %s", destination_id, e)
            return mapping_set, False

        result = mapping_set.model_copy(deep=True)
        changed = False
        for field_id in missing:
            name, prop_type = REQUIRED_PROPERTIES.get(
                field_id, (SOURCE_FIELDS.get(field_id, field_id), PropertyType.RICH_TEXT)
            )
            prop = schema.by_name(name)
            if prop is not None and not self.compatibility.is_compatible(field_id, prop.type):
                prop = None
            if prop is not None:
                # The required property belongs to this field
                for key, mapping in result.enabled().items():
                    if mapping.destination_property_id == prop.id:
                        mapping.enabled = False
                        changed = True
                        logger.warning(
                            "Disabled mapping %s: %s is reserved for %s", key, prop.name, field_id
                        )
            else:
                used = {mapping.destination_property_id for mapping in result.enabled().values()}
                prop = match_property(
                    field_id, mappable_properties(schema), used, self.compatibility, allow_title=False
                )
            if prop is None and create_missing:
                prop = await self.schema_service.add_property(destination_id, name, prop_type)
                schema = await self.schema_service.get_schema(destination_id)
            if prop is None:
                logger.warning("No property for required field %s on %s", field_id, destination_id)
                continue

            existing = result.mappings.get(field_id)
            key = field_id if existing is None or not existing.enabled else f"{field_id}_required"
            result.mappings[key] = _mapping_for(field_id, prop, is_required=True, auto_created=True)
            changed = True
            logger.info("Added required mapping %s -> %s", field_id, prop.name)

        if not changed:
            return mapping_set, False
        result.touch()
        return result, True

    def reset(self, destination_id: str) -> None:
        """Delete the stored set from every tier."""
        self.store.delete_mapping_set(destination_id)
        self._states[destination_id] = MappingState.UNINITIALIZED
