"""Multi-tier persistence for mapping sets and the config record."""

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from gmail2notion.exceptions import PersistenceError, PersistenceWarning
from gmail2notion.models import ConfigRecord, MappingSet
from gmail2notion.storage.backends import JsonFileStore, KeyValueStore, TTLCache
from gmail2notion.storage.tiers import CacheTier, ConfigObjectTier, PropertiesTier, Tier

logger = logging.getLogger(__name__)

CONFIG_CACHE_KEY = "config_v3"
CONFIG_STORE_KEY = "G2N_CONFIG"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _freshness(mapping_set: MappingSet) -> datetime:
    last_updated = mapping_set.metadata.last_updated
    if last_updated is None:
        return _EPOCH
    if last_updated.tzinfo is None:
        return last_updated.replace(tzinfo=timezone.utc)
    return last_updated


class ConfigStore:
    """Reads fall back tier by tier; writes fan out to every tier.

    Tier order is memory cache, script properties, user properties, then the
    in-process config record. A write succeeds when at least one of the two
    durable tiers accepted it.
    """

    def __init__(
        self,
        cache: TTLCache,
        script_store: KeyValueStore,
        user_store: KeyValueStore,
        cache_ttl: float = 600,
        config_cache_ttl: float = 600,
    ):
        self.cache = cache
        self.script_store = script_store
        self.user_store = user_store
        self.config_cache_ttl = config_cache_ttl
        self._record: ConfigRecord | None = None

        self.cache_tier = CacheTier(cache, cache_ttl)
        self.object_tier = ConfigObjectTier(lambda: self._record)
        self.tiers: list[Tier] = [
            self.cache_tier,
            PropertiesTier("script_properties", script_store),
            PropertiesTier("user_properties", user_store),
            self.object_tier,
        ]

    @classmethod
    def from_settings(cls, settings: Any) -> "ConfigStore":
        """File-backed store rooted at ``settings.data_dir``."""
        return cls(
            cache=TTLCache(default_ttl=settings.cache_ttl_seconds),
            script_store=JsonFileStore(settings.script_store_path),
            user_store=JsonFileStore(settings.user_store_path),
            cache_ttl=settings.cache_ttl_seconds,
            config_cache_ttl=settings.config_cache_ttl_seconds,
        )

    @property
    def durable_tiers(self) -> list[Tier]:
        return [tier for tier in self.tiers if tier.durable]

    # =========================================================================
    # Mapping sets
    # =========================================================================

    def _probe(self, tier: Tier, destination_id: str) -> MappingSet | None:
        try:
            mapping_set = tier.load(destination_id)
        except Exception as e:
            logger.warning("Reading mappings for %s from %s failed: %s", destination_id, tier.name, e)
            return None
        if mapping_set is None or mapping_set.is_empty:
            logger.debug("Mappings for %s: miss on %s", destination_id, tier.name)
            return None
        logger.debug("Mappings for %s: hit on %s", destination_id, tier.name)
        return mapping_set

    def _write_quietly(self, tier: Tier, mapping_set: MappingSet) -> None:
        try:
            tier.save(mapping_set)
        except Exception as e:
            logger.warning(
                "Re-seeding %s for %s failed: %s", tier.name, mapping_set.destination_id, e
            )

    def load_mapping_set(self, destination_id: str) -> MappingSet | None:
        """Return the stored set, or None when no tier holds a non-empty one.

        On a cache miss every slower tier is read, the freshest copy wins, and
        tiers that missed or held an older copy are written back.
        """
        cached = self._probe(self.cache_tier, destination_id)
        if cached is not None:
            return cached

        found: list[tuple[Tier, MappingSet]] = []
        missed: list[Tier] = []
        for tier in self.tiers:
            if tier is self.cache_tier:
                continue
            mapping_set = self._probe(tier, destination_id)
            if mapping_set is None:
                missed.append(tier)
            else:
                found.append((tier, mapping_set))

        if not found:
            logger.debug("No stored mappings for %s", destination_id)
            return None

        best_tier, best = found[0]
        for tier, mapping_set in found[1:]:
            if _freshness(mapping_set) > _freshness(best):
                best_tier, best = tier, mapping_set
        logger.debug("Using mappings for %s from %s", destination_id, best_tier.name)

        self._write_quietly(self.cache_tier, best)
        stale = [tier for tier, mapping_set in found if _freshness(mapping_set) < _freshness(best)]
        for tier in missed + stale:
            if tier.durable or (tier is self.object_tier and self._record is not None):
                self._write_quietly(tier, best)

        return best

    def save_mapping_set(
        self, destination_id: str, mapping_set: MappingSet
    ) -> list[PersistenceWarning]:
        """Write to every tier, returning warnings for failed durable tiers.

        Raises:
            PersistenceError: Neither durable tier accepted the write. The cached
                copy is dropped so it cannot disagree with durable storage.
        """
        if mapping_set.destination_id != destination_id:
            mapping_set = mapping_set.model_copy(update={"destination_id": destination_id})

        warnings: list[PersistenceWarning] = []
        durable_ok = 0
        for tier in self.tiers:
            if tier is self.object_tier:
                continue
            try:
                tier.save(mapping_set)
            except Exception as e:
                if not tier.durable:
                    logger.warning("Writing %s to %s failed: %s", destination_id, tier.name, e)
                    continue
                warning = PersistenceWarning(tier.name, e)
                logger.warning(str(warning))
                warnings.append(warning)
            else:
                if tier.durable:
                    durable_ok += 1

        if durable_ok == 0:
            try:
                self.cache_tier.delete(destination_id)
            except Exception as e:
                logger.warning("Dropping cached mappings for %s failed: %s", destination_id, e)
            error = PersistenceError(destination_id, warnings)
            logger.error(str(error))
            raise error

        if self._record is None:
            self.load_config()
        try:
            self.object_tier.save(mapping_set)
        except Exception as e:
            logger.warning("Writing %s to %s failed: %s", destination_id, self.object_tier.name, e)
        else:
            self._persist_index()

        logger.info(
            "Saved %d mappings for %s (%d durable tier(s) ok)",
            len(mapping_set.mappings),
            destination_id,
            durable_ok,
        )
        return warnings

    def invalidate(self, destination_id: str) -> None:
        """Drop the cached copy only; the next load reads the durable tiers."""
        self.cache_tier.invalidate(destination_id)

    def delete_mapping_set(self, destination_id: str) -> None:
        """Remove the set from every tier."""
        self.load_config()
        for tier in self.tiers:
            try:
                tier.delete(destination_id)
            except Exception as e:
                logger.warning("Deleting %s from %s failed: %s", destination_id, tier.name, e)
        self._persist_index()
        logger.info("Deleted mappings for %s", destination_id)

    def destination_ids(self) -> list[str]:
        """Every destination with stored mappings, in first-seen order."""
        ids: list[str] = []
        sources: list[list[str]] = []
        if self._record is not None:
            sources.append(self._record.mapping_index)
        for tier in self.durable_tiers:
            if isinstance(tier, PropertiesTier):
                try:
                    sources.append(tier.destination_ids())
                except Exception as e:
                    logger.warning("Listing %s failed: %s", tier.name, e)
        for source in sources:
            for destination_id in source:
                if destination_id not in ids:
                    ids.append(destination_id)
        return ids

    # =========================================================================
    # Config record
    # =========================================================================

    def load_config(self) -> ConfigRecord:
        """Live record if loaded, else cache, else a durable store, else defaults."""
        if self._record is not None:
            return self._record

        data = self._read_config(self.cache.get, CONFIG_CACHE_KEY, "memory_cache")
        from_cache = data is not None
        if data is None:
            data = self._read_config(self.script_store.get, CONFIG_STORE_KEY, "script_properties")
        if data is None:
            data = self._read_config(self.user_store.get, CONFIG_STORE_KEY, "user_properties")

        record = None
        if data is not None:
            try:
                record = ConfigRecord.from_storage(data)
            except ValueError as e:
                logger.warning("Stored config is invalid, using defaults: %s", e)
        if record is None:
            logger.debug("No stored config, using defaults")
            record = ConfigRecord()
        elif not from_cache:
            self.cache.set(CONFIG_CACHE_KEY, record.to_storage(), self.config_cache_ttl)

        self._record = record
        return record

    def _read_config(
        self, getter: Callable[[str], Any], key: str, tier_name: str
    ) -> dict[str, Any] | None:
        try:
            data = getter(key)
        except Exception as e:
            logger.warning("Reading config from %s failed: %s", tier_name, e)
            return None
        if data is not None and not isinstance(data, dict):
            logger.warning("Config in %s is not an object, ignoring", tier_name)
            return None
        return data

    def save_config(self, record: ConfigRecord) -> list[PersistenceWarning]:
        """Replace the stored record in every tier.

        Raises:
            PersistenceError: Neither durable store accepted the record.
        """
        record.system.initialized = True
        if self._record is not None and record is not self._record:
            # keep mapping sets already loaded in this invocation
            for destination_id, mapping_set in self._record.mappings.items():
                record.mappings.setdefault(destination_id, mapping_set)
        self._record = record
        data = record.to_storage()

        warnings: list[PersistenceWarning] = []
        for name, store in (("script_properties", self.script_store), ("user_properties", self.user_store)):
            try:
                store.set(CONFIG_STORE_KEY, data)
            except Exception as e:
                warning = PersistenceWarning(name, e)
                logger.warning(str(warning))
                warnings.append(warning)

        if len(warnings) == 2:
            self.cache.delete(CONFIG_CACHE_KEY)
            error = PersistenceError("config", warnings)
            logger.error(str(error))
            raise error

        self.cache.set(CONFIG_CACHE_KEY, data, self.config_cache_ttl)
        return warnings

    def reset_config(self) -> ConfigRecord:
        """Delete the stored record everywhere and start from defaults."""
        self.cache.delete(CONFIG_CACHE_KEY)
        for name, store in (("script_properties", self.script_store), ("user_properties", self.user_store)):
            try:
                store.delete(CONFIG_STORE_KEY)
            except Exception as e:
                logger.warning("Deleting config from %s failed: %s", name, e)
        self._record = ConfigRecord()
        return self._record

    def _persist_index(self) -> None:
        if self._record is None:
            return
        try:
            self.save_config(self._record)
        except PersistenceError as e:
            logger.warning("Mapping index not persisted: %s", e)
