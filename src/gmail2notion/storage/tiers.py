"""Storage tiers participating in the mapping fan-out/fallback scheme."""

from abc import ABC, abstractmethod
from collections.abc import Callable

from gmail2notion.models import ConfigRecord, MappingSet
from gmail2notion.storage.backends import KeyValueStore, TTLCache

MAPPING_KEY_PREFIX = "PROPERTY_MAPPINGS_"
CACHE_KEY_PREFIX = "mappings_"


def mapping_key(destination_id: str) -> str:
    return f"{MAPPING_KEY_PREFIX}{destination_id}"


class Tier(ABC):
    """One independent place a mapping set can live."""

    name: str = "tier"
    durable: bool = False

    @abstractmethod
    def load(self, destination_id: str) -> MappingSet | None:
        """Stored set for destination_id, or None."""

    @abstractmethod
    def save(self, mapping_set: MappingSet) -> None:
        """Replace the stored set; raises on failure."""

    @abstractmethod
    def delete(self, destination_id: str) -> None:
        """Remove the stored set."""

    def invalidate(self, destination_id: str) -> None:
        """Drop any cached copy. Durable tiers have nothing to invalidate."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class CacheTier(Tier):
    """Fast in-memory tier with a TTL."""

    name = "memory_cache"

    def __init__(self, cache: TTLCache, ttl: float):
        self.cache = cache
        self.ttl = ttl

    def load(self, destination_id: str) -> MappingSet | None:
        data = self.cache.get(CACHE_KEY_PREFIX + destination_id)
        return None if data is None else MappingSet.from_storage(destination_id, data)

    def save(self, mapping_set: MappingSet) -> None:
        self.cache.set(CACHE_KEY_PREFIX + mapping_set.destination_id, mapping_set.to_storage(), self.ttl)

    def delete(self, destination_id: str) -> None:
        self.cache.delete(CACHE_KEY_PREFIX + destination_id)

    def invalidate(self, destination_id: str) -> None:
        self.delete(destination_id)


class PropertiesTier(Tier):
    """Durable key-value tier; script-scoped and user-scoped tiers share this encoding."""

    durable = True

    def __init__(self, name: str, store: KeyValueStore):
        self.name = name
        self.store = store

    def load(self, destination_id: str) -> MappingSet | None:
        data = self.store.get(mapping_key(destination_id))
        return None if data is None else MappingSet.from_storage(destination_id, data)

    def save(self, mapping_set: MappingSet) -> None:
        self.store.set(mapping_key(mapping_set.destination_id), mapping_set.to_storage())

    def delete(self, destination_id: str) -> None:
        self.store.delete(mapping_key(destination_id))

    def destination_ids(self) -> list[str]:
        return [key[len(MAPPING_KEY_PREFIX) :] for key in self.store.keys(MAPPING_KEY_PREFIX)]


class ConfigObjectTier(Tier):
    """The live config record of the current invocation."""

    name = "config_object"

    def __init__(self, get_record: Callable[[], ConfigRecord | None]):
        self._get_record = get_record

    def load(self, destination_id: str) -> MappingSet | None:
        record = self._get_record()
        if record is None:
            return None
        mapping_set = record.mappings.get(destination_id)
        return None if mapping_set is None else mapping_set.model_copy(deep=True)

    def save(self, mapping_set: MappingSet) -> None:
        record = self._get_record()
        if record is None:
            raise RuntimeError("config record not loaded")
        record.mappings[mapping_set.destination_id] = mapping_set.model_copy(deep=True)
        record.index_mapping(mapping_set.destination_id)

    def delete(self, destination_id: str) -> None:
        record = self._get_record()
        if record is not None:
            record.unindex_mapping(destination_id)
