"""Layered persistence for mapping sets and the configuration record."""

from gmail2notion.storage.backends import JsonFileStore, KeyValueStore, MemoryStore, TTLCache
from gmail2notion.storage.config_store import ConfigStore
from gmail2notion.storage.tiers import CacheTier, ConfigObjectTier, PropertiesTier, Tier

__all__ = [
    "CacheTier",
    "ConfigObjectTier",
    "ConfigStore",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "PropertiesTier",
    "TTLCache",
    "Tier",
]
