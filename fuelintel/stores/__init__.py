"""Storage boundaries: key-value cache, session store and price repository."""

from fuelintel.stores.kv import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from fuelintel.stores.prices import InMemoryPriceRepository, PriceRepository, Station, StationPrices
from fuelintel.stores.session import SessionStore

__all__ = [
    "InMemoryKeyValueStore",
    "InMemoryPriceRepository",
    "KeyValueStore",
    "PriceRepository",
    "RedisKeyValueStore",
    "SessionStore",
    "Station",
    "StationPrices",
]
