"""Price and preference repository: the boundary to persistent fuel data.

The conversational core only reads current prices, lists a user's stations
and writes notification preferences. Storage, aggregation and schema live
behind PriceRepository. Absent data is reported as None or an empty list;
a store that cannot answer right now raises TransientStoreError.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any

import yaml

from fuelintel.core.errors import TransientStoreError
from fuelintel.model.session import utcnow

logger = logging.getLogger(__name__)

FUEL_TYPES = ("regular", "premium", "diesel")


@dataclass(frozen=True)
class Station:
    """A station a user has registered.

    Attributes:
        station_id: Stable identifier (regulator permit number).
        name: Display name.
        alias: Short name the user gave the station, if any.
        brand: Brand, lower-cased (e.g., "pemex").
        municipality: Municipality for display.
    """

    station_id: str
    name: str
    alias: str | None = None
    brand: str | None = None
    municipality: str | None = None

    @property
    def label(self) -> str:
        return self.alias or self.name


@dataclass
class StationPrices:
    """Current prices for one station, keyed by fuel type."""

    station_id: str
    prices: dict[str, float] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=utcnow)

    def price(self, fuel_type: str) -> float | None:
        return self.prices.get(fuel_type)


class PriceRepository(ABC):
    """Read prices and stations, write notification preferences."""

    @abstractmethod
    async def get_current_prices(self, station_id: str) -> StationPrices | None:
        """Current prices for a station, None if the station is unknown.

        Raises:
            TransientStoreError: If the store is temporarily unavailable.
        """
        ...

    @abstractmethod
    async def get_user_stations(self, user_key: str) -> list[Station]:
        """Stations registered by a user, empty when none.

        Raises:
            TransientStoreError: If the store is temporarily unavailable.
        """
        ...

    @abstractmethod
    async def get_average_prices(self, fuel_type: str | None = None) -> dict[str, float] | None:
        """Market average price per fuel type.

        Args:
            fuel_type: Restrict to one fuel type. None returns all types.

        Returns:
            Mapping of fuel type to average, or None if there is no data.

        Raises:
            TransientStoreError: If the store is temporarily unavailable.
        """
        ...

    @abstractmethod
    async def save_notification_preferences(self, user_key: str, prefs: dict[str, Any]) -> None:
        """Persist a user's notification preferences.

        Raises:
            TransientStoreError: If the store is temporarily unavailable.
        """
        ...


class InMemoryPriceRepository(PriceRepository):
    """Dictionary-backed repository for development and tests.

    Seed it directly or from a YAML file shaped like::

        stations:
          - station_id: "PL/12345"
            name: "Pemex Centro"
            alias: "Casa"
            brand: pemex
            prices: {regular: 22.49, premium: 24.19, diesel: 23.79}
        users:
          "telegram:42": ["PL/12345"]

    Setting ``available`` to False makes every call raise TransientStoreError,
    which is how tests simulate an outage.
    """

    def __init__(self):
        self._stations: dict[str, Station] = {}
        self._prices: dict[str, StationPrices] = {}
        self._user_stations: dict[str, list[str]] = {}
        self.preferences: dict[str, dict[str, Any]] = {}
        self.available = True
        self._lock = Lock()

    @classmethod
    def from_yaml(cls, path: str | Path) -> "InMemoryPriceRepository":
        """Build a repository from a YAML seed file.

        Raises:
            FileNotFoundError: If the seed file does not exist.
            ValueError: If the seed file is malformed.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Price seed file not found: {path}")

        with path.open() as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Price seed file must contain a mapping: {path}")

        repo = cls()
        for entry in data.get("stations") or []:
            try:
                station = Station(
                    station_id=str(entry["station_id"]),
                    name=entry["name"],
                    alias=entry.get("alias"),
                    brand=(entry.get("brand") or "").lower() or None,
                    municipality=entry.get("municipality"),
                )
            except (KeyError, TypeError) as e:
                raise ValueError(f"Invalid station entry in {path}: {entry!r}") from e
            repo.add_station(station, entry.get("prices") or {})

        for user_key, station_ids in (data.get("users") or {}).items():
            for station_id in station_ids:
                repo.register_station(str(user_key), str(station_id))

        logger.info(f"Seeded price repository from {path}: {len(repo._stations)} station(s)")
        return repo

    def add_station(self, station: Station, prices: dict[str, float] | None = None) -> None:
        with self._lock:
            self._stations[station.station_id] = station
            self._prices[station.station_id] = StationPrices(
                station_id=station.station_id,
                prices={fuel: float(value) for fuel, value in (prices or {}).items()},
            )

    def register_station(self, user_key: str, station_id: str) -> None:
        with self._lock:
            if station_id not in self._stations:
                raise ValueError(f"Unknown station: {station_id}")
            owned = self._user_stations.setdefault(user_key, [])
            if station_id not in owned:
                owned.append(station_id)

    def _check_available(self) -> None:
        if not self.available:
            raise TransientStoreError("Price repository unavailable")

    async def get_current_prices(self, station_id: str) -> StationPrices | None:
        self._check_available()
        with self._lock:
            return self._prices.get(station_id)

    async def get_user_stations(self, user_key: str) -> list[Station]:
        self._check_available()
        with self._lock:
            return [self._stations[sid] for sid in self._user_stations.get(user_key, [])]

    async def get_average_prices(self, fuel_type: str | None = None) -> dict[str, float] | None:
        self._check_available()
        fuel_types = (fuel_type,) if fuel_type else FUEL_TYPES
        averages: dict[str, float] = {}
        with self._lock:
            for fuel in fuel_types:
                values = [p.prices[fuel] for p in self._prices.values() if fuel in p.prices]
                if values:
                    averages[fuel] = round(sum(values) / len(values), 2)
        return averages or None

    async def save_notification_preferences(self, user_key: str, prefs: dict[str, Any]) -> None:
        self._check_available()
        with self._lock:
            self.preferences[user_key] = dict(prefs)
        logger.info(f"Saved notification preferences for {user_key}")
