"""Client-side mirror of the stations collection."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from .backend.base import BaseStore, ChangeKind, DocumentChange, Query, Unsubscribe
from .const import STATIONS_COLLECTION
from .documents import station_from_document
from .exceptions import BackendError
from .models import Station, StationAvailability, StationFilter, StationStatus

_LOGGER = logging.getLogger(__name__)

StationListener = Callable[[list[Station]], None]


def station_availability(station: Station) -> StationAvailability:
    if station.status is not StationStatus.OPERATIONAL:
        return StationAvailability.MAINTENANCE
    if station.slots.available == 0:
        return StationAvailability.BUSY
    return StationAvailability.AVAILABLE


def station_matches(station: Station, station_filter: StationFilter) -> bool:
    term = station_filter.search_term.strip().lower()
    if term and term not in station.name.lower():
        return False
    if station_filter.charger_type and station_filter.charger_type not in station.charger_types:
        return False
    if station_filter.amenity and station_filter.amenity not in station.amenities:
        return False
    if station_filter.available_only and station.slots.available <= 0:
        return False
    return True


def filter_stations(stations: Sequence[Station], station_filter: StationFilter) -> list[Station]:
    return [station for station in stations if station_matches(station, station_filter)]


class StationState:
    """Stations as last reported by the store's change notifications.

    One instance per client session; pass it to whatever renders stations
    instead of sharing module-level lists.
    """

    def __init__(self) -> None:
        self._stations: dict[str, Station] = {}
        self._listeners: dict[int, StationListener] = {}
        self._next_listener = 0
        self._unsubscribe: Unsubscribe | None = None

    @property
    def stations(self) -> list[Station]:
        return sorted(self._stations.values(), key=lambda station: (station.name, station.id))

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def get(self, station_id: str) -> Station | None:
        return self._stations.get(station_id)

    def filtered(self, station_filter: StationFilter) -> list[Station]:
        return filter_stations(self.stations, station_filter)

    def add_listener(self, callback: StationListener) -> Callable[[], None]:
        listener_id = self._next_listener
        self._next_listener += 1
        self._listeners[listener_id] = callback

        def remove() -> None:
            self._listeners.pop(listener_id, None)

        return remove

    def apply(self, changes: Sequence[DocumentChange]) -> None:
        for change in changes:
            if change.collection != STATIONS_COLLECTION:
                continue
            if change.kind is ChangeKind.REMOVED:
                self._stations.pop(change.document.id, None)
                continue
            try:
                station = station_from_document(change.document)
            except BackendError:
                _LOGGER.warning("Skipping invalid station document %s", change.document.id)
                continue
            self._stations[station.id] = station
        snapshot = self.stations
        for callback in list(self._listeners.values()):
            callback(snapshot)

    async def attach(self, store: BaseStore) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = await store.subscribe(Query(STATIONS_COLLECTION), self.apply)
        _LOGGER.debug("Station state attached to backend %s", store.backend_id)

    def detach(self) -> None:
        if self._unsubscribe is None:
            return
        self._unsubscribe()
        self._unsubscribe = None
