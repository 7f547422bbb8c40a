"""Great-circle distance and nearby-store ranking.

Everything here is pure: callers pass in already-loaded stores and get back ranked
views, so the ranking can be tested without a database.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence
from urllib.parse import urlencode

from engage_api.models.store import Store

EARTH_RADIUS_KM = 6371.0
_MAPS_DIRECTIONS_URL = "https://www.google.com/maps/dir/"


@dataclass(slots=True)
class RankedStore:
    store: Store
    distance_km: float | None
    maps_url: str | None


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def is_valid_coordinates(lat: float | None, lng: float | None) -> bool:
    if lat is None or lng is None:
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def maps_url(lat: float | None, lng: float | None, place_id: str | None = None) -> str | None:
    """Google Maps directions link, preferring the place id when the store has one."""

    if place_id:
        return f"{_MAPS_DIRECTIONS_URL}?{urlencode({'api': 1, 'destination_place_id': place_id})}"
    if lat is None or lng is None:
        return None
    return f"{_MAPS_DIRECTIONS_URL}?api=1&destination={lat},{lng}"


def _store_link(store: Store) -> str | None:
    return maps_url(store.latitude, store.longitude, store.place_id)


def _fallback_order(stores: Iterable[Store], limit: int) -> list[RankedStore]:
    ordered = sorted(stores, key=lambda store: (-(store.weight or 0), store.name or ""))
    return [RankedStore(store=store, distance_km=None, maps_url=_store_link(store)) for store in ordered[:limit]]


def rank_stores(
    stores: Sequence[Store],
    *,
    lat: float | None,
    lng: float | None,
    limit: int,
) -> list[RankedStore]:
    """Sort stores by distance from ``(lat, lng)`` and keep the closest ``limit``.

    Stores without coordinates sort after every located store. Without a usable
    origin the list is ordered by weight (descending) then name.
    """

    if limit <= 0:
        return []
    if not is_valid_coordinates(lat, lng):
        return _fallback_order(stores, limit)

    measured: list[tuple[float, Store]] = []
    for store in stores:
        if is_valid_coordinates(store.latitude, store.longitude):
            distance = haversine_km(lat, lng, store.latitude, store.longitude)  # type: ignore[arg-type]
        else:
            distance = math.inf
        measured.append((distance, store))
    measured.sort(key=lambda item: (item[0], item[1].name or ""))

    ranked: list[RankedStore] = []
    for distance, store in measured[:limit]:
        ranked.append(
            RankedStore(
                store=store,
                distance_km=round(distance, 1) if math.isfinite(distance) else None,
                maps_url=_store_link(store),
            )
        )
    return ranked


__all__ = [
    "EARTH_RADIUS_KM",
    "RankedStore",
    "haversine_km",
    "is_valid_coordinates",
    "maps_url",
    "rank_stores",
]
