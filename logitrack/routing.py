"""Route distance estimation for transport requests.

Each leg of a route (origin, waypoints in order, destination) is priced from
the Google Maps Distance Matrix. Live legs are written to the route cache in
both directions; a leg whose live lookup keeps failing falls back to the
cache, and the result says which legs did so and how old their data is.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

import googlemaps
import structlog
from googlemaps.exceptions import ApiError, TransportError

from .errors import RouteLookupError
from .models import parse_timestamp
from .storage import LocalStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RouteLeg:
    origin: str
    destination: str
    distance_km: float
    from_cache: bool
    attempts: int
    cached_at: Optional[datetime] = None


@dataclass(frozen=True)
class DistanceLookupResult:
    """Total route distance plus the per-leg breakdown it was built from."""

    distance_km: float
    legs: tuple[RouteLeg, ...]
    message: str = ""

    @property
    def from_cache(self) -> bool:
        return any(leg.from_cache for leg in self.legs)

    @property
    def attempts(self) -> int:
        return max((leg.attempts for leg in self.legs), default=0)

    @property
    def cached_legs(self) -> list[int]:
        """1-based positions of the legs served from the route cache."""

        return [index for index, leg in enumerate(self.legs, start=1) if leg.from_cache]

    @property
    def cached_at(self) -> Optional[datetime]:
        """Age of the stalest cached leg, if any leg came from the cache."""

        stamps = [leg.cached_at for leg in self.legs if leg.from_cache and leg.cached_at]
        return min(stamps, default=None)


class RouteEstimator:
    """Prices route legs through ``googlemaps`` with the local route cache as fallback."""

    MAX_RETRIES = 3
    RETRY_DELAY_SECONDS = 0.75

    def __init__(self, api_key: str, store: Optional[LocalStore] = None) -> None:
        self._store = store
        self.client = None
        if not api_key:
            return
        try:
            self.client = googlemaps.Client(key=api_key)
        except (ApiError, TransportError, ValueError) as exc:
            raise RouteLookupError(f"Google Maps client rejected the configured key: {exc}") from exc

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def estimate(
        self, origin: str, destination: str, waypoints: Sequence[str] = ()
    ) -> DistanceLookupResult:
        start, end = origin.strip(), destination.strip()
        if not start or not end:
            raise RouteLookupError("Both origin and destination addresses must be provided.")
        stops = [start, *(stop.strip() for stop in waypoints if stop.strip()), end]

        legs = tuple(self._leg(a, b) for a, b in zip(stops, stops[1:]))
        notes = [
            f"Leg {index} ({leg.origin} to {leg.destination}) uses the cached distance"
            + (f" from {leg.cached_at:%d/%m/%Y %H:%M}." if leg.cached_at else ".")
            for index, leg in enumerate(legs, start=1)
            if leg.from_cache
        ]
        return DistanceLookupResult(
            distance_km=round(sum(leg.distance_km for leg in legs), 2),
            legs=legs,
            message=" ".join(notes),
        )

    def _leg(self, origin: str, destination: str) -> RouteLeg:
        if self.client is None:
            cached = self._cached_leg(origin, destination, attempts=0)
            if cached is None:
                raise RouteLookupError(
                    f"No cached distance for {origin} to {destination} and Google Maps "
                    "is not configured. Enter the distance manually."
                )
            return cached

        last_error: Optional[RouteLookupError] = None
        for attempt in range(1, self.MAX_RETRIES + 1):
            try:
                distance = self._matrix_distance(origin, destination)
            except RouteLookupError as exc:
                last_error = exc
                logger.warning(
                    "route_leg_lookup_failed",
                    origin=origin,
                    destination=destination,
                    attempt=attempt,
                    error=str(exc),
                )
                if attempt < self.MAX_RETRIES:
                    time.sleep(self.RETRY_DELAY_SECONDS)
                continue
            if self._store is not None:
                self._store.upsert_route_cache(origin, destination, distance)
                self._store.upsert_route_cache(destination, origin, distance)
            return RouteLeg(origin, destination, distance, from_cache=False, attempts=attempt)

        cached = self._cached_leg(origin, destination, attempts=self.MAX_RETRIES)
        if cached is not None:
            logger.info("route_leg_cache_fallback", origin=origin, destination=destination)
            return cached
        raise RouteLookupError(
            f"Distance lookup for {origin} to {destination} failed after "
            f"{self.MAX_RETRIES} attempts: {last_error}"
        ) from last_error

    def _matrix_distance(self, origin: str, destination: str) -> float:
        try:
            matrix = self.client.distance_matrix(
                origins=[origin], destinations=[destination], mode="driving", units="metric"
            )
        except (ApiError, TransportError) as exc:
            raise RouteLookupError(f"Distance Matrix request failed: {exc}") from exc

        if matrix.get("status") != "OK":
            raise RouteLookupError(f"Distance Matrix status {matrix.get('status')}")
        try:
            element = matrix["rows"][0]["elements"][0]
        except (KeyError, IndexError, TypeError):
            raise RouteLookupError("Distance Matrix returned no route element.") from None
        if element.get("status") != "OK":
            raise RouteLookupError(f"No driving route found ({element.get('status')})")
        meters = element.get("distance", {}).get("value")
        if meters is None:
            raise RouteLookupError("Distance Matrix element carries no distance.")
        return round(meters / 1000.0, 2)

    def _cached_leg(self, origin: str, destination: str, *, attempts: int) -> Optional[RouteLeg]:
        if self._store is None:
            return None
        record = self._store.fetch_route_cache(origin, destination)
        if record is None:
            return None
        return RouteLeg(
            origin,
            destination,
            float(record["distance_km"]),
            from_cache=True,
            attempts=attempts,
            cached_at=parse_timestamp(record["updated_at"]),
        )


__all__ = ["DistanceLookupResult", "RouteEstimator", "RouteLeg"]
