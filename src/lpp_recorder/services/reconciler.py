"""Snapshot reconciliation.

One cycle walks every station (trips, then timetables for the station's
route groups) and builds an index of trip timetables keyed by route and
station. It then walks every route trip, fetches its stations and joins each
of them to the indexed timetable. Join misses are logged and counted, never
raised; a fetch that fails permanently (or exhausts its retries) aborts the
whole cycle so that no partial snapshot is written.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, TypeVar

from lpp_recorder.data.config import LppApiConfig
from lpp_recorder.data.errors import (
    ApiTransportError,
    ApiUnsuccessfulError,
    ClientHttpError,
    RateLimitedError,
    ServerHttpError,
)
from lpp_recorder.models.lpp import (
    RouteDetails,
    RouteGroupTimetable,
    RouteId,
    RouteShape,
    Station,
    StationCode,
    StationOnRoute,
    TimetableFetchMode,
    TripId,
    TripOnStation,
    TripTimetable,
)
from lpp_recorder.models.route import BaseRouteIdentifier, RouteIdentifier
from lpp_recorder.models.snapshots import (
    RoutesSnapshot,
    RouteWithStationsAndTimetables,
    StationDetailsWithTripsAndTimetables,
    StationOnRouteWithTimetable,
    StationsSnapshot,
)
from lpp_recorder.services.retry import (
    Permanent,
    RetryError,
    RetryPolicy,
    Success,
    Transient,
    Verdict,
    execute,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LppDataSource(Protocol):
    """The fetch operations a reconciliation cycle needs (see LppClient)."""

    async def fetch_station_details(self) -> list[Station]: ...

    async def fetch_routes_on_station(self, station_code: StationCode) -> list[TripOnStation]: ...

    async def fetch_timetable(
        self,
        station_code: StationCode,
        route_groups: list[BaseRouteIdentifier],
        mode: TimetableFetchMode,
    ) -> list[RouteGroupTimetable]: ...

    async def fetch_all_routes(self) -> list[RouteDetails]: ...

    async def fetch_route_with_shape(self, route_id: RouteId) -> list[RouteDetails]: ...

    async def fetch_stations_on_route(self, trip_id: TripId) -> list[StationOnRoute] | None: ...


class SnapshotCycleError(Exception):
    """A reconciliation cycle failed; no snapshot was produced."""


class TimetableIndex:
    """Trip timetables keyed by route, then by station code."""

    def __init__(self):
        self._by_route: dict[RouteIdentifier, dict[StationCode, TripTimetable]] = {}

    def insert(
        self, route: RouteIdentifier, station_code: StationCode, timetable: TripTimetable
    ) -> bool:
        """Store a timetable, replacing any earlier one. Returns True if one was replaced."""
        stations = self._by_route.setdefault(route, {})
        replaced = station_code in stations
        stations[station_code] = timetable
        return replaced

    def has_route(self, route: RouteIdentifier) -> bool:
        return route in self._by_route

    def get(self, route: RouteIdentifier, station_code: StationCode) -> TripTimetable | None:
        return self._by_route.get(route, {}).get(station_code)

    def __len__(self) -> int:
        return sum(len(stations) for stations in self._by_route.values())


@dataclass
class ReconciliationStats:
    """Counts of join misses and skipped data in one cycle."""

    stations_without_trips: int = 0
    duplicate_timetables: int = 0
    routes_without_timetables: int = 0
    routes_without_stations: int = 0
    stations_without_timetable: int = 0
    routes_without_matches: int = 0

    def summary(self) -> str:
        return ", ".join(f"{name}={value}" for name, value in vars(self).items())


class ApiOutcomeClassifier:
    """Classifies the outcome of one LPP fetch for the retry executor.

    Stateful: other 4xx responses are retried only for a limited time
    measured from the first one, so use a fresh instance per fetch.
    """

    def __init__(self, api_config: LppApiConfig, clock: Callable[[], float] = time.monotonic):
        self._client_errors_are_permanent = api_config.client_errors_are_permanent
        self._client_error_budget = api_config.client_error_max_elapsed_seconds
        self._clock = clock
        self._first_client_error_at: float | None = None

    def __call__(self, outcome: Any) -> Verdict[Any]:
        if not isinstance(outcome, BaseException):
            return Success(outcome)

        if isinstance(outcome, RateLimitedError):
            return Transient(outcome, retry_after=outcome.retry_after)

        if isinstance(outcome, ClientHttpError):
            if self._client_errors_are_permanent:
                return Permanent(outcome)
            now = self._clock()
            if self._first_client_error_at is None:
                self._first_client_error_at = now
            if now - self._first_client_error_at >= self._client_error_budget:
                return Permanent(outcome)
            return Transient(outcome)

        if isinstance(outcome, (ApiTransportError, ServerHttpError, ApiUnsuccessfulError)):
            return Transient(outcome)

        # schema errors and anything unexpected
        return Permanent(outcome)


@dataclass
class SnapshotPair:
    """Both aggregates of one cycle, sharing captured_at."""

    captured_at: datetime
    stations: StationsSnapshot
    routes: RoutesSnapshot
    stats: ReconciliationStats


class SnapshotReconciler:
    """Fetches everything for one cycle and joins it into a SnapshotPair."""

    def __init__(
        self,
        source: LppDataSource,
        api_config: LppApiConfig,
        retry_policy: RetryPolicy | None = None,
        timetable_mode: TimetableFetchMode | None = None,
        fetch_route_shapes: bool = False,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._source = source
        self._api_config = api_config
        self._retry_policy = retry_policy or RetryPolicy()
        self._timetable_mode = timetable_mode or TimetableFetchMode.full_day()
        self._fetch_route_shapes = fetch_route_shapes
        self._sleep = sleep
        self._clock = clock
        self._now = now

    async def _fetch(self, what: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run one fetch through the retry executor.

        Raises:
            SnapshotCycleError: The fetch failed permanently or ran out of retries.
        """
        try:
            return await execute(
                operation,
                ApiOutcomeClassifier(self._api_config, clock=self._clock),
                self._retry_policy,
                sleep=self._sleep,
                clock=self._clock,
            )
        except RetryError as e:
            raise SnapshotCycleError(f"Failed to fetch {what}.") from e

    async def capture(self) -> SnapshotPair:
        """Run one reconciliation cycle.

        Raises:
            SnapshotCycleError: A required fetch failed.
        """
        stats = ReconciliationStats()
        index = TimetableIndex()

        station_details = await self._capture_stations(index, stats)
        logger.info(
            f"Indexed {len(index)} trip timetables from {len(station_details)} stations."
        )

        routes = await self._capture_routes(index, stats)
        logger.info(f"Joined {len(routes)} routes with their station timetables.")

        captured_at = self._now()
        logger.info(f"Reconciliation finished: {stats.summary()}")

        return SnapshotPair(
            captured_at=captured_at,
            stations=StationsSnapshot(captured_at=captured_at, station_details=station_details),
            routes=RoutesSnapshot(captured_at=captured_at, routes=routes),
            stats=stats,
        )

    async def _capture_stations(
        self, index: TimetableIndex, stats: ReconciliationStats
    ) -> list[StationDetailsWithTripsAndTimetables]:
        stations = await self._fetch("station details", self._source.fetch_station_details)
        logger.info(f"Fetched {len(stations)} stations.")

        details: list[StationDetailsWithTripsAndTimetables] = []
        for station in stations:
            code = station.station_code
            trips = await self._fetch(
                f"routes on station {code}",
                lambda: self._source.fetch_routes_on_station(code),
            )
            if not trips:
                logger.debug(f"Station {code} ({station.name}) has no trips, skipping.")
                stats.stations_without_trips += 1
                continue

            route_groups = list(dict.fromkeys(trip.route.to_base() for trip in trips))
            timetables = await self._fetch(
                f"timetable for station {code}",
                lambda: self._source.fetch_timetable(code, route_groups, self._timetable_mode),
            )

            for group in timetables:
                for trip_timetable in group.trip_timetables:
                    if index.insert(trip_timetable.route, code, trip_timetable):
                        logger.warning(
                            f"Duplicate timetable for route {trip_timetable.route} "
                            f"on station {code}, keeping the last one."
                        )
                        stats.duplicate_timetables += 1

            details.append(
                StationDetailsWithTripsAndTimetables.from_station_and_trips(
                    station, trips, timetables
                )
            )

        return details

    async def _capture_routes(
        self, index: TimetableIndex, stats: ReconciliationStats
    ) -> list[RouteWithStationsAndTimetables]:
        all_routes = await self._fetch("all routes", self._source.fetch_all_routes)
        logger.info(f"Fetched {len(all_routes)} route trips.")

        shapes: dict[RouteId, dict[TripId, RouteShape | None]] = {}
        routes: list[RouteWithStationsAndTimetables] = []

        for route in all_routes:
            if not index.has_route(route.route):
                logger.warning(
                    f"No timetables indexed for route {route.route} "
                    f"(trip {route.trip_id}), skipping."
                )
                stats.routes_without_timetables += 1
                continue

            trip_id = route.trip_id
            stations_on_route = await self._fetch(
                f"stations on route {route.route} (trip {trip_id})",
                lambda: self._source.fetch_stations_on_route(trip_id),
            )
            route_captured_at = self._now()
            if not stations_on_route:
                logger.warning(f"Route {route.route} (trip {trip_id}) has no stations, skipping.")
                stats.routes_without_stations += 1
                continue

            matched: list[StationOnRouteWithTimetable] = []
            for station in stations_on_route:
                timetable = index.get(route.route, station.station_code)
                if timetable is None:
                    logger.debug(
                        f"No timetable for route {route.route} on station "
                        f"{station.station_code}, skipping station."
                    )
                    stats.stations_without_timetable += 1
                    continue
                matched.append(StationOnRouteWithTimetable(station=station, timetable=timetable))

            if not matched:
                logger.warning(
                    f"No station of route {route.route} (trip {trip_id}) has a timetable, "
                    f"dropping route."
                )
                stats.routes_without_matches += 1
                continue

            if self._fetch_route_shapes:
                route = await self._with_shape(route, shapes)

            routes.append(
                RouteWithStationsAndTimetables(
                    captured_at=route_captured_at,
                    route_details=route,
                    stations_on_route_with_timetables=matched,
                )
            )

        return routes

    async def _with_shape(
        self,
        route: RouteDetails,
        shapes: dict[RouteId, dict[TripId, RouteShape | None]],
    ) -> RouteDetails:
        """Attach the trip's shape, fetching each route's shapes once per cycle."""
        route_id = route.route_id
        if route_id not in shapes:
            trips = await self._fetch(
                f"shape of route {route_id}",
                lambda: self._source.fetch_route_with_shape(route_id),
            )
            shapes[route_id] = {trip.trip_id: trip.route_shape for trip in trips}

        shape = shapes[route_id].get(route.trip_id)
        if shape is None:
            logger.debug(f"No shape returned for route {route.route} (trip {route.trip_id}).")
            return route
        return route.model_copy(update={"route_shape": shape})
