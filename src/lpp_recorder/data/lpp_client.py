"""Async HTTP client for the LPP open data API (https://data.lpp.si/api/)."""

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import TypeVar

import httpx

from lpp_recorder.data.config import LppApiConfig
from lpp_recorder.data.errors import (
    ApiSchemaError,
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
    Station,
    StationCode,
    StationOnRoute,
    TimetableFetchMode,
    TripId,
    TripOnStation,
    TripTimetable,
)
from lpp_recorder.models.raw import (
    ApiEnvelope,
    RawRouteDetails,
    RawRouteOnStation,
    RawStationDetails,
    RawStationOnRoute,
    RawTimetableData,
)
from lpp_recorder.models.route import BaseRouteIdentifier, RouteNameParseError

logger = logging.getLogger(__name__)

DataT = TypeVar("DataT")


def _parse_retry_after(value: str | None) -> float | None:
    """Retry-After in seconds; HTTP-date values are ignored."""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class LppClient:
    """Async HTTP client for fetching stations, routes and timetables.

    Every method makes exactly one request and raises one of the
    lpp_recorder.data.errors kinds on failure; retrying is up to the caller.

    Usage:
        async with LppClient(config) as client:
            stations = await client.fetch_station_details()
    """

    def __init__(self, config: LppApiConfig):
        """Initialize the client.

        Args:
            config: API base URL, user agent and timeout.
        """
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "LppClient":
        """Enter async context - create HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self._config.base_api_url,
            headers={"User-Agent": self._config.user_agent},
            timeout=self._config.timeout_seconds,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context - close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _get(
        self,
        path: str,
        params: list[tuple[str, str]] | None,
        envelope: type[ApiEnvelope[DataT]],
        description: str,
    ) -> DataT:
        """GET an endpoint and unwrap its {success, data} envelope.

        Raises:
            RuntimeError: If client not initialized.
            ApiTransportError: The request failed before a response arrived.
            RateLimitedError: 429 response.
            ClientHttpError: Any other 4xx response.
            ServerHttpError: 5xx response.
            ApiSchemaError: The body was not JSON or did not match the schema.
            ApiUnsuccessfulError: The envelope reported success=false.
        """
        if not self._client:
            raise RuntimeError("Client not initialized - use 'async with'")

        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise ApiTransportError(
                f"Failed to execute HTTP request (was trying to fetch {description}): {e}"
            ) from e

        status = response.status_code
        if status == 429:
            raise RateLimitedError(
                description, _parse_retry_after(response.headers.get("Retry-After"))
            )
        if 400 <= status < 500:
            raise ClientHttpError(status, description)
        if status >= 500:
            raise ServerHttpError(status, description)

        try:
            parsed = envelope.model_validate(response.json())
        except ValueError as e:
            # covers both JSON decoding errors and ValidationError
            raise ApiSchemaError(
                f"Failed to decode response as JSON (was trying to fetch {description}): {e}"
            ) from e

        if not parsed.success:
            raise ApiUnsuccessfulError(f"API reported failure (was trying to fetch {description})")

        return parsed.data

    async def fetch_station_details(self) -> list[Station]:
        """Fetch every station, including the sub-routes stopping at it."""
        raw_stations = await self._get(
            "station/station-details",
            [("show-subroutes", "1")],
            ApiEnvelope[list[RawStationDetails]],
            "all station details",
        )
        return [raw.to_station() for raw in raw_stations]

    async def fetch_routes_on_station(self, station_code: StationCode) -> list[TripOnStation]:
        """Fetch the trips stopping at a station.

        Trips whose route label cannot be parsed are skipped with a warning.
        """
        raw_trips = await self._get(
            "station/routes-on-station",
            [("station-code", station_code)],
            ApiEnvelope[list[RawRouteOnStation]],
            f"routes on station {station_code}",
        )

        trips: list[TripOnStation] = []
        for raw in raw_trips:
            try:
                trips.append(raw.to_trip_on_station())
            except RouteNameParseError as e:
                logger.warning(
                    f"Skipping trip {raw.trip_id} on station {station_code}: "
                    f"unparsable route number {raw.route_number!r} ({e})"
                )
        return trips

    async def fetch_timetable(
        self,
        station_code: StationCode,
        route_groups: Iterable[BaseRouteIdentifier],
        mode: TimetableFetchMode,
        now: datetime | None = None,
    ) -> list[RouteGroupTimetable]:
        """Fetch timetables of the given route groups at a station.

        Args:
            station_code: Station to fetch arrivals for.
            route_groups: Base routes to include (one combined request).
            mode: Full local day or a manual hour window.
            now: Local time the window is computed from (defaults to now).

        Returns:
            One RouteGroupTimetable per route group in the response. Route
            groups or trips with unparsable labels, and out-of-range
            timetable entries, are skipped with a warning.
        """
        local_now = now or datetime.now().astimezone()
        next_hours, previous_hours = mode.hour_window(local_now)

        params = [
            ("station-code", station_code),
            ("next-hours", str(next_hours)),
            ("previous-hours", str(previous_hours)),
        ]
        params.extend(("route-group-number", str(group.number)) for group in route_groups)

        data = await self._get(
            "station/timetable",
            params,
            ApiEnvelope[RawTimetableData],
            f"timetable for station {station_code}",
        )

        timetables: list[RouteGroupTimetable] = []
        for raw_group in data.route_groups:
            try:
                raw_group.base_route()
            except RouteNameParseError as e:
                logger.warning(
                    f"Skipping route group {raw_group.route_group_number!r} "
                    f"on station {station_code}: {e}"
                )
                continue

            trip_timetables: list[TripTimetable] = []
            for raw_route in raw_group.routes:
                entries, entry_errors = raw_route.timetable_entries()
                for error in entry_errors:
                    logger.warning(
                        f"Skipping timetable entry of {raw_route.name!r} "
                        f"on station {station_code}: {error}"
                    )
                try:
                    trip_timetables.append(raw_route.to_trip_timetable(entries))
                except RouteNameParseError as e:
                    logger.warning(
                        f"Skipping timetable of {raw_route.parent_name!r} "
                        f"on station {station_code}: {e}"
                    )

            timetables.append(raw_group.to_route_group_timetable(trip_timetables))

        return timetables

    async def fetch_all_routes(self) -> list[RouteDetails]:
        """Fetch every route trip (without shapes).

        Routes with unparsable route numbers are skipped with a warning.
        """
        raw_routes = await self._get(
            "route/routes",
            None,
            ApiEnvelope[list[RawRouteDetails]],
            "all routes",
        )
        return self._convert_routes(raw_routes)

    async def fetch_route_with_shape(self, route_id: RouteId) -> list[RouteDetails]:
        """Fetch the trips of one route, each with its GeoJSON shape."""
        raw_routes = await self._get(
            "route/routes",
            [("route-id", route_id), ("shape", "1")],
            ApiEnvelope[list[RawRouteDetails]],
            f"route {route_id} with shape",
        )
        return self._convert_routes(raw_routes)

    async def fetch_stations_on_route(self, trip_id: TripId) -> list[StationOnRoute] | None:
        """Fetch the ordered stations of one trip, or None if the API lists none."""
        raw_stations = await self._get(
            "route/stations-on-route",
            [("trip-id", trip_id)],
            ApiEnvelope[list[RawStationOnRoute] | None],
            f"stations on route (trip {trip_id})",
        )
        if not raw_stations:
            return None
        return [raw.to_station_on_route() for raw in raw_stations]

    @staticmethod
    def _convert_routes(raw_routes: list[RawRouteDetails]) -> list[RouteDetails]:
        routes: list[RouteDetails] = []
        for raw in raw_routes:
            try:
                routes.append(raw.to_route_details())
            except ValueError as e:
                logger.warning(
                    f"Skipping route {raw.route_id} (trip {raw.trip_id}, "
                    f"number {raw.route_number!r}): {e}"
                )
        return routes

