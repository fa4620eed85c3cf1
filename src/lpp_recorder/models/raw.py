"""Wire schemas of the LPP API (https://data.lpp.si/doc/).

Every endpoint wraps its payload in a {"success": bool, "data": ...}
envelope. Unknown fields are ignored; missing or mistyped fields fail
validation and surface as schema errors.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict

from lpp_recorder.models.lpp import (
    GeographicLocation,
    RouteDetails,
    RouteGroupTimetable,
    RouteId,
    RouteShape,
    Station,
    StationCode,
    StationOnRoute,
    StationOnTimetable,
    TimetableEntry,
    TripId,
    TripOnStation,
    TripTimetable,
)
from lpp_recorder.models.route import (
    BaseRouteIdentifier,
    RouteNameParseError,
    parse_route_identifier,
)

DataT = TypeVar("DataT")


class TimetableParseError(ValueError):
    """Raised for timetable entries outside the valid hour/minute range."""

    def __init__(self, reason: str):
        super().__init__(f"Could not parse timetable: {reason}")
        self.reason = reason


class ApiEnvelope(BaseModel, Generic[DataT]):
    """Top-level response of every LPP endpoint."""

    model_config = ConfigDict(extra="ignore")

    success: bool
    data: DataT


class RawStationDetails(BaseModel):
    """Entry of station/station-details."""

    model_config = ConfigDict(extra="ignore")

    int_id: int
    latitude: float
    longitude: float
    name: str
    ref_id: str
    route_groups_on_station: list[str] = []

    def to_station(self) -> Station:
        return Station(
            station_code=StationCode(self.ref_id),
            internal_station_id=self.int_id,
            name=self.name,
            location=GeographicLocation(latitude=self.latitude, longitude=self.longitude),
            route_groups_on_station=self.route_groups_on_station,
        )


class RawRouteOnStation(BaseModel):
    """Entry of station/routes-on-station.

    Note: LPP names these fields after routes, but each entry is one trip.
    """

    model_config = ConfigDict(extra="ignore")

    route_id: str
    trip_id: str
    route_number: str
    route_name: str | None = None
    route_group_name: str
    is_garage: bool

    def to_trip_on_station(self) -> TripOnStation:
        """Raises RouteNameParseError if route_number is not a valid label."""
        return TripOnStation(
            route_id=RouteId(self.route_id),
            trip_id=TripId(self.trip_id),
            route=parse_route_identifier(self.route_number),
            short_trip_name=self.route_name,
            trip_name=self.route_group_name,
            ends_in_garage=self.is_garage,
        )


class RawTimetableHour(BaseModel):
    """All arrivals in one hour: hour=13, minutes=[11, 52] means 13:11 and 13:52."""

    model_config = ConfigDict(extra="ignore")

    hour: int
    minutes: list[int]
    is_current: bool = False


class RawTimetableStation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ref_id: str
    name: str
    order_no: int

    def to_station_on_timetable(self) -> StationOnTimetable:
        return StationOnTimetable(
            station_code=StationCode(self.ref_id),
            name=self.name,
            stop_number=self.order_no,
        )


class RawTimetableRoute(BaseModel):
    """Timetable of one sub-route (e.g. 6B) at the requested station."""

    model_config = ConfigDict(extra="ignore")

    timetable: list[RawTimetableHour]
    stations: list[RawTimetableStation]
    name: str
    parent_name: str
    group_name: str
    route_number_prefix: str | None = None
    route_number_suffix: str | None = None
    is_garage: bool

    def timetable_entries(self) -> tuple[list[TimetableEntry], list[TimetableParseError]]:
        """Flatten hour/minutes rows into entries.

        Returns the valid entries and one error per rejected hour or minute.
        """
        entries: list[TimetableEntry] = []
        errors: list[TimetableParseError] = []

        for row in self.timetable:
            if not 1 <= row.hour <= 24:
                errors.append(TimetableParseError(f"hour {row.hour} out of range"))
                continue
            for minute in row.minutes:
                if not 0 <= minute <= 59:
                    errors.append(
                        TimetableParseError(f"minute {minute} out of range (hour {row.hour})")
                    )
                    continue
                entries.append(TimetableEntry(hour=row.hour, minute=minute))

        return entries, errors

    def to_trip_timetable(self, entries: list[TimetableEntry]) -> TripTimetable:
        """Raises RouteNameParseError if prefix/group/suffix do not form a route label."""
        route = parse_route_identifier(
            f"{self.route_number_prefix or ''}{self.group_name}{self.route_number_suffix or ''}"
        )
        return TripTimetable(
            route=route,
            trip_name=self.parent_name,
            short_trip_name=self.name,
            ends_in_garage=self.is_garage,
            timetable=entries,
            stations=[station.to_station_on_timetable() for station in self.stations],
        )


class RawTimetableRouteGroup(BaseModel):
    model_config = ConfigDict(extra="ignore")

    route_group_number: str
    routes: list[RawTimetableRoute]

    def base_route(self) -> BaseRouteIdentifier:
        """Raises RouteNameParseError if the group number is not numeric."""
        if not (self.route_group_number.isascii() and self.route_group_number.isdigit()):
            raise RouteNameParseError(self.route_group_number)
        return BaseRouteIdentifier(number=int(self.route_group_number))

    def to_route_group_timetable(self, trip_timetables: list[TripTimetable]) -> RouteGroupTimetable:
        return RouteGroupTimetable(
            route_group_name=self.base_route(),
            trip_timetables=trip_timetables,
        )


class RawTimetableStationInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ref_id: str
    name: str


class RawTimetableData(BaseModel):
    """Payload of station/timetable."""

    model_config = ConfigDict(extra="ignore")

    station: RawTimetableStationInfo
    route_groups: list[RawTimetableRouteGroup]


class RawGeoJsonShape(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    coordinates: list[tuple[float, float]]
    bbox: tuple[float, float, float, float]

    def to_route_shape(self) -> RouteShape:
        if self.type.lower() != "linestring":
            raise ValueError(f"Invalid GeoJSON shape type {self.type!r}, expected LineString")
        return RouteShape(path_coordinates=self.coordinates, bounding_box=self.bbox)


class RawRouteDetails(BaseModel):
    """Entry of route/routes (one per trip); geojson_shape only with shape=1."""

    model_config = ConfigDict(extra="ignore")

    route_id: str
    trip_id: str
    trip_int_id: int
    route_number: str
    route_name: str
    short_route_name: str
    geojson_shape: RawGeoJsonShape | None = None

    def to_route_details(self) -> RouteDetails:
        """Raises RouteNameParseError for an invalid route_number, ValueError for a bad shape."""
        return RouteDetails(
            route_id=RouteId(self.route_id),
            trip_id=TripId(self.trip_id),
            internal_trip_id=self.trip_int_id,
            route=parse_route_identifier(self.route_number),
            name=self.route_name,
            short_name=self.short_route_name,
            route_shape=self.geojson_shape.to_route_shape() if self.geojson_shape else None,
        )


class RawStationOnRoute(BaseModel):
    """Entry of route/stations-on-route."""

    model_config = ConfigDict(extra="ignore")

    station_int_id: int
    station_code: str
    name: str
    order_no: int
    latitude: float
    longitude: float

    def to_station_on_route(self) -> StationOnRoute:
        return StationOnRoute(
            station_code=StationCode(self.station_code),
            internal_station_id=self.station_int_id,
            name=self.name,
            location=GeographicLocation(latitude=self.latitude, longitude=self.longitude),
            stop_number=self.order_no,
        )
