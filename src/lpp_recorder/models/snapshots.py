"""Snapshot aggregates written to disk once per reconciliation cycle."""

from datetime import datetime

from pydantic import BaseModel, field_serializer

from lpp_recorder.models.lpp import (
    GeographicLocation,
    RouteDetails,
    RouteGroupTimetable,
    Station,
    StationCode,
    StationOnRoute,
    TripOnStation,
    TripTimetable,
)


def serialize_timestamp(value: datetime) -> str:
    """Unix seconds with fraction, as a string (e.g. "1700000000.123")."""
    return str(value.timestamp())


class StationDetailsWithTripsAndTimetables(BaseModel):
    station_code: StationCode
    internal_station_id: int
    name: str
    location: GeographicLocation
    route_groups_on_station: list[str]
    trips_on_station: list[TripOnStation]
    timetables: list[RouteGroupTimetable]

    @classmethod
    def from_station_and_trips(
        cls,
        station: Station,
        trips_on_station: list[TripOnStation],
        timetables: list[RouteGroupTimetable],
    ) -> "StationDetailsWithTripsAndTimetables":
        return cls(
            station_code=station.station_code,
            internal_station_id=station.internal_station_id,
            name=station.name,
            location=station.location,
            route_groups_on_station=station.route_groups_on_station,
            trips_on_station=trips_on_station,
            timetables=timetables,
        )


class StationsSnapshot(BaseModel):
    """Every station with its trips and route group timetables."""

    captured_at: datetime
    station_details: list[StationDetailsWithTripsAndTimetables]

    @field_serializer("captured_at")
    def _serialize_captured_at(self, value: datetime) -> str:
        return serialize_timestamp(value)


class StationOnRouteWithTimetable(BaseModel):
    station: StationOnRoute
    timetable: TripTimetable


class RouteWithStationsAndTimetables(BaseModel):
    """One trip of a route with the timetable at each of its stations."""

    captured_at: datetime
    route_details: RouteDetails
    stations_on_route_with_timetables: list[StationOnRouteWithTimetable]

    @field_serializer("captured_at")
    def _serialize_captured_at(self, value: datetime) -> str:
        return serialize_timestamp(value)


class RoutesSnapshot(BaseModel):
    """Every route trip that had timetable coverage in this cycle."""

    captured_at: datetime
    routes: list[RouteWithStationsAndTimetables]

    @field_serializer("captured_at")
    def _serialize_captured_at(self, value: datetime) -> str:
        return serialize_timestamp(value)
