"""Pydantic models for LPP stations, trips, timetables and routes.

These are the parsed forms of the vendor responses (see models/raw.py for the
wire schemas). Field names follow the snapshot file format.
"""

import math
from datetime import datetime
from enum import Enum
from typing import NewType

from pydantic import BaseModel, Field, field_validator, model_validator

from lpp_recorder.models.route import BaseRouteIdentifier, RouteIdentifier

# Opaque identifiers: only compared and hashed, never interpreted.
StationCode = NewType("StationCode", str)
RouteId = NewType("RouteId", str)
TripId = NewType("TripId", str)


class GeographicLocation(BaseModel):
    """A point in the geographic coordinate system."""

    latitude: float
    longitude: float

    @field_validator("latitude", "longitude")
    @classmethod
    def _must_be_finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("coordinate must be finite")
        return value


class Station(BaseModel):
    """A bus station as listed by the station details endpoint."""

    station_code: StationCode
    internal_station_id: int
    name: str
    location: GeographicLocation
    route_groups_on_station: list[str] = Field(
        default_factory=list, description="Route labels stopping here, e.g. ['3G', '11B']"
    )


class TripOnStation(BaseModel):
    """One directional trip that stops at a given station."""

    route_id: RouteId
    trip_id: TripId
    route: RouteIdentifier
    short_trip_name: str | None = Field(default=None, description="Destination, e.g. 'BEŽIGRAD'")
    trip_name: str = Field(description="Full trip name (start - destination)")
    ends_in_garage: bool


class TimetableEntry(BaseModel):
    """A single scheduled arrival (hour:minute)."""

    hour: int = Field(ge=1, le=24)
    minute: int = Field(ge=0, le=59)


class StationOnTimetable(BaseModel):
    station_code: StationCode
    name: str
    stop_number: int = Field(description="1 for the first station of the trip")


class TripTimetable(BaseModel):
    """Arrivals of one trip at one station, plus the trip's station list."""

    route: RouteIdentifier
    trip_name: str
    short_trip_name: str
    ends_in_garage: bool
    timetable: list[TimetableEntry]
    stations: list[StationOnTimetable]


class RouteGroupTimetable(BaseModel):
    """Timetables of every trip in one route group (e.g. 3, 3G, N3) at a station."""

    route_group_name: BaseRouteIdentifier
    trip_timetables: list[TripTimetable]


class RouteShape(BaseModel):
    """GeoJSON LineString the bus follows.

    Coordinates are (longitude, latitude) pairs; the bounding box is
    (min longitude, min latitude, max longitude, max latitude).
    """

    path_coordinates: list[tuple[float, float]]
    bounding_box: tuple[float, float, float, float]


class RouteDetails(BaseModel):
    """Details of one trip of a route, as listed by the routes endpoint."""

    route_id: RouteId = Field(description="Shared by all directions of a route")
    trip_id: TripId = Field(description="Identifies one direction of a route")
    internal_trip_id: int
    route: RouteIdentifier
    name: str
    short_name: str
    route_shape: RouteShape | None = None


class StationOnRoute(BaseModel):
    station_code: StationCode
    internal_station_id: int
    name: str
    location: GeographicLocation
    stop_number: int


class TimetableMode(str, Enum):
    FULL_DAY = "full-day"
    MANUAL = "manual"


class TimetableFetchMode(BaseModel):
    """Which hours a timetable request covers.

    FULL_DAY covers the current local calendar day, midnight to midnight.
    MANUAL requests explicit windows around the current hour.
    """

    mode: TimetableMode = TimetableMode.FULL_DAY
    next_hours: int | None = Field(default=None, ge=0, le=24)
    previous_hours: int | None = Field(default=None, ge=0, le=24)

    @model_validator(mode="after")
    def _manual_needs_windows(self) -> "TimetableFetchMode":
        if self.mode == TimetableMode.MANUAL and (
            self.next_hours is None or self.previous_hours is None
        ):
            raise ValueError("manual timetable mode needs next_hours and previous_hours")
        return self

    @classmethod
    def full_day(cls) -> "TimetableFetchMode":
        return cls(mode=TimetableMode.FULL_DAY)

    @classmethod
    def manual(cls, next_hours: int, previous_hours: int) -> "TimetableFetchMode":
        return cls(mode=TimetableMode.MANUAL, next_hours=next_hours, previous_hours=previous_hours)

    def hour_window(self, local_now: datetime) -> tuple[int, int]:
        """Return (next_hours, previous_hours) for a request made at local_now."""
        if self.mode == TimetableMode.MANUAL:
            if self.next_hours is None or self.previous_hours is None:
                raise ValueError("manual timetable mode needs next_hours and previous_hours")
            return self.next_hours, self.previous_hours

        current_hour = local_now.hour
        return 24 - current_hour, current_hour
