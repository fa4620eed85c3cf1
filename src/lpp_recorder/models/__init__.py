"""Domain, wire and snapshot models."""

from lpp_recorder.models.route import (
    BaseRouteIdentifier,
    RouteIdentifier,
    RouteNameParseError,
    parse_route_identifier,
)
from lpp_recorder.models.snapshots import RoutesSnapshot, StationsSnapshot

__all__ = [
    "BaseRouteIdentifier",
    "RouteIdentifier",
    "RouteNameParseError",
    "parse_route_identifier",
    "RoutesSnapshot",
    "StationsSnapshot",
]
