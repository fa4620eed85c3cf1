"""Tests for the LPP API client."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from lpp_recorder.data.config import LppApiConfig
from lpp_recorder.data.errors import (
    ApiSchemaError,
    ApiTransportError,
    ApiUnsuccessfulError,
    ClientHttpError,
    RateLimitedError,
    ServerHttpError,
)
from lpp_recorder.data.lpp_client import LppClient
from lpp_recorder.models.lpp import StationCode, TimetableFetchMode, TripId
from lpp_recorder.models.route import BaseRouteIdentifier, RouteIdentifier


def create_station_details_response() -> dict:
    return {
        "success": True,
        "data": [
            {
                "int_id": 1937,
                "latitude": 46.05868,
                "longitude": 14.50615,
                "name": "Bavarski dvor",
                "ref_id": "600011",
                "route_groups_on_station": ["1", "3G", "N3"],
                "unknown_field": "ignored",
            }
        ],
    }


def create_routes_on_station_response() -> dict:
    return {
        "success": True,
        "data": [
            {
                "route_id": "R3",
                "trip_id": "T3G",
                "route_number": "3G",
                "route_name": "BEŽIGRAD",
                "route_group_name": "LITOSTROJ - BEŽIGRAD",
                "is_garage": False,
            },
            {
                "route_id": "RX",
                "trip_id": "TX",
                "route_number": "",
                "route_name": None,
                "route_group_name": "BROKEN",
                "is_garage": True,
            },
        ],
    }


def create_timetable_response() -> dict:
    return {
        "success": True,
        "data": {
            "station": {"ref_id": "600011", "name": "Bavarski dvor"},
            "route_groups": [
                {
                    "route_group_number": "3",
                    "routes": [
                        {
                            "timetable": [
                                {"hour": 5, "minutes": [10, 70], "is_current": False},
                                {"hour": 25, "minutes": [1]},
                            ],
                            "stations": [
                                {"ref_id": "600012", "name": "Litostroj", "order_no": 1},
                                {"ref_id": "600011", "name": "Bavarski dvor", "order_no": 4},
                            ],
                            "name": "BEŽIGRAD",
                            "parent_name": "LITOSTROJ - BEŽIGRAD",
                            "group_name": "3",
                            "route_number_prefix": "",
                            "route_number_suffix": "G",
                            "is_garage": False,
                        }
                    ],
                },
                {"route_group_number": "N3", "routes": []},
            ],
        },
    }


def create_routes_response(with_shape: bool = False) -> dict:
    route = {
        "route_id": "R3",
        "trip_id": "T3G",
        "trip_int_id": 3001,
        "route_number": "3G",
        "route_name": "LITOSTROJ - BEŽIGRAD",
        "short_route_name": "BEŽIGRAD",
    }
    if with_shape:
        route["geojson_shape"] = {
            "type": "LineString",
            "coordinates": [[14.49, 46.07], [14.50, 46.06]],
            "bbox": [14.49, 46.06, 14.50, 46.07],
        }
    invalid = dict(route, trip_id="TX", route_number="N")
    return {"success": True, "data": [route, invalid]}


def create_stations_on_route_response() -> dict:
    return {
        "success": True,
        "data": [
            {
                "station_int_id": 1938,
                "station_code": "600012",
                "name": "Litostroj",
                "order_no": 1,
                "latitude": 46.07,
                "longitude": 14.49,
            },
            {
                "station_int_id": 1937,
                "station_code": "600011",
                "name": "Bavarski dvor",
                "order_no": 4,
                "latitude": 46.05868,
                "longitude": 14.50615,
            },
        ],
    }


@pytest.fixture
def config() -> LppApiConfig:
    """Create a test config."""
    return LppApiConfig(
        base_api_url="https://example.com/api",
        user_agent="lpp-recorder-tests",
        timeout_seconds=5.0,
    )


def mock_response(status_code: int = 200, json_data=None, headers: dict | None = None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.json.return_value = json_data
    return response


def mock_http_client(mock_client_class, response=None, side_effect=None) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.get = AsyncMock(return_value=response, side_effect=side_effect)
    mock_client_class.return_value = mock_client
    return mock_client


@pytest.mark.asyncio
async def test_client_uses_configured_base_url_and_user_agent(config: LppApiConfig):
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_http_client(mock_client_class, mock_response(json_data={"success": True, "data": []}))

        async with LppClient(config) as client:
            await client.fetch_station_details()

    kwargs = mock_client_class.call_args.kwargs
    assert kwargs["base_url"] == "https://example.com/api/"
    assert kwargs["headers"] == {"User-Agent": "lpp-recorder-tests"}
    assert kwargs["timeout"] == 5.0


@pytest.mark.asyncio
async def test_client_closes_on_exit(config: LppApiConfig):
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = mock_http_client(mock_client_class)

        async with LppClient(config):
            pass

    mock_client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_fetch_outside_context_raises(config: LppApiConfig):
    client = LppClient(config)
    with pytest.raises(RuntimeError, match="async with"):
        await client.fetch_all_routes()


@pytest.mark.asyncio
async def test_fetch_station_details(config: LppApiConfig):
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = mock_http_client(
            mock_client_class, mock_response(json_data=create_station_details_response())
        )

        async with LppClient(config) as client:
            stations = await client.fetch_station_details()

    mock_client.get.assert_awaited_once_with(
        "station/station-details", params=[("show-subroutes", "1")]
    )
    assert len(stations) == 1
    station = stations[0]
    assert station.station_code == "600011"
    assert station.internal_station_id == 1937
    assert station.location.latitude == pytest.approx(46.05868)
    assert station.route_groups_on_station == ["1", "3G", "N3"]


@pytest.mark.asyncio
async def test_fetch_routes_on_station_skips_unparsable_labels(config: LppApiConfig):
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = mock_http_client(
            mock_client_class, mock_response(json_data=create_routes_on_station_response())
        )

        async with LppClient(config) as client:
            trips = await client.fetch_routes_on_station(StationCode("600011"))

    mock_client.get.assert_awaited_once_with(
        "station/routes-on-station", params=[("station-code", "600011")]
    )
    assert len(trips) == 1
    trip = trips[0]
    assert trip.trip_id == "T3G"
    assert trip.route == RouteIdentifier(number=3, suffix="G")
    assert trip.short_trip_name == "BEŽIGRAD"
    assert trip.trip_name == "LITOSTROJ - BEŽIGRAD"
    assert trip.ends_in_garage is False


@pytest.mark.asyncio
async def test_fetch_timetable_full_day_params(config: LppApiConfig):
    """Full day at 08:30 asks for 8 previous and 16 next hours."""
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = mock_http_client(
            mock_client_class, mock_response(json_data=create_timetable_response())
        )

        async with LppClient(config) as client:
            await client.fetch_timetable(
                StationCode("600011"),
                [BaseRouteIdentifier(number=3), BaseRouteIdentifier(number=11)],
                TimetableFetchMode.full_day(),
                now=datetime(2024, 1, 31, 8, 30),
            )

    mock_client.get.assert_awaited_once_with(
        "station/timetable",
        params=[
            ("station-code", "600011"),
            ("next-hours", "16"),
            ("previous-hours", "8"),
            ("route-group-number", "3"),
            ("route-group-number", "11"),
        ],
    )


@pytest.mark.asyncio
async def test_fetch_timetable_manual_params(config: LppApiConfig):
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = mock_http_client(
            mock_client_class, mock_response(json_data=create_timetable_response())
        )

        async with LppClient(config) as client:
            await client.fetch_timetable(
                StationCode("600011"),
                [BaseRouteIdentifier(number=3)],
                TimetableFetchMode.manual(next_hours=4, previous_hours=1),
            )

    params = mock_client.get.call_args.kwargs["params"]
    assert ("next-hours", "4") in params
    assert ("previous-hours", "1") in params


@pytest.mark.asyncio
async def test_fetch_timetable_parses_and_skips_invalid_entries(config: LppApiConfig):
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_http_client(mock_client_class, mock_response(json_data=create_timetable_response()))

        async with LppClient(config) as client:
            timetables = await client.fetch_timetable(
                StationCode("600011"),
                [BaseRouteIdentifier(number=3)],
                TimetableFetchMode.full_day(),
            )

    # route group "N3" is not numeric and is skipped
    assert len(timetables) == 1
    group = timetables[0]
    assert group.route_group_name == BaseRouteIdentifier(number=3)

    assert len(group.trip_timetables) == 1
    trip_timetable = group.trip_timetables[0]
    assert trip_timetable.route == RouteIdentifier(number=3, suffix="G")
    assert trip_timetable.trip_name == "LITOSTROJ - BEŽIGRAD"
    assert trip_timetable.short_trip_name == "BEŽIGRAD"
    assert [(e.hour, e.minute) for e in trip_timetable.timetable] == [(5, 10)]
    assert [s.stop_number for s in trip_timetable.stations] == [1, 4]


@pytest.mark.asyncio
async def test_fetch_all_routes_skips_unparsable_labels(config: LppApiConfig):
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = mock_http_client(
            mock_client_class, mock_response(json_data=create_routes_response())
        )

        async with LppClient(config) as client:
            routes = await client.fetch_all_routes()

    mock_client.get.assert_awaited_once_with("route/routes", params=None)
    assert len(routes) == 1
    route = routes[0]
    assert route.route == RouteIdentifier(number=3, suffix="G")
    assert route.internal_trip_id == 3001
    assert route.route_shape is None


@pytest.mark.asyncio
async def test_fetch_route_with_shape(config: LppApiConfig):
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = mock_http_client(
            mock_client_class, mock_response(json_data=create_routes_response(with_shape=True))
        )

        async with LppClient(config) as client:
            routes = await client.fetch_route_with_shape("R3")

    mock_client.get.assert_awaited_once_with(
        "route/routes", params=[("route-id", "R3"), ("shape", "1")]
    )
    shape = routes[0].route_shape
    assert shape is not None
    assert shape.path_coordinates == [(14.49, 46.07), (14.50, 46.06)]
    assert shape.bounding_box == (14.49, 46.06, 14.50, 46.07)


@pytest.mark.asyncio
async def test_fetch_stations_on_route(config: LppApiConfig):
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = mock_http_client(
            mock_client_class, mock_response(json_data=create_stations_on_route_response())
        )

        async with LppClient(config) as client:
            stations = await client.fetch_stations_on_route(TripId("T3G"))

    mock_client.get.assert_awaited_once_with(
        "route/stations-on-route", params=[("trip-id", "T3G")]
    )
    assert stations is not None
    assert [s.station_code for s in stations] == ["600012", "600011"]
    assert stations[1].stop_number == 4


@pytest.mark.asyncio
@pytest.mark.parametrize("data", [[], None])
async def test_fetch_stations_on_route_empty_is_none(config: LppApiConfig, data):
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_http_client(mock_client_class, mock_response(json_data={"success": True, "data": data}))

        async with LppClient(config) as client:
            assert await client.fetch_stations_on_route(TripId("T3G")) is None


class TestErrorClassification:
    @pytest.mark.asyncio
    async def test_transport_error(self, config: LppApiConfig):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, side_effect=httpx.ConnectError("refused"))

            async with LppClient(config) as client:
                with pytest.raises(ApiTransportError) as exc_info:
                    await client.fetch_all_routes()

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_rate_limited_with_retry_after(self, config: LppApiConfig):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, mock_response(429, headers={"Retry-After": "7"}))

            async with LppClient(config) as client:
                with pytest.raises(RateLimitedError) as exc_info:
                    await client.fetch_all_routes()

        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after == 7.0

    @pytest.mark.asyncio
    async def test_rate_limited_with_http_date_ignores_hint(self, config: LppApiConfig):
        headers = {"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, mock_response(429, headers=headers))

            async with LppClient(config) as client:
                with pytest.raises(RateLimitedError) as exc_info:
                    await client.fetch_all_routes()

        assert exc_info.value.retry_after is None

    @pytest.mark.asyncio
    async def test_client_error(self, config: LppApiConfig):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, mock_response(404))

            async with LppClient(config) as client:
                with pytest.raises(ClientHttpError) as exc_info:
                    await client.fetch_all_routes()

        assert not isinstance(exc_info.value, RateLimitedError)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_server_error(self, config: LppApiConfig):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, mock_response(503))

            async with LppClient(config) as client:
                with pytest.raises(ServerHttpError) as exc_info:
                    await client.fetch_all_routes()

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_unsuccessful_envelope(self, config: LppApiConfig):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, mock_response(json_data={"success": False, "data": []}))

            async with LppClient(config) as client:
                with pytest.raises(ApiUnsuccessfulError):
                    await client.fetch_all_routes()

    @pytest.mark.asyncio
    async def test_invalid_json(self, config: LppApiConfig):
        response = mock_response()
        response.json.side_effect = ValueError("Expecting value")
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, response)

            async with LppClient(config) as client:
                with pytest.raises(ApiSchemaError):
                    await client.fetch_all_routes()

    @pytest.mark.asyncio
    async def test_schema_mismatch(self, config: LppApiConfig):
        payload = {"success": True, "data": [{"route_id": "R3"}]}
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, mock_response(json_data=payload))

            async with LppClient(config) as client:
                with pytest.raises(ApiSchemaError):
                    await client.fetch_all_routes()
