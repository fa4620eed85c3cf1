"""Error kinds raised by the LPP API client."""


class LppApiError(Exception):
    """Base class for failures fetching data from the LPP API."""


class ApiTransportError(LppApiError):
    """The request did not reach the API or the connection failed."""


class ApiHttpStatusError(LppApiError):
    """The API answered with a 4xx or 5xx status."""

    def __init__(self, status_code: int, request_description: str):
        super().__init__(
            f"HTTP request failed with status {status_code} (was trying to fetch {request_description})"
        )
        self.status_code = status_code
        self.request_description = request_description


class ClientHttpError(ApiHttpStatusError):
    """4xx response."""


class RateLimitedError(ClientHttpError):
    """429 Too Many Requests, with the server's Retry-After hint if it sent one."""

    def __init__(self, request_description: str, retry_after: float | None = None):
        super().__init__(429, request_description)
        self.retry_after = retry_after


class ServerHttpError(ApiHttpStatusError):
    """5xx response."""


class ApiUnsuccessfulError(LppApiError):
    """The response envelope had success set to false."""


class ApiSchemaError(LppApiError):
    """The response did not match the expected schema (or was not JSON)."""
