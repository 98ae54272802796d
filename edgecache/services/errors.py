"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class UpstreamTransportError(ServiceError):
    """Upstream could not be reached (network failure, reset, DNS)."""

    pass


class RequestTimeoutError(UpstreamTransportError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class UpstreamStatusError(ServiceError):
    """Upstream answered with a non-2xx status."""

    def __init__(
        self,
        service_id: str,
        status_code: int,
        body: str = "",
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"HTTP {status_code} from service '{service_id}': {body[:200]}",
            service_id=service_id,
        )


class StoreUnavailableError(ServiceError):
    """Shared key-value store is unreachable or returned an error."""

    pass


class NoDataAvailableError(ServiceError):
    """Upstream failed and no cached data of any tier exists."""

    pass


class SourceUnhealthyError(ServiceError):
    """Fallback source responded but failed its health check."""

    pass


class ConfigError(ServiceError):
    """Invalid cache or resource configuration."""

    pass
