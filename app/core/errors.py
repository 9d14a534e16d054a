"""
Error kinds raised by the market data cache.
The HTTP layer maps each kind to its status code; nothing below the API catches them.
"""
from typing import Any, Optional


class MarketDataError(Exception):
    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details


class NotFoundError(MarketDataError):
    """Upstream answered 404 for a single coin lookup."""
    status_code = 404
    error_code = "NOT_FOUND"


class UpstreamUnavailableError(MarketDataError):
    """Upstream failed, or a cold read hit an active back-off window."""
    status_code = 502
    error_code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str, upstream_status: Optional[int] = None, details: Any = None):
        super().__init__(message, details=details)
        self.upstream_status = upstream_status


class QueryValidationError(MarketDataError):
    status_code = 400
    error_code = "VALIDATION_ERROR"
