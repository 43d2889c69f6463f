"""Error kinds raised by the token manager, GBP client and sync engine."""

from __future__ import annotations

from typing import Optional


class IntegrationError(Exception):
    """Base integration error. `status_code` is the HTTP status for the boundary."""

    status_code = 500

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": str(self)}


class ConfigurationError(IntegrationError):
    """Raised when a required credential or setting is missing."""

    status_code = 500


class MissingParameterError(IntegrationError):
    """Raised when a call lacks a required account or location id."""

    status_code = 400


class ConnectionNotFoundError(IntegrationError):
    """Raised when no connection record matches the requested id."""

    status_code = 404

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Connection not found: {connection_id}")
        self.connection_id = connection_id


class TokenRefreshError(IntegrationError):
    """Raised when the broker or OAuth endpoint cannot produce a token."""

    status_code = 502


class TokenExpiredError(IntegrationError):
    """Raised when auth failures persist after every refresh-and-retry."""

    status_code = 401


class UpstreamAPIError(IntegrationError):
    """Raised for non-2xx provider responses that are not auth failures."""

    status_code = 502

    def __init__(self, upstream_status: int, message: str, service: str = "GBP") -> None:
        super().__init__(f"{service} API Error ({upstream_status}): {message}")
        self.upstream_status = upstream_status
        self.upstream_message = message
        self.service = service

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["upstream_status"] = self.upstream_status
        return data


class ResponseParseError(IntegrationError):
    """Raised when a provider body is neither HTML nor valid JSON."""

    status_code = 502


class UpstreamTransportError(IntegrationError):
    """Raised when a provider cannot be reached at all."""

    status_code = 502


class UpstreamTimeoutError(UpstreamTransportError):
    """Raised when an explicit request timeout fired."""

    status_code = 504


class RecordError(IntegrationError):
    """A single fetched record is unusable; sync loops count it and move on."""

    def __init__(self, message: str, record_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.record_id = record_id


__all__ = [
    "IntegrationError",
    "ConfigurationError",
    "MissingParameterError",
    "ConnectionNotFoundError",
    "TokenRefreshError",
    "TokenExpiredError",
    "UpstreamAPIError",
    "ResponseParseError",
    "UpstreamTransportError",
    "UpstreamTimeoutError",
    "RecordError",
]
