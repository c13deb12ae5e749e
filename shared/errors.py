"""
Shared error handling for the DERP Admission Gateway.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AdmissionGatewayError(Exception):
    """Base exception for the admission gateway."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class InputError(AdmissionGatewayError):
    """Malformed admission request or wrong method."""

    status_code = 400

    def __init__(self, message: str = "Bad Request", details: Optional[Dict[str, Any]] = None,
                 status_code: int = 400):
        self.status_code = status_code
        super().__init__("INPUT_ERROR", message, details)


class ConfigurationError(AdmissionGatewayError):
    """Invalid startup configuration."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class UpstreamError(AdmissionGatewayError):
    """Non-success outcome from the upstream device directory API."""

    status_code = 502

    def __init__(self, code: str, organization: str, message: str,
                 status: Optional[int] = None, reason: Optional[str] = None):
        self.organization = organization
        self.upstream_status = status
        self.reason = reason
        details: Dict[str, Any] = {"organization": organization}
        if status is not None:
            details["status_code"] = status
        if reason:
            details["reason"] = reason
        super().__init__(code, message, details)


class UpstreamAuthError(UpstreamError):
    """OAuth client-credentials exchange failed."""

    def __init__(self, organization: str, status: Optional[int] = None, reason: Optional[str] = None):
        if status is not None:
            message = f"Failed to get OAuth token: {status} {reason or ''}".rstrip()
        else:
            message = f"Failed to get OAuth token: {reason or 'transport error'}"
        super().__init__("UPSTREAM_AUTH_ERROR", organization, message, status, reason)


class UpstreamDirectoryError(UpstreamError):
    """Device listing for an organization failed."""

    def __init__(self, organization: str, status: Optional[int] = None, reason: Optional[str] = None):
        if status is not None:
            message = f"Failed to get devices: {status} {reason or ''}".rstrip()
        else:
            message = f"Failed to get devices: {reason or 'transport error'}"
        super().__init__("UPSTREAM_DIRECTORY_ERROR", organization, message, status, reason)


class CacheUnavailableError(AdmissionGatewayError):
    """Key-value store read or write failure."""

    status_code = 503

    def __init__(self, message: str = "Cache store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_UNAVAILABLE", message, details)
