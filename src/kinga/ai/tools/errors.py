"""Standardized error types for tool invocations.

Errors are raised inside the gateway client and the AI client only. Callers
above the runner boundary receive them as structured results, never as
propagating exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for error codes used in tool results."""

    # Transport errors
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    SESSION_FAILED = "session_failed"
    SUBMIT_FAILED = "submit_failed"
    STREAM_CLOSED = "stream_closed"
    TIMEOUT = "timeout"

    # Result errors
    MALFORMED_ENVELOPE = "malformed_envelope"
    TOOL_FAILED = "tool_failed"

    # Policy outcomes
    PERMISSION_DENIED = "permission_denied"
    MISSING_PARAMETER = "missing_parameter"

    # Configuration / provider
    CONFIGURATION_ERROR = "configuration_error"
    PROVIDER_ERROR = "provider_error"

    # General errors
    INTERNAL_ERROR = "internal_error"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class ToolError(Exception):
    """Base exception class for all tool errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for JSON tool responses."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Transport Errors
# -----------------------------------------------------------------------------

@dataclass
class GatewayError(ToolError):
    """Network-level failure talking to the workflow gateway."""

    error_code: str = field(default=ErrorCode.GATEWAY_UNAVAILABLE)
    message: str = field(default="The workflow gateway could not be reached")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Try again in a moment")

    status_code: int | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.status_code is not None:
            result["status_code"] = self.status_code
        return result


@dataclass
class GatewaySessionError(GatewayError):
    """The event stream could not be opened or never announced an endpoint."""

    error_code: str = field(default=ErrorCode.SESSION_FAILED)
    message: str = field(default="Failed to open session")


@dataclass
class GatewaySubmitError(GatewayError):
    """The request submission was rejected by the gateway."""

    error_code: str = field(default=ErrorCode.SUBMIT_FAILED)
    message: str = field(default="Request submission failed")


@dataclass
class GatewayStreamClosedError(GatewayError):
    """The stream ended before a matching response arrived."""

    error_code: str = field(default=ErrorCode.STREAM_CLOSED)
    message: str = field(default="Stream ended before receiving a matching result")


@dataclass
class GatewayTimeoutError(ToolError):
    """The invocation exceeded its overall time budget."""

    error_code: str = field(default=ErrorCode.TIMEOUT)
    message: str = field(default="The tool took too long to respond")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Ask again to retry")

    timeout_seconds: float | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.timeout_seconds is not None:
            result["timeout_seconds"] = self.timeout_seconds
        return result


# -----------------------------------------------------------------------------
# Result Errors
# -----------------------------------------------------------------------------

@dataclass
class MalformedEnvelopeError(ToolError):
    """No recognizable envelope could be extracted from a response."""

    error_code: str = field(default=ErrorCode.MALFORMED_ENVELOPE)
    message: str = field(default="Couldn't get a result from the tool")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Try again or rephrase the request")


@dataclass
class ToolFailedError(ToolError):
    """The tool answered, but reported a failure status."""

    error_code: str = field(default=ErrorCode.TOOL_FAILED)
    message: str = field(default="The tool reported a failure")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Try again with clearer details")

    status: str | None = field(default=None)


# -----------------------------------------------------------------------------
# Policy Outcomes
# -----------------------------------------------------------------------------

@dataclass
class PermissionDeniedError(ToolError):
    """The current user has no permission for a tool."""

    error_code: str = field(default=ErrorCode.PERMISSION_DENIED)
    message: str = field(default="You don't have access to this tool")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    tool_name: str | None = field(default=None)


@dataclass
class MissingParameterError(ToolError):
    """Error raised when a required parameter is missing."""

    error_code: str = field(default=ErrorCode.MISSING_PARAMETER)
    message: str = field(default="Required parameter is missing")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Provide the required parameter")

    parameter: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.parameter is not None:
            result["parameter"] = self.parameter
        return result


# -----------------------------------------------------------------------------
# Configuration / Provider
# -----------------------------------------------------------------------------

@dataclass
class ConfigurationError(ToolError):
    """Credentials or endpoints are missing; never retried automatically."""

    error_code: str = field(default=ErrorCode.CONFIGURATION_ERROR)
    message: str = field(default="The service is not configured")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    reason: str | None = field(default=None)


@dataclass
class ProviderError(ToolError):
    """The model provider call failed."""

    error_code: str = field(default=ErrorCode.PROVIDER_ERROR)
    message: str = field(default="The language model request failed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Try again in a moment")


__all__ = [
    "ErrorCode",
    "ToolError",
    "GatewayError",
    "GatewaySessionError",
    "GatewaySubmitError",
    "GatewayStreamClosedError",
    "GatewayTimeoutError",
    "MalformedEnvelopeError",
    "ToolFailedError",
    "PermissionDeniedError",
    "MissingParameterError",
    "ConfigurationError",
    "ProviderError",
]
