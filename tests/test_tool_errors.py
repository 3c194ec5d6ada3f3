"""Tests for the tool error hierarchy."""

from __future__ import annotations

import pytest

from kinga.ai.tools.errors import (
    ConfigurationError,
    ErrorCode,
    GatewayError,
    GatewaySessionError,
    GatewayStreamClosedError,
    GatewaySubmitError,
    GatewayTimeoutError,
    MalformedEnvelopeError,
    MissingParameterError,
    PermissionDeniedError,
    ProviderError,
    ToolError,
    ToolFailedError,
)


class TestErrorCode:
    """Tests for ErrorCode constants."""

    def test_transport_errors(self) -> None:
        """Transport failures have distinct codes."""
        assert ErrorCode.GATEWAY_UNAVAILABLE == "gateway_unavailable"
        assert ErrorCode.SESSION_FAILED == "session_failed"
        assert ErrorCode.SUBMIT_FAILED == "submit_failed"
        assert ErrorCode.TIMEOUT == "timeout"

    def test_result_errors(self) -> None:
        assert ErrorCode.MALFORMED_ENVELOPE == "malformed_envelope"
        assert ErrorCode.TOOL_FAILED == "tool_failed"


class TestToolError:
    """Tests for the base ToolError class."""

    def test_create_basic_error(self) -> None:
        error = ToolError(error_code="test_error", message="Something went wrong")

        assert error.error_code == "test_error"
        assert error.message == "Something went wrong"
        assert str(error) == "[test_error] Something went wrong"
        assert error.args == ("Something went wrong",)

    def test_to_dict_basic(self) -> None:
        error = ToolError(error_code="test_error", message="Error message")

        assert error.to_dict() == {"error": "test_error", "message": "Error message"}

    def test_to_dict_full(self) -> None:
        error = ToolError(
            error_code="test_error",
            message="Error message",
            details={"key": "value"},
            suggestion="Try X",
        )

        result = error.to_dict()

        assert result["details"] == {"key": "value"}
        assert result["suggestion"] == "Try X"

    def test_error_is_exception(self) -> None:
        """ToolError can be raised and caught like any exception."""
        with pytest.raises(ToolError) as exc_info:
            raise ToolError(error_code="test", message="Test message")

        assert exc_info.value.message == "Test message"


# =============================================================================
# Gateway errors
# =============================================================================


class TestGatewayErrors:
    """Tests for transport-level gateway errors."""

    def test_session_error_includes_status(self) -> None:
        error = GatewaySessionError(status_code=503)

        result = error.to_dict()

        assert result["error"] == "session_failed"
        assert result["message"] == "Failed to open session"
        assert result["status_code"] == 503

    def test_status_omitted_when_unknown(self) -> None:
        assert "status_code" not in GatewaySubmitError().to_dict()

    @pytest.mark.parametrize("error_type", [GatewaySessionError, GatewaySubmitError, GatewayStreamClosedError])
    def test_subclasses_share_gateway_base(self, error_type) -> None:
        """Callers can catch every transport failure as GatewayError."""
        assert isinstance(error_type(), GatewayError)

    def test_timeout_is_not_a_transport_error(self) -> None:
        error = GatewayTimeoutError(timeout_seconds=30.0)

        assert not isinstance(error, GatewayError)
        assert error.to_dict()["timeout_seconds"] == 30.0
        assert "too long" in error.message


# =============================================================================
# Result and policy errors
# =============================================================================


class TestResultAndPolicyErrors:
    def test_malformed_envelope_defaults(self) -> None:
        error = MalformedEnvelopeError()

        assert error.error_code == "malformed_envelope"
        assert error.message == "Couldn't get a result from the tool"

    def test_tool_failed_keeps_status(self) -> None:
        error = ToolFailedError(message="crm failed", status="error")

        assert error.status == "error"
        assert error.error_code == ErrorCode.TOOL_FAILED

    def test_missing_parameter_serializes_name(self) -> None:
        error = MissingParameterError(parameter="linkedin_url")

        assert error.to_dict()["parameter"] == "linkedin_url"

    def test_permission_denied_records_tool(self) -> None:
        error = PermissionDeniedError(tool_name="crm")

        assert error.tool_name == "crm"
        assert error.error_code == "permission_denied"

    def test_configuration_error_reason(self) -> None:
        error = ConfigurationError(reason="api_key missing")

        assert error.reason == "api_key missing"
        assert error.error_code == "configuration_error"

    def test_provider_error_suggests_retry(self) -> None:
        assert ProviderError().suggestion == "Try again in a moment"
