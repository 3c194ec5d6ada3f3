"""Tests for gateway tool runners."""

from __future__ import annotations

from dataclasses import replace

import pytest

from kinga.ai.gateway.client import RPCResult
from kinga.ai.tools.envelope import EnvelopeShape
from kinga.ai.tools.errors import ErrorCode, GatewaySessionError, GatewayTimeoutError
from kinga.ai.tools.runners import ToolRunner, fallback_text
from kinga.services.settings import Settings
from tests.helpers import FakeRPCClient, envelope_payload, rpc_success


def _ticking_clock(*values: float):
    return iter(values).__next__


class TestToolRunner:
    @pytest.mark.asyncio
    async def test_success_builds_envelope_card_and_context(self, gateway_settings):
        rpc = FakeRPCClient([rpc_success(envelope_payload())])
        runner = ToolRunner(gateway_settings, rpc_client=rpc, clock=_ticking_clock(10.0, 10.25))

        result = await runner.run("email_finder", {"linkedin_url": "https://www.linkedin.com/in/ada/"})

        assert result.ok
        assert result.shape is EnvelopeShape.CONTENT_ARRAY_TEXT
        assert result.envelope.meta.latency_ms == 250
        assert result.duration_ms == pytest.approx(250)
        assert result.card == {"title": "Ada Lovelace"}
        assert result.ctx == {"name": "Ada Lovelace", "email": "ada@example.com", "company": "Analytical Engines"}
        assert result.result_status == "ok"
        assert rpc.calls == [
            {
                "base_url": "https://gateway.example.com/mcp/sse",
                "headers": {"kinga_key": "secret-value"},
                "tool_name": "email_finder",
                "args": {"linkedin_url": "https://www.linkedin.com/in/ada/"},
                "timeout": 5.0,
            }
        ]

    @pytest.mark.asyncio
    async def test_gateway_tool_id_comes_from_settings(self, gateway_settings):
        rpc = FakeRPCClient([rpc_success(envelope_payload(tool_id="search", card=False))])
        runner = ToolRunner(replace(gateway_settings, search_tool_id="web_search_v2"), rpc_client=rpc)

        result = await runner.run("search", {"agent_query": "kinga"})

        assert result.ok
        assert result.card is None
        assert rpc.calls[0]["tool_name"] == "web_search_v2"
        assert runner.gateway_tool_id("unknown") == "unknown"

    @pytest.mark.asyncio
    async def test_unconfigured_gateway_fails_without_calling(self):
        rpc = FakeRPCClient([rpc_success(envelope_payload())])
        runner = ToolRunner(Settings(), rpc_client=rpc)

        result = await runner.run("email_finder", {"linkedin_url": "u"})

        assert not result.ok
        assert result.error_code == ErrorCode.CONFIGURATION_ERROR
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_timeout_becomes_failure_result(self, gateway_settings):
        runner = ToolRunner(gateway_settings, rpc_client=FakeRPCClient([GatewayTimeoutError(timeout_seconds=5.0)]))

        result = await runner.run("email_finder", {"linkedin_url": "u"})

        assert not result.ok
        assert result.timed_out
        assert result.error == "The tool took too long to respond"

    @pytest.mark.asyncio
    async def test_transport_error_becomes_failure_result(self, gateway_settings):
        runner = ToolRunner(gateway_settings, rpc_client=FakeRPCClient([GatewaySessionError(status_code=502)]))

        result = await runner.run("search", {"agent_query": "q"})

        assert result.error_code == ErrorCode.SESSION_FAILED
        assert not result.timed_out

    @pytest.mark.asyncio
    async def test_rpc_error_is_tool_failure(self, gateway_settings):
        rpc_error = RPCResult(id="x", error={"code": -1, "message": "upstream exploded"})
        runner = ToolRunner(gateway_settings, rpc_client=FakeRPCClient([rpc_error]))

        result = await runner.run("search", {"agent_query": "q"})

        assert result.error_code == ErrorCode.TOOL_FAILED
        assert result.error == "upstream exploded"

    @pytest.mark.asyncio
    async def test_unrecognized_result_is_malformed(self, gateway_settings):
        weird = RPCResult(id="x", result={"hello": "world"}, raw={"id": "x", "result": {"hello": "world"}})
        runner = ToolRunner(gateway_settings, rpc_client=FakeRPCClient([weird]))

        result = await runner.run("search", {"agent_query": "q"})

        assert result.error_code == ErrorCode.MALFORMED_ENVELOPE

    @pytest.mark.asyncio
    async def test_crm_requires_crm_tool_id_and_ok_status(self, gateway_settings):
        rejected = rpc_success(envelope_payload(tool_id="crm", status="error", summary="duplicate contact", card=False))
        wrong_tool = rpc_success(envelope_payload(tool_id="search", status="ok", card=False))
        accepted = rpc_success(envelope_payload(tool_id="crm_upsert", status="Success", card=False))
        runner = ToolRunner(gateway_settings, rpc_client=FakeRPCClient([rejected, wrong_tool, accepted]))

        first = await runner.run("crm", {"crm_handoff_package": "{}"})
        second = await runner.run("crm", {"crm_handoff_package": "{}"})
        third = await runner.run("crm", {"crm_handoff_package": "{}"})

        assert first.error_code == ErrorCode.TOOL_FAILED
        assert first.error == "duplicate contact"
        assert first.envelope is not None
        assert not second.ok
        assert third.ok


def test_fallback_text() -> None:
    assert fallback_text("raw") == "raw"
    assert fallback_text({"content": [{"text": "inner"}]}) == "inner"
    assert fallback_text({"content": []}) is None
    assert fallback_text(42) is None
