"""Tests for the agent's function tools."""

import pytest
from unittest.mock import AsyncMock, patch

from src.realtime.tools import TOOL_DEFINITIONS, run_tool
from src.state.manager import CallContext, CallState
from src.vobiz.client import VobizAPIError


def _ctx():
    return CallContext(
        state=CallState.ACTIVE,
        call_id="call-1",
        from_number="918504074217",
        to_number="08071387304",
    )


def test_tool_definitions_names():
    assert [t["name"] for t in TOOL_DEFINITIONS] == ["call_end", "get_caller_info"]
    assert all(t["type"] == "function" for t in TOOL_DEFINITIONS)


@pytest.mark.asyncio
async def test_get_caller_info():
    result = await run_tool("get_caller_info", "{}", _ctx())
    assert result == {"callId": "call-1", "from": "918504074217", "to": "08071387304"}


@pytest.mark.asyncio
async def test_call_end_uses_model_call_id():
    with patch("src.realtime.tools.hangup_call", new_callable=AsyncMock) as mock_hangup:
        result = await run_tool("call_end", '{"callId": "call-from-model"}', _ctx())

    mock_hangup.assert_awaited_once_with("call-from-model")
    assert result == {"status": "call_terminated"}


@pytest.mark.asyncio
async def test_call_end_falls_back_to_session_call_id():
    with patch("src.realtime.tools.hangup_call", new_callable=AsyncMock) as mock_hangup:
        await run_tool("call_end", "not json", _ctx())

    mock_hangup.assert_awaited_once_with("call-1")


@pytest.mark.asyncio
async def test_call_end_reports_failure():
    with patch("src.realtime.tools.hangup_call", new_callable=AsyncMock) as mock_hangup:
        mock_hangup.side_effect = VobizAPIError(404, "not found")
        result = await run_tool("call_end", "{}", _ctx())

    assert "error" in result
    assert "404" in result["error"]


@pytest.mark.asyncio
async def test_unknown_tool():
    result = await run_tool("launch_rocket", "{}", _ctx())
    assert result == {"error": "unknown tool: launch_rocket"}
