"""Tests for start/media/stop event handling."""

from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from src.audio.conversion import encode_payload, generate_tone_frame, silence_frame
from src.config import settings
from src.state.manager import CallState
from src.vobiz.handlers import (
    MESSAGE_HANDLERS,
    handle_media,
    handle_start,
    handle_stop,
    manager,
    state_manager,
)
from src.vobiz.models import VobizMessage


@pytest.fixture(autouse=True)
def realtime_off():
    with patch.object(settings, "openai_api_key", ""):
        yield


def _websocket():
    ws = AsyncMock()
    ws.state = SimpleNamespace(call_id=None)
    return ws


def _start(call_id="call-h1"):
    return VobizMessage.model_validate({
        "event": "start",
        "start": {"callId": call_id, "streamId": "stream-h1", "accountId": "acct-h1"},
    })


def _media(payload):
    return VobizMessage.model_validate({"event": "media", "media": {"payload": payload}})


STOP = VobizMessage.model_validate({"event": "stop"})


def test_router_covers_all_events():
    assert set(MESSAGE_HANDLERS) == {"start", "media", "stop"}


@pytest.mark.asyncio
async def test_start_media_stop_flow():
    ws = _websocket()
    call_id = "call-flow"

    await handle_start(ws, _start(call_id))
    ctx = state_manager.get_context(call_id)
    assert ctx.state == CallState.ACTIVE
    assert ctx.account_id == "acct-h1"
    assert ws.state.call_id == call_id
    assert manager.get_streamer(call_id) is not None

    tone = encode_payload(generate_tone_frame(440, amplitude=0.5))
    for _ in range(3):
        await handle_media(ws, _media(tone))
    await handle_media(ws, _media(encode_payload(silence_frame())))

    assert ctx.media_frames == 4
    assert ctx.media_bytes == 640
    assert ctx.peak_level > 0.4
    assert ctx.last_rms == 0.0

    await handle_stop(ws, STOP)

    assert ctx.state == CallState.STOPPING
    assert state_manager.get_context(call_id) is None
    assert manager.get_streamer(call_id) is None
    assert ws.state.call_id is None


@pytest.mark.asyncio
async def test_media_before_start_ignored():
    ws = _websocket()
    with patch.object(state_manager, "on_media") as mock_on_media:
        await handle_media(ws, _media(encode_payload(silence_frame())))
    mock_on_media.assert_not_called()


@pytest.mark.asyncio
async def test_empty_and_invalid_payloads_not_counted():
    ws = _websocket()
    call_id = "call-bad-media"
    await handle_start(ws, _start(call_id))
    ctx = state_manager.get_context(call_id)

    await handle_media(ws, _media(""))
    await handle_media(ws, _media("@@not-base64@@"))
    await handle_media(ws, VobizMessage(event="media"))

    assert ctx.media_frames == 0
    await handle_stop(ws, STOP)


@pytest.mark.asyncio
async def test_stop_before_start_ignored():
    ws = _websocket()
    with patch.object(state_manager, "on_stop", new_callable=AsyncMock) as mock_on_stop:
        await handle_stop(ws, STOP)
    mock_on_stop.assert_not_awaited()


@pytest.mark.asyncio
async def test_realtime_bridge_opened_and_fed():
    """With a key configured the call gets a bridge that receives every payload."""
    ws = _websocket()
    call_id = "call-bridge"

    bridge = MagicMock()
    bridge.connect = AsyncMock(return_value=True)
    bridge.greet = AsyncMock()
    bridge.send_audio = AsyncMock()
    bridge.close = AsyncMock()

    with patch.object(settings, "openai_api_key", "sk-test"), \
         patch("src.vobiz.handlers.RealtimeBridge", return_value=bridge) as MockBridge:
        await handle_start(ws, _start(call_id))

        ctx_arg = MockBridge.call_args.args[0]
        assert ctx_arg.call_id == call_id
        bridge.greet.assert_awaited_once()
        assert manager.get_bridge(call_id) is bridge

        payload = encode_payload(silence_frame())
        await handle_media(ws, _media(payload))
        bridge.send_audio.assert_awaited_once_with(payload)

        await handle_stop(ws, STOP)

    bridge.close.assert_awaited_once()
    assert manager.get_bridge(call_id) is None


@pytest.mark.asyncio
async def test_bridge_not_kept_when_connect_fails():
    ws = _websocket()
    call_id = "call-bridge-down"

    bridge = MagicMock()
    bridge.connect = AsyncMock(return_value=False)
    bridge.greet = AsyncMock()

    with patch.object(settings, "openai_api_key", "sk-test"), \
         patch("src.vobiz.handlers.RealtimeBridge", return_value=bridge):
        await handle_start(ws, _start(call_id))

    assert manager.get_bridge(call_id) is None
    bridge.greet.assert_not_awaited()

    # Ingestion carries on without the bridge
    await handle_media(ws, _media(encode_payload(silence_frame())))
    assert state_manager.get_context(call_id).media_frames == 1
    await handle_stop(ws, STOP)


@pytest.mark.asyncio
async def test_handle_media_reports_ingestion():
    ws = _websocket()
    payload = encode_payload(silence_frame())

    assert await handle_media(ws, _media(payload)) is False

    await handle_start(ws, _start("call-ingest"))
    assert await handle_media(ws, _media(payload)) is True
    assert await handle_media(ws, _media("")) is False
    assert await handle_media(ws, _media("@@not-base64@@")) is False
    assert await handle_media(ws, VobizMessage(event="media")) is False

    assert state_manager.get_context("call-ingest").media_frames == 1
    await handle_stop(ws, STOP)


@pytest.mark.asyncio
async def test_repeated_start_releases_previous_call():
    """A second start on one socket must not leave the first call tracked."""
    ws = _websocket()

    await handle_start(ws, _start("call-first"))
    first_streamer = manager.get_streamer("call-first")

    await handle_start(ws, _start("call-second"))

    assert state_manager.get_context("call-first") is None
    assert manager.get_streamer("call-first") is None
    assert first_streamer.running is False
    assert ws.state.call_id == "call-second"
    assert state_manager.get_context("call-second").state == CallState.ACTIVE

    await handle_stop(ws, STOP)

    assert state_manager.get_context("call-second") is None
    assert manager.get_streamer("call-second") is None
    assert "call-first" not in state_manager.calls


@pytest.mark.asyncio
async def test_repeated_start_same_call_replaces_streamer():
    ws = _websocket()

    await handle_start(ws, _start("call-same"))
    old_streamer = manager.get_streamer("call-same")

    await handle_start(ws, _start("call-same"))
    new_streamer = manager.get_streamer("call-same")

    assert new_streamer is not old_streamer
    assert old_streamer.running is False
    assert old_streamer._send_task.done()
    assert new_streamer.running is True

    await handle_stop(ws, STOP)
    assert manager.get_streamer("call-same") is None


@pytest.mark.asyncio
async def test_connect_stops_existing_streamer():
    first = await manager.connect("call-reconnect", "stream-a", _websocket())
    second = await manager.connect("call-reconnect", "stream-b", _websocket())

    assert first.running is False
    assert manager.get_streamer("call-reconnect") is second

    await manager.disconnect("call-reconnect")
    assert second.running is False
