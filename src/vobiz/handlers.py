import binascii
import logging
from typing import Dict, Optional
from fastapi import WebSocket
from src.audio.buffers import AudioStreamer
from src.audio.conversion import mulaw_to_pcm, decode_payload, measure_level
from src.config import settings
from src.realtime.bridge import RealtimeBridge
from src.realtime.transcript import TranscriptStore
from src.state.manager import CallStateManager
from src.vobiz.models import VobizMessage

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self.streamers: Dict[str, AudioStreamer] = {}

        # Realtime sessions per call (only when an OpenAI key is configured)
        self.bridges: Dict[str, RealtimeBridge] = {}

        # Transcripts per call, in memory for the life of the call
        self.transcripts = TranscriptStore(max_entries=settings.max_transcript_entries)

        # Connections accepted but not yet closed, including those before 'start'
        self.open_sockets: int = 0

    def get_active_call_count(self) -> int:
        return self.open_sockets

    async def connect(self, call_id: str, stream_id: str, websocket: WebSocket) -> AudioStreamer:
        self.active_connections[call_id] = websocket

        previous = self.streamers.pop(call_id, None)
        if previous:
            logger.warning(f"Replacing audio streamer for call: {call_id}")
            await previous.stop()

        streamer = AudioStreamer(websocket, stream_id)
        await streamer.start()
        self.streamers[call_id] = streamer

        logger.info(f"Call registered: {call_id}, stream: {stream_id}")
        return streamer

    async def disconnect(self, call_id: str):
        bridge = self.bridges.pop(call_id, None)
        if bridge:
            await bridge.close()

        streamer = self.streamers.pop(call_id, None)
        if streamer:
            await streamer.stop()

        transcript = self.transcripts.pop(call_id)
        if transcript and len(transcript):
            logger.info(f"[{call_id}] Transcript ({transcript.get_turn_count()} caller turns):\n{transcript.as_text()}")

        self.active_connections.pop(call_id, None)
        logger.info(f"Connection removed for call: {call_id}")

    def get(self, call_id: str) -> Optional[WebSocket]:
        return self.active_connections.get(call_id)

    def get_streamer(self, call_id: str) -> Optional[AudioStreamer]:
        return self.streamers.get(call_id)

    def get_bridge(self, call_id: str) -> Optional[RealtimeBridge]:
        return self.bridges.get(call_id)


manager = ConnectionManager()

# Create global state manager instance
state_manager = CallStateManager()


def _call_id(websocket: WebSocket) -> Optional[str]:
    return getattr(websocket.state, "call_id", None)


async def handle_start(websocket: WebSocket, message: VobizMessage) -> bool:
    """Handle 'start' event - register call and open its realtime session.

    A second 'start' on the same socket ends the call it replaces.
    Returns True when a call was registered.
    """
    start = message.start
    if start is None:
        logger.warning("Received start event without start payload")
        return False

    previous = _call_id(websocket)
    if previous:
        logger.warning(f"Repeated start on open stream: releasing {previous} before {start.callId}")
        await release_call(previous)
        websocket.state.call_id = None

    temp_id = getattr(websocket.state, "temp_id", id(websocket))
    ctx = await state_manager.on_start(temp_id, start.callId, start.streamId, start.accountId)
    websocket.state.call_id = start.callId

    logger.info(
        f"Stream started: {start.streamId}, Call: {start.callId}, "
        f"Account: {start.accountId}, State: {ctx.state.value}"
    )

    streamer = await manager.connect(start.callId, start.streamId, websocket)

    if settings.realtime_enabled:
        transcript = manager.transcripts.get(start.callId)
        bridge = RealtimeBridge(ctx, streamer, transcript)
        if await bridge.connect():
            manager.bridges[start.callId] = bridge
            await bridge.greet()
    return True


async def handle_media(websocket: WebSocket, message: VobizMessage) -> bool:
    """
    Ingest one audio frame.

    Flow:
    1. Decode base64 mu-law payload
    2. Meter level and count the frame on the call context
    3. Forward the untouched payload to the realtime session, if any

    Returns True only when the frame was counted against a live call.
    """
    call_id = _call_id(websocket)
    payload = message.media.payload if message.media else None

    if call_id is None:
        logger.warning("Received media before start, ignoring")
        return False

    if not payload:
        logger.warning(f"[{call_id}] Received media event with no payload")
        return False

    try:
        audio_mulaw = decode_payload(payload)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"[{call_id}] Media payload is not valid base64: {e}")
        return False

    peak, rms = measure_level(mulaw_to_pcm(audio_mulaw))
    ctx = state_manager.on_media(call_id, len(audio_mulaw), peak, rms)
    if ctx is None:
        return False
    if ctx.media_frames % 500 == 0:
        logger.info(f"[{call_id}] {ctx.media_frames} media frames received, rms={rms:.3f}")

    bridge = manager.get_bridge(call_id)
    if bridge:
        await bridge.send_audio(payload)
    return True


async def handle_stop(websocket: WebSocket, message: VobizMessage):
    """Handle 'stop' event - stream ending"""
    call_id = _call_id(websocket)
    if call_id is None:
        logger.warning("Received stop before start, ignoring")
        return

    await state_manager.on_stop(call_id)
    logger.info(f"Stream stopped: {call_id}")

    await release_call(call_id)
    websocket.state.call_id = None


async def release_call(call_id: str):
    """Tear down everything held for a call. Safe to call twice."""
    ctx = state_manager.get_context(call_id)
    streamer = manager.get_streamer(call_id)
    if ctx and streamer:
        ctx.audio_sent_count = streamer.sent_count

    await manager.disconnect(call_id)
    if ctx:
        await state_manager.cleanup(call_id)


# Message router
MESSAGE_HANDLERS = {
    "start": handle_start,
    "media": handle_media,
    "stop": handle_stop,
}
