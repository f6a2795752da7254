"""
Bridge between a live call and an OpenAI Realtime session.

Caller audio (mu-law payloads straight off the media stream) is appended
to the session's input buffer; the session's audio deltas are queued back
to the caller through the call's AudioStreamer. Both directions use
g711_ulaw so nothing is transcoded.
"""

import asyncio
import json
import logging
from typing import Any, Optional

from openai import AsyncOpenAI

from src.config import settings
from src.realtime.tools import TOOL_DEFINITIONS, run_tool

logger = logging.getLogger(__name__)


def build_session_config() -> dict:
    """Session settings sent with session.update right after connecting."""
    return {
        "modalities": ["audio", "text"],
        "instructions": settings.agent_instructions,
        "voice": settings.openai_voice,
        "input_audio_format": "g711_ulaw",
        "output_audio_format": "g711_ulaw",
        "input_audio_transcription": {"model": settings.openai_transcription_model},
        "tools": TOOL_DEFINITIONS,
        "tool_choice": "auto",
        "turn_detection": {"type": "server_vad"},
    }


class RealtimeBridge:
    """
    One realtime session per call.

    Connection failures are logged and leave the bridge closed; the media
    stream keeps flowing either way.
    """

    def __init__(self, ctx, streamer, transcript, client: Optional[AsyncOpenAI] = None):
        self.ctx = ctx
        self.call_id = ctx.call_id
        self.streamer = streamer
        self.transcript = transcript
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.connection: Any = None
        self._connection_manager: Any = None
        self._reader: Optional[asyncio.Task] = None
        self.audio_chunks_forwarded = 0

    @property
    def connected(self) -> bool:
        return self.connection is not None

    async def connect(self) -> bool:
        """Open the session, configure it and start reading events."""
        try:
            self._connection_manager = self.client.beta.realtime.connect(
                model=settings.openai_realtime_model
            )
            self.connection = await self._connection_manager.enter()
            await self.connection.session.update(session=build_session_config())
        except Exception as e:
            logger.error(f"[{self.call_id}] Failed to connect to OpenAI: {e}")
            self.connection = None
            return False

        logger.info(f"[{self.call_id}] OpenAI realtime session connected, configuration sent")
        self._reader = asyncio.create_task(self.run())
        return True

    async def greet(self):
        """Have the agent speak first."""
        if not self.connected:
            return
        try:
            await self.connection.conversation.item.create(
                item={
                    "type": "message",
                    "role": "user",
                    "content": [{"type": "input_text", "text": "Hello"}],
                }
            )
            await self.connection.response.create(
                response={
                    "modalities": ["audio", "text"],
                    "instructions": settings.agent_greeting,
                }
            )
            logger.info(f"[{self.call_id}] Greeting response requested")
        except Exception as e:
            logger.error(f"[{self.call_id}] Error triggering greeting: {e}")

    async def send_audio(self, payload: str):
        """Append one caller audio payload to the session input buffer."""
        if not self.connected:
            return
        try:
            await self.connection.input_audio_buffer.append(audio=payload)
            self.audio_chunks_forwarded += 1
        except Exception as e:
            logger.error(f"[{self.call_id}] Error sending audio to OpenAI: {e}")

    async def run(self):
        """Read session events until the connection ends."""
        try:
            async for event in self.connection:
                await self.handle_event(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.call_id}] Error reading from OpenAI: {e}")
        logger.info(f"[{self.call_id}] Realtime event loop exited")

    async def handle_event(self, event):
        event_type = getattr(event, "type", None)
        logger.debug(f"[{self.call_id}] OpenAI event: {event_type}")

        if event_type == "response.audio.delta":
            if event.delta:
                try:
                    await self.streamer.queue_audio(event.delta)
                except asyncio.TimeoutError:
                    pass  # already logged by the streamer

        elif event_type == "response.audio_transcript.done":
            logger.info(f"[{self.call_id}] Agent said: {event.transcript}")
            self.transcript.add_assistant_text(event.transcript)

        elif event_type == "conversation.item.input_audio_transcription.completed":
            logger.info(f"[{self.call_id}] Caller said: {event.transcript}")
            self.transcript.add_user_text(event.transcript)

        elif event_type == "input_audio_buffer.speech_started":
            logger.info(f"[{self.call_id}] Caller started talking, clearing playback")
            await self.streamer.clear_queue()
            try:
                await self.connection.response.cancel()
            except Exception as e:
                logger.warning(f"[{self.call_id}] Failed to cancel response: {e}")

        elif event_type == "response.function_call_arguments.done":
            await self._handle_function_call(event)

        elif event_type == "session.updated":
            logger.info(f"[{self.call_id}] Session configured")

        elif event_type == "response.done":
            logger.info(f"[{self.call_id}] Response completed")

        elif event_type == "error":
            logger.error(f"[{self.call_id}] OpenAI error: {getattr(event, 'error', event)}")

    async def _handle_function_call(self, event):
        name = getattr(event, "name", None)
        output = await run_tool(name, event.arguments, self.ctx)

        await self.connection.conversation.item.create(
            item={
                "type": "function_call_output",
                "call_id": event.call_id,
                "output": json.dumps(output),
            }
        )
        # Let the agent acknowledge the result and keep talking
        await self.connection.response.create()

    async def close(self):
        if self._reader and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass

        if self.connection is not None:
            try:
                await self.connection.close()
            except Exception as e:
                logger.warning(f"[{self.call_id}] Error closing realtime session: {e}")
            self.connection = None

        logger.info(
            f"[{self.call_id}] Realtime bridge closed, "
            f"audio chunks forwarded: {self.audio_chunks_forwarded}"
        )
