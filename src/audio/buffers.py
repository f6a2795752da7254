"""
Playback of model audio back down the call's media stream.

The realtime session can produce speech in bursts much faster than the
phone leg plays it. Frames wait here in a short bounded queue and are
written out as `playAudio` events at the 20 ms frame rate; a barge-in
empties the queue and asks Vobiz to drop whatever it has buffered.
"""
import asyncio
import logging
from asyncio import Queue
from typing import Optional
from fastapi import WebSocket

from src.vobiz.models import clear_audio, play_audio

logger = logging.getLogger(__name__)

# One second of playback at 20 ms per frame
MAX_QUEUED_FRAMES = 50
FRAME_INTERVAL = 0.020
ENQUEUE_TIMEOUT = 1.0


class AudioStreamer:
    """
    Paced writer of caller-bound audio for one stream.

    `queue_audio` is the producer side and may stall for up to a second
    when the caller is not keeping up; `_send_loop` is the consumer.
    """

    def __init__(self, websocket: WebSocket, stream_id: str):
        self.websocket = websocket
        self.stream_id = stream_id
        self.outbound_queue: Queue[str] = Queue(maxsize=MAX_QUEUED_FRAMES)
        self.running = False
        self.sent_count = 0
        self._send_task: Optional[asyncio.Task] = None

    async def start(self):
        """Begin writing queued frames to the stream."""
        self.running = True
        self._send_task = asyncio.create_task(self._send_loop())
        logger.info(f"[{self.stream_id}] Playback started")

    async def stop(self):
        self.running = False
        if self._send_task:
            self._send_task.cancel()
            try:
                await self._send_task
            except asyncio.CancelledError:
                pass
        logger.info(f"[{self.stream_id}] Playback stopped after {self.sent_count} frames")

    async def queue_audio(self, audio_payload: str):
        """
        Hand one base64 mu-law frame over for playback.

        Raises:
            asyncio.TimeoutError: the queue stayed full for ENQUEUE_TIMEOUT;
                the frame is not queued
        """
        try:
            await asyncio.wait_for(self.outbound_queue.put(audio_payload), timeout=ENQUEUE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(
                f"[{self.stream_id}] Caller playback stalled, frame not queued "
                f"({self.outbound_queue.qsize()}/{self.outbound_queue.maxsize} waiting)"
            )
            raise
        logger.debug(f"[{self.stream_id}] {self.outbound_queue.qsize()} frames waiting")

    async def clear_queue(self):
        """Barge-in: forget pending frames and send clearAudio."""
        dropped = 0
        while not self.outbound_queue.empty():
            try:
                self.outbound_queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            dropped += 1

        try:
            await self.websocket.send_text(clear_audio())
        except Exception as e:
            logger.warning(f"[{self.stream_id}] clearAudio not delivered: {e}")

        logger.info(f"[{self.stream_id}] Playback interrupted, {dropped} frames dropped")

    async def _send_loop(self):
        # One playAudio per frame interval; a failed write ends playback
        while self.running:
            try:
                payload = await self.outbound_queue.get()
                await self.websocket.send_text(play_audio(payload))
                self.sent_count += 1
                await asyncio.sleep(FRAME_INTERVAL)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[{self.stream_id}] playAudio write failed: {e}", exc_info=True)
                break
