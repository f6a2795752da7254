"""
Media stream simulator.

Plays the provider's side of a call against a running server: connects to
the stream endpoint, sends a 'start' event, a fixed run of 'media' frames at
telephony cadence, then 'stop', and logs everything the server sends back.

    python -m src.simulator --url ws://localhost:8080/stream --count 100
"""
import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from src.audio.conversion import FRAME_MS, encode_payload, generate_tone_frame, silence_frame

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "ws://localhost:8080/stream"


@dataclass
class StreamScript:
    """Identifiers and timing for one simulated call."""
    call_uuid: str = "test-123"
    from_number: str = "918504074217"
    to_number: str = "08071387304"

    call_id: str = "test-call-123"
    stream_id: str = "test-stream-456"
    account_id: str = "test-account-789"

    start_delay: float = 1.0      # after 'start', before the first 'media'
    media_count: int = 100
    media_interval: float = FRAME_MS / 1000
    stop_delay: float = 2.0       # after the last 'media', before 'stop'
    close_delay: float = 1.0      # after 'stop', before closing the socket


def build_stream_url(base_url: str, call_uuid: str, from_number: str, to_number: str) -> str:
    query = urlencode({"calluuid": call_uuid, "from": from_number, "to": to_number})
    return f"{base_url}?{query}"


def start_event(call_id: str, stream_id: str, account_id: str) -> dict:
    return {
        "event": "start",
        "start": {
            "callId": call_id,
            "streamId": stream_id,
            "accountId": account_id,
        },
    }


def media_event(payload: str) -> dict:
    return {"event": "media", "media": {"payload": payload}}


def stop_event() -> dict:
    return {"event": "stop"}


class StreamSimulator:
    """
    Runs one scripted call over a single connection.

    Sending and receiving run concurrently; the send order is always
    start, media_count × media, stop. Failures are logged, never retried.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, script: Optional[StreamScript] = None, payload: Optional[str] = None):
        self.script = script or StreamScript()
        self.url = build_stream_url(base_url, self.script.call_uuid, self.script.from_number, self.script.to_number)
        self.payload = payload or encode_payload(silence_frame())
        self.media_sent = 0
        self.received: List[str] = []
        self.close_code: Optional[int] = None
        self.close_reason: str = ""

    async def send_script(self, ws):
        s = self.script

        logger.info("Sending START event")
        await ws.send(json.dumps(start_event(s.call_id, s.stream_id, s.account_id)))

        await asyncio.sleep(s.start_delay)

        logger.info(f"Sending {s.media_count} MEDIA events every {s.media_interval * 1000:.0f}ms")
        frame = json.dumps(media_event(self.payload))
        for _ in range(s.media_count):
            await ws.send(frame)
            self.media_sent += 1
            await asyncio.sleep(s.media_interval)

        await asyncio.sleep(s.stop_delay)

        logger.info("Sending STOP event")
        await ws.send(json.dumps(stop_event()))

        await asyncio.sleep(s.close_delay)

    async def receive_loop(self, ws):
        """Log every server message until the connection closes."""
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                self.received.append(message)
                logger.info(f"Received: {message}")
        except ConnectionClosed as e:
            logger.error(f"Connection closed abnormally: {e}")

    async def run(self) -> int:
        """
        Connect, play the script, close.

        Returns:
            Number of media messages sent
        """
        logger.info(f"Connecting to {self.url}")
        try:
            async with websockets.connect(self.url) as ws:
                logger.info("Connected to WebSocket")
                receiver = asyncio.create_task(self.receive_loop(ws))
                try:
                    await self.send_script(ws)
                except ConnectionClosed as e:
                    logger.error(f"Send failed, connection closed: {e}")
                finally:
                    await ws.close()
                    await receiver
                    self.close_code = ws.close_code
                    self.close_reason = ws.close_reason or ""
        except (OSError, WebSocketException) as e:
            logger.error(f"WebSocket error: {e}")
            return self.media_sent

        logger.info(f"Disconnected (code: {self.close_code}, reason: {self.close_reason})")
        return self.media_sent


def parse_args(argv=None) -> argparse.Namespace:
    defaults = StreamScript()
    ap = argparse.ArgumentParser(description="Simulate a provider media stream against the server")
    ap.add_argument("--url", default=DEFAULT_BASE_URL, help="Stream endpoint, without query string")
    ap.add_argument("--calluuid", default=defaults.call_uuid)
    ap.add_argument("--from", dest="from_number", default=defaults.from_number)
    ap.add_argument("--to", dest="to_number", default=defaults.to_number)
    ap.add_argument("--count", type=int, default=defaults.media_count, help="Number of media frames")
    ap.add_argument("--interval-ms", type=float, default=defaults.media_interval * 1000)
    ap.add_argument("--tone", type=float, default=None, help="Send a sine tone at this frequency instead of silence")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    args = parse_args(argv)

    script = StreamScript(
        call_uuid=args.calluuid,
        from_number=args.from_number,
        to_number=args.to_number,
        media_count=args.count,
        media_interval=args.interval_ms / 1000,
    )
    frame = generate_tone_frame(args.tone) if args.tone is not None else silence_frame()

    simulator = StreamSimulator(args.url, script, encode_payload(frame))
    sent = asyncio.run(simulator.run())
    return 0 if sent == script.media_count else 1


if __name__ == "__main__":
    sys.exit(main())
