import json
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse, Response
from pydantic import ValidationError

from src.config import settings
from src.vobiz.client import (
    VobizAPIError,
    build_answer_url,
    create_outbound_call,
    generate_stream_xml,
)
from src.vobiz.handlers import MESSAGE_HANDLERS, manager, release_call, state_manager
from src.vobiz.models import OutboundCallRequest, StreamParams, parse_message

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Call metrics for /metrics endpoint
class CallMetrics:
    def __init__(self):
        self.total_calls: int = 0
        self.total_errors: int = 0
        self.total_media_frames: int = 0
        self.total_duration_ms: float = 0.0
        self.call_start_times: dict[str, float] = {}

    def on_call_start(self, call_id: str):
        self.total_calls += 1
        self.call_start_times[call_id] = time.monotonic()

    def on_call_end(self, call_id: str):
        start = self.call_start_times.pop(call_id, None)
        if start:
            self.total_duration_ms += (time.monotonic() - start) * 1000

    def on_media(self):
        self.total_media_frames += 1

    def on_error(self):
        self.total_errors += 1

    @property
    def avg_call_duration_ms(self) -> float:
        completed = self.total_calls - len(self.call_start_times)
        if completed <= 0:
            return 0.0
        return self.total_duration_ms / completed


metrics = CallMetrics()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info(
        f"Call stream service starting: stream_path={settings.stream_path}, "
        f"realtime={'on' if settings.realtime_enabled else 'off'}, "
        f"max_calls={settings.max_concurrent_calls}"
    )
    yield

    active = state_manager.get_call_count()
    if active > 0:
        logger.info(f"Shutting down with {active} call(s) still tracked")
    logger.info("Call stream service shut down")


app = FastAPI(title="Call Stream - Media Ingestion Server", lifespan=lifespan)


@app.get("/health")
async def health_check():
    """Health check with call counts."""
    return {
        "status": "healthy",
        "open_connections": manager.get_active_call_count(),
        "active_calls": len(state_manager.get_active_calls()),
        "max_concurrent_calls": settings.max_concurrent_calls,
        "realtime_enabled": settings.realtime_enabled,
    }


@app.get("/metrics")
async def metrics_endpoint():
    """Prometheus-compatible metrics."""
    active = manager.get_active_call_count()
    lines = [
        "# HELP callstream_calls_total Total calls started",
        "# TYPE callstream_calls_total counter",
        f"callstream_calls_total {metrics.total_calls}",
        "# HELP callstream_connections_active Currently open stream connections",
        "# TYPE callstream_connections_active gauge",
        f"callstream_connections_active {active}",
        "# HELP callstream_media_frames_total Total media frames ingested",
        "# TYPE callstream_media_frames_total counter",
        f"callstream_media_frames_total {metrics.total_media_frames}",
        "# HELP callstream_errors_total Total errors",
        "# TYPE callstream_errors_total counter",
        f"callstream_errors_total {metrics.total_errors}",
        "# HELP callstream_avg_call_duration_ms Average call duration",
        "# TYPE callstream_avg_call_duration_ms gauge",
        f"callstream_avg_call_duration_ms {metrics.avg_call_duration_ms:.1f}",
    ]
    return PlainTextResponse("\n".join(lines) + "\n", media_type="text/plain")


@app.post("/incoming-call")
async def incoming_call(request: Request):
    """Answer an inbound call with XML that opens the media stream."""
    host = request.headers.get("host", f"{settings.server_host}:{settings.server_port}")
    websocket_url = f"wss://{host}{settings.stream_path}"
    if request.url.query:
        websocket_url = f"{websocket_url}?{request.url.query}"
    xml = generate_stream_xml(websocket_url)
    return Response(content=xml, media_type="application/xml")


@app.post("/outbound-call")
async def outbound_call(call: OutboundCallRequest, request: Request):
    """Initiate an outbound call that will stream to this server."""
    if not call.from_number or not call.to_number:
        raise HTTPException(status_code=400, detail="Missing 'from_number' or 'to_number' in request body")

    base = str(request.base_url).rstrip("/")
    answer_url = build_answer_url(f"{base}/incoming-call", call.body)

    try:
        data = await create_outbound_call(call.from_number, call.to_number, answer_url)
    except VobizAPIError as e:
        raise HTTPException(status_code=e.status_code, detail=f"Vobiz API error: {e.detail}")
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"Vobiz request failed: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail=f"Vobiz API request failed: {e}")

    return {"success": True, "data": data}


@app.post("/hangup")
async def hangup_callback(request: Request):
    """Hangup callback from Vobiz; logged only."""
    raw = await request.body()
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        body = raw.decode("utf-8", errors="replace")
    logger.info(f"Hangup callback: {body}")
    return {"status": "ok"}


@app.websocket(settings.stream_path)
async def stream_endpoint(websocket: WebSocket):
    """WebSocket endpoint for Vobiz media streams."""
    # Connection limiting: reject if at capacity
    if manager.get_active_call_count() >= settings.max_concurrent_calls:
        logger.warning(
            f"Connection rejected: at capacity "
            f"({settings.max_concurrent_calls} concurrent calls)"
        )
        await websocket.close(code=1013)  # 1013 = Try Again Later
        return

    # Claim the slot before the first await so concurrent handshakes see it
    manager.open_sockets += 1
    temp_id = None
    websocket.state.call_id = None
    started: set[str] = set()

    try:
        await websocket.accept()

        params = StreamParams.model_validate(dict(websocket.query_params))
        temp_id, _ = await state_manager.on_connected(websocket, params)
        websocket.state.temp_id = temp_id
        logger.info(f"Stream connected: calluuid={params.calluuid}, from={params.from_number}, to={params.to_number}")

        async for raw in websocket.iter_text():
            try:
                message = parse_message(raw)
            except json.JSONDecodeError as e:
                logger.error(f"Failed to parse JSON message: {e}")
                metrics.on_error()
                continue
            except ValidationError:
                logger.warning(f"Unrecognised stream message: {raw[:100]}")
                continue

            try:
                ingested = await MESSAGE_HANDLERS[message.event](websocket, message)
            except Exception as e:
                logger.error(f"Error handling {message.event} message: {e}", exc_info=True)
                metrics.on_error()
                call_id = websocket.state.call_id
                if call_id:
                    await state_manager.on_error(call_id, str(e))
                continue

            if message.event == "start" and ingested:
                started.add(websocket.state.call_id)
                metrics.on_call_start(websocket.state.call_id)
            elif message.event == "media" and ingested:
                metrics.on_media()

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {websocket.state.call_id or temp_id}")
    except Exception as e:
        logger.error(f"WebSocket error: {e}", exc_info=True)
        metrics.on_error()
    finally:
        manager.open_sockets -= 1
        call_id = websocket.state.call_id
        if call_id:
            await release_call(call_id)
        elif temp_id is not None:
            state_manager.discard_pending(temp_id)
        for started_id in started:
            metrics.on_call_end(started_id)


def main():
    import os
    import uvicorn
    port = int(os.environ.get("PORT", settings.server_port))
    uvicorn.run(
        "src.main:app",
        host=settings.server_host,
        port=port,
        log_level="info"
    )


if __name__ == "__main__":
    main()
