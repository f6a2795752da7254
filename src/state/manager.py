"""
Call state management for tracking stream lifecycle.

States:
- IDLE: No active call
- CONNECTING: WebSocket accepted, waiting for 'start' message
- ACTIVE: Call in progress, audio flowing
- STOPPING: Received 'stop' message, cleaning up
- ERROR: Abnormal termination
"""
from enum import Enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict
from fastapi import WebSocket
import logging

logger = logging.getLogger(__name__)

class CallState(Enum):
    """Call lifecycle states"""
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    STOPPING = "stopping"
    ERROR = "error"

@dataclass
class CallContext:
    """
    Context for a single call.

    Tracks state, identifiers, and metadata throughout call lifecycle.
    """
    state: CallState
    call_id: Optional[str] = None
    stream_id: Optional[str] = None
    account_id: Optional[str] = None
    websocket: Optional[WebSocket] = None
    connected_at: Optional[datetime] = None
    error_message: Optional[str] = None

    # Stream URL query parameters
    call_uuid: Optional[str] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None

    # Audio tracking
    media_frames: int = 0
    media_bytes: int = 0
    audio_sent_count: int = 0
    peak_level: float = 0.0
    last_rms: float = 0.0

class CallStateManager:
    """
    Manages call state transitions and context.

    Contexts are held by websocket id until the 'start' message names the call.
    """

    def __init__(self):
        self.calls: Dict[str, CallContext] = {}
        # Temporary storage for calls before we have call_id
        self.pending_connections: Dict[int, CallContext] = {}

    async def on_connected(self, websocket: WebSocket, params=None) -> tuple[int, CallContext]:
        """
        Handle WebSocket connection.

        Args:
            websocket: Accepted connection
            params: Optional StreamParams parsed from the stream URL

        Returns:
            Tuple of (temp_id, CallContext) for tracking until call_id arrives
        """
        ctx = CallContext(
            state=CallState.CONNECTING,
            websocket=websocket
        )
        if params is not None:
            ctx.call_uuid = params.calluuid
            ctx.from_number = params.from_number
            ctx.to_number = params.to_number

        temp_id = id(websocket)
        self.pending_connections[temp_id] = ctx

        logger.info(f"WebSocket connection pending (temp_id: {temp_id})")
        return temp_id, ctx

    async def on_start(
        self,
        temp_id: int,
        call_id: str,
        stream_id: str,
        account_id: Optional[str] = None,
    ) -> CallContext:
        """
        Handle stream start message.

        Moves call from pending to active with proper identifiers.

        Returns:
            CallContext now tracked by call_id
        """
        ctx = self.pending_connections.pop(temp_id, None)

        if not ctx:
            logger.warning(f"No pending connection for temp_id: {temp_id}, creating new context")
            ctx = CallContext(state=CallState.CONNECTING)

        ctx.call_id = call_id
        ctx.stream_id = stream_id
        ctx.account_id = account_id
        ctx.state = CallState.ACTIVE
        ctx.connected_at = datetime.now()

        self.calls[call_id] = ctx

        logger.info(f"Call started: {call_id}, State: {ctx.state.value}")
        return ctx

    def on_media(self, call_id: str, frame_bytes: int, peak: float = 0.0, rms: float = 0.0) -> Optional[CallContext]:
        """Count one received media frame and track its level."""
        ctx = self.calls.get(call_id)
        if not ctx:
            logger.warning(f"Media for unknown call: {call_id}")
            return None

        ctx.media_frames += 1
        ctx.media_bytes += frame_bytes
        ctx.last_rms = rms
        if peak > ctx.peak_level:
            ctx.peak_level = peak
        return ctx

    async def on_stop(self, call_id: str) -> Optional[CallContext]:
        """
        Handle stream stop message.

        Transitions to STOPPING state. Actual cleanup happens in cleanup().
        """
        ctx = self.calls.get(call_id)

        if ctx:
            ctx.state = CallState.STOPPING
            logger.info(f"Call stopping: {call_id}")
        else:
            logger.warning(f"Attempted to stop unknown call: {call_id}")

        return ctx

    async def on_error(self, call_id: str, error_message: str) -> Optional[CallContext]:
        """
        Handle error during call.

        Transitions to ERROR state.
        """
        ctx = self.calls.get(call_id)

        if ctx:
            ctx.state = CallState.ERROR
            ctx.error_message = error_message
            logger.error(f"Call error: {call_id}, Error: {error_message}")
        else:
            logger.error(f"Error for unknown call: {call_id}, Error: {error_message}")

        return ctx

    async def cleanup(self, call_id: str) -> Optional[CallContext]:
        """
        Remove call from tracking.

        Should be called in finally block of WebSocket handler.
        """
        ctx = self.calls.pop(call_id, None)

        if ctx:
            duration = 0.0
            if ctx.connected_at:
                duration = (datetime.now() - ctx.connected_at).total_seconds()

            logger.info(
                f"Call cleanup: {call_id}, "
                f"Duration: {duration:.1f}s, "
                f"Media frames: {ctx.media_frames} ({ctx.media_bytes} bytes), "
                f"Peak level: {ctx.peak_level:.3f}, "
                f"Audio sent: {ctx.audio_sent_count}"
            )
        else:
            logger.warning(f"Cleanup for unknown call: {call_id}")

        return ctx

    def discard_pending(self, temp_id: int) -> None:
        """Drop a connection that closed before sending 'start'."""
        if self.pending_connections.pop(temp_id, None):
            logger.info(f"Pending connection dropped (temp_id: {temp_id})")

    def get_context(self, call_id: str) -> Optional[CallContext]:
        """Get call context by call_id"""
        return self.calls.get(call_id)

    def get_active_calls(self) -> Dict[str, CallContext]:
        """Get all active calls"""
        return {
            call_id: ctx
            for call_id, ctx in self.calls.items()
            if ctx.state == CallState.ACTIVE
        }

    def get_call_count(self) -> int:
        """Get total number of tracked calls"""
        return len(self.calls)
