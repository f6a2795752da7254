import json
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Literal


MULAW_CONTENT_TYPE = "audio/x-mulaw"
MULAW_SAMPLE_RATE = 8000


class StartPayload(BaseModel):
    callId: str
    streamId: str
    accountId: Optional[str] = None


class MediaPayload(BaseModel):
    payload: str  # base64-encoded mu-law audio


class VobizMessage(BaseModel):
    event: Literal["start", "media", "stop"]
    streamId: Optional[str] = None  # present on 'media' events
    start: Optional[StartPayload] = None
    media: Optional[MediaPayload] = None


class OutboundMedia(BaseModel):
    contentType: str = MULAW_CONTENT_TYPE
    sampleRate: int = MULAW_SAMPLE_RATE
    payload: str


class VobizOutboundMessage(BaseModel):
    event: Literal["playAudio", "clearAudio"]
    media: Optional[OutboundMedia] = None


class StreamParams(BaseModel):
    """Query parameters the provider appends to the stream URL."""
    model_config = ConfigDict(populate_by_name=True)

    calluuid: Optional[str] = None
    from_number: Optional[str] = Field(default=None, alias="from")
    to_number: Optional[str] = Field(default=None, alias="to")


class OutboundCallRequest(BaseModel):
    from_number: str = ""
    to_number: str = ""
    body: dict = Field(default_factory=dict)  # optional data echoed to the answer URL


def parse_message(raw: str) -> VobizMessage:
    """
    Parse a text frame from the media stream.

    Raises:
        json.JSONDecodeError: frame is not JSON
        pydantic.ValidationError: frame is JSON but not a known event shape
    """
    return VobizMessage.model_validate(json.loads(raw))


def play_audio(payload: str) -> str:
    message = VobizOutboundMessage(event="playAudio", media=OutboundMedia(payload=payload))
    return message.model_dump_json(exclude_none=True)


def clear_audio() -> str:
    return VobizOutboundMessage(event="clearAudio").model_dump_json(exclude_none=True)
