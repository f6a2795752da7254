import json

import pytest
from pydantic import ValidationError

from src.vobiz.models import (
    OutboundCallRequest,
    StreamParams,
    clear_audio,
    parse_message,
    play_audio,
)


def test_parse_start_message():
    """Test: start event carries call, stream and account ids"""
    msg = parse_message(json.dumps({
        "event": "start",
        "start": {
            "callId": "test-call-123",
            "streamId": "test-stream-456",
            "accountId": "test-account-789",
        },
    }))
    assert msg.event == "start"
    assert msg.start.callId == "test-call-123"
    assert msg.start.streamId == "test-stream-456"
    assert msg.start.accountId == "test-account-789"
    assert msg.media is None


def test_parse_media_message():
    msg = parse_message('{"event": "media", "streamId": "s1", "media": {"payload": "//79"}}')
    assert msg.event == "media"
    assert msg.streamId == "s1"
    assert msg.media.payload == "//79"


def test_parse_bare_stop_message():
    """Test: stop is a bare marker"""
    msg = parse_message('{"event": "stop"}')
    assert msg.event == "stop"
    assert msg.start is None
    assert msg.media is None


def test_parse_unknown_event_rejected():
    with pytest.raises(ValidationError):
        parse_message('{"event": "dtmf"}')


def test_parse_start_without_call_id_rejected():
    with pytest.raises(ValidationError):
        parse_message('{"event": "start", "start": {"streamId": "s"}}')


def test_parse_invalid_json_rejected():
    with pytest.raises(json.JSONDecodeError):
        parse_message("not json")


def test_play_audio_shape():
    data = json.loads(play_audio("AAAA"))
    assert data == {
        "event": "playAudio",
        "media": {
            "contentType": "audio/x-mulaw",
            "sampleRate": 8000,
            "payload": "AAAA",
        },
    }


def test_clear_audio_shape():
    assert json.loads(clear_audio()) == {"event": "clearAudio"}


def test_stream_params_aliases():
    """Test: 'from' and 'to' query keys map onto the number fields"""
    params = StreamParams.model_validate({"calluuid": "test-123", "from": "918504074217", "to": "08071387304"})
    assert params.calluuid == "test-123"
    assert params.from_number == "918504074217"
    assert params.to_number == "08071387304"


def test_stream_params_all_optional():
    params = StreamParams.model_validate({})
    assert params.calluuid is None
    assert params.from_number is None


def test_outbound_call_request_defaults():
    req = OutboundCallRequest.model_validate({"from_number": "1", "to_number": "2"})
    assert req.body == {}
