"""
Vobiz API client for call control.

Provides the stream answer document plus outbound call creation and
hangup through the Vobiz REST API.
"""
import asyncio
import json
import logging
from typing import Optional
from urllib.parse import quote
from xml.sax.saxutils import escape

import requests

from src.config import settings
from src.vobiz.models import MULAW_CONTENT_TYPE, MULAW_SAMPLE_RATE

logger = logging.getLogger(__name__)


class VobizAPIError(Exception):
    """Raised when the Vobiz API answers with an unexpected status."""

    def __init__(self, status_code: int, detail):
        super().__init__(f"Vobiz API error {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


def _auth_headers() -> dict:
    """
    Build Vobiz auth headers.

    Raises:
        ValueError: If credentials not configured
    """
    if not settings.vobiz_auth_id or not settings.vobiz_auth_token:
        raise ValueError("Vobiz credentials not configured in environment")

    return {
        "X-Auth-ID": settings.vobiz_auth_id,
        "X-Auth-Token": settings.vobiz_auth_token,
        "Content-Type": "application/json",
    }


def generate_stream_xml(websocket_url: str) -> str:
    """
    Generate the answer XML that connects a call to our media stream.

    Args:
        websocket_url: Full WSS URL for Vobiz to connect to, query string included

    Returns:
        XML string (no whitespace inside <Stream>, Vobiz is strict about it)
    """
    content_type = f"{MULAW_CONTENT_TYPE};rate={MULAW_SAMPLE_RATE}"
    xml = (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<Response>\n"
        f'<Stream bidirectional="true" keepCallAlive="true" contentType="{content_type}">'
        f"{escape(websocket_url)}</Stream>\n"
        "</Response>"
    )
    logger.info(f"Generated stream XML for: {websocket_url}")
    return xml


def build_answer_url(base_url: str, body: Optional[dict] = None) -> str:
    """Append optional body data to the answer URL as url-encoded JSON."""
    if not body:
        return base_url
    encoded = quote(json.dumps(body, separators=(",", ":")), safe="")
    return f"{base_url}?body_data={encoded}"


def _decode(response: requests.Response):
    try:
        return response.json()
    except ValueError:
        return response.text


async def create_outbound_call(from_number: str, to_number: str, answer_url: str) -> dict:
    """
    Initiate an outbound call via Vobiz.

    Args:
        from_number: Caller ID
        to_number: Number to call
        answer_url: URL Vobiz POSTs to once the call is answered

    Returns:
        Decoded Vobiz response

    Raises:
        ValueError: If credentials not configured
        VobizAPIError: If Vobiz does not answer 201
    """
    headers = _auth_headers()
    url = f"{settings.vobiz_base_url}/{settings.vobiz_auth_id}/Call/"
    payload = {
        "from": from_number,
        "to": to_number,
        "answer_url": answer_url,
        "answer_method": "POST",
    }

    logger.info(f"Creating outbound call to {to_number}, answer URL: {answer_url}")
    response = await asyncio.to_thread(
        requests.post,
        url,
        json=payload,
        headers=headers,
        timeout=settings.vobiz_timeout_seconds,
    )
    data = _decode(response)

    if response.status_code != 201:
        logger.error(f"Vobiz call creation failed with status {response.status_code}: {data}")
        raise VobizAPIError(response.status_code, data)

    logger.info(f"Outbound call created: to={to_number}, from={from_number}")
    return data


async def hangup_call(call_id: str) -> None:
    """
    Terminate a live call.

    Raises:
        ValueError: If credentials not configured
        VobizAPIError: If Vobiz answers with a non-2xx status
    """
    headers = _auth_headers()
    url = f"{settings.vobiz_base_url}/{settings.vobiz_auth_id}/Call/{call_id}/"

    response = await asyncio.to_thread(
        requests.delete,
        url,
        headers=headers,
        timeout=settings.vobiz_timeout_seconds,
    )
    if not 200 <= response.status_code < 300:
        raise VobizAPIError(response.status_code, _decode(response))

    logger.info(f"Successfully terminated call: {call_id}")
