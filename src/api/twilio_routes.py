"""Twilio Voice integration.

The voice webhook answers with TwiML that connects the call to the media
stream endpoint, where the relay takes over.
"""

from __future__ import annotations

import logging
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request, Response

from api.dependencies import get_call_registry
from config.settings import get_settings
from gateway.calls import CallRegistry
from integrations.telnyx_client import media_stream_url, to_ws_url

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _twiml_connect_stream(*, stream_url: str) -> str:
    stream = escape(stream_url, {'"': "&quot;"})
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url=\"{stream}\" />"
        "</Connect>"
        "</Response>"
    )


def _stream_url(request: Request) -> str:
    settings = get_settings()
    if settings.public_base_url:
        return media_stream_url(settings.public_base_url)
    # Fallback to request host. This may not work behind proxies; prefer PUBLIC_BASE_URL.
    return to_ws_url(str(request.base_url).rstrip("/") + "/api/media-stream")


@router.post("/voice")
async def twilio_voice_webhook(
    request: Request,
    calls: CallRegistry = Depends(get_call_registry),
) -> Response:
    form = await request.form()
    call_sid = str(form.get("CallSid") or "").strip()

    if call_sid:
        await calls.register(
            call_sid,
            state="answered",
            from_number=str(form.get("From") or "") or None,
            to_number=str(form.get("To") or "") or None,
        )
        LOGGER.info("Connecting Twilio call %s to the media stream", call_sid)

    return _twiml_response(_twiml_connect_stream(stream_url=_stream_url(request)))
