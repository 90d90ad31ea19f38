"""Telephony endpoints: call scripts, provider webhooks and the operator test call."""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Form, HTTPException, Query, Response, status

from src.api.dependencies import get_engine, require_operator
from src.engine import Engine
from src.models.call import CallResult, TestCallRequest
from src.services.call_channel import NOT_CONFIGURED

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/calls", tags=["Calls"])

XML_MEDIA_TYPE = "text/xml"


async def _mark_in_progress(engine: Engine, call_log_id: Optional[UUID]) -> None:
    if call_log_id is None:
        return
    try:
        await engine.calls.mark_in_progress(call_log_id)
    except Exception as e:
        # The script is still served; the status callback will catch up.
        logger.warning("call_mark_in_progress_failed", call_log_id=str(call_log_id), error=str(e))


@router.post("/twiml/reminder")
async def reminder_script(
    call_log_id: Optional[UUID] = Query(default=None, alias="callLogId"),
    message: Optional[str] = Query(default=None),
    engine: Engine = Depends(get_engine),
) -> Response:
    """Script for reminder calls."""
    twiml = engine.calls.reminder_script(message)
    await _mark_in_progress(engine, call_log_id)
    return Response(content=twiml, media_type=XML_MEDIA_TYPE)


@router.post("/twiml/micro_lesson")
async def micro_lesson_script(
    call_log_id: Optional[UUID] = Query(default=None, alias="callLogId"),
    content_id: Optional[UUID] = Query(default=None, alias="contentId"),
    message: Optional[str] = Query(default=None),
    engine: Engine = Depends(get_engine),
) -> Response:
    """Script for micro-lesson calls, with the save/repeat prompt."""
    twiml = await engine.calls.micro_lesson_script(call_log_id, content_id, message)
    await _mark_in_progress(engine, call_log_id)
    return Response(content=twiml, media_type=XML_MEDIA_TYPE)


@router.post("/twiml/audio")
async def audio_script(
    audio_url: str = Query(alias="audioUrl"),
    call_log_id: Optional[UUID] = Query(default=None, alias="callLogId"),
    engine: Engine = Depends(get_engine),
) -> Response:
    """Script playing a lesson audio file."""
    twiml = engine.calls.audio_script(audio_url)
    await _mark_in_progress(engine, call_log_id)
    return Response(content=twiml, media_type=XML_MEDIA_TYPE)


@router.post("/response")
async def call_response(
    digits: Optional[str] = Form(default=None, alias="Digits"),
    call_sid: Optional[str] = Form(default=None, alias="CallSid"),
    call_log_id: Optional[UUID] = Query(default=None, alias="callLogId"),
    content_id: Optional[UUID] = Query(default=None, alias="contentId"),
    engine: Engine = Depends(get_engine),
) -> Response:
    """Digit pressed during a micro-lesson."""
    if call_sid:
        await engine.calls.record_response(call_sid, digits)

    twiml = engine.calls.response_script(digits, call_log_id, content_id)
    return Response(content=twiml, media_type=XML_MEDIA_TYPE)


@router.post("/status/{call_log_id}", status_code=status.HTTP_204_NO_CONTENT)
async def call_status(
    call_log_id: UUID,
    call_status: str = Form(alias="CallStatus"),
    call_duration: Optional[int] = Form(default=None, alias="CallDuration"),
    engine: Engine = Depends(get_engine),
) -> Response:
    """Status callback from the telephony provider."""
    await engine.calls.handle_status_callback(call_log_id, call_status, call_duration)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/test", dependencies=[Depends(require_operator)])
async def test_call(
    request: TestCallRequest,
    engine: Engine = Depends(get_engine),
) -> CallResult:
    """Place a reminder call right away to verify the telephony setup."""
    result = await engine.campaigns.place_test_call(request.user_id, request.phone_number)

    if not result.success:
        code = (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if result.error == NOT_CONFIGURED
            else status.HTTP_400_BAD_REQUEST
        )
        raise HTTPException(status_code=code, detail=result.error)

    return result
