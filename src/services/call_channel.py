"""Call channel: places automated voice calls and tracks their lifecycle."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import structlog

from src.config import Settings
from src.models.call import CallLog, CallResult, CallStatus, CallType
from src.services.call_scripts import CallScripts
from src.services.telephony_transport import TelephonyError

logger = structlog.get_logger(__name__)

NOT_CONFIGURED = "Twilio not configured"
NO_PHONE_NUMBER = "No phone number on file"
DEFAULT_REMINDER = "You have pending lessons waiting for you."
DEFAULT_LESSON = "Here is your learning tip for today."


def mask_phone(phone_number: Optional[str]) -> Optional[str]:
    """Keep only the last four digits for logging."""
    if not phone_number:
        return phone_number
    return f"***{phone_number[-4:]}"


class CallChannel:
    """Hands calls to the telephony transport and serves their scripts.

    Expected failures (not configured, no number, provider rejection) come
    back as ``CallResult`` values. Network errors propagate after the call log
    has been marked failed.
    """

    def __init__(self, repository, transport, scripts: CallScripts, settings: Settings):
        self._repository = repository
        self._transport = transport
        self._scripts = scripts
        self._configured = settings.telephony_configured
        self._from_number = settings.twilio_phone_number

    async def place(
        self,
        user_id: UUID,
        phone_number: Optional[str],
        call_type: CallType,
        message: Optional[str] = None,
        content_id: Optional[UUID] = None,
        audio_url: Optional[str] = None,
    ) -> CallResult:
        """Place a call.

        A ``queued`` call log is written before the transport is contacted;
        on acceptance the provider call id is attached and the log moves to
        ``initiated``.
        """
        if not self._configured:
            return CallResult(success=False, error=NOT_CONFIGURED)
        if not phone_number:
            return CallResult(success=False, error=NO_PHONE_NUMBER)
        if call_type == CallType.AUDIO and not audio_url:
            return CallResult(success=False, error="Missing audio URL")

        call_log = await self._repository.insert_call_log(
            user_id=user_id,
            call_type=call_type,
            phone_number=phone_number,
            content_id=content_id,
            audio_url=audio_url,
        )

        script_url = self._scripts.script_url(
            call_type,
            call_log_id=call_log.id,
            content_id=content_id,
            message=message,
            audio_url=audio_url,
        )

        try:
            call_sid = await self._transport.place_call(
                to_number=phone_number,
                from_number=self._from_number,
                script_url=script_url,
                status_callback_url=self._scripts.status_callback_url(call_log.id),
            )
        except TelephonyError as e:
            await self._mark_failed(call_log.id)
            logger.warning(
                "voice_call_rejected",
                user_id=str(user_id),
                call_log_id=str(call_log.id),
                phone=mask_phone(phone_number),
                status_code=e.status_code,
                error=e.detail,
            )
            return CallResult(success=False, call_log_id=call_log.id, error=e.detail)
        except Exception:
            await self._mark_failed(call_log.id)
            raise

        await self._repository.attach_call_sid(call_log.id, call_sid)

        logger.info(
            "voice_call_initiated",
            user_id=str(user_id),
            call_log_id=str(call_log.id),
            call_sid=call_sid,
            call_type=call_type.value,
            phone=mask_phone(phone_number),
        )
        return CallResult(success=True, call_sid=call_sid, call_log_id=call_log.id)

    async def _mark_failed(self, call_log_id: UUID) -> None:
        await self._repository.update_call_status(
            call_log_id, CallStatus.FAILED, completed_at=datetime.now(timezone.utc)
        )

    async def handle_status_callback(
        self,
        call_log_id: UUID,
        raw_status: str,
        duration_seconds: Optional[int] = None,
    ) -> bool:
        """Apply a provider status callback to the call log.

        ``completed_at`` is set only for terminal statuses. Once a call is
        terminal, later callbacks are ignored since the provider does not
        guarantee their order.

        Returns:
            True if the log was updated
        """
        try:
            status = CallStatus.parse(raw_status)
        except ValueError:
            logger.warning(
                "call_status_unknown",
                call_log_id=str(call_log_id),
                status=raw_status,
            )
            return False

        completed_at = datetime.now(timezone.utc) if status.is_terminal else None
        updated = await self._repository.update_call_status(
            call_log_id, status, duration_seconds, completed_at
        )

        if not updated:
            logger.info(
                "call_status_not_applied",
                call_log_id=str(call_log_id),
                status=status.value,
                reason="unknown or already finished call",
            )
            return False

        logger.info(
            "call_status_updated",
            call_log_id=str(call_log_id),
            status=status.value,
            duration_seconds=duration_seconds,
        )
        return True

    async def mark_in_progress(self, call_log_id: UUID) -> None:
        """The provider fetched the script, so the call is live."""
        await self._repository.update_call_status(call_log_id, CallStatus.IN_PROGRESS)

    async def record_response(self, call_sid: str, digit: Optional[str]) -> Optional[CallLog]:
        """Record a digit pressed during the call on the originating log."""
        call_log = await self._repository.get_call_log_by_sid(call_sid)
        if call_log is None:
            logger.warning("call_response_unknown_sid", call_sid=call_sid)
            return None

        await self._repository.record_call_response(call_log.id, {"digit": digit})
        logger.info(
            "call_response_recorded",
            call_log_id=str(call_log.id),
            digit=digit,
        )
        return call_log

    # ------------------------------------------------------------------
    # Scripts served to the provider
    # ------------------------------------------------------------------

    def reminder_script(self, message: Optional[str]) -> str:
        return self._scripts.render(self._scripts.reminder(message or DEFAULT_REMINDER))

    async def micro_lesson_script(
        self,
        call_log_id: Optional[UUID] = None,
        content_id: Optional[UUID] = None,
        message: Optional[str] = None,
    ) -> str:
        lesson_text = message
        if not lesson_text and content_id:
            content = await self._repository.get_content(content_id)
            if content is not None:
                lesson_text = f"{content.title}. {content.description or ''}".strip()
        return self._scripts.render(
            self._scripts.micro_lesson(lesson_text or DEFAULT_LESSON, call_log_id, content_id)
        )

    def audio_script(self, audio_url: str) -> str:
        return self._scripts.render(self._scripts.audio(audio_url))

    def response_script(
        self,
        digit: Optional[str],
        call_log_id: Optional[UUID] = None,
        content_id: Optional[UUID] = None,
    ) -> str:
        return self._scripts.render(self._scripts.response(digit, call_log_id, content_id))
