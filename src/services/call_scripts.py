"""Spoken call scripts and in-call response handling, rendered as TwiML.

A script is an ordered list of steps. Each call type has a fixed step
sequence:

- reminder:      say(greeting + message) -> say(closing) -> hangup
- micro_lesson:  say(intro) -> pause -> say(lesson) -> pause
                 -> gather(1 = save, 2 = repeat) -> say(closing) -> hangup
- audio:         say(intro) -> play(url) -> say(closing) -> hangup

Digit responses: ``1`` acknowledges and hangs up, ``2`` redirects to the start
of the micro-lesson script, anything else says "Invalid option." and hangs up.
"""

from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import urlencode
from uuid import UUID
from xml.etree import ElementTree

from src.config import Settings
from src.models.call import CallType

# Average speaking rate used to fit lesson text to the preferred call length
WORDS_PER_SECOND = 2.5


@dataclass(frozen=True)
class Say:
    text: str


@dataclass(frozen=True)
class Pause:
    length: int = 1


@dataclass(frozen=True)
class Gather:
    prompt: str
    action: str
    num_digits: int = 1
    timeout: int = 5


@dataclass(frozen=True)
class Play:
    url: str


@dataclass(frozen=True)
class Redirect:
    url: str


@dataclass(frozen=True)
class Hangup:
    pass


Step = Union[Say, Pause, Gather, Play, Redirect, Hangup]


def fit_to_duration(text: str, seconds: Optional[int]) -> str:
    """Trim spoken text so it fits roughly in ``seconds``.

    Advisory only: nothing enforces the duration on the live call.
    """
    if not seconds or seconds <= 0:
        return text
    words = text.split()
    max_words = max(1, int(seconds * WORDS_PER_SECOND))
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words]).rstrip(",;:") + "."


class CallScripts:
    """Builds step lists per call type and renders them as TwiML."""

    def __init__(self, settings: Settings):
        self._voice = settings.call_voice
        self._language = settings.call_language
        self._platform = settings.platform_name
        self._base_url = settings.backend_url.rstrip("/")

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def script_url(
        self,
        call_type: CallType,
        call_log_id: Optional[UUID] = None,
        content_id: Optional[UUID] = None,
        message: Optional[str] = None,
        audio_url: Optional[str] = None,
    ) -> str:
        """URL the telephony provider fetches to get the call's script."""
        params = {}
        if call_log_id:
            params["callLogId"] = str(call_log_id)
        if content_id:
            params["contentId"] = str(content_id)
        if message:
            params["message"] = message
        if audio_url:
            params["audioUrl"] = audio_url
        url = f"{self._base_url}/calls/twiml/{call_type.value}"
        return f"{url}?{urlencode(params)}" if params else url

    def status_callback_url(self, call_log_id: UUID) -> str:
        return f"{self._base_url}/calls/status/{call_log_id}"

    def response_url(
        self, call_log_id: Optional[UUID] = None, content_id: Optional[UUID] = None
    ) -> str:
        params = {}
        if call_log_id:
            params["callLogId"] = str(call_log_id)
        if content_id:
            params["contentId"] = str(content_id)
        url = f"{self._base_url}/calls/response"
        return f"{url}?{urlencode(params)}" if params else url

    # ------------------------------------------------------------------
    # Scripts
    # ------------------------------------------------------------------

    def reminder(self, message: str) -> list[Step]:
        return [
            Say(f"Hello! This is a friendly reminder from your {self._platform}. {message}"),
            Say("Visit your dashboard to continue your learning journey. Goodbye!"),
            Hangup(),
        ]

    def micro_lesson(
        self,
        lesson_text: str,
        call_log_id: Optional[UUID] = None,
        content_id: Optional[UUID] = None,
    ) -> list[Step]:
        return [
            Say(f"Hello! Here's your micro-lesson for today from {self._platform}."),
            Pause(1),
            Say(lesson_text),
            Pause(1),
            Gather(
                prompt="Press 1 to save this lesson to your dashboard, or press 2 to hear it again.",
                action=self.response_url(call_log_id, content_id),
            ),
            Say("Thank you for learning with us. Goodbye!"),
            Hangup(),
        ]

    def audio(self, audio_url: str) -> list[Step]:
        return [
            Say(f"Hello! Here is your lesson audio from {self._platform}."),
            Play(audio_url),
            Say("Thank you for listening. Visit your dashboard for more content. Goodbye!"),
            Hangup(),
        ]

    def response(
        self,
        digit: Optional[str],
        call_log_id: Optional[UUID] = None,
        content_id: Optional[UUID] = None,
    ) -> list[Step]:
        """Steps answering a digit pressed during a micro-lesson."""
        if digit == "1":
            return [Say("Great! This lesson has been saved to your dashboard."), Hangup()]
        if digit == "2":
            return [
                Say("Let me repeat the lesson for you."),
                Redirect(self.script_url(CallType.MICRO_LESSON, call_log_id, content_id)),
            ]
        return [Say("Invalid option."), Hangup()]

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, steps: list[Step]) -> str:
        """Render steps as a TwiML document."""
        root = ElementTree.Element("Response")
        for step in steps:
            self._append(root, step)
        body = ElementTree.tostring(root, encoding="unicode")
        return f'<?xml version="1.0" encoding="UTF-8"?>{body}'

    def _append(self, parent: ElementTree.Element, step: Step) -> None:
        if isinstance(step, Say):
            say = ElementTree.SubElement(
                parent, "Say", voice=self._voice, language=self._language
            )
            say.text = step.text
        elif isinstance(step, Pause):
            ElementTree.SubElement(parent, "Pause", length=str(step.length))
        elif isinstance(step, Gather):
            gather = ElementTree.SubElement(
                parent,
                "Gather",
                numDigits=str(step.num_digits),
                timeout=str(step.timeout),
                action=step.action,
                method="POST",
            )
            self._append(gather, Say(step.prompt))
        elif isinstance(step, Play):
            ElementTree.SubElement(parent, "Play").text = step.url
        elif isinstance(step, Redirect):
            ElementTree.SubElement(parent, "Redirect", method="POST").text = step.url
        elif isinstance(step, Hangup):
            ElementTree.SubElement(parent, "Hangup")
        else:
            raise TypeError(f"Unsupported script step: {step!r}")
