"""Unit tests for the call channel, call scripts and the Twilio transport."""

from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse
from uuid import uuid4
from xml.etree import ElementTree

import httpx
import pytest

from src.models.call import CallStatus, CallType
from src.services.call_channel import (
    NO_PHONE_NUMBER,
    NOT_CONFIGURED,
    CallChannel,
    mask_phone,
)
from src.services.call_scripts import (
    CallScripts,
    Gather,
    Hangup,
    Pause,
    Redirect,
    Say,
    fit_to_duration,
)
from src.services.telephony_transport import TelephonyError, TwilioCallTransport


@pytest.fixture
def scripts(settings):
    return CallScripts(settings)


@pytest.fixture
def channel(repo, telephony, scripts, settings):
    return CallChannel(repo, telephony, scripts, settings)


class TestScripts:
    def test_reminder_sequence(self, scripts):
        steps = scripts.reminder("Your lessons are waiting.")
        assert [type(s) for s in steps] == [Say, Say, Hangup]
        assert "Your lessons are waiting." in steps[0].text

    def test_micro_lesson_sequence(self, scripts):
        call_log_id, content_id = uuid4(), uuid4()
        steps = scripts.micro_lesson("Photosynthesis.", call_log_id, content_id)

        assert [type(s) for s in steps] == [Say, Pause, Say, Pause, Gather, Say, Hangup]
        assert steps[2].text == "Photosynthesis."
        query = parse_qs(urlparse(steps[4].action).query)
        assert query == {"callLogId": [str(call_log_id)], "contentId": [str(content_id)]}

    def test_response_one_saves(self, scripts):
        steps = scripts.response("1")
        assert steps[0].text == "Great! This lesson has been saved to your dashboard."
        assert isinstance(steps[-1], Hangup)

    def test_response_two_repeats_same_lesson(self, scripts):
        content_id = uuid4()
        steps = scripts.response("2", content_id=content_id)
        redirect = steps[-1]
        assert isinstance(redirect, Redirect)
        assert urlparse(redirect.url).path == "/calls/twiml/micro_lesson"
        assert parse_qs(urlparse(redirect.url).query)["contentId"] == [str(content_id)]

    @pytest.mark.parametrize("digit", ["3", "9", None])
    def test_response_other_digit(self, scripts, digit):
        steps = scripts.response(digit)
        assert steps == [Say("Invalid option."), Hangup()]

    def test_render_twiml(self, scripts):
        xml = scripts.render(scripts.micro_lesson("Lesson text"))
        root = ElementTree.fromstring(xml.split("?>", 1)[1])

        assert root.tag == "Response"
        assert [child.tag for child in root] == ["Say", "Pause", "Say", "Pause", "Gather", "Say", "Hangup"]
        gather = root.find("Gather")
        assert gather.get("numDigits") == "1"
        assert gather.find("Say").get("voice") == "Polly.Joanna"

    def test_render_escapes_text(self, scripts):
        xml = scripts.render([Say("Fish & <chips>")])
        assert "Fish &amp; &lt;chips&gt;" in xml

    def test_script_url(self, scripts):
        call_log_id = uuid4()
        url = scripts.script_url(CallType.REMINDER, call_log_id=call_log_id, message="Hi there")
        parsed = urlparse(url)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://engine.test/calls/twiml/reminder"
        assert parse_qs(parsed.query) == {"callLogId": [str(call_log_id)], "message": ["Hi there"]}

    def test_status_callback_url(self, scripts):
        call_log_id = uuid4()
        assert scripts.status_callback_url(call_log_id) == f"https://engine.test/calls/status/{call_log_id}"


class TestFitToDuration:
    def test_short_text_unchanged(self):
        assert fit_to_duration("A short lesson.", 60) == "A short lesson."

    def test_trims_to_spoken_words(self):
        text = " ".join(f"word{i}" for i in range(100))
        trimmed = fit_to_duration(text, 10)
        assert len(trimmed.split()) == 25
        assert trimmed.endswith(".")

    def test_no_duration_means_no_trim(self):
        text = "word " * 50
        assert fit_to_duration(text, None) == text


class TestPlace:
    @pytest.mark.asyncio
    async def test_places_call_and_attaches_sid(self, channel, repo, telephony):
        user_id = repo.add_user()

        result = await channel.place(user_id, "+15551234567", CallType.REMINDER, message="Hello")

        assert result.success is True
        assert result.call_sid.startswith("CA")
        log = repo.call_logs[result.call_log_id]
        assert log.status == CallStatus.INITIATED
        assert log.call_sid == result.call_sid
        placed = telephony.calls[0]
        assert placed["from_number"] == "+15550000000"
        assert placed["status_callback_url"].endswith(f"/calls/status/{log.id}")
        assert parse_qs(urlparse(placed["script_url"]).query)["callLogId"] == [str(log.id)]

    @pytest.mark.asyncio
    async def test_not_configured(self, repo, telephony, scripts, unconfigured_settings):
        channel = CallChannel(repo, telephony, scripts, unconfigured_settings)

        result = await channel.place(uuid4(), "+15551234567", CallType.REMINDER)

        assert result.success is False
        assert result.error == NOT_CONFIGURED
        assert telephony.calls == []
        assert repo.call_logs == {}

    @pytest.mark.asyncio
    async def test_missing_phone(self, channel, repo, telephony):
        result = await channel.place(uuid4(), None, CallType.REMINDER)

        assert result.error == NO_PHONE_NUMBER
        assert telephony.calls == []

    @pytest.mark.asyncio
    async def test_rejection_marks_log_failed(self, channel, repo, telephony):
        telephony.error = TelephonyError(400, "The 'To' number is not a valid phone number.")

        result = await channel.place(uuid4(), "+1bad", CallType.REMINDER)

        assert result.success is False
        assert result.error == "The 'To' number is not a valid phone number."
        log = repo.call_logs[result.call_log_id]
        assert log.status == CallStatus.FAILED
        assert log.completed_at is not None

    @pytest.mark.asyncio
    async def test_network_error_propagates_after_marking_failed(self, channel, repo, telephony):
        telephony.error = httpx.ConnectTimeout("timed out")

        with pytest.raises(httpx.ConnectTimeout):
            await channel.place(uuid4(), "+15551234567", CallType.REMINDER)

        (log,) = repo.call_logs.values()
        assert log.status == CallStatus.FAILED


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_terminal_status_sets_completed_at(self, channel, repo):
        result = await channel.place(uuid4(), "+15551234567", CallType.REMINDER)

        assert await channel.handle_status_callback(result.call_log_id, "completed", 42) is True

        log = repo.call_logs[result.call_log_id]
        assert log.status == CallStatus.COMPLETED
        assert log.duration_seconds == 42
        assert log.completed_at is not None

    @pytest.mark.asyncio
    async def test_non_terminal_status_leaves_completed_at(self, channel, repo):
        result = await channel.place(uuid4(), "+15551234567", CallType.REMINDER)

        await channel.handle_status_callback(result.call_log_id, "ringing")

        log = repo.call_logs[result.call_log_id]
        assert log.status == CallStatus.RINGING
        assert log.completed_at is None

    @pytest.mark.asyncio
    async def test_hyphenated_status(self, channel, repo):
        result = await channel.place(uuid4(), "+15551234567", CallType.REMINDER)

        await channel.handle_status_callback(result.call_log_id, "no-answer")

        assert repo.call_logs[result.call_log_id].status == CallStatus.NO_ANSWER

    @pytest.mark.asyncio
    async def test_unknown_status_is_ignored(self, channel, repo):
        result = await channel.place(uuid4(), "+15551234567", CallType.REMINDER)

        assert await channel.handle_status_callback(result.call_log_id, "teleported") is False
        assert repo.call_logs[result.call_log_id].status == CallStatus.INITIATED

    @pytest.mark.asyncio
    async def test_late_callback_does_not_reopen_finished_call(self, channel, repo):
        result = await channel.place(uuid4(), "+15551234567", CallType.REMINDER)
        await channel.handle_status_callback(result.call_log_id, "completed", 42)

        assert await channel.handle_status_callback(result.call_log_id, "ringing") is False

        log = repo.call_logs[result.call_log_id]
        assert log.status == CallStatus.COMPLETED
        assert log.duration_seconds == 42
        assert log.completed_at is not None

    @pytest.mark.asyncio
    async def test_replayed_script_fetch_keeps_terminal_status(self, channel, repo):
        result = await channel.place(uuid4(), "+15551234567", CallType.REMINDER)
        await channel.handle_status_callback(result.call_log_id, "busy")

        await channel.mark_in_progress(result.call_log_id)

        assert repo.call_logs[result.call_log_id].status == CallStatus.BUSY

    @pytest.mark.asyncio
    async def test_mark_in_progress(self, channel, repo):
        result = await channel.place(uuid4(), "+15551234567", CallType.REMINDER)

        await channel.mark_in_progress(result.call_log_id)

        assert repo.call_logs[result.call_log_id].status == CallStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_record_response(self, channel, repo):
        result = await channel.place(uuid4(), "+15551234567", CallType.MICRO_LESSON)

        log = await channel.record_response(result.call_sid, "1")

        assert log.id == result.call_log_id
        stored = repo.call_logs[result.call_log_id]
        assert stored.user_responded is True
        assert stored.response_data == {"digit": "1"}

    @pytest.mark.asyncio
    async def test_record_response_unknown_sid(self, channel):
        assert await channel.record_response("CAunknown", "1") is None


class TestServedScripts:
    @pytest.mark.asyncio
    async def test_micro_lesson_script_reads_content(self, channel, repo):
        content_id = repo.add_content("Photosynthesis", "Plants turn light into sugar.")

        xml = await channel.micro_lesson_script(content_id=content_id)

        assert "Photosynthesis. Plants turn light into sugar." in xml

    @pytest.mark.asyncio
    async def test_micro_lesson_script_default_text(self, channel):
        xml = await channel.micro_lesson_script(content_id=uuid4())
        assert "Here is your learning tip for today." in xml

    def test_reminder_script_default_message(self, channel):
        assert "You have pending lessons waiting for you." in channel.reminder_script(None)


def test_mask_phone():
    assert mask_phone("+15551234567") == "***4567"
    assert mask_phone(None) is None


class TestTwilioCallTransport:
    @pytest.mark.asyncio
    async def test_place_call_posts_form(self, settings):
        transport = TwilioCallTransport(settings)
        client = MagicMock()
        client.is_closed = False
        client.post = AsyncMock(
            return_value=httpx.Response(201, json={"sid": "CA123"}, request=httpx.Request("POST", "https://x"))
        )
        transport._client = client

        sid = await transport.place_call(
            "+15551234567", "+15550000000", "https://engine.test/s", "https://engine.test/cb"
        )

        assert sid == "CA123"
        url = client.post.call_args.args[0]
        data = client.post.call_args.kwargs["data"]
        assert url.endswith("/Accounts/ACtest/Calls.json")
        assert data["To"] == "+15551234567"
        assert data["Url"] == "https://engine.test/s"
        assert data["StatusCallback"] == "https://engine.test/cb"

    @pytest.mark.asyncio
    async def test_rejection_raises_telephony_error(self, settings):
        transport = TwilioCallTransport(settings)
        client = MagicMock()
        client.is_closed = False
        client.post = AsyncMock(
            return_value=httpx.Response(
                400,
                json={"message": "Invalid 'To' number"},
                request=httpx.Request("POST", "https://x"),
            )
        )
        transport._client = client

        with pytest.raises(TelephonyError) as exc_info:
            await transport.place_call("+1bad", "+15550000000", "u", "cb")

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == "Invalid 'To' number"
