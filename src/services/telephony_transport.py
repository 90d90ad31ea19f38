"""Telephony transport backed by the Twilio REST API."""

import httpx
import structlog

from src.config import Settings

logger = structlog.get_logger(__name__)

STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]


class TelephonyError(Exception):
    """The telephony provider rejected a call request.

    Attributes:
        status_code: HTTP status returned by the provider
        detail: Provider error message, if any
    """

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"telephony request rejected ({status_code}): {detail}")


class TwilioCallTransport:
    """Places outbound calls whose script is fetched from a URL."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.telephony_timeout_seconds),
                auth=(self.settings.twilio_account_sid, self.settings.twilio_auth_token),
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def place_call(
        self,
        to_number: str,
        from_number: str,
        script_url: str,
        status_callback_url: str,
    ) -> str:
        """Request an outbound call.

        Returns:
            Provider call id (call SID)

        Raises:
            TelephonyError: If the provider rejects the request (e.g. invalid number)
            httpx.TransportError: On network failures and timeouts
        """
        url = (
            f"{self.settings.twilio_api_base_url}/Accounts/"
            f"{self.settings.twilio_account_sid}/Calls.json"
        )
        client = await self._get_client()
        response = await client.post(
            url,
            data={
                "To": to_number,
                "From": from_number,
                "Url": script_url,
                "Method": "POST",
                "StatusCallback": status_callback_url,
                "StatusCallbackMethod": "POST",
                "StatusCallbackEvent": STATUS_CALLBACK_EVENTS,
            },
        )

        if response.status_code >= 400:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            raise TelephonyError(response.status_code, detail)

        call_sid = response.json()["sid"]
        logger.info("telephony_call_created", call_sid=call_sid)
        return call_sid
