"""Web Push transport (VAPID) for browser push subscriptions."""

import asyncio

import structlog
from pywebpush import WebPushException, webpush

from src.config import Settings
from src.models.notification import NotificationPayload, PushOutcome, PushSubscription

logger = structlog.get_logger(__name__)

# Push services answer 404/410 for subscriptions that will never work again.
PERMANENT_FAILURE_STATUSES = {404, 410}


class WebPushTransport:
    """Sends one payload to one push endpoint."""

    def __init__(self, settings: Settings):
        self._private_key = settings.vapid_private_key
        self._claims = {"sub": settings.vapid_subject}

    async def send_to_endpoint(
        self,
        subscription: PushSubscription,
        payload: NotificationPayload,
        ttl_seconds: int,
    ) -> PushOutcome:
        """Deliver ``payload`` to a single subscription.

        pywebpush is synchronous, so the request runs in a worker thread.
        """
        try:
            await asyncio.to_thread(
                webpush,
                subscription_info={"endpoint": subscription.endpoint, "keys": subscription.keys},
                data=payload.to_wire(),
                vapid_private_key=self._private_key,
                vapid_claims=dict(self._claims),
                ttl=ttl_seconds,
            )
            return PushOutcome.SUCCESS
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            outcome = (
                PushOutcome.PERMANENT_FAILURE
                if status_code in PERMANENT_FAILURE_STATUSES
                else PushOutcome.TRANSIENT_FAILURE
            )
            logger.warning(
                "push_endpoint_rejected",
                subscription_id=str(subscription.id),
                status_code=status_code,
                outcome=outcome.value,
                error=str(e),
            )
            return outcome
