"""Push notifications through the `send-push` edge function."""

import logging
from typing import Optional

import httpx

from shared.utils import settings

logger = logging.getLogger(__name__)


class PushNotifier:
    """
    Posts `{user_id, title, body, url}` to the edge function, which fans out
    to the user's stored push subscriptions.

    Delivery is best effort: failures are logged and swallowed so a push
    outage never fails the operation that triggered it.
    """

    def __init__(
        self,
        function_url: Optional[str] = settings.PUSH_FUNCTION_URL,
        api_key: Optional[str] = settings.PUSH_FUNCTION_KEY,
        timeout: float = settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.function_url = function_url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.function_url)

    async def notify(self, user_id: str, title: str, body: str, url: str = "/") -> bool:
        if not self.enabled:
            logger.debug("Push function not configured, skipping notification")
            return False

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"user_id": user_id, "title": title, "body": body, "url": url}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(self.function_url, json=payload, headers=headers)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning(f"Push notification failed: {e}", extra={"user_id": user_id})
                return False
        return True
