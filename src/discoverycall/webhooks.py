import asyncio
import httpx
import logging

logger = logging.getLogger(__name__)


class WebhookClient:
    """Posts scheduling outcomes to the CRM webhook.

    Retries once with a 2-second backoff on failure and never raises; the
    conversation does not depend on delivery.
    """

    def __init__(
        self,
        *,
        url: str,
        secret: str = "",
        timeout: float = 15.0,
        retry_delay: float = 2.0,
    ):
        self.url = url
        self.secret = secret
        self.timeout = timeout
        self.retry_delay = retry_delay

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers["X-Webhook-Secret"] = self.secret
        return headers

    async def _post_with_retry(self, payload: dict, label: str) -> dict:
        """POST with one retry after a backoff on failure."""
        for attempt in range(2):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.url, json=payload, headers=self._headers())
                    if resp.status_code >= 400:
                        logger.error("%s returned %d: %s", label, resp.status_code, resp.text[:500])
                    resp.raise_for_status()
                    return resp.json() if resp.content else {"success": True}
            except Exception as e:
                if attempt == 0:
                    logger.warning("%s failed (attempt 1), retrying in %.0fs: %s", label, self.retry_delay, e)
                    await asyncio.sleep(self.retry_delay)
                else:
                    logger.error("%s failed after retry: %s", label, e)
                    return {"success": False, "error": str(e)}
        return {"success": False, "error": "unreachable"}

    async def notify(
        self,
        name: str,
        email: str,
        phone: str,
        preferred_time: str,
        call_id: str | None,
        extra: dict | None = None,
    ) -> dict:
        """Send a scheduling preference (or call outcome) for one call."""
        payload = {
            "name": name,
            "email": email,
            "phone": phone,
            "preferredDay": preferred_time,
            "call_id": call_id,
            "discovery_data": extra or {},
        }
        return await self._post_with_retry(payload, "Scheduling webhook")
