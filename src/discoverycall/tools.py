import logging
from datetime import date, datetime
from urllib.parse import quote

import httpx

from discoverycall.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)


class _CollaboratorClient:
    """Shared httpx client + circuit breaker for one collaborator service.

    Calls never raise: after 3 consecutive failures the service is skipped
    for 60s and callers get the fallback value, so the conversation keeps
    going without it.
    """

    label = "collaborator"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label=self.label,
        )
        if client is not None:
            self._client = client
        else:
            headers = {"Content-Type": "application/json"}
            if api_key:
                headers["X-API-Key"] = api_key
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
            )

    async def close(self):
        """Close the shared HTTP client."""
        await self._client.aclose()

    async def _request(self, method: str, path: str, fallback, **kwargs):
        if not self._circuit.should_try():
            logger.warning("%s circuit breaker open, skipping %s %s", self.label, method, path)
            return fallback
        try:
            resp = await self._client.request(method, path, **kwargs)
            resp.raise_for_status()
            self._circuit.record_success()
            return resp.json()
        except Exception as e:
            self._circuit.record_failure()
            logger.error("%s %s %s failed: %s", self.label, method, path, e)
            return fallback


class CalendarClient(_CollaboratorClient):
    """Availability and booking against the calendar service."""

    label = "calendar"

    async def book(
        self,
        name: str,
        email: str,
        phone: str,
        start: datetime,
        discovery_data: dict,
    ) -> dict:
        if not self._circuit.should_try():
            logger.warning("Calendar circuit breaker open, returning booking failure")
            return {"success": False, "error": "Calendar service unavailable"}
        try:
            resp = await self._client.post(
                "/appointments",
                json={
                    "name": name,
                    "email": email,
                    "phone": phone,
                    "start": start.isoformat(),
                    "discovery": discovery_data,
                },
            )
            resp.raise_for_status()
            self._circuit.record_success()
            return resp.json()
        except Exception as e:
            self._circuit.record_failure()
            logger.error("book failed: %s", e)
            return {"success": False, "error": str(e)}

    async def list_slots(self, day: date) -> list[dict]:
        result = await self._request(
            "GET", "/availability", {"slots": []}, params={"date": day.isoformat()},
        )
        return list(result.get("slots") or [])


class MemoryClient(_CollaboratorClient):
    """Long-term customer memory and booking-pattern learning."""

    label = "memory"

    @staticmethod
    def _customer(email: str) -> str:
        return f"/customers/{quote(email, safe='@')}"

    async def get_customer_context(self, email: str) -> dict | None:
        result = await self._request("GET", f"{self._customer(email)}/context", None)
        return result or None

    async def generate_conversation_context(self, email: str, query: str) -> str:
        result = await self._request(
            "POST", f"{self._customer(email)}/conversation-context", {}, json={"query": query},
        )
        return result.get("context", "") if isinstance(result, dict) else ""

    async def get_memories_by_type(self, email: str, memory_type: str, limit: int = 1) -> list[dict]:
        result = await self._request(
            "GET",
            f"{self._customer(email)}/memories",
            {"memories": []},
            params={"type": memory_type, "limit": limit},
        )
        return list(result.get("memories") or [])

    async def retrieve_relevant_memories(self, email: str, query: str, limit: int = 2) -> list[dict]:
        result = await self._request(
            "POST",
            f"{self._customer(email)}/memories/search",
            {"memories": []},
            json={"query": query, "limit": limit},
        )
        return list(result.get("memories") or [])

    async def store_conversation_memory(
        self,
        call_id: str | None,
        contact: dict,
        conversation_data: dict,
        discovery_data: dict,
    ) -> bool:
        result = await self._request(
            "POST",
            "/conversations",
            {"success": False},
            json={
                "call_id": call_id,
                "contact": contact,
                "conversation": conversation_data,
                "discovery": discovery_data,
            },
        )
        return bool(result.get("success", True))

    async def get_booking_intelligence(self, utterance: str) -> dict:
        return await self._request(
            "POST", "/booking-patterns/intelligence", {"confident": False}, json={"text": utterance},
        )

    async def store_successful_booking_pattern(self, utterance: str, appointment: dict, email: str) -> bool:
        result = await self._request(
            "POST",
            "/booking-patterns/success",
            {"success": False},
            json={"text": utterance, "appointment": appointment, "email": email},
        )
        return bool(result.get("success", True))

    async def store_failed_booking_attempt(self, utterance: str, error: str) -> bool:
        result = await self._request(
            "POST",
            "/booking-patterns/failure",
            {"success": False},
            json={"text": utterance, "error": error},
        )
        return bool(result.get("success", True))
