import asyncio
import json
import logging
import time
from typing import Awaitable, Callable

from discoverycall.session import GateState
from discoverycall.validation import is_booking_related

logger = logging.getLogger(__name__)

WINDOW_S = 60.0


class ResponseGate:
    """The single path from the conversation to the connection.

    Every outbound message passes three checks, in order:
    1. Sliding 60s window: at most ``max_responses_per_window`` sends; extra
       messages are dropped, never queued.
    2. Duplicate booking text: a message equal to the last booking-related
       message is dropped.
    3. Minimum spacing: if the last send was too recent the caller awaits
       the remainder, then sends.
    """

    def __init__(
        self,
        state: GateState,
        send: Callable[[str], Awaitable[None]],
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.state = state
        self._send = send
        self._clock = clock
        self._sleep = sleep

    @property
    def min_spacing_s(self) -> float:
        return self.state.min_response_spacing_ms / 1000.0

    def seconds_since_last_response(self) -> float | None:
        if self.state.last_response_at is None:
            return None
        return self._clock() - self.state.last_response_at

    def within_min_spacing(self) -> bool:
        """True while a new response would have to wait for spacing."""
        elapsed = self.seconds_since_last_response()
        return elapsed is not None and elapsed < self.min_spacing_s

    def _prune_window(self, now: float) -> None:
        self.state.recent_response_timestamps = [
            t for t in self.state.recent_response_timestamps if now - t < WINDOW_S
        ]

    def _drop(self, reason: str, text: str) -> bool:
        self.state.dropped_count += 1
        logger.info("Response dropped (%s): %s", reason, text[:80])
        return False

    async def try_send(self, text: str, response_id=None) -> bool:
        now = self._clock()
        self._prune_window(now)

        if len(self.state.recent_response_timestamps) >= self.state.max_responses_per_window:
            return self._drop("rate limit", text)

        if self.state.last_booking_response_text == text:
            return self._drop("duplicate booking response", text)

        elapsed = self.seconds_since_last_response()
        if elapsed is not None and elapsed < self.min_spacing_s:
            wait = self.min_spacing_s - elapsed
            logger.info("Waiting %.0fms before responding", wait * 1000)
            await self._sleep(wait)

        payload = json.dumps({
            "content": text,
            "content_complete": True,
            "actions": [],
            "response_id": response_id if response_id is not None else int(time.time() * 1000),
        })
        try:
            await self._send(payload)
        except Exception as e:
            logger.error("Failed to send response: %s", e)
            return False

        sent_at = self._clock()
        self.state.last_response_at = sent_at
        self.state.recent_response_timestamps.append(sent_at)
        self.state.sent_count += 1
        if is_booking_related(text):
            self.state.last_booking_response_text = text

        logger.info("Sent: %s", text)
        return True
