"""One-shot appointment booking for a call.

Booking is two-phase.  Phase 1 runs inside the caller's turn: guard the
candidate, speak the confirmation and set the ``appointment_booked`` latch.
Phase 2 is a background task that makes the real calendar call and reports
the result to the webhook and the memory services.  Phase 2 never speaks:
once a confirmation has been sent it is never contradicted, even when the
calendar call fails.

Shared with the turn path: ``appointment_booked``, ``booking_in_progress``
and ``last_booking_attempt_at``.  Phase 2 only ever clears
``booking_in_progress``, in its ``finally``.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Awaitable, Callable

from discoverycall.appointment_parser import AppointmentCandidate
from discoverycall.config import Settings
from discoverycall.discovery import DiscoveryTracker
from discoverycall.phases import BookingStatus
from discoverycall.prompts import (
    booking_confirmation,
    booking_fallback_confirmation,
    email_request_prompt,
    outside_hours_prompt,
)
from discoverycall.response_gate import ResponseGate
from discoverycall.session import CallSession
from discoverycall.validation import validate_email

logger = logging.getLogger(__name__)


class BookingOutcome(Enum):
    COOLDOWN = "cooldown"
    OUTSIDE_HOURS = "outside_hours"
    MISSING_EMAIL = "missing_email"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class BookingDecision:
    outcome: BookingOutcome
    spoken: str = ""
    sent: bool = False

    @property
    def committed(self) -> bool:
        return self.outcome is BookingOutcome.CONFIRMED


def candidate_payload(candidate: AppointmentCandidate) -> dict:
    return {
        "day": candidate.day_token,
        "hour": candidate.hour,
        "minute": candidate.minute,
        "displayTime": candidate.display_time,
        "dateTime": candidate.resolved_datetime.isoformat(),
        "isBusinessHours": candidate.is_business_hours,
        "source": candidate.confidence_source.value,
    }


class BookingCoordinator:
    def __init__(
        self,
        session: CallSession,
        gate: ResponseGate,
        tracker: DiscoveryTracker,
        settings: Settings,
        calendar=None,
        memory=None,
        webhooks=None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session = session
        self.state = session.booking
        self.gate = gate
        self.tracker = tracker
        self.settings = settings
        self.calendar = calendar
        self.memory = memory
        self.webhooks = webhooks
        self._clock = clock
        self._sleep = sleep
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def in_cooldown(self, now: float) -> bool:
        last = self.state.last_booking_attempt_at
        if last is None:
            return False
        return (now - last) * 1000 < self.state.booking_cooldown_ms

    async def handle_candidate(self, candidate: AppointmentCandidate, response_id=None) -> BookingDecision:
        """Phase 1. The caller has already set ``booking_in_progress``."""
        state = self.state

        now = self._clock()
        if self.in_cooldown(now):
            logger.info("Booking cooldown active, ignoring %s", candidate.preferred_time_text)
            state.booking_in_progress = False
            return BookingDecision(BookingOutcome.COOLDOWN)
        state.last_booking_attempt_at = now
        state.candidate = candidate

        spoke = []
        try:
            return await self._decide(candidate, response_id, spoke)
        except Exception as e:
            logger.error("Error in immediate appointment booking: %s", e)
            return await self._recover(candidate, response_id, spoke)

    async def _decide(self, candidate: AppointmentCandidate, response_id, spoke: list) -> BookingDecision:
        state = self.state
        contact = self.session.contact

        logger.info(
            "Booking request for %s (email=%s, source=%s)",
            candidate.preferred_time_text, contact.customer_email or "-", candidate.confidence_source.value,
        )

        if not candidate.is_business_hours:
            text = outside_hours_prompt(candidate.day_name, candidate.display_time, self.settings)
            spoke.append(text)
            sent = await self.gate.try_send(text, response_id)
            state.booking_in_progress = False
            return BookingDecision(BookingOutcome.OUTSIDE_HOURS, text, sent)

        email = validate_email(contact.customer_email)
        if not email:
            logger.info("No valid customer email for booking")
            text = email_request_prompt()
            spoke.append(text)
            sent = await self.gate.try_send(text, response_id)
            state.booking_in_progress = False
            return BookingDecision(BookingOutcome.MISSING_EMAIL, text, sent)

        state.status = BookingStatus.CONFIRMING
        discovery_data = self._discovery_data()

        text = booking_confirmation(candidate.day_name, candidate.display_time, email, self.settings)
        spoke.append(text)
        sent = await self.gate.try_send(text, response_id)

        # Latched at confirmation time, not at calendar success
        state.latch()
        self.tracker.mark_scheduling_started(self.session.call_id)
        self._dispatch(candidate, discovery_data)
        return BookingDecision(BookingOutcome.CONFIRMED, text, sent)

    async def _recover(self, candidate: AppointmentCandidate, response_id, spoke: list) -> BookingDecision:
        """Settle a phase 1 failure as booked, speaking at most once per turn."""
        state = self.state
        email = validate_email(self.session.contact.customer_email)
        text = spoke[-1] if spoke else ""
        sent = False
        state.latch()
        try:
            if not spoke:
                text = booking_fallback_confirmation(candidate.day_name, candidate.display_time, email, self.settings)
                sent = await self.gate.try_send(text, response_id)
            if candidate.is_business_hours and email and not self._tasks:
                self._dispatch(candidate, self._discovery_data())
            self.tracker.mark_scheduling_started(self.session.call_id)
        except Exception as e:
            logger.error("Booking recovery failed: %s", e)
        finally:
            state.booking_in_progress = False
        return BookingDecision(BookingOutcome.CONFIRMED, text, sent)

    def _discovery_data(self) -> dict:
        try:
            return self.tracker.get_final_discovery_data(self.session.call_id)
        except Exception as e:
            logger.error("Could not read discovery data: %s", e)
            return {}

    def _dispatch(self, candidate: AppointmentCandidate, discovery_data: dict) -> None:
        task = asyncio.create_task(self._complete_booking(candidate, discovery_data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for any background bookings still running."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _complete_booking(self, candidate: AppointmentCandidate, discovery_data: dict) -> None:
        """Phase 2. Reports outward only."""
        state = self.state
        contact = self.session.contact
        try:
            if self.settings.booking_dispatch_delay_s > 0:
                await self._sleep(self.settings.booking_dispatch_delay_s)

            if self.calendar is None:
                raise RuntimeError("Calendar not configured")

            result = await self.calendar.book(
                contact.customer_name or "Customer",
                contact.customer_email,
                contact.customer_phone,
                candidate.resolved_datetime,
                discovery_data,
            )
            logger.info("Calendar booking result: %s", result)

            if result.get("success"):
                state.outcome = "success"
                logger.info(
                    "Calendar booking succeeded: event=%s link=%s",
                    result.get("eventId", ""), result.get("meetingLink", ""),
                )
                await self._store_successful_booking(candidate, discovery_data)
                if not candidate.from_memory:
                    await self._learn_success(candidate)
                await self._send_booking_webhook(candidate, discovery_data, result, "success")
            else:
                state.outcome = "failed"
                logger.warning("Calendar booking failed: %s", result.get("error"))
                await self._learn_failure(candidate, result.get("error") or "unknown error")
                await self._send_booking_webhook(candidate, discovery_data, None, "failed")
        except Exception as e:
            state.outcome = "error"
            logger.error("Calendar booking exception: %s", e)
            await self._learn_failure(candidate, str(e))
            await self._send_booking_webhook(candidate, discovery_data, None, "error")
        finally:
            state.booking_in_progress = False

    async def _store_successful_booking(self, candidate: AppointmentCandidate, discovery_data: dict) -> None:
        if self.memory is None:
            return
        try:
            await self.memory.store_conversation_memory(
                self.session.call_id,
                asdict(self.session.contact),
                {
                    "duration": self.session.conversation.duration_minutes(time.time()),
                    "questionsCompleted": 6,
                    "schedulingCompleted": True,
                    "appointmentScheduled": candidate.display_time,
                    "userSentiment": "positive",
                    "callEndReason": "successful_booking",
                    "outcome": "appointment_booked",
                },
                discovery_data,
            )
        except Exception as e:
            logger.error("Error storing successful booking memory: %s", e)

    async def _learn_success(self, candidate: AppointmentCandidate) -> None:
        if self.memory is None:
            return
        try:
            await self.memory.store_successful_booking_pattern(
                candidate.original_text,
                candidate_payload(candidate),
                self.session.contact.customer_email,
            )
        except Exception as e:
            logger.error("Error storing booking pattern: %s", e)

    async def _learn_failure(self, candidate: AppointmentCandidate, error: str) -> None:
        if self.memory is None:
            return
        try:
            await self.memory.store_failed_booking_attempt(candidate.original_text, error)
        except Exception as e:
            logger.error("Error storing failed booking attempt: %s", e)

    async def _send_booking_webhook(
        self,
        candidate: AppointmentCandidate,
        discovery_data: dict,
        result: dict | None,
        status: str,
    ) -> None:
        if self.webhooks is None:
            logger.warning("Webhook not configured, skipping %s booking webhook", status)
            return
        contact = self.session.contact
        data = {
            **discovery_data,
            "appointment_requested": True,
            "requested_time": candidate.display_time,
            "requested_day": candidate.day_name,
            "booking_status": status,
            "calendar_status": status,
            "booking_confirmed_to_user": True,
            "memory_enhanced": self.memory is not None,
        }
        if result and result.get("success"):
            data["appointment_booked"] = True
            data["meeting_link"] = result.get("meetingLink", "")
            data["event_id"] = result.get("eventId", "")
            data["event_link"] = result.get("eventLink", "")
        else:
            data["needs_manual_booking"] = True
        try:
            await self.webhooks.notify(
                contact.customer_name or "Customer",
                contact.customer_email,
                contact.customer_phone,
                candidate.preferred_time_text,
                self.session.call_id,
                data,
            )
            logger.info("%s booking webhook sent", status)
        except Exception as e:
            logger.error("Webhook error: %s", e)
