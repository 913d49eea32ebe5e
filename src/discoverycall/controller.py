import logging
import time
from datetime import datetime
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo

from discoverycall import appointment_parser
from discoverycall.appointment_parser import BookingHint
from discoverycall.booking import BookingCoordinator
from discoverycall.config import Settings
from discoverycall.discovery import DiscoveryProgress, DiscoveryTracker
from discoverycall.phases import Phase
from discoverycall.prompts import (
    CALENDAR_ABSENT,
    DIDNT_CATCH,
    MEMORY_CHALLENGES_QUESTION,
    SCHEDULING_TRANSITION,
    build_system_prompt,
    greeting,
)
from discoverycall.responder import generate_reply
from discoverycall.response_gate import ResponseGate
from discoverycall.scheduling import build_availability_response
from discoverycall.session import CallSession
from discoverycall.validation import (
    contextual_acknowledgment,
    greeting_acknowledgment,
    is_valid_discovery_answer,
)

logger = logging.getLogger(__name__)

FIRST_QUESTION_INDEX = 0
CHALLENGES_QUESTION_INDEX = 5


class PhaseController:
    """Picks exactly one branch per caller turn and runs it.

    Branch order (first match wins):
      booked latch -> swallow
      too soon after last response -> swallow
      greeting -> appointment booking -> discovery -> scheduling fallback -> generic
    """

    def __init__(
        self,
        session: CallSession,
        gate: ResponseGate,
        coordinator: BookingCoordinator,
        tracker: DiscoveryTracker,
        settings: Settings,
        calendar=None,
        memory=None,
        reply_fn: Callable[..., Awaitable[str]] = generate_reply,
        now_fn: Callable[[], datetime] | None = None,
    ):
        self.session = session
        self.gate = gate
        self.coordinator = coordinator
        self.tracker = tracker
        self.settings = settings
        self.calendar = calendar
        self.memory = memory
        self._reply = reply_fn
        self._now_fn = now_fn

    def _now(self) -> datetime:
        if self._now_fn is not None:
            return self._now_fn()
        return datetime.now(ZoneInfo(self.settings.business_timezone))

    def _progress(self) -> DiscoveryProgress | None:
        try:
            return self.tracker.get_progress(self.session.call_id)
        except Exception as e:
            logger.error("Discovery progress unavailable: %s", e)
            return None

    def select_phase(self, progress: DiscoveryProgress | None) -> Phase | None:
        conversation = self.session.conversation
        booking = self.session.booking

        if booking.appointment_booked:
            logger.info("Appointment already booked, ignoring turn")
            return None
        if self.gate.within_min_spacing():
            logger.info("Response too soon, skipping turn")
            return None
        if not conversation.has_greeted and conversation.user_has_spoken:
            return Phase.GREETING
        if progress is None:
            return Phase.GENERIC_RESPONSE
        if progress.discovery_complete and booking.accepts_candidates:
            return Phase.APPOINTMENT_BOOKING
        if not progress.discovery_complete and not progress.scheduling_started:
            return Phase.DISCOVERY
        return Phase.SCHEDULING_FALLBACK

    async def process_turn(self, text: str, response_id=None) -> Phase | None:
        conversation = self.session.conversation
        conversation.turn_count += 1

        if not conversation.user_has_spoken:
            conversation.user_has_spoken = True
            conversation.started_at = time.time()
            logger.info("Caller spoke first, starting conversation")

        progress = self._progress()
        phase = self.select_phase(progress)
        if phase is None:
            return None

        conversation.history.append({"role": "user", "content": text})
        if progress is not None:
            logger.info(
                f"[{phase.value}] {progress.questions_completed}/6 answered, "
                f"phase={progress.conversation_phase}, scripted={phase.is_scripted}"
            )

        handler = getattr(self, f"_handle_{phase.value}")
        await handler(text, response_id, progress)
        return phase

    async def _say(self, text: str, response_id) -> bool:
        sent = await self.gate.try_send(text, response_id)
        # Dropped text never reaches the LLM context
        if sent:
            self.session.conversation.history.append({"role": "assistant", "content": text})
        return sent

    # ── Branch handlers ──

    async def _handle_greeting(self, text: str, response_id, progress) -> None:
        self.session.conversation.has_greeted = True
        if self.session.conversation.is_returning_customer:
            logger.info("Returning customer, personalised greeting")
        await self._say(greeting(self.session, self.settings), response_id)
        self.tracker.mark_greeting_completed(self.session.call_id)

    async def _handle_appointment_booking(self, text: str, response_id, progress) -> None:
        hint = await self._booking_hint(text)
        candidate = appointment_parser.parse(
            text,
            now=self._now(),
            hint=hint,
            tz_name=self.settings.business_timezone,
        )
        if candidate is None:
            logger.info("No appointment in %r, offering availability", text)
            await self._handle_scheduling_fallback(text, response_id, progress)
            return

        self.session.booking.booking_in_progress = True
        decision = await self.coordinator.handle_candidate(candidate, response_id)
        logger.info(
            "Booking decision: %s (committed=%s, sent=%s, pending=%d)",
            decision.outcome.value, decision.committed, decision.sent, self.coordinator.pending,
        )

    async def _booking_hint(self, text: str) -> BookingHint | None:
        if self.memory is None:
            return None
        try:
            hint = BookingHint.from_dict(await self.memory.get_booking_intelligence(text))
        except Exception as e:
            logger.error("Booking memory error: %s", e)
            return None
        if not hint.confident and hint.suggestions:
            logger.info("Booking memory suggestions: %s", hint.suggestions)
        return hint

    async def _handle_discovery(self, text: str, response_id, progress: DiscoveryProgress) -> None:
        if (
            self.session.conversation.customer_profile
            and progress.questions_completed == 0
            and not progress.waiting_for_answer
        ):
            await self._memory_discovery(text, response_id)
            return

        if progress.greeting_completed and progress.questions_completed == 0 and not progress.waiting_for_answer:
            await self._ask_first_question(text, response_id)
            return

        if progress.waiting_for_answer:
            await self._capture_answer(text, response_id, progress)
            return

        await self._ask_next_question(response_id)

    async def _memory_discovery(self, text: str, response_id) -> None:
        """Skip ahead when memory already tells us about the caller's business."""
        contact = self.session.contact
        memories = []
        if self.memory is not None and contact.has_email:
            try:
                memories = await self.memory.get_memories_by_type(contact.customer_email, "business_context", 1)
            except Exception as e:
                logger.error("Business memory lookup failed: %s", e)

        if not memories or memories[0].get("relevance") == "very_low":
            await self._ask_first_question(text, response_id)
            return

        call_id = self.session.call_id
        info = memories[0].get("content", "")
        subject = "business" if "industry" in info else "work"
        response = f"{greeting_acknowledgment(text)} I remember we spoke about your {subject}. "

        if "industry" in info or "business" in info:
            logger.info("Business context in memory, skipping to challenges")
            response += MEMORY_CHALLENGES_QUESTION
            self.tracker.mark_question_asked(call_id, 0)
            self.tracker.capture_answer(call_id, 0, "Previous conversation")
            self.tracker.mark_question_asked(call_id, 1)
            self.tracker.capture_answer(call_id, 1, f"From memory: {info}")
            self.tracker.mark_question_asked(call_id, CHALLENGES_QUESTION_INDEX, response)
        else:
            first = self.tracker.get_session(call_id).questions[FIRST_QUESTION_INDEX].question
            response += first
            self.tracker.mark_question_asked(call_id, FIRST_QUESTION_INDEX, response)

        await self._say(response, response_id)

    async def _ask_first_question(self, text: str, response_id) -> None:
        call_id = self.session.call_id
        first = self.tracker.get_session(call_id).questions[FIRST_QUESTION_INDEX].question
        self.tracker.mark_question_asked(call_id, FIRST_QUESTION_INDEX, first)
        await self._say(f"{greeting_acknowledgment(text)} {first}", response_id)

    async def _capture_answer(self, text: str, response_id, progress: DiscoveryProgress) -> None:
        call_id = self.session.call_id
        index = progress.current_question_index
        logger.info("Capturing answer for Q%d: %r", index + 1, text)

        if is_valid_discovery_answer(text) and self.tracker.capture_answer(call_id, index, text.strip()):
            updated = self.tracker.get_progress(call_id)
            if updated is not None and updated.discovery_complete:
                logger.info("All discovery questions answered, moving to scheduling")
                self.tracker.mark_scheduling_started(call_id)
                await self._say(SCHEDULING_TRANSITION, response_id)
                return
            await self._ask_next_question(response_id, acknowledge=True)
            return

        current = self.tracker.current_question(call_id)
        if current is not None:
            await self._say(DIDNT_CATCH.format(question=current.question), response_id)

    async def _ask_next_question(self, response_id, acknowledge: bool = False) -> None:
        call_id = self.session.call_id
        question = self.tracker.get_next_unanswered_question(call_id)
        if question is None:
            return
        index = self.tracker.question_index(call_id, question)
        response = question.question
        if acknowledge:
            response = f"{contextual_acknowledgment(index - 1)} {question.question}"
        if self.tracker.mark_question_asked(call_id, index, response):
            await self._say(response, response_id)

    async def _handle_scheduling_fallback(self, text: str, response_id, progress) -> None:
        self.tracker.mark_scheduling_started(self.session.call_id)
        if self.calendar is None:
            await self._say(CALENDAR_ABSENT, response_id)
            return
        response = await build_availability_response(self.calendar, self._now())
        await self._say(response, response_id)

    async def _handle_generic_response(self, text: str, response_id, progress) -> None:
        contact = self.session.contact
        memories = []
        if self.memory is not None and contact.has_email:
            try:
                memories = await self.memory.retrieve_relevant_memories(contact.customer_email, text, 2)
            except Exception as e:
                logger.error("Memory retrieval failed: %s", e)

        system = build_system_prompt(self.session, self.settings, memories)
        messages = [{"role": "system", "content": system}, *self.session.conversation.history]
        reply = await self._reply(
            messages,
            api_key=self.settings.openai_api_key,
            model=self.settings.openai_model,
        )
        await self._say(reply, response_id)
