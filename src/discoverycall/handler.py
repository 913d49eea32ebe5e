import asyncio
import json
import logging
import re
import time
import uuid
from typing import Awaitable, Callable, Mapping

from discoverycall.booking import BookingCoordinator
from discoverycall.config import Settings
from discoverycall.controller import PhaseController
from discoverycall.discovery import DiscoveryTracker
from discoverycall.prompts import REPEAT_REQUEST
from discoverycall.response_gate import ResponseGate
from discoverycall.session import (
    PLACEHOLDER_EMAIL,
    PLACEHOLDER_NAME,
    BookingState,
    CallSession,
    ContactInfo,
    GateState,
)
from discoverycall.validation import validate_name

logger = logging.getLogger(__name__)

CALL_ID_PATTERN = re.compile(r"call_([a-f0-9]+)")


def call_id_from_path(path: str) -> str | None:
    match = CALL_ID_PATTERN.search(path or "")
    return f"call_{match.group(1)}" if match else None


def connection_id() -> str:
    """Stand-in key for a connection whose path carries no call id."""
    return f"conn_{uuid.uuid4().hex[:12]}"


def _first(values: Mapping, *keys: str) -> str:
    for key in keys:
        value = values.get(key)
        if value:
            return str(value)
    return ""


def contact_from_query(params: Mapping) -> ContactInfo:
    """Contact details passed on the websocket URL, if any."""
    email = _first(params, "customer_email", "email")
    if not email or email == PLACEHOLDER_EMAIL:
        return ContactInfo(source="no_data_found")
    return ContactInfo(
        customer_email=email,
        customer_name=validate_name(_first(params, "customer_name", "name")) or PLACEHOLDER_NAME,
        customer_phone=_first(params, "customer_phone", "phone"),
        source="url_parameters",
    )


class CallHandler:
    """One websocket connection: inbound events in, gated responses out.

    Builds the per-call session and wires gate -> coordinator -> controller.
    Events are handled one at a time; any exception while handling one is
    logged and answered with a repeat request.
    """

    def __init__(
        self,
        call_path: str,
        query_params: Mapping,
        send: Callable[[str], Awaitable[None]],
        tracker: DiscoveryTracker,
        settings: Settings,
        calendar=None,
        memory=None,
        webhooks=None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.tracker = tracker
        self.memory = memory
        self.webhooks = webhooks
        call_id = call_id_from_path(call_path)
        # Replaceable by an in-band call id until the first turn uses it
        self.call_id_provisional = call_id is None
        self.session = CallSession(
            call_id=call_id or connection_id(),
            contact=contact_from_query(query_params),
            booking=BookingState(booking_cooldown_ms=settings.booking_cooldown_ms),
            gate=GateState(
                min_response_spacing_ms=settings.min_response_spacing_ms,
                max_responses_per_window=settings.max_responses_per_minute,
            ),
        )
        self.gate = ResponseGate(self.session.gate, send, clock=clock, sleep=sleep)
        self.coordinator = BookingCoordinator(
            self.session,
            self.gate,
            tracker,
            settings,
            calendar=calendar,
            memory=memory,
            webhooks=webhooks,
            clock=clock,
            sleep=sleep,
        )
        self.controller = PhaseController(
            self.session,
            self.gate,
            self.coordinator,
            tracker,
            settings,
            calendar=calendar,
            memory=memory,
        )

    async def start(self) -> None:
        contact = self.session.contact
        logger.info(
            "Call %s connected (email=%s, source=%s)",
            self.session.call_id, contact.customer_email or "-", contact.source,
        )
        self.tracker.get_session(self.session.call_id, self._tracker_contact())
        await self.load_customer_memory()

    def _tracker_contact(self) -> dict:
        contact = self.session.contact
        return {
            "email": contact.customer_email,
            "name": contact.customer_name,
            "phone": contact.customer_phone,
        }

    async def load_customer_memory(self) -> None:
        contact = self.session.contact
        if self.memory is None:
            logger.info("Memory service not configured")
            return
        if not contact.has_email:
            logger.info("No valid customer email for memory lookup")
            return

        conversation = self.session.conversation
        try:
            conversation.memory_context = await self.memory.generate_conversation_context(
                contact.customer_email, "customer interaction history",
            )
            conversation.customer_profile = await self.memory.get_customer_context(contact.customer_email)
        except Exception as e:
            logger.error("Error loading customer memory: %s", e)
            return
        if conversation.memory_context:
            logger.info("Customer memory loaded: %s", conversation.memory_context[:100])

    async def handle_message(self, raw: str) -> None:
        try:
            event = json.loads(raw)
            self._apply_call_info(event.get("call") or {})
            if event.get("interaction_type") == "response_required":
                transcript = event.get("transcript") or []
                text = transcript[-1].get("content", "") if transcript else ""
                logger.info("USER: %s", text)
                await self.controller.process_turn(text, event.get("response_id"))
        except Exception as e:
            logger.error("Error handling message: %s", e)
            await self.gate.try_send(REPEAT_REQUEST)

    def _apply_call_info(self, call: dict) -> None:
        if not call.get("call_id"):
            return
        contact = self.session.contact

        if self.call_id_provisional:
            self._adopt_call_id(call["call_id"])

        metadata = call.get("metadata")
        if metadata and not contact.has_email:
            email = _first(metadata, "customer_email", "email")
            if email and email != PLACEHOLDER_EMAIL:
                contact.customer_email = email
                contact.customer_name = validate_name(_first(metadata, "customer_name", "name")) or PLACEHOLDER_NAME
                contact.customer_phone = _first(metadata, "customer_phone", "phone") or call.get("to_number") or ""
                contact.source = "websocket_metadata"
                logger.info("Updated contact from websocket metadata: %s", email)

        if call.get("to_number") and not contact.customer_phone:
            contact.customer_phone = call["to_number"]

    def _adopt_call_id(self, call_id: str) -> None:
        self.call_id_provisional = False
        if self.session.conversation.turn_count > 0:
            logger.warning(
                "Ignoring in-band call id %s, turns already ran under %s", call_id, self.session.call_id,
            )
            return
        self.tracker.rename_session(self.session.call_id, call_id)
        self.tracker.get_session(call_id, self._tracker_contact())
        self.session.call_id = call_id
        logger.info("Got call id from websocket: %s", call_id)
