from unittest.mock import AsyncMock, Mock

import pytest

from conftest import MONDAY_10AM, spoken
from discoverycall.appointment_parser import BookingHint, parse
from discoverycall.booking import BookingCoordinator, BookingOutcome, candidate_payload
from discoverycall.phases import BookingStatus
from discoverycall.response_gate import ResponseGate
from discoverycall.session import CallSession, ContactInfo


@pytest.fixture
def session():
    return CallSession(
        call_id="call_abc123",
        contact=ContactInfo(
            customer_email="jane@acme.com",
            customer_name="Jane",
            customer_phone="+15125551234",
        ),
    )


@pytest.fixture
def calendar():
    calendar = AsyncMock()
    calendar.book.return_value = {
        "success": True,
        "meetingLink": "https://meet.example.com/abc",
        "eventId": "evt_1",
        "eventLink": "https://calendar.example.com/evt_1",
    }
    return calendar


@pytest.fixture
def webhooks():
    return AsyncMock()


@pytest.fixture
def memory():
    return AsyncMock()


@pytest.fixture
def coordinator(session, send, tracker, settings, clock, calendar, memory, webhooks):
    gate = ResponseGate(session.gate, send, clock=clock, sleep=clock.sleep)
    return BookingCoordinator(
        session, gate, tracker, settings,
        calendar=calendar, memory=memory, webhooks=webhooks,
        clock=clock, sleep=clock.sleep,
    )


def candidate(text="Thursday at 9", hint=None):
    return parse(text, now=MONDAY_10AM, hint=hint)


class TestGuards:
    @pytest.mark.asyncio
    async def test_outside_hours_single_rejection(self, coordinator, session, send):
        session.booking.booking_in_progress = True
        decision = await coordinator.handle_candidate(candidate("Tuesday at seven"))
        assert decision.outcome is BookingOutcome.OUTSIDE_HOURS
        assert decision.committed is False
        assert len(spoken(send)) == 1
        assert "business hours" in spoken(send)[0]
        assert "Tuesday at 7:00 AM" in spoken(send)[0]
        assert session.booking.appointment_booked is False
        assert session.booking.booking_in_progress is False

    @pytest.mark.asyncio
    async def test_missing_email_asks_for_it(self, coordinator, session, send):
        session.contact = ContactInfo()
        decision = await coordinator.handle_candidate(candidate())
        assert decision.outcome is BookingOutcome.MISSING_EMAIL
        assert "email address" in spoken(send)[0]
        assert session.booking.appointment_booked is False

    @pytest.mark.asyncio
    async def test_placeholder_email_counts_as_missing(self, coordinator, session):
        session.contact.customer_email = "prospect@example.com"
        decision = await coordinator.handle_candidate(candidate())
        assert decision.outcome is BookingOutcome.MISSING_EMAIL

    @pytest.mark.asyncio
    async def test_cooldown_blocks_second_attempt(self, coordinator, session, send, clock):
        await coordinator.handle_candidate(candidate("Tuesday at seven"))
        clock.advance(5)
        decision = await coordinator.handle_candidate(candidate())
        assert decision.outcome is BookingOutcome.COOLDOWN
        assert len(spoken(send)) == 1
        assert session.booking.booking_in_progress is False

    @pytest.mark.asyncio
    async def test_attempt_allowed_after_cooldown(self, coordinator, clock):
        await coordinator.handle_candidate(candidate("Tuesday at seven"))
        clock.advance(11)
        decision = await coordinator.handle_candidate(candidate())
        assert decision.outcome is BookingOutcome.CONFIRMED
        await coordinator.drain()

    def test_in_cooldown(self, coordinator, session, clock):
        assert coordinator.in_cooldown(clock.now) is False
        session.booking.last_booking_attempt_at = clock.now
        assert coordinator.in_cooldown(clock.now + 9.9) is True
        assert coordinator.in_cooldown(clock.now + 10) is False


class TestConfirmation:
    @pytest.mark.asyncio
    async def test_confirms_and_latches(self, coordinator, session, send, tracker):
        decision = await coordinator.handle_candidate(candidate(), response_id=4)
        assert decision.outcome is BookingOutcome.CONFIRMED
        assert decision.committed is True
        assert spoken(send) == [
            "Perfect! I'm booking you for Thursday at 9:00 AM Arizona time right now. "
            "Your appointment is confirmed! You'll receive a calendar invitation at jane@acme.com shortly."
        ]
        assert session.booking.appointment_booked is True
        assert session.booking.status is BookingStatus.BOOKED
        assert tracker.get_progress("call_abc123").scheduling_started is True
        await coordinator.drain()

    @pytest.mark.asyncio
    async def test_latch_set_even_when_gate_drops_confirmation(self, coordinator, session, send):
        session.gate.max_responses_per_window = 0
        decision = await coordinator.handle_candidate(candidate())
        assert decision.sent is False
        assert send.await_count == 0
        assert session.booking.appointment_booked is True
        await coordinator.drain()


class TestBackgroundBooking:
    @pytest.mark.asyncio
    async def test_success_reports_to_webhook_and_memory(self, coordinator, session, calendar, memory, webhooks):
        c = candidate()
        await coordinator.handle_candidate(c)
        await coordinator.drain()

        calendar.book.assert_awaited_once()
        args = calendar.book.await_args.args
        assert args[:3] == ("Jane", "jane@acme.com", "+15125551234")
        assert args[3] == c.resolved_datetime

        assert session.booking.outcome == "success"
        assert session.booking.booking_in_progress is False
        memory.store_conversation_memory.assert_awaited_once()
        memory.store_successful_booking_pattern.assert_awaited_once_with(
            c.original_text, candidate_payload(c), "jane@acme.com",
        )

        name, email, phone, preferred, call_id, data = webhooks.notify.await_args.args
        assert preferred == "Thursday at 9:00 AM"
        assert call_id == "call_abc123"
        assert data["booking_status"] == "success"
        assert data["appointment_booked"] is True
        assert data["meeting_link"] == "https://meet.example.com/abc"
        assert data["booking_confirmed_to_user"] is True
        assert "needs_manual_booking" not in data

    @pytest.mark.asyncio
    async def test_calendar_failure_keeps_confirmation(self, coordinator, session, send, calendar, memory, webhooks):
        calendar.book.return_value = {"success": False, "error": "slot taken"}
        await coordinator.handle_candidate(candidate())
        await coordinator.drain()

        assert session.booking.appointment_booked is True
        assert session.booking.outcome == "failed"
        assert len(spoken(send)) == 1
        memory.store_failed_booking_attempt.assert_awaited_once_with("Thursday at 9", "slot taken")
        data = webhooks.notify.await_args.args[5]
        assert data["booking_status"] == "failed"
        assert data["needs_manual_booking"] is True

    @pytest.mark.asyncio
    async def test_calendar_exception_keeps_confirmation(self, coordinator, session, send, calendar, webhooks):
        calendar.book.side_effect = RuntimeError("calendar down")
        await coordinator.handle_candidate(candidate())
        confirmation = spoken(send)
        await coordinator.drain()

        assert session.booking.appointment_booked is True
        assert session.booking.outcome == "error"
        assert session.booking.booking_in_progress is False
        assert spoken(send) == confirmation
        assert webhooks.notify.await_args.args[5]["calendar_status"] == "error"

    @pytest.mark.asyncio
    async def test_missing_calendar_reported_as_error(self, session, send, tracker, settings, clock, webhooks):
        gate = ResponseGate(session.gate, send, clock=clock, sleep=clock.sleep)
        coordinator = BookingCoordinator(
            session, gate, tracker, settings, webhooks=webhooks, clock=clock, sleep=clock.sleep,
        )
        await coordinator.handle_candidate(candidate())
        await coordinator.drain()
        assert session.booking.outcome == "error"
        assert webhooks.notify.await_args.args[5]["booking_status"] == "error"

    @pytest.mark.asyncio
    async def test_memory_candidate_not_relearned(self, coordinator, memory):
        hint = BookingHint(confident=True, suggested_day="wednesday", suggested_time="morning")
        await coordinator.handle_candidate(candidate("the usual time", hint=hint))
        await coordinator.drain()
        memory.store_successful_booking_pattern.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_webhook_error_is_swallowed(self, coordinator, session, webhooks):
        webhooks.notify.side_effect = RuntimeError("crm down")
        await coordinator.handle_candidate(candidate())
        await coordinator.drain()
        assert session.booking.outcome == "success"
        assert coordinator.pending == 0

    @pytest.mark.asyncio
    async def test_dispatch_delay_uses_injected_sleep(self, session, send, tracker, clock, calendar):
        from discoverycall.config import Settings

        gate = ResponseGate(session.gate, send, clock=clock, sleep=clock.sleep)
        coordinator = BookingCoordinator(
            session, gate, tracker, Settings(booking_dispatch_delay_s=1.0),
            calendar=calendar, clock=clock, sleep=clock.sleep,
        )
        await coordinator.handle_candidate(candidate())
        await coordinator.drain()
        assert 1.0 in clock.sleeps
        calendar.book.assert_awaited_once()


class TestPhaseOneRecovery:
    @pytest.mark.asyncio
    async def test_tracker_error_after_confirmation_speaks_once(self, coordinator, session, send, tracker, calendar, monkeypatch):
        monkeypatch.setattr(tracker, "mark_scheduling_started", Mock(side_effect=RuntimeError("tracker down")))
        session.booking.booking_in_progress = True

        decision = await coordinator.handle_candidate(candidate())
        await coordinator.drain()

        assert decision.outcome is BookingOutcome.CONFIRMED
        assert len(spoken(send)) == 1
        assert "Your appointment is confirmed!" in spoken(send)[0]
        assert session.booking.appointment_booked is True
        assert session.booking.booking_in_progress is False
        calendar.book.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_error_before_confirmation_sends_fallback(self, coordinator, session, send, tracker, webhooks, monkeypatch):
        monkeypatch.setattr("discoverycall.booking.booking_confirmation", Mock(side_effect=ValueError("bad template")))
        session.booking.booking_in_progress = True

        decision = await coordinator.handle_candidate(candidate())
        await coordinator.drain()

        assert decision.committed is True
        assert spoken(send) == [
            "Perfect! I'll get you scheduled for Thursday at 9:00 AM Arizona time. "
            "You'll receive confirmation details at jane@acme.com shortly."
        ]
        assert session.booking.appointment_booked is True
        assert session.booking.booking_in_progress is False
        assert tracker.get_progress("call_abc123").scheduling_started is True
        assert webhooks.notify.await_args.args[5]["booking_status"] == "success"
