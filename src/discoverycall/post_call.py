import logging
import time
from dataclasses import asdict

from discoverycall.discovery import DiscoveryTracker
from discoverycall.session import CallSession
from discoverycall.validation import detect_user_sentiment

logger = logging.getLogger(__name__)

EARLY_END_PREFERENCE = "Call ended early"


def build_conversation_summary(session: CallSession, session_info: dict, end_time: float) -> dict:
    """Conversation record stored in customer memory when the socket closes."""
    conversation = session.conversation
    return {
        "duration": conversation.duration_minutes(end_time),
        "questionsCompleted": session_info.get("questions_completed", 0),
        "schedulingCompleted": bool(session_info.get("scheduling_started")),
        "userSentiment": detect_user_sentiment(conversation.history),
        "callEndReason": "user_disconnect",
        "appointmentBooked": session.booking.appointment_booked,
    }


async def handle_call_ended(
    session: CallSession,
    tracker: DiscoveryTracker,
    memory=None,
    webhooks=None,
) -> None:
    """Close-time handoff. Called once the websocket receive loop exits.

    Pending booking continuations are not awaited or cancelled here; they
    finish on their own.
    """
    call_id = session.call_id
    contact = session.contact
    try:
        info = tracker.get_session_info(call_id)
        if info and info["questions_completed"] > 0 and memory is not None and contact.has_email:
            logger.info("Saving conversation to memory: %d/6 questions", info["questions_completed"])
            discovery_data = tracker.get_final_discovery_data(call_id)
            await memory.store_conversation_memory(
                call_id,
                asdict(contact),
                build_conversation_summary(session, info, time.time()),
                discovery_data,
            )
            if webhooks is not None:
                result = await webhooks.notify(
                    contact.customer_name,
                    contact.customer_email,
                    contact.customer_phone,
                    EARLY_END_PREFERENCE,
                    call_id,
                    discovery_data,
                )
                logger.info(f"Final webhook: {result}")
    except Exception as e:
        logger.error("Error in close handler: %s", e)
    finally:
        tracker.end_session(call_id)

    logger.info(
        f"Post-call complete for {call_id}: booked={session.booking.appointment_booked}, "
        f"outcome={session.booking.outcome or '-'}, sent={session.gate.sent_count}, "
        f"dropped={session.gate.dropped_count}"
    )
