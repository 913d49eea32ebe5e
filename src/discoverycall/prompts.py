from discoverycall.config import Settings
from discoverycall.discovery import DISCOVERY_QUESTIONS
from discoverycall.session import CallSession


def persona(settings: Settings) -> str:
    questions = "\n".join(f'   - "{q}"' for _, q in DISCOVERY_QUESTIONS)
    tz = settings.business_timezone_label
    return f"""You are {settings.agent_name} from {settings.company_name}, a friendly professional assistant on a live call.

CONVERSATION FLOW
1. GREETING: wait for the caller to speak first, then greet and ask the first question.
2. DISCOVERY: ask these questions ONE AT A TIME:
{questions}
3. SCHEDULING: only after all six answers, find a time.

SCHEDULING
- Business hours are 8 AM to 4 PM {tz}, Monday through Friday.
- Suggest times such as 8:00 AM, 9:00 AM, 10:00 AM, 11:00 AM, 1:00 PM, 2:00 PM, 3:00 PM.
- NEVER say an appointment is confirmed unless you are told it was booked.

RULES
- Keep every reply under 25 words. This is a phone call.
- NEVER re-ask something already answered.
- Reference past conversations naturally when memory is provided."""


def build_system_prompt(session: CallSession, settings: Settings, memories: list[dict] | None = None) -> str:
    parts = [persona(settings)]
    context = _build_context(session)
    if context:
        parts.append(context)
    if session.conversation.memory_context:
        parts.append(f"CUSTOMER MEMORY CONTEXT: {session.conversation.memory_context}")
    if memories:
        parts.append("RELEVANT MEMORIES: " + " ".join(f"{m.get('content', '')}." for m in memories))
    return "\n\n".join(parts)


def _build_context(session: CallSession) -> str:
    parts = []
    if session.contact.display_name:
        parts.append(f"Caller's name: {session.contact.display_name}")
    if session.contact.has_email:
        parts.append(f"Caller's email: {session.contact.customer_email}")
    if session.conversation.is_returning_customer:
        parts.append("Returning customer.")
    return "\n".join(parts)


def greeting(session: CallSession, settings: Settings) -> str:
    name = session.contact.display_name
    salutation = f"Hi {name}!" if name else "Hi!"
    intro = f"This is {settings.agent_name} from {settings.company_name}."
    if session.conversation.is_returning_customer:
        return f"{salutation} Great to hear from you again. {intro} How are things going?"
    return f"{salutation} {intro} How are you doing today?"


SCHEDULING_TRANSITION = (
    "Perfect! I have all the information I need. "
    "Let's find you a time that works. What day works best for you?"
)

MEMORY_CHALLENGES_QUESTION = "What are the biggest challenges you're facing right now?"

DIDNT_CATCH = "I didn't catch that. {question}"

GENERIC_FALLBACK = "I understand. How can I help you further?"

REPEAT_REQUEST = "I missed that. Could you repeat it?"

AVAILABILITY_FALLBACK = (
    "Let me check my calendar for available times. What day and time would work best for you?"
)

CALENDAR_ABSENT = (
    "I'll follow up with a calendar invitation once we settle on a time. "
    "What day and time would work best for you?"
)

NO_AVAILABILITY = "I don't have any availability this week. Let me check next week for you."


def outside_hours_prompt(day_name: str, display_time: str, settings: Settings) -> str:
    tz = settings.business_timezone_label
    return (
        f"I'd love to schedule you for {day_name} at {display_time}, but our business hours "
        f"are 8 AM to 4 PM {tz}. Would you like to choose a time between 8 AM and 4 PM instead?"
    )


def email_request_prompt() -> str:
    return (
        "I'd love to book that appointment for you! Could you provide your email address "
        "so I can send you the calendar invitation?"
    )


def booking_confirmation(day_name: str, display_time: str, email: str, settings: Settings) -> str:
    tz = settings.business_timezone_label
    return (
        f"Perfect! I'm booking you for {day_name} at {display_time} {tz} right now. "
        f"Your appointment is confirmed! You'll receive a calendar invitation at {email} shortly."
    )


def booking_fallback_confirmation(day_name: str, display_time: str, email: str, settings: Settings) -> str:
    tz = settings.business_timezone_label
    return (
        f"Perfect! I'll get you scheduled for {day_name} at {display_time} {tz}. "
        f"You'll receive confirmation details at {email or 'your email'} shortly."
    )
