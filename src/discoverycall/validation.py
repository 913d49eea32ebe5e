import re

from discoverycall.session import PLACEHOLDER_EMAIL, PLACEHOLDER_NAME


SENTINEL_VALUES = {
    "not provided", "n/a", "na", "unknown", "none", "tbd",
    "{{customer_name}}", "{{customer_email}}", "customer_name",
}

# Substring match, same as the outbound classifier on the wire
BOOKING_RESPONSE_MARKERS = ("booking", "appointment", "confirmed")

# Echoes of the discovery questions and bare fillers are not answers
INVALID_ANSWER_PATTERNS = [
    re.compile(r"^(what|how|where|when|why|who)\b"),
    re.compile(r"hear about"),
    re.compile(r"industry or business"),
    re.compile(r"main product"),
    re.compile(r"running.*ads"),
    re.compile(r"crm system"),
    re.compile(r"pain points"),
    re.compile(r"^(uh|um|er|ah)$"),
]

POSITIVE_SIGNALS = ("great", "perfect", "thanks")
NEGATIVE_SIGNALS = ("problem", "difficult", "frustrated")

CONTEXTUAL_ACKNOWLEDGMENTS = [
    "Great!",
    "Perfect!",
    "Excellent!",
    "That's helpful!",
    "I understand.",
    "Thank you!",
]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_email(value: str | None) -> str:
    if not value:
        return ""
    cleaned = value.strip()
    if cleaned.lower() == PLACEHOLDER_EMAIL:
        return ""
    if not _EMAIL_RE.match(cleaned):
        return ""
    return cleaned


def validate_name(value: str | None) -> str:
    if not value:
        return ""
    cleaned = value.strip()
    if cleaned.lower() in SENTINEL_VALUES:
        return ""
    if cleaned == PLACEHOLDER_NAME:
        return ""
    # Reject phone numbers used as names
    if re.match(r"^[\d+\-() ]{7,}$", cleaned):
        return ""
    if "{{" in cleaned or "}}" in cleaned:
        return ""
    return cleaned


def is_booking_related(text: str) -> bool:
    return any(marker in text for marker in BOOKING_RESPONSE_MARKERS)


def is_valid_discovery_answer(text: str) -> bool:
    """Lenient check: accept most answers except echoes and fillers."""
    message = text.lower().strip()
    if len(message) < 2:
        return False
    return not any(p.search(message) for p in INVALID_ANSWER_PATTERNS)


def greeting_acknowledgment(text: str) -> str:
    answer = text.lower()
    if "good" in answer or "great" in answer or "well" in answer:
        return "That's wonderful to hear!"
    if "busy" in answer or "hectic" in answer:
        return "I totally understand."
    if "fine" in answer or "ok" in answer:
        return "Great!"
    return "Nice!"


def contextual_acknowledgment(question_index: int) -> str:
    if question_index < 0:
        return "Great!"
    return CONTEXTUAL_ACKNOWLEDGMENTS[question_index % len(CONTEXTUAL_ACKNOWLEDGMENTS)]


def detect_user_sentiment(history: list[dict]) -> str:
    """Classify the last three user utterances as positive, negative or neutral."""
    recent = [m["content"].lower() for m in history if m.get("role") == "user"][-3:]
    joined = " ".join(recent)
    if any(s in joined for s in POSITIVE_SIGNALS):
        return "positive"
    if any(s in joined for s in NEGATIVE_SIGNALS):
        return "negative"
    return "neutral"
