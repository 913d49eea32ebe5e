"""Natural-language appointment-time extraction.

``parse()`` turns a caller utterance such as "what about Thursday at nine?"
into an ``AppointmentCandidate``.  It is pure: the only inputs are the text,
the reference time and an optional hint from the booking-pattern memory.

Matching is an ordered tuple of independent matchers.  The first matcher
that produces a valid time wins; there is no scoring across matches.  A
matcher whose hour or minute fails validation is skipped and the next one
is tried.

When no meridiem is spoken, hours 8-11 are taken as AM, 1-4 as PM and
everything else as AM.  Business calls run 8 AM to 4 PM, so a bare "nine"
almost always means the morning.  An unqualified "seven" is read as 7 AM.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Callable, Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Phoenix"
BUSINESS_START_HOUR = 8   # 8 AM
BUSINESS_END_HOUR = 16    # 4 PM, exclusive

# Index matches datetime.weekday()
WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
RELATIVE_DAYS = {"today": 0, "tomorrow": 1}

HOUR_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
}

ORDINAL_WORDS = {
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5,
    "sixth": 6, "seventh": 7, "eighth": 8, "ninth": 9, "tenth": 10,
    "eleventh": 11, "twelfth": 12, "thirteenth": 13, "fourteenth": 14, "fifteenth": 15,
}

MONTHS = [
    "january", "february", "march", "april", "may", "june", "july",
    "august", "september", "october", "november", "december",
]

# Memory suggestions use coarse words for the time of day
HINT_DEFAULT_TIMES = {
    "": (9, 0),
    "any": (9, 0),
    "morning": (9, 0),
    "afternoon": (14, 0),
}

_DAY = r"(?P<day>monday|tuesday|wednesday|thursday|friday|saturday|sunday|today|tomorrow)"
# "2nd" is a date, not an hour
_HOUR = r"(?P<hour>\d{1,2}(?!\d|(?:st|nd|rd|th)\b)|(?:" + "|".join(HOUR_WORDS) + r")(?![a-z]))"
_MINUTE = r"(?::(?P<minute>\d{2}))?"
_MERIDIEM = r"(?P<meridiem>a\.?\s?m\.?|p\.?\s?m\.?)(?![a-z])"
_OPT_MERIDIEM = r"(?:\s*" + _MERIDIEM + r")?"
_MONTH = r"(?P<month>" + "|".join(MONTHS) + r")"
_ORDINAL = r"(?P<ordinal>\d{1,2}(?:st|nd|rd|th)?|" + "|".join(ORDINAL_WORDS) + r")"


class CandidateSource(Enum):
    PATTERN = "pattern"
    MEMORY = "memory"


@dataclass(frozen=True)
class AppointmentCandidate:
    day_token: str
    hour: int
    minute: int
    resolved_datetime: datetime
    display_time: str
    is_business_hours: bool
    original_text: str
    confidence_source: CandidateSource = CandidateSource.PATTERN
    pattern_name: str = ""

    @property
    def from_memory(self) -> bool:
        return self.confidence_source is CandidateSource.MEMORY

    @property
    def day_name(self) -> str:
        return self.day_token.capitalize()

    @property
    def preferred_time_text(self) -> str:
        return f"{self.day_name} at {self.display_time}"


@dataclass(frozen=True)
class BookingHint:
    """A suggestion from the booking-pattern memory for an utterance."""

    confident: bool = False
    suggested_day: str = ""
    suggested_time: str = ""
    suggestions: list = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict | None) -> "BookingHint":
        if not data:
            return cls()
        return cls(
            confident=bool(data.get("confident")),
            suggested_day=(data.get("suggestedDay") or "").strip().lower(),
            suggested_time=(data.get("suggestedTime") or "").strip(),
            suggestions=list(data.get("suggestions") or []),
        )


@dataclass(frozen=True)
class TimeMatch:
    """Validated output of a single matcher, before date resolution."""

    pattern_name: str
    day_token: str
    hour: int
    minute: int
    meridiem: str
    text: str


Matcher = Callable[[str], Optional[TimeMatch]]


def _parse_hour(raw: str | None) -> int | None:
    if not raw:
        return None
    word = raw.lower()
    value = HOUR_WORDS.get(word)
    if value is None:
        if not word.isdigit():
            return None
        value = int(word)
    if not 1 <= value <= 12:
        return None
    return value


def _parse_minute(raw: str | None) -> int | None:
    if not raw:
        return 0
    value = int(raw)
    if value > 59:
        return None
    return value


def _parse_ordinal(raw: str) -> int | None:
    word = raw.lower()
    if word in ORDINAL_WORDS:
        return ORDINAL_WORDS[word]
    digits = re.match(r"\d+", word)
    if not digits:
        return None
    value = int(digits.group())
    if not 1 <= value <= 31:
        return None
    return value


def normalize_meridiem(raw: str | None) -> str:
    """'a.m.', 'A. M.', 'AM' -> 'am'; '' when absent."""
    if not raw:
        return ""
    return re.sub(r"[.\s]", "", raw.lower())


def _regex_matcher(name: str, pattern: str) -> Matcher:
    compiled = re.compile(pattern, re.IGNORECASE)

    def match(text: str) -> TimeMatch | None:
        m = compiled.search(text)
        if not m:
            return None
        groups = m.groupdict()
        hour = _parse_hour(groups.get("hour"))
        if hour is None:
            logger.debug("Matcher %s: invalid hour %r", name, groups.get("hour"))
            return None
        minute = _parse_minute(groups.get("minute"))
        if minute is None:
            logger.debug("Matcher %s: invalid minute %r", name, groups.get("minute"))
            return None
        if groups.get("ordinal") is not None and _parse_ordinal(groups["ordinal"]) is None:
            logger.debug("Matcher %s: invalid date %r", name, groups["ordinal"])
            return None
        return TimeMatch(
            pattern_name=name,
            day_token=groups["day"].lower(),
            hour=hour,
            minute=minute,
            meridiem=normalize_meridiem(groups.get("meridiem")),
            text=m.group(0),
        )

    match.__name__ = f"match_{name}"
    return match


match_day_at = _regex_matcher(
    "day_at",
    rf"\b{_DAY}\s+at\s+{_HOUR}{_MINUTE}{_OPT_MERIDIEM}",
)
match_suggestion = _regex_matcher(
    "suggestion",
    rf"(?:what\s+about|how\s+about|can\s+we\s+do|let'?s\s+do)\s+{_DAY}\s+at\s+{_HOUR}{_MINUTE}{_OPT_MERIDIEM}",
)
match_day_hour = _regex_matcher(
    "day_hour",
    rf"\b{_DAY}\s+{_HOUR}{_OPT_MERIDIEM}",
)
match_time_first = _regex_matcher(
    "time_first",
    rf"\b{_HOUR}{_MINUTE}\s*{_MERIDIEM}\s+(?:on\s+)?{_DAY}",
)
match_day_comma = _regex_matcher(
    "day_comma",
    rf"\b{_DAY},\s*{_HOUR}{_MINUTE}{_OPT_MERIDIEM}",
)
match_availability_question = _regex_matcher(
    "availability_question",
    rf"(?:is|does|would)\s+{_DAY}\s+at\s+{_HOUR}{_MINUTE}{_OPT_MERIDIEM}"
    r"(?:\s*(?:available|work|good|ok|okay))?",
)
match_calendar_date = _regex_matcher(
    "calendar_date",
    rf"\b{_DAY},?\s+{_MONTH}\s+(?:the\s+)?{_ORDINAL}\s+(?:at\s+)?{_HOUR}{_MINUTE}\s*{_MERIDIEM}",
)

# Priority order; earlier entries win
MATCHERS: tuple[Matcher, ...] = (
    match_day_at,
    match_suggestion,
    match_day_hour,
    match_time_first,
    match_day_comma,
    match_availability_question,
    match_calendar_date,
)


def first_match(text: str, matchers: tuple[Matcher, ...] = MATCHERS) -> TimeMatch | None:
    for matcher in matchers:
        result = matcher(text)
        if result is not None:
            return result
    return None


def resolve_meridiem(hour: int, meridiem: str) -> str:
    if meridiem:
        return "pm" if "p" in meridiem else "am"
    if 8 <= hour <= 11:
        return "am"
    if 1 <= hour <= 4:
        return "pm"
    return "am"


def to_24_hour(hour: int, meridiem: str) -> int:
    if meridiem == "pm" and hour != 12:
        return hour + 12
    if meridiem == "am" and hour == 12:
        return 0
    return hour


def display_time(hour24: int, minute: int) -> str:
    display_hour = hour24 - 12 if hour24 > 12 else (12 if hour24 == 0 else hour24)
    period = "PM" if hour24 >= 12 else "AM"
    return f"{display_hour}:{minute:02d} {period}"


def is_business_hours(hour24: int) -> bool:
    return BUSINESS_START_HOUR <= hour24 < BUSINESS_END_HOUR


def resolve_day(day_token: str, now: datetime) -> date | None:
    """Absolute date for a day token.

    A weekday name is always strictly in the future: the same weekday as
    today resolves to one week out.
    """
    token = day_token.lower()
    today = now.date()
    if token in RELATIVE_DAYS:
        return today + timedelta(days=RELATIVE_DAYS[token])
    if token not in WEEKDAYS:
        return None
    days_ahead = WEEKDAYS.index(token) - today.weekday()
    if days_ahead <= 0:
        days_ahead += 7
    return today + timedelta(days=days_ahead)


def _now_business(tz_name: str) -> datetime:
    """Current time in the business timezone. Extracted for test mocking."""
    return datetime.now(ZoneInfo(tz_name))


def _build_candidate(
    day_token: str,
    hour24: int,
    minute: int,
    now: datetime,
    original_text: str,
    source: CandidateSource,
    pattern_name: str,
) -> AppointmentCandidate | None:
    target_day = resolve_day(day_token, now)
    if target_day is None:
        return None
    resolved = datetime.combine(target_day, time(hour24, minute), tzinfo=now.tzinfo)
    return AppointmentCandidate(
        day_token=day_token.lower(),
        hour=hour24,
        minute=minute,
        resolved_datetime=resolved,
        display_time=display_time(hour24, minute),
        is_business_hours=is_business_hours(hour24),
        original_text=original_text,
        confidence_source=source,
        pattern_name=pattern_name,
    )


def _hint_time(suggested_time: str) -> tuple[int, int]:
    key = suggested_time.strip().lower()
    if key in HINT_DEFAULT_TIMES:
        return HINT_DEFAULT_TIMES[key]
    m = re.match(r"^(\d{1,2}):(\d{2})\s*(am|pm)", key)
    if not m:
        return HINT_DEFAULT_TIMES["morning"]
    hour = _parse_hour(m.group(1)) or 9
    minute = _parse_minute(m.group(2)) or 0
    return to_24_hour(hour, m.group(3)), minute


def candidate_from_hint(hint: BookingHint, utterance: str, now: datetime) -> AppointmentCandidate | None:
    hour24, minute = _hint_time(hint.suggested_time)
    candidate = _build_candidate(
        hint.suggested_day, hour24, minute, now, utterance, CandidateSource.MEMORY, "memory",
    )
    if candidate is None:
        logger.warning("Ignoring memory hint with unknown day %r", hint.suggested_day)
    return candidate


def parse(
    utterance: str,
    now: datetime | None = None,
    hint: BookingHint | None = None,
    tz_name: str = DEFAULT_TIMEZONE,
) -> AppointmentCandidate | None:
    """Extract an appointment candidate from an utterance, or None."""
    if now is None:
        now = _now_business(tz_name)

    if hint is not None and hint.confident:
        candidate = candidate_from_hint(hint, utterance, now)
        if candidate is not None:
            logger.info("Appointment from memory hint: %s", candidate.preferred_time_text)
            return candidate

    if not utterance or not utterance.strip():
        return None

    found = first_match(utterance)
    if found is None:
        return None

    meridiem = resolve_meridiem(found.hour, found.meridiem)
    hour24 = to_24_hour(found.hour, meridiem)
    candidate = _build_candidate(
        found.day_token, hour24, found.minute, now, found.text,
        CandidateSource.PATTERN, found.pattern_name,
    )
    if candidate is not None:
        logger.info(
            "Appointment pattern %s matched %r -> %s",
            found.pattern_name, found.text, candidate.preferred_time_text,
        )
    return candidate
