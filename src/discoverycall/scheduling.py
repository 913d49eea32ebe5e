import logging
from datetime import date, datetime, timedelta

from discoverycall.prompts import AVAILABILITY_FALLBACK, NO_AVAILABILITY

logger = logging.getLogger(__name__)

LOOKAHEAD_DAYS = 7
MAX_DAYS_OFFERED = 3
MAX_SLOTS_PER_DAY = 3


def day_label(day: date) -> str:
    """'Monday, June 16'"""
    return f"{day:%A, %B} {day.day}"


def format_availability(available_days: list[tuple[str, list[dict]]]) -> str:
    if not available_days:
        return NO_AVAILABILITY

    def times(slots: list[dict]) -> str:
        return ", ".join(s.get("displayTime", "") for s in slots)

    if len(available_days) == 1:
        label, slots = available_days[0]
        return f"I have availability on {label} at {times(slots)}. Which time works best for you?"

    offers = [f"{label} at {times(slots)}" for label, slots in available_days]
    joined = ", ".join(offers[:-1]) + f", or {offers[-1]}"
    return f"I have a few options available. {joined}. What works better for you?"


async def build_availability_response(calendar, now: datetime) -> str:
    """Offer up to three weekdays in the coming week, three slots each."""
    available_days = []
    try:
        for offset in range(1, LOOKAHEAD_DAYS + 1):
            day = now.date() + timedelta(days=offset)
            if day.weekday() >= 5:
                continue
            slots = await calendar.list_slots(day)
            if slots:
                available_days.append((day_label(day), slots[:MAX_SLOTS_PER_DAY]))
            if len(available_days) >= MAX_DAYS_OFFERED:
                break
    except Exception as e:
        logger.error("Error generating availability: %s", e)
        return AVAILABILITY_FALLBACK
    return format_availability(available_days)
