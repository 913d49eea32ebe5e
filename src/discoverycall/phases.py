from enum import Enum

# Branches that speak a fixed script rather than asking the LLM
SCRIPTED_PHASES = {"greeting", "discovery", "appointment_booking", "scheduling_fallback"}


class Phase(Enum):
    GREETING = "greeting"
    DISCOVERY = "discovery"
    APPOINTMENT_BOOKING = "appointment_booking"
    SCHEDULING_FALLBACK = "scheduling_fallback"
    GENERIC_RESPONSE = "generic_response"

    @property
    def is_scripted(self) -> bool:
        return self.value in SCRIPTED_PHASES


class BookingStatus(Enum):
    IDLE = "idle"
    CONFIRMING = "confirming"
    BOOKED = "booked"
