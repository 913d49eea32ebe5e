from dataclasses import dataclass, field
from typing import Optional

from discoverycall.phases import BookingStatus

PLACEHOLDER_EMAIL = "prospect@example.com"
PLACEHOLDER_NAME = "Customer"


@dataclass
class ContactInfo:
    customer_email: str = ""
    customer_name: str = PLACEHOLDER_NAME
    customer_phone: str = ""
    source: str = "awaiting_websocket_data"

    @property
    def has_email(self) -> bool:
        return bool(self.customer_email) and self.customer_email != PLACEHOLDER_EMAIL

    @property
    def display_name(self) -> str:
        """Name for speech; empty when only the placeholder is known."""
        if not self.customer_name or self.customer_name == PLACEHOLDER_NAME:
            return ""
        return self.customer_name


@dataclass
class ConversationState:
    """Owned by the phase controller."""

    has_greeted: bool = False
    user_has_spoken: bool = False
    started_at: float = 0.0
    turn_count: int = 0

    # From memory at connect time
    customer_profile: Optional[dict] = None
    memory_context: str = ""

    history: list = field(default_factory=list)

    @property
    def is_returning_customer(self) -> bool:
        if not self.customer_profile:
            return False
        return (self.customer_profile.get("totalInteractions") or 0) > 0

    def duration_minutes(self, now: float) -> int:
        """Whole minutes since the caller first spoke (wall clock)."""
        if not self.started_at:
            return 0
        return round((now - self.started_at) / 60)


@dataclass
class BookingState:
    """Owned by the booking coordinator (the controller only sets booking_in_progress)."""

    appointment_booked: bool = False
    booking_in_progress: bool = False
    last_booking_attempt_at: Optional[float] = None
    booking_cooldown_ms: int = 10000
    status: BookingStatus = BookingStatus.IDLE
    candidate: object = None
    outcome: str = ""

    def latch(self) -> None:
        self.appointment_booked = True
        self.status = BookingStatus.BOOKED

    @property
    def accepts_candidates(self) -> bool:
        return not self.appointment_booked and not self.booking_in_progress


@dataclass
class GateState:
    """Owned by the response gate."""

    last_response_at: Optional[float] = None
    recent_response_timestamps: list = field(default_factory=list)
    min_response_spacing_ms: int = 2000
    max_responses_per_window: int = 10
    last_booking_response_text: Optional[str] = None

    sent_count: int = 0
    dropped_count: int = 0


@dataclass
class CallSession:
    call_id: Optional[str] = None
    contact: ContactInfo = field(default_factory=ContactInfo)
    conversation: ConversationState = field(default_factory=ConversationState)
    booking: BookingState = field(default_factory=BookingState)
    gate: GateState = field(default_factory=GateState)
