"""Six-question discovery bookkeeping, one record per call.

The tracker is shared by every connection in the process and keyed by
call id.  The conversation controller only reads progress snapshots and
calls the mark/capture methods; it never edits a DiscoverySession directly.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

DISCOVERY_QUESTIONS = [
    ("how_did_you_hear", "How did you hear about us?"),
    ("business_type", "What industry or business are you in?"),
    ("main_product", "What's your main product or service?"),
    ("running_ads", "Are you currently running any ads?"),
    ("crm_system", "Are you using any CRM system?"),
    ("pain_points", "What are your biggest pain points or challenges?"),
]

TOTAL_QUESTIONS = len(DISCOVERY_QUESTIONS)


@dataclass
class DiscoveryQuestion:
    key: str
    question: str
    asked: bool = False
    answered: bool = False
    answer: str = ""
    asked_as: str = ""


@dataclass(frozen=True)
class DiscoveryProgress:
    questions_completed: int = 0
    current_question_index: int = -1
    waiting_for_answer: bool = False
    scheduling_started: bool = False
    greeting_completed: bool = False

    @property
    def discovery_complete(self) -> bool:
        return self.questions_completed >= TOTAL_QUESTIONS

    @property
    def conversation_phase(self) -> str:
        if self.scheduling_started:
            return "scheduling"
        if self.greeting_completed:
            return "discovery"
        return "greeting"


@dataclass
class DiscoverySession:
    call_id: Optional[str]
    questions: list = field(default_factory=lambda: [
        DiscoveryQuestion(key=k, question=q) for k, q in DISCOVERY_QUESTIONS
    ])
    contact: dict = field(default_factory=dict)
    current_question_index: int = -1
    waiting_for_answer: bool = False
    scheduling_started: bool = False
    greeting_completed: bool = False
    created_at: float = field(default_factory=time.time)

    @property
    def questions_completed(self) -> int:
        return sum(1 for q in self.questions if q.answered)


class DiscoveryTracker:
    def __init__(self):
        self._sessions: dict = {}

    def get_session(self, call_id: Optional[str], contact: dict | None = None) -> DiscoverySession:
        session = self._sessions.get(call_id)
        if session is None:
            session = DiscoverySession(call_id=call_id, contact=dict(contact or {}))
            self._sessions[call_id] = session
            logger.info("Discovery session created for %s", call_id)
        elif contact:
            session.contact.update(contact)
        return session

    def get_progress(self, call_id: Optional[str]) -> DiscoveryProgress | None:
        session = self._sessions.get(call_id)
        if session is None:
            return None
        return DiscoveryProgress(
            questions_completed=session.questions_completed,
            current_question_index=session.current_question_index,
            waiting_for_answer=session.waiting_for_answer,
            scheduling_started=session.scheduling_started,
            greeting_completed=session.greeting_completed,
        )

    def mark_greeting_completed(self, call_id: Optional[str]) -> None:
        self.get_session(call_id).greeting_completed = True

    def mark_scheduling_started(self, call_id: Optional[str]) -> None:
        session = self.get_session(call_id)
        if not session.scheduling_started:
            logger.info("Scheduling started for %s", call_id)
        session.scheduling_started = True

    def mark_question_asked(self, call_id: Optional[str], index: int, asked_as: str = "") -> bool:
        session = self.get_session(call_id)
        if not 0 <= index < TOTAL_QUESTIONS:
            return False
        question = session.questions[index]
        if question.answered:
            logger.debug("Question %d already answered for %s", index, call_id)
            return False
        question.asked = True
        question.asked_as = asked_as or question.question
        session.current_question_index = index
        session.waiting_for_answer = True
        return True

    def capture_answer(self, call_id: Optional[str], index: int, answer: str) -> bool:
        session = self.get_session(call_id)
        if not 0 <= index < TOTAL_QUESTIONS or not answer.strip():
            return False
        question = session.questions[index]
        if question.answered:
            return False
        question.asked = True
        question.answered = True
        question.answer = answer.strip()
        if session.current_question_index == index:
            session.waiting_for_answer = False
        logger.info(
            "Captured Q%d for %s (%d/%d)",
            index + 1, call_id, session.questions_completed, TOTAL_QUESTIONS,
        )
        return True

    def get_next_unanswered_question(self, call_id: Optional[str]) -> DiscoveryQuestion | None:
        for question in self.get_session(call_id).questions:
            if not question.answered:
                return question
        return None

    def question_index(self, call_id: Optional[str], question: DiscoveryQuestion) -> int:
        for i, q in enumerate(self.get_session(call_id).questions):
            if q.key == question.key:
                return i
        return -1

    def current_question(self, call_id: Optional[str]) -> DiscoveryQuestion | None:
        session = self.get_session(call_id)
        if 0 <= session.current_question_index < TOTAL_QUESTIONS:
            return session.questions[session.current_question_index]
        return None

    def get_final_discovery_data(self, call_id: Optional[str]) -> dict:
        session = self.get_session(call_id)
        data = {q.key: q.answer for q in session.questions if q.answered}
        data["questions_completed"] = session.questions_completed
        return data

    def get_session_info(self, call_id: Optional[str]) -> dict | None:
        session = self._sessions.get(call_id)
        if session is None:
            return None
        return {
            "call_id": call_id,
            "questions_completed": session.questions_completed,
            "scheduling_started": session.scheduling_started,
            "greeting_completed": session.greeting_completed,
        }

    def rename_session(self, old_id: str, new_id: str) -> None:
        """Re-key a record once the real call id is known."""
        session = self._sessions.pop(old_id, None)
        if session is None or new_id in self._sessions:
            self.get_session(new_id)
            return
        session.call_id = new_id
        self._sessions[new_id] = session
        logger.info("Discovery session %s renamed to %s", old_id, new_id)

    def end_session(self, call_id: Optional[str]) -> None:
        self._sessions.pop(call_id, None)
