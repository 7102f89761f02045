"""
Session Engine
==============

Adaptive question/answer loop for one learner session.

A session is a plain record in the content store. Every call rehydrates it,
applies one transition and writes it back while holding the per-session lock:

    start_session  → level=easy, history=[], score=0, total=0, opening question
    submit_answer  → history += (question, answer, correct, feedback)
                     total = len(history); score += correct
                     level = difficulty_next when it is a valid tag

Evaluation is delegated to the language model. When its output cannot be
parsed (or the call fails outright) the engine applies a fixed safe default so
the session always advances; the failure is logged and never reaches the
caller.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import PromptMissing, UpstreamGenerationFailed
from .gemini_client import GeminiClient
from .llm_json import Success
from .schemas import InteractionRecord, LearnerSession, normalize_difficulty
from .store import ContentStore

logger = logging.getLogger(__name__)

OPENING_EXCERPT_CHARS = 4000
EVALUATION_EXCERPT_CHARS = 6000

DEFAULT_OPENING_QUESTION = "Let's begin. What is the main idea of this chapter?"
FALLBACK_FEEDBACK = "Thanks! Let's try another one."
FALLBACK_NEXT_QUESTION = "Can you explain the main idea?"
DEFAULT_FEEDBACK = "Good effort!"
DEFAULT_NEXT_QUESTION = "Here's another one: explain the key idea."


@dataclass
class Evaluation:
    """Normalized evaluator verdict for one answer."""

    correct: bool
    feedback: str
    difficulty_next: Optional[str]
    next_question: str
    degraded: bool = False


@dataclass
class AnswerOutcome:
    correct: bool
    feedback: str
    next_question: str
    score: int
    total: int
    level: str

    def to_response(self) -> Dict[str, Any]:
        return {
            "correct": self.correct,
            "feedback": self.feedback,
            "nextQuestion": self.next_question,
            "score": self.score,
            "total": self.total,
            "level": self.level,
        }


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "correct", "1")
    if isinstance(value, (int, float)):
        return value != 0
    raise ValueError("correctness must be a boolean")


def validate_evaluation(data: Any) -> Evaluation:
    """Shape decoded evaluator JSON into an Evaluation.

    Missing text fields fall back to friendly defaults; a payload that is not an
    object, or whose correctness cannot be read as a boolean, is malformed.
    """
    if not isinstance(data, dict):
        raise ValueError("evaluation must be a JSON object")
    correct = _coerce_bool(data.get("correctness", data.get("correct", False)))
    feedback = str(data.get("feedback") or "").strip() or DEFAULT_FEEDBACK
    next_question = str(data.get("next_question") or "").strip() or DEFAULT_NEXT_QUESTION
    return Evaluation(
        correct=correct,
        feedback=feedback,
        difficulty_next=normalize_difficulty(data.get("difficulty_next")),
        next_question=next_question,
    )


def fallback_evaluation() -> Evaluation:
    return Evaluation(
        correct=False,
        feedback=FALLBACK_FEEDBACK,
        difficulty_next=None,
        next_question=FALLBACK_NEXT_QUESTION,
        degraded=True,
    )


def format_history(history: List[InteractionRecord]) -> str:
    return "\n".join(f"Q: {h.q}\nA: {h.a}" for h in history)


def build_opening_prompt(system_prompt: str, material: str) -> str:
    return (
        f"System Prompt:\n{system_prompt}\n\n"
        "You are starting a new session. Create the first question from the chapter content below. "
        "Start simple. Ask only one short question.\n\n"
        f"Chapter Content:\n{material[:OPENING_EXCERPT_CHARS]}"
    )


def build_evaluation_prompt(
    system_prompt: str,
    material: str,
    history: List[InteractionRecord],
    question: str,
    answer: str,
) -> str:
    return (
        f"System Prompt (Tutor Rules):\n{system_prompt}\n\n"
        "Evaluate the learner's answer based on the chapter content.\n"
        "Return JSON with keys: correctness (true/false), feedback (<= 2 sentences, same language as learner), "
        "difficulty_next (easy|medium|hard), next_question (one short question).\n\n"
        f"Chapter Content:\n{material[:EVALUATION_EXCERPT_CHARS]}\n\n"
        f"Conversation History:\n{format_history(history)}\n\n"
        f"Latest Question:\n{question}\n\n"
        f"Latest Answer:\n{answer}"
    )


def apply_evaluation(session: LearnerSession, question: str, answer: str, evaluation: Evaluation) -> None:
    """Record one answered question on the session.

    Keeps ``total == len(history)`` and ``score <= total``; the level only moves
    when the evaluator named a valid difficulty tag.
    """
    session.record_interaction(
        InteractionRecord(q=question, a=answer, correct=evaluation.correct, feedback=evaluation.feedback)
    )
    if evaluation.difficulty_next is not None:
        session.level = evaluation.difficulty_next


class SessionEngine:
    def __init__(self, store: ContentStore, llm: GeminiClient) -> None:
        self.store = store
        self.llm = llm

    async def start_session(self, course_id: Optional[str], learner_name: Optional[str]) -> tuple[LearnerSession, str]:
        """Create a session for a course that already has a generated system prompt.

        Raises:
            CourseNotFound: the course does not exist.
            PromptMissing: the course prompt has not been generated yet.
        """
        course = self.store.get_course(course_id)
        system_prompt = self.store.system_prompt(course)
        if not system_prompt:
            raise PromptMissing()
        material = self.store.material_text(course)

        session = LearnerSession(id=str(uuid.uuid4()), course_id=course.id, name=(learner_name or "").strip() or "Learner")
        self.store.save_session(session)
        logger.info("[SESSION] Started %s for course %s", session.id, course.id)

        try:
            question = (await self.llm.generate(build_opening_prompt(system_prompt, material))).strip()
        except UpstreamGenerationFailed as err:
            logger.warning("[SESSION] Opening question failed for %s: %s", session.id, err.message)
            question = ""
        return session, question or DEFAULT_OPENING_QUESTION

    async def evaluate(self, system_prompt: str, material: str, session: LearnerSession, question: str, answer: str) -> Evaluation:
        result = await self.llm.generate_json(
            build_evaluation_prompt(system_prompt, material, session.history, question, answer),
            validate_evaluation,
        )
        if isinstance(result, Success):
            return result.payload
        logger.warning("[SESSION] Evaluation malformed for %s (%s); using fallback", session.id, result.reason)
        return fallback_evaluation()

    async def submit_answer(self, session_id: Optional[str], question: Optional[str], answer: Optional[str]) -> AnswerOutcome:
        """Evaluate one answer and advance the session.

        Raises:
            SessionNotFound: the session does not exist.
            CourseNotFound: the owning course no longer exists.
        """
        question = question or ""
        answer = answer or ""
        async with self.store.lock("session", session_id or ""):
            session = self.store.get_session(session_id)
            course = self.store.get_course(session.course_id)
            material = self.store.material_text(course)
            system_prompt = self.store.system_prompt(course) or ""

            evaluation = await self.evaluate(system_prompt, material, session, question, answer)
            apply_evaluation(session, question, answer, evaluation)
            self.store.save_session(session)

        logger.info(
            "[SESSION] %s answered, correct=%s score=%d/%d level=%s",
            session.id, evaluation.correct, session.score, session.total, session.level,
        )
        return AnswerOutcome(
            correct=evaluation.correct,
            feedback=evaluation.feedback,
            next_question=evaluation.next_question,
            score=session.score,
            total=session.total,
            level=session.level,
        )
