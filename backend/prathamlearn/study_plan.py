"""Study plan handoff: a read-only summary of performance sent to the model for remediation text."""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel

from .errors import UpstreamGenerationFailed
from .gemini_client import GeminiClient
from .schemas import Course, LearnerSession

logger = logging.getLogger(__name__)

PLAN_EXCERPT_CHARS = 7000


class QAResult(BaseModel):
    question: str = ""
    answer: str = ""
    correct: bool = False
    feedback: Optional[str] = None


class PerformanceSummary(BaseModel):
    score: int
    total: int
    level: str
    language: str
    qa: List[QAResult] = []

    @property
    def percentage(self) -> int:
        return round(self.score / self.total * 100) if self.total else 0

    @property
    def language_name(self) -> str:
        return "Hindi" if self.language == "hi" else "English"

    @classmethod
    def from_session(cls, session: LearnerSession, course: Course) -> "PerformanceSummary":
        return cls(
            score=session.score,
            total=session.total,
            level=session.reported_level,
            language=course.prompt_language,
            qa=[QAResult(question=h.q, answer=h.a, correct=bool(h.correct), feedback=h.feedback) for h in session.history],
        )

    def qa_block(self) -> str:
        blocks = []
        for item in self.qa:
            lines = [f"Q: {item.question}", f"A: {item.answer}", f"Correct: {'Yes' if item.correct else 'No'}"]
            if item.feedback:
                lines.append(f"Feedback: {item.feedback}")
            blocks.append("\n".join(lines))
        return "\n\n".join(blocks)


def build_plan_prompt(summary: PerformanceSummary, material: str, *, handwritten: bool = False) -> str:
    source = "handwritten assessment" if handwritten else "assessment"
    extra_rule = "\n7. Provides specific guidance for improving handwriting if needed" if handwritten else ""
    return f"""Based on the learner's {source} results, create a personalized study plan.

Learner Performance:
- Score: {summary.score}/{summary.total} ({summary.percentage}%)
- Level: {summary.level}
- Language: {summary.language_name}

Assessment Q&A:
{summary.qa_block()}

Original Chapter Content:
{material[:PLAN_EXCERPT_CHARS]}

Create a detailed, adaptive 1-week study plan that:
1. Focuses on concepts the learner struggled with (incorrect answers)
2. Reinforces areas they understood well (correct answers)
3. Gradually builds from their current level
4. Uses simple, child-friendly language
5. Includes daily tasks and practice questions
6. Only uses content from this chapter{extra_rule}

Format as a clear day-by-day plan in {summary.language_name}."""


def build_simple_plan_prompt(summary: PerformanceSummary) -> str:
    missed = [item.question for item in summary.qa if not item.correct]
    missed_block = "\n".join(f"- {q}" for q in missed) or "- (none)"
    return (
        f"Write a short 1-week day-by-day study plan in {summary.language_name} for a child who scored "
        f"{summary.score}/{summary.total} ({summary.percentage}%, level {summary.level}). "
        f"Focus on these missed questions:\n{missed_block}"
    )


async def generate_study_plan(
    llm: GeminiClient,
    summary: PerformanceSummary,
    material: str,
    *,
    handwritten: bool = False,
) -> str:
    """Generate plan text, retrying once with a simplified request before giving up."""
    requests = (build_plan_prompt(summary, material, handwritten=handwritten), build_simple_plan_prompt(summary))
    for attempt, request in enumerate(requests, start=1):
        try:
            text = (await llm.generate(request)).strip()
        except UpstreamGenerationFailed as err:
            logger.warning("[PLAN] Attempt %d failed: %s", attempt, err.message)
            continue
        if text:
            return text
        logger.warning("[PLAN] Attempt %d returned empty text", attempt)
    raise UpstreamGenerationFailed("failed to create study plan")
