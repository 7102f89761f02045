from __future__ import annotations
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DIFFICULTY_LEVELS: List[str] = ["easy", "medium", "hard"]
LANGUAGES: List[str] = ["auto", "en", "hi"]
PROFICIENCY_BANDS: List[str] = ["Beginner", "Intermediate", "Advanced"]

ARTIFACT_MATERIAL = "material"
ARTIFACT_PROMPT = "prompt"
ARTIFACT_QUESTION_BANK = "question_bank"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_difficulty(value: object) -> Optional[str]:
    """Return the lower-cased difficulty tag, or None when it is not one of easy/medium/hard."""
    if not isinstance(value, str):
        return None
    tag = value.strip().lower()
    return tag if tag in DIFFICULTY_LEVELS else None


def classify_proficiency(score: int, total: int) -> str:
    """Coarse band: Advanced at 80% or more, Intermediate at 50% or more, else Beginner."""
    if total <= 0:
        return "Beginner"
    if score >= total * 0.8:
        return "Advanced"
    if score >= total * 0.5:
        return "Intermediate"
    return "Beginner"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class QuestionBankEntry(_CamelModel):
    q: str
    a: str = ""
    level: str = "easy"

    @field_validator("q", "a", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("level", mode="before")
    @classmethod
    def _coerce_level(cls, value: object) -> str:
        return normalize_difficulty(value) or "easy"


class Course(_CamelModel):
    id: str
    title: str
    language: str = "auto"
    material_key: str = Field(alias="materialKey")
    prompt_key: str = Field(alias="promptKey")
    question_bank_key: str = Field(alias="questionBankKey")
    prompt: bool = False
    question_bank: bool = Field(default=False, alias="questionBank")
    created_at: str = Field(default_factory=utcnow_iso, alias="createdAt")

    @property
    def prompt_language(self) -> str:
        # "auto" courses are taught in English
        return "hi" if self.language == "hi" else "en"

    @property
    def language_name(self) -> str:
        return "Hindi" if self.language == "hi" else "English"


class InteractionRecord(_CamelModel):
    q: str = ""
    a: str = ""
    correct: Optional[bool] = None
    feedback: Optional[str] = None


class LearnerSession(_CamelModel):
    id: str
    course_id: str = Field(alias="courseId")
    name: str = "Learner"
    created_at: str = Field(default_factory=utcnow_iso, alias="createdAt")
    level: str = "easy"
    # Coarse band set by transcript reconciliation; level keeps the difficulty tag
    proficiency: Optional[str] = None
    history: List[InteractionRecord] = Field(default_factory=list)
    score: int = 0
    total: int = 0

    def record_interaction(self, record: InteractionRecord) -> None:
        self.history.append(record)
        self.total = len(self.history)
        if record.correct:
            self.score += 1
        if self.proficiency is not None:
            # a reconciled band follows the running score
            self.proficiency = classify_proficiency(self.score, self.total)

    def replace_history(self, records: List[InteractionRecord]) -> None:
        self.history = list(records)
        self.total = len(self.history)
        self.score = sum(1 for r in self.history if r.correct)

    @property
    def reported_level(self) -> str:
        return self.proficiency or self.level
