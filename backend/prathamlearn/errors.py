"""Domain errors surfaced to API callers as ``{"error": message}``."""

from __future__ import annotations


class TutorError(Exception):
    status_code: int = 500
    default_message: str = "internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(TutorError):
    status_code = 404
    default_message = "not found"


class CourseNotFound(NotFound):
    default_message = "course not found"


class SessionNotFound(NotFound):
    default_message = "session not found"


class PromptNotFound(NotFound):
    default_message = "prompt not found"


class PreconditionFailed(TutorError):
    status_code = 400
    default_message = "precondition failed"


class PromptMissing(PreconditionFailed):
    default_message = "system prompt missing"


class MaterialMissing(PreconditionFailed):
    default_message = "no material uploaded"


class QuestionBankMissing(PreconditionFailed):
    default_message = "question bank not available; try generating prompt again"


class UnsupportedInput(TutorError):
    status_code = 400
    default_message = "unsupported input"


class UpstreamGenerationFailed(TutorError):
    status_code = 500
    default_message = "generation failed"


class AnalysisFailed(UpstreamGenerationFailed):
    default_message = "failed to analyze transcript"
