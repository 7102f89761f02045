"""
Assessment endpoints
====================

- POST /api/assessment/start: quick five-question quiz generated from material
- POST /api/assessment/questions: bank subset sized by chapter length
- POST /api/assessment/handwritten: grade a photographed answer sheet
- POST /api/assessment/paper: printable paper (HTML plus PDF when possible)
- POST /api/analyze-transcript: reconcile a voice transcript into the session
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, ConfigDict, Field

from ..errors import AnalysisFailed, UnsupportedInput, UpstreamGenerationFailed
from ..gemini_client import GeminiClient, get_llm
from ..generation import validate_question_bank
from ..ingestion import question_count_for
from ..llm_json import Success, parse_model_json
from ..paper import build_paper
from ..reconciliation import reconcile_transcript
from ..schemas import QuestionBankEntry, classify_proficiency
from ..settings import settings
from ..store import ContentStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["assessment"])

QUICK_QUIZ_EXCERPT_CHARS = 7000


class CourseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_id: Optional[str] = Field(default=None, alias="courseId")
    learner_name: Optional[str] = Field(default=None, alias="learnerName")


class TranscriptRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    transcript: Optional[str] = None


# ============================================================================
# HANDWRITTEN GRADING HELPERS
# ============================================================================

def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false", "partial", "partially correct"):
        return value.strip().lower() != "false"
    raise ValueError("correct must be a boolean")


def validate_handwritten(data: Any) -> List[Dict[str, Any]]:
    """Validate ``{"qaPairs": [...]}`` from the vision model; the reported score is ignored."""
    if not isinstance(data, dict) or not isinstance(data.get("qaPairs"), list):
        raise ValueError("expected an object with a qaPairs list")
    pairs: List[Dict[str, Any]] = []
    for item in data["qaPairs"]:
        if not isinstance(item, dict):
            raise ValueError("qaPairs entries must be objects")
        question = str(item.get("question") or "").strip()
        if not question:
            raise ValueError("qaPairs entry without question")
        pairs.append(
            {
                "question": question,
                "answer": str(item.get("answer") or "").strip(),
                "correct": _as_bool(item.get("correct")),
                "feedback": str(item.get("feedback") or "").strip(),
            }
        )
    return pairs


def handwritten_prompt(questions: List[QuestionBankEntry]) -> str:
    expected = json.dumps([q.model_dump() for q in questions], ensure_ascii=False, indent=2)
    return f"""Analyze this handwritten assessment image and extract the student's answers.

QUESTION BANK (expected questions):
{expected}

INSTRUCTIONS:
1. Identify all questions visible in the image
2. Extract the student's handwritten answers for each question
3. Compare answers against the correct answers from the question bank
4. Decide whether each answer is correct (partially correct counts as correct) or incorrect
5. Provide feedback for incorrect answers

Return your analysis in this exact JSON format:
{{
  "qaPairs": [
    {{
      "question": "question text",
      "answer": "student's answer",
      "correct": true,
      "feedback": "helpful feedback if incorrect"
    }}
  ]
}}

Be lenient with children's answers - accept partial correctness and common misspellings."""


def _parse_submitted_questions(raw: Optional[str]) -> Optional[List[QuestionBankEntry]]:
    if not raw:
        return None
    try:
        return validate_question_bank(json.loads(raw))
    except (ValueError, TypeError) as e:
        logger.warning("[HANDWRITTEN] Failed to parse questions: %s", e)
        return None


# ============================================================================
# API ENDPOINTS
# ============================================================================

@router.post("/assessment/start")
async def start_assessment(
    req: CourseRequest,
    store: ContentStore = Depends(get_store),
    llm: GeminiClient = Depends(get_llm),
):
    course = store.get_course(req.course_id)
    material = store.material_text(course)
    prompt = (
        "Create a short assessment (5 questions) based on the chapter content. Mix easy/medium/hard. "
        "Reply as JSON { \"questions\": [ { \"q\": string, \"a\": string } ] }. Use bilingual-friendly simple language.\n\n"
        f"Content:\n{material[:QUICK_QUIZ_EXCERPT_CHARS]}"
    )
    result = await llm.generate_json(prompt, validate_question_bank)
    if not isinstance(result, Success):
        logger.warning("Quick assessment for course %s was unparseable: %s", course.id, result.reason)
        return {"questions": []}
    return {"questions": [{"q": e.q, "a": e.a} for e in result.payload]}


@router.post("/assessment/questions")
def assessment_questions(req: CourseRequest, store: ContentStore = Depends(get_store)):
    if not req.course_id:
        raise HTTPException(status_code=400, detail="Course ID required")
    course = store.get_course(req.course_id)
    count = question_count_for(store.material_text(course))
    selected = store.question_bank(course)[:count]
    logger.info("[QUESTIONS] Selected %d questions for course %s", len(selected), course.id)
    return {"questions": [e.model_dump() for e in selected]}


@router.post("/assessment/handwritten")
async def handwritten_assessment(
    image: Optional[UploadFile] = File(default=None),
    course_id: Optional[str] = Form(default=None, alias="courseId"),
    learner_name: Optional[str] = Form(default=None, alias="learnerName"),
    questions: Optional[str] = Form(default=None),
    store: ContentStore = Depends(get_store),
    llm: GeminiClient = Depends(get_llm),
):
    if image is None:
        raise HTTPException(status_code=400, detail="No image uploaded")
    if not course_id:
        raise HTTPException(status_code=400, detail="Course ID required")
    course = store.get_course(course_id)
    mime_type = (image.content_type or "").lower()
    if not mime_type.startswith("image/"):
        raise UnsupportedInput(f"unsupported mime type: {image.content_type}")

    expected = _parse_submitted_questions(questions)
    if expected is None:
        expected = store.question_bank(course)
    content = await image.read()
    parts = [
        {"text": handwritten_prompt(expected)},
        {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(content).decode("ascii")}},
    ]
    try:
        raw = await llm.generate_multimodal(parts, model=settings.gemini_model_vision, json_mode=True)
    except UpstreamGenerationFailed as err:
        logger.error("[HANDWRITTEN] Vision call failed for course %s: %s", course.id, err.message)
        raise AnalysisFailed("failed to analyze handwritten assessment") from err

    result = parse_model_json(raw, validate_handwritten)
    if not isinstance(result, Success):
        logger.error("[HANDWRITTEN] Unparseable analysis: %s", result.reason)
        raise AnalysisFailed("failed to analyze handwritten assessment")

    qa_pairs = result.payload
    score = sum(1 for p in qa_pairs if p["correct"])
    total = len(qa_pairs)
    logger.info("[HANDWRITTEN] Analysis complete for course %s (%s), score: %d/%d", course.id, learner_name or "Learner", score, total)
    return {"score": score, "total": total, "level": classify_proficiency(score, total), "qaPairs": qa_pairs}


@router.post("/assessment/paper")
async def assessment_paper(
    req: CourseRequest,
    store: ContentStore = Depends(get_store),
    llm: GeminiClient = Depends(get_llm),
):
    return await build_paper(store, llm, req.course_id)


@router.post("/analyze-transcript")
async def analyze_transcript(
    req: TranscriptRequest,
    store: ContentStore = Depends(get_store),
    llm: GeminiClient = Depends(get_llm),
):
    if not req.session_id or not req.transcript:
        raise HTTPException(status_code=400, detail="sessionId and transcript required")
    outcome = await reconcile_transcript(store, llm, req.session_id, req.transcript)
    return outcome.to_response()
