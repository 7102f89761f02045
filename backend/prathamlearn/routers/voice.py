"""
Voice Module
============

Realtime voice assessment bootstrap plus server-side speech fallbacks.

The browser talks to the realtime model directly over WebRTC. This module only
mints the short-lived session token, carrying assessment-agent instructions
built from the course question bank. Transcription and text-to-speech for
clients without realtime support go through Google Cloud Speech.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from ..ingestion import question_count_for
from ..realtime_client import RealtimeClient, get_realtime_client
from ..schemas import QuestionBankEntry
from ..settings import settings
from ..speech import synthesize_speech, transcribe_audio
from ..store import ContentStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/voice", tags=["voice"])

BANK_SNIPPET_CHARS = 5000


class EphemeralRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_id: Optional[str] = Field(default=None, alias="courseId")
    name: Optional[str] = None
    lang: Optional[str] = None


class TTSRequest(BaseModel):
    text: Optional[str] = None
    voice: Optional[str] = None
    lang: Optional[str] = None


def reassess_count(baseline: int) -> int:
    return max(3, round(baseline / 2))


def resolve_language(preferred: Optional[str], course_language: str) -> str:
    if preferred in ("hi", "en"):
        return preferred
    if course_language in ("hi", "en"):
        return course_language
    return "en"


def bank_snippet(bank: List[QuestionBankEntry]) -> str:
    text = json.dumps({"questions": [e.model_dump() for e in bank]}, ensure_ascii=False)
    if len(text) > BANK_SNIPPET_CHARS:
        return text[:BANK_SNIPPET_CHARS] + "...TRUNCATED"
    return text


def build_realtime_instructions(snippet: str, lang: str, baseline: int) -> str:
    language_directive = "Use only Hindi." if lang == "hi" else "Use only English."
    return f"""You are an ASSESSMENT AGENT. Your ONLY job is to ask questions from the provided question bank.

MANDATORY QUESTION BANK (use ONLY these questions - NO exceptions):
{snippet}

ABSOLUTE RULES - FOLLOW EXACTLY:
- {language_directive}
- Ask ONLY the questions from the question bank above - NO other questions
- Start with the FIRST question from the bank immediately
- Ask exactly {baseline} questions from the bank in order
- You must wait for the user to finish speaking completely and answer the question before you respond
- After each answer, ONLY say "Okay" or "Alright" then WAIT 8 seconds before the next question
- NO explanations, NO correct answers, NO hints, NO teaching
- Count internally: 1 of {baseline}, 2 of {baseline}, etc.
- After the last question ({baseline}) is answered, wait 8 seconds, say "Assessment complete" and emit:
  <<PLAN_START>>
  [Generate personalized study plan based on which questions they got right/wrong]
  <<PLAN_END>>

TURN-TAKING PROTOCOL:
1. Ask a question from the bank
2. Wait for the user to speak and finish completely
3. Say "Okay" or "Alright"
4. Wait 8 seconds
5. Ask the next question from the bank
6. Repeat until all {baseline} questions are done and answered

Do not interrupt the user while they are speaking."""


@router.post("/ephemeral")
async def mint_ephemeral(
    course_id: Optional[str] = Query(default=None, alias="courseId"),
    name: Optional[str] = Query(default=None),
    lang: Optional[str] = Query(default=None),
    req: Optional[EphemeralRequest] = None,
    store: ContentStore = Depends(get_store),
    realtime: RealtimeClient = Depends(get_realtime_client),
):
    body = req or EphemeralRequest()
    course = store.get_course(course_id or body.course_id)
    learner_name = name or body.name or "Learner"
    language = resolve_language(lang or body.lang, course.language)
    baseline = question_count_for(store.material_text(course))
    logger.info(
        "[VOICE] session mint for course %s, learner=%s, lang=%s, baseline=%d, reassess=%d",
        course.id, learner_name, language, baseline, reassess_count(baseline),
    )

    payload: Dict[str, Any] = {
        "model": settings.openai_realtime_model,
        "voice": settings.openai_realtime_voice,
        "modalities": ["audio", "text"],
        "input_audio_transcription": {"model": "whisper-1"},
        "instructions": build_realtime_instructions(bank_snippet(store.question_bank(course)), language, baseline),
    }
    status, data = await realtime.create_session(payload)
    if status >= 400:
        logger.warning("[VOICE] Realtime session rejected with HTTP %s", status)
        return JSONResponse(status_code=status, content=data)
    return {**data, "baselineQuestions": baseline}


@router.post("/transcribe")
async def transcribe(audio: Optional[UploadFile] = File(default=None), lang: Optional[str] = Form(default=None)):
    if audio is None:
        raise HTTPException(status_code=400, detail="audio required")
    content = await audio.read()
    text = await run_in_threadpool(transcribe_audio, content, audio.content_type, lang)
    return {"text": text}


@router.post("/tts")
async def tts(req: TTSRequest):
    if not (req.text or "").strip():
        raise HTTPException(status_code=400, detail="text required")
    audio = await run_in_threadpool(synthesize_speech, req.text, req.lang, req.voice)
    return Response(content=audio, media_type="audio/mpeg")
