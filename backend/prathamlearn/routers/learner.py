from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from ..gemini_client import GeminiClient, get_llm
from ..session_engine import SessionEngine
from ..store import ContentStore, get_store

router = APIRouter(prefix="/api/learner", tags=["learner"])


class StartSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_id: Optional[str] = Field(default=None, alias="courseId")
    learner_name: Optional[str] = Field(default=None, alias="learnerName")


class AnswerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    question: Optional[str] = None
    answer: Optional[str] = None


@router.post("/session")
async def start_session(
    req: StartSessionRequest,
    store: ContentStore = Depends(get_store),
    llm: GeminiClient = Depends(get_llm),
):
    session, question = await SessionEngine(store, llm).start_session(req.course_id, req.learner_name)
    return {"sessionId": session.id, "question": question}


@router.post("/answer")
async def submit_answer(
    req: AnswerRequest,
    store: ContentStore = Depends(get_store),
    llm: GeminiClient = Depends(get_llm),
):
    if not req.session_id:
        raise HTTPException(status_code=400, detail="sessionId required")
    outcome = await SessionEngine(store, llm).submit_answer(req.session_id, req.question, req.answer)
    return outcome.to_response()


@router.get("/session/{session_id}")
def get_session(session_id: str, store: ContentStore = Depends(get_store)):
    session = store.get_session(session_id)
    course = store.find_course(session.course_id)
    bank = store.question_bank(course) if course is not None else []
    return {
        "id": session.id,
        "courseId": session.course_id,
        "name": session.name,
        "level": session.level,
        "proficiency": session.proficiency,
        "score": session.score,
        "total": session.total,
        "history": [h.model_dump() for h in session.history],
        "questionBank": [e.model_dump() for e in bank],
    }
