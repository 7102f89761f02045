from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from ..gemini_client import GeminiClient, get_llm
from ..schemas import classify_proficiency
from ..store import ContentStore, get_store
from ..study_plan import PerformanceSummary, QAResult, generate_study_plan

router = APIRouter(prefix="/api/studyplan", tags=["studyplan"])


class SessionPlanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")


class HandwrittenPlanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_id: Optional[str] = Field(default=None, alias="courseId")
    score: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    level: Optional[str] = None
    qa_pairs: List[QAResult] = Field(default_factory=list, alias="qaPairs")


@router.post("")
async def session_study_plan(
    req: SessionPlanRequest,
    store: ContentStore = Depends(get_store),
    llm: GeminiClient = Depends(get_llm),
):
    session = store.get_session(req.session_id)
    course = store.get_course(session.course_id)
    summary = PerformanceSummary.from_session(session, course)
    plan = await generate_study_plan(llm, summary, store.material_text(course))
    return {"plan": plan}


@router.post("/handwritten")
async def handwritten_study_plan(
    req: HandwrittenPlanRequest,
    store: ContentStore = Depends(get_store),
    llm: GeminiClient = Depends(get_llm),
):
    if not req.course_id:
        raise HTTPException(status_code=400, detail="Course ID required")
    course = store.get_course(req.course_id)
    summary = PerformanceSummary(
        score=min(req.score, req.total),
        total=req.total,
        level=req.level or classify_proficiency(req.score, req.total),
        language=course.prompt_language,
        qa=req.qa_pairs,
    )
    plan = await generate_study_plan(llm, summary, store.material_text(course), handwritten=True)
    return {"plan": plan}
