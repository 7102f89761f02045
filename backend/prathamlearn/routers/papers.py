from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from ..gemini_client import GeminiClient, get_llm
from ..paper import generate_html_paper
from ..store import ContentStore, get_store

router = APIRouter(prefix="/api/papers", tags=["papers"])


class PaperRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_id: Optional[str] = Field(default=None, alias="courseId")
    learner_name: Optional[str] = Field(default=None, alias="learnerName")


@router.post("/html")
async def html_paper(
    req: PaperRequest,
    store: ContentStore = Depends(get_store),
    llm: GeminiClient = Depends(get_llm),
):
    paper_path = await generate_html_paper(store, llm, req.course_id)
    return {"paperPath": paper_path}
