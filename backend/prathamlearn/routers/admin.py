from __future__ import annotations
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from ..gemini_client import GeminiClient, get_llm
from ..errors import PromptNotFound
from ..generation import prepare_course
from ..ingestion import extract_material
from ..schemas import ARTIFACT_MATERIAL, LANGUAGES, Course
from ..store import ContentStore, get_store, new_course_keys

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["admin"])

PROMPT_PREVIEW_CHARS = 300


class CreateCourseRequest(BaseModel):
    title: Optional[str] = None
    language: Optional[str] = None


@router.post("/admin/course")
def create_course(req: CreateCourseRequest, store: ContentStore = Depends(get_store)):
    title = (req.title or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="title required")
    language = (req.language or "auto").strip().lower()
    if language not in LANGUAGES:
        raise HTTPException(status_code=400, detail=f"language must be one of {', '.join(LANGUAGES)}")
    course_id = str(uuid.uuid4())
    course = Course(id=course_id, title=title, language=language, **new_course_keys(course_id))
    store.save_course(course)
    logger.info("Created course %s (%s, lang=%s)", course_id, title, language)
    return {"courseId": course_id}


@router.post("/admin/upload/{course_id}")
async def upload_material(
    course_id: str,
    material: Optional[UploadFile] = File(default=None),
    text: Optional[str] = Form(default=None),
    store: ContentStore = Depends(get_store),
):
    course = store.get_course(course_id)
    content = await material.read() if material is not None else None
    mime_type = material.content_type if material is not None else None
    extracted = await run_in_threadpool(extract_material, text, content, mime_type, language=course.language)
    store.save_course_content(course.id, ARTIFACT_MATERIAL, extracted)
    return {"ok": True, "chars": len(extracted)}


@router.post("/admin/prompt/{course_id}")
async def generate_prompt(
    course_id: str,
    store: ContentStore = Depends(get_store),
    llm: GeminiClient = Depends(get_llm),
):
    prompt_text, question_count = await prepare_course(store, llm, course_id)
    return {"ok": True, "promptPreview": prompt_text[:PROMPT_PREVIEW_CHARS], "questionCount": question_count}


@router.get("/admin/prompt/{course_id}")
def get_prompt(course_id: str, store: ContentStore = Depends(get_store)):
    course = store.get_course(course_id)
    prompt = store.system_prompt(course)
    if prompt is None:
        raise PromptNotFound()
    return {"prompt": prompt}


@router.get("/courses")
def list_courses(store: ContentStore = Depends(get_store)):
    return {
        "courses": [
            {"id": c.id, "title": c.title, "prompt": c.prompt, "language": c.language, "questionBank": c.question_bank}
            for c in store.list_courses()
        ]
    }
