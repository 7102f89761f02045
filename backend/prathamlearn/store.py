"""
Content store
=============

Key/value persistence for courses, learner sessions and per-course artifacts
(material text, system prompt, question bank). Each logical collection is its
own table and every write touches a single keyed row, so writers working on
different sessions never rewrite each other's data.

Sessions are read-modify-write documents. Callers that mutate one must hold
``store.lock("session", session_id)`` for the duration of the cycle.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.engine import Engine

from .db import Base, make_engine, make_sessionmaker
from .errors import CourseNotFound, SessionNotFound
from .models import COLLECTIONS
from .schemas import (
    ARTIFACT_MATERIAL,
    ARTIFACT_PROMPT,
    ARTIFACT_QUESTION_BANK,
    Course,
    LearnerSession,
    QuestionBankEntry,
)
from .settings import settings

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One asyncio.Lock per key, dropped again once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class ContentStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessionmaker = make_sessionmaker(engine)
        self._locks = KeyedLocks()
        Base.metadata.create_all(bind=engine)

    @classmethod
    def from_url(cls, database_url: str) -> "ContentStore":
        return cls(make_engine(database_url))

    # ------------------------------------------------------------------
    # Generic collection access
    # ------------------------------------------------------------------

    def _model(self, collection: str):
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise ValueError(f"unknown collection: {collection}") from None

    def get(self, collection: str, key: str) -> Optional[Any]:
        model = self._model(collection)
        with self._sessionmaker() as db:
            row = db.get(model, key)
            if row is None:
                return None
            return json.loads(row.payload)

    def set(self, collection: str, key: str, value: Any) -> None:
        model = self._model(collection)
        payload = json.dumps(value, ensure_ascii=False)
        with self._sessionmaker() as db:
            row = db.get(model, key)
            if row is None:
                db.add(model(key=key, payload=payload))
            else:
                row.payload = payload
            db.commit()

    def delete(self, collection: str, key: str) -> bool:
        model = self._model(collection)
        with self._sessionmaker() as db:
            row = db.get(model, key)
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True

    def all(self, collection: str) -> Dict[str, Any]:
        model = self._model(collection)
        with self._sessionmaker() as db:
            rows = db.execute(select(model).order_by(model.created_at)).scalars().all()
            return {row.key: json.loads(row.payload) for row in rows}

    def lock(self, collection: str, key: str):
        return self._locks.hold(f"{collection}:{key}")

    # ------------------------------------------------------------------
    # Courses
    # ------------------------------------------------------------------

    def find_course(self, course_id: Optional[str]) -> Optional[Course]:
        if not course_id:
            return None
        data = self.get("courses", course_id)
        return Course.model_validate(data) if data is not None else None

    def get_course(self, course_id: Optional[str]) -> Course:
        course = self.find_course(course_id)
        if course is None:
            raise CourseNotFound()
        return course

    def save_course(self, course: Course) -> None:
        self.set("courses", course.id, course.model_dump(by_alias=True))

    def list_courses(self) -> List[Course]:
        return [Course.model_validate(data) for data in self.all("courses").values()]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session(self, session_id: Optional[str]) -> LearnerSession:
        data = self.get("sessions", session_id) if session_id else None
        if data is None:
            raise SessionNotFound()
        return LearnerSession.model_validate(data)

    def save_session(self, session: LearnerSession) -> None:
        self.set("sessions", session.id, session.model_dump(by_alias=True))

    # ------------------------------------------------------------------
    # Course artifacts
    # ------------------------------------------------------------------

    @staticmethod
    def artifact_key(course_id: str, kind: str) -> str:
        return f"{course_id}:{kind}"

    def get_course_content(self, course_id: str, kind: str) -> Optional[Any]:
        return self.get("artifacts", self.artifact_key(course_id, kind))

    def save_course_content(self, course_id: str, kind: str, content: Any) -> None:
        self.set("artifacts", self.artifact_key(course_id, kind), content)

    def material_text(self, course: Course) -> str:
        return self.get("artifacts", course.material_key) or ""

    def has_material(self, course: Course) -> bool:
        return self.get("artifacts", course.material_key) is not None

    def system_prompt(self, course: Course) -> Optional[str]:
        return self.get("artifacts", course.prompt_key)

    def question_bank(self, course: Course) -> List[QuestionBankEntry]:
        data = self.get("artifacts", course.question_bank_key) or {}
        entries: List[QuestionBankEntry] = []
        for item in data.get("questions", []) if isinstance(data, dict) else []:
            try:
                entries.append(QuestionBankEntry.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed question bank entry for course %s", course.id)
        return entries

    def save_question_bank(self, course: Course, entries: List[QuestionBankEntry]) -> None:
        self.set("artifacts", course.question_bank_key, {"questions": [e.model_dump() for e in entries]})


def new_course_keys(course_id: str) -> Dict[str, str]:
    return {
        "material_key": ContentStore.artifact_key(course_id, ARTIFACT_MATERIAL),
        "prompt_key": ContentStore.artifact_key(course_id, ARTIFACT_PROMPT),
        "question_bank_key": ContentStore.artifact_key(course_id, ARTIFACT_QUESTION_BANK),
    }


_store: Optional[ContentStore] = None


def get_store() -> ContentStore:
    global _store
    if _store is None:
        _store = ContentStore.from_url(settings.resolved_database_url())
    return _store
