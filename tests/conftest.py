"""
Shared pytest fixtures for the PrathamLearn backend tests.

Model calls never leave the process: ``FakeLLM`` answers prompts from a script
keyed by a substring of the prompt, and the API client swaps it in through
FastAPI dependency overrides together with a throwaway SQLite store.
"""

import json
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest
from fastapi.testclient import TestClient

from prathamlearn.errors import UpstreamGenerationFailed
from prathamlearn.gemini_client import get_llm
from prathamlearn.llm_json import Malformed, parse_model_json
from prathamlearn.main import app
from prathamlearn.realtime_client import get_realtime_client
from prathamlearn.schemas import ARTIFACT_MATERIAL, ARTIFACT_PROMPT, Course, QuestionBankEntry
from prathamlearn.settings import settings
from prathamlearn.store import ContentStore, get_store, new_course_keys

Reply = Union[str, Exception, Dict[str, Any], List[Any]]


class FakeLLM:
    """Scripted stand-in for GeminiClient.

    ``script(marker, reply)`` registers a reply for any prompt containing
    ``marker``; dict/list replies are JSON-encoded and exceptions are raised.
    A list of replies passed through ``script_sequence`` is consumed in order.
    Unscripted prompts fail like an unreachable upstream.
    """

    def __init__(self) -> None:
        self.rules: List[Tuple[str, List[Reply]]] = []
        self.prompts: List[str] = []
        self.multimodal_calls: List[Dict[str, Any]] = []

    def script(self, marker: str, reply: Reply) -> "FakeLLM":
        self.rules.append((marker, [reply]))
        return self

    def script_sequence(self, marker: str, replies: List[Reply]) -> "FakeLLM":
        self.rules.append((marker, list(replies)))
        return self

    def calls_matching(self, marker: str) -> List[str]:
        return [p for p in self.prompts if marker in p]

    def _reply(self, prompt: str) -> str:
        self.prompts.append(prompt)
        for marker, replies in self.rules:
            if marker in prompt:
                reply = replies.pop(0) if len(replies) > 1 else replies[0]
                if isinstance(reply, Exception):
                    raise reply
                if isinstance(reply, (dict, list)):
                    return json.dumps(reply, ensure_ascii=False)
                return reply
        raise UpstreamGenerationFailed("model call failed")

    async def generate(self, prompt: str, *, json_mode: bool = False, max_output_tokens: Optional[int] = None) -> str:
        return self._reply(prompt)

    async def generate_multimodal(self, parts: List[Dict[str, Any]], *, model: Optional[str] = None, json_mode: bool = False) -> str:
        self.multimodal_calls.append({"parts": parts, "model": model})
        text = "\n".join(p["text"] for p in parts if "text" in p)
        return self._reply(text)

    async def generate_json(
        self,
        prompt: str,
        validate: Optional[Callable[[Any], Any]] = None,
        *,
        max_output_tokens: Optional[int] = None,
    ):
        try:
            raw = await self.generate(prompt, json_mode=True, max_output_tokens=max_output_tokens)
        except UpstreamGenerationFailed as err:
            return Malformed("", err.message)
        return parse_model_json(raw, validate)

    async def aclose(self) -> None:
        pass


class FakeRealtimeClient:
    def __init__(self, status: int = 200, data: Optional[Dict[str, Any]] = None) -> None:
        self.status = status
        self.data = data if data is not None else {"client_secret": {"value": "ek_test"}, "id": "sess_1"}
        self.requests: List[Dict[str, Any]] = []

    async def create_session(self, body: Dict[str, Any]):
        self.requests.append(body)
        return self.status, dict(self.data)

    async def aclose(self) -> None:
        pass


@pytest.fixture
def store(tmp_path):
    return ContentStore.from_url(f"sqlite:///{tmp_path / 'test.db'}")


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_realtime():
    return FakeRealtimeClient()


@pytest.fixture(autouse=True)
def papers_dir(tmp_path, monkeypatch):
    target = tmp_path / "papers"
    monkeypatch.setattr(settings, "papers_dir", str(target))
    return target


@pytest.fixture
def client(store, fake_llm, fake_realtime):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_llm] = lambda: fake_llm
    app.dependency_overrides[get_realtime_client] = lambda: fake_realtime
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_course(store):
    """Create a course directly in the store with optional material, prompt and bank."""

    def _make(
        title: str = "Photosynthesis",
        language: str = "en",
        material: Optional[str] = None,
        prompt: Optional[str] = None,
        bank: Optional[List[Dict[str, str]]] = None,
    ) -> Course:
        course_id = str(uuid.uuid4())
        course = Course(id=course_id, title=title, language=language, **new_course_keys(course_id))
        if material is not None:
            store.save_course_content(course_id, ARTIFACT_MATERIAL, material)
        if prompt is not None:
            store.save_course_content(course_id, ARTIFACT_PROMPT, prompt)
            course.prompt = True
        if bank is not None:
            store.save_question_bank(course, [QuestionBankEntry.model_validate(e) for e in bank])
            course.question_bank = bool(bank)
        store.save_course(course)
        return course

    return _make


@pytest.fixture
def sample_bank():
    return [
        {"q": "What do plants need to make their food?", "a": "Sunlight, water and air", "level": "easy"},
        {"q": "Which part of the plant takes in water?", "a": "The roots", "level": "easy"},
        {"q": "What gas do plants give out during photosynthesis?", "a": "Oxygen", "level": "medium"},
    ]
