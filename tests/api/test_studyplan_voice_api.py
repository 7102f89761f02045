"""API tests for study plans and voice endpoints."""

import pytest

from prathamlearn.errors import UpstreamGenerationFailed
from prathamlearn.routers import voice
from prathamlearn.routers.voice import reassess_count, resolve_language
from prathamlearn.schemas import InteractionRecord, LearnerSession

PLAN = "create a personalized study plan"


@pytest.fixture
def course(make_course, sample_bank):
    return make_course(language="hi", material="plants make food from light", prompt="rules", bank=sample_bank)


class TestStudyPlan:

    def test_session_plan(self, client, fake_llm, store, course):
        session = LearnerSession(id="s-1", course_id=course.id, proficiency="Beginner")
        session.record_interaction(InteractionRecord(q="What do plants need?", a="water", correct=False, feedback="Also light"))
        store.save_session(session)
        fake_llm.script(PLAN, "Day 1: Light")

        r = client.post("/api/studyplan", json={"sessionId": "s-1"})

        assert r.json() == {"plan": "Day 1: Light"}
        prompt = fake_llm.calls_matching(PLAN)[0]
        assert "- Score: 0/1 (0%)" in prompt
        assert "- Level: Beginner" in prompt
        assert "- Language: Hindi" in prompt
        # plans never touch the session
        assert store.get_session("s-1").model_dump() == session.model_dump()

    def test_session_plan_unknown_session(self, client):
        r = client.post("/api/studyplan", json={"sessionId": "nope"})
        assert r.status_code == 404

    def test_session_plan_generation_failure(self, client, store, course):
        store.save_session(LearnerSession(id="s-2", course_id=course.id))
        r = client.post("/api/studyplan", json={"sessionId": "s-2"})
        assert r.status_code == 500
        assert r.json() == {"error": "failed to create study plan"}

    def test_handwritten_plan(self, client, fake_llm, course):
        fake_llm.script(PLAN, "Day 1: Practice writing 'roots'")
        r = client.post(
            "/api/studyplan/handwritten",
            json={
                "courseId": course.id,
                "score": 1,
                "total": 2,
                "level": "Intermediate",
                "qaPairs": [
                    {"question": "Q1?", "answer": "A1", "correct": True},
                    {"question": "Q2?", "answer": "A2", "correct": False, "feedback": "Try again"},
                ],
            },
        )
        assert r.json()["plan"].startswith("Day 1")
        prompt = fake_llm.calls_matching(PLAN)[0]
        assert "handwritten assessment" in prompt
        assert "Feedback: Try again" in prompt

    def test_handwritten_plan_requires_course(self, client):
        r = client.post("/api/studyplan/handwritten", json={"score": 1, "total": 1})
        assert r.status_code == 400
        assert r.json() == {"error": "Course ID required"}


class TestEphemeral:

    def test_mint_with_query_params(self, client, fake_realtime, course):
        r = client.post(f"/api/voice/ephemeral?courseId={course.id}&name=Asha&lang=en")
        body = r.json()
        assert body["client_secret"] == {"value": "ek_test"}
        assert body["baselineQuestions"] == 3

        sent = fake_realtime.requests[0]
        assert "Use only English." in sent["instructions"]
        assert "Which part of the plant takes in water?" in sent["instructions"]
        assert "Ask exactly 3 questions" in sent["instructions"]

    def test_mint_with_body_uses_course_language(self, client, fake_realtime, course):
        client.post("/api/voice/ephemeral", json={"courseId": course.id})
        assert "Use only Hindi." in fake_realtime.requests[0]["instructions"]

    def test_upstream_status_passthrough(self, client, fake_realtime, course):
        fake_realtime.status = 401
        fake_realtime.data = {"error": {"message": "bad key"}}
        r = client.post("/api/voice/ephemeral", json={"courseId": course.id})
        assert r.status_code == 401
        assert r.json() == {"error": {"message": "bad key"}}

    def test_unknown_course(self, client):
        r = client.post("/api/voice/ephemeral?courseId=nope")
        assert r.status_code == 404
        assert r.json() == {"error": "course not found"}

    def test_long_bank_is_truncated(self, client, fake_realtime, make_course):
        bank = [{"q": f"Question number {i} about plants?", "a": "x" * 80, "level": "easy"} for i in range(100)]
        course = make_course(material="text", bank=bank)
        client.post("/api/voice/ephemeral", json={"courseId": course.id})
        assert "...TRUNCATED" in fake_realtime.requests[0]["instructions"]

    @pytest.mark.parametrize("baseline,expected", [(3, 3), (5, 3), (7, 4), (10, 5)])
    def test_reassess_count(self, baseline, expected):
        assert reassess_count(baseline) == expected

    def test_resolve_language(self):
        assert resolve_language("hi", "en") == "hi"
        assert resolve_language("fr", "hi") == "hi"
        assert resolve_language(None, "auto") == "en"


class TestSpeechFallbacks:

    def test_transcribe(self, client, monkeypatch):
        seen = {}

        def fake_transcribe(content, mime_type, lang):
            seen.update(content=content, mime=mime_type, lang=lang)
            return "roots take in water"

        monkeypatch.setattr(voice, "transcribe_audio", fake_transcribe)
        r = client.post("/api/voice/transcribe", files={"audio": ("a.webm", b"abc", "audio/webm")}, data={"lang": "hi"})
        assert r.json() == {"text": "roots take in water"}
        assert seen == {"content": b"abc", "mime": "audio/webm", "lang": "hi"}

    def test_transcribe_requires_audio(self, client):
        r = client.post("/api/voice/transcribe", data={"lang": "en"})
        assert r.status_code == 400
        assert r.json() == {"error": "audio required"}

    def test_tts(self, client, monkeypatch):
        monkeypatch.setattr(voice, "synthesize_speech", lambda text, lang, voice_name: b"ID3mp3")
        r = client.post("/api/voice/tts", json={"text": "Hello"})
        assert r.headers["content-type"] == "audio/mpeg"
        assert r.content == b"ID3mp3"

    def test_tts_failure(self, client, monkeypatch):
        def broken(text, lang, voice_name):
            raise UpstreamGenerationFailed("tts failed")

        monkeypatch.setattr(voice, "synthesize_speech", broken)
        r = client.post("/api/voice/tts", json={"text": "Hello"})
        assert r.status_code == 500
        assert r.json() == {"error": "tts failed"}

    def test_tts_requires_text(self, client):
        r = client.post("/api/voice/tts", json={})
        assert r.status_code == 400
        assert r.json() == {"error": "text required"}
