"""API tests for learner sessions, including the end-to-end Photosynthesis flow."""

OPENING = "You are starting a new session"
EVALUATE = "Evaluate the learner's answer"


def test_photosynthesis_scenario(client, fake_llm):
    fake_llm.script("Create a comprehensive, production-ready SYSTEM PROMPT", "You are a kind science tutor.")
    fake_llm.script("Create a question bank (JSON only)", {"questions": [{"q": "What do plants make?", "a": "Food", "level": "easy"}]})
    fake_llm.script(OPENING, "How do plants make their food?")
    fake_llm.script(
        EVALUATE,
        {"correctness": True, "feedback": "Well done!", "difficulty_next": "medium", "next_question": "What gas do plants release?"},
    )

    course_id = client.post("/api/admin/course", json={"title": "Photosynthesis"}).json()["courseId"]
    client.post(f"/api/admin/upload/{course_id}", data={"text": "plants make food from light"})
    assert client.post(f"/api/admin/prompt/{course_id}").status_code == 200

    r = client.post("/api/learner/session", json={"courseId": course_id, "learnerName": "Asha"})
    assert r.status_code == 200
    session_id, question = r.json()["sessionId"], r.json()["question"]
    assert question

    r = client.post("/api/learner/answer", json={"sessionId": session_id, "question": question, "answer": "they use sunlight"})
    body = r.json()
    assert isinstance(body["correct"], bool)
    assert body["feedback"]
    assert body["nextQuestion"]
    assert body["total"] == 1

    view = client.get(f"/api/learner/session/{session_id}").json()
    assert view["name"] == "Asha"
    assert view["history"][0]["a"] == "they use sunlight"
    assert view["questionBank"][0]["q"] == "What do plants make?"
    assert "Latest Answer:\nthey use sunlight" in fake_llm.calls_matching(EVALUATE)[0]


def test_start_session_without_prompt(client, make_course, store):
    course = make_course(material="text")
    r = client.post("/api/learner/session", json={"courseId": course.id, "learnerName": "Asha"})
    assert r.status_code == 400
    assert r.json() == {"error": "system prompt missing"}
    assert store.all("sessions") == {}


def test_start_session_unknown_course(client):
    r = client.post("/api/learner/session", json={"courseId": "nope"})
    assert r.status_code == 404
    assert r.json() == {"error": "course not found"}


def test_answer_requires_session_id(client):
    r = client.post("/api/learner/answer", json={"answer": "x"})
    assert r.status_code == 400
    assert r.json() == {"error": "sessionId required"}


def test_answer_unknown_session(client):
    r = client.post("/api/learner/answer", json={"sessionId": "nope", "answer": "x"})
    assert r.status_code == 404
    assert r.json() == {"error": "session not found"}


def test_answer_with_broken_evaluator_still_advances(client, fake_llm, make_course):
    course = make_course(material="text", prompt="rules")
    session_id = client.post("/api/learner/session", json={"courseId": course.id}).json()["sessionId"]
    fake_llm.script(EVALUATE, "I think the answer is right!")

    body = client.post("/api/learner/answer", json={"sessionId": session_id, "question": "Q?", "answer": "A"}).json()

    assert body == {
        "correct": False,
        "feedback": "Thanks! Let's try another one.",
        "nextQuestion": "Can you explain the main idea?",
        "score": 0,
        "total": 1,
        "level": "easy",
    }


def test_session_view_unknown(client):
    r = client.get("/api/learner/session/nope")
    assert r.status_code == 404
    assert r.json() == {"error": "session not found"}
