"""Tests for system prompt and question bank generation."""

import pytest

from prathamlearn.errors import MaterialMissing, UpstreamGenerationFailed
from prathamlearn.generation import (
    generate_question_bank,
    generate_system_prompt,
    prepare_course,
    validate_question_bank,
)

FULL_PROMPT = "Create a comprehensive, production-ready SYSTEM PROMPT"
SIMPLE_PROMPT = "Write a concise SYSTEM PROMPT"
BANK = "Create a question bank (JSON only)"


class TestValidateQuestionBank:

    def test_object_form(self):
        entries = validate_question_bank({"questions": [{"q": "What is light?", "a": "Energy", "level": "easy"}]})
        assert entries[0].q == "What is light?"

    def test_list_form_with_alternate_keys(self):
        entries = validate_question_bank([{"question": "Why?", "answer": "Because", "difficulty": "Hard"}])
        assert (entries[0].q, entries[0].a, entries[0].level) == ("Why?", "Because", "hard")

    def test_skips_entries_without_question(self):
        entries = validate_question_bank({"questions": [{"a": "x"}, "junk", {"q": "  "}, {"q": "Ok?"}]})
        assert [e.q for e in entries] == ["Ok?"]

    def test_rejects_non_list(self):
        with pytest.raises(ValueError):
            validate_question_bank({"questions": "none"})


class TestGenerateSystemPrompt:

    async def test_first_attempt(self, fake_llm):
        fake_llm.script(FULL_PROMPT, "  Be kind.  ")
        assert await generate_system_prompt(fake_llm, "en", "text") == "Be kind."
        assert len(fake_llm.calls_matching(SIMPLE_PROMPT)) == 0

    async def test_retries_with_simplified_request(self, fake_llm):
        fake_llm.script(FULL_PROMPT, "   ").script(SIMPLE_PROMPT, "Short rules")
        assert await generate_system_prompt(fake_llm, "hi", "text") == "Short rules"
        assert "Hindi" in fake_llm.calls_matching(SIMPLE_PROMPT)[0]

    async def test_fails_after_retry(self, fake_llm):
        with pytest.raises(UpstreamGenerationFailed) as exc:
            await generate_system_prompt(fake_llm, "en", "text")
        assert exc.value.message == "prompt generation failed"


class TestGenerateQuestionBank:

    async def test_second_attempt_used_when_first_is_malformed(self, fake_llm):
        fake_llm.script_sequence(BANK, ["oops", {"questions": [{"q": "Q1?", "a": "A1", "level": "easy"}]}])
        bank = await generate_question_bank(fake_llm, "en", "text")
        assert [e.q for e in bank] == ["Q1?"]
        assert "Write exactly 15 questions" in fake_llm.calls_matching(BANK)[1]

    async def test_empty_when_both_fail(self, fake_llm):
        assert await generate_question_bank(fake_llm, "en", "text") == []


class TestPrepareCourse:

    async def test_saves_prompt_and_bank(self, store, fake_llm, make_course):
        course = make_course(material="Plants make food from light.")
        fake_llm.script(FULL_PROMPT, "Tutor rules").script(BANK, {"questions": [{"q": "Q?", "a": "A", "level": "medium"}]})

        prompt, count = await prepare_course(store, fake_llm, course.id)

        assert (prompt, count) == ("Tutor rules", 1)
        saved = store.get_course(course.id)
        assert saved.prompt is True and saved.question_bank is True
        assert store.system_prompt(saved) == "Tutor rules"
        assert store.question_bank(saved)[0].level == "medium"

    async def test_bank_failure_is_not_fatal(self, store, fake_llm, make_course):
        course = make_course(material="Plants make food from light.")
        fake_llm.script(FULL_PROMPT, "Tutor rules")

        prompt, count = await prepare_course(store, fake_llm, course.id)

        assert count == 0
        saved = store.get_course(course.id)
        assert saved.prompt is True and saved.question_bank is False

    async def test_failed_regeneration_keeps_existing_bank(self, store, fake_llm, make_course, sample_bank):
        course = make_course(material="Plants make food from light.", prompt="Old rules", bank=sample_bank)
        fake_llm.script(FULL_PROMPT, "New rules")

        prompt, count = await prepare_course(store, fake_llm, course.id)

        assert (prompt, count) == ("New rules", 3)
        saved = store.get_course(course.id)
        assert saved.question_bank is True
        assert [e.q for e in store.question_bank(saved)] == [e["q"] for e in sample_bank]

    async def test_requires_material(self, store, fake_llm, make_course):
        course = make_course()
        with pytest.raises(MaterialMissing):
            await prepare_course(store, fake_llm, course.id)
