"""Tests for paper rendering and the question-bank fallback."""

import threading

import pytest

from prathamlearn.errors import MaterialMissing, QuestionBankMissing
from prathamlearn import paper
from prathamlearn.paper import (
    FillInBlank,
    MultipleChoice,
    PaperContent,
    build_paper,
    generate_html_paper,
    render_html,
    validate_paper_items,
)
from prathamlearn.schemas import QuestionBankEntry

PAPER_JSON = "produce EXACT JSON"
FALLBACK_BANK = "containing 20 items"


@pytest.fixture
def paper_items():
    return {
        "mcq": [{"q": "Plants need?", "options": ["Light", "Sand", "Salt", "Oil"], "correctIndex": 0}],
        "fib": [{"q": "Roots take in ____.", "answer": "water"}],
    }


class TestValidatePaperItems:

    def test_bad_correct_index_defaults_to_first(self):
        items = validate_paper_items({"mcq": [{"q": "Q?", "options": ["a", "b"], "correctIndex": 7}], "fib": []})
        assert items["mcq"][0].correct_index == 0

    def test_drops_incomplete_items(self):
        items = validate_paper_items(
            {"mcq": [{"q": "Q?", "options": ["only one"]}, {"options": ["a", "b"]}], "fib": [{"answer": "x"}]}
        )
        assert items == {"mcq": [], "fib": []}

    def test_rejects_non_object(self):
        with pytest.raises(ValueError):
            validate_paper_items(["mcq"])


class TestRenderHtml:

    def test_structured_paper_has_answer_key(self):
        paper = PaperContent(
            title="Assessment - Plants",
            language_name="English",
            bank=[],
            mcq=[MultipleChoice(q="Plants need?", options=["Sand", "Light"], correct_index=1)],
            fib=[FillInBlank(q="Roots take in ____.", answer="water")],
        )
        html = render_html(paper)
        assert "A) Multiple Choice Questions" in html
        assert "Q1: B" in html
        assert "Q1: water" in html

    def test_plain_list_when_no_items(self):
        paper = PaperContent(title="T", language_name="English", bank=[QuestionBankEntry(q="What is <light>?")])
        html = render_html(paper)
        assert "Multiple Choice" not in html
        assert "What is &lt;light&gt;?" in html


class TestBuildPaper:

    async def test_html_and_pdf(self, store, fake_llm, make_course, sample_bank, paper_items, papers_dir):
        course = make_course(material="text", bank=sample_bank)
        fake_llm.script(PAPER_JSON, paper_items)

        result = await build_paper(store, fake_llm, course.id)

        assert "Plants need?" in result["html"]
        assert result["pdfPath"] == result["pdfUrl"]
        assert result["pdfPath"].startswith("/papers/")
        assert (papers_dir / result["pdfPath"].rsplit("/", 1)[1]).exists()

    async def test_pdf_is_rendered_off_the_event_loop(self, store, fake_llm, make_course, sample_bank, monkeypatch):
        course = make_course(material="text", bank=sample_bank)
        threads = []
        monkeypatch.setattr(paper, "render_pdf", lambda content, target: threads.append(threading.current_thread()))

        await build_paper(store, fake_llm, course.id)

        assert threads and threads[0] is not threading.main_thread()

    async def test_malformed_items_fall_back_to_question_list(self, store, fake_llm, make_course, sample_bank):
        course = make_course(material="text", bank=sample_bank)
        fake_llm.script(PAPER_JSON, "no json")

        result = await build_paper(store, fake_llm, course.id)

        assert "Which part of the plant takes in water?" in result["html"]
        assert "Answer Key" not in result["html"]

    async def test_empty_bank_triggers_fallback_generation(self, store, fake_llm, make_course, paper_items):
        course = make_course(material="Plants make food from light.", bank=[])
        fake_llm.script(FALLBACK_BANK, {"questions": [{"q": "What do plants make?", "a": "Food", "level": "easy"}]})
        fake_llm.script(PAPER_JSON, paper_items)

        await build_paper(store, fake_llm, course.id)

        saved = store.get_course(course.id)
        assert saved.question_bank is True
        assert store.question_bank(saved)[0].q == "What do plants make?"

    async def test_fallback_failure_reports_missing_bank(self, store, fake_llm, make_course):
        course = make_course(material="Plants make food from light.")
        with pytest.raises(QuestionBankMissing):
            await build_paper(store, fake_llm, course.id)
        assert len(fake_llm.calls_matching(FALLBACK_BANK)) == 1


class TestHtmlPaper:

    async def test_saves_model_html(self, store, fake_llm, make_course, papers_dir):
        course = make_course(material="text", prompt="rules")
        fake_llm.script("well-formatted HTML question paper", "```html\n<html><body>Paper</body></html>\n```")

        path = await generate_html_paper(store, fake_llm, course.id)

        saved = papers_dir / path.rsplit("/", 1)[1]
        assert saved.read_text(encoding="utf-8") == "<html><body>Paper</body></html>"

    async def test_requires_material(self, store, fake_llm, make_course):
        course = make_course()
        with pytest.raises(MaterialMissing):
            await generate_html_paper(store, fake_llm, course.id)
