from __future__ import annotations
import html
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import ListFlowable, ListItem, Paragraph, SimpleDocTemplate, Spacer

from .errors import MaterialMissing, QuestionBankMissing, UpstreamGenerationFailed
from .gemini_client import GeminiClient
from .generation import generate_fallback_bank
from .llm_json import Success
from .schemas import Course, QuestionBankEntry
from .settings import settings
from .store import ContentStore

logger = logging.getLogger(__name__)

MCQ_LIMIT = 20
FIB_LIMIT = 10
BANK_PROMPT_LIMIT = 60

_STYLE = (
    "body{font-family:Arial,Helvetica,Sans-Serif;margin:24px}h1{margin:0 0 8px}h2{margin:16px 0 8px}"
    "ol{padding-left:20px}li{margin:8px 0}small{color:#666}.opts{margin:6px 0 0 0;padding-left:18px}"
    ".opts li{list-style-type: upper-alpha;margin:4px 0}"
)


@dataclass
class MultipleChoice:
    q: str
    options: List[str]
    correct_index: int = 0


@dataclass
class FillInBlank:
    q: str
    answer: str


@dataclass
class PaperContent:
    title: str
    language_name: str
    bank: List[QuestionBankEntry]
    mcq: List[MultipleChoice] = field(default_factory=list)
    fib: List[FillInBlank] = field(default_factory=list)

    @property
    def structured(self) -> bool:
        return bool(self.mcq and self.fib)


def papers_dir() -> Path:
    path = Path(settings.papers_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def validate_paper_items(data: Any) -> Dict[str, list]:
    if not isinstance(data, dict):
        raise ValueError("paper JSON must be an object")
    mcq: List[MultipleChoice] = []
    for item in data.get("mcq") or []:
        if not isinstance(item, dict) or not str(item.get("q") or "").strip():
            continue
        options = [str(o).strip() for o in (item.get("options") or [])][:4]
        if len(options) < 2:
            continue
        try:
            correct_index = int(item.get("correctIndex", 0))
        except (TypeError, ValueError):
            correct_index = 0
        if not 0 <= correct_index < len(options):
            correct_index = 0
        mcq.append(MultipleChoice(q=str(item["q"]).strip(), options=options, correct_index=correct_index))
    fib: List[FillInBlank] = []
    for item in data.get("fib") or []:
        if not isinstance(item, dict) or not str(item.get("q") or "").strip():
            continue
        fib.append(FillInBlank(q=str(item["q"]).strip(), answer=str(item.get("answer") or "").strip()))
    return {"mcq": mcq[:MCQ_LIMIT], "fib": fib[:FIB_LIMIT]}


def _paper_items_prompt(bank: List[QuestionBankEntry], language_name: str) -> str:
    compact = json.dumps({"questions": [e.model_dump() for e in bank[:BANK_PROMPT_LIMIT]]}, ensure_ascii=False)[:18000]
    return (
        "From the question bank, produce EXACT JSON with keys {\"mcq\":[],\"fib\":[]} only.\n\n"
        "Rules:\n"
        "- mcq: 12 items. Each item: { \"q\": string, \"options\": [string,string,string,string], \"correctIndex\": 0|1|2|3 }. "
        "Options must be plausible; exactly one correct.\n"
        "- fib: 8 items. Each item: { \"q\": string with a single blank using \"____\", \"answer\": string }. "
        "Keep blanks short and unambiguous.\n"
        f"- Use {language_name} only.\n"
        "- Do NOT include any extra keys, commentary, or code fences.\n\n"
        f"Question Bank:\n{compact}"
    )


def render_html(paper: PaperContent) -> str:
    e = html.escape
    head = f"<!doctype html><html><head><meta charset=\"utf-8\"><style>{_STYLE}</style></head><body>"
    if not paper.structured:
        now = datetime.now().strftime("%d %b %Y %H:%M")
        items = "".join(f"<li><strong>Q{i}:</strong> {e(q.q)}</li>" for i, q in enumerate(paper.bank, start=1))
        return f"{head}<h1>{e(paper.title)}</h1><small>{now}</small><ol>{items}</ol></body></html>"
    key_mcq = ", ".join(f"Q{i}: {chr(65 + q.correct_index)}" for i, q in enumerate(paper.mcq, start=1))
    key_fib = "; ".join(f"Q{i}: {e(q.answer)}" for i, q in enumerate(paper.fib, start=1))
    mcq_items = "".join(
        f"<li>{e(q.q)}<ul class=\"opts\">{''.join(f'<li>{e(opt)}</li>' for opt in q.options)}</ul></li>" for q in paper.mcq
    )
    fib_items = "".join(f"<li>{e(q.q)}</li>" for q in paper.fib)
    return (
        f"{head}<h1>{e(paper.title)}</h1><small>Language: {e(paper.language_name)}</small>"
        "<p>Instructions: Attempt all questions. Read carefully and choose/enter the best answer.</p>"
        f"<h2>A) Multiple Choice Questions</h2><ol>{mcq_items}</ol>"
        f"<h2>B) Fill in the Blanks</h2><ol>{fib_items}</ol>"
        f"<h2>Answer Key</h2><p><strong>MCQ:</strong> {key_mcq}</p><p><strong>Fill-in:</strong> {key_fib}</p>"
        "</body></html>"
    )


def _pdf_text(value: str) -> str:
    # reportlab paragraphs take a small XML markup; quotes stay literal
    return html.escape(value, quote=False)


def render_pdf(paper: PaperContent, target: Path) -> None:
    e = _pdf_text
    styles = getSampleStyleSheet()
    story: List[Any] = [
        Paragraph(e(paper.title), styles["Title"]),
        Paragraph(f"Language: {e(paper.language_name)}", styles["Normal"]),
        Spacer(1, 0.2 * inch),
    ]
    if paper.structured:
        story.append(Paragraph("Instructions: Attempt all questions. Read carefully and choose/enter the best answer.", styles["Normal"]))
        story.append(Paragraph("A) Multiple Choice Questions", styles["Heading2"]))
        mcq_items = []
        for q in paper.mcq:
            options = ListFlowable(
                [ListItem(Paragraph(e(opt), styles["Normal"])) for opt in q.options],
                bulletType="A",
                leftIndent=18,
            )
            mcq_items.append(ListItem([Paragraph(e(q.q), styles["Normal"]), options]))
        story.append(ListFlowable(mcq_items, bulletType="1"))
        story.append(Paragraph("B) Fill in the Blanks", styles["Heading2"]))
        story.append(ListFlowable([ListItem(Paragraph(e(q.q), styles["Normal"])) for q in paper.fib], bulletType="1"))
        story.append(Paragraph("Answer Key", styles["Heading2"]))
        key_mcq = ", ".join(f"Q{i}: {chr(65 + q.correct_index)}" for i, q in enumerate(paper.mcq, start=1))
        key_fib = "; ".join(f"Q{i}: {e(q.answer)}" for i, q in enumerate(paper.fib, start=1))
        story.append(Paragraph(f"<b>MCQ:</b> {key_mcq}", styles["Normal"]))
        story.append(Paragraph(f"<b>Fill-in:</b> {key_fib}", styles["Normal"]))
    else:
        story.append(ListFlowable([ListItem(Paragraph(e(q.q), styles["Normal"])) for q in paper.bank], bulletType="1"))
    doc = SimpleDocTemplate(str(target), pagesize=A4, rightMargin=54, leftMargin=54, topMargin=54, bottomMargin=36)
    doc.build(story)


async def ensure_question_bank(store: ContentStore, llm: GeminiClient, course: Course) -> List[QuestionBankEntry]:
    bank = store.question_bank(course)
    if bank:
        return bank
    logger.warning("[PAPER] No question bank for course %s, generating fallback from material", course.id)
    material = store.material_text(course)
    if material:
        bank = await generate_fallback_bank(llm, course.prompt_language, material)
    if bank:
        store.save_question_bank(course, bank)
        course.question_bank = True
        store.save_course(course)
        logger.info("[PAPER] Fallback question bank generated count=%d", len(bank))
    return bank


async def build_paper(store: ContentStore, llm: GeminiClient, course_id: Optional[str]) -> Dict[str, Any]:
    """Render the printable assessment for a course as HTML and, when possible, PDF."""
    course = store.get_course(course_id)
    bank = await ensure_question_bank(store, llm, course)
    if not bank:
        raise QuestionBankMissing()
    logger.info("[PAPER] Generating paper for course %s, questions=%d", course.id, len(bank))

    paper = PaperContent(title=f"Assessment - {course.title}", language_name=course.language_name, bank=bank)
    result = await llm.generate_json(_paper_items_prompt(bank, course.language_name), validate_paper_items)
    if isinstance(result, Success):
        paper.mcq = result.payload["mcq"]
        paper.fib = result.payload["fib"]
        logger.info("[PAPER] MCQ=%d, FIB=%d", len(paper.mcq), len(paper.fib))
    else:
        logger.warning("[PAPER] MCQ/FIB JSON generation failed: %s", result.reason)

    html_doc = render_html(paper)
    pdf_file = papers_dir() / f"{uuid.uuid4()}.pdf"
    public_path: Optional[str] = None
    try:
        await run_in_threadpool(render_pdf, paper, pdf_file)
        public_path = f"/papers/{pdf_file.name}"
        logger.info("[PAPER] PDF saved %s", pdf_file)
    except Exception as e:
        logger.warning("[PAPER] PDF generation failed; returning HTML only: %s", e)
        pdf_file.unlink(missing_ok=True)
    return {"html": html_doc, "pdfPath": public_path, "pdfUrl": public_path}


async def generate_html_paper(store: ContentStore, llm: GeminiClient, course_id: Optional[str]) -> str:
    """Ask the model for a complete HTML question paper and store it; returns the public path."""
    course = store.get_course(course_id)
    if not store.has_material(course):
        raise MaterialMissing("no material uploaded for this course")
    system_prompt = store.system_prompt(course) or "You are a helpful tutor."
    bank = store.question_bank(course)
    request = (
        f"System Prompt:\n{system_prompt}\n\n"
        f"Question Bank:\n{json.dumps({'questions': [e.model_dump() for e in bank]}, ensure_ascii=False, indent=2)}\n\n"
        "Generate a comprehensive, well-formatted HTML question paper. Include:\n"
        f"- A title (e.g., \"Chapter 1: Introduction to {course.title}\").\n"
        "- A brief introduction.\n"
        "- A list of numbered questions, each with space for the learner's answer and a hint where useful.\n"
        f"- Everything in {course.language_name}.\n"
        "- A summary of the paper at the end.\n\n"
        "Return only the HTML document.\n\n"
        f"Chapter Content:\n{store.material_text(course)[:12000]}"
    )
    html_content = (await llm.generate(request)).strip()
    if not html_content:
        raise UpstreamGenerationFailed("HTML paper generation failed")
    if html_content.startswith("```"):
        html_content = html_content.strip("`").removeprefix("html").strip()
    target = papers_dir() / f"{course.id}-{uuid.uuid4()}.html"
    await run_in_threadpool(target.write_text, html_content, encoding="utf-8")
    return f"/papers/{target.name}"
