from __future__ import annotations
import logging
from typing import Any, List, Tuple

from .errors import MaterialMissing, UpstreamGenerationFailed
from .gemini_client import GeminiClient
from .llm_json import Success
from .schemas import ARTIFACT_PROMPT, Course, QuestionBankEntry
from .store import ContentStore

logger = logging.getLogger(__name__)


def _language_line(lang: str) -> str:
    if lang == "hi":
        return "Write all instructions and examples in Hindi. Use simple, child-friendly Hindi."
    return "Write all instructions and examples in English. Keep language simple and child-friendly."


def _language_name(lang: str) -> str:
    return "Hindi" if lang == "hi" else "English"


def _build_system_prompt_request(lang: str, material: str) -> str:
    return (
        f"You are a friendly voice tutor for children. {_language_line(lang)}\n\n"
        "Create a comprehensive, production-ready SYSTEM PROMPT for a realtime voice agent that will:\n"
        "- Be voice-first, concise, and child-friendly\n"
        "- Run a short adaptive baseline using a provided question bank\n"
        "- Keep responses <= 2 sentences\n"
        "- Provide gentle hints on mistakes and simplify follow-ups\n"
        "- After baseline, emit a study plan (we will add markers externally) and pause\n\n"
        "Include crisp bullet sections with specific, testable rules:\n"
        "1) Role & Tone\n"
        f"2) Language Policy (only {_language_name(lang)})\n"
        "3) Question Policy (one short question at a time; acceptable forms; no multi-part)\n"
        "4) Adaptivity Ladder (easy→medium→hard with clear triggers)\n"
        "5) Feedback Style (hinting rules, brevity, positivity)\n"
        "6) Safety & Boundaries (no personal data, stick to chapter content)\n"
        "7) Flow Control (ask→listen→acknowledge→hint/next; recap frequency)\n"
        "8) Assessment to Plan Handoff (what constitutes end-of-baseline)\n"
        "9) Example utterances (2-3 pairs)\n\n"
        "Keep it practical. No filler.\n\n"
        f"Chapter Content (excerpt, do not quote verbatim in every turn):\n{material[:20000]}"
    )


def _build_simple_system_prompt_request(lang: str, material: str) -> str:
    name = _language_name(lang)
    return (
        f"Write a concise SYSTEM PROMPT for a {name} child-friendly voice tutor. "
        f"Bullet rules: role & tone; language policy (only {name}); one short question per turn; "
        "adapt easy→hard; brief hints; safety; flow; assessment to plan handoff. Keep under 400 words.\n\n"
        f"Chapter excerpt:\n{material[:6000]}"
    )


def _build_bank_request(lang: str, material: str, *, count_hint: str, excerpt: int) -> str:
    return (
        f"Create a question bank (JSON only). Write questions and answers in {_language_name(lang)}.\n"
        "Return a JSON object: { \"questions\": [ { \"q\": string, \"a\": string, \"level\": \"easy\"|\"medium\"|\"hard\" } ] }.\n"
        "- Prioritize coverage of key chapter concepts\n"
        "- Keep q and a short, speakable, and child-friendly\n"
        f"- {count_hint}, balanced across levels\n\n"
        f"Chapter Content:\n{material[:excerpt]}"
    )


def validate_question_bank(data: Any) -> List[QuestionBankEntry]:
    """Accept ``{"questions": [...]}`` or a bare list; entries may use q/a/level or question/answer/difficulty."""
    questions = data.get("questions") if isinstance(data, dict) else data
    if not isinstance(questions, list):
        raise ValueError("questions must be a list")
    entries: List[QuestionBankEntry] = []
    for item in questions:
        if not isinstance(item, dict):
            continue
        q = item.get("q") or item.get("question")
        if not q or not str(q).strip():
            continue
        entries.append(
            QuestionBankEntry(
                q=q,
                a=item.get("a") or item.get("answer") or "",
                level=item.get("level") or item.get("difficulty"),
            )
        )
    return entries


async def generate_system_prompt(llm: GeminiClient, lang: str, material: str) -> str:
    try:
        text = await llm.generate(_build_system_prompt_request(lang, material))
    except UpstreamGenerationFailed as err:
        logger.warning("[PROMPT] First attempt failed: %s", err.message)
        text = ""
    if not text.strip():
        logger.warning("[PROMPT] Empty prompt, retrying with simplified request")
        try:
            text = await llm.generate(_build_simple_system_prompt_request(lang, material))
        except UpstreamGenerationFailed as err:
            logger.warning("[PROMPT] Retry failed: %s", err.message)
            text = ""
    if not text.strip():
        raise UpstreamGenerationFailed("prompt generation failed")
    return text.strip()


async def generate_question_bank(llm: GeminiClient, lang: str, material: str) -> List[QuestionBankEntry]:
    """Generate the course question bank; returns an empty list when both attempts fail."""
    attempts = (
        _build_bank_request(lang, material, count_hint="Aim for 20-40 total questions if content allows", excerpt=18000),
        _build_bank_request(lang, material, count_hint="Write exactly 15 questions", excerpt=6000),
    )
    for number, request in enumerate(attempts, start=1):
        result = await llm.generate_json(request, validate_question_bank)
        if isinstance(result, Success) and result.payload:
            return result.payload
        logger.warning("[PROMPT] Question bank attempt %d produced no questions", number)
    return []


async def generate_fallback_bank(llm: GeminiClient, lang: str, material: str) -> List[QuestionBankEntry]:
    request = (
        "Create a JSON object with key \"questions\" containing 20 items. Each item: "
        "{ \"q\": string (short, speakable, child-friendly), \"a\": string (concise ideal answer), "
        "\"level\": \"easy\"|\"medium\"|\"hard\" }. Cover key concepts from this chapter. "
        f"Language: {_language_name(lang)}.\n\nChapter Content:\n{material[:12000]}"
    )
    result = await llm.generate_json(request, validate_question_bank)
    if isinstance(result, Success):
        return result.payload
    logger.warning("[PAPER] Fallback question bank generation failed: %s", result.reason)
    return []


async def prepare_course(store: ContentStore, llm: GeminiClient, course_id: str) -> Tuple[str, int]:
    """Generate and persist the tutoring prompt and question bank for a course.

    Returns the prompt text and the number of bank questions saved.
    """
    course: Course = store.get_course(course_id)
    if not store.has_material(course):
        raise MaterialMissing()
    material = store.material_text(course)
    lang = course.prompt_language
    logger.info("[PROMPT] Generating system prompt for course %s, lang=%s, material chars=%d", course_id, lang, len(material))

    prompt_text = await generate_system_prompt(llm, lang, material)
    store.save_course_content(course.id, ARTIFACT_PROMPT, prompt_text)
    logger.info("[PROMPT] Prompt generated length=%d", len(prompt_text))

    bank = await generate_question_bank(llm, lang, material)
    if bank:
        store.save_question_bank(course, bank)
        logger.info("[PROMPT] Question bank saved count=%d", len(bank))
    else:
        # a failed regeneration keeps whatever bank the course already had
        bank = store.question_bank(course)
        logger.warning("[PROMPT] No new question bank; keeping existing count=%d", len(bank))

    course.prompt = True
    course.question_bank = len(bank) > 0
    store.save_course(course)
    return prompt_text, len(bank)
