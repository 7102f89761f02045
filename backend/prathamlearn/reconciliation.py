"""
Transcript Reconciliation
=========================

Turns a spoken assessment transcript into scored question/answer pairs and
replaces the session history with them.

The transcript is turn-tagged text produced by the voice client:

    Assistant: What do plants need to make their food?
    [USER ANSWER]: sun light
    Assistant: Okay. Which part of the plant takes in wat
    [USER ANSWER]: roots

Three problems make a naive line-by-line reading wrong:

1. The assistant can be interrupted mid-question. Cut-off fragments are
   reconstructed against the course question bank.
2. Learner speech is finalized late, so an answer marker may land after the
   next question has already started. Answers are tied to the question that
   preceded them in conversational time (see ``align_pairs``).
3. Speech recognition mangles words ("kao" for "cow"), and children answer
   loosely. Judging correctness is left to the language model.

A deterministic pre-pass (``candidate_pairs``) handles 1 and 2 and is given to
the model as a hint; the model's answer is authoritative but must validate. If
it does not, the call fails with AnalysisFailed and the session is untouched.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from difflib import SequenceMatcher
from typing import Any, Dict, List, Optional

from .errors import AnalysisFailed
from .gemini_client import GeminiClient
from .llm_json import Success
from .schemas import InteractionRecord, QuestionBankEntry, classify_proficiency
from .store import ContentStore

logger = logging.getLogger(__name__)

ASSISTANT = "assistant"
LEARNER = "learner"

ANSWER_MARKER = re.compile(r"\[\s*USER\s+ANSWER\s*\]\s*:?", re.IGNORECASE)
_SPEAKER_PREFIX = re.compile(
    r"^\s*(?:\[\s*)?(assistant|agent|tutor|ai|bot|user|learner|student|child)(?:\s*\])?\s*:\s*",
    re.IGNORECASE,
)
_LEARNER_SPEAKERS = {"user", "learner", "student", "child"}
_SENTENCE = re.compile(r"[^.!?]+[.!?]*")
_ACKNOWLEDGEMENTS = {"okay", "ok", "alright", "all right", "good", "great", "thank you", "thanks"}

# How far a cut-off fragment must resemble the start of a bank question
RECONSTRUCT_THRESHOLD = 0.8
BANK_MATCH_THRESHOLD = 0.85
PROMPT_BANK_LIMIT = 20


@dataclass
class Turn:
    speaker: str
    text: str
    marked: bool = False


@dataclass
class CandidatePair:
    question: str
    answer: str = ""
    interrupted: bool = False
    reference_answer: Optional[str] = None
    answers: List[str] = field(default_factory=list, repr=False)


@dataclass
class ReconciledPair:
    question: str
    user_answer: str
    correct: bool
    feedback: str = ""

    def to_record(self) -> InteractionRecord:
        return InteractionRecord(q=self.question, a=self.user_answer, correct=self.correct, feedback=self.feedback or None)


@dataclass
class ReconciliationOutcome:
    qa_pairs: List[ReconciledPair]
    score: int
    total: int
    level: str

    def to_response(self) -> Dict[str, Any]:
        return {
            "qa_pairs": [asdict(p) for p in self.qa_pairs],
            "score": self.score,
            "total": self.total,
            "level": self.level,
        }


# ----------------------------------------------------------------------------
# Deterministic pre-pass
# ----------------------------------------------------------------------------

def _normalize(text: str) -> str:
    cleaned = re.sub(r"[^\w\s]", " ", (text or "").lower())
    return re.sub(r"\s+", " ", cleaned).strip()


def parse_turns(transcript: str) -> List[Turn]:
    """Split a transcript into speaker turns.

    Lines prefixed with a speaker label start a new turn; unlabelled lines
    continue the previous speaker (the assistant when nothing came before).
    Text after an ``[USER ANSWER]:`` marker, up to the end of the line, is a
    marked learner turn even when the marker sits in the middle of a line.
    """
    turns: List[Turn] = []
    speaker = ASSISTANT
    for raw_line in (transcript or "").splitlines():
        line = raw_line.strip()
        if not line:
            continue
        prefix = _SPEAKER_PREFIX.match(line)
        if prefix:
            speaker = LEARNER if prefix.group(1).lower() in _LEARNER_SPEAKERS else ASSISTANT
            line = line[prefix.end():]
        pieces = ANSWER_MARKER.split(line)
        head = pieces[0].strip()
        if head:
            turns.append(Turn(speaker=speaker, text=head))
        for answer in pieces[1:]:
            answer = answer.strip()
            if answer:
                turns.append(Turn(speaker=LEARNER, text=answer, marked=True))
        if len(pieces) > 1:
            # After an inline marker the assistant has the floor again
            speaker = ASSISTANT
    return turns


def reconstruct_question(fragment: str, bank: List[QuestionBankEntry]) -> Optional[QuestionBankEntry]:
    """Find the bank question a cut-off fragment was the beginning of."""
    frag = _normalize(fragment)
    if len(frag.split()) < 2:
        return None
    best: Optional[QuestionBankEntry] = None
    best_ratio = 0.0
    for entry in bank:
        full = _normalize(entry.q)
        if not full:
            continue
        if full.startswith(frag):
            ratio = 1.0
        else:
            ratio = SequenceMatcher(None, frag, full[: len(frag)]).ratio()
        if ratio > best_ratio:
            best, best_ratio = entry, ratio
    return best if best_ratio >= RECONSTRUCT_THRESHOLD else None


def match_bank_entry(question: str, bank: List[QuestionBankEntry]) -> Optional[QuestionBankEntry]:
    target = _normalize(question)
    best: Optional[QuestionBankEntry] = None
    best_ratio = 0.0
    for entry in bank:
        ratio = SequenceMatcher(None, target, _normalize(entry.q)).ratio()
        if ratio > best_ratio:
            best, best_ratio = entry, ratio
    return best if best_ratio >= BANK_MATCH_THRESHOLD else None


def extract_questions(turn: Turn, bank: List[QuestionBankEntry]) -> List[CandidatePair]:
    """Questions asked in one assistant turn, with cut-off endings reconstructed."""
    sentences = [s.strip() for s in _SENTENCE.findall(turn.text) if s.strip()]
    found: List[CandidatePair] = []
    for index, sentence in enumerate(sentences):
        if sentence.endswith("?"):
            entry = match_bank_entry(sentence, bank)
            found.append(CandidatePair(question=sentence, reference_answer=entry.a if entry else None))
            continue
        is_last = index == len(sentences) - 1
        if not is_last or sentence.endswith((".", "!")):
            continue
        if _normalize(sentence) in _ACKNOWLEDGEMENTS:
            continue
        entry = reconstruct_question(sentence, bank)
        if entry is not None:
            found.append(CandidatePair(question=entry.q, interrupted=True, reference_answer=entry.a))
    return found


def _assign_run(questions: List[CandidatePair], run: List[str]) -> None:
    """Hand a run of consecutive answer markers to the questions they answer.

    A run of m markers that follows k unanswered questions (m, k >= 2) answers
    the last min(m, k) of them in order. A single marker, or any marker left
    over, belongs to the latest question.
    """
    if not questions or not run:
        return
    unanswered = 0
    for pair in reversed(questions):
        if pair.answers:
            break
        unanswered += 1
    if len(run) >= 2 and unanswered >= 2:
        targets = questions[len(questions) - min(len(run), unanswered):]
        for target, answer in zip(targets, run):
            target.answers.append(answer)
        run = run[len(targets):]
    questions[-1].answers.extend(run)


def align_pairs(turns: List[Turn], bank: List[QuestionBankEntry]) -> List[CandidatePair]:
    """Attach each marked answer to the question it answers in conversational time.

    Consecutive markers with no new question between them form a run and are
    placed by ``_assign_run``. Answers that arrive before any question are
    ignored.
    """
    questions: List[CandidatePair] = []
    run: List[str] = []
    for turn in turns:
        if turn.speaker == ASSISTANT:
            asked = extract_questions(turn, bank)
            if asked:
                _assign_run(questions, run)
                run = []
                questions.extend(asked)
            continue
        if turn.marked and questions:
            run.append(turn.text)
    _assign_run(questions, run)
    for pair in questions:
        pair.answer = " ".join(pair.answers)
    return questions


def candidate_pairs(transcript: str, bank: List[QuestionBankEntry]) -> List[CandidatePair]:
    return align_pairs(parse_turns(transcript), bank)


# ----------------------------------------------------------------------------
# Model-backed reconciliation
# ----------------------------------------------------------------------------

def _coerce_correct(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValueError("correct must be true or false")


def validate_reconciliation(data: Any) -> List[ReconciledPair]:
    """Validate ``{"qa_pairs": [{question, user_answer, correct, feedback}]}``."""
    if not isinstance(data, dict) or not isinstance(data.get("qa_pairs"), list):
        raise ValueError("expected an object with a qa_pairs list")
    pairs: List[ReconciledPair] = []
    for item in data["qa_pairs"]:
        if not isinstance(item, dict):
            raise ValueError("qa_pairs entries must be objects")
        question = str(item.get("question") or "").strip()
        if not question:
            raise ValueError("qa_pairs entry without question")
        answer = item.get("user_answer", item.get("answer"))
        pairs.append(
            ReconciledPair(
                question=question,
                user_answer="" if answer is None else str(answer).strip(),
                correct=_coerce_correct(item.get("correct")),
                feedback=str(item.get("feedback") or "").strip(),
            )
        )
    return pairs


def build_analysis_prompt(transcript: str, bank: List[QuestionBankEntry], candidates: List[CandidatePair]) -> str:
    bank_json = json.dumps([e.model_dump() for e in bank[:PROMPT_BANK_LIMIT]], ensure_ascii=False, indent=2)
    hints = json.dumps(
        [
            {"question": c.question, "user_answer": c.answer, "reconstructed": c.interrupted}
            for c in candidates
        ],
        ensure_ascii=False,
        indent=2,
    )
    return f"""Analyze this voice assessment conversation transcript and extract Q&A pairs.

Question Bank (expected questions):
{bank_json}

Conversation Transcript:
{transcript}

Pre-aligned candidate pairs (a best guess; correct them where the transcript disagrees):
{hints}

Instructions:
1. Look for questions asked by the Assistant (usually ending with "?")
2. Find the corresponding user answer marked with [USER ANSWER]:. It sometimes comes AFTER the next question, which means the answer to question 1 is most probably after question 2
3. The assistant may be interrupted while speaking, so reconstruct the full question
4. Match questions to the question bank where possible
5. The speech may be transcribed wrongly; look for patterns, for example if the answer was "Cow" the transcript might have "kao"

Return JSON only in this format:
{{
  "qa_pairs": [
    {{
      "question": "exact question from transcript or matched from question bank",
      "user_answer": "what the user answered",
      "correct": true,
      "feedback": "brief explanation"
    }}
  ]
}}

Important:
- Map each user answer to the question that was asked most recently before that answer in the conversation
- If a user answer appears while the assistant is still asking a question, wait for the complete question
- Evaluate answers against the chapter content
- Be lenient with children's answers (accept partial correctness)
- If the user says "I don't know" or similar, mark it incorrect but keep the feedback encouraging
- Consider the sequence: Question -> User Answer -> Agent Response -> Next Question"""


def complete_truncated(pairs: List[ReconciledPair], bank: List[QuestionBankEntry]) -> None:
    for pair in pairs:
        if pair.question.endswith("?"):
            continue
        entry = reconstruct_question(pair.question, bank)
        if entry is not None:
            pair.question = entry.q


async def reconcile_transcript(
    store: ContentStore,
    llm: GeminiClient,
    session_id: str,
    transcript: str,
) -> ReconciliationOutcome:
    """Replace a session's history with pairs reconciled from a transcript.

    Raises:
        SessionNotFound / CourseNotFound: missing session or owning course.
        AnalysisFailed: the model output did not validate; nothing is written.
    """
    async with store.lock("session", session_id):
        session = store.get_session(session_id)
        course = store.get_course(session.course_id)
        bank = store.question_bank(course)

        candidates = candidate_pairs(transcript, bank)
        logger.info("[ANALYZE] Session %s: %d candidate pairs from pre-pass", session_id, len(candidates))

        result = await llm.generate_json(
            build_analysis_prompt(transcript, bank, candidates),
            validate_reconciliation,
            max_output_tokens=2000,
        )
        if not isinstance(result, Success):
            logger.error("[ANALYZE] Unparseable analysis for session %s: %s", session_id, result.reason)
            raise AnalysisFailed()

        pairs: List[ReconciledPair] = result.payload
        complete_truncated(pairs, bank)
        session.replace_history([p.to_record() for p in pairs])
        session.proficiency = classify_proficiency(session.score, session.total)
        store.save_session(session)

    logger.info("[ANALYZE] Extracted %d Q&A pairs, score: %d/%d", session.total, session.score, session.total)
    return ReconciliationOutcome(qa_pairs=pairs, score=session.score, total=session.total, level=session.proficiency)
