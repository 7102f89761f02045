"""
Typed results for model output that is supposed to be JSON.

Every call site that asks the model for structured data receives either
``Success(payload)`` or ``Malformed(raw_text, reason)`` and must pick its own
fallback or failure policy.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union


@dataclass(frozen=True)
class Success:
    payload: Any


@dataclass(frozen=True)
class Malformed:
    raw_text: str
    reason: str = "unparseable model output"


ModelResult = Union[Success, Malformed]

_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def _loads(candidate: str) -> Optional[Any]:
    try:
        return json.loads(candidate)
    except (TypeError, ValueError):
        return None


def extract_json(text: Optional[str]) -> Optional[Any]:
    """Best-effort extraction of the first JSON document in model output.

    Tries the raw text, then a fenced ```json block, then the widest ``{...}``
    and ``[...]`` spans. Returns None when nothing parses.
    """
    if not text or not text.strip():
        return None
    stripped = text.strip()
    data = _loads(stripped)
    if data is not None:
        return data
    fenced = _CODE_FENCE.search(stripped)
    if fenced:
        data = _loads(fenced.group(1))
        if data is not None:
            return data
    for open_char, close_char in (("{", "}"), ("[", "]")):
        first = stripped.find(open_char)
        last = stripped.rfind(close_char)
        if first != -1 and last > first:
            data = _loads(stripped[first : last + 1])
            if data is not None:
                return data
    return None


def parse_model_json(
    text: Optional[str],
    validate: Optional[Callable[[Any], Any]] = None,
) -> ModelResult:
    """Parse model output into a ModelResult.

    ``validate`` may reshape the decoded payload; raising ValueError, TypeError
    or KeyError from it marks the output as malformed.
    """
    raw = text or ""
    data = extract_json(raw)
    if data is None:
        return Malformed(raw, "no JSON document found")
    if validate is None:
        return Success(data)
    try:
        return Success(validate(data))
    except (ValueError, TypeError, KeyError) as exc:
        return Malformed(raw, str(exc) or exc.__class__.__name__)
