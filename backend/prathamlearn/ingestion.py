from __future__ import annotations
import io
import logging
import re
import warnings
from typing import List, Optional

import pytesseract
from PIL import Image, UnidentifiedImageError
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError, PdfReadWarning

from .errors import UnsupportedInput

logger = logging.getLogger(__name__)

# Tesseract language packs per course language
_OCR_LANGS = {"hi": "hin+eng", "en": "eng", "auto": "eng"}


def word_count(text: str) -> int:
    return len(re.findall(r"\S+", (text or "").strip()))


def question_count_for(material: str) -> int:
    """Baseline question count sized by chapter length."""
    wc = word_count(material)
    if wc < 300:
        return 3
    if wc < 1200:
        return 5
    if wc < 3000:
        return 7
    return 10


def extract_pdf_text(data: bytes) -> str:
    pages: List[str] = []
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", PdfReadWarning)
            reader = PdfReader(io.BytesIO(data))
            for page in reader.pages:
                page_text = page.extract_text() or ""
                if page_text.strip():
                    pages.append(page_text.strip())
    except PdfReadError as e:
        raise UnsupportedInput(f"could not read PDF: {e}") from e
    return "\n".join(pages).strip()


def extract_image_text(data: bytes, language: str = "auto") -> str:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise UnsupportedInput("could not read image") from e
    return pytesseract.image_to_string(img, lang=_OCR_LANGS.get(language, "eng")).strip()


def extract_material(
    text: Optional[str],
    content: Optional[bytes] = None,
    mime_type: Optional[str] = None,
    *,
    language: str = "auto",
) -> str:
    """Combine pasted text and an uploaded file into one material blob.

    Raises UnsupportedInput for file types other than text, PDF and images, and
    when nothing readable was extracted.
    """
    extracted = ""
    if text:
        extracted += f"\n{text}"
    if content is not None:
        mime = (mime_type or "").lower()
        if mime == "application/pdf":
            extracted += f"\n{extract_pdf_text(content)}"
        elif mime.startswith("image/"):
            extracted += f"\n{extract_image_text(content, language)}"
        elif mime == "text/plain":
            extracted += f"\n{content.decode('utf-8', errors='replace')}"
        else:
            raise UnsupportedInput(f"unsupported mime type: {mime_type}")
    extracted = extracted.strip()
    if not extracted:
        raise UnsupportedInput("no content extracted")
    logger.info("Extracted %d characters of material", len(extracted))
    return extracted
