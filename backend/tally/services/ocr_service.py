"""OCR service: extract raw text from a normalised receipt image.

Tesseract is driven through ``pytesseract``. Recognition is restricted
to characters that actually appear on receipts (digits, latin letters,
currency and date punctuation) which cuts down on misreads, and the
page segmentation mode defaults to fully automatic layout analysis
because receipts mix header blocks, item columns and footers rather
than uniform paragraphs.

The engine is blocking, so the async entry point runs it in a worker
thread. A timeout or a crash of the Tesseract process raises
``OCRTimeoutError``; the orchestrator treats that as a soft failure.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple

import pytesseract
from PIL import Image

from tally.core.config import settings
from tally.core.errors import OCRTimeoutError
from tally.models.schemas import NormalizedImage, OcrResult

logger = logging.getLogger(__name__)


class TextExtractionEngine:
    """Thin wrapper around Tesseract tuned for receipts."""

    def __init__(
        self,
        language: Optional[str] = None,
        psm: Optional[int] = None,
        char_whitelist: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.language = language or settings.OCR_LANGUAGE
        self.psm = psm if psm is not None else settings.OCR_PSM
        self.char_whitelist = char_whitelist if char_whitelist is not None else settings.OCR_CHAR_WHITELIST
        self.timeout = timeout if timeout is not None else settings.OCR_TIMEOUT_SECONDS

    @property
    def config(self) -> str:
        parts = [f"--psm {self.psm}", "-c preserve_interword_spaces=1"]
        if self.char_whitelist:
            parts.append(f"-c tessedit_char_whitelist={shlex.quote(self.char_whitelist)}")
        return " ".join(parts)

    def extract_sync(self, image: NormalizedImage) -> OcrResult:
        """Run Tesseract and return recognised text with mean word confidence."""
        try:
            with Image.open(BytesIO(image.data)) as img:
                data = pytesseract.image_to_data(
                    img,
                    lang=self.language,
                    config=self.config,
                    output_type=pytesseract.Output.DICT,
                    timeout=self.timeout,
                )
        except RuntimeError as exc:
            # pytesseract signals a killed process with RuntimeError("Tesseract process timeout")
            raise OCRTimeoutError(f"OCR timed out after {self.timeout}s: {exc}") from exc
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError) as exc:
            raise OCRTimeoutError(f"OCR engine failed: {exc}") from exc
        text, confidence = assemble_ocr_data(data)
        logger.debug("[ocr] chars=%d confidence=%.3f", len(text), confidence)
        return OcrResult(text=text, confidence=confidence)

    async def extract(self, image: NormalizedImage) -> OcrResult:
        # Grace period lets Tesseract's own timeout fire first and kill the subprocess.
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.extract_sync, image), timeout=self.timeout + 5)
        except asyncio.TimeoutError as exc:
            raise OCRTimeoutError(f"OCR timed out after {self.timeout}s") from exc


def assemble_ocr_data(data: Dict[str, List[Any]]) -> Tuple[str, float]:
    """Rebuild line-broken text and a 0..1 confidence from ``image_to_data`` output."""
    lines: Dict[Tuple[int, int, int], List[str]] = {}
    confidences: List[float] = []
    words = data.get("text", [])
    for i, word in enumerate(words):
        word = (word or "").strip()
        if not word:
            continue
        try:
            conf = float(data["conf"][i])
        except (KeyError, IndexError, TypeError, ValueError):
            conf = -1.0
        if conf >= 0:
            confidences.append(conf)
        key = (
            int(data.get("block_num", [0] * len(words))[i]),
            int(data.get("par_num", [0] * len(words))[i]),
            int(data.get("line_num", [0] * len(words))[i]),
        )
        lines.setdefault(key, []).append(word)
    text = "\n".join(" ".join(ws) for _, ws in sorted(lines.items()))
    if not confidences:
        return text, 0.0
    mean = sum(confidences) / len(confidences) / 100.0
    return text, max(0.0, min(1.0, mean))
