"""Structured extractor contract shared by every provider.

A provider turns a normalised receipt image (or the OCR text of one)
into an ``ExtractionResult``. Model-backed providers reply with JSON
that is validated against ``ProviderReceipt``; anything that does not
decode or does not conform raises ``SchemaViolationError`` so partially
typed data never reaches reconciliation.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import ValidationError

from tally.core.errors import SchemaViolationError
from tally.models.schemas import ExtractionResult, NormalizedImage, ProviderReceipt
from tally.utils.helpers import loads_decimal

logger = logging.getLogger(__name__)


class ReceiptExtractor(ABC):
    """Capability interface: ``parse(image, text?) -> ExtractionResult``."""

    #: Registry name, also stamped on every result as ``provider``.
    name: str = "base"
    #: True when the provider consumes OCR text instead of the image.
    requires_text: bool = False

    @abstractmethod
    async def parse(self, image: NormalizedImage, text: Optional[str] = None) -> ExtractionResult:
        """Extract structured receipt data."""

    async def health_check(self) -> bool:
        """Return True when the provider is reachable."""
        return True

    async def aclose(self) -> None:
        """Release network clients held by the provider."""

    def describe(self) -> str:
        return self.name


def validate_provider_payload(raw: Any, provider: str) -> ExtractionResult:
    """Validate a provider reply (JSON text or an already-decoded dict).

    :raises SchemaViolationError: when the reply is not JSON or does not match
        the receipt schema
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        text = _strip_code_fence(raw)
        if not text:
            raise SchemaViolationError(f"{provider} returned an empty reply")
        try:
            raw = loads_decimal(text)
        except json.JSONDecodeError as exc:
            raise SchemaViolationError(f"{provider} returned invalid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise SchemaViolationError(f"{provider} returned {type(raw).__name__}, expected a JSON object")
    try:
        payload = ProviderReceipt.model_validate(raw)
    except ValidationError as exc:
        raise SchemaViolationError(f"{provider} reply does not match the receipt schema: {exc}") from exc
    result = ExtractionResult.from_provider(payload, provider)
    if result.is_empty:
        # Valid but empty (e.g. a refusal): kept as a low-confidence result.
        logger.warning("[extraction] %s returned an empty receipt", provider)
        return ExtractionResult.empty(provider)
    return result


def _strip_code_fence(text: str) -> str:
    """Remove a surrounding Markdown code fence some models add despite instructions."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()
