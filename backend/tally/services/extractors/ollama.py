"""Ollama extractor: self-hosted vision or text models.

Uses a local Ollama runtime (LLaVA, Llama 3.2 Vision, Qwen2.5-VL, ...)
through its ``/api/generate`` endpoint with constrained JSON output.

Setup:
    ollama serve
    ollama pull llava

In ``vision`` mode the normalised image is sent base64-encoded and no
OCR text is needed. In ``text`` mode the OCR output is embedded in the
prompt and a text-only model is enough.
"""

from __future__ import annotations

import base64
import logging
import time
from typing import Optional

import httpx

from tally.core.config import settings
from tally.core.errors import ProviderTimeoutError, ProviderUnavailableError, SchemaViolationError
from tally.models.schemas import ExtractionResult, NormalizedImage
from tally.utils.prompts import get_receipt_json_schema, get_text_extraction_prompt, get_vision_extraction_prompt
from .base import ReceiptExtractor, validate_provider_payload

logger = logging.getLogger(__name__)


class OllamaExtractor(ReceiptExtractor):
    """Structured extraction through a local Ollama runtime."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
        mode: str = "vision",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if mode not in ("vision", "text"):
            raise ValueError(f"Unsupported Ollama mode: {mode}")
        self.base_url = (base_url or settings.OLLAMA_BASE_URL).rstrip("/")
        self.model = model or settings.OLLAMA_MODEL
        self.timeout = timeout if timeout is not None else settings.EXTRACTION_TIMEOUT_SECONDS
        self.temperature = temperature if temperature is not None else settings.EXTRACTION_TEMPERATURE
        self.mode = mode
        self.requires_text = mode == "text"
        self.name = "ollama" if mode == "vision" else "ollama-text"
        self._transport = transport
        logger.info(
            "[extraction:init] provider=%s base_url=%s model=%s timeout=%s",
            self.name, self.base_url, self.model, self.timeout,
        )

    def describe(self) -> str:
        return f"Ollama ({self.model}, {self.mode})"

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def build_request(self, image: NormalizedImage, text: Optional[str]) -> dict:
        body = {
            "model": self.model,
            "stream": False,
            "format": get_receipt_json_schema(),
            "options": {"temperature": self.temperature, "top_p": 0.9, "top_k": 40},
        }
        if self.mode == "vision":
            body["prompt"] = get_vision_extraction_prompt()
            body["images"] = [base64.b64encode(image.data).decode("utf-8")]
        else:
            body["prompt"] = get_text_extraction_prompt(text or "")
        return body

    async def parse(self, image: NormalizedImage, text: Optional[str] = None) -> ExtractionResult:
        url = f"{self.base_url}/api/generate"
        body = self.build_request(image, text)
        started = time.monotonic()
        try:
            async with self._client(self.timeout) as client:
                response = await client.post(url, json=body)
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(
                f"Ollama request timed out after {self.timeout}s", provider=self.name
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(f"Ollama unreachable at {url}: {exc}", provider=self.name) from exc

        if response.status_code >= 400:
            raise ProviderUnavailableError(
                f"Ollama API error: {response.status_code} {response.reason_phrase} - {response.text[:500]}",
                provider=self.name,
                status_code=response.status_code,
            )
        try:
            envelope = response.json()
        except ValueError as exc:
            raise SchemaViolationError(f"Ollama returned a non-JSON envelope: {exc}") from exc
        if not isinstance(envelope, dict) or "response" not in envelope:
            raise SchemaViolationError("Ollama envelope is missing the 'response' field")

        result = validate_provider_payload(envelope["response"], self.name)
        logger.info(
            "[extraction] provider=%s model=%s items=%d duration_ms=%d",
            self.name, self.model, len(result.line_items), int((time.monotonic() - started) * 1000),
        )
        return result

    async def health_check(self) -> bool:
        try:
            async with self._client(5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
            return response.status_code == 200
        except httpx.HTTPError as exc:
            logger.warning("[extraction] Ollama health check failed: %s", exc)
            return False
