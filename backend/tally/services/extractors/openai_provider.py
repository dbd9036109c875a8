"""OpenAI-compatible cloud extractor.

Calls a chat-completions endpoint with a bearer token and a model
identifier. ``OPENAI_BASE_URL`` points the client at any compatible
service (for example GitHub Models at
``https://models.github.ai/inference``), so one implementation covers
every hosted provider that speaks this API.

The SDK's own retries are disabled: a failed call is reported to the
orchestrator, which fails the job rather than retrying inside the core.
"""

from __future__ import annotations

import base64
import logging
import time
from typing import Any, Optional

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
)

from tally.core.config import settings
from tally.core.errors import ProviderTimeoutError, ProviderUnavailableError, SchemaViolationError
from tally.models.schemas import ExtractionResult, NormalizedImage
from tally.utils.prompts import get_text_extraction_prompt, get_vision_extraction_prompt
from .base import ReceiptExtractor, validate_provider_payload

logger = logging.getLogger(__name__)


class OpenAIExtractor(ReceiptExtractor):
    """Structured extraction through an OpenAI-compatible chat-completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
        max_completion_tokens: Optional[int] = None,
        mode: str = "vision",
        client: Any = None,
    ) -> None:
        if mode not in ("vision", "text"):
            raise ValueError(f"Unsupported OpenAI mode: {mode}")
        self.mode = mode
        self.requires_text = mode == "text"
        self.name = "openai" if mode == "vision" else "openai-text"
        self.model = model or settings.OPENAI_MODEL
        self.timeout = timeout if timeout is not None else settings.EXTRACTION_TIMEOUT_SECONDS
        self.temperature = temperature if temperature is not None else settings.EXTRACTION_TEMPERATURE
        self.max_completion_tokens = max_completion_tokens or settings.OPENAI_MAX_COMPLETION_TOKENS
        if client is None:
            key = api_key or settings.OPENAI_API_KEY
            if not key:
                raise ProviderUnavailableError(
                    "OPENAI_API_KEY is required for the OpenAI extraction provider", provider=self.name
                )
            client = AsyncOpenAI(
                api_key=key,
                base_url=base_url or settings.OPENAI_BASE_URL,
                timeout=self.timeout,
                max_retries=0,
            )
        self._client = client
        logger.info("[extraction:init] provider=%s model=%s timeout=%s", self.name, self.model, self.timeout)

    def describe(self) -> str:
        return f"OpenAI-compatible ({self.model}, {self.mode})"

    def build_messages(self, image: NormalizedImage, text: Optional[str]) -> list[dict]:
        if self.mode == "text":
            return [{"role": "user", "content": get_text_extraction_prompt(text or "")}]
        b64 = base64.b64encode(image.data).decode("utf-8")
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": get_vision_extraction_prompt()},
                    {"type": "image_url", "image_url": {"url": f"data:{image.mime_type};base64,{b64}"}},
                ],
            }
        ]

    async def parse(self, image: NormalizedImage, text: Optional[str] = None) -> ExtractionResult:
        started = time.monotonic()
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(image, text),
                response_format={"type": "json_object"},
                temperature=self.temperature,
                max_completion_tokens=self.max_completion_tokens,
            )
        except APITimeoutError as exc:
            raise ProviderTimeoutError(
                f"{self.name} request timed out after {self.timeout}s", provider=self.name
            ) from exc
        except APIConnectionError as exc:
            raise ProviderUnavailableError(f"{self.name} unreachable: {exc}", provider=self.name) from exc
        except APIStatusError as exc:
            raise ProviderUnavailableError(
                f"{self.name} API error: {exc.status_code} - {exc.message}",
                provider=self.name,
                status_code=exc.status_code,
            ) from exc

        choices = getattr(completion, "choices", None) or []
        if not choices:
            raise SchemaViolationError(f"{self.name} returned no choices")
        message = choices[0].message
        if getattr(message, "refusal", None):
            logger.warning("[extraction] provider=%s refused: %s", self.name, message.refusal)
            return ExtractionResult.empty(self.name)
        content = message.content
        if isinstance(content, list):
            content = "".join(getattr(p, "text", "") for p in content)
        result = validate_provider_payload(content or "", self.name)
        logger.info(
            "[extraction] provider=%s model=%s items=%d duration_ms=%d",
            self.name, self.model, len(result.line_items), int((time.monotonic() - started) * 1000),
        )
        return result

    async def health_check(self) -> bool:
        try:
            await self._client.models.list()
            return True
        except Exception as exc:
            logger.warning("[extraction] %s health check failed: %s", self.name, exc)
            return False

    async def aclose(self) -> None:
        await self._client.close()
