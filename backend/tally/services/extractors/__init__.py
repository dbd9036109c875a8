"""Structured extraction providers.

Providers are registered by name and the active one is chosen once at
startup from ``EXTRACTION_PROVIDER``. There is no fallback chain: a
provider that fails fails the job.

Available names:

* ``ollama``       local vision model through an Ollama runtime
* ``ollama-text``  local text model fed OCR output
* ``openai``       OpenAI-compatible cloud vision model
* ``openai-text``  OpenAI-compatible cloud text model fed OCR output
* ``heuristic``    regex line scanner, the default when nothing is configured
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from tally.core.config import Settings, settings as default_settings
from .base import ReceiptExtractor, validate_provider_payload
from .heuristic import HeuristicExtractor
from .ollama import OllamaExtractor
from .openai_provider import OpenAIExtractor

logger = logging.getLogger(__name__)

ExtractorFactory = Callable[[Settings], ReceiptExtractor]

_REGISTRY: Dict[str, ExtractorFactory] = {}


def register_extractor(name: str) -> Callable[[ExtractorFactory], ExtractorFactory]:
    """Decorator adding a factory to the provider registry under ``name``."""

    def decorator(factory: ExtractorFactory) -> ExtractorFactory:
        _REGISTRY[name.lower()] = factory
        return factory

    return decorator


def available_providers() -> List[str]:
    return sorted(_REGISTRY)


def create_extractor(name: Optional[str] = None, settings: Optional[Settings] = None) -> ReceiptExtractor:
    """Instantiate the provider registered as ``name`` (default: from settings).

    :raises ValueError: for an unknown provider name
    """
    cfg = settings or default_settings
    key = (name or cfg.extraction_provider).strip().lower()
    try:
        factory = _REGISTRY[key]
    except KeyError:
        raise ValueError(
            f"Unknown extraction provider '{key}'. Available: {', '.join(available_providers())}"
        ) from None
    extractor = factory(cfg)
    logger.info("[extraction] selected provider=%s (%s)", extractor.name, extractor.describe())
    return extractor


@register_extractor("heuristic")
def _heuristic(cfg: Settings) -> ReceiptExtractor:
    return HeuristicExtractor()


@register_extractor("ollama")
def _ollama(cfg: Settings) -> ReceiptExtractor:
    return OllamaExtractor(
        base_url=cfg.OLLAMA_BASE_URL,
        model=cfg.OLLAMA_MODEL,
        timeout=cfg.EXTRACTION_TIMEOUT_SECONDS,
        temperature=cfg.EXTRACTION_TEMPERATURE,
        mode="vision",
    )


@register_extractor("ollama-text")
def _ollama_text(cfg: Settings) -> ReceiptExtractor:
    return OllamaExtractor(
        base_url=cfg.OLLAMA_BASE_URL,
        model=cfg.OLLAMA_MODEL,
        timeout=cfg.EXTRACTION_TIMEOUT_SECONDS,
        temperature=cfg.EXTRACTION_TEMPERATURE,
        mode="text",
    )


def _openai(cfg: Settings, mode: str) -> ReceiptExtractor:
    return OpenAIExtractor(
        api_key=cfg.OPENAI_API_KEY,
        model=cfg.OPENAI_MODEL,
        base_url=cfg.OPENAI_BASE_URL,
        timeout=cfg.EXTRACTION_TIMEOUT_SECONDS,
        temperature=cfg.EXTRACTION_TEMPERATURE,
        max_completion_tokens=cfg.OPENAI_MAX_COMPLETION_TOKENS,
        mode=mode,
    )


register_extractor("openai")(lambda cfg: _openai(cfg, "vision"))
register_extractor("openai-text")(lambda cfg: _openai(cfg, "text"))


__all__ = [
    "ReceiptExtractor",
    "HeuristicExtractor",
    "OllamaExtractor",
    "OpenAIExtractor",
    "available_providers",
    "create_extractor",
    "register_extractor",
    "validate_provider_payload",
]
