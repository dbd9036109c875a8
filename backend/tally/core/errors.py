"""Exception taxonomy for the receipt pipeline.

Every error raised by a pipeline stage derives from ``PipelineError``.
The ``is_fatal`` flag tells the orchestrator whether the job must move
to ``FAILED`` or whether the stage degrades the result and the job may
still complete.

Fatal: ``ImageDecodeError``, ``ProviderUnavailableError`` (and its
``ProviderTimeoutError`` subclass), ``SchemaViolationError`` and
``StorageError``.

Soft: ``OCRTimeoutError`` (OCR text becomes empty, confidence 0) and
``DateOutOfRangeError`` (purchase date becomes absent).
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all typed pipeline failures."""

    is_fatal: bool = True


class ImageDecodeError(PipelineError):
    """The input bytes could not be decoded or are not an accepted image."""


class OCRTimeoutError(PipelineError):
    """The OCR engine timed out or crashed."""

    is_fatal = False


class ProviderUnavailableError(PipelineError):
    """A structured-extraction provider failed at the transport, auth or rate-limit level."""

    def __init__(self, message: str, *, provider: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ProviderTimeoutError(ProviderUnavailableError):
    """A provider call exceeded its configured timeout."""


class SchemaViolationError(PipelineError):
    """A provider replied with output that does not match the receipt schema."""


class DateOutOfRangeError(PipelineError):
    """A purchase date could not be parsed or lies outside the accepted window."""

    is_fatal = False


class StorageError(PipelineError):
    """The receipt image could not be read from object storage."""


__all__ = [
    "PipelineError",
    "ImageDecodeError",
    "OCRTimeoutError",
    "ProviderUnavailableError",
    "ProviderTimeoutError",
    "SchemaViolationError",
    "DateOutOfRangeError",
    "StorageError",
]
