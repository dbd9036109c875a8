"""Receipt pipeline and job orchestration.

``ReceiptPipeline`` runs the stages for one image, strictly in order:

    normalise -> OCR (only for text-based providers) -> structured
    extraction -> date validation -> reconciliation -> confidence

and returns one immutable ``ReconciledReceipt``. Soft failures (OCR
timeout, out-of-range date) degrade the result; every other error
propagates.

``JobOrchestrator`` wraps the pipeline in the job state machine. For
each job it notifies its listeners of ``PENDING``, then ``PROCESSING``
once a concurrency slot is free, then exactly one of ``COMPLETED`` or
``FAILED``. Fatal errors end the job in ``FAILED`` with the verbatim
cause; nothing is retried here. Running the same job id again simply
repeats the whole sequence and the listeners overwrite what they stored.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from tally.core.config import settings
from tally.core.context import PipelineContext
from tally.core.errors import DateOutOfRangeError, OCRTimeoutError, PipelineError, ProviderTimeoutError
from tally.core.observability import sentry_breadcrumb, sentry_capture, sentry_metric_inc
from tally.models.enums import JobState
from tally.models.schemas import FailureCause, OcrResult, RawImage, ReconciledReceipt
from tally.services.date_validator import validate_purchase_date
from tally.services.extractors import ReceiptExtractor, create_extractor
from tally.services.ocr_service import TextExtractionEngine
from tally.services.reconciliation import combine_confidence, compute_total, total_discrepancy
from tally.services.storage_service import mime_type_for
from tally.utils.image_processing import normalize_image

logger = logging.getLogger(__name__)

PipelineOutcome = Union[ReconciledReceipt, FailureCause]


class StateListener(Protocol):
    """Receives every state transition of every job, in order."""

    def on_state_change(
        self,
        job_id: str,
        state: JobState,
        receipt: Optional[ReconciledReceipt] = None,
        failure: Optional[FailureCause] = None,
    ) -> None: ...


class ImageSource(Protocol):
    def fetch(self, image_ref: str) -> bytes: ...


class ReceiptPipeline:
    """The stateless stage chain for a single receipt image."""

    def __init__(
        self,
        extractor: ReceiptExtractor,
        ocr_engine: Optional[TextExtractionEngine] = None,
        *,
        max_bytes: Optional[int] = None,
        allowed_mime_types: Optional[Iterable[str]] = None,
        max_dimension: Optional[int] = None,
        max_age_days: Optional[int] = None,
        dayfirst: Optional[bool] = None,
        extraction_timeout: Optional[float] = None,
    ) -> None:
        self.extractor = extractor
        self.ocr_engine = ocr_engine
        self.max_bytes = max_bytes
        self.allowed_mime_types = allowed_mime_types
        self.max_dimension = max_dimension
        self.max_age_days = max_age_days
        self.dayfirst = dayfirst
        # Providers bound their own calls; this catches one that does not.
        self.extraction_timeout = extraction_timeout or settings.EXTRACTION_TIMEOUT_SECONDS + 5

    @property
    def runs_ocr(self) -> bool:
        return self.extractor.requires_text and self.ocr_engine is not None

    async def _recognise(self, image, ctx: PipelineContext) -> OcrResult:
        try:
            result = await self.ocr_engine.extract(image)
        except OCRTimeoutError as exc:
            ctx.log.warning("OCR failed, continuing without text: %s", exc)
            sentry_metric_inc("pipeline.ocr.soft_failure")
            return OcrResult(text="", confidence=0.0)
        ctx.log.info("OCR chars=%d confidence=%.3f", len(result.text), result.confidence)
        return result

    def _validate_date(self, expr: Optional[str], ctx: PipelineContext) -> Optional[dt.date]:
        if expr is None:
            return None
        try:
            return validate_purchase_date(
                expr, today=ctx.today, max_age_days=self.max_age_days, dayfirst=self.dayfirst
            )
        except DateOutOfRangeError as exc:
            ctx.log.info("Dropping purchase date: %s", exc)
            return None

    async def process(self, raw: RawImage, ctx: PipelineContext) -> ReconciledReceipt:
        sentry_breadcrumb("pipeline", "normalise", data={"job_id": ctx.job_id, "bytes": len(raw.data)})
        image = await asyncio.to_thread(
            normalize_image,
            raw,
            max_bytes=self.max_bytes,
            allowed_mime_types=self.allowed_mime_types,
            max_dimension=self.max_dimension,
        )
        ctx.log.info("Normalised image to %dx%d", image.width, image.height)

        ocr: Optional[OcrResult] = None
        if self.runs_ocr:
            sentry_breadcrumb("pipeline", "ocr", data={"job_id": ctx.job_id})
            ocr = await self._recognise(image, ctx)

        sentry_breadcrumb("pipeline", "extract", data={"job_id": ctx.job_id, "provider": self.extractor.name})
        try:
            extraction = await asyncio.wait_for(
                self.extractor.parse(image, ocr.text if ocr else None), timeout=self.extraction_timeout
            )
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                f"{self.extractor.name} did not answer within {self.extraction_timeout:g}s",
                provider=self.extractor.name,
            ) from exc
        ctx.log.info(
            "Extracted provider=%s items=%d confidence=%.2f",
            extraction.provider, len(extraction.line_items), extraction.provider_confidence,
        )

        purchase_date = self._validate_date(extraction.purchase_date, ctx)
        computed = compute_total(extraction.line_items)
        discrepancy = total_discrepancy(extraction.declared_total, computed)
        if discrepancy:
            ctx.log.info("Totals differ: declared=%s computed=%s", extraction.declared_total, computed)

        overall = combine_confidence([ocr.confidence if ocr else None, extraction.provider_confidence])
        return ReconciledReceipt(
            merchant_name=extraction.merchant_name,
            purchase_date=purchase_date,
            line_items=extraction.line_items,
            declared_total=extraction.declared_total,
            computed_total=computed,
            discrepancy=discrepancy,
            currency=extraction.currency,
            provider=extraction.provider,
            provider_confidence=extraction.provider_confidence,
            ocr_confidence=ocr.confidence if ocr else None,
            overall_confidence=overall,
            raw_text=ocr.text if ocr else "",
        )


class JobOrchestrator:
    """Drive one pipeline run per job and report each state transition."""

    def __init__(
        self,
        pipeline: ReceiptPipeline,
        storage: ImageSource,
        listeners: Sequence[StateListener] = (),
        *,
        concurrency: Optional[int] = None,
        clock: Callable[[], dt.date] = dt.date.today,
        sink: Optional[logging.Logger] = None,
    ) -> None:
        self.pipeline = pipeline
        self.storage = storage
        self.listeners: List[StateListener] = list(listeners)
        self.concurrency = concurrency or settings.WORKER_CONCURRENCY
        self._slots = asyncio.Semaphore(self.concurrency)
        self._clock = clock
        self._sink = sink

    def add_listener(self, listener: StateListener) -> None:
        self.listeners.append(listener)

    async def aclose(self) -> None:
        """Close the provider client and any listener that holds a connection."""
        await self.pipeline.extractor.aclose()
        for listener in self.listeners:
            close = getattr(listener, "close", None)
            if callable(close):
                close()

    def _notify(
        self,
        ctx: PipelineContext,
        state: JobState,
        receipt: Optional[ReconciledReceipt] = None,
        failure: Optional[FailureCause] = None,
    ) -> None:
        ctx.log.info("-> %s (progress %d)", state.value, state.progress)
        sentry_breadcrumb("job", state.value, data={"job_id": ctx.job_id})
        for listener in self.listeners:
            try:
                listener.on_state_change(ctx.job_id, state, receipt=receipt, failure=failure)
            except Exception as exc:
                # remaining listeners still run
                ctx.log.exception("State listener %s failed for %s", type(listener).__name__, state.value)
                sentry_capture(exc)

    async def run_pipeline(self, job_id: str, image_ref: str) -> PipelineOutcome:
        """Run the whole pipeline for one job; returns the receipt or the failure cause."""
        ctx = PipelineContext.for_job(job_id, today=self._clock(), sink=self._sink)
        self._notify(ctx, JobState.PENDING)
        async with self._slots:
            self._notify(ctx, JobState.PROCESSING)
            try:
                data = await asyncio.to_thread(self.storage.fetch, image_ref)
                raw = RawImage(data=data, mime_type=mime_type_for(image_ref))
                receipt = await self.pipeline.process(raw, ctx)
            except Exception as exc:
                failure = FailureCause.from_exception(exc)
                ctx.log.error("Job failed: %s: %s", failure.error_type, failure.message)
                if not isinstance(exc, PipelineError):
                    sentry_capture(exc)
                sentry_metric_inc("pipeline.jobs.failed", tags={"error_type": failure.error_type})
                self._notify(ctx, JobState.FAILED, failure=failure)
                return failure
            sentry_metric_inc("pipeline.jobs.completed", tags={"provider": receipt.provider})
            self._notify(ctx, JobState.COMPLETED, receipt=receipt)
            return receipt

    async def run_many(self, jobs: Iterable[Tuple[str, str]]) -> List[PipelineOutcome]:
        """Run several jobs concurrently, at most ``concurrency`` at a time."""
        return list(await asyncio.gather(*(self.run_pipeline(job_id, ref) for job_id, ref in jobs)))


def build_pipeline(extractor: Optional[ReceiptExtractor] = None) -> ReceiptPipeline:
    """Assemble a pipeline from settings."""
    extractor = extractor or create_extractor()
    ocr_engine = TextExtractionEngine() if settings.OCR_ENABLED else None
    if extractor.requires_text and ocr_engine is None:
        logger.warning("Provider %s needs OCR text but OCR_ENABLED is false", extractor.name)
    return ReceiptPipeline(
        extractor,
        ocr_engine,
        max_bytes=settings.MAX_IMAGE_BYTES,
        allowed_mime_types=settings.ALLOWED_MIME_TYPES,
        max_dimension=settings.MAX_IMAGE_DIMENSION,
        max_age_days=settings.DATE_MAX_AGE_DAYS,
        dayfirst=settings.DATE_DAYFIRST,
    )
