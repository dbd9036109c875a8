"""Pydantic schemas for pipeline data and API responses.

Pydantic models are used for validating and serialising data that
crosses a boundary: bytes entering the pipeline, JSON replies from
extraction providers, the reconciled receipt handed to persistence and
the job views returned by the API. Domain models are frozen; a
re-processed receipt is always a new object rather than a patched one.

Monetary amounts are ``Decimal`` throughout. Provider JSON is decoded
with ``parse_float=Decimal`` before it reaches these models so no value
ever passes through binary floating point.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .enums import JobState


# ---------------------------------------------------------------------------
# Images


class RawImage(BaseModel):
    """Bytes handed to one pipeline invocation plus their declared MIME type."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str


class NormalizedImage(BaseModel):
    """Extraction-ready image: 8-bit grayscale PNG with a bounded longest edge."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    width: int
    height: int
    mime_type: str = "image/png"


class OcrResult(BaseModel):
    """Raw text recognised on a receipt and the engine's mean confidence."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Extraction


class LineItem(BaseModel):
    """One product line on a receipt."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(min_length=1)
    unit_price: Decimal = Field(ge=0, validation_alias=AliasChoices("unit_price", "unitPrice", "price"))
    quantity: int = Field(default=1, ge=1)

    @field_validator("name", mode="before")
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("quantity", mode="before")
    def _coerce_quantity(cls, v):
        if v is None:
            return 1
        # 2.0 arrives as Decimal("2.0") from the JSON decoder
        if isinstance(v, Decimal) and v == v.to_integral_value():
            return int(v)
        return v

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class ProviderReceipt(BaseModel):
    """Schema every structured-extraction provider must reply with.

    Canonical keys are ``merchantName``, ``purchaseDate``, ``items``,
    ``declaredTotal``, ``currency`` and ``confidence``. The older
    ``storeName`` / ``date`` / ``total`` / ``price`` spellings are
    accepted as well.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    merchant_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("merchant_name", "merchantName", "storeName", "merchant"),
    )
    purchase_date: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("purchase_date", "purchaseDate", "date"),
    )
    items: List[LineItem] = Field(
        default_factory=list,
        validation_alias=AliasChoices("items", "lineItems", "line_items"),
    )
    declared_total: Optional[Decimal] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("declared_total", "declaredTotal", "total"),
    )
    currency: str = "USD"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("merchant_name", "purchase_date", mode="before")
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("items", mode="before")
    def _null_items(cls, v):
        return [] if v is None else v

    @field_validator("currency", mode="before")
    def _default_currency(cls, v):
        return "USD" if not v else str(v).strip().upper()


class ExtractionResult(BaseModel):
    """Output of exactly one structured extractor for one job."""

    model_config = ConfigDict(frozen=True)

    merchant_name: Optional[str] = None
    purchase_date: Optional[str] = None
    line_items: Tuple[LineItem, ...] = ()
    declared_total: Optional[Decimal] = None
    currency: str = "USD"
    provider_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    provider: str = "unknown"

    @classmethod
    def empty(cls, provider: str) -> "ExtractionResult":
        """Fail-closed result: no fields, no items, zero confidence."""
        return cls(provider=provider)

    @classmethod
    def from_provider(cls, payload: ProviderReceipt, provider: str) -> "ExtractionResult":
        return cls(
            merchant_name=payload.merchant_name,
            purchase_date=payload.purchase_date,
            line_items=tuple(payload.items),
            declared_total=payload.declared_total,
            currency=payload.currency,
            provider_confidence=payload.confidence,
            provider=provider,
        )

    @property
    def is_empty(self) -> bool:
        return not (self.merchant_name or self.purchase_date or self.line_items or self.declared_total is not None)


# ---------------------------------------------------------------------------
# Reconciled output


class ReconciledReceipt(BaseModel):
    """Extraction result after date validation, reconciliation and scoring."""

    model_config = ConfigDict(frozen=True)

    merchant_name: Optional[str] = None
    purchase_date: Optional[dt.date] = None
    line_items: Tuple[LineItem, ...] = ()
    declared_total: Optional[Decimal] = None
    computed_total: Decimal = Decimal("0")
    discrepancy: Optional[Decimal] = None
    currency: str = "USD"
    provider: str = "unknown"
    provider_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    ocr_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    overall_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    raw_text: str = ""

    def summary(self) -> Dict[str, Any]:
        """Compact, JSON-safe view used by the terminal status event."""
        return {
            "merchantName": self.merchant_name,
            "purchaseDate": self.purchase_date.isoformat() if self.purchase_date else None,
            "declaredTotal": str(self.declared_total) if self.declared_total is not None else None,
            "computedTotal": str(self.computed_total),
            "discrepancy": str(self.discrepancy) if self.discrepancy is not None else None,
            "currency": self.currency,
            "itemCount": len(self.line_items),
            "overallConfidence": self.overall_confidence,
        }


class FailureCause(BaseModel):
    """Why a job ended in ``FAILED``; ``message`` is the verbatim error text."""

    model_config = ConfigDict(frozen=True)

    error_type: str
    message: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> "FailureCause":
        return cls(error_type=type(exc).__name__, message=str(exc) or type(exc).__name__)

    def summary(self) -> Dict[str, Any]:
        return {"errorType": self.error_type, "error": self.message}


# ---------------------------------------------------------------------------
# Job views


class JobSnapshot(BaseModel):
    """Persisted state of one job as seen by readers such as the status stream."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    state: JobState
    image_ref: Optional[str] = None
    receipt: Optional[ReconciledReceipt] = None
    failure: Optional[FailureCause] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @property
    def progress(self) -> int:
        return self.state.progress

    def terminal_data(self) -> Dict[str, Any]:
        if self.state == JobState.COMPLETED and self.receipt is not None:
            return self.receipt.summary()
        if self.failure is not None:
            return self.failure.summary()
        return {}


class JobStatusRead(BaseModel):
    """API response for ``GET /receipts/{job_id}``."""

    job_id: str
    status: JobState
    progress: int
    receipt: Optional[ReconciledReceipt] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    updated_at: Optional[dt.datetime] = None

    @classmethod
    def from_snapshot(cls, snap: JobSnapshot) -> "JobStatusRead":
        return cls(
            job_id=snap.job_id,
            status=snap.state,
            progress=snap.progress,
            receipt=snap.receipt,
            error=snap.failure.message if snap.failure else None,
            error_type=snap.failure.error_type if snap.failure else None,
            updated_at=snap.updated_at,
        )
