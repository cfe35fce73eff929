"""
Pydantic models for pipeline state, fulfillment requests/results
and the prescription history log.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .inventory import ReconciliationReport
from .prescription import AnalyzedPrescription, PrescribedMedication
from .sale import DeliveryOptions, Sale


class PipelineState(str, Enum):
    CAPTURED = "captured"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    VERIFYING = "verifying"
    RECONCILING = "reconciling"
    READY_FOR_SELECTION = "ready_for_selection"
    FULFILLING = "fulfilling"
    FULFILLED = "fulfilled"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    ABORTED = "aborted"


HistoryStatus = Literal["analyzed", "dispensed", "partial"]
Decision = Literal["skip", "add_to_inventory"]


# ── Scan pipeline ─────────────────────────────────────────────

class PipelineResult(BaseModel):
    state: PipelineState
    prescription: Optional[AnalyzedPrescription] = None
    reconciliation: Optional[ReconciliationReport] = None
    failed_stage: Optional[str] = None
    error: Optional[str] = None
    next_actions: list[str] = Field(default_factory=list)
    processing_time_ms: int = 0


# ── Fulfillment ───────────────────────────────────────────────

class FulfillmentPlan(BaseModel):
    """Medications that need a user decision before fulfillment can run."""
    prescription_id: str
    ready: list[str] = Field(default_factory=list)
    needs_decision: list[PrescribedMedication] = Field(default_factory=list)
    options: list[str] = Field(default_factory=lambda: ["skip", "add_to_inventory"])


class FulfillmentRequest(BaseModel):
    prescription: AnalyzedPrescription
    selected: list[str]                       # medication names, subset of prescription
    decisions: dict[str, Decision] = Field(default_factory=dict)
    paid_amount: Optional[float] = Field(default=None, ge=0)   # None → full payment
    payment_method: str = "cash"
    delivery: Optional[DeliveryOptions] = None


class FulfillmentResult(BaseModel):
    state: PipelineState
    sale: Optional[Sale] = None
    dispensed_medications: list[str] = Field(default_factory=list)
    skipped_medications: list[str] = Field(default_factory=list)
    history_status: Optional[HistoryStatus] = None
    delivery_requested: bool = False
    warnings: list[str] = Field(default_factory=list)


# ── History log ───────────────────────────────────────────────

class HistoryRecord(BaseModel):
    """One append-only entry of the prescription history, keyed by prescription id."""
    prescription_id: str
    status: HistoryStatus
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    patient_name: Optional[str] = None
    doctor_name: Optional[str] = None
    medication_count: int = 0
    warning_count: int = 0
    total_amount: Optional[float] = None
    dispensed_medications: list[str] = Field(default_factory=list)
    sale_id: Optional[str] = None


# ── HTTP request bodies ───────────────────────────────────────

class ScanRequest(BaseModel):
    """Remote scans are fetched over http(s) only; local paths are for in-process callers."""
    image_url: str

    @field_validator("image_url")
    @classmethod
    def _http_only(cls, value: str) -> str:
        value = value.strip()
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError("image_url must be an http(s) URL")
        return value


class PlanRequest(BaseModel):
    prescription: AnalyzedPrescription
    selected: list[str]
