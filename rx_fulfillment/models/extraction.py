"""
Pydantic models for the outputs of the scan stages.
Covers: TextExtractionResult, AnalysisResult, InteractionCheckResult.
Stage adapters never raise; failures travel in `success`/`error`.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from .prescription import AnalyzedPrescription, PrescriptionWarning


# ── Stage 1: Text Extraction output ──────────────────────────

class TextExtractionResult(BaseModel):
    success: bool
    extracted_text: Optional[str] = None
    confidence: Optional[float] = None
    error: Optional[str] = None


# ── Stage 2: Structured Analyzer output ──────────────────────

class AnalysisResult(BaseModel):
    success: bool
    prescription: Optional[AnalyzedPrescription] = None
    error: Optional[str] = None


# ── Stage 3: Interaction check output ────────────────────────

class DrugInteraction(BaseModel):
    drug1: str
    drug2: str
    severity: str = "medium"
    description: str = ""
    mechanism: Optional[str] = None
    management: Optional[str] = None


class InteractionCheckResult(BaseModel):
    success: bool = True
    warnings: list[PrescriptionWarning] = Field(default_factory=list)
    interactions: list[DrugInteraction] = Field(default_factory=list)
    error: Optional[str] = None
