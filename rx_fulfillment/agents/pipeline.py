"""
Pipeline orchestrator — runs the four scan stages in order for one image:

  1. Text Extraction      (hard gate)
  2. Structured Analysis  (hard gate)
  3. Safety Verification  (soft — failures only drop warnings)
  4. Inventory Reconciliation (never fails — every medication is annotated)

A hard-gate failure aborts the scan with retry/cancel as the only
choices; nothing is persisted. On success the prescription is handed
back ready for the user to select what to dispense.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from rx_fulfillment.agents.inventory_reconciler import (
    AlternativeLookup,
    StockSearch,
    reconcile_inventory,
)
from rx_fulfillment.agents.prescription_analyzer import analyze_prescription
from rx_fulfillment.agents.safety_verifier import (
    DosageVerifier,
    InteractionChecker,
    verify_prescription,
)
from rx_fulfillment.agents.text_extractor import extract_text
from rx_fulfillment.errors import HardStageFailure
from rx_fulfillment.models.extraction import AnalysisResult, TextExtractionResult
from rx_fulfillment.models.fulfillment import HistoryRecord, PipelineResult, PipelineState
from rx_fulfillment.models.inventory import ReconciliationReport

logger = logging.getLogger(__name__)

TextExtractor = Callable[[str], TextExtractionResult]
Analyzer = Callable[[str, str], AnalysisResult]


def _elapsed_ms(start: float) -> int:
    return int((time.time() - start) * 1000)


def _aborted(failure: HardStageFailure, start: float) -> PipelineResult:
    logger.error("Pipeline aborted at %s: %s", failure.stage, failure.message)
    return PipelineResult(
        state=PipelineState.ABORTED,
        failed_stage=failure.stage,
        error=failure.user_message,
        next_actions=failure.next_actions,
        processing_time_ms=_elapsed_ms(start),
    )


def run_pipeline(
    image_ref: str,
    *,
    stock_search: StockSearch,
    text_extractor: TextExtractor | None = None,
    analyzer: Analyzer | None = None,
    interaction_checker: InteractionChecker | None = None,
    dosage_verifier: DosageVerifier | None = None,
    alternatives: AlternativeLookup | None = None,
    history=None,
) -> PipelineResult:
    """
    Execute the scan pipeline for a captured prescription image.
    Always returns a result; hard-gate failures come back as state=aborted.
    """
    processing_start = time.time()
    text_extractor = text_extractor or extract_text
    analyzer = analyzer or analyze_prescription
    logger.info("Pipeline start for image %s", image_ref)

    # ── Stage 1: Text Extraction ──────────────────────────────
    logger.info("=== STAGE 1: Text Extraction ===")
    ocr = text_extractor(image_ref)
    if not ocr.success or not ocr.extracted_text:
        return _aborted(
            HardStageFailure("extracting", f"Failed to extract text: {ocr.error or 'no text found'}"),
            processing_start,
        )

    # ── Stage 2: Structured Analysis ──────────────────────────
    logger.info("=== STAGE 2: Structured Analysis ===")
    analysis = analyzer(ocr.extracted_text, image_ref)
    if not analysis.success or not analysis.prescription or not analysis.prescription.medications:
        return _aborted(
            HardStageFailure("analyzing", f"Failed to analyze prescription: {analysis.error or 'no medications'}"),
            processing_start,
        )

    prescription = analysis.prescription
    prescription.raw_text = ocr.extracted_text
    prescription.image_uri = image_ref

    # ── Stage 3: Safety Verification ──────────────────────────
    logger.info("=== STAGE 3: Safety Verification ===")
    verify_prescription(
        prescription,
        interaction_checker=interaction_checker,
        dosage_verifier=dosage_verifier,
    )

    # ── Stage 4: Inventory Reconciliation ─────────────────────
    logger.info("=== STAGE 4: Inventory Reconciliation ===")
    try:
        reconciliation = reconcile_inventory(prescription, stock_search, alternatives)
    except Exception as exc:
        logger.error("Inventory reconciliation failed: %s", exc, exc_info=True)
        for med in prescription.medications:
            med.mark_missing([])
        reconciliation = ReconciliationReport(
            missing=len(prescription.medications),
            warnings=[f"Inventory reconciliation failed: {exc}"],
        )

    if history is not None:
        try:
            history.append(HistoryRecord(
                prescription_id=prescription.id,
                status="analyzed",
                patient_name=prescription.patient_info.name,
                doctor_name=prescription.doctor_info.name,
                medication_count=len(prescription.medications),
                warning_count=len(prescription.warnings),
            ))
        except Exception as exc:
            logger.error("Could not record prescription %s in history: %s", prescription.id, exc, exc_info=True)
            reconciliation.warnings.append("Prescription could not be saved to history")

    elapsed = _elapsed_ms(processing_start)
    logger.info(
        "Pipeline complete in %dms: prescription=%s, medications=%d, warnings=%d, in_stock=%d",
        elapsed, prescription.id, len(prescription.medications),
        len(prescription.warnings), reconciliation.matched,
    )

    return PipelineResult(
        state=PipelineState.READY_FOR_SELECTION,
        prescription=prescription,
        reconciliation=reconciliation,
        next_actions=["select medications", "cancel"],
        processing_time_ms=elapsed,
    )
