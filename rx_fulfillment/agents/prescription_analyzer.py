"""
Stage 2: Structured Analyzer — turns OCR text into an AnalyzedPrescription.
Sends the transcription to Gemini with a structured-JSON prompt, then
normalises whatever comes back (missing fields, numbers as strings,
confidences out of range).

Hard gate: never raises. Zero medications counts as a failure.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import date
from typing import Any

from rx_fulfillment.models.extraction import AnalysisResult
from rx_fulfillment.models.prescription import (
    AnalyzedPrescription,
    DoctorInfo,
    PatientInfo,
    PrescribedMedication,
    PrescriptionWarning,
)
from rx_fulfillment.tools.gemini import GeminiClient, get_gemini

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8

SYSTEM_PROMPT = (
    "You are a medical prescription analysis expert. "
    "Provide accurate, structured JSON responses for prescription analysis."
)

ANALYSIS_PROMPT = """You are an expert medical AI assistant specializing in prescription
analysis for pharmacies in Bangladesh. Analyze the following prescription text and
extract all relevant information with high accuracy.

PRESCRIPTION TEXT:
{text}

Extract the following information in JSON format:
{{
  "patientInfo": {{"name": <string|null>, "age": <years as number|null>, "gender": <"male"|"female"|"other"|null>, "weight": <kg as number|null>}},
  "doctorInfo": {{"name": <string|null>, "license": <string|null>, "clinic": <string|null>}},
  "medications": [
    {{
      "name": "medicine name as written",
      "genericName": "generic/salt name",
      "dosage": "strength (e.g. 500mg, 20ml)",
      "frequency": "how often (e.g. twice daily, 1+0+1)",
      "duration": "how long (e.g. 5 days)",
      "instructions": "specific instructions (e.g. after meal)",
      "confidence": <0.0 to 1.0>
    }}
  ],
  "instructions": ["general instructions"],
  "date": "prescription date as written",
  "confidence": <overall 0.0 to 1.0>
}}

GUIDELINES:
1. Common Bangladeshi brands: Napa = Paracetamol, Ace = Paracetamol,
   Seclo = Omeprazole, Losectil = Omeprazole, Flexi = Aceclofenac
2. Schedules: 1+0+1 = morning + night, 1+1+1 = three times daily,
   A/C = before meal, P/C = after meal, H/S = at bedtime
3. Forms: Tab = Tablet, Cap = Capsule, Syr = Syrup, Inj = Injection, Susp = Suspension
4. Keep frequency in the 1+0+1 notation when the prescription uses it
5. Extract as much as possible even if some fields are missing; use null for unknowns
6. Respond ONLY with the JSON, no additional text"""

_NUMBER = re.compile(r"\d+(?:\.\d+)?")


def _to_float(value: Any) -> float | None:
    """Accept 45, "45", "45 years", "62kg"; anything else → None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _NUMBER.search(str(value))
    return float(match.group(0)) if match else None


def _confidence(value: Any, default: float = DEFAULT_CONFIDENCE) -> float:
    number = _to_float(value)
    if number is None:
        return default
    if number >= 2 or (isinstance(value, str) and "%" in value):    # "85" or "85%"
        number = number / 100
    return min(1.0, max(0.0, number))


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _parse_medications(raw: Any) -> list[PrescribedMedication]:
    medications: list[PrescribedMedication] = []
    for med in raw or []:
        if not isinstance(med, dict):
            continue
        name = _text(med.get("name"))
        if not name:
            continue
        medications.append(PrescribedMedication(
            name=name,
            generic_name=_text(med.get("genericName")) or name,
            dosage=_text(med.get("dosage")),
            frequency=_text(med.get("frequency")),
            duration=_text(med.get("duration")),
            instructions=_text(med.get("instructions")),
            confidence=_confidence(med.get("confidence")),
        ))
    return medications


def _initial_warnings(medications: list[PrescribedMedication]) -> list[PrescriptionWarning]:
    """Flag dosages that carry no strength at all."""
    warnings: list[PrescriptionWarning] = []
    for med in medications:
        if not any(ch.isdigit() for ch in med.dosage):
            warnings.append(PrescriptionWarning(
                type="dosage",
                severity="low",
                message=f"{med.name}: dosage strength not legible — confirm with prescriber",
                medications=[med.name],
            ))
    return warnings


def build_prescription(data: dict[str, Any], raw_text: str, image_ref: str) -> AnalyzedPrescription:
    """Convert raw model output into a typed prescription (no I/O)."""
    patient_raw = data.get("patientInfo") or {}
    doctor_raw = data.get("doctorInfo") or {}
    medications = _parse_medications(data.get("medications"))

    return AnalyzedPrescription(
        id=_text(data.get("id")) or f"presc_{uuid.uuid4().hex}",
        patient_info=PatientInfo(
            name=_text(patient_raw.get("name")) or None,
            age=_to_float(patient_raw.get("age")),
            gender=_text(patient_raw.get("gender")) or None,
            weight=_to_float(patient_raw.get("weight")),
        ),
        doctor_info=DoctorInfo(
            name=_text(doctor_raw.get("name")) or None,
            license=_text(doctor_raw.get("license")) or None,
            clinic=_text(doctor_raw.get("clinic")) or None,
        ),
        medications=medications,
        instructions=[_text(i) for i in data.get("instructions") or [] if _text(i)],
        date=_text(data.get("date")) or date.today().isoformat(),
        confidence=_confidence(data.get("confidence")),
        warnings=_initial_warnings(medications),
        raw_text=raw_text,
        image_uri=image_ref,
    )


# ── Public API ────────────────────────────────────────────────

def analyze_prescription(
    text: str,
    image_ref: str,
    client: GeminiClient | None = None,
) -> AnalysisResult:
    """Structure the OCR text. Always returns a result, never raises."""
    if not text or not text.strip():
        return AnalysisResult(success=False, error="No prescription text to analyze")

    try:
        client = client or get_gemini()
        data = client.generate_json(ANALYSIS_PROMPT.format(text=text), system=SYSTEM_PROMPT)
    except Exception as exc:
        logger.error("Prescription analysis failed: %s", exc, exc_info=True)
        return AnalysisResult(success=False, error=f"Failed to analyze prescription: {exc}")

    try:
        prescription = build_prescription(data, raw_text=text, image_ref=image_ref)
    except Exception as exc:
        logger.error("Could not build prescription from model output: %s", exc, exc_info=True)
        return AnalysisResult(success=False, error="Failed to parse prescription analysis")

    if not prescription.medications:
        logger.info("Analysis found no medications")
        return AnalysisResult(success=False, error="No medications found in prescription")

    logger.info(
        "Prescription %s analyzed: %d medications, confidence=%.2f, %d initial warnings",
        prescription.id, len(prescription.medications),
        prescription.confidence, len(prescription.warnings),
    )
    return AnalysisResult(success=True, prescription=prescription)
