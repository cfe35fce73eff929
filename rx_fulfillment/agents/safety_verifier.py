"""
Stage 3: Safety Verifier — drug interactions and dosage checks.

Merges analyzer warnings ++ interaction warnings ++ dosage warnings,
without deduplication (two sources may flag the same pair differently),
ordered by severity for display.

Every sub-check is soft: a failure is logged and that source simply
contributes no warnings. Nothing here can abort the pipeline.
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from rx_fulfillment.errors import SoftAdvisoryFailure
from rx_fulfillment.models.extraction import DrugInteraction, InteractionCheckResult
from rx_fulfillment.models.prescription import (
    SEVERITY_RANK,
    AnalyzedPrescription,
    PatientInfo,
    PrescribedMedication,
    PrescriptionWarning,
)
from rx_fulfillment.tools.gemini import GeminiClient, get_gemini

logger = logging.getLogger(__name__)

InteractionChecker = Callable[[list[str]], InteractionCheckResult]
DosageVerifier = Callable[[list[PrescribedMedication], PatientInfo], list[PrescriptionWarning]]

# ── Static knowledge ──────────────────────────────────────────

STATIC_INTERACTIONS: list[dict] = [
    {"drugs": ("warfarin", "aspirin"), "message": "Increased bleeding risk", "severity": "critical"},
    {"drugs": ("metformin", "contrast"), "message": "Risk of lactic acidosis", "severity": "high"},
]

PARACETAMOL_NAMES = ("paracetamol", "napa", "ace")

_SEVERITY_SYNONYMS = {
    "minor": "low",
    "mild": "low",
    "moderate": "medium",
    "major": "high",
    "severe": "high",
    "contraindicated": "critical",
}

_MG = re.compile(r"(\d+)\s*mg", re.IGNORECASE)

INTERACTION_PROMPT = """Analyze potential drug interactions between these medications: {names}

Check for:
1. Major drug-drug interactions
2. Severity levels (low/medium/high/critical)
3. Clinical significance
4. Management recommendations
5. Common interactions in Bangladeshi pharmacy practice

Respond ONLY with JSON:
{{
  "interactions": [
    {{
      "drug1": "medicine name",
      "drug2": "medicine name",
      "severity": "low|medium|high|critical",
      "description": "interaction description",
      "mechanism": "how interaction occurs",
      "management": "how to manage this interaction"
    }}
  ]
}}

Focus on clinically significant interactions that require pharmacist attention.
Consider both generic and brand names common in Bangladesh."""

DOSAGE_PROMPT = """Verify if this dosage is appropriate:

Medicine: {name} {dosage}
Frequency: {frequency}
Duration: {duration}
Patient Age: {age}
Patient Weight: {weight}
Patient Gender: {gender}

Check against standard dosing guidelines. Respond ONLY with JSON:
{{
  "is_safe": true|false,
  "recommended_dosage": "standard recommended dosage",
  "warnings": ["warning 1", "warning 2"],
  "age_appropriate": true|false,
  "weight_appropriate": true|false,
  "notes": "additional notes"
}}

Consider standard adult/pediatric dosing, maximum daily dose limits,
frequency appropriateness, duration concerns and special populations."""


def normalize_severity(value: str | None) -> str:
    key = (value or "").strip().lower()
    if key in SEVERITY_RANK:
        return key
    return _SEVERITY_SYNONYMS.get(key, "medium")


def sort_by_severity(warnings: list[PrescriptionWarning]) -> list[PrescriptionWarning]:
    """critical > high > medium > low; stable within a severity."""
    return sorted(warnings, key=lambda w: SEVERITY_RANK[w.severity], reverse=True)


def prescribed_names_for(drugs: list[str], medication_names: list[str], either_way: bool = True) -> list[str]:
    """Prescription names that contain (or, with either_way, are contained in) any of `drugs`, case-insensitive."""
    wanted = [d.strip().lower() for d in drugs if d and d.strip()]
    matched: list[str] = []
    for name in medication_names:
        lowered = name.strip().lower()
        if not lowered:
            continue
        if any(d in lowered or (either_way and lowered in d) for d in wanted) and name not in matched:
            matched.append(name)
    return matched


def check_static_interactions(medication_names: list[str]) -> list[PrescriptionWarning]:
    warnings: list[PrescriptionWarning] = []
    for rule in STATIC_INTERACTIONS:
        per_drug = [prescribed_names_for([drug], medication_names, either_way=False) for drug in rule["drugs"]]
        if all(per_drug):
            found = prescribed_names_for(list(rule["drugs"]), medication_names, either_way=False)
            warnings.append(PrescriptionWarning(
                type="interaction",
                severity=rule["severity"],
                message=rule["message"],
                medications=found,
            ))
    return warnings


def check_static_dosages(medication: PrescribedMedication, patient: PatientInfo) -> list[PrescriptionWarning]:
    """Hard-coded limits for common medications (paracetamol family)."""
    warnings: list[PrescriptionWarning] = []
    name = medication.name.lower()
    if not any(alias in name for alias in PARACETAMOL_NAMES):
        return warnings

    match = _MG.search(medication.dosage)
    dose = int(match.group(1)) if match else 0

    if dose > 1000:
        warnings.append(PrescriptionWarning(
            type="dosage",
            severity="high",
            message=f"{medication.name}: Single dose exceeds 1000mg maximum",
            medications=[medication.name],
        ))
    if patient.age is not None and patient.age < 12 and dose > 500:
        warnings.append(PrescriptionWarning(
            type="age_restriction",
            severity="critical",
            message=f"{medication.name}: Adult dose prescribed for pediatric patient",
            medications=[medication.name],
        ))
    return warnings


# ── Collaborators ─────────────────────────────────────────────

def check_interactions(
    medication_names: list[str],
    client: GeminiClient | None = None,
) -> InteractionCheckResult:
    """LLM interaction check plus the static table. The static table applies even if the LLM fails."""
    if len(medication_names) < 2:
        return InteractionCheckResult(success=True)

    static_warnings = check_static_interactions(medication_names)

    try:
        client = client or get_gemini()
        data = client.generate_json(
            INTERACTION_PROMPT.format(names=", ".join(medication_names)),
            system="You are a clinical pharmacist expert in drug interactions. "
                   "Provide accurate interaction analysis.",
        )
        interactions = [
            DrugInteraction(**i) for i in data.get("interactions") or []
            if isinstance(i, dict) and i.get("drug1") and i.get("drug2")
        ]
    except Exception as exc:
        logger.warning("Interaction check failed, using static table only: %s", exc)
        return InteractionCheckResult(success=False, warnings=static_warnings, error=str(exc))

    warnings = [
        PrescriptionWarning(
            type="interaction",
            severity=normalize_severity(i.severity),
            message=f"{i.drug1} + {i.drug2}: {i.description}",
            medications=prescribed_names_for([i.drug1, i.drug2], medication_names),
        )
        for i in interactions
    ]
    warnings.extend(static_warnings)

    logger.info("Interaction check: %d warnings", len(warnings))
    return InteractionCheckResult(success=True, warnings=warnings, interactions=interactions)


def verify_dosages(
    medications: list[PrescribedMedication],
    patient: PatientInfo,
    client: GeminiClient | None = None,
) -> list[PrescriptionWarning]:
    """Per-medication dosage check. A failed LLM call only drops that medication's LLM warnings."""
    warnings: list[PrescriptionWarning] = []

    for med in medications:
        try:
            client = client or get_gemini()
            verdict = client.generate_json(
                DOSAGE_PROMPT.format(
                    name=med.name,
                    dosage=med.dosage,
                    frequency=med.frequency,
                    duration=med.duration,
                    age=patient.age if patient.age is not None else "unknown",
                    weight=patient.weight if patient.weight is not None else "unknown",
                    gender=patient.gender or "unknown",
                ),
                system="You are a clinical pharmacist expert in medication dosing and safety.",
            )

            if verdict.get("is_safe") is False:
                notes = [str(w) for w in verdict.get("warnings") or []]
                warnings.append(PrescriptionWarning(
                    type="dosage",
                    severity="medium" if notes else "low",
                    message=f"{med.name}: {', '.join(notes) or 'Dosage verification needed'}",
                    medications=[med.name],
                ))

            if patient.age is not None:
                if patient.age < 18 and not verdict.get("age_appropriate"):
                    warnings.append(PrescriptionWarning(
                        type="age_restriction",
                        severity="high",
                        message=f"{med.name}: May require pediatric dosing adjustment for age {patient.age:g}",
                        medications=[med.name],
                    ))
                if patient.age > 65:
                    warnings.append(PrescriptionWarning(
                        type="age_restriction",
                        severity="medium",
                        message=f"{med.name}: Consider dose reduction in elderly patients",
                        medications=[med.name],
                    ))
        except Exception as exc:
            logger.warning("Dosage verification failed for %s: %s", med.name, exc)

        warnings.extend(check_static_dosages(med, patient))

    logger.info("Dosage verification: %d warnings", len(warnings))
    return warnings


# ── Public API ────────────────────────────────────────────────

def verify_prescription(
    prescription: AnalyzedPrescription,
    interaction_checker: InteractionChecker | None = None,
    dosage_verifier: DosageVerifier | None = None,
) -> AnalyzedPrescription:
    """
    Append interaction and dosage warnings to the prescription and
    re-order the full list by severity. Returns the same object.
    """
    interaction_checker = interaction_checker or check_interactions
    dosage_verifier = dosage_verifier or verify_dosages

    interaction_warnings: list[PrescriptionWarning] = []
    try:
        result = interaction_checker(prescription.medication_names())
        interaction_warnings = list(result.warnings)
        if not result.success:
            raise SoftAdvisoryFailure("interaction", result.error or "interaction check failed")
    except SoftAdvisoryFailure as exc:
        logger.warning("Soft failure in %s check: %s", exc.source, exc.message)
    except Exception as exc:
        logger.warning("Soft failure in interaction check: %s", exc, exc_info=True)

    dosage_warnings: list[PrescriptionWarning] = []
    try:
        dosage_warnings = list(dosage_verifier(prescription.medications, prescription.patient_info))
    except Exception as exc:
        logger.warning("Soft failure in dosage check: %s", exc, exc_info=True)

    prescription.warnings = sort_by_severity(
        prescription.warnings + interaction_warnings + dosage_warnings
    )

    logger.info(
        "Safety verification: %d warnings (%d interaction, %d dosage)",
        len(prescription.warnings), len(interaction_warnings), len(dosage_warnings),
    )
    return prescription
