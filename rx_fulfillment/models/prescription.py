"""
Pydantic models for an analyzed prescription: patient/doctor info,
prescribed medications and safety warnings.

Field names follow the shape the mobile UI consumes (camelCase for the
extracted parts, snake_case for the stock annotations), exposed through
aliases so Python code can use attribute names.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

WarningType = Literal["interaction", "dosage", "allergy", "age_restriction", "pregnancy"]
Severity = Literal["low", "medium", "high", "critical"]

SEVERITY_RANK: dict[str, int] = {"critical": 3, "high": 2, "medium": 1, "low": 0}


class PatientInfo(BaseModel):
    name: Optional[str] = None
    age: Optional[float] = None
    gender: Optional[str] = None
    weight: Optional[float] = None       # kg


class DoctorInfo(BaseModel):
    name: Optional[str] = None
    license: Optional[str] = None
    clinic: Optional[str] = None


class PrescriptionWarning(BaseModel):
    """Advisory only — severity orders the list, it never blocks the pipeline."""
    type: WarningType
    severity: Severity = "low"
    message: str
    medications: list[str] = Field(default_factory=list)


class PrescribedMedication(BaseModel):
    """A medication line as extracted, plus the stock annotations."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    generic_name: Optional[str] = Field(default=None, alias="genericName")
    dosage: str = ""
    frequency: str = ""
    duration: str = ""
    instructions: str = ""
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)

    # ── Set by the inventory reconciler ──
    found_in_stock: bool = False
    stock_quantity: Optional[int] = None            # iff found_in_stock
    alternative_medicines: Optional[list[str]] = None  # iff not found_in_stock

    def mark_found(self, quantity: int) -> None:
        self.found_in_stock = True
        self.stock_quantity = quantity
        self.alternative_medicines = None

    def mark_missing(self, alternatives: list[str]) -> None:
        self.found_in_stock = False
        self.stock_quantity = None
        self.alternative_medicines = list(alternatives)


class AnalyzedPrescription(BaseModel):
    """
    One scanned prescription. Created by the analyzer, enriched in place
    by the safety verifier (warnings) and the inventory reconciler
    (stock annotations), then read-only for fulfillment.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    patient_info: PatientInfo = Field(default_factory=PatientInfo, alias="patientInfo")
    doctor_info: DoctorInfo = Field(default_factory=DoctorInfo, alias="doctorInfo")
    medications: list[PrescribedMedication] = Field(default_factory=list)
    instructions: list[str] = Field(default_factory=list)
    date: str = ""
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    warnings: list[PrescriptionWarning] = Field(default_factory=list)
    raw_text: str = Field(default="", alias="rawText")
    image_uri: str = Field(default="", alias="imageUri")

    def medication_names(self) -> list[str]:
        return [m.name for m in self.medications]
