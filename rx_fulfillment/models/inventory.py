"""
Pydantic models for the stock catalog as seen by the reconciler
and the fulfillment orchestrator.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class StockItem(BaseModel):
    """A medicine joined with its stock row for the current pharmacy."""
    id: Optional[str] = None             # stock row id (None until a stock row exists)
    medicine_id: str
    generic_name: str = ""
    brand_name: str = ""
    strength: Optional[str] = None       # e.g. "500mg"
    form: Optional[str] = None           # tablet, capsule, syrup...
    quantity: int = Field(default=0, ge=0)
    unit_price: float = Field(default=0, ge=0)


class NewMedicine(BaseModel):
    """Catalog entry created mid-fulfillment for a medication not in stock."""
    generic_name: str
    brand_name: str
    strength: str = ""
    form: str = "tablet"
    manufacturer: str = "Unknown"
    category: str = "general"


class MatchCandidate(BaseModel):
    stock_item: StockItem
    score: float = 0.0


class MedicationMatch(BaseModel):
    """Ranked matcher output for one prescribed medication."""
    medication: str
    candidates: list[MatchCandidate] = Field(default_factory=list)
    ambiguous: bool = False


class ReconciliationReport(BaseModel):
    matched: int = 0
    missing: int = 0
    ambiguous: list[MedicationMatch] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
