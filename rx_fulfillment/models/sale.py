"""
Pydantic models for the sale record created at fulfillment time
and the optional delivery request.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class SaleLineItem(BaseModel):
    medicine_id: str
    stock_id: Optional[str] = None
    medicine_name: str = ""
    generic_name: str = ""
    brand_name: str = ""
    quantity: int = Field(gt=0)
    unit_price: float = Field(default=0, ge=0)
    total_amount: float = 0


class Sale(BaseModel):
    id: Optional[str] = None
    pharmacy_id: Optional[str] = None
    prescription_id: Optional[str] = None
    items: list[SaleLineItem] = Field(default_factory=list)
    subtotal: float = 0
    total_amount: float = 0
    paid_amount: float = 0
    due_amount: float = 0
    payment_method: str = "cash"
    status: str = "completed"
    notes: Optional[str] = None

    @classmethod
    def from_items(
        cls,
        items: list[SaleLineItem],
        paid_amount: float | None = None,
        **extra,
    ) -> "Sale":
        """Build a sale whose totals are derived from its line items.
        Full payment is assumed when `paid_amount` is None."""
        total = 0.0
        for item in items:
            total += item.total_amount
        paid = total if paid_amount is None else paid_amount
        return cls(
            items=items,
            subtotal=total,
            total_amount=total,
            paid_amount=paid,
            due_amount=max(0.0, total - paid),
            **extra,
        )


class DeliveryCustomer(BaseModel):
    id: Optional[str] = None
    name: str
    phone: str
    address: str


class DeliveryOptions(BaseModel):
    customer: DeliveryCustomer
    payment_mode: str = "cash_on_delivery"   # cash_on_delivery | prepaid | due
    notes: Optional[str] = None
