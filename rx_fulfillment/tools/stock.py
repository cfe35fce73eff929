"""
Stock catalog adapter: medicines joined with their stock rows in Supabase.
Used by the inventory reconciler (read) and fulfillment (insert + mutate).
"""

from __future__ import annotations

import logging
from typing import Any

from rx_fulfillment.config import settings
from rx_fulfillment.models.inventory import NewMedicine, StockItem
from rx_fulfillment.tools.supabase_client import SupabaseClient, get_supabase

logger = logging.getLogger(__name__)

_MEDICINE_COLUMNS = "id,generic_name,brand_name,strength,form,stock(id,quantity,unit_price)"


def _escape_pattern(text: str) -> str:
    """Strip characters that carry meaning inside a PostgREST or() filter."""
    return "".join(ch for ch in text if ch not in ",()*").strip()


def _row_to_item(row: dict[str, Any]) -> StockItem:
    stock = row.get("stock")
    if isinstance(stock, list):
        stock = stock[0] if stock else None
    stock = stock or {}
    return StockItem(
        id=stock.get("id"),
        medicine_id=row["id"],
        generic_name=row.get("generic_name") or "",
        brand_name=row.get("brand_name") or "",
        strength=row.get("strength"),
        form=row.get("form"),
        quantity=max(0, int(stock.get("quantity") or 0)),
        unit_price=max(0.0, float(stock.get("unit_price") or 0)),
    )


class StockStore:
    """Read and write the pharmacy's medicine/stock tables."""

    def __init__(self, sb: SupabaseClient | None = None, pharmacy_id: str | None = None):
        self._sb = sb
        self.pharmacy_id = pharmacy_id or settings.PHARMACY_ID

    @property
    def sb(self) -> SupabaseClient:
        if self._sb is None:
            self._sb = get_supabase()
        return self._sb

    def search(self, name_query: str) -> list[StockItem]:
        """Medicines whose generic or brand name contains `name_query`, in catalog order."""
        term = _escape_pattern(name_query)
        if not term:
            return []

        query = (
            self.sb.table("medicines")
            .select(_MEDICINE_COLUMNS)
            .or_(f"generic_name.ilike.*{term}*,brand_name.ilike.*{term}*")
            .eq("is_active", "true")
            .order("created_at")
        )
        if self.pharmacy_id:
            query = query.eq("pharmacy_id", self.pharmacy_id)

        rows = query.execute().data or []
        items = [_row_to_item(r) for r in rows]
        logger.info("stock search '%s': %d items", name_query, len(items))
        return items

    def add_medicine(self, medicine: NewMedicine) -> StockItem:
        """Insert a catalog entry with a zero stock row and return it."""
        payload = medicine.model_dump()
        payload["pharmacy_id"] = self.pharmacy_id or None
        payload["is_active"] = True

        resp = self.sb.table("medicines").insert(payload).execute()
        if not resp.data:
            raise RuntimeError(f"Medicine insert returned no row for '{medicine.generic_name}'")
        medicine_id = resp.data[0]["id"]

        stock_resp = self.sb.table("stock").insert({
            "medicine_id": medicine_id,
            "pharmacy_id": self.pharmacy_id or None,
            "quantity": 0,
            "unit_price": 0,
        }).execute()
        stock_row = stock_resp.first()
        stock_id = stock_row["id"] if stock_row else None

        logger.info("Added medicine %s (%s) with stock row %s", medicine_id, medicine.generic_name, stock_id)
        return StockItem(
            id=stock_id,
            medicine_id=medicine_id,
            generic_name=medicine.generic_name,
            brand_name=medicine.brand_name,
            strength=medicine.strength,
            form=medicine.form,
            quantity=0,
            unit_price=0,
        )

    def update_stock(self, stock_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        row = self.sb.table("stock").update(fields).eq("id", stock_id).execute().first()
        if row is None:
            raise RuntimeError(f"Stock row {stock_id} not updated")
        return row
