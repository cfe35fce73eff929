"""
Sale ledger adapter: writes the sale header and its line items.
"""

from __future__ import annotations

import logging
from typing import Any

from rx_fulfillment.models.sale import Sale
from rx_fulfillment.tools.supabase_client import SupabaseClient, get_supabase

logger = logging.getLogger(__name__)


class SaleLedger:

    def __init__(self, sb: SupabaseClient | None = None):
        self._sb = sb

    @property
    def sb(self) -> SupabaseClient:
        if self._sb is None:
            self._sb = get_supabase()
        return self._sb

    def create_sale(self, sale: Sale) -> Sale:
        """
        Insert the sale header, then its items.
        If the items insert fails the header is cancelled and the error re-raised,
        so callers never see a half-written sale.
        """
        header: dict[str, Any] = sale.model_dump(exclude={"id", "items"}, exclude_none=True)
        resp = self.sb.table("sales").insert(header).execute()
        if not resp.data:
            raise RuntimeError("Sale insert returned no row")
        sale_id = resp.data[0]["id"]

        try:
            self.sb.table("sale_items").insert([
                {"sale_id": sale_id, **item.model_dump(exclude_none=True)}
                for item in sale.items
            ]).execute()
        except Exception:
            logger.error("Sale items insert failed, cancelling sale %s", sale_id, exc_info=True)
            self.cancel_sale(sale_id)
            raise

        logger.info("Inserted sale %s (%d items, total=%.2f)", sale_id, len(sale.items), sale.total_amount)
        return sale.model_copy(update={"id": sale_id})

    def cancel_sale(self, sale_id: str) -> None:
        self.sb.table("sales").update({"status": "cancelled"}).eq("id", sale_id).execute()
        logger.info("Sale %s cancelled", sale_id)
