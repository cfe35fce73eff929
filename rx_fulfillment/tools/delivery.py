"""
Delivery request adapter (delivery_requests table).
"""

from __future__ import annotations

import logging

from rx_fulfillment.models.sale import DeliveryCustomer, SaleLineItem
from rx_fulfillment.tools.supabase_client import SupabaseClient, get_supabase

logger = logging.getLogger(__name__)


class DeliveryService:

    def __init__(self, sb: SupabaseClient | None = None):
        self._sb = sb

    @property
    def sb(self) -> SupabaseClient:
        if self._sb is None:
            self._sb = get_supabase()
        return self._sb

    def create_delivery_request(
        self,
        pharmacy_id: str,
        customer: DeliveryCustomer,
        items: list[SaleLineItem],
        payment_mode: str,
    ) -> None:
        total = sum(item.total_amount for item in items)
        self.sb.table("delivery_requests").insert({
            "pharmacy_id": pharmacy_id,
            "customer_id": customer.id or customer.phone,
            "customer_name": customer.name,
            "customer_phone": customer.phone,
            "customer_address": customer.address,
            "medicines": [
                {
                    "medicine_id": i.medicine_id,
                    "name": i.medicine_name,
                    "quantity": i.quantity,
                    "unit_price": i.unit_price,
                }
                for i in items
            ],
            "total_amount": total,
            "payment_method": payment_mode,
            "status": "pending",
        }).execute()
        logger.info("Delivery request created for %s (%d items)", customer.name, len(items))
