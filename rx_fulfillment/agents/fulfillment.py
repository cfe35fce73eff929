"""
Fulfillment orchestrator — turns the user's selection into a sale.

Flow for one confirmed prescription:
  plan()    → which selected medications are missing from stock and need a
              decision (skip / add to inventory); pure, no I/O
  fulfill() → sequentially resolves each selected medication with the
              batched decisions, builds line items, persists the sale,
              decrements stock (clamped at zero), optionally requests
              delivery and records the history status.

Sale + stock behave as a saga: if the sale insert fails nothing else is
written; if a stock update fails the stock already touched is restored
and the sale is cancelled.
"""

from __future__ import annotations

import logging
import threading

from rx_fulfillment.agents.inventory_reconciler import collect_candidates, find_stock_match
from rx_fulfillment.agents.quantity import derive_quantity
from rx_fulfillment.errors import (
    FulfillmentFailure,
    FulfillmentInProgressError,
    NothingToFulfill,
)
from rx_fulfillment.models.fulfillment import (
    FulfillmentPlan,
    FulfillmentRequest,
    FulfillmentResult,
    HistoryRecord,
    PipelineState,
)
from rx_fulfillment.models.inventory import NewMedicine, StockItem
from rx_fulfillment.models.prescription import AnalyzedPrescription, PrescribedMedication
from rx_fulfillment.models.sale import Sale, SaleLineItem

logger = logging.getLogger(__name__)


def _name_key(name: str) -> str:
    return name.strip().lower()


def selected_medications(prescription: AnalyzedPrescription, selected: list[str]) -> list[PrescribedMedication]:
    """Medications of the prescription whose names were selected, in prescription order."""
    wanted = {_name_key(name) for name in selected}
    return [m for m in prescription.medications if _name_key(m.name) in wanted]


def plan_fulfillment(prescription: AnalyzedPrescription, selected: list[str]) -> FulfillmentPlan:
    """Split the selection into ready medications and those needing a user decision."""
    meds = selected_medications(prescription, selected)
    return FulfillmentPlan(
        prescription_id=prescription.id,
        ready=[m.name for m in meds if m.found_in_stock],
        needs_decision=[m for m in meds if not m.found_in_stock],
    )


class FulfillmentOrchestrator:
    """
    Collaborators (duck-typed):
      stock    — search(name) / add_medicine(NewMedicine) / update_stock(stock_id, fields)
      ledger   — create_sale(Sale) -> Sale / cancel_sale(sale_id)
      delivery — create_delivery_request(pharmacy_id, customer, items, payment_mode), optional
      history  — append(HistoryRecord)
    """

    def __init__(self, stock, ledger, history, delivery=None, pharmacy_id: str = ""):
        self.stock = stock
        self.ledger = ledger
        self.history = history
        self.delivery = delivery
        self.pharmacy_id = pharmacy_id
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    # ── Re-submission guard ───────────────────────────────────

    def _acquire(self, prescription_id: str) -> None:
        with self._lock:
            if prescription_id in self._in_flight:
                raise FulfillmentInProgressError(prescription_id)
            self._in_flight.add(prescription_id)

    def _release(self, prescription_id: str) -> None:
        with self._lock:
            self._in_flight.discard(prescription_id)

    def is_fulfilling(self, prescription_id: str) -> bool:
        with self._lock:
            return prescription_id in self._in_flight

    # ── Per-medication resolution ─────────────────────────────

    def _resolve_stock_item(self, med: PrescribedMedication, decision: str) -> StockItem | None:
        """Matched stock item, a newly added catalog entry, or None when skipped."""
        if med.found_in_stock:
            item = find_stock_match(med, collect_candidates(med, self.stock.search))
            if item:
                return item
            logger.warning("%s was in stock at scan time but no longer matches", med.name)

        if decision != "add_to_inventory":
            logger.info("Skipping %s (not in inventory)", med.name)
            return None

        logger.info("Adding %s to inventory", med.name)
        return self.stock.add_medicine(NewMedicine(
            generic_name=med.generic_name or med.name,
            brand_name=med.name,
            strength=med.dosage,
        ))

    # ── Saga steps ────────────────────────────────────────────

    def _apply_stock(self, lines: list[SaleLineItem], levels: dict[str, int]) -> list[tuple[str, int]]:
        """Decrement stock per line, clamped at zero. Returns (stock_id, previous) for rollback."""
        applied: list[tuple[str, int]] = []
        try:
            for line in lines:
                if not line.stock_id:
                    logger.warning("No stock row for %s, quantity not decremented", line.medicine_name)
                    continue
                previous = levels[line.stock_id]
                remaining = max(0, previous - line.quantity)
                self.stock.update_stock(line.stock_id, {"quantity": remaining})
                applied.append((line.stock_id, previous))
                levels[line.stock_id] = remaining
                logger.info("Stock %s: %d → %d", line.stock_id, previous, remaining)
        except Exception:
            self._revert_stock(applied)
            raise
        return applied

    def _revert_stock(self, applied: list[tuple[str, int]]) -> None:
        for stock_id, previous in reversed(applied):
            try:
                self.stock.update_stock(stock_id, {"quantity": previous})
                logger.info("Stock %s restored to %d", stock_id, previous)
            except Exception:
                logger.error("Could not restore stock %s to %d", stock_id, previous, exc_info=True)

    # ── Public API ────────────────────────────────────────────

    def plan(self, prescription: AnalyzedPrescription, selected: list[str]) -> FulfillmentPlan:
        return plan_fulfillment(prescription, selected)

    def fulfill(self, request: FulfillmentRequest) -> FulfillmentResult:
        """
        Fulfill the selected medications of a reconciled prescription.
        Raises FulfillmentFailure (or a subclass) when no sale was recorded.
        """
        prescription = request.prescription
        meds = selected_medications(prescription, request.selected)
        if not meds:
            raise NothingToFulfill()

        self._acquire(prescription.id)
        try:
            return self._fulfill(request, meds)
        finally:
            self._release(prescription.id)

    def _fulfill(self, request: FulfillmentRequest, meds: list[PrescribedMedication]) -> FulfillmentResult:
        prescription = request.prescription
        logger.info("Fulfilling prescription %s: %d medications selected", prescription.id, len(meds))

        lines: list[SaleLineItem] = []
        levels: dict[str, int] = {}
        decisions = {_name_key(name): choice for name, choice in request.decisions.items()}
        dispensed: list[str] = []
        skipped: list[str] = []
        warnings: list[str] = []
        total_amount = 0.0

        for med in meds:
            try:
                item = self._resolve_stock_item(med, decisions.get(_name_key(med.name), "skip"))
            except Exception as exc:
                logger.error("Error processing %s: %s", med.name, exc, exc_info=True)
                warnings.append(f"{med.name} skipped: {exc}")
                item = None

            if item is None:
                skipped.append(med.name)
                continue

            quantity = derive_quantity(med.frequency, med.duration)
            line_total = quantity * item.unit_price
            lines.append(SaleLineItem(
                medicine_id=item.medicine_id,
                stock_id=item.id,
                medicine_name=item.generic_name,
                generic_name=item.generic_name,
                brand_name=item.brand_name,
                quantity=quantity,
                unit_price=item.unit_price,
                total_amount=line_total,
            ))
            if item.id and item.id not in levels:
                levels[item.id] = item.quantity
            total_amount += line_total
            dispensed.append(med.name)

        if not lines:
            logger.info("Prescription %s: nothing to fulfill", prescription.id)
            raise NothingToFulfill()

        # ── Sale ──────────────────────────────────────────────
        sale = Sale.from_items(
            lines,
            paid_amount=request.paid_amount,
            pharmacy_id=self.pharmacy_id or None,
            prescription_id=prescription.id,
            payment_method=request.payment_method,
            notes=(
                f"Prescription from Dr. {prescription.doctor_info.name or 'Unknown'} "
                f"for {prescription.patient_info.name or 'Patient'}"
            ),
        )
        try:
            sale = self.ledger.create_sale(sale)
        except Exception as exc:
            logger.error("Sale persistence failed for %s: %s", prescription.id, exc, exc_info=True)
            raise FulfillmentFailure("Failed to save the sale; no stock was changed") from exc

        # ── Stock ─────────────────────────────────────────────
        try:
            self._apply_stock(lines, levels)
        except Exception as exc:
            logger.error("Stock update failed for sale %s, cancelling: %s", sale.id, exc, exc_info=True)
            try:
                self.ledger.cancel_sale(sale.id)
            except Exception:
                logger.error("Could not cancel sale %s", sale.id, exc_info=True)
            raise FulfillmentFailure("Failed to update stock; the sale was cancelled") from exc

        # ── Delivery (optional, non-fatal) ────────────────────
        delivery_requested = False
        if request.delivery and self.delivery is not None:
            try:
                self.delivery.create_delivery_request(
                    self.pharmacy_id,
                    request.delivery.customer,
                    lines,
                    request.delivery.payment_mode,
                )
                delivery_requested = True
            except Exception as exc:
                logger.error("Delivery request failed for sale %s: %s", sale.id, exc, exc_info=True)
                warnings.append(f"Sale saved but delivery request failed: {exc}")

        # ── History ───────────────────────────────────────────
        status = "dispensed" if len(dispensed) == len(meds) else "partial"
        try:
            self.history.append(HistoryRecord(
                prescription_id=prescription.id,
                status=status,
                patient_name=prescription.patient_info.name,
                doctor_name=prescription.doctor_info.name,
                medication_count=len(prescription.medications),
                warning_count=len(prescription.warnings),
                total_amount=total_amount,
                dispensed_medications=dispensed,
                sale_id=sale.id,
            ))
        except Exception as exc:
            logger.error("Could not update history for %s: %s", prescription.id, exc, exc_info=True)
            warnings.append("Sale saved but prescription history was not updated")

        state = PipelineState.FULFILLED if status == "dispensed" else PipelineState.PARTIALLY_FULFILLED
        logger.info(
            "Prescription %s %s: %d lines, total=%.2f, skipped=%d",
            prescription.id, state.value, len(lines), sale.total_amount, len(skipped),
        )
        return FulfillmentResult(
            state=state,
            sale=sale,
            dispensed_medications=dispensed,
            skipped_medications=skipped,
            history_status=status,
            delivery_requested=delivery_requested,
            warnings=warnings,
        )
