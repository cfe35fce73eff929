"""
FastAPI application for the prescription fulfillment service.

Collaborators are resolved through dependency functions so they can be
swapped with `app.dependency_overrides`.
"""

from __future__ import annotations

import logging
from functools import lru_cache, partial
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rx_fulfillment.agents.fulfillment import FulfillmentOrchestrator
from rx_fulfillment.agents.pipeline import run_pipeline
from rx_fulfillment.config import settings
from rx_fulfillment.errors import FulfillmentFailure, FulfillmentInProgressError
from rx_fulfillment.models.fulfillment import (
    FulfillmentPlan,
    FulfillmentRequest,
    FulfillmentResult,
    HistoryRecord,
    PipelineResult,
    PlanRequest,
    ScanRequest,
)
from rx_fulfillment.tools.delivery import DeliveryService
from rx_fulfillment.tools.history import HistoryRepository, SupabaseHistoryRepository
from rx_fulfillment.tools.sales import SaleLedger
from rx_fulfillment.tools.stock import StockStore

logger = logging.getLogger(__name__)

ScanPipeline = Callable[[str], PipelineResult]


# ── Dependencies ──────────────────────────────────────────────

@lru_cache
def get_stock_store() -> StockStore:
    return StockStore(pharmacy_id=settings.PHARMACY_ID)


@lru_cache
def get_history_repository() -> HistoryRepository:
    return SupabaseHistoryRepository()


@lru_cache
def get_orchestrator() -> FulfillmentOrchestrator:
    """One orchestrator per process so the re-submission guard is shared."""
    return FulfillmentOrchestrator(
        stock=get_stock_store(),
        ledger=SaleLedger(),
        history=get_history_repository(),
        delivery=DeliveryService(),
        pharmacy_id=settings.PHARMACY_ID,
    )


def get_scan_pipeline() -> ScanPipeline:
    return partial(
        run_pipeline,
        stock_search=get_stock_store().search,
        history=get_history_repository(),
    )


# ── App ───────────────────────────────────────────────────────

app = FastAPI(
    title="Prescription Fulfillment Service",
    description="Scan a prescription image, verify it, reconcile it against stock and dispense.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FulfillmentFailure)
async def fulfillment_failure_handler(request: Request, exc: FulfillmentFailure):
    code = 409 if isinstance(exc, FulfillmentInProgressError) else 422
    return JSONResponse(
        status_code=code,
        content={"detail": exc.message, "next_actions": exc.next_actions},
    )


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "rx-fulfillment"}


@app.post("/api/v1/prescriptions/scan", response_model=PipelineResult)
def scan_prescription(body: ScanRequest, scan: ScanPipeline = Depends(get_scan_pipeline)):
    """
    Run extraction, analysis, safety verification and inventory
    reconciliation for one captured image. Hard-stage failures come back
    with state=aborted and HTTP 200 so the client can offer retry/cancel.
    """
    return scan(body.image_url)


@app.post("/api/v1/prescriptions/plan", response_model=FulfillmentPlan)
def plan_fulfillment(
    body: PlanRequest,
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.plan(body.prescription, body.selected)


@app.post("/api/v1/prescriptions/fulfill", response_model=FulfillmentResult)
def fulfill_prescription(
    body: FulfillmentRequest,
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.fulfill(body)


@app.get("/api/v1/prescriptions/history", response_model=list[HistoryRecord])
def prescription_history(
    prescription_id: Optional[str] = None,
    history: HistoryRepository = Depends(get_history_repository),
):
    return history.list(prescription_id)
