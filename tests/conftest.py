"""
Shared fixtures: in-memory fakes for every collaborator of the pipeline.
No test touches the network.
"""

import os

os.environ.setdefault("SUPABASE_URL", "http://supabase.test")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-key")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")

import itertools  # noqa: E402

import pytest  # noqa: E402

from rx_fulfillment.models.extraction import InteractionCheckResult  # noqa: E402
from rx_fulfillment.models.inventory import NewMedicine, StockItem  # noqa: E402
from rx_fulfillment.models.prescription import (  # noqa: E402
    AnalyzedPrescription,
    DoctorInfo,
    PatientInfo,
    PrescribedMedication,
)
from rx_fulfillment.tools.history import InMemoryHistoryRepository  # noqa: E402


class FakeStockStore:
    """Catalog held in memory; search is case-insensitive containment like ilike."""

    def __init__(self, items=None, fail_update_on=None):
        self.items: list[StockItem] = list(items or [])
        self.fail_update_on = set(fail_update_on or [])
        self.updates: list[tuple[str, dict]] = []
        self.added: list[NewMedicine] = []
        self.searches: list[str] = []
        self._ids = itertools.count(1)

    def search(self, name_query):
        self.searches.append(name_query)
        q = name_query.lower()
        return [
            i.model_copy() for i in self.items
            if q in i.generic_name.lower() or q in i.brand_name.lower()
        ]

    def add_medicine(self, medicine):
        n = next(self._ids)
        item = StockItem(
            id=f"new-stock-{n}",
            medicine_id=f"new-med-{n}",
            generic_name=medicine.generic_name,
            brand_name=medicine.brand_name,
            strength=medicine.strength,
            form=medicine.form,
            quantity=0,
            unit_price=0,
        )
        self.added.append(medicine)
        self.items.append(item)
        return item

    def update_stock(self, stock_id, fields):
        if stock_id in self.fail_update_on:
            raise RuntimeError(f"stock row {stock_id} locked")
        self.updates.append((stock_id, dict(fields)))
        for i, item in enumerate(self.items):
            if item.id == stock_id:
                self.items[i] = item.model_copy(update=fields)
                return self.items[i].model_dump()
        raise RuntimeError(f"Stock row {stock_id} not updated")

    def quantity_of(self, stock_id):
        return next(i.quantity for i in self.items if i.id == stock_id)


class FakeLedger:

    def __init__(self, fail_create=False):
        self.fail_create = fail_create
        self.sales = []
        self.cancelled: list[str] = []

    def create_sale(self, sale):
        if self.fail_create:
            raise RuntimeError("sales table unavailable")
        saved = sale.model_copy(update={"id": f"sale-{len(self.sales) + 1}"})
        self.sales.append(saved)
        return saved

    def cancel_sale(self, sale_id):
        self.cancelled.append(sale_id)


class FakeDelivery:

    def __init__(self, fail=False):
        self.fail = fail
        self.requests = []

    def create_delivery_request(self, pharmacy_id, customer, items, payment_mode):
        if self.fail:
            raise RuntimeError("delivery service down")
        self.requests.append((pharmacy_id, customer, list(items), payment_mode))


class FakeGemini:
    """Returns queued JSON answers (or raises queued exceptions) in order."""

    def __init__(self, *answers, text=""):
        self.answers = list(answers)
        self.text = text
        self.prompts: list[str] = []

    def generate_json(self, prompt, **kwargs):
        self.prompts.append(prompt)
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    def generate_text(self, prompt, **kwargs):
        self.prompts.append(prompt)
        if isinstance(self.text, Exception):
            raise self.text
        return self.text


def no_interactions(names):
    return InteractionCheckResult(success=True)


def no_dosage_warnings(medications, patient):
    return []


@pytest.fixture
def napa_item():
    return StockItem(
        id="stock-napa",
        medicine_id="med-napa",
        generic_name="Paracetamol",
        brand_name="Napa",
        strength="500mg",
        form="tablet",
        quantity=100,
        unit_price=5,
    )


@pytest.fixture
def seclo_item():
    return StockItem(
        id="stock-seclo",
        medicine_id="med-seclo",
        generic_name="Omeprazole",
        brand_name="Seclo",
        strength="20mg",
        form="capsule",
        quantity=3,
        unit_price=7,
    )


@pytest.fixture
def stock(napa_item, seclo_item):
    return FakeStockStore([napa_item, seclo_item])


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def delivery():
    return FakeDelivery()


@pytest.fixture
def history():
    return InMemoryHistoryRepository()


def make_prescription(*medications, patient=None, prescription_id="presc_test"):
    return AnalyzedPrescription(
        id=prescription_id,
        patient_info=patient or PatientInfo(name="Rahim", age=34),
        doctor_info=DoctorInfo(name="Karim"),
        medications=list(medications),
        date="2024-01-15",
    )


@pytest.fixture
def napa_med():
    return PrescribedMedication(
        name="Napa",
        generic_name="Paracetamol",
        dosage="500mg",
        frequency="1+0+1",
        duration="5 days",
    )


@pytest.fixture
def napa_prescription(napa_med):
    napa_med.mark_found(100)
    return make_prescription(napa_med)
