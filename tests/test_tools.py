import json

import httpx
import pytest

from rx_fulfillment.models.fulfillment import HistoryRecord
from rx_fulfillment.models.inventory import NewMedicine
from rx_fulfillment.models.sale import Sale, SaleLineItem
from rx_fulfillment.tools.gemini import parse_json_response
from rx_fulfillment.tools.history import InMemoryHistoryRepository, SupabaseHistoryRepository
from rx_fulfillment.tools.sales import SaleLedger
from rx_fulfillment.tools.stock import StockStore
from rx_fulfillment.tools.supabase_client import SupabaseClient


class RecordingBackend:
    """PostgREST stand-in: records requests, answers from a per-table handler."""

    def __init__(self, handlers):
        self.handlers = handlers
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        table = request.url.path.rsplit("/", 1)[-1]
        return self.handlers[table](request)

    def client(self) -> SupabaseClient:
        return SupabaseClient("http://supabase.test", "key", transport=httpx.MockTransport(self))


def _body(request):
    return json.loads(request.content)


# ── gemini JSON parsing ───────────────────────────────────────

def test_parse_json_response_tolerates_fences_and_chatter():
    text = '```json\nHere you go: {"medications": [{"name": "Napa"}]}\n```'
    assert parse_json_response(text) == {"medications": [{"name": "Napa"}]}


def test_parse_json_response_without_object():
    with pytest.raises(ValueError):
        parse_json_response("I could not read the image")


# ── stock ─────────────────────────────────────────────────────

def test_stock_search_maps_rows_and_filters():
    backend = RecordingBackend({
        "medicines": lambda r: httpx.Response(200, json=[
            {
                "id": "med-1", "generic_name": "Paracetamol", "brand_name": "Napa",
                "strength": "500mg", "form": "tablet",
                "stock": [{"id": "stock-1", "quantity": 100, "unit_price": "5.00"}],
            },
            {"id": "med-2", "generic_name": "Paracetamol", "brand_name": None, "stock": []},
        ]),
    })
    store = StockStore(sb=backend.client(), pharmacy_id="pharm-1")

    items = store.search("Napa")

    assert [i.id for i in items] == ["stock-1", None]
    assert items[0].quantity == 100 and items[0].unit_price == 5.0
    assert items[1].quantity == 0 and items[1].brand_name == ""
    params = backend.requests[0].url.params
    assert params["or"] == "(generic_name.ilike.*Napa*,brand_name.ilike.*Napa*)"
    assert params["pharmacy_id"] == "eq.pharm-1"


def test_stock_search_blank_query_skips_request():
    backend = RecordingBackend({})
    assert StockStore(sb=backend.client(), pharmacy_id="p").search(" (*) ") == []
    assert backend.requests == []


def test_add_medicine_inserts_zero_stock_row():
    backend = RecordingBackend({
        "medicines": lambda r: httpx.Response(201, json=[{"id": "med-9"}]),
        "stock": lambda r: httpx.Response(201, json=[{"id": "stock-9"}]),
    })
    store = StockStore(sb=backend.client(), pharmacy_id="pharm-1")

    item = store.add_medicine(NewMedicine(generic_name="Amoxicillin", brand_name="Moxacil", strength="250mg"))

    assert (item.id, item.medicine_id, item.quantity, item.unit_price) == ("stock-9", "med-9", 0, 0)
    medicine_row = _body(backend.requests[0])
    assert medicine_row["form"] == "tablet" and medicine_row["pharmacy_id"] == "pharm-1"
    assert _body(backend.requests[1])["quantity"] == 0


def test_update_stock_without_row_raises():
    backend = RecordingBackend({"stock": lambda r: httpx.Response(200, json=[])})
    with pytest.raises(RuntimeError):
        StockStore(sb=backend.client(), pharmacy_id="p").update_stock("stock-1", {"quantity": 3})


# ── sales ─────────────────────────────────────────────────────

def _sale():
    line = SaleLineItem(medicine_id="med-1", stock_id="stock-1", medicine_name="Paracetamol",
                        quantity=10, unit_price=5, total_amount=50)
    return Sale.from_items([line], prescription_id="presc_1")


def test_create_sale_writes_header_then_items():
    backend = RecordingBackend({
        "sales": lambda r: httpx.Response(201, json=[{"id": "sale-1"}]),
        "sale_items": lambda r: httpx.Response(201, json=[{"id": "item-1"}]),
    })
    saved = SaleLedger(sb=backend.client()).create_sale(_sale())

    assert saved.id == "sale-1"
    header = _body(backend.requests[0])
    assert header["total_amount"] == 50 and "items" not in header
    assert _body(backend.requests[1])[0]["sale_id"] == "sale-1"


def test_failed_items_insert_cancels_header():
    def sales(request):
        if request.method == "POST":
            return httpx.Response(201, json=[{"id": "sale-1"}])
        return httpx.Response(200, json=[{"id": "sale-1", "status": "cancelled"}])

    backend = RecordingBackend({
        "sales": sales,
        "sale_items": lambda r: httpx.Response(500, text="boom"),
    })
    with pytest.raises(httpx.HTTPStatusError):
        SaleLedger(sb=backend.client()).create_sale(_sale())

    cancel = backend.requests[-1]
    assert cancel.method == "PATCH"
    assert _body(cancel) == {"status": "cancelled"}


def test_sale_from_items_totals():
    sale = _sale()
    assert (sale.subtotal, sale.total_amount, sale.paid_amount, sale.due_amount) == (50, 50, 50, 0)
    overpaid = Sale.from_items(sale.items, paid_amount=80)
    assert overpaid.due_amount == 0


# ── history ───────────────────────────────────────────────────

def test_in_memory_history_latest_wins():
    repo = InMemoryHistoryRepository()
    repo.append(HistoryRecord(prescription_id="p1", status="analyzed"))
    repo.append(HistoryRecord(prescription_id="p2", status="analyzed"))
    repo.append(HistoryRecord(prescription_id="p1", status="partial"))

    assert repo.latest("p1").status == "partial"
    assert repo.latest("missing") is None
    assert [r.status for r in repo.list("p1")] == ["partial", "analyzed"]
    assert [r.prescription_id for r in repo.list()] == ["p1", "p2", "p1"]


def test_supabase_history_roundtrip():
    backend = RecordingBackend({
        "prescription_history": lambda r: httpx.Response(
            201 if r.method == "POST" else 200,
            json=[{"prescription_id": "p1", "status": "dispensed", "created_at": "2024-01-15T10:00:00+00:00"}],
        ),
    })
    repo = SupabaseHistoryRepository(sb=backend.client())

    repo.append(HistoryRecord(prescription_id="p1", status="dispensed"))
    latest = repo.latest("p1")

    assert _body(backend.requests[0])["status"] == "dispensed"
    assert latest.status == "dispensed"
    params = backend.requests[1].url.params
    assert params["order"] == "created_at.desc" and params["limit"] == "1"
