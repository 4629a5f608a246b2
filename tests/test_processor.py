"""Return processing against the in-memory document store."""

import copy
import re

import pytest

from core.data import InMemoryRepository
from core.domain import utc_now
from core.errors import (
    ConcurrencyConflict,
    IncompleteSelection,
    InvalidQuantity,
    InvalidTransition,
    NotFound,
    SchemaViolation,
)
from data.sample.pos_data import SALES
from use_cases.returns import ReturnProcessor


def glove_return(quantity=5, **extra):
    payload = {
        "originalSaleId": "sale-001",
        "items": [{"productId": "prod-glove-m", "returnQuantity": quantity}],
        "returnReason": "Damaged Product",
    }
    payload.update(extra)
    return payload


def seed_sales(repositories):
    for sale in SALES:
        repositories.sales.create(copy.deepcopy(sale))


def returned_quantity(repositories, sale_id, line=0):
    return repositories.sales.get_by_id(sale_id)["items"][line]["returnedQuantity"]


# =============================================================================
# SALE LOOKUP
# =============================================================================

def test_find_sale_exact_match(processor):
    assert processor.find_sale("INV-001").id == "sale-001"


def test_find_sale_by_prefix(processor):
    assert processor.find_sale("INV-003").invoice_number == "INV-0031"


def test_find_sale_miss(processor):
    assert processor.find_sale("INV-999") is None
    assert processor.find_sale("  ") is None


def test_sale_for_return_shows_remainders(processor):
    processor.submit_return(glove_return(2))
    sale = processor.get_sale_for_return("sale-001")

    assert sale["items"][0]["returnedQuantity"] == 2
    assert sale["items"][0]["returnableQuantity"] == 3
    assert len(sale["existingReturns"]) == 1
    assert "_etag" not in sale


def test_unknown_sale(processor):
    with pytest.raises(NotFound):
        processor.get_sale_for_return("sale-999")


# =============================================================================
# SUBMISSION
# =============================================================================

def test_submit_reserves_quantities_without_touching_stock(processor, repositories):
    record = processor.submit_return(glove_return())

    assert re.match(r"^RET-\d+-0001$", record["returnNumber"])
    assert record["status"] == "pending"
    assert record["returnType"] == "full"
    assert record["totalRefund"] == 500.0
    assert returned_quantity(repositories, "sale-001") == 5
    assert repositories.sales.get_by_id("sale-001")["returns"][0]["returnId"] == record["id"]
    assert repositories.stock.get_by_id("prod-glove-m")["currentQty"] == 40
    assert repositories.stock_movements.count() == 0


def test_client_prices_are_ignored(processor):
    payload = glove_return(1)
    payload["items"][0]["price"] = 1.0
    payload["totalRefund"] = 1.0
    record = processor.submit_return(payload)
    assert record["totalRefund"] == 100.0


def test_second_return_cannot_exceed_remainder(processor):
    processor.submit_return(glove_return(4))
    with pytest.raises(InvalidQuantity) as exc_info:
        processor.submit_return(glove_return(2))
    assert exc_info.value.message == (
        "Cannot return 2 units of Nitrile Examination Gloves (M). Only 1 units available for return."
    )


def test_lines_can_be_addressed_by_index(processor):
    record = processor.submit_return({
        "originalSaleId": "sale-002",
        "items": [{"lineIndex": 2, "returnQuantity": 3, "returnReason": "Expired Product"}],
        "returnReason": "Quality Issue",
    })
    assert record["items"][0]["productId"] == "prod-gauze"
    assert record["items"][0]["returnReason"] == "Expired Product"


@pytest.mark.parametrize("payload, error", [
    ({"items": [{"productId": "prod-glove-m", "returnQuantity": 1}], "returnReason": "Other"}, IncompleteSelection),
    (glove_return(items=[]), IncompleteSelection),
    (glove_return(returnReason=""), IncompleteSelection),
    (glove_return(originalSaleId="sale-999"), NotFound),
    (glove_return(items=[{"productId": "prod-mask", "returnQuantity": 1}]), NotFound),
    (glove_return(items=[{"productId": "prod-glove-m", "returnQuantity": 0}]), InvalidQuantity),
    (glove_return(items=[{"productId": "prod-glove-m", "returnQuantity": "2"}]), InvalidQuantity),
    (glove_return(returnReason="Stolen"), SchemaViolation),
])
def test_rejected_submissions_reserve_nothing(processor, repositories, payload, error):
    with pytest.raises(error):
        processor.submit_return(payload)
    assert returned_quantity(repositories, "sale-001") == 0
    assert repositories.returns.count() == 0


# =============================================================================
# CONCURRENCY
# =============================================================================

class ConflictingRepository(InMemoryRepository):
    """Loses every conditional replace to some other writer."""

    def replace(self, entity, etag):
        raise ConcurrencyConflict("modified concurrently")


class RacingRepository(InMemoryRepository):
    """Another counter reserves units between our read and our write, once."""

    def __init__(self, name, returned_by_other):
        super().__init__(name)
        self.returned_by_other = returned_by_other
        self.raced = False

    def replace(self, entity, etag):
        if not self.raced:
            self.raced = True
            other = self.get_by_id(entity["id"])
            other["items"][0]["returnedQuantity"] = self.returned_by_other
            self.save(other)
        return super().replace(entity, etag)


def test_persistent_conflict_gives_up(repositories):
    repositories.sales = ConflictingRepository("sales")
    seed_sales(repositories)
    processor = ReturnProcessor(repositories, auto_approve=False, reservation_retries=3)

    with pytest.raises(ConcurrencyConflict):
        processor.submit_return(glove_return())
    assert repositories.returns.count() == 0


def test_conflict_is_retried_against_fresh_quantities(repositories):
    repositories.sales = RacingRepository("sales", returned_by_other=1)
    seed_sales(repositories)
    processor = ReturnProcessor(repositories, auto_approve=False, reservation_retries=3)

    processor.submit_return(glove_return(4))
    assert returned_quantity(repositories, "sale-001") == 5


def test_concurrent_reservation_is_rechecked(repositories):
    repositories.sales = RacingRepository("sales", returned_by_other=4)
    seed_sales(repositories)
    processor = ReturnProcessor(repositories, auto_approve=False, reservation_retries=3)

    with pytest.raises(InvalidQuantity):
        processor.submit_return(glove_return(5))
    assert returned_quantity(repositories, "sale-001") == 4
    assert repositories.returns.count() == 0


# =============================================================================
# STATUS CHANGES
# =============================================================================

def test_completion_restocks_and_records_movements(processor, repositories):
    record = processor.submit_return(glove_return())
    completed = processor.update_status(record["id"], "completed", notes="Checked by pharmacist")

    assert completed["status"] == "completed"
    assert completed["approvedAt"]
    assert completed["notes"] == "Checked by pharmacist"
    assert processor.get_current_stock("prod-glove-m")["quantity"] == 45

    movements = processor.list_stock_movements(product_id="prod-glove-m")
    assert movements["total"] == 1
    movement = movements["data"][0]
    assert (movement["previousQty"], movement["quantity"], movement["newQty"]) == (40, 5, 45)
    assert movement["referenceId"] == record["id"]
    assert movement["referenceNumber"] == record["returnNumber"]


def test_completed_return_is_final(processor):
    record = processor.submit_return(glove_return())
    processor.update_status(record["id"], "completed")

    with pytest.raises(InvalidTransition):
        processor.update_status(record["id"], "cancelled")
    assert processor.get_current_stock("prod-glove-m")["quantity"] == 45


def test_cancellation_releases_the_reservation(processor, repositories):
    record = processor.submit_return(glove_return(3))
    processor.update_status(record["id"], "cancelled")

    assert returned_quantity(repositories, "sale-001") == 0
    assert repositories.sales.get_by_id("sale-001")["returns"] == []
    assert processor.get_current_stock("prod-glove-m")["quantity"] == 40

    processor.submit_return(glove_return(5))
    assert returned_quantity(repositories, "sale-001") == 5


def test_cancellation_releases_the_lines_it_reserved(processor, repositories):
    sale = copy.deepcopy(SALES[0])
    sale.update({"id": "sale-dup", "invoiceNumber": "INV-DUP", "subtotal": 300.0, "grandTotal": 300.0})
    glove = sale["items"][0]
    sale["items"] = [
        {**glove, "price": 50.0, "qty": 2},
        {**glove, "price": 100.0, "qty": 2},
    ]
    repositories.sales.create(sale)

    first = processor.submit_return({
        "originalSaleId": "sale-dup",
        "items": [{"lineIndex": 0, "returnQuantity": 2}],
        "returnReason": "Damaged Product",
    })
    second = processor.submit_return({
        "originalSaleId": "sale-dup",
        "items": [{"lineIndex": 1, "returnQuantity": 1}],
        "returnReason": "Damaged Product",
    })
    assert second["items"][0]["lineIndex"] == 1

    processor.update_status(second["id"], "cancelled")
    assert [returned_quantity(repositories, "sale-dup", line) for line in (0, 1)] == [2, 0]

    processor.update_status(first["id"], "cancelled")
    assert [returned_quantity(repositories, "sale-dup", line) for line in (0, 1)] == [0, 0]


class FailingOnceRepository(InMemoryRepository):
    """The first write to the store fails."""

    def __init__(self, name):
        super().__init__(name)
        self.failed = False

    def create(self, entity):
        if not self.failed:
            self.failed = True
            raise RuntimeError("store unavailable")
        return super().create(entity)


def test_interrupted_completion_can_be_resumed(repositories):
    repositories.stock_movements = FailingOnceRepository("stock_movements")
    processor = ReturnProcessor(repositories, auto_approve=False)
    record = processor.submit_return(glove_return())

    with pytest.raises(RuntimeError):
        processor.update_status(record["id"], "completed")
    stored = repositories.returns.get_by_id(record["id"])
    assert stored["status"] == "completed"
    assert stored["settlementPending"] is True
    assert processor.get_current_stock("prod-glove-m")["quantity"] == 40
    assert repositories.stock_movements.count() == 0

    completed = processor.update_status(record["id"], "completed")
    assert "settlementPending" not in completed
    assert processor.get_current_stock("prod-glove-m")["quantity"] == 45
    assert repositories.stock_movements.count() == 1

    with pytest.raises(InvalidTransition):
        processor.update_status(record["id"], "completed")
    assert processor.get_current_stock("prod-glove-m")["quantity"] == 45


def test_interrupted_cancellation_releases_once(processor, repositories):
    record = processor.submit_return(glove_return(3))
    processor.update_status(record["id"], "cancelled")
    processor.submit_return(glove_return(2))

    pending = repositories.returns.get_by_id(record["id"])
    pending["settlementPending"] = True
    repositories.returns.save(pending)

    resumed = processor.update_status(record["id"], "cancelled")
    assert resumed["status"] == "cancelled"
    assert "settlementPending" not in resumed
    assert returned_quantity(repositories, "sale-001") == 2


def test_restock_creates_missing_stock_record(processor, repositories):
    repositories.stock.delete("prod-glove-m")
    record = processor.submit_return(glove_return(2))
    processor.update_status(record["id"], "completed")

    assert processor.get_current_stock("prod-glove-m")["quantity"] == 2
    movement = processor.list_stock_movements(product_id="prod-glove-m")["data"][0]
    assert (movement["previousQty"], movement["newQty"]) == (0, 2)


def test_unknown_return(processor):
    with pytest.raises(NotFound):
        processor.update_status("ret-999", "completed")


def test_auto_approve_completes_immediately(repositories):
    processor = ReturnProcessor(repositories, auto_approve=True)
    record = processor.submit_return(glove_return())

    assert record["status"] == "completed"
    assert processor.get_current_stock("prod-glove-m")["quantity"] == 45


# =============================================================================
# QUERIES
# =============================================================================

def test_stock_of_unknown_product_is_zero(processor):
    assert processor.get_current_stock("prod-unknown") == {"productId": "prod-unknown", "quantity": 0}


def test_list_returns_filters_and_paginates(processor):
    processor.submit_return(glove_return(1))
    processor.submit_return(glove_return(1))
    second_sale = processor.submit_return({
        "originalSaleId": "sale-002",
        "items": [{"productId": "prod-syringe-5", "returnQuantity": 1}],
        "returnReason": "Wrong Product",
    })
    processor.update_status(second_sale["id"], "completed")

    page = processor.list_returns(page=1, limit=2)
    assert len(page["data"]) == 2
    assert page["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}

    assert processor.list_returns(search="inv-002")["pagination"]["total"] == 1
    assert processor.list_returns(search="city care")["data"][0]["id"] == second_sale["id"]
    assert processor.list_returns(status="pending")["pagination"]["total"] == 2


def test_stats_count_completed_returns_only(processor):
    first = processor.submit_return(glove_return(2))
    processor.update_status(first["id"], "completed")
    processor.submit_return(glove_return(1))

    stats = processor.stats_summary(utc_now())

    assert stats["total"] == 1
    assert stats["today"] == {"returns": 1, "amount": 200.0}
    assert stats["monthly"] == {"returns": 1, "amount": 200.0}
    assert stats["byReason"] == [{"reason": "Damaged Product", "count": 1, "totalAmount": 200.0}]
