"""
Return Processor.

Wires the pure returns domain to the document store. This is the
collaborator the intake workflow calls to find sales and submit return
requests, and the backend for the returns HTTP API.

Quantities are reserved on the original sale when a return is created
(sale line `returnedQuantity`), stock is restored when it is completed,
and a cancelled return gives its reservation back.
"""

import logging
import math
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from config import settings
from core.data import Document, DuplicateDocument, QueryOptions, iter_documents, public_document
from core.domain import round_money, utc_now
from core.errors import (
    ConcurrencyConflict,
    IncompleteSelection,
    InvalidQuantity,
    InvalidTransition,
    NotFound,
)
from shared.repositories import Repositories

from .domain.policies import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    ReturnStatusPolicy,
    StockMovementValidator,
)
from .domain.services import (
    OriginalSale,
    ReturnLineSelection,
    ReturnNumberGenerator,
    ReturnRequestBuilder,
    StockMovementRecorder,
)

logger = logging.getLogger(__name__)


class ReturnProcessor:
    """
    Processes return requests against the document store.

    All business decisions are delegated to the domain layer; this class
    only loads documents, applies the decisions and persists the results.
    """

    def __init__(
        self,
        repositories: Repositories,
        auto_approve: Optional[bool] = None,
        default_refund_method: Optional[str] = None,
        reservation_retries: Optional[int] = None,
    ):
        self.repos = repositories
        self.auto_approve = settings.returns_auto_approve if auto_approve is None else auto_approve
        self.default_refund_method = default_refund_method or settings.returns_default_refund_method
        self.reservation_retries = max(1, reservation_retries or settings.return_reservation_retries)

        self.builder = ReturnRequestBuilder()
        self.status_policy = ReturnStatusPolicy()
        self.recorder = StockMovementRecorder()
        self.number_generator = ReturnNumberGenerator()
        self.movement_validator = StockMovementValidator()

    # =========================================================================
    # SALES
    # =========================================================================

    def find_sale(self, invoice_number: str) -> Optional[OriginalSale]:
        """
        Find a sale by invoice number.

        Tries an exact match first, then the most recent sale whose
        invoice number starts with the given text.
        """
        term = (invoice_number or "").strip()
        if not term:
            return None

        exact = self.repos.sales.find(QueryOptions(limit=1, filters={"invoiceNumber": term}))
        if exact.data:
            return OriginalSale.from_document(exact.data[0])

        prefix = self.repos.sales.find(QueryOptions(
            limit=1,
            prefix_filters={"invoiceNumber": term},
            order_by="saleDate",
            order_desc=True,
        ))
        if prefix.data:
            return OriginalSale.from_document(prefix.data[0])

        logger.debug(f"No sale matches invoice '{term}'")
        return None

    def get_sale(self, sale_id: str) -> Document:
        sale = self.repos.sales.get_by_id(sale_id)
        if sale is None:
            raise NotFound("Original sale not found", field="originalSaleId")
        return sale

    def get_sale_for_return(self, sale_id: str) -> Dict[str, Any]:
        """Sale with per-line returned/returnable quantities and its existing returns."""
        sale = public_document(self.get_sale(sale_id))
        items = []
        for item in sale.get("items", []):
            returned = int(item.get("returnedQuantity") or 0)
            items.append({
                **item,
                "returnedQuantity": returned,
                "returnableQuantity": max(0, int(item.get("qty", 0)) - returned),
            })
        sale["items"] = items
        sale["existingReturns"] = [
            public_document(doc)
            for doc in iter_documents(self.repos.returns, QueryOptions(
                filters={"originalSaleId": sale_id},
                order_by="returnDate",
                order_desc=True,
            ))
        ]
        return sale

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def _resolve_selections(self, sale: OriginalSale, items: List[Dict[str, Any]]) -> List[ReturnLineSelection]:
        """Map requested items onto sale lines, by lineIndex or productId."""
        selections: List[ReturnLineSelection] = []
        used = set()
        for position, item in enumerate(items):
            quantity = item.get("returnQuantity")
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                raise InvalidQuantity(
                    "Invalid return item data", field=f"items[{position}].returnQuantity"
                )

            index = item.get("lineIndex")
            if index is None:
                product_id = item.get("productId")
                if not product_id:
                    raise IncompleteSelection(
                        "Invalid return item data", field=f"items[{position}].productId"
                    )
                candidates = [
                    i for i, line in enumerate(sale.items)
                    if line.product_id == str(product_id)
                ]
                if not candidates:
                    raise NotFound(
                        f"Product {product_id} not found in original sale",
                        field=f"items[{position}].productId",
                    )
                unused = [i for i in candidates if i not in used]
                index = unused[0] if unused else candidates[0]
            elif not 0 <= index < len(sale.items):
                raise NotFound(
                    f"Line item {index} not found in original sale",
                    field=f"items[{position}].lineIndex",
                )

            used.add(index)
            selections.append(ReturnLineSelection(
                line_index=index,
                return_quantity=quantity,
                reason=item.get("returnReason"),
            ))
        return selections

    def submit_return(self, payload: Dict[str, Any]) -> Document:
        """
        Create a return against an original sale.

        Prices and quantities are checked against the stored sale, the
        record is validated, the quantities are reserved on the sale and
        the record is inserted with status pending (or completed when
        auto-approval is on).

        Raises:
            IncompleteSelection: No sale id, items or reason
            NotFound: Unknown sale or product
            InvalidQuantity: Over-return, now or at reservation time
            SchemaViolation: The record fails validation
            ConcurrencyConflict: The sale kept changing during reservation
        """
        sale_id = payload.get("originalSaleId")
        items = payload.get("items") or []
        if not sale_id or not items:
            raise IncompleteSelection("Original sale ID and return items are required", field="items")
        return_reason = payload.get("returnReason")
        if not return_reason:
            raise IncompleteSelection("Return reason is required", field="returnReason")

        sale = OriginalSale.from_document(self.get_sale(sale_id))
        selections = self._resolve_selections(sale, items)

        record = self.builder.execute(
            sale=sale,
            selections=selections,
            return_reason=return_reason,
            refund_method=payload.get("refundMethod") or self.default_refund_method,
            notes=payload.get("notes") or "",
        )

        now = utc_now()
        record["id"] = str(uuid.uuid4())
        record["returnNumber"] = self.number_generator.execute(self.repos.returns.count(), now)
        record["createdAt"] = now.isoformat()
        record["updatedAt"] = now.isoformat()

        quantities: Dict[int, int] = {}
        for selection in selections:
            quantities[selection.line_index] = quantities.get(selection.line_index, 0) + selection.return_quantity
        reference = {
            "returnId": record["id"],
            "returnNumber": record["returnNumber"],
            "returnDate": record["returnDate"],
            "returnAmount": record["totalRefund"],
        }
        self._update_sale(sale_id, lambda doc: self._reserve(doc, quantities, reference, now))

        try:
            created = self.repos.returns.create(record)
        except Exception:
            logger.error(f"Failed to store return {record['returnNumber']}; releasing reservation", exc_info=True)
            self._update_sale(sale_id, lambda doc: self._release(doc, record, now))
            raise

        logger.info(
            f"Created return {created['returnNumber']} for sale {sale.invoice_number} "
            f"({created['returnType']}, refund {created['totalRefund']:.2f})"
        )

        if self.auto_approve:
            return self.update_status(created["id"], STATUS_COMPLETED)
        return public_document(created)

    # =========================================================================
    # SALE RESERVATIONS
    # =========================================================================

    def _update_sale(self, sale_id: str, mutate: Callable[[Document], None]) -> Document:
        """
        Apply a mutation to the sale with an etag-conditional replace.

        The sale is re-read and the mutation re-applied on every attempt,
        so checks inside the mutation always see the latest quantities.
        """
        for attempt in range(1, self.reservation_retries + 1):
            sale = self.get_sale(sale_id)
            mutate(sale)
            try:
                return self.repos.sales.replace(sale, sale.get("_etag"))
            except ConcurrencyConflict:
                logger.warning(
                    f"Sale {sale_id} changed concurrently "
                    f"(attempt {attempt}/{self.reservation_retries})"
                )
        raise ConcurrencyConflict(
            "The original sale is being updated by another request. Please try again.",
            field="originalSaleId",
        )

    def _reserve(self, sale: Document, quantities: Dict[int, int], reference: Dict[str, Any], now: datetime):
        lines = sale.get("items", [])
        for index, quantity in quantities.items():
            line = lines[index]
            returned = int(line.get("returnedQuantity") or 0)
            available = int(line.get("qty", 0)) - returned
            if quantity > available:
                raise InvalidQuantity(
                    f"Cannot return {quantity} units of {line.get('name', 'item')}. "
                    f"Only {available} units available for return.",
                    field=f"items[{index}].returnQuantity",
                )
            line["returnedQuantity"] = returned + quantity
        sale.setdefault("returns", []).append(reference)
        sale["updatedAt"] = now.isoformat()

    def _release(self, sale: Document, record: Document, now: datetime):
        """
        Give a return's quantities back to the sale lines it reserved.

        Items carry the lineIndex they were reserved against; records
        without one fall back to matching by productId in line order.
        A sale that no longer references the return was already released.
        """
        references = sale.get("returns", [])
        if not any(ref.get("returnId") == record["id"] for ref in references):
            logger.info(f"Return {record.get('returnNumber')} already released on sale {sale.get('id')}")
            return

        lines = sale.get("items", [])
        for item in record.get("items", []):
            remaining = int(item["returnQuantity"])
            index = item.get("lineIndex")
            if isinstance(index, int) and 0 <= index < len(lines):
                candidates = [lines[index]]
            else:
                candidates = [
                    line for line in lines
                    if str(line.get("productId")) == str(item["productId"])
                ]
            for line in candidates:
                if remaining <= 0:
                    break
                returned = int(line.get("returnedQuantity") or 0)
                released = min(returned, remaining)
                line["returnedQuantity"] = returned - released
                remaining -= released
        sale["returns"] = [ref for ref in references if ref.get("returnId") != record["id"]]
        sale["updatedAt"] = now.isoformat()

    # =========================================================================
    # STATUS CHANGES
    # =========================================================================

    def update_status(self, return_id: str, status: str, notes: Optional[str] = None) -> Document:
        """
        Approve (completed) or reject (cancelled) a pending return.

        The status change is written first with an etag condition, so
        that concurrent approvals cannot both restock, and carries
        settlementPending until the stock or sale updates are done.
        Asking for the same status again while the flag is set resumes
        those updates; every step skips work an earlier attempt finished.

        Raises:
            NotFound: Unknown return
            InvalidTransition: The lifecycle does not allow the change
        """
        record = self.repos.returns.get_by_id(return_id)
        if record is None:
            raise NotFound("Return record not found")

        if record.get("settlementPending") and record.get("status") == status:
            logger.info(f"Resuming {status} updates for return {record.get('returnNumber')}")
            return self._settle(record, utc_now())

        decision = self.status_policy.evaluate({
            "current_status": record.get("status"),
            "requested_status": status,
        })
        if decision.is_denied:
            logger.warning(f"Rejected status change on {record.get('returnNumber')}: {decision.reason}")
            raise InvalidTransition(decision.reason, field="status")

        now = utc_now()
        record["status"] = status
        record["updatedAt"] = now.isoformat()
        record["settlementPending"] = True
        if notes:
            record["notes"] = notes
        if status == STATUS_COMPLETED:
            record["approvedAt"] = now.isoformat()

        updated = self.repos.returns.replace(record, record.get("_etag"))
        return self._settle(updated, now)

    def _settle(self, record: Document, now: datetime) -> Document:
        """Apply the stock or sale updates a status change implies, then clear the flag."""
        status = record["status"]
        if status == STATUS_COMPLETED:
            self._restock(record, now)
        elif status == STATUS_CANCELLED:
            try:
                self._update_sale(record["originalSaleId"], lambda doc: self._release(doc, record, now))
            except NotFound:
                logger.warning(
                    f"Sale {record['originalSaleId']} no longer exists; "
                    f"nothing to release for {record['returnNumber']}"
                )

        record.pop("settlementPending", None)
        settled = self.repos.returns.replace(record, record.get("_etag"))
        logger.info(f"Return {settled['returnNumber']} is now {status}")
        return public_document(settled)

    def _increment_stock(self, product_id: str, name: str, quantity: int, now: datetime) -> float:
        """Add quantity to a product's stock; returns the on-hand quantity before it."""
        stamp = {"lastUpdated": now.isoformat()}
        deltas = {"currentQty": quantity, "availableQty": quantity}
        try:
            doc = self.repos.stock.increment(product_id, deltas, stamp)
        except NotFound:
            try:
                self.repos.stock.create({
                    "id": product_id,
                    "productId": product_id,
                    "productName": name,
                    "currentQty": quantity,
                    "availableQty": quantity,
                    **stamp,
                })
                return 0
            except DuplicateDocument:
                doc = self.repos.stock.increment(product_id, deltas, stamp)
        return doc.get("currentQty", 0) - quantity

    def _undo_increment(self, product_id: str, quantity: int, now: datetime):
        self.repos.stock.increment(
            product_id,
            {"currentQty": -quantity, "availableQty": -quantity},
            {"lastUpdated": now.isoformat()},
        )

    def _restock(self, record: Document, now: datetime):
        """
        Put returned units back on hand and append the ledger entries.

        Ledger ids are derived from the return id and the item position.
        A line whose entry already exists was restocked by an earlier
        attempt and is skipped; a line whose entry cannot be written has
        its increment undone.
        """
        restocked = 0
        for position, item in enumerate(record.get("items", [])):
            movement_id = f"{record['id']}-{position}"
            if self.repos.stock_movements.get_by_id(movement_id) is not None:
                continue

            product_id = str(item["productId"])
            quantity = int(item["returnQuantity"])
            previous = self._increment_stock(product_id, item.get("name", ""), quantity, now)
            entry = self.recorder.execute(
                stock_snapshot={product_id: previous},
                items=[item],
                reference_id=record["id"],
                reference_number=record.get("returnNumber"),
                notes=f"Return from sale {record.get('originalInvoiceNumber', '')}",
                created_at=now,
            )[0]
            movement = entry.to_dict()
            movement["id"] = movement_id
            try:
                self.movement_validator.check(movement)
                self.repos.stock_movements.create(movement)
            except DuplicateDocument:
                # Another attempt recorded this line first
                self._undo_increment(product_id, quantity, now)
                continue
            except Exception:
                self._undo_increment(product_id, quantity, now)
                raise
            restocked += 1
        logger.info(f"Restocked {restocked} line(s) for return {record.get('returnNumber')}")

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_current_stock(self, product_id: str) -> Dict[str, Any]:
        """On-hand quantity for a product (0 when it has no stock record)."""
        doc = self.repos.stock.get_by_id(product_id)
        if doc is None:
            return {"productId": product_id, "quantity": 0}
        return {
            "productId": product_id,
            "productName": doc.get("productName"),
            "quantity": doc.get("currentQty", 0),
            "availableQty": doc.get("availableQty", doc.get("currentQty", 0)),
            "lastUpdated": doc.get("lastUpdated"),
        }

    def get_return(self, return_id: str) -> Document:
        record = self.repos.returns.get_by_id(return_id)
        if record is None:
            raise NotFound("Return record not found")
        return public_document(record)

    def list_returns(
        self,
        page: int = 1,
        limit: int = 20,
        search: str = "",
        status: str = "",
    ) -> Dict[str, Any]:
        """
        List returns, newest first.

        Args:
            page: 1-based page number
            limit: Page size
            search: Matched against return number, invoice number and customer name
            status: Optional status filter
        """
        page = max(1, page)
        limit = max(1, limit)
        options = QueryOptions(
            limit=limit,
            offset=(page - 1) * limit,
            order_by="returnDate",
            order_desc=True,
        )
        if search:
            options.search = search
            options.search_fields = ["returnNumber", "originalInvoiceNumber", "customer.name"]
        if status:
            options.filters["status"] = status

        result = self.repos.returns.find(options)
        return {
            "data": [public_document(doc) for doc in result.data],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": result.total_count,
                "pages": math.ceil(result.total_count / limit),
            },
        }

    def stats_summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Completed-return totals for today, this month, overall and by reason."""
        now = now or utc_now()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        start_of_month = start_of_day.replace(day=1)

        today = {"returns": 0, "amount": 0.0}
        monthly = {"returns": 0, "amount": 0.0}
        by_reason: Dict[str, Dict[str, Any]] = {}
        total = 0

        for record in iter_documents(self.repos.returns, QueryOptions(filters={"status": STATUS_COMPLETED})):
            total += 1
            amount = record.get("totalRefund") or 0
            reason = record.get("returnReason") or "Other"
            bucket = by_reason.setdefault(reason, {"reason": reason, "count": 0, "totalAmount": 0.0})
            bucket["count"] += 1
            bucket["totalAmount"] += amount

            returned_at = record.get("returnDate") or ""
            if returned_at >= start_of_month.isoformat():
                monthly["returns"] += 1
                monthly["amount"] += amount
            if returned_at >= start_of_day.isoformat():
                today["returns"] += 1
                today["amount"] += amount

        for bucket in (today, monthly, *by_reason.values()):
            key = "amount" if "amount" in bucket else "totalAmount"
            bucket[key] = round_money(bucket[key])

        return {
            "today": today,
            "monthly": monthly,
            "total": total,
            "byReason": sorted(by_reason.values(), key=lambda b: b["count"], reverse=True),
        }

    def list_stock_movements(
        self,
        product_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Dict[str, Any]:
        options = QueryOptions(limit=limit, offset=offset, order_by="createdAt", order_desc=True)
        if product_id:
            options.filters["productId"] = product_id
        result = self.repos.stock_movements.find(options)
        return {
            "data": [public_document(doc) for doc in result.data],
            "total": result.total_count,
            "hasMore": result.has_more,
        }
