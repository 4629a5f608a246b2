"""
Domain Services - Business Operations.

These services orchestrate business logic without I/O dependencies.
They use policies for decisions and work with pure data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from core.domain import DomainService, round_money, to_iso
from core.errors import IncompleteSelection, InvalidQuantity, NotFound

from .policies import (
    STATUS_PENDING,
    ReturnQuantityPolicy,
    ReturnRecordValidator,
)


# =============================================================================
# SALE MODEL
# =============================================================================

@dataclass
class SaleLineItem:
    """One line of an original sale, with what is still returnable."""
    product_id: str
    name: str
    unit_price: float
    original_quantity: int
    returned_quantity: int = 0
    sku: Optional[str] = None
    batch_number: Optional[str] = None
    expiry_date: Optional[str] = None

    @property
    def returnable_quantity(self) -> int:
        return max(0, self.original_quantity - self.returned_quantity)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SaleLineItem":
        return cls(
            product_id=str(data.get("productId", "")),
            name=data.get("name", ""),
            unit_price=float(data.get("price", 0) or 0),
            original_quantity=int(data.get("qty", data.get("quantity", 0)) or 0),
            returned_quantity=int(data.get("returnedQuantity", 0) or 0),
            sku=data.get("sku"),
            batch_number=data.get("batchNumber"),
            expiry_date=to_iso(data.get("expiryDate")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "price": self.unit_price,
            "qty": self.original_quantity,
            "returnedQuantity": self.returned_quantity,
            "returnableQuantity": self.returnable_quantity,
        }


@dataclass
class OriginalSale:
    """A completed sale, read-only to the returns feature."""
    id: str
    invoice_number: str
    items: List[SaleLineItem]
    subtotal: float = 0.0
    discount: float = 0.0
    vat_amount: float = 0.0
    grand_total: float = 0.0
    customer: Optional[Dict[str, Any]] = None
    sale_date: Optional[str] = None

    @property
    def refund_base(self) -> float:
        """The amount discount and VAT were computed against."""
        return self.subtotal or self.grand_total

    @property
    def has_returnable_items(self) -> bool:
        return any(line.returnable_quantity > 0 for line in self.items)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "OriginalSale":
        return cls(
            id=str(doc["id"]),
            invoice_number=doc.get("invoiceNumber") or doc.get("invoiceNo") or "",
            items=[SaleLineItem.from_dict(item) for item in doc.get("items", [])],
            subtotal=float(doc.get("subtotal", 0) or 0),
            discount=float(doc.get("discount", 0) or 0),
            vat_amount=float(doc.get("vatAmount", 0) or 0),
            grand_total=float(doc.get("grandTotal", 0) or 0),
            customer=doc.get("customer"),
            sale_date=to_iso(doc.get("saleDate")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "invoiceNumber": self.invoice_number,
            "customer": self.customer,
            "saleDate": self.sale_date,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "vatAmount": self.vat_amount,
            "grandTotal": self.grand_total,
            "items": [line.to_dict() for line in self.items],
        }


@dataclass
class ReturnLineSelection:
    """A requested return quantity against one sale line."""
    line_index: int
    return_quantity: int
    reason: Optional[str] = None


# =============================================================================
# SERVICE RESULTS
# =============================================================================

@dataclass
class RefundResult:
    """Result of a refund calculation."""
    subtotal: float
    discount: float
    vat_amount: float
    total_refund: float
    ratio: float


@dataclass
class StockMovementEntry:
    """One append-only stock ledger entry."""
    product_id: str
    product_name: str
    quantity: int
    previous_qty: float
    new_qty: float
    reference_id: str
    reference_number: Optional[str] = None
    movement_type: str = "return"
    reference_type: str = "return"
    notes: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "productId": self.product_id,
            "productName": self.product_name,
            "movementType": self.movement_type,
            "quantity": self.quantity,
            "previousQty": self.previous_qty,
            "newQty": self.new_qty,
            "referenceType": self.reference_type,
            "referenceId": self.reference_id,
            "referenceNumber": self.reference_number,
            "notes": self.notes,
            "createdAt": self.created_at.isoformat(),
        }


# =============================================================================
# DOMAIN SERVICES
# =============================================================================

class RefundCalculator(DomainService):
    """
    Calculates refund amounts for returned lines.

    Discount and VAT are refunded in proportion to the share of the
    original sale being returned.
    """

    def execute(self, sale: OriginalSale, line_totals: Sequence[float]) -> RefundResult:
        """
        Calculate the refund for a return.

        Args:
            sale: The original sale
            line_totals: Already rounded totals of the returned lines

        Returns:
            RefundResult with calculated amounts
        """
        subtotal = round_money(sum(line_totals))
        base = sale.refund_base
        ratio = subtotal / base if base else 0.0

        discount = round_money(sale.discount * ratio)
        vat_amount = round_money(sale.vat_amount * ratio)
        total_refund = round_money(subtotal - discount + vat_amount)

        return RefundResult(
            subtotal=subtotal,
            discount=discount,
            vat_amount=vat_amount,
            total_refund=total_refund,
            ratio=ratio,
        )


def resolve_return_type(sale: OriginalSale, quantities: Dict[int, int]) -> str:
    """
    "full" when every returnable unit of every sale line is being
    returned, otherwise "partial".

    Args:
        sale: The original sale
        quantities: Requested return quantity keyed by line index
    """
    returnable_lines = [
        (index, line) for index, line in enumerate(sale.items)
        if line.returnable_quantity > 0
    ]
    if not returnable_lines:
        return "partial"
    for index, line in returnable_lines:
        if quantities.get(index, 0) != line.returnable_quantity:
            return "partial"
    return "full"


class ReturnRequestBuilder(DomainService):
    """
    Builds a validated return record.

    This service:
    1. Checks the selection is complete and within returnable bounds
    2. Calculates line totals, refund amounts and the return type
    3. Validates and normalizes the complete record
    """

    def __init__(self):
        self.quantity_policy = ReturnQuantityPolicy()
        self.refund_calculator = RefundCalculator()
        self.validator = ReturnRecordValidator()

    def execute(
        self,
        sale: OriginalSale,
        selections: Sequence[ReturnLineSelection],
        return_reason: str,
        refund_method: Optional[str] = "cash",
        notes: str = "",
        return_date: Optional[datetime] = None,
        status: str = STATUS_PENDING,
    ) -> Dict[str, Any]:
        """
        Build a return record.

        Args:
            sale: The original sale being returned against
            selections: Requested quantities per sale line
            return_reason: Primary reason for the return
            refund_method: How the refund is paid out
            notes: Free-form notes
            return_date: Defaults to now
            status: Initial status

        Returns:
            The normalized return record (without id or returnNumber)

        Raises:
            IncompleteSelection: No items selected or no reason given
            InvalidQuantity: A quantity is outside its returnable remainder
            NotFound: A selection points at a line the sale does not have
            SchemaViolation: The assembled record fails validation
        """
        active = [s for s in selections if s.return_quantity]
        if not active:
            raise IncompleteSelection("Please select at least one item to return", field="items")
        if not return_reason or not str(return_reason).strip():
            raise IncompleteSelection("Please select a return reason", field="returnReason")

        quantities: Dict[int, int] = {}
        for selection in active:
            if selection.line_index < 0 or selection.line_index >= len(sale.items):
                raise NotFound(f"Line item {selection.line_index} not found in sale {sale.invoice_number}")
            quantities[selection.line_index] = quantities.get(selection.line_index, 0) + selection.return_quantity

        items: List[Dict[str, Any]] = []
        line_totals: List[float] = []
        reasons = {s.line_index: s.reason for s in active if s.reason}
        for index, quantity in quantities.items():
            line = sale.items[index]
            decision = self.quantity_policy.evaluate({
                "return_quantity": quantity,
                "returnable_quantity": line.returnable_quantity,
                "name": line.name,
            })
            if decision.is_denied:
                raise InvalidQuantity(decision.reason, field=f"items[{index}].returnQuantity")

            total = round_money(quantity * line.unit_price)
            line_totals.append(total)
            item = {
                "lineIndex": index,
                "productId": line.product_id,
                "name": line.name,
                "sku": line.sku,
                "originalQuantity": line.original_quantity,
                "returnedQuantity": line.returned_quantity,
                "returnQuantity": int(quantity),
                "price": line.unit_price,
                "total": total,
                "returnReason": reasons.get(index) or return_reason,
                "batchNumber": line.batch_number,
                "expiryDate": line.expiry_date,
            }
            items.append({k: v for k, v in item.items() if v is not None})

        refund = self.refund_calculator.execute(sale, line_totals)
        record: Dict[str, Any] = {
            "originalSaleId": sale.id,
            "originalInvoiceNumber": sale.invoice_number,
            "items": items,
            "returnReason": return_reason,
            "returnType": resolve_return_type(sale, quantities),
            "subtotal": refund.subtotal,
            "discount": refund.discount,
            "vatAmount": refund.vat_amount,
            "totalRefund": refund.total_refund,
            "status": status,
            "returnDate": (return_date or datetime.now(timezone.utc)).isoformat(),
            "notes": notes or "",
        }
        if refund_method:
            record["refundMethod"] = refund_method
        if sale.customer:
            record["customer"] = {k: v for k, v in sale.customer.items() if v is not None}

        return self.validator.validate_and_normalize(record)


class StockMovementRecorder(DomainService):
    """
    Produces one stock ledger entry per returned line.

    A pure function of (current stock snapshot, return items); it never
    touches stock itself.
    """

    def execute(
        self,
        stock_snapshot: Dict[str, float],
        items: Sequence[Dict[str, Any]],
        reference_id: str,
        reference_number: Optional[str] = None,
        notes: str = "",
        created_at: Optional[datetime] = None,
    ) -> List[StockMovementEntry]:
        """
        Build the ledger entries for a return.

        Args:
            stock_snapshot: On-hand quantity keyed by product id
                (missing products start at 0)
            items: Return record items (productId, name, returnQuantity)
            reference_id: Id of the return record
            reference_number: The return number
            notes: Copied onto every entry
            created_at: Entry timestamp, defaults to now

        Returns:
            One StockMovementEntry per item, in item order
        """
        created_at = created_at or datetime.now(timezone.utc)
        running = dict(stock_snapshot)
        entries: List[StockMovementEntry] = []

        for item in items:
            product_id = str(item["productId"])
            quantity = int(item["returnQuantity"])
            previous = running.get(product_id, 0)
            new = previous + quantity
            running[product_id] = new

            entries.append(StockMovementEntry(
                product_id=product_id,
                product_name=item.get("name", ""),
                quantity=quantity,
                previous_qty=previous,
                new_qty=new,
                reference_id=reference_id,
                reference_number=reference_number,
                notes=notes,
                created_at=created_at,
            ))
        return entries


class ReturnNumberGenerator(DomainService):
    """Generates RET-<epoch-ms>-<NNNN> return numbers."""

    def execute(self, existing_count: int, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        millis = int(now.timestamp() * 1000)
        return f"RET-{millis}-{existing_count + 1:04d}"
