"""
Return Policies - Pure Business Rules.

These policies and validators encapsulate the business rules for returns.
They have NO dependencies on databases or external services.
All data needed for evaluation is passed in as parameters.
"""

import copy
from typing import Any, Dict, List

from core.domain import (
    RANGE_VIOLATION,
    DocumentSchemaValidator,
    PolicyDecision,
    PolicyEngine,
    PolicyResult,
    ValidationError,
    is_integer,
    is_number,
    money_equal,
    round_money,
    to_iso,
)


# =============================================================================
# CONFIGURATION
# =============================================================================

RETURN_REASONS = [
    "Expired Product",
    "Damaged Product",
    "Wrong Product",
    "Customer Changed Mind",
    "Quality Issue",
    "Prescription Change",
    "Duplicate Purchase",
    "Other",
]

RETURN_TYPES = ["full", "partial"]

REFUND_METHODS = ["cash", "bank", "store_credit", "original_payment"]

CUSTOMER_TYPES = ["Retail", "Wholesale"]

# Status lifecycle
STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

RETURN_STATUSES = [STATUS_PENDING, STATUS_COMPLETED, STATUS_CANCELLED]

# Allowed transitions; completed and cancelled are terminal
STATUS_TRANSITIONS = {
    STATUS_PENDING: [STATUS_COMPLETED, STATUS_CANCELLED],
    STATUS_COMPLETED: [],
    STATUS_CANCELLED: [],
}

MOVEMENT_TYPES = ["sale", "purchase", "return", "adjustment", "transfer"]

MONEY_FIELDS = ["subtotal", "discount", "vatAmount", "totalRefund"]


# =============================================================================
# POLICIES
# =============================================================================

class ReturnQuantityPolicy(PolicyEngine):
    """
    Policy bounding a line's return quantity by its returnable remainder.

    Context required:
        - return_quantity: Requested quantity
        - returnable_quantity: original quantity minus already returned
        - name: Product name (for the message)
    """

    def evaluate(self, context: Dict[str, Any]) -> PolicyDecision:
        quantity = context.get("return_quantity")
        returnable = context.get("returnable_quantity", 0)
        name = context.get("name", "item")

        if not is_integer(quantity):
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason=f"Return quantity for {name} must be a whole number",
                metadata={"returnable_quantity": returnable},
            )

        if quantity < 1:
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason=f"Return quantity for {name} must be at least 1",
                metadata={"returnable_quantity": returnable},
            )

        if quantity > returnable:
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason=(
                    f"Cannot return {int(quantity)} units of {name}. "
                    f"Only {returnable} units available for return."
                ),
                metadata={"returnable_quantity": returnable},
            )

        return PolicyDecision(
            result=PolicyResult.APPROVED,
            reason=f"{int(quantity)} of {returnable} units of {name} can be returned",
            metadata={"returnable_quantity": returnable, "is_full": quantity == returnable},
        )


class ReturnStatusPolicy(PolicyEngine):
    """
    Policy for status changes on a return record.

    Context required:
        - current_status: The stored status
        - requested_status: The status asked for
    """

    def evaluate(self, context: Dict[str, Any]) -> PolicyDecision:
        current = context.get("current_status", "")
        requested = context.get("requested_status", "")

        if requested not in RETURN_STATUSES:
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason=f"Invalid status '{requested}'. Must be one of: {', '.join(RETURN_STATUSES)}",
            )

        allowed = STATUS_TRANSITIONS.get(current, [])
        if requested not in allowed:
            if not allowed:
                reason = f"Return is already {current} and can no longer change status"
            else:
                reason = f"Cannot change a {current} return to {requested}"
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason=reason,
                metadata={"current_status": current, "allowed": allowed},
            )

        return PolicyDecision(
            result=PolicyResult.APPROVED,
            reason=f"Return moves from {current} to {requested}",
            metadata={"current_status": current, "requested_status": requested},
        )


# =============================================================================
# VALIDATORS
# =============================================================================

RETURN_ITEM_SCHEMA = {
    "type": "object",
    "required": ["productId", "name", "returnQuantity", "price", "total"],
    "properties": {
        "lineIndex": {"type": "int", "minimum": 0},
        "productId": {"type": "string"},
        "name": {"type": "string"},
        "sku": {"type": "string"},
        "originalQuantity": {"type": "int", "minimum": 1},
        "returnedQuantity": {"type": "int", "minimum": 0},
        "returnQuantity": {"type": "int", "minimum": 1},
        "price": {"type": "number", "minimum": 0},
        "total": {"type": "number", "minimum": 0},
        "returnReason": {"type": "string"},
        "batchNumber": {"type": "string"},
        "expiryDate": {"type": "date"},
    },
}

RETURN_SCHEMA = {
    "type": "object",
    "required": [
        "originalSaleId",
        "originalInvoiceNumber",
        "items",
        "returnReason",
        "returnType",
        "totalRefund",
        "status",
        "returnDate",
    ],
    "properties": {
        "returnNumber": {"type": "string"},
        "originalSaleId": {"type": "string"},
        "originalInvoiceNumber": {"type": "string"},
        "customer": {
            "type": "object",
            "properties": {
                "id": {"type": "string"},
                "name": {"type": "string"},
                "phone": {"type": "string"},
                "type": {"enum": CUSTOMER_TYPES},
            },
        },
        "items": {"type": "array", "minItems": 1, "items": RETURN_ITEM_SCHEMA},
        "returnReason": {"enum": RETURN_REASONS},
        "returnType": {"enum": RETURN_TYPES},
        "refundMethod": {"enum": REFUND_METHODS},
        "subtotal": {"type": "number", "minimum": 0},
        "discount": {"type": "number", "minimum": 0},
        "vatAmount": {"type": "number", "minimum": 0},
        "totalRefund": {"type": "number", "minimum": 0},
        "status": {"enum": RETURN_STATUSES},
        "returnDate": {"type": "date"},
        "approvedAt": {"type": "date"},
        "notes": {"type": "string", "maxLength": 1000},
    },
}


class ReturnRecordValidator(DocumentSchemaValidator):
    """
    Validates return records before they reach the document store.

    Reports every violation, tagged with its field path and rule
    (missing_required, type_mismatch, enum_violation, range_violation).
    """

    schema = RETURN_SCHEMA

    def validate_rules(self, data: Dict[str, Any]) -> List[ValidationError]:
        errors: List[ValidationError] = []
        items = data.get("items")
        if not isinstance(items, list):
            return errors

        line_totals: List[float] = []
        for i, item in enumerate(items):
            if not isinstance(item, dict):
                continue
            quantity = item.get("returnQuantity")
            original = item.get("originalQuantity")
            returned = item.get("returnedQuantity") or 0

            if is_integer(quantity) and is_integer(original) and is_integer(returned):
                remainder = int(original) - int(returned)
                if quantity > remainder:
                    errors.append(ValidationError(
                        field=f"items[{i}].returnQuantity",
                        message=(
                            f"Cannot return {int(quantity)} units of {item.get('name', 'item')}. "
                            f"Only {remainder} units available for return."
                        ),
                        code=RANGE_VIOLATION,
                    ))

            price = item.get("price")
            total = item.get("total")
            if is_number(total):
                line_totals.append(total)
                if is_number(price) and is_integer(quantity):
                    if not money_equal(total, round_money(quantity * price)):
                        errors.append(ValidationError(
                            field=f"items[{i}].total",
                            message=f"items[{i}].total must equal returnQuantity x price",
                            code=RANGE_VIOLATION,
                        ))

        if len(line_totals) != len(items):
            return errors

        items_total = round_money(sum(line_totals))
        subtotal = data.get("subtotal")
        if is_number(subtotal) and not money_equal(subtotal, items_total):
            errors.append(ValidationError(
                field="subtotal",
                message="subtotal must equal the sum of item totals",
                code=RANGE_VIOLATION,
            ))

        base = subtotal if is_number(subtotal) else items_total
        discount = data.get("discount") or 0
        vat = data.get("vatAmount") or 0
        total_refund = data.get("totalRefund")
        if is_number(total_refund) and is_number(discount) and is_number(vat):
            expected = round_money(base - discount + vat)
            if not money_equal(total_refund, expected):
                errors.append(ValidationError(
                    field="totalRefund",
                    message=f"totalRefund must equal subtotal - discount + vatAmount ({expected:.2f})",
                    code=RANGE_VIOLATION,
                ))

        return errors

    def normalize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Return a normalized copy of a return record.

        Money is rounded to cents, integral quantities become ints and
        dates become ISO-8601 strings. Normalizing a valid record keeps
        it valid.
        """
        normalized = copy.deepcopy(data)

        for name in MONEY_FIELDS:
            if is_number(normalized.get(name)):
                normalized[name] = round_money(normalized[name])

        for name in ("returnDate", "approvedAt", "createdAt", "updatedAt"):
            iso = to_iso(normalized.get(name))
            if iso:
                normalized[name] = iso

        for item in normalized.get("items") or []:
            if not isinstance(item, dict):
                continue
            for name in ("lineIndex", "returnQuantity", "originalQuantity", "returnedQuantity"):
                if is_integer(item.get(name)):
                    item[name] = int(item[name])
            for name in ("price", "total"):
                if is_number(item.get(name)):
                    item[name] = round_money(item[name])
            iso = to_iso(item.get("expiryDate"))
            if iso:
                item["expiryDate"] = iso

        return normalized

    def validate_and_normalize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Normalize, then raise SchemaViolation unless the result is valid."""
        normalized = self.normalize(data)
        self.check(normalized)
        return normalized


STOCK_MOVEMENT_SCHEMA = {
    "type": "object",
    "required": [
        "productId",
        "productName",
        "movementType",
        "quantity",
        "referenceType",
        "referenceId",
    ],
    "properties": {
        "productId": {"type": "string"},
        "productName": {"type": "string"},
        "movementType": {"enum": MOVEMENT_TYPES},
        "quantity": {"type": "int"},
        "previousQty": {"type": "number"},
        "newQty": {"type": "number"},
        "referenceType": {"enum": MOVEMENT_TYPES},
        "referenceId": {"type": "string"},
        "referenceNumber": {"type": "string"},
        "notes": {"type": "string"},
        "createdAt": {"type": "date"},
    },
}


class StockMovementValidator(DocumentSchemaValidator):
    """Validates stock ledger entries."""

    schema = STOCK_MOVEMENT_SCHEMA

    def validate_rules(self, data: Dict[str, Any]) -> List[ValidationError]:
        errors: List[ValidationError] = []
        quantity = data.get("quantity")
        previous = data.get("previousQty")
        new = data.get("newQty")

        if data.get("movementType") == "return" and is_integer(quantity) and quantity <= 0:
            errors.append(ValidationError(
                field="quantity",
                message="Return movements must add stock",
                code=RANGE_VIOLATION,
            ))

        if is_number(previous) and is_number(new) and is_integer(quantity):
            if new != previous + quantity:
                errors.append(ValidationError(
                    field="newQty",
                    message="newQty must equal previousQty + quantity",
                    code=RANGE_VIOLATION,
                ))
        return errors
