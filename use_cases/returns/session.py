"""
Return Intake Workflow.

Extends the base SessionContext with the state of one return being
entered at the counter: find the original sale, pick the lines and
quantities coming back, then confirm the refund.

    searching -> item_selection -> confirmation -> submitting -> submitted

The workflow never performs I/O itself. The sale lookup and the
submission are passed in by the caller, so all intermediate state stays
local until the single submit call.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.errors import (
    IncompleteSelection,
    InvalidQuantity,
    InvalidTransition,
    NotFound,
    PosError,
    SubmissionFailed,
)
from core.domain import round_money
from core.session import SessionContext

from .domain.policies import ReturnQuantityPolicy
from .domain.services import (
    OriginalSale,
    RefundCalculator,
    ReturnLineSelection,
    ReturnRequestBuilder,
    SaleLineItem,
    resolve_return_type,
)

logger = logging.getLogger(__name__)

SaleLookup = Callable[[str], Optional[OriginalSale]]
ReturnSubmitter = Callable[[Dict[str, Any]], Dict[str, Any]]


class ReturnWorkflowStep(Enum):
    """Steps in the return intake flow."""
    SEARCHING = "searching"
    ITEM_SELECTION = "item_selection"
    CONFIRMATION = "confirmation"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


@dataclass
class ItemSelection:
    """Local selection state for one sale line."""
    line: SaleLineItem
    return_quantity: int = 0
    reason: Optional[str] = None

    @property
    def selected(self) -> bool:
        return self.return_quantity > 0


@dataclass
class ReturnWorkflow(SessionContext):
    """
    Session context for the return intake flow.

    Tracks all the state needed between finding the sale and submitting
    the return request.
    """

    # Sale context
    search_term: str = ""
    sale: Optional[OriginalSale] = None
    selections: List[ItemSelection] = field(default_factory=list)

    # Confirmation inputs
    return_reason: Optional[str] = None
    refund_method: str = "cash"
    notes: str = ""

    # Submission outcome
    return_id: Optional[str] = None
    return_number: Optional[str] = None
    return_status: Optional[str] = None
    last_error: Optional[str] = None

    # Flow tracking
    step: ReturnWorkflowStep = ReturnWorkflowStep.SEARCHING

    # Guards the step check and hand-off in confirm against concurrent requests
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def _require_step(self, *steps: ReturnWorkflowStep):
        if self.step not in steps:
            allowed = ", ".join(s.value for s in steps)
            raise InvalidTransition(
                f"Action not available in step '{self.step.value}' (expected {allowed})"
            )

    def _selection(self, line_index: int) -> ItemSelection:
        if line_index < 0 or line_index >= len(self.selections):
            raise NotFound(f"Line item {line_index} not found", field="lineIndex")
        return self.selections[line_index]

    def _reject_while_submitting(self):
        if self.step == ReturnWorkflowStep.SUBMITTING:
            raise InvalidTransition("A submission for this workflow is already in progress")

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def find_sale(self, invoice_number: str, lookup: SaleLookup) -> OriginalSale:
        """
        Look up the original sale and move to item selection.

        Any earlier selection is discarded. A miss returns the workflow
        to the searching step.

        Raises:
            IncompleteSelection: Blank invoice number
            NotFound: No sale matches
        """
        self._reject_while_submitting()
        term = (invoice_number or "").strip()
        if not term:
            raise IncompleteSelection(
                "Please enter an invoice number to search", field="invoiceNumber"
            )

        self.search_term = term
        sale = lookup(term)
        if sale is None:
            self._clear_sale()
            self.step = ReturnWorkflowStep.SEARCHING
            self._touch()
            raise NotFound(
                "Sale not found. Please check the invoice number.", field="invoiceNumber"
            )

        self._clear_sale()
        self.sale = sale
        self.selections = [ItemSelection(line=line) for line in sale.items]
        self.step = ReturnWorkflowStep.ITEM_SELECTION
        self._touch()
        logger.debug(f"Workflow {self.session_id} loaded sale {sale.invoice_number}")
        return sale

    def select_item(self, line_index: int, return_quantity: int, reason: Optional[str] = None):
        """
        Set the return quantity (and optional reason) for one line.

        Raises:
            NotFound: Unknown line index
            InvalidQuantity: Quantity outside [1, returnable]; the
                selection is left unchanged
        """
        self._require_step(ReturnWorkflowStep.ITEM_SELECTION)
        selection = self._selection(line_index)

        decision = ReturnQuantityPolicy().evaluate({
            "return_quantity": return_quantity,
            "returnable_quantity": selection.line.returnable_quantity,
            "name": selection.line.name,
        })
        if decision.is_denied:
            raise InvalidQuantity(decision.reason, field=f"items[{line_index}].returnQuantity")

        selection.return_quantity = int(return_quantity)
        if reason is not None:
            selection.reason = reason or None
        self._touch()

    def deselect_item(self, line_index: int):
        """Drop a line from the return."""
        self._require_step(ReturnWorkflowStep.ITEM_SELECTION)
        selection = self._selection(line_index)
        selection.return_quantity = 0
        selection.reason = None
        self._touch()

    def review(self):
        """Advance to confirmation once something is selected."""
        self._require_step(ReturnWorkflowStep.ITEM_SELECTION)
        if not self.selected_items():
            raise IncompleteSelection("Please select at least one item to return", field="items")
        self.step = ReturnWorkflowStep.CONFIRMATION
        self._touch()

    def back(self):
        """Return from confirmation to item selection."""
        self._require_step(ReturnWorkflowStep.CONFIRMATION)
        self.step = ReturnWorkflowStep.ITEM_SELECTION
        self.last_error = None
        self._touch()

    def reset(self):
        """Start over with a new search."""
        self._reject_while_submitting()
        self.search_term = ""
        self._clear_sale()
        self.return_id = None
        self.return_number = None
        self.return_status = None
        self.step = ReturnWorkflowStep.SEARCHING
        self._touch()

    def build_request(
        self,
        return_reason: str,
        refund_method: Optional[str] = None,
        notes: str = "",
    ) -> Dict[str, Any]:
        """
        Assemble the return request from the current selection.

        Raises:
            IncompleteSelection: Nothing selected or no reason given
            InvalidQuantity: A selected quantity exceeds its remainder
            SchemaViolation: The assembled request fails validation
        """
        if self.sale is None:
            raise IncompleteSelection("Find the original sale first", field="invoiceNumber")

        self.return_reason = return_reason
        self.refund_method = refund_method or self.refund_method
        self.notes = notes or ""

        selections = [
            ReturnLineSelection(line_index=index, return_quantity=s.return_quantity, reason=s.reason)
            for index, s in enumerate(self.selections)
            if s.selected
        ]
        return ReturnRequestBuilder().execute(
            sale=self.sale,
            selections=selections,
            return_reason=return_reason,
            refund_method=self.refund_method,
            notes=self.notes,
        )

    def confirm(
        self,
        return_reason: str,
        refund_method: Optional[str],
        notes: str,
        submit: ReturnSubmitter,
    ) -> Dict[str, Any]:
        """
        Build the request and hand it to the submission collaborator.

        On success the workflow is submitted. On failure it returns to
        confirmation with the selection intact, records the error and
        raises SubmissionFailed; nothing is retried automatically.

        While the submission is in flight the workflow is in the
        submitting step, so a second confirm is rejected instead of
        submitting the same return twice.
        """
        with self._lock:
            self._require_step(ReturnWorkflowStep.ITEM_SELECTION, ReturnWorkflowStep.CONFIRMATION)
            request = self.build_request(return_reason, refund_method, notes)
            self.step = ReturnWorkflowStep.SUBMITTING
            self._touch()

        try:
            result = submit(request)
        except PosError as e:
            self._submission_failed(e.message)
            logger.warning(f"Workflow {self.session_id} submission rejected: {e.message}")
            raise SubmissionFailed(e.message, cause=e) from e
        except Exception as e:
            self._submission_failed("Failed to process return")
            logger.error(f"Workflow {self.session_id} submission failed: {e}", exc_info=True)
            raise SubmissionFailed("Failed to process return") from e

        self.return_id = result.get("id")
        self.return_number = result.get("returnNumber")
        self.return_status = result.get("status")
        self.last_error = None
        self.step = ReturnWorkflowStep.SUBMITTED
        self._touch()
        logger.info(f"Workflow {self.session_id} submitted return {self.return_number}")
        return result

    # =========================================================================
    # VIEWS
    # =========================================================================

    def _submission_failed(self, message: str):
        self.last_error = message
        self.step = ReturnWorkflowStep.CONFIRMATION
        self._touch()

    def selected_items(self) -> List[ItemSelection]:
        return [s for s in self.selections if s.selected]

    def _clear_sale(self):
        self.sale = None
        self.selections = []
        self.return_reason = None
        self.notes = ""
        self.last_error = None

    def preview(self) -> Dict[str, Any]:
        """Running refund figures for the current selection."""
        if self.sale is None:
            return {"subtotal": 0.0, "discount": 0.0, "vatAmount": 0.0, "totalRefund": 0.0, "returnType": "partial"}
        totals = [round_money(s.return_quantity * s.line.unit_price) for s in self.selected_items()]
        refund = RefundCalculator().execute(self.sale, totals)
        quantities = {i: s.return_quantity for i, s in enumerate(self.selections) if s.selected}
        return {
            "subtotal": refund.subtotal,
            "discount": refund.discount,
            "vatAmount": refund.vat_amount,
            "totalRefund": refund.total_refund,
            "returnType": resolve_return_type(self.sale, quantities),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        base = super().to_dict()
        base.update({
            "step": self.step.value,
            "searchTerm": self.search_term,
            "sale": self.sale.to_dict() if self.sale else None,
            "items": [
                {
                    "lineIndex": index,
                    "productId": s.line.product_id,
                    "name": s.line.name,
                    "price": s.line.unit_price,
                    "returnableQuantity": s.line.returnable_quantity,
                    "returnQuantity": s.return_quantity,
                    "returnReason": s.reason,
                    "selected": s.selected,
                }
                for index, s in enumerate(self.selections)
            ],
            "preview": self.preview(),
            "returnReason": self.return_reason,
            "refundMethod": self.refund_method,
            "notes": self.notes,
            "returnId": self.return_id,
            "returnNumber": self.return_number,
            "returnStatus": self.return_status,
            "lastError": self.last_error,
        })
        return base
