"""Return intake workflow state machine."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import (
    IncompleteSelection,
    InvalidQuantity,
    InvalidTransition,
    NotFound,
    SubmissionFailed,
)
from core.session import SessionManager
from use_cases.returns import ReturnWorkflow, ReturnWorkflowStep
from tests.conftest import sample_sale


def lookup(term):
    for invoice in ("INV-001", "INV-002", "INV-0031"):
        if invoice == term:
            return sample_sale(invoice)
    return None


class FakeSubmitter:
    """Records requests and answers with a stored return (or an error)."""

    def __init__(self, error=None):
        self.error = error
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return {**request, "id": "ret-1", "returnNumber": "RET-1-0001", "status": "pending"}


@pytest.fixture
def workflow():
    return ReturnWorkflow(session_id="wf-1")


@pytest.fixture
def selecting(workflow):
    workflow.find_sale("INV-001", lookup)
    return workflow


def test_starts_in_searching(workflow):
    assert workflow.step == ReturnWorkflowStep.SEARCHING
    state = workflow.to_dict()
    assert state["step"] == "searching"
    assert state["sessionId"] == "wf-1"
    assert {"createdAt", "updatedAt"} <= state.keys()
    assert "session_id" not in state


def test_blank_invoice_is_incomplete(workflow):
    with pytest.raises(IncompleteSelection):
        workflow.find_sale("  ", lookup)
    assert workflow.step == ReturnWorkflowStep.SEARCHING


def test_unknown_invoice_stays_searching(workflow):
    with pytest.raises(NotFound):
        workflow.find_sale("INV-999", lookup)
    assert workflow.step == ReturnWorkflowStep.SEARCHING
    assert workflow.sale is None


def test_found_sale_moves_to_item_selection(selecting):
    assert selecting.step == ReturnWorkflowStep.ITEM_SELECTION
    assert selecting.sale.invoice_number == "INV-001"
    assert [s.return_quantity for s in selecting.selections] == [0]


def test_over_return_leaves_selection_unchanged(selecting):
    with pytest.raises(InvalidQuantity):
        selecting.select_item(0, 6)
    assert selecting.selections[0].return_quantity == 0

    selecting.select_item(0, 2)
    with pytest.raises(InvalidQuantity):
        selecting.select_item(0, 0)
    assert selecting.selections[0].return_quantity == 2


def test_unknown_line_index(selecting):
    with pytest.raises(NotFound):
        selecting.select_item(4, 1)


def test_review_needs_a_selection(selecting):
    with pytest.raises(IncompleteSelection):
        selecting.review()
    assert selecting.step == ReturnWorkflowStep.ITEM_SELECTION


def test_review_and_back(selecting):
    selecting.select_item(0, 5)
    selecting.review()
    assert selecting.step == ReturnWorkflowStep.CONFIRMATION

    with pytest.raises(InvalidTransition):
        selecting.select_item(0, 1)

    selecting.back()
    assert selecting.step == ReturnWorkflowStep.ITEM_SELECTION
    assert selecting.selections[0].return_quantity == 5


def test_deselect_clears_quantity_and_reason(selecting):
    selecting.select_item(0, 3, "Wrong Product")
    selecting.deselect_item(0)
    assert selecting.selected_items() == []
    assert selecting.selections[0].reason is None


def test_preview_tracks_the_selection():
    workflow = ReturnWorkflow()
    workflow.find_sale("INV-002", lookup)
    workflow.select_item(0, 2)

    preview = workflow.preview()
    assert preview["totalRefund"] == 897.75
    assert preview["returnType"] == "partial"


def test_confirm_without_reason_keeps_state(selecting):
    selecting.select_item(0, 5)
    selecting.review()
    submit = FakeSubmitter()

    with pytest.raises(IncompleteSelection):
        selecting.confirm("", None, "", submit)

    assert submit.requests == []
    assert selecting.step == ReturnWorkflowStep.CONFIRMATION


def test_confirm_submits_once(selecting):
    selecting.select_item(0, 5)
    selecting.review()
    submit = FakeSubmitter()

    result = selecting.confirm("Damaged Product", "bank", "box torn", submit)

    assert len(submit.requests) == 1
    request = submit.requests[0]
    assert request["returnType"] == "full"
    assert request["totalRefund"] == 500.0
    assert request["refundMethod"] == "bank"
    assert request["notes"] == "box torn"
    assert result["returnNumber"] == "RET-1-0001"
    assert selecting.step == ReturnWorkflowStep.SUBMITTED
    assert selecting.to_dict()["returnId"] == "ret-1"

    with pytest.raises(InvalidTransition):
        selecting.confirm("Damaged Product", None, "", submit)


class BlockingSubmitter(FakeSubmitter):
    """Holds the submission open until released."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def __call__(self, request):
        self.started.set()
        self.release.wait(timeout=5)
        return super().__call__(request)


def test_second_confirm_during_submission_is_rejected(selecting):
    selecting.select_item(0, 5)
    selecting.review()
    submit = BlockingSubmitter()
    outcome = {}

    def first_confirm():
        outcome["result"] = selecting.confirm("Damaged Product", None, "", submit)

    worker = threading.Thread(target=first_confirm)
    worker.start()
    assert submit.started.wait(timeout=5)

    assert selecting.to_dict()["step"] == "submitting"
    with pytest.raises(InvalidTransition):
        selecting.confirm("Damaged Product", None, "", submit)
    with pytest.raises(InvalidTransition):
        selecting.reset()

    submit.release.set()
    worker.join(timeout=5)

    assert len(submit.requests) == 1
    assert outcome["result"]["returnNumber"] == "RET-1-0001"
    assert selecting.step == ReturnWorkflowStep.SUBMITTED


def test_rejected_submission_keeps_selection_for_retry(selecting):
    selecting.select_item(0, 5)
    selecting.review()
    rejection = InvalidQuantity("Cannot return 5 units of Gloves. Only 0 units available for return.")

    with pytest.raises(SubmissionFailed) as exc_info:
        selecting.confirm("Damaged Product", None, "", FakeSubmitter(error=rejection))

    assert exc_info.value.cause is rejection
    assert exc_info.value.to_dict()["cause"]["code"] == "invalid_quantity"
    assert selecting.step == ReturnWorkflowStep.CONFIRMATION
    assert selecting.selections[0].return_quantity == 5
    assert selecting.last_error == rejection.message

    selecting.confirm("Damaged Product", None, "", FakeSubmitter())
    assert selecting.step == ReturnWorkflowStep.SUBMITTED
    assert selecting.last_error is None


def test_unexpected_submission_error_is_wrapped(selecting):
    selecting.select_item(0, 1)
    with pytest.raises(SubmissionFailed) as exc_info:
        selecting.confirm("Other", None, "", FakeSubmitter(error=RuntimeError("connection reset")))

    assert exc_info.value.message == "Failed to process return"
    assert selecting.step == ReturnWorkflowStep.CONFIRMATION


def test_new_search_discards_selection(selecting):
    selecting.select_item(0, 2)
    selecting.find_sale("INV-002", lookup)
    assert selecting.sale.invoice_number == "INV-002"
    assert selecting.selected_items() == []


def test_reset(selecting):
    selecting.select_item(0, 2)
    selecting.reset()
    assert selecting.step == ReturnWorkflowStep.SEARCHING
    assert selecting.sale is None


# =============================================================================
# SESSION MANAGER
# =============================================================================

def test_manager_creates_and_clears_workflows():
    manager = SessionManager(context_factory=ReturnWorkflow, ttl_minutes=5)
    workflow = manager.create()

    assert isinstance(workflow, ReturnWorkflow)
    assert manager.get(workflow.session_id) is workflow
    assert manager.clear(workflow.session_id) is True
    assert manager.get(workflow.session_id) is None
    assert manager.clear(workflow.session_id) is False


def test_manager_expires_idle_workflows():
    manager = SessionManager(context_factory=ReturnWorkflow, ttl_minutes=5)
    workflow = manager.create()
    workflow.updated_at = datetime.now(timezone.utc) - timedelta(minutes=6)

    assert manager.get(workflow.session_id) is None
    assert len(manager) == 0
