"""
Returns API.

REST endpoints for return records, sale lookup, stock queries and the
server-held return intake workflow. Every response uses the
{success, data, message} envelope; errors are rendered by the
application's PosError handler.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from core.errors import IncompleteSelection, NotFound
from core.session import SessionManager

from .processor import ReturnProcessor
from .schemas import (
    CreateReturnRequest,
    UpdateStatusRequest,
    WorkflowConfirmRequest,
    WorkflowItemRequest,
    WorkflowSearchRequest,
)
from .session import ReturnWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/returns", tags=["Returns"])
stock_router = APIRouter(prefix="/api/stock", tags=["Stock"])


def get_return_processor(request: Request) -> ReturnProcessor:
    return request.app.state.return_processor


def get_workflow_manager(request: Request) -> SessionManager:
    return request.app.state.return_workflows


def _workflow(manager: SessionManager, workflow_id: str) -> ReturnWorkflow:
    workflow = manager.get(workflow_id)
    if workflow is None:
        raise NotFound("Return workflow not found or expired", field="workflowId")
    return workflow


# =============================================================================
# RETURN RECORDS
# =============================================================================

@router.get("")
def list_returns(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str = "",
    status_filter: str = Query("", alias="status"),
    processor: ReturnProcessor = Depends(get_return_processor),
):
    """List returns, newest first."""
    result = processor.list_returns(page=page, limit=limit, search=search, status=status_filter)
    return {"success": True, **result}


@router.get("/stats/summary")
def return_stats(processor: ReturnProcessor = Depends(get_return_processor)):
    return {"success": True, "data": processor.stats_summary()}


@router.get("/lookup")
def lookup_sale(
    invoiceNumber: str = "",
    processor: ReturnProcessor = Depends(get_return_processor),
):
    """Find the original sale by exact or prefix invoice number."""
    if not invoiceNumber.strip():
        raise IncompleteSelection("Please enter an invoice number to search", field="invoiceNumber")
    sale = processor.find_sale(invoiceNumber)
    if sale is None:
        raise NotFound("Sale not found. Please check the invoice number.", field="invoiceNumber")
    return {"success": True, "data": sale.to_dict()}


@router.get("/sale/{sale_id}")
def get_sale_for_return(sale_id: str, processor: ReturnProcessor = Depends(get_return_processor)):
    return {"success": True, "data": processor.get_sale_for_return(sale_id)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_return(
    body: CreateReturnRequest,
    processor: ReturnProcessor = Depends(get_return_processor),
):
    record = processor.submit_return(body.to_payload())
    return {"success": True, "message": "Return processed successfully", "data": record}


# =============================================================================
# RETURN WORKFLOWS
# =============================================================================

@router.post("/workflows", status_code=status.HTTP_201_CREATED)
def start_workflow(manager: SessionManager = Depends(get_workflow_manager)):
    workflow = manager.create()
    return {"success": True, "data": workflow.to_dict()}


@router.get("/workflows/{workflow_id}")
def get_workflow(workflow_id: str, manager: SessionManager = Depends(get_workflow_manager)):
    return {"success": True, "data": _workflow(manager, workflow_id).to_dict()}


@router.post("/workflows/{workflow_id}/search")
def workflow_search(
    workflow_id: str,
    body: WorkflowSearchRequest,
    manager: SessionManager = Depends(get_workflow_manager),
    processor: ReturnProcessor = Depends(get_return_processor),
):
    workflow = _workflow(manager, workflow_id)
    workflow.find_sale(body.invoiceNumber, processor.find_sale)
    return {"success": True, "data": workflow.to_dict()}


@router.post("/workflows/{workflow_id}/items")
def workflow_select_item(
    workflow_id: str,
    body: WorkflowItemRequest,
    manager: SessionManager = Depends(get_workflow_manager),
):
    workflow = _workflow(manager, workflow_id)
    if body.returnQuantity == 0:
        workflow.deselect_item(body.lineIndex)
    else:
        workflow.select_item(body.lineIndex, body.returnQuantity, body.returnReason)
    return {"success": True, "data": workflow.to_dict()}


@router.post("/workflows/{workflow_id}/review")
def workflow_review(workflow_id: str, manager: SessionManager = Depends(get_workflow_manager)):
    workflow = _workflow(manager, workflow_id)
    workflow.review()
    return {"success": True, "data": workflow.to_dict()}


@router.post("/workflows/{workflow_id}/back")
def workflow_back(workflow_id: str, manager: SessionManager = Depends(get_workflow_manager)):
    workflow = _workflow(manager, workflow_id)
    workflow.back()
    return {"success": True, "data": workflow.to_dict()}


@router.post("/workflows/{workflow_id}/confirm")
def workflow_confirm(
    workflow_id: str,
    body: WorkflowConfirmRequest,
    manager: SessionManager = Depends(get_workflow_manager),
    processor: ReturnProcessor = Depends(get_return_processor),
):
    """Submit the workflow's return; on failure the workflow keeps its state."""
    workflow = _workflow(manager, workflow_id)
    record = workflow.confirm(
        return_reason=body.returnReason,
        refund_method=body.refundMethod,
        notes=body.notes,
        submit=processor.submit_return,
    )
    return {
        "success": True,
        "message": "Return processed successfully",
        "data": {"workflow": workflow.to_dict(), "return": record},
    }


@router.delete("/workflows/{workflow_id}")
def discard_workflow(workflow_id: str, manager: SessionManager = Depends(get_workflow_manager)):
    if not manager.clear(workflow_id):
        raise NotFound("Return workflow not found or expired", field="workflowId")
    return {"success": True, "message": "Workflow discarded"}


# =============================================================================
# SINGLE RETURN
# =============================================================================

@router.get("/{return_id}")
def get_return(return_id: str, processor: ReturnProcessor = Depends(get_return_processor)):
    return {"success": True, "data": processor.get_return(return_id)}


@router.put("/{return_id}/status")
def update_return_status(
    return_id: str,
    body: UpdateStatusRequest,
    processor: ReturnProcessor = Depends(get_return_processor),
):
    """Approve (completed) or reject (cancelled) a pending return."""
    record = processor.update_status(return_id, body.status, body.notes)
    return {"success": True, "message": "Return status updated successfully", "data": record}


# =============================================================================
# STOCK
# =============================================================================

@stock_router.get("/movements")
def list_stock_movements(
    productId: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    processor: ReturnProcessor = Depends(get_return_processor),
):
    result = processor.list_stock_movements(product_id=productId, limit=limit, offset=offset)
    return {"success": True, **result}


@stock_router.get("/{product_id}")
def get_current_stock(product_id: str, processor: ReturnProcessor = Depends(get_return_processor)):
    return {"success": True, "data": processor.get_current_stock(product_id)}
