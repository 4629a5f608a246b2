"""
Recurring Expenses API.

Templates are created, updated and stopped here; POST /process generates the
expenses that have come due (meant to be called by a daily scheduler).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status

from core.domain import TYPE_MISMATCH, ValidationError, parse_date
from core.errors import SchemaViolation

from .schemas import (
    CreateRecurringExpenseRequest,
    ProcessRecurringRequest,
    UpdateRecurringExpenseRequest,
)
from .service import RecurringExpenseService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/recurring-expenses", tags=["Recurring Expenses"])


def get_expense_service(request: Request) -> RecurringExpenseService:
    return request.app.state.expense_service


@router.get("")
def list_recurring_expenses(
    categoryId: Optional[str] = None,
    isActive: Optional[bool] = None,
    service: RecurringExpenseService = Depends(get_expense_service),
):
    templates = service.list_templates(category_id=categoryId, is_active=isActive)
    return {"success": True, "data": templates, "total": len(templates)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_recurring_expense(
    body: CreateRecurringExpenseRequest,
    service: RecurringExpenseService = Depends(get_expense_service),
):
    template = service.create_template(body.model_dump(exclude_none=True))
    return {"success": True, "message": "Recurring expense created successfully", "data": template}


@router.post("/process")
def process_recurring_expenses(
    body: Optional[ProcessRecurringRequest] = None,
    service: RecurringExpenseService = Depends(get_expense_service),
):
    process_date = None
    if body and body.processDate:
        process_date = parse_date(body.processDate)
        if process_date is None:
            raise SchemaViolation([ValidationError(
                field="processDate",
                message="processDate must be an ISO-8601 date",
                code=TYPE_MISMATCH,
            )])
    results = service.process_due(process_date)
    return {
        "success": True,
        "message": f"Created {len(results['createdExpenses'])} expense(s)",
        "data": results,
    }


@router.post("/{template_id}/stop")
def stop_recurring_expense(
    template_id: str,
    service: RecurringExpenseService = Depends(get_expense_service),
):
    template = service.stop(template_id)
    return {"success": True, "message": "Recurring expense stopped", "data": template}


@router.put("/{template_id}")
def update_recurring_expense(
    template_id: str,
    body: UpdateRecurringExpenseRequest,
    service: RecurringExpenseService = Depends(get_expense_service),
):
    template = service.update_template(template_id, body.model_dump(exclude_unset=True))
    return {"success": True, "message": "Recurring expense template updated successfully", "data": template}
