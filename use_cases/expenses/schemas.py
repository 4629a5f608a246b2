"""Request models for the recurring expenses API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class RecurringConfigRequest(BaseModel):
    frequency: Optional[str] = None
    interval: Optional[int] = 1
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    nextDueDate: Optional[str] = None


class CreateRecurringExpenseRequest(BaseModel):
    """Recurring expense template; rules are checked by ExpenseValidator."""
    categoryId: Optional[str] = None
    categoryName: Optional[str] = None
    amount: Optional[float] = None
    description: Optional[str] = None
    expenseDate: Optional[str] = None
    paymentMethod: Optional[str] = None
    vendor: Optional[Dict[str, Any]] = None
    recurringConfig: Optional[RecurringConfigRequest] = None
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class ProcessRecurringRequest(BaseModel):
    processDate: Optional[str] = None


class UpdateRecurringExpenseRequest(BaseModel):
    """Partial update; only fields sent in the request are applied."""
    categoryId: Optional[str] = None
    categoryName: Optional[str] = None
    amount: Optional[float] = None
    description: Optional[str] = None
    paymentMethod: Optional[str] = None
    vendor: Optional[Dict[str, Any]] = None
    recurringConfig: Optional[RecurringConfigRequest] = None
    tags: Optional[List[str]] = None
    notes: Optional[str] = None
