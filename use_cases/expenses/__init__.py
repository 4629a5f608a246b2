"""
Recurring Expenses Use Case.

Expense templates that repeat daily, weekly, monthly or yearly, and
the processing that turns due occurrences into expenses.

Components:
- RecurrenceConfigValidator / ExpenseValidator: Document rules
- calculate_next_due_date: Schedule arithmetic
- RecurringExpenseService: Template storage and due processing
- router: FastAPI endpoints
"""

from use_cases.expenses.domain import (
    ExpenseValidator,
    RecurrenceConfigValidator,
    calculate_next_due_date,
    is_recurring_active,
)
from use_cases.expenses.routes import router
from use_cases.expenses.service import RecurringExpenseService

__all__ = [
    "ExpenseValidator",
    "RecurrenceConfigValidator",
    "calculate_next_due_date",
    "is_recurring_active",
    "RecurringExpenseService",
    "router",
]
