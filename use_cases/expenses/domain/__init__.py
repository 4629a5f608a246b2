"""
Expenses Domain Layer.

Pure rules for expense documents and recurring schedules.
"""

from .policies import (
    FREQUENCIES,
    PAYMENT_METHODS,
    ExpenseValidator,
    RecurrenceConfigValidator,
    is_recurring_active,
)
from .services import (
    DueOccurrences,
    ExpenseNumberGenerator,
    RecurringScheduleService,
    add_months,
    build_occurrence,
    calculate_next_due_date,
    first_due_on_or_after,
    occurrence_id,
)

__all__ = [
    "FREQUENCIES",
    "PAYMENT_METHODS",
    "ExpenseValidator",
    "RecurrenceConfigValidator",
    "is_recurring_active",
    "DueOccurrences",
    "ExpenseNumberGenerator",
    "RecurringScheduleService",
    "add_months",
    "build_occurrence",
    "calculate_next_due_date",
    "first_due_on_or_after",
    "occurrence_id",
]
