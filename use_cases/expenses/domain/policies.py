"""
Expense Policies - Pure Business Rules.

Validation for expense documents and their recurrence configuration.
No database access; everything needed is passed in.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from core.domain import (
    MISSING_REQUIRED,
    RANGE_VIOLATION,
    DocumentSchemaValidator,
    ValidationError,
    is_number,
    parse_date,
    round_money,
    utc_now,
)


# =============================================================================
# CONFIGURATION
# =============================================================================

FREQUENCIES = ["daily", "weekly", "monthly", "yearly"]

PAYMENT_METHODS = ["cash", "bank", "card"]

EXPENSE_NUMBER_PATTERN = r"^EXP-\d{4}-\d{3,}$"


# =============================================================================
# VALIDATORS
# =============================================================================

RECURRING_CONFIG_SCHEMA = {
    "type": "object",
    "required": ["frequency", "startDate"],
    "properties": {
        "frequency": {"enum": FREQUENCIES},
        "interval": {"type": "int", "minimum": 1},
        "startDate": {"type": "date"},
        "endDate": {"type": "date"},
        "nextDueDate": {"type": "date"},
    },
}


class RecurrenceConfigValidator(DocumentSchemaValidator):
    """Validates a recurringConfig block."""

    schema = RECURRING_CONFIG_SCHEMA

    def validate_rules(self, data: Dict[str, Any]) -> List[ValidationError]:
        start = parse_date(data.get("startDate"))
        end = parse_date(data.get("endDate"))
        if start and end and end <= start:
            return [ValidationError(
                field="endDate",
                message="Recurring end date must be after start date",
                code=RANGE_VIOLATION,
            )]
        return []


EXPENSE_SCHEMA = {
    "type": "object",
    "required": ["expenseNumber", "categoryId", "amount", "expenseDate"],
    "properties": {
        "expenseNumber": {"type": "string", "pattern": EXPENSE_NUMBER_PATTERN},
        "categoryId": {"type": "string"},
        "categoryName": {"type": "string"},
        "amount": {"type": "number", "minimum": 0.01},
        "description": {"type": "string", "maxLength": 1000},
        "expenseDate": {"type": "date"},
        "paymentMethod": {"enum": PAYMENT_METHODS},
        "vendor": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "maxLength": 200},
                "phone": {"type": "string", "maxLength": 20},
                "email": {
                    "type": "string",
                    "pattern": r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$",
                },
            },
        },
        "isRecurring": {"type": "bool"},
        "recurringConfig": {"type": "object"},
        "recurringTemplateId": {"type": "string"},
        "tags": {"type": "array", "items": {"type": "string"}},
        "notes": {"type": "string", "maxLength": 2000},
    },
}


class ExpenseValidator(DocumentSchemaValidator):
    """
    Validates expense documents, including the recurrence block of
    recurring templates.
    """

    schema = EXPENSE_SCHEMA

    def __init__(self):
        self.recurrence_validator = RecurrenceConfigValidator()

    def validate_rules(self, data: Dict[str, Any]) -> List[ValidationError]:
        errors: List[ValidationError] = []

        amount = data.get("amount")
        if is_number(amount) and round_money(amount) != amount:
            errors.append(ValidationError(
                field="amount",
                message="Amount can have maximum 2 decimal places",
                code=RANGE_VIOLATION,
            ))

        if data.get("isRecurring"):
            config = data.get("recurringConfig")
            if not isinstance(config, dict):
                errors.append(ValidationError(
                    field="recurringConfig",
                    message="recurringConfig is required for recurring expenses",
                    code=MISSING_REQUIRED,
                ))
            else:
                for error in self.recurrence_validator.validate(config):
                    errors.append(ValidationError(
                        field=f"recurringConfig.{error.field}",
                        message=error.message,
                        code=error.code,
                    ))
        return errors


# =============================================================================
# POLICIES
# =============================================================================

def is_recurring_active(config: Dict[str, Any], on_date: Optional[datetime] = None) -> bool:
    """A template without an end date runs indefinitely."""
    end = parse_date(config.get("endDate"))
    if end is None:
        return True
    return end >= (parse_date(on_date) or utc_now())
