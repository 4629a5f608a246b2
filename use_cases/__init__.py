"""
Use Cases Package.

This package contains the modular use case implementations for the POS
backend. Each use case is a self-contained module with its own:
- Domain rules and services
- Processor / service wiring the domain to the document store
- Request schemas and FastAPI routes

Available use cases:
- returns: Returns reconciliation (intake workflow, validation, restocking)
- expenses: Recurring expense templates and due processing

Architecture:
Each use case follows the layered architecture pattern defined in core/:
- domain/: Pure business logic (policies, validators, services)
- processor/service: Repository-backed operations
- session.py: Use-case-specific session context (where a flow needs one)
- routes.py: HTTP endpoints
"""

from use_cases.returns import ReturnProcessor, ReturnWorkflow
from use_cases.returns import router as returns_router
from use_cases.returns import stock_router
from use_cases.expenses import RecurringExpenseService
from use_cases.expenses import router as expenses_router

__all__ = [
    # Returns
    "ReturnProcessor",
    "ReturnWorkflow",
    "returns_router",
    "stock_router",
    # Expenses
    "RecurringExpenseService",
    "expenses_router",
]
