"""
Returns Reconciliation Use Case.

Takes a product back against a completed sale: find the sale, choose
the lines and quantities, refund proportionally and put the stock back.

Components:
- ReturnWorkflow: Server-held intake state machine
- ReturnRecordValidator: Schema validation for return records
- StockMovementRecorder: Ledger entries for restocked units
- ReturnProcessor: Persistence collaborator (reservations, status changes)
- router / stock_router: FastAPI endpoints

Usage:
    from use_cases.returns import ReturnProcessor

    processor = ReturnProcessor(build_repositories())
    sale = processor.find_sale("INV-001")
"""

from use_cases.returns.domain import (
    ReturnQuantityPolicy,
    ReturnRecordValidator,
    ReturnStatusPolicy,
    StockMovementRecorder,
    StockMovementValidator,
)
from use_cases.returns.processor import ReturnProcessor
from use_cases.returns.routes import router, stock_router
from use_cases.returns.session import ReturnWorkflow, ReturnWorkflowStep

__all__ = [
    # Workflow
    "ReturnWorkflow",
    "ReturnWorkflowStep",
    # Domain
    "ReturnQuantityPolicy",
    "ReturnRecordValidator",
    "ReturnStatusPolicy",
    "StockMovementRecorder",
    "StockMovementValidator",
    # Processing
    "ReturnProcessor",
    # API
    "router",
    "stock_router",
]
