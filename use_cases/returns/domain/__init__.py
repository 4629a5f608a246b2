"""
Returns Domain Layer.

Contains pure business logic for the returns use case.
No database access or I/O - just business rules.
"""

from .policies import (
    ReturnQuantityPolicy,
    ReturnRecordValidator,
    ReturnStatusPolicy,
    StockMovementValidator,
)
from .services import (
    OriginalSale,
    RefundCalculator,
    ReturnLineSelection,
    ReturnNumberGenerator,
    ReturnRequestBuilder,
    SaleLineItem,
    StockMovementRecorder,
    resolve_return_type,
)

__all__ = [
    "ReturnQuantityPolicy",
    "ReturnRecordValidator",
    "ReturnStatusPolicy",
    "StockMovementValidator",
    "OriginalSale",
    "RefundCalculator",
    "ReturnLineSelection",
    "ReturnNumberGenerator",
    "ReturnRequestBuilder",
    "SaleLineItem",
    "StockMovementRecorder",
    "resolve_return_type",
]
