"""
Core Framework for POS Use Cases.

This module provides the extensible base classes and interfaces
that all use cases build on. The layered architecture ensures:

1. Domain Layer - Pure business rules and schema validation, no I/O
2. Data Layer - Repository pattern for document access
3. Session Layer - Server-held state for multi-step flows

Each use case follows this pattern for consistency and reusability.
"""

from .domain import DocumentSchemaValidator, DomainService, PolicyEngine, Validator
from .data import InMemoryRepository, QueryOptions, QueryResult, Repository
from .session import SessionContext, SessionManager
from .errors import PosError

__all__ = [
    # Domain
    "DomainService",
    "PolicyEngine",
    "Validator",
    "DocumentSchemaValidator",
    # Data
    "Repository",
    "InMemoryRepository",
    "QueryOptions",
    "QueryResult",
    # Session
    "SessionManager",
    "SessionContext",
    # Errors
    "PosError",
]
