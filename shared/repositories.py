"""
Repository wiring.

Builds the set of document repositories the processors work against,
choosing the backend from settings.data_backend.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from config import settings
from core.data import InMemoryRepository, Repository

logger = logging.getLogger(__name__)


@dataclass
class Repositories:
    """One repository per logical container."""
    sales: Repository
    stock: Repository
    returns: Repository
    stock_movements: Repository
    expenses: Repository


def in_memory_repositories() -> Repositories:
    return Repositories(
        sales=InMemoryRepository("sales"),
        stock=InMemoryRepository("stock"),
        returns=InMemoryRepository("returns"),
        stock_movements=InMemoryRepository("stock_movements"),
        expenses=InMemoryRepository("expenses"),
    )


def cosmos_repositories() -> Repositories:
    # Imported lazily so the memory backend never touches Azure credentials
    from shared.cosmos_client import get_cosmos_client

    client = get_cosmos_client()
    return Repositories(
        sales=client.repository("sales"),
        stock=client.repository("stock"),
        returns=client.repository("returns"),
        stock_movements=client.repository("stock_movements"),
        expenses=client.repository("expenses"),
    )


def build_repositories(backend: Optional[str] = None) -> Repositories:
    """
    Build repositories for the configured backend.

    Args:
        backend: "cosmos" or "memory"; defaults to settings.data_backend
    """
    backend = (backend or settings.data_backend).lower()
    if backend == "memory":
        logger.info("Using in-memory document store")
        return in_memory_repositories()
    if backend == "cosmos":
        logger.info("Using Azure Cosmos DB document store")
        return cosmos_repositories()
    raise ValueError(f"Unknown data backend: {backend}")
