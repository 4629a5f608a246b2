"""Shared fixtures: an in-memory document store seeded with sample sales and stock."""

import copy
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from data.sample.pos_data import SALES, STOCK
from main import create_app
from shared.repositories import Repositories, in_memory_repositories
from use_cases.expenses import RecurringExpenseService
from use_cases.returns import ReturnProcessor
from use_cases.returns.domain import OriginalSale


def seed(repositories: Repositories) -> Repositories:
    for sale in SALES:
        repositories.sales.create(copy.deepcopy(sale))
    for stock in STOCK:
        repositories.stock.create(copy.deepcopy(stock))
    return repositories


def sample_sale(invoice_number: str) -> OriginalSale:
    for doc in SALES:
        if doc["invoiceNumber"] == invoice_number:
            return OriginalSale.from_document(copy.deepcopy(doc))
    raise KeyError(invoice_number)


@pytest.fixture
def repositories() -> Repositories:
    return seed(in_memory_repositories())


@pytest.fixture
def processor(repositories) -> ReturnProcessor:
    return ReturnProcessor(repositories, auto_approve=False, reservation_retries=3)


@pytest.fixture
def expense_service(repositories) -> RecurringExpenseService:
    return RecurringExpenseService(repositories)


@pytest.fixture
def client(repositories):
    app = create_app(repositories)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)
