"""Recurring expenses: schedule arithmetic, validation and due processing."""

from datetime import datetime, timezone

import pytest

from core.data import InMemoryRepository, QueryOptions
from core.domain import MISSING_REQUIRED, RANGE_VIOLATION, ENUM_VIOLATION
from core.errors import ConcurrencyConflict, NotFound, SchemaViolation
from use_cases.expenses import (
    ExpenseValidator,
    RecurringExpenseService,
    RecurrenceConfigValidator,
    calculate_next_due_date,
    is_recurring_active,
)
from use_cases.expenses.domain import ExpenseNumberGenerator


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def rent(**config):
    return {
        "categoryId": "cat-rent",
        "categoryName": "Rent",
        "amount": 25000.0,
        "description": "Shop rent",
        "expenseDate": "2026-01-31",
        "paymentMethod": "bank",
        "vendor": {"name": "Karim Properties", "email": "accounts@karim.example.com"},
        "recurringConfig": {"frequency": "monthly", **config},
        "tags": ["rent", " fixed "],
    }


# =============================================================================
# SCHEDULE
# =============================================================================

@pytest.mark.parametrize("current, frequency, interval, anchor, expected", [
    (utc(2026, 3, 1), "daily", 1, None, utc(2026, 3, 2)),
    (utc(2026, 3, 1), "weekly", 2, None, utc(2026, 3, 15)),
    (utc(2026, 1, 31), "monthly", 1, None, utc(2026, 2, 28)),
    (utc(2026, 2, 28), "monthly", 1, 31, utc(2026, 3, 31)),
    (utc(2026, 11, 15), "monthly", 3, None, utc(2027, 2, 15)),
    (utc(2028, 2, 29), "yearly", 1, None, utc(2029, 2, 28)),
])
def test_next_due_date(current, frequency, interval, anchor, expected):
    assert calculate_next_due_date(current, frequency, interval, anchor) == expected


def test_next_due_date_rejects_unknown_frequency():
    with pytest.raises(ValueError):
        calculate_next_due_date(utc(2026, 1, 1), "fortnightly")


def test_expense_numbers_continue_the_year():
    generator = ExpenseNumberGenerator()
    existing = ["EXP-2026-001", "EXP-2026-009", "EXP-2025-050", "bogus"]

    assert generator.execute(existing, 2026) == "EXP-2026-010"
    assert generator.execute([], 2027) == "EXP-2027-001"
    assert generator.execute(["EXP-2026-999"], 2026) == "EXP-2026-1000"


def test_is_recurring_active():
    assert is_recurring_active({}) is True
    config = {"endDate": "2026-06-30T00:00:00+00:00"}
    assert is_recurring_active(config, utc(2026, 6, 1)) is True
    assert is_recurring_active(config, utc(2026, 7, 1)) is False


# =============================================================================
# VALIDATION
# =============================================================================

def rules_for(errors, field):
    return [e.rule for e in errors if e.field == field]


def test_recurrence_config_rules():
    validator = RecurrenceConfigValidator()

    errors = validator.validate({"frequency": "hourly", "interval": 0})
    assert rules_for(errors, "frequency") == [ENUM_VIOLATION]
    assert rules_for(errors, "interval") == [RANGE_VIOLATION]
    assert rules_for(errors, "startDate") == [MISSING_REQUIRED]

    errors = validator.validate({
        "frequency": "monthly",
        "startDate": "2026-02-01",
        "endDate": "2026-01-01",
    })
    assert rules_for(errors, "endDate") == [RANGE_VIOLATION]


def test_expense_amount_rules():
    validator = ExpenseValidator()
    base = {"expenseNumber": "EXP-2026-001", "categoryId": "c", "expenseDate": "2026-01-01"}

    assert validator.validate({**base, "amount": 10.5}) == []
    assert rules_for(validator.validate({**base, "amount": 0}), "amount") == [RANGE_VIOLATION]
    assert rules_for(validator.validate({**base, "amount": 10.005}), "amount") == [RANGE_VIOLATION]


def test_recurring_expense_needs_valid_config():
    validator = ExpenseValidator()
    base = {
        "expenseNumber": "EXP-2026-001",
        "categoryId": "c",
        "amount": 10.0,
        "expenseDate": "2026-01-01",
        "isRecurring": True,
    }

    assert rules_for(validator.validate(base), "recurringConfig") == [MISSING_REQUIRED]
    errors = validator.validate({**base, "recurringConfig": {"startDate": "2026-01-01"}})
    assert rules_for(errors, "recurringConfig.frequency") == [MISSING_REQUIRED]


# =============================================================================
# SERVICE
# =============================================================================

def test_create_template_defaults(expense_service):
    template = expense_service.create_template(rent(), now=utc(2026, 1, 15))

    assert template["expenseNumber"] == "EXP-2026-001"
    assert template["isRecurring"] is True
    assert template["tags"] == ["rent", "fixed"]
    config = template["recurringConfig"]
    assert config["interval"] == 1
    assert config["startDate"] == "2026-01-31T00:00:00+00:00"
    assert config["nextDueDate"] == config["startDate"]


def test_create_invalid_template(expense_service):
    payload = rent()
    payload["recurringConfig"]["frequency"] = "hourly"
    with pytest.raises(SchemaViolation) as exc_info:
        expense_service.create_template(payload)
    assert exc_info.value.violations[0].field == "recurringConfig.frequency"


def test_process_due_catches_up_month_ends(expense_service):
    template = expense_service.create_template(rent(), now=utc(2026, 1, 15))

    results = expense_service.process_due(utc(2026, 3, 31, 12))

    assert results["processedCount"] == 1
    created = results["createdExpenses"]
    assert [e["expenseDate"][:10] for e in created] == ["2026-01-31", "2026-02-28", "2026-03-31"]
    assert [e["expenseNumber"] for e in created] == ["EXP-2026-002", "EXP-2026-003", "EXP-2026-004"]
    assert all(e["recurringTemplateId"] == template["id"] for e in created)
    assert all(e["isRecurring"] is False for e in created)
    assert created[0]["notes"] == "Generated from recurring expense"
    assert results["updatedTemplates"][0]["nextDueDate"] == "2026-04-30T00:00:00+00:00"

    again = expense_service.process_due(utc(2026, 3, 31, 12))
    assert again["processedCount"] == 0
    assert again["createdExpenses"] == []


class ReplaceFailsOnceRepository(InMemoryRepository):
    """The first conditional replace loses to another writer."""

    def __init__(self, name):
        super().__init__(name)
        self.failed = False

    def replace(self, entity, etag):
        if not self.failed:
            self.failed = True
            raise ConcurrencyConflict("modified concurrently")
        return super().replace(entity, etag)


def test_rerun_after_failed_advance_does_not_duplicate(repositories):
    repositories.expenses = ReplaceFailsOnceRepository("expenses")
    service = RecurringExpenseService(repositories)
    template = service.create_template(rent(), now=utc(2026, 1, 15))

    failed = service.process_due(utc(2026, 3, 31, 12))
    assert [e["templateId"] for e in failed["errors"]] == [template["id"]]

    rerun = service.process_due(utc(2026, 3, 31, 12))
    assert rerun["processedCount"] == 1
    assert rerun["createdExpenses"] == []
    assert rerun["updatedTemplates"][0]["created"] == 0
    assert rerun["updatedTemplates"][0]["nextDueDate"] == "2026-04-30T00:00:00+00:00"

    generated = repositories.expenses.find(QueryOptions(filters={"recurringTemplateId": template["id"]}))
    assert generated.total_count == 3
    assert sorted(e["id"] for e in generated.data) == [
        f"{template['id']}-20260131",
        f"{template['id']}-20260228",
        f"{template['id']}-20260331",
    ]


def test_stopped_template_is_skipped(expense_service):
    template = expense_service.create_template(rent(), now=utc(2026, 1, 15))
    expense_service.process_due(utc(2026, 3, 31, 12))

    stopped = expense_service.stop(template["id"], today=utc(2026, 4, 1))
    assert stopped["recurringConfig"]["endDate"] == "2026-04-01T00:00:00+00:00"

    results = expense_service.process_due(utc(2026, 5, 31))
    assert results["createdExpenses"] == []
    assert results["skipped"] == [template["id"]]


def test_failing_template_does_not_stop_the_batch(expense_service, repositories):
    expense_service.create_template(rent(), now=utc(2026, 1, 15))
    repositories.expenses.create({
        "id": "broken",
        "expenseNumber": "EXP-2026-900",
        "categoryId": "cat-misc",
        "amount": 10.0,
        "expenseDate": "2026-01-01T00:00:00+00:00",
        "isRecurring": True,
        "recurringConfig": {
            "frequency": "fortnightly",
            "startDate": "2026-01-01T00:00:00+00:00",
            "nextDueDate": "2026-01-01T00:00:00+00:00",
        },
    })

    results = expense_service.process_due(utc(2026, 1, 31, 12))

    assert results["processedCount"] == 1
    assert [e["templateId"] for e in results["errors"]] == ["broken"]
    assert len(results["createdExpenses"]) == 1


def test_list_templates_by_activity(expense_service):
    ended = expense_service.create_template(
        rent(startDate="2026-01-01", endDate="2026-03-01"), now=utc(2026, 1, 1)
    )
    ongoing = expense_service.create_template(rent(), now=utc(2026, 1, 1))

    active = expense_service.list_templates(is_active=True, now=utc(2026, 6, 1))
    assert [t["id"] for t in active] == [ongoing["id"]]

    everything = expense_service.list_templates(now=utc(2026, 6, 1))
    assert {t["id"]: t["isActive"] for t in everything} == {ended["id"]: False, ongoing["id"]: True}


def test_update_template_fields(expense_service):
    template = expense_service.create_template(rent(), now=utc(2026, 1, 15))

    updated = expense_service.update_template(
        template["id"],
        {"amount": 26000.0, "vendor": {"name": "Karim Estates"}, "tags": ["rent", " "], "expenseDate": "2030-01-01"},
        now=utc(2026, 2, 1),
    )

    assert updated["amount"] == 26000.0
    assert updated["vendor"] == {"name": "Karim Estates"}
    assert updated["tags"] == ["rent"]
    assert updated["expenseDate"] == template["expenseDate"]
    assert updated["recurringConfig"] == template["recurringConfig"]
    assert updated["updatedAt"] == "2026-02-01T00:00:00+00:00"


def test_schedule_change_moves_next_due_date(expense_service):
    template = expense_service.create_template(rent(), now=utc(2026, 1, 15))
    expense_service.process_due(utc(2026, 3, 31, 12))

    updated = expense_service.update_template(template["id"], {"recurringConfig": {"frequency": "weekly"}})

    config = updated["recurringConfig"]
    assert config["frequency"] == "weekly"
    assert config["interval"] == 1
    assert config["nextDueDate"] == "2026-05-02T00:00:00+00:00"

    results = expense_service.process_due(utc(2026, 5, 10))
    assert [e["expenseDate"][:10] for e in results["createdExpenses"]] == ["2026-05-02", "2026-05-09"]


def test_explicit_next_due_date_wins(expense_service):
    template = expense_service.create_template(rent(), now=utc(2026, 1, 15))

    updated = expense_service.update_template(template["id"], {
        "recurringConfig": {"interval": 2, "nextDueDate": "2026-06-30"},
    })

    assert updated["recurringConfig"]["interval"] == 2
    assert updated["recurringConfig"]["nextDueDate"] == "2026-06-30T00:00:00+00:00"


@pytest.mark.parametrize("config, field", [
    ({"frequency": "hourly"}, "recurringConfig.frequency"),
    ({"interval": 0}, "recurringConfig.interval"),
    ({"endDate": "2025-12-31"}, "recurringConfig.endDate"),
])
def test_invalid_update_is_rejected(expense_service, repositories, config, field):
    template = expense_service.create_template(rent(), now=utc(2026, 1, 15))

    with pytest.raises(SchemaViolation) as exc_info:
        expense_service.update_template(template["id"], {"recurringConfig": config})

    assert exc_info.value.violations[0].field == field
    stored = repositories.expenses.get_by_id(template["id"])
    assert stored["recurringConfig"] == template["recurringConfig"]


def test_update_unknown_template(expense_service):
    with pytest.raises(NotFound):
        expense_service.update_template("missing", {"amount": 10.0})


def test_stop_unknown_template(expense_service):
    with pytest.raises(NotFound):
        expense_service.stop("missing")


# =============================================================================
# API
# =============================================================================

def test_recurring_expense_api(client):
    response = client.post("/api/recurring-expenses", json=rent())
    assert response.status_code == 201, response.text
    template = response.json()["data"]

    listing = client.get("/api/recurring-expenses").json()
    assert listing["total"] == 1

    processed = client.post("/api/recurring-expenses/process", json={"processDate": "2026-02-28T23:00:00Z"})
    assert processed.status_code == 200
    assert len(processed.json()["data"]["createdExpenses"]) == 2

    stopped = client.post(f"/api/recurring-expenses/{template['id']}/stop")
    assert stopped.status_code == 200
    assert "endDate" in stopped.json()["data"]["recurringConfig"]


def test_process_rejects_bad_date(client):
    response = client.post("/api/recurring-expenses/process", json={"processDate": "yesterday"})
    assert response.status_code == 422
    assert response.json()["errors"][0]["field"] == "processDate"


def test_stop_unknown_template_api(client):
    assert client.post("/api/recurring-expenses/missing/stop").status_code == 404


def test_update_recurring_expense_api(client):
    template = client.post("/api/recurring-expenses", json=rent()).json()["data"]

    response = client.put(
        f"/api/recurring-expenses/{template['id']}",
        json={"notes": "Rent revised", "recurringConfig": {"interval": 3}},
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["message"] == "Recurring expense template updated successfully"
    assert body["data"]["notes"] == "Rent revised"
    assert body["data"]["recurringConfig"]["frequency"] == "monthly"
    assert body["data"]["recurringConfig"]["interval"] == 3

    invalid = client.put(f"/api/recurring-expenses/{template['id']}", json={"recurringConfig": {"frequency": "hourly"}})
    assert invalid.status_code == 422
    assert invalid.json()["errors"][0]["field"] == "recurringConfig.frequency"

    assert client.put("/api/recurring-expenses/missing", json={"amount": 10.0}).status_code == 404
