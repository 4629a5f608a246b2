"""
Recurring Expense Service.

Stores recurring expense templates and turns due occurrences into
ordinary expenses. Templates and generated expenses share the expenses
container; generated ones carry recurringTemplateId.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.data import DuplicateDocument, Document, QueryOptions, iter_documents, public_document
from core.domain import parse_date, to_iso, utc_now
from core.errors import NotFound
from shared.repositories import Repositories

from .domain.policies import ExpenseValidator, is_recurring_active
from .domain.services import (
    ExpenseNumberGenerator,
    RecurringScheduleService,
    build_occurrence,
    first_due_on_or_after,
    occurrence_id,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ["categoryId", "categoryName", "amount", "description", "paymentMethod", "vendor", "notes"]

CONFIG_DATE_FIELDS = ("startDate", "endDate", "nextDueDate")


class RecurringExpenseService:
    """Recurring expense templates and their scheduled processing."""

    def __init__(self, repositories: Repositories):
        self.repos = repositories
        self.validator = ExpenseValidator()
        self.number_generator = ExpenseNumberGenerator()
        self.schedule = RecurringScheduleService()

    def _next_expense_number(self, when: datetime) -> str:
        prefix = f"EXP-{when.year}-"
        existing = (
            doc.get("expenseNumber", "")
            for doc in iter_documents(self.repos.expenses, QueryOptions(prefix_filters={"expenseNumber": prefix}))
        )
        return self.number_generator.execute(existing, when.year)

    def _get_template(self, template_id: str) -> Document:
        template = self.repos.expenses.get_by_id(template_id)
        if template is None or not template.get("isRecurring"):
            raise NotFound("Recurring expense template not found")
        return template

    # =========================================================================
    # TEMPLATES
    # =========================================================================

    def create_template(self, payload: Dict[str, Any], now: Optional[datetime] = None) -> Document:
        """
        Create a recurring expense template.

        startDate defaults to the expense date and nextDueDate to the
        start date.

        Raises:
            SchemaViolation: The template or its recurrence is invalid
        """
        now = now or utc_now()
        expense_date = to_iso(payload.get("expenseDate")) or now.isoformat()
        config = payload.get("recurringConfig") or {}
        start_date = to_iso(config.get("startDate")) or expense_date

        recurring_config = {
            "frequency": config.get("frequency"),
            "interval": config.get("interval") or 1,
            "startDate": start_date,
            "endDate": to_iso(config.get("endDate")),
            "nextDueDate": to_iso(config.get("nextDueDate")) or start_date,
        }
        template = {
            "id": str(uuid.uuid4()),
            "expenseNumber": self._next_expense_number(now),
            "categoryId": payload.get("categoryId"),
            "categoryName": payload.get("categoryName"),
            "amount": payload.get("amount"),
            "description": (payload.get("description") or "").strip() or None,
            "expenseDate": expense_date,
            "paymentMethod": payload.get("paymentMethod") or "cash",
            "vendor": payload.get("vendor"),
            "attachments": [],
            "isRecurring": True,
            "recurringConfig": {k: v for k, v in recurring_config.items() if v is not None},
            "tags": [t.strip() for t in payload.get("tags") or [] if isinstance(t, str) and t.strip()],
            "notes": (payload.get("notes") or "").strip() or None,
            "createdAt": now.isoformat(),
            "updatedAt": now.isoformat(),
        }
        template = {k: v for k, v in template.items() if v is not None}
        self.validator.check(template)

        created = self.repos.expenses.create(template)
        logger.info(
            f"Created recurring expense {created['expenseNumber']} "
            f"({recurring_config['frequency']}, next due {recurring_config['nextDueDate']})"
        )
        return public_document(created)

    def list_templates(
        self,
        category_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> List[Document]:
        """Templates ordered by next due date, optionally filtered."""
        now = now or utc_now()
        options = QueryOptions(filters={"isRecurring": True}, order_by="recurringConfig.nextDueDate")
        if category_id:
            options.filters["categoryId"] = category_id

        templates = []
        for doc in iter_documents(self.repos.expenses, options):
            active = is_recurring_active(doc.get("recurringConfig") or {}, now)
            if is_active is not None and active != is_active:
                continue
            templates.append({**public_document(doc), "isActive": active})
        return templates

    def update_template(self, template_id: str, updates: Dict[str, Any], now: Optional[datetime] = None) -> Document:
        """
        Update a recurring expense template.

        Only the descriptive fields and recurringConfig can change.
        recurringConfig is merged into the stored config. When the
        schedule changes (frequency, interval or startDate) and no
        nextDueDate is given, the next due date moves to the first date
        of the new schedule on or after the current one, so occurrences
        already generated are not owed again.

        Raises:
            NotFound: Unknown template
            SchemaViolation: The updated template is invalid
        """
        now = now or utc_now()
        template = self._get_template(template_id)

        for name in UPDATABLE_FIELDS:
            if name in updates and updates[name] is not None:
                template[name] = updates[name]
        if "tags" in updates and updates["tags"] is not None:
            template["tags"] = [t.strip() for t in updates["tags"] if isinstance(t, str) and t.strip()]

        config_updates = {k: v for k, v in (updates.get("recurringConfig") or {}).items() if v is not None}
        previous_config = template.get("recurringConfig") or {}
        config = dict(previous_config)
        for name, value in config_updates.items():
            config[name] = (to_iso(value) or value) if name in CONFIG_DATE_FIELDS else value
        template["recurringConfig"] = config
        template["updatedAt"] = now.isoformat()
        self.validator.check(template)

        schedule_changed = any(config.get(k) != previous_config.get(k) for k in ("frequency", "interval", "startDate"))
        if schedule_changed and "nextDueDate" not in config_updates:
            next_due = first_due_on_or_after(config, parse_date(previous_config.get("nextDueDate")))
            config["nextDueDate"] = next_due.isoformat()

        updated = self.repos.expenses.replace(template, template.get("_etag"))
        logger.info(
            f"Updated recurring expense {updated.get('expenseNumber')} "
            f"(next due {config.get('nextDueDate')})"
        )
        return public_document(updated)

    def stop(self, template_id: str, today: Optional[datetime] = None) -> Document:
        """End a template today so no later occurrences are generated."""
        today = today or utc_now()
        template = self._get_template(template_id)
        template.setdefault("recurringConfig", {})["endDate"] = today.isoformat()
        template["updatedAt"] = today.isoformat()
        updated = self.repos.expenses.replace(template, template.get("_etag"))
        logger.info(f"Stopped recurring expense {updated.get('expenseNumber')}")
        return public_document(updated)

    # =========================================================================
    # PROCESSING
    # =========================================================================

    def _process_template(self, template: Document, process_date: datetime, results: Dict[str, Any]):
        config = template.get("recurringConfig") or {}
        occurrences = self.schedule.execute(config, process_date)
        if not occurrences.due_dates:
            if occurrences.ended:
                logger.info(f"Recurring expense {template['id']} has ended, skipping")
                results["skipped"].append(template["id"])
            return

        # Occurrence ids are derived from the due date, so a run that
        # stopped before advancing the template does not generate twice.
        previous_due = config.get("nextDueDate")
        created = 0
        for due_date in occurrences.due_dates:
            expense_id = occurrence_id(template["id"], due_date)
            if self.repos.expenses.get_by_id(expense_id) is not None:
                logger.info(f"Expense {expense_id} already generated, skipping")
                continue

            expense = build_occurrence(template, due_date)
            expense["id"] = expense_id
            expense["expenseNumber"] = self._next_expense_number(due_date)
            expense["createdAt"] = process_date.isoformat()
            expense["updatedAt"] = process_date.isoformat()
            self.validator.check(expense)
            try:
                stored = self.repos.expenses.create(expense)
            except DuplicateDocument:
                logger.info(f"Expense {expense_id} generated by another run, skipping")
                continue
            results["createdExpenses"].append(public_document(stored))
            created += 1

        config["nextDueDate"] = occurrences.next_due_date.isoformat()
        template["recurringConfig"] = config
        template["updatedAt"] = process_date.isoformat()
        self.repos.expenses.replace(template, template.get("_etag"))

        results["updatedTemplates"].append({
            "templateId": template["id"],
            "previousDueDate": previous_due,
            "nextDueDate": config["nextDueDate"],
            "created": created,
        })
        results["processedCount"] += 1
        logger.info(
            f"Processed recurring expense {template['id']}: "
            f"{created} expense(s), next due {config['nextDueDate']}"
        )

    def process_due(self, process_date: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Generate expenses for every template that is due.

        A failing template is recorded in `errors` and does not stop the
        rest of the batch.
        """
        process_date = (process_date or utc_now()).astimezone(timezone.utc)
        results: Dict[str, Any] = {
            "processDate": process_date.isoformat(),
            "processedCount": 0,
            "createdExpenses": [],
            "updatedTemplates": [],
            "skipped": [],
            "errors": [],
        }

        due_templates = list(iter_documents(self.repos.expenses, QueryOptions(
            filters={"isRecurring": True},
            max_filters={"recurringConfig.nextDueDate": process_date.isoformat()},
        )))
        logger.info(f"Found {len(due_templates)} due recurring expenses")

        for template in due_templates:
            try:
                self._process_template(template, process_date, results)
            except Exception as e:
                logger.error(f"Error processing recurring expense {template.get('id')}: {e}", exc_info=True)
                results["errors"].append({"templateId": template.get("id"), "error": str(e)})

        return results
