"""
Expense Domain Services.

Date arithmetic, numbering and occurrence generation for recurring
expenses. Pure functions of their inputs; no I/O.
"""

import calendar
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from core.domain import DomainService, parse_date

from .policies import FREQUENCIES

EXPENSE_NUMBER_RE = re.compile(r"^EXP-(\d{4})-(\d{3,})$")

GENERATED_NOTE = "Generated from recurring expense"


def add_months(value: datetime, months: int, anchor_day: Optional[int] = None) -> datetime:
    """
    Step by whole months, clamping to the last day of the target month.

    anchor_day keeps a schedule on its original day of month (a 31st
    schedule goes Jan 31, Feb 28, Mar 31) instead of drifting after a
    short month.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(anchor_day or value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def calculate_next_due_date(
    current: datetime,
    frequency: str,
    interval: int = 1,
    anchor_day: Optional[int] = None,
) -> datetime:
    """
    Next occurrence after `current`.

    Args:
        current: The current due date
        frequency: daily, weekly, monthly or yearly
        interval: Every N periods (at least 1)
        anchor_day: Day of month monthly and yearly schedules return to

    Raises:
        ValueError: Unknown frequency or interval below 1
    """
    interval = interval or 1
    if interval < 1:
        raise ValueError(f"Invalid interval: {interval}")
    if frequency == "daily":
        return current + timedelta(days=interval)
    if frequency == "weekly":
        return current + timedelta(weeks=interval)
    if frequency == "monthly":
        return add_months(current, interval, anchor_day)
    if frequency == "yearly":
        return add_months(current, 12 * interval, anchor_day)
    raise ValueError(f"Invalid frequency: {frequency}. Must be one of: {', '.join(FREQUENCIES)}")


class ExpenseNumberGenerator(DomainService):
    """Generates EXP-<year>-<NNN> numbers, one past the highest of the year."""

    def execute(self, existing_numbers: Iterable[str], year: int) -> str:
        highest = 0
        for number in existing_numbers:
            match = EXPENSE_NUMBER_RE.match(number or "")
            if match and int(match.group(1)) == year:
                highest = max(highest, int(match.group(2)))
        return f"EXP-{year}-{highest + 1:03d}"


@dataclass
class DueOccurrences:
    """Occurrences owed by one template up to a processing date."""
    due_dates: List[datetime] = field(default_factory=list)
    next_due_date: Optional[datetime] = None
    ended: bool = False


class RecurringScheduleService(DomainService):
    """
    Works out which occurrences of a template are due.

    Every occurrence with a due date on or before the processing date
    (and not after the template's end date) is owed, so a template that
    was not processed for a while catches up in one run.
    """

    def execute(self, config: Dict[str, Any], process_date: datetime) -> DueOccurrences:
        due = parse_date(config.get("nextDueDate")) or parse_date(config.get("startDate"))
        end = parse_date(config.get("endDate"))
        result = DueOccurrences(next_due_date=due)
        if due is None:
            return result

        frequency = config.get("frequency")
        interval = config.get("interval") or 1
        start = parse_date(config.get("startDate"))
        anchor_day = start.day if start else None
        while due <= process_date:
            if end is not None and due > end:
                result.ended = True
                break
            result.due_dates.append(due)
            due = calculate_next_due_date(due, frequency, interval, anchor_day)

        result.next_due_date = due
        if end is not None and due > end:
            result.ended = True
        return result


def build_occurrence(template: Dict[str, Any], due_date: datetime) -> Dict[str, Any]:
    """Expense generated from a template for one due date (without id or number)."""
    notes = template.get("notes")
    occurrence = {
        "categoryId": template.get("categoryId"),
        "categoryName": template.get("categoryName"),
        "amount": template.get("amount"),
        "description": template.get("description"),
        "expenseDate": due_date.isoformat(),
        "paymentMethod": template.get("paymentMethod"),
        "vendor": template.get("vendor"),
        "attachments": [],
        "isRecurring": False,
        "recurringConfig": None,
        "tags": list(template.get("tags") or []),
        "notes": f"{notes} ({GENERATED_NOTE})" if notes else GENERATED_NOTE,
        "recurringTemplateId": template.get("id"),
    }
    return {k: v for k, v in occurrence.items() if v is not None}


def occurrence_id(template_id: str, due_date: datetime) -> str:
    """Id of the expense a template generates for one due date."""
    return f"{template_id}-{due_date.strftime('%Y%m%d')}"


def first_due_on_or_after(config: Dict[str, Any], not_before: Optional[datetime]) -> Optional[datetime]:
    """
    First occurrence of the schedule in `config` on or after `not_before`.

    The schedule is walked from its start date, so a changed frequency
    or interval lands on a date of the new schedule rather than on one
    derived from the old due date.
    """
    start = parse_date(config.get("startDate"))
    if start is None or not_before is None:
        return start

    frequency = config.get("frequency")
    interval = config.get("interval") or 1
    due = start
    while due < not_before:
        due = calculate_next_due_date(due, frequency, interval, start.day)
    return due
