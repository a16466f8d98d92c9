from __future__ import annotations

from dataclasses import dataclass
from calendar import monthrange
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from budget_planner.ledger import Transaction

DATE_FORMAT = "%Y-%m-%d"
DEFAULT_FREQUENCY = "single"


@dataclass(frozen=True)
class FrequencyStep:
    days: int = 0
    months: int = 0

    @property
    def is_single(self) -> bool:
        return not self.days and not self.months


FREQUENCY_STEPS: Dict[str, FrequencyStep] = {
    "single": FrequencyStep(),
    "weekly": FrequencyStep(days=7),
    "biweekly": FrequencyStep(days=14),
    "every14": FrequencyStep(days=14),
    "monthly": FrequencyStep(months=1),
    "quarterly": FrequencyStep(months=3),
    "semiannual": FrequencyStep(months=6),
    "annual": FrequencyStep(months=12),
}

FREQUENCY_LABELS: Dict[str, str] = {
    "single": "One-time",
    "weekly": "Weekly",
    "biweekly": "Biweekly",
    "every14": "Every 14 Days",
    "monthly": "Monthly",
    "quarterly": "Quarterly",
    "semiannual": "Every 6 Months",
    "annual": "Annually",
}


def generate_occurrences(transaction: "Transaction", range_end: date) -> List[date]:
    """Expand a transaction's recurrence rule into its dates up to ``range_end``.

    A one-time (or unrecognized) rule always yields its start date, even when
    the start date falls after ``range_end``. Month-based rules re-anchor on the
    start day every step, so a schedule starting on the 31st lands on the last
    day of short months and returns to the 31st when the month allows it.
    An unparseable start date yields no occurrences.
    """
    start_date = parse_calendar_date(transaction.start_date)
    if start_date is None:
        return []

    step = frequency_step(transaction.frequency)
    if step.is_single:
        return [start_date]

    occurrences: List[date] = []
    current_date = start_date
    offset = 0
    while current_date is not None and current_date <= range_end:
        occurrences.append(current_date)
        offset += 1
        current_date = _step_from(start_date, step, offset)
    return occurrences


def parse_calendar_date(value: object) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except ValueError:
        return None


def frequency_step(frequency: Optional[str]) -> FrequencyStep:
    return FREQUENCY_STEPS.get(_normalize_frequency(frequency), FREQUENCY_STEPS[DEFAULT_FREQUENCY])


def frequency_label(frequency: Optional[str]) -> str:
    normalized = _normalize_frequency(frequency)
    if normalized in FREQUENCY_LABELS:
        return FREQUENCY_LABELS[normalized]
    if not normalized:
        return FREQUENCY_LABELS[DEFAULT_FREQUENCY]
    return normalized.capitalize()


def add_months(value: date, months: int) -> date:
    return _add_months(value, months, value.day)


def _step_from(start_date: date, step: FrequencyStep, offset: int) -> Optional[date]:
    # None once the next occurrence would fall past date.max
    try:
        if step.months:
            return _add_months(start_date, step.months * offset, start_date.day)
        return start_date + timedelta(days=step.days * offset)
    except (OverflowError, ValueError):
        return None


def _normalize_frequency(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.strip().lower()


def _add_months(start_date: date, months: int, anchor_day: int) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    day = min(anchor_day, last_day)
    return date(year, month, day)
