from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Sequence, Tuple

import structlog

from budget_planner.occurrences import add_months, generate_occurrences

ZERO = Decimal("0.00")
CENT = Decimal("0.01")

logger = structlog.get_logger(__name__)


class InvalidWindowError(ValueError):
    """Raised when a ledger window ends before it starts."""


@dataclass(frozen=True)
class Transaction:
    type: str
    name: str
    amount: Decimal
    start_date: date | str
    frequency: str = "single"
    id: str | None = None


@dataclass(frozen=True)
class ExpenseLine:
    name: str
    amount: Decimal


@dataclass(frozen=True)
class LedgerEntry:
    date: date
    starting_balance: Decimal
    total_income: Decimal
    ending_balance: Decimal
    expenses: List[ExpenseLine] = field(default_factory=list)


def compute_ledger(
    window_start: date,
    window_end: date,
    starting_balance: Decimal,
    transactions: Iterable[Transaction],
) -> List[LedgerEntry]:
    """Project a day-by-day running balance over ``[window_start, window_end]``.

    Occurrences before the window are folded into the opening balance; those
    inside it are grouped per day, income as a total and expenses itemized
    and sorted by name. Every sum is rounded to cents as soon as it is made.
    """
    if window_start > window_end:
        raise InvalidWindowError("window_start must be on or before window_end.")

    balance = round_currency(starting_balance)
    daily_income: Dict[date, List[Decimal]] = {}
    daily_expenses: Dict[date, List[ExpenseLine]] = {}

    for txn in transactions:
        amount = round_currency(txn.amount)
        is_expense = _normalize_type(txn.type) == "expense"
        occurrences = generate_occurrences(txn, window_end)
        if not occurrences:
            logger.debug(
                "transaction_without_occurrences",
                transaction_id=txn.id,
                start_date=str(txn.start_date),
            )
        for occurrence in occurrences:
            if occurrence < window_start:
                balance = round_currency(balance - amount if is_expense else balance + amount)
            elif occurrence <= window_end:
                if is_expense:
                    daily_expenses.setdefault(occurrence, []).append(
                        ExpenseLine(name=txn.name, amount=amount)
                    )
                else:
                    daily_income.setdefault(occurrence, []).append(amount)

    ledger: List[LedgerEntry] = []
    for offset in range((window_end - window_start).days + 1):
        current_date = window_start + timedelta(days=offset)
        opening = round_currency(balance)
        total_income = round_currency(sum(daily_income.get(current_date, []), ZERO))
        expenses = sorted(daily_expenses.get(current_date, []), key=lambda line: line.name)
        total_expenses = round_currency(sum((line.amount for line in expenses), ZERO))
        balance = round_currency(opening + total_income - total_expenses)
        ledger.append(
            LedgerEntry(
                date=current_date,
                starting_balance=opening,
                total_income=total_income,
                ending_balance=balance,
                expenses=expenses,
            )
        )
    return ledger


def default_window(today: date) -> Tuple[date, date]:
    return today, add_months(today, 12)


def has_ledger_data(starting_balance: Decimal, transactions: Sequence[Transaction]) -> bool:
    return round_currency(starting_balance) != ZERO or len(transactions) > 0


def round_currency(value: Decimal | float | int | str) -> Decimal:
    return _coerce_amount(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _normalize_type(value: str) -> str:
    return value.strip().lower()


def _coerce_amount(amount: Decimal | float | int | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
