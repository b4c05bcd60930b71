from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional, Sequence

from models import (
    PaymentStatus,
    RecurringExpense,
    RecurringExpenseOverride,
    Transaction,
)
from months import Month
from recurrence import (
    effective_interval,
    is_expense_due_in_month,
    resolve_override,
)


@dataclass(frozen=True)
class ExpenseStatus:
    expense: RecurringExpense
    override: Optional[RecurringExpenseOverride]
    due_date: date
    effective_amount_cents: int
    is_due_this_month: bool
    is_skipped: bool
    is_manually_confirmed: bool
    has_linked_transaction: bool
    has_completed_payment: bool
    is_paid_this_month: bool
    is_due_date_passed: bool
    is_due_today: bool
    is_overdue: bool
    linked_transaction: Optional[Transaction]

    @property
    def counts_toward_month(self) -> bool:
        return (
            self.expense.is_active and self.is_due_this_month and not self.is_skipped
        )


@dataclass(frozen=True)
class MonthProjection:
    month: Month
    as_of: date
    statuses: list[ExpenseStatus]
    total_due_cents: int
    paid_cents: int
    overdue_cents: int
    pending_cents: int
    monthly_equivalent: Decimal


def due_date_position(due: date, as_of: date) -> tuple[bool, bool]:
    """Return ``(passed, today)`` comparing only year, month and day."""
    if (due.year, due.month) < (as_of.year, as_of.month):
        return True, False
    if (due.year, due.month) > (as_of.year, as_of.month):
        return False, False
    return due.day < as_of.day, due.day == as_of.day


def monthly_equivalent(expenses: Iterable[RecurringExpense]) -> Decimal:
    """Amortized run rate of all active expenses, in currency units."""
    total_cents = sum(
        (
            Decimal(expense.amount_cents)
            / Decimal(effective_interval(expense.interval_months))
            for expense in expenses
            if expense.is_active
        ),
        Decimal("0"),
    )
    return (total_cents / Decimal("100")).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )


def project_status(
    expense: RecurringExpense,
    override: Optional[RecurringExpenseOverride],
    linked: Sequence[Transaction],
    month: Month,
    as_of: date,
) -> ExpenseStatus:
    terms = resolve_override(expense, override)
    is_due = is_expense_due_in_month(expense, month)

    # Any linked row counts, including a materialized placeholder.
    completed = [
        txn for txn in linked if txn.payment_status == PaymentStatus.completed
    ]
    has_linked = bool(linked)
    is_paid = has_linked or terms.is_manually_confirmed

    due = month.day(expense.day_of_month)
    passed, today = due_date_position(due, as_of)
    is_overdue = is_due and passed and not is_paid and not terms.is_skipped

    return ExpenseStatus(
        expense=expense,
        override=override,
        due_date=due,
        effective_amount_cents=terms.amount_cents,
        is_due_this_month=is_due,
        is_skipped=terms.is_skipped,
        is_manually_confirmed=terms.is_manually_confirmed,
        has_linked_transaction=has_linked,
        has_completed_payment=bool(completed),
        is_paid_this_month=is_paid,
        is_due_date_passed=passed,
        is_due_today=today,
        is_overdue=is_overdue,
        linked_transaction=(completed or list(linked) or [None])[0],
    )


def project_month(
    expenses: Sequence[RecurringExpense],
    overrides: Mapping[int, RecurringExpenseOverride],
    linked_transactions: Iterable[Transaction],
    month: Month,
    as_of: date,
) -> MonthProjection:
    by_expense: dict[int, list[Transaction]] = {}
    for txn in linked_transactions:
        if txn.recurring_expense_id is None:
            continue
        if not month.contains(txn.transaction_date):
            continue
        by_expense.setdefault(txn.recurring_expense_id, []).append(txn)

    statuses = [
        project_status(
            expense,
            overrides.get(expense.id),
            by_expense.get(expense.id, []),
            month,
            as_of,
        )
        for expense in expenses
    ]

    counted = [s for s in statuses if s.counts_toward_month]
    total_due = sum(s.effective_amount_cents for s in counted)
    paid = sum(s.effective_amount_cents for s in counted if s.is_paid_this_month)
    overdue = sum(s.effective_amount_cents for s in counted if s.is_overdue)
    pending = sum(
        s.effective_amount_cents
        for s in counted
        if not s.is_paid_this_month and not s.is_overdue
    )

    return MonthProjection(
        month=month,
        as_of=as_of,
        statuses=statuses,
        total_due_cents=total_due,
        paid_cents=paid,
        overdue_cents=overdue,
        pending_cents=pending,
        monthly_equivalent=monthly_equivalent(expenses),
    )
