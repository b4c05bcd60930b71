from datetime import date
from decimal import Decimal

from models import (
    PaymentStatus,
    RecurringExpense,
    RecurringExpenseOverride,
    Transaction,
    TransactionType,
)
from months import Month
from projection import (
    due_date_position,
    monthly_equivalent,
    project_month,
    project_status,
)

JANUARY = Month(2024, 1)


def _expense(expense_id: int = 1, **overrides) -> RecurringExpense:
    values = dict(
        id=expense_id,
        user_id=1,
        name=f"Expense {expense_id}",
        amount_cents=12000,
        currency_code="PLN",
        day_of_month=15,
        interval_months=1,
        start_date=date(2023, 1, 1),
        end_date=None,
        match_keywords=[],
        is_active=True,
    )
    values.update(overrides)
    return RecurringExpense(**values)


def _txn(expense_id: int, on: date, **overrides) -> Transaction:
    values = dict(
        id=100 + expense_id,
        user_id=1,
        account_id=1,
        transaction_date=on,
        type=TransactionType.expense,
        amount_cents=12000,
        currency_code="PLN",
        description="payment",
        recurring_expense_id=expense_id,
        is_recurring_generated=False,
        payment_status=PaymentStatus.completed,
    )
    values.update(overrides)
    return Transaction(**values)


def _override(expense_id: int = 1, **values) -> RecurringExpenseOverride:
    return RecurringExpenseOverride(
        user_id=1,
        recurring_expense_id=expense_id,
        override_month=JANUARY.start,
        override_amount_cents=values.get("override_amount_cents"),
        is_skipped=values.get("is_skipped", False),
        is_manually_confirmed=values.get("is_manually_confirmed", False),
    )


def test_due_date_position_around_due_day():
    due = date(2024, 1, 15)
    assert due_date_position(due, date(2024, 1, 14)) == (False, False)
    assert due_date_position(due, date(2024, 1, 15)) == (False, True)
    assert due_date_position(due, date(2024, 1, 16)) == (True, False)
    assert due_date_position(due, date(2024, 2, 1)) == (True, False)
    assert due_date_position(due, date(2023, 12, 31)) == (False, False)


def test_overdue_only_after_due_day():
    expense = _expense()
    before = project_status(expense, None, [], JANUARY, date(2024, 1, 14))
    on_day = project_status(expense, None, [], JANUARY, date(2024, 1, 15))
    after = project_status(expense, None, [], JANUARY, date(2024, 1, 16))

    assert not before.is_overdue and not before.is_due_today
    assert on_day.is_due_today and not on_day.is_overdue
    assert after.is_due_date_passed and after.is_overdue
    assert after.due_date == date(2024, 1, 15)


def test_past_month_unpaid_is_overdue():
    status = project_status(_expense(), None, [], JANUARY, date(2024, 3, 1))
    assert status.is_overdue


def test_linked_payment_marks_paid():
    payment = _txn(1, date(2024, 1, 20))
    status = project_status(_expense(), None, [payment], JANUARY, date(2024, 1, 31))
    assert status.has_linked_transaction
    assert status.has_completed_payment
    assert status.is_paid_this_month
    assert not status.is_overdue
    assert status.linked_transaction is payment


def test_linked_placeholder_counts_as_linked():
    placeholder = _txn(
        1,
        date(2024, 1, 15),
        is_recurring_generated=True,
        payment_status=PaymentStatus.planned,
        generated_month="2024-01",
    )
    status = project_status(
        _expense(), None, [placeholder], JANUARY, date(2024, 1, 20)
    )
    assert status.has_linked_transaction
    assert status.is_paid_this_month
    assert not status.is_overdue
    assert not status.has_completed_payment
    assert status.linked_transaction is placeholder


def test_manual_confirmation_counts_as_paid():
    status = project_status(
        _expense(),
        _override(is_manually_confirmed=True),
        [],
        JANUARY,
        date(2024, 1, 31),
    )
    assert status.is_paid_this_month
    assert not status.has_linked_transaction
    assert not status.is_overdue


def test_override_amount_is_effective():
    status = project_status(
        _expense(),
        _override(override_amount_cents=15000),
        [],
        JANUARY,
        date(2024, 1, 1),
    )
    assert status.effective_amount_cents == 15000
    assert not status.is_paid_this_month


def test_skipped_expense_is_never_overdue():
    status = project_status(
        _expense(), _override(is_skipped=True), [], JANUARY, date(2024, 1, 31)
    )
    assert status.is_skipped
    assert not status.is_overdue
    assert not status.counts_toward_month


def test_project_month_aggregates():
    paid = _expense(1, amount_cents=10000, day_of_month=5)
    overdue = _expense(2, amount_cents=5000, day_of_month=10)
    pending = _expense(3, amount_cents=2000, day_of_month=25)
    skipped = _expense(4, amount_cents=3000, day_of_month=1)
    quarterly = _expense(
        5, amount_cents=9000, interval_months=3, start_date=date(2023, 12, 1)
    )
    inactive = _expense(6, amount_cents=7000, is_active=False)

    projection = project_month(
        [paid, overdue, pending, skipped, quarterly, inactive],
        {4: _override(4, is_skipped=True)},
        [_txn(1, date(2024, 1, 5)), _txn(2, date(2023, 12, 10))],
        JANUARY,
        date(2024, 1, 20),
    )

    by_id = {s.expense.id: s for s in projection.statuses}
    assert len(by_id) == 6
    assert not by_id[5].is_due_this_month
    assert by_id[2].is_overdue
    assert projection.total_due_cents == 17000
    assert projection.paid_cents == 10000
    assert projection.overdue_cents == 5000
    assert projection.pending_cents == 2000
    # 10000 + 5000 + 2000 + 3000 + 9000 / 3
    assert projection.monthly_equivalent == Decimal("230.00")


def test_monthly_equivalent_of_quarterly_expense():
    expense = _expense(amount_cents=12000, interval_months=3)
    assert monthly_equivalent([expense]) == Decimal("40.00")


def test_monthly_equivalent_rounds_half_up():
    expenses = [
        _expense(1, amount_cents=1001, interval_months=2),
        _expense(2, amount_cents=0, interval_months=None),
    ]
    assert monthly_equivalent(expenses) == Decimal("5.01")
    assert monthly_equivalent([]) == Decimal("0.00")
