from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import (
    Account,
    CategorizationRule,
    PaymentStatus,
    RecurringExpense,
    RecurringExpenseOverride,
    Transaction,
    TransactionType,
)
from schemas import (
    CategorizationRuleIn,
    CategoryIn,
    ConvertToRecurringIn,
    ImportedTransactionIn,
    RecurringExpenseIn,
    RecurringOverrideIn,
)
from services import (
    CategorizationRuleService,
    CategoryService,
    ImportService,
    NotFoundError,
    RecurringExpenseService,
    RecurringOverrideService,
)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _account(session: Session, user_id: int = 1) -> Account:
    account = Account(
        user_id=user_id, name="Main", external_id=f"bank-{user_id}", currency_code="PLN"
    )
    session.add(account)
    session.commit()
    return account


def _netflix(session: Session, **overrides) -> RecurringExpense:
    values = dict(
        name="Netflix",
        amount_cents=4300,
        currency_code="PLN",
        day_of_month=5,
        interval_months=1,
        start_date=date(2023, 11, 1),
        match_keywords=["netflix", " ", "NETFLIX"],
    )
    values.update(overrides)
    return RecurringExpenseService(session).create(RecurringExpenseIn(**values))


def test_create_cleans_keywords_and_defaults_currency():
    with _session() as session:
        expense = _netflix(session, currency_code=None)
        assert expense.match_keywords == ["netflix"]
        assert expense.currency_code == "PLN"
        assert expense.is_active


def test_create_rejects_foreign_category():
    with _session() as session:
        other = CategoryService(session, user_id=2).create(CategoryIn(name="Theirs"))
        with pytest.raises(ValueError, match="Category not found"):
            _netflix(session, category_id=other.id)


def test_unknown_expense_raises_not_found():
    with _session() as session:
        with pytest.raises(NotFoundError, match="Recurring expense not found"):
            RecurringExpenseService(session).get(999)
        foreign = RecurringExpenseService(session, user_id=2).create(
            RecurringExpenseIn(name="Theirs", amount_cents=100)
        )
        with pytest.raises(ValueError, match="Recurring expense not found"):
            RecurringExpenseService(session).delete(foreign.id)


def test_update_rejects_end_before_start():
    with _session() as session:
        expense = _netflix(session)
        with pytest.raises(ValueError, match="End date"):
            RecurringExpenseService(session).update(
                expense.id,
                RecurringExpenseIn(
                    name="Netflix", amount_cents=4300, end_date=date(2023, 1, 1)
                ),
            )


def test_delete_unlinks_transactions():
    with _session() as session:
        expense = _netflix(session)
        service = RecurringExpenseService(session)
        service.month_overview("2024-01", as_of=date(2024, 1, 1))

        RecurringOverrideService(session).upsert(
            RecurringOverrideIn(
                recurring_expense_id=expense.id, month="2024-01", is_skipped=False
            )
        )
        expense_id = expense.id
        service.delete(expense_id)

        assert session.get(RecurringExpense, expense_id) is None
        txns = session.scalars(select(Transaction)).all()
        assert len(txns) == 1
        assert txns[0].recurring_expense_id is None
        assert session.scalars(select(RecurringExpenseOverride)).all() == []


def test_override_upsert_updates_single_row():
    with _session() as session:
        expense = _netflix(session)
        overrides = RecurringOverrideService(session)
        first = overrides.upsert(
            RecurringOverrideIn(
                recurring_expense_id=expense.id,
                month="2024-03",
                override_amount_cents=15000,
            )
        )
        second = overrides.upsert(
            RecurringOverrideIn(
                recurring_expense_id=expense.id,
                month="2024-03",
                is_manually_confirmed=True,
                notes="  paid in cash ",
            )
        )

        assert first.id == second.id
        assert second.override_month == date(2024, 3, 1)
        assert second.override_amount_cents is None
        assert second.is_manually_confirmed
        assert second.notes == "paid in cash"

        overrides.delete(expense.id, "2024-03")
        assert session.scalars(select(RecurringExpenseOverride)).all() == []
        with pytest.raises(NotFoundError):
            overrides.delete(expense.id, "2024-03")


def test_month_overview_materializes_and_projects():
    with _session() as session:
        expense = _netflix(session)
        service = RecurringExpenseService(session)

        overview = service.month_overview("2024-01", as_of=date(2024, 1, 10))
        again = service.month_overview("2024-01", as_of=date(2024, 1, 10))

        assert overview.selected_month == "2024-01"
        assert overview.materialized.generated == 1
        assert again.materialized.generated == 0
        assert len(again.transactions) == 1
        assert again.transactions[0].payment_status == PaymentStatus.planned

        status = again.projection.statuses[0]
        assert status.expense.id == expense.id
        assert status.has_linked_transaction
        assert status.is_paid_this_month
        assert not status.is_overdue
        assert not status.has_completed_payment
        assert status.linked_transaction.id == again.transactions[0].id
        assert again.projection.paid_cents == 4300
        assert again.projection.overdue_cents == 0


def test_month_overview_rejects_bad_month():
    with _session() as session:
        with pytest.raises(ValueError, match="Invalid month format"):
            RecurringExpenseService(session).month_overview("2024-1")


def test_import_matches_dedupes_and_falls_back():
    with _session() as session:
        account = _account(session)
        entertainment = CategoryService(session).create(CategoryIn(name="Fun"))
        CategorizationRuleService(session).create(
            CategorizationRuleIn(keyword="netflix", category_id=entertainment.id)
        )
        expense = _netflix(session)

        rows = [
            ImportedTransactionIn(
                external_id="tx-1",
                date=date(2024, 1, 5),
                amount_cents=-4300,
                description="NETFLIX.COM",
            ),
            ImportedTransactionIn(
                external_id="tx-2",
                date=date(2024, 1, 19),
                amount_cents=-4300,
                description="Netflix.com",
            ),
            ImportedTransactionIn(
                external_id="tx-3",
                date=date(2024, 1, 25),
                amount_cents=500000,
                description="Salary NETFLIX",
            ),
        ]
        result = ImportService(session).import_transactions(account.id, rows)

        assert (result.imported, result.skipped, result.matched, result.total) == (
            3,
            0,
            1,
            3,
        )
        by_external = {
            txn.external_id: txn for txn in session.scalars(select(Transaction)).all()
        }
        assert by_external["tx-1"].recurring_expense_id == expense.id
        assert by_external["tx-1"].payment_status == PaymentStatus.completed
        assert by_external["tx-1"].amount_cents == 4300
        assert by_external["tx-2"].recurring_expense_id is None
        assert by_external["tx-2"].category_id == entertainment.id
        assert by_external["tx-3"].type == TransactionType.income
        assert by_external["tx-3"].recurring_expense_id is None
        session.refresh(expense)
        assert expense.last_occurrence_date == date(2024, 1, 5)

        repeat = ImportService(session).import_transactions(account.id, rows[:1])
        assert (repeat.imported, repeat.skipped) == (0, 1)


def test_import_rejects_foreign_account():
    with _session() as session:
        account = _account(session, user_id=2)
        with pytest.raises(NotFoundError, match="Account not found"):
            ImportService(session).import_transactions(account.id, [])


def test_rematch_links_in_date_order():
    with _session() as session:
        account = _account(session)
        expense = _netflix(session, category_id=None)
        for day, external_id in ((20, "b"), (5, "a")):
            session.add(
                Transaction(
                    user_id=1,
                    account_id=account.id,
                    external_id=external_id,
                    transaction_date=date(2024, 1, day),
                    type=TransactionType.expense,
                    amount_cents=4300,
                    currency_code="PLN",
                    description="NETFLIX",
                    payment_status=PaymentStatus.completed,
                )
            )
        session.add(
            Transaction(
                user_id=1,
                account_id=account.id,
                external_id="excluded",
                transaction_date=date(2024, 2, 5),
                type=TransactionType.expense,
                amount_cents=4300,
                currency_code="PLN",
                description="NETFLIX",
                is_excluded=True,
            )
        )
        session.commit()

        result = RecurringExpenseService(session).rematch()

        assert (result.matched, result.scanned) == (1, 2)
        linked = session.scalars(
            select(Transaction).where(Transaction.recurring_expense_id == expense.id)
        ).all()
        assert [txn.external_id for txn in linked] == ["a"]
        assert expense.last_occurrence_date == date(2024, 1, 5)


def test_convert_transaction_creates_expense():
    with _session() as session:
        account = _account(session)
        txn = Transaction(
            user_id=1,
            account_id=account.id,
            transaction_date=date(2024, 3, 17),
            type=TransactionType.expense,
            amount_cents=2999,
            currency_code="PLN",
            description="Card payment",
            merchant_name="Spotify AB",
        )
        session.add(txn)
        session.commit()

        service = RecurringExpenseService(session)
        expense = service.convert_transaction(
            txn.id, ConvertToRecurringIn(match_keywords=["spotify"])
        )

        assert expense.name == "Spotify AB"
        assert expense.amount_cents == 2999
        assert expense.day_of_month == 17
        assert expense.start_date == date(2024, 3, 1)
        assert expense.last_occurrence_date == date(2024, 3, 17)
        assert txn.recurring_expense_id == expense.id
        assert txn.payment_status == PaymentStatus.completed

        with pytest.raises(ValueError, match="already linked"):
            service.convert_transaction(txn.id, ConvertToRecurringIn())


def test_rules_listed_user_first_and_system_rules_protected():
    with _session() as session:
        category = CategoryService(session).create(CategoryIn(name="Fuel"))
        system = CategorizationRule(
            user_id=None, keyword="orlen", category_id=category.id, is_system=True
        )
        session.add(system)
        session.commit()
        rules = CategorizationRuleService(session)
        mine = rules.create(
            CategorizationRuleIn(keyword=" shell ", category_id=category.id)
        )

        assert [rule.id for rule in rules.list_all()] == [mine.id, system.id]
        assert mine.keyword == "shell"
        with pytest.raises(NotFoundError):
            rules.delete(system.id)
        rules.delete(mine.id)
        assert [rule.id for rule in rules.list_all()] == [system.id]
